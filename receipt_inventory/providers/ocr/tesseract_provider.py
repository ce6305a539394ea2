"""
    Tesseract OCR Provider module
"""

import io
import time
import logging
import threading
from typing import Callable, Dict, List, Optional, Tuple
import pytesseract
from PIL import Image, ImageOps
from receipt_inventory.config import setup_logging, Settings, TESSERACT_LANGUAGE
from receipt_inventory.errors import ErrorKind
from receipt_inventory.provider_interfaces import OCRProvider, OcrProcessingResult
from receipt_inventory.providers.helpers import classify_error, elapsed_ms
from receipt_inventory.receipt_schemas import DocumentType, OcrReceiptData
from receipt_inventory.services.receipt_validation_service import normalize_confidence


setup_logging()
logger = logging.getLogger(__name__)


def clean_extracted_text(text: str) -> str:
    """Collapse whitespace inside lines and drop blank lines"""
    lines = (' '.join(line.split()) for line in text.splitlines())
    return '\n'.join(line for line in lines if line)


class TesseractWorker:
    """Local recognition engine bound to a single language"""

    def __init__(self, language: str = TESSERACT_LANGUAGE, tesseract_cmd: Optional[str] = None):
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd

        self.language = language
        self.version = pytesseract.get_tesseract_version()
        self._terminated = False
        logger.info(f"Tesseract {self.version} worker ready (lang={language})")

    def recognize(self, image: Image.Image) -> Tuple[str, float]:
        """Return the recognized text and the mean word confidence (0-100)"""
        if self._terminated:
            raise RuntimeError("Tesseract worker has been terminated")

        data = pytesseract.image_to_data(image, lang=self.language, output_type=pytesseract.Output.DICT)

        lines: Dict[Tuple[int, int, int], List[str]] = {}
        confidences = []

        for index, word in enumerate(data.get('text', [])):
            key = (data['block_num'][index], data['par_num'][index], data['line_num'][index])
            lines.setdefault(key, []).append(word or '')

            confidence = float(data['conf'][index])
            if (word or '').strip() and confidence >= 0:
                confidences.append(confidence)

        text = '\n'.join(' '.join(words) for words in lines.values())
        mean_confidence = sum(confidences) / len(confidences) if confidences else 0.0

        return text, mean_confidence

    def terminate(self) -> None:
        self._terminated = True
        logger.info("Tesseract worker terminated")


class TesseractOcrProvider(OCRProvider):
    """Text-only provider; structured fields are left empty"""

    name = 'tesseract'
    supported_document_types = frozenset({DocumentType.RECEIPT_IMAGE})

    def __init__(self, language: str = TESSERACT_LANGUAGE, tesseract_cmd: Optional[str] = None,
                 worker_factory: Optional[Callable[[], TesseractWorker]] = None):
        self.language = language
        self._worker_factory = worker_factory or (lambda: TesseractWorker(language, tesseract_cmd))
        self._worker: Optional[TesseractWorker] = None
        # The worker handles one recognition at a time
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> 'TesseractOcrProvider':
        return cls(language=settings.tesseract_language, tesseract_cmd=settings.tesseract_cmd)

    def is_available(self) -> bool:
        return True

    def process_document(self, document_data: bytes, document_type: DocumentType) -> OcrProcessingResult:
        started_at = time.perf_counter()

        if not self.supports_document_type(document_type):
            return OcrProcessingResult.failed(self.name, document_type, f"Document type {document_type} not supported",
                                              elapsed_ms(started_at), ErrorKind.UNSUPPORTED_INPUT)

        try:
            image = self._load_image(document_data)

            with self._lock:
                raw_text, confidence_percent = self._get_worker().recognize(image)

            text = clean_extracted_text(raw_text)
            data = OcrReceiptData(
                confidence=normalize_confidence(confidence_percent / 100, 0.0),
                extracted_text=text,
                raw_data={
                    'text_length': len(text),
                    'original_text_length': len(raw_text),
                    'confidence_percent': confidence_percent,
                },
            )

            processing_time = elapsed_ms(started_at)
            logger.info(f"Tesseract read {len(text)} characters (confidence {confidence_percent:.1f}%) in {processing_time} ms")

            return OcrProcessingResult.succeeded(self.name, document_type, data, processing_time)

        except Exception as e:
            classified = classify_error(e, 'Tesseract')
            processing_time = elapsed_ms(started_at)
            logger.error(f"Tesseract processing failed after {processing_time} ms: {classified.message}")
            return OcrProcessingResult.failed(self.name, document_type, classified.message, processing_time, classified.kind)

    def close(self) -> None:
        with self._lock:
            if self._worker is not None:
                self._worker.terminate()
                self._worker = None

    def _get_worker(self) -> TesseractWorker:
        # Called with self._lock held
        if self._worker is None:
            logger.info("Initializing Tesseract worker")
            self._worker = self._worker_factory()
        return self._worker

    @staticmethod
    def _load_image(document_data: bytes) -> Image.Image:
        """Decode, fix EXIF orientation and convert to grayscale"""
        image = Image.open(io.BytesIO(document_data))
        image = ImageOps.exif_transpose(image) or image
        return image.convert('L')
