import io
import threading
from unittest.mock import patch

import pytest
from PIL import Image

from receipt_inventory.errors import ErrorKind
from receipt_inventory.providers.ocr.tesseract_provider import (
    TesseractOcrProvider,
    TesseractWorker,
    clean_extracted_text,
)
from receipt_inventory.receipt_schemas import DocumentType


def _png_bytes() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


class FakeWorker:
    instances = 0

    def __init__(self, text="  CARREFOUR   MARKET \n\n LAIT 1L   1,05\n   \n", confidence=87.5):
        FakeWorker.instances += 1
        self.text = text
        self.confidence = confidence
        self.terminated = False
        self.images = []

    def recognize(self, image):
        self.images.append(image)
        return self.text, self.confidence

    def terminate(self):
        self.terminated = True


@pytest.fixture(autouse=True)
def reset_instances():
    FakeWorker.instances = 0


def test_clean_extracted_text() -> None:
    assert clean_extracted_text("  a   b \n\n\t\n c  ") == "a b\nc"


def test_text_only_result() -> None:
    provider = TesseractOcrProvider(worker_factory=FakeWorker)

    result = provider.process_document(_png_bytes(), DocumentType.RECEIPT_IMAGE)

    assert result.success
    assert result.provider == "tesseract"
    data = result.data
    assert data.extracted_text == "CARREFOUR MARKET\nLAIT 1L 1,05"
    assert data.confidence == pytest.approx(0.875)
    assert data.merchant_name is None
    assert data.total_amount is None
    assert data.line_items == ()
    assert data.raw_data["text_length"] == len(data.extracted_text)
    assert data.raw_data["confidence_percent"] == 87.5


def test_worker_is_created_lazily_and_reused() -> None:
    provider = TesseractOcrProvider(worker_factory=FakeWorker)
    assert FakeWorker.instances == 0

    provider.process_document(_png_bytes(), DocumentType.RECEIPT_IMAGE)
    provider.process_document(_png_bytes(), DocumentType.RECEIPT_IMAGE)

    assert FakeWorker.instances == 1


def test_image_is_converted_to_grayscale() -> None:
    worker = FakeWorker()
    provider = TesseractOcrProvider(worker_factory=lambda: worker)

    provider.process_document(_png_bytes(), DocumentType.RECEIPT_IMAGE)

    assert worker.images[0].mode == "L"


def test_close_releases_worker() -> None:
    worker = FakeWorker()
    provider = TesseractOcrProvider(worker_factory=lambda: worker)
    provider.process_document(_png_bytes(), DocumentType.RECEIPT_IMAGE)

    provider.close()

    assert worker.terminated
    provider.close()


def test_always_available_and_receipt_only() -> None:
    provider = TesseractOcrProvider(worker_factory=FakeWorker)

    assert provider.is_available()
    assert provider.supports_document_type(DocumentType.RECEIPT_IMAGE)
    assert not provider.supports_document_type(DocumentType.INVOICE_PDF)

    result = provider.process_document(b"%PDF", DocumentType.INVOICE_PDF)

    assert not result.success
    assert result.error_kind == ErrorKind.UNSUPPORTED_INPUT
    assert FakeWorker.instances == 0


def test_undecodable_image_becomes_failed_result() -> None:
    provider = TesseractOcrProvider(worker_factory=FakeWorker)

    result = provider.process_document(b"not an image", DocumentType.RECEIPT_IMAGE)

    assert not result.success
    assert result.error.startswith("Tesseract error:")


def test_concurrent_calls_are_serialized() -> None:
    active = []
    overlaps = []

    class SlowWorker(FakeWorker):
        def recognize(self, image):
            active.append(1)
            if len(active) > 1:
                overlaps.append(True)
            threading.Event().wait(0.01)
            active.pop()
            return "TEXT", 90.0

    provider = TesseractOcrProvider(worker_factory=SlowWorker)
    image = _png_bytes()
    threads = [threading.Thread(target=provider.process_document, args=(image, DocumentType.RECEIPT_IMAGE)) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert overlaps == []
    assert SlowWorker.instances == 1


def test_worker_rebuilds_lines_from_word_data() -> None:
    data = {
        "text": ["", "CARREFOUR", "MARKET", "", "LAIT", "1,05"],
        "conf": [-1, 91, 89, "-1", 80, 60],
        "block_num": [1, 1, 1, 1, 1, 1],
        "par_num": [1, 1, 1, 1, 1, 1],
        "line_num": [0, 1, 1, 2, 2, 2],
    }

    with patch("pytesseract.get_tesseract_version", return_value="5.3.0"), \
            patch("pytesseract.image_to_data", return_value=data) as image_to_data:
        worker = TesseractWorker(language="fra")
        text, confidence = worker.recognize(Image.new("L", (10, 10)))

    assert image_to_data.call_args.kwargs["lang"] == "fra"
    assert clean_extracted_text(text) == "CARREFOUR MARKET\nLAIT 1,05"
    assert confidence == pytest.approx(80.0)

    worker.terminate()
    with pytest.raises(RuntimeError):
        worker.recognize(Image.new("L", (10, 10)))
