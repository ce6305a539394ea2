"""
    Configuration and Constants
"""

import os
import json
import logging
import boto3
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, Mapping, Optional, Tuple


# ---------- App Configuration -----------------------
AWS_REGION = 'eu-west-1'
DEFAULT_CURRENCY = 'EUR'
DEFAULT_OCR_PROVIDER = 'mindee'  # Options: mindee, aws_textract, tesseract
DEFAULT_OCR_PROVIDERS = ('mindee', 'tesseract')
DEFAULT_LLM_PROVIDER = 'openai'
TICKET_PROMPT_VERSION = '2'
TESSERACT_LANGUAGE = 'fra'
LLM_TIMEOUT_SECONDS = 60.0
# ------------------------------------------------------

# Confidence defaults when the upstream omits a value
INVOICE_DOCUMENT_CONFIDENCE = 0.95
INVOICE_LINE_ITEM_CONFIDENCE = 0.99
RECEIPT_DOCUMENT_CONFIDENCE = 0.0
RECEIPT_LINE_ITEM_CONFIDENCE = 0.0
LLM_DEFAULT_CONFIDENCE = 0.5
TEXTRACT_MIN_FIELD_CONFIDENCE = 70  # Textract scale 0-100

# Review thresholds
LOW_CONFIDENCE_THRESHOLD = 0.7
SUSPICIOUS_CONFIDENCE_THRESHOLD = 0.5
SUSPICIOUS_MAX_PRICE = 1000
SUSPICIOUS_MAX_QUANTITY = 100
MIN_ITEM_NAME_LENGTH = 2
TOTAL_TOLERANCE_RATIO = 0.05
LINE_TOTAL_TOLERANCE = 0.10

# Product matching (scores in [0, 1])
MATCH_MIN_SCORE = 0.3
MATCH_GOOD_THRESHOLD = 0.7
MATCH_EXACT_THRESHOLD = 0.95
MATCH_MAX_EDIT_DISTANCE = 3
MATCH_MAX_RESULTS = 10
MATCH_MIN_KEYWORD_LENGTH = 3

# Limits
MAX_ITEM_QUANTITY = 1000
MAX_ITEM_NAME_LENGTH = 200
MAX_ITEM_PRICE = 10000

EAN_PATTERN = r'^\d{13}$'

# AWS Clients (singleton per region)
_textract_clients: Dict[str, Any] = {}


@dataclass(frozen=True)
class Settings:
    """Runtime settings, read once at startup"""
    mindee_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    ticket_prompt_id: Optional[str] = None
    ticket_prompt_version: str = TICKET_PROMPT_VERSION
    ocr_providers: Tuple[str, ...] = DEFAULT_OCR_PROVIDERS
    ocr_default_provider: str = DEFAULT_OCR_PROVIDER
    ocr_enable_fallback: bool = False
    ocr_fallback_order: Tuple[str, ...] = ()
    aws_region: str = AWS_REGION
    tesseract_language: str = TESSERACT_LANGUAGE
    tesseract_cmd: Optional[str] = None
    llm_timeout_seconds: float = LLM_TIMEOUT_SECONDS


# ------------- Secrets Management (stored in AWS Secrets Manager)-------------
@lru_cache(maxsize=8)
def get_secrets(secret_name: str) -> dict:
    """Get all secrets from AWS Secrets Manager (cached)"""
    client = boto3.client('secretsmanager')

    try:
        response = client.get_secret_value(SecretId=secret_name)
        return json.loads(response['SecretString'])

    except Exception as e:
        logging.error(f"Failed to get secrets: {e}")
        raise
# ----------------------------------------------------------------------------


def _split_list(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(',') if part.strip())


def _parse_bool(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build settings from environment variables, optionally filled from Secrets Manager"""
    env = os.environ if environ is None else environ

    mindee_api_key = env.get('MINDEE_API_KEY') or None
    openai_api_key = env.get('OPENAI_API_KEY') or None
    ticket_prompt_id = env.get('TICKET_PROMPT_ID') or None

    secret_name = env.get('RECEIPT_SECRETS_NAME')
    if secret_name and not (mindee_api_key and openai_api_key and ticket_prompt_id):
        try:
            secrets = get_secrets(secret_name)
            mindee_api_key = mindee_api_key or secrets.get('MINDEE_API_KEY')
            openai_api_key = openai_api_key or secrets.get('OPENAI_API_KEY')
            ticket_prompt_id = ticket_prompt_id or secrets.get('TICKET_PROMPT_ID')
        except Exception as e:
            logging.warning(f"Secrets '{secret_name}' unavailable, keeping environment values only: {e}")

    timeout = env.get('LLM_TIMEOUT_SECONDS')

    return Settings(
        mindee_api_key=mindee_api_key,
        openai_api_key=openai_api_key,
        ticket_prompt_id=ticket_prompt_id,
        ticket_prompt_version=env.get('TICKET_PROMPT_VERSION') or TICKET_PROMPT_VERSION,
        ocr_providers=_split_list(env.get('OCR_PROVIDERS')) or DEFAULT_OCR_PROVIDERS,
        ocr_default_provider=env.get('OCR_DEFAULT_PROVIDER') or DEFAULT_OCR_PROVIDER,
        ocr_enable_fallback=_parse_bool(env.get('OCR_ENABLE_FALLBACK')),
        ocr_fallback_order=_split_list(env.get('OCR_FALLBACK_ORDER')),
        aws_region=env.get('AWS_REGION') or AWS_REGION,
        tesseract_language=env.get('TESSERACT_LANGUAGE') or TESSERACT_LANGUAGE,
        tesseract_cmd=env.get('TESSERACT_CMD') or None,
        llm_timeout_seconds=float(timeout) if timeout else LLM_TIMEOUT_SECONDS,
    )


def get_textract_client(region_name: str = AWS_REGION):
    """Get Textract client (one per region)"""
    if region_name not in _textract_clients:
        _textract_clients[region_name] = boto3.client('textract', region_name=region_name)
    return _textract_clients[region_name]


def setup_logging():
    """Setup logging configuration"""
    logging.basicConfig(
        level=logging.INFO,
        format='[%(levelname)s] %(name)s: %(message)s',
        force=True
    )
