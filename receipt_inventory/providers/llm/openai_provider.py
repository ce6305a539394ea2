"""
    OpenAI Provider module
"""

import logging
from typing import Optional, Any, Dict
from openai import OpenAI
from receipt_inventory.config import setup_logging, Settings, LLM_TIMEOUT_SECONDS
from receipt_inventory.errors import ConfigurationError
from receipt_inventory.provider_interfaces import LLMProvider, LLMResponse


setup_logging()
logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """Runs stored prompts through the OpenAI Responses API"""

    def __init__(self, api_key: Optional[str] = None, timeout: float = LLM_TIMEOUT_SECONDS):
        self.client: Optional[OpenAI] = None

        if not api_key:
            logger.warning("OPENAI_API_KEY is not set, OpenAI provider disabled")
            return

        # No automatic retries, the caller decides
        self.client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @classmethod
    def from_settings(cls, settings: Settings) -> 'OpenAIProvider':
        return cls(api_key=settings.openai_api_key, timeout=settings.llm_timeout_seconds)

    def is_available(self) -> bool:
        return self.client is not None

    def run_prompt(self, prompt_id: str, prompt_version: str, user_content: str) -> LLMResponse:
        if self.client is None:
            raise ConfigurationError("OpenAI API key is not configured")

        logger.info(f"Running OpenAI prompt {prompt_id} (version {prompt_version})")

        response = self.client.responses.create(
            prompt={"id": prompt_id, "version": prompt_version},
            input=[{"role": "user", "content": user_content}],
        )

        usage_tokens = response.usage.output_tokens if response.usage else None
        output = [self._to_dict(item) for item in response.output or []]

        return LLMResponse(output=output, usage_tokens=usage_tokens)

    @staticmethod
    def _to_dict(item: Any) -> Dict[str, Any]:
        if isinstance(item, dict):
            return item
        return item.model_dump()
