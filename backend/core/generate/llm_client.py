import logging
import httpx
from typing import List, Dict, Optional
from config.settings import settings, LLMConfig
from core.errors import ExternalServiceError

logger = logging.getLogger(__name__)

class LLMClient:
    """
    OpenAI-compatible chat completion client for document-grounded answers.
    One request per call: no retries and no model fallback, so a failure
    reaches the caller within the configured timeout.
    """

    def __init__(self, api_key: Optional[str] = None, config: Optional[LLMConfig] = None):
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.config = config or settings.llm
        self.base_url = f"{self.config.base_url.rstrip('/')}/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {self.api_key}" if self.api_key else "",
            "Content-Type": "application/json"
        }

    def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> str:
        """
        Sends the system prompt followed by `messages` (role/content dicts)
        and returns the assistant's text.
        """
        payload = {
            "model": self.config.model,
            "messages": [{"role": "system", "content": system_prompt}] + list(messages),
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature
        }

        if not self.api_key:
            logger.warning("OPENAI_API_KEY is not set. LLM calls will fail.")

        try:
            with httpx.Client(timeout=self.config.timeout_s) as client:
                response = client.post(self.base_url, headers=self.headers, json=payload)
                response.raise_for_status()
                data = response.json()
            return data["choices"][0]["message"]["content"]
        except httpx.TimeoutException as e:
            logger.error(f"Completion request timed out after {self.config.timeout_s}s")
            raise ExternalServiceError("completion provider", "complete") from e
        except Exception as e:
            logger.error(f"Completion request failed: {e}")
            raise ExternalServiceError("completion provider", "complete") from e
