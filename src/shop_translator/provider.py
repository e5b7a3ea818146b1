from typing import Protocol

import httpx
import structlog

from shop_translator.config import settings
from shop_translator.errors import ProviderConfigurationError, ProviderFailure, ProviderTimeout
from shop_translator.schemas import PromptContext

log = structlog.get_logger(__name__)

TRANSIENT_STATUS = {408, 409, 429, 500, 502, 503, 504}


class TranslationProvider(Protocol):
    def invoke(self, text: str, target_locale: str, prompt_context: PromptContext) -> str: ...


class ChatCompletionProvider:
    """OpenAI-compatible /chat/completions client, one HTTP call per invoke.

    Retries belong to the strategy executor, which knows whether the failure
    is worth another attempt.
    """

    def __init__(self, model: str | None = None, timeout_sec: int | None = None) -> None:
        self.provider = settings.model_provider.lower().strip()
        if self.provider == "openai":
            self.base_url = settings.openai_base_url.rstrip("/")
            self.api_key = settings.openai_api_key
            self.model = model or settings.openai_translate_model
        elif self.provider == "openrouter":
            self.base_url = settings.openrouter_base_url.rstrip("/")
            self.api_key = settings.openrouter_api_key
            self.model = model or settings.openrouter_translate_model
        else:
            raise ProviderConfigurationError(f"Unsupported MODEL_PROVIDER: {self.provider}")
        self.timeout_sec = timeout_sec or settings.translate_timeout_sec

    def _headers(self) -> dict:
        if not self.api_key:
            if self.provider == "openai":
                raise ProviderConfigurationError("OPENAI_API_KEY is not set")
            raise ProviderConfigurationError("OPENROUTER_API_KEY is not set")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _post_chat(self, body: dict) -> dict:
        headers = self._headers()
        try:
            with httpx.Client(timeout=self.timeout_sec) as client:
                r = client.post(f"{self.base_url}/chat/completions", headers=headers, json=body)
                r.raise_for_status()
                return r.json()
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(str(exc) or "provider timeout", transient=True) from exc
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            if code in TRANSIENT_STATUS:
                raise ProviderFailure(f"transient_http_{code}", transient=True, status=code) from exc
            raise ProviderFailure(f"http_{code}: {exc.response.text[:200]}", transient=False, status=code) from exc
        except httpx.HTTPError as exc:
            raise ProviderFailure(str(exc), transient=True) from exc
        except ValueError as exc:
            raise ProviderFailure(f"invalid_json: {exc}", transient=True) from exc

    def invoke(self, text: str, target_locale: str, prompt_context: PromptContext) -> str:
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": prompt_context.system_prompt},
                {"role": "user", "content": text},
            ],
            "temperature": 0,
        }
        data = self._post_chat(body)
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ProviderFailure("malformed_response", transient=True) from exc
        log.debug(
            "provider call completed",
            strategy=prompt_context.strategy.value,
            target_locale=target_locale,
            input_length=len(text),
            output_length=len(content or ""),
        )
        return (content or "").strip()
