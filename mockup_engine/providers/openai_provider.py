from __future__ import annotations

import base64
from typing import Any

import openai
from openai import OpenAI

from mockup_engine.framework.config import ProviderSettings
from mockup_engine.framework.errors import ProviderError
from mockup_engine.providers.base import (
    RETRYABLE_STATUS_CODES,
    ProviderAdapter,
    download_bytes,
    require_api_key,
    split_system_prompt,
)

DEFAULT_IMAGE_SIZE = "1024x1024"
# dall-e-2 rejects prompts longer than this.
DALLE2_PROMPT_LIMIT = 1000


class OpenAIAdapter(ProviderAdapter):
    name = "openai"

    def _client(self, settings: ProviderSettings) -> OpenAI:
        # Retries are owned by call_with_retries, not the SDK.
        return OpenAI(
            api_key=require_api_key(settings),
            base_url=settings.base_url,
            timeout=settings.timeout_seconds,
            max_retries=0,
        )

    def _translate(self, exc: Exception, model: str) -> ProviderError:
        if isinstance(exc, openai.APIConnectionError):
            return ProviderError(
                f"openai:{model} connection failed: {exc}",
                provider=self.name,
                model=model,
                retryable=True,
            )
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(
                f"openai:{model} returned HTTP {exc.status_code}: {exc.message}",
                provider=self.name,
                model=model,
                retryable=exc.status_code in RETRYABLE_STATUS_CODES,
                status_code=exc.status_code,
            )
        return ProviderError(f"openai:{model} failed: {exc}", provider=self.name, model=model)

    def _image_kwargs(self, model: str, prompt: str, settings: ProviderSettings) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": model,
            "prompt": prompt[:DALLE2_PROMPT_LIMIT] if model == "dall-e-2" else prompt,
            "n": 1,
            "size": settings.image_size or DEFAULT_IMAGE_SIZE,
        }
        if model.startswith("dall-e"):
            kwargs["response_format"] = "b64_json"
        return kwargs

    def _first_image(self, response: Any, model: str, settings: ProviderSettings) -> bytes:
        data = getattr(response, "data", None) or []
        if not data:
            raise ProviderError(f"openai:{model} returned no images", provider=self.name, model=model)
        item = data[0]
        if getattr(item, "b64_json", None):
            return base64.b64decode(item.b64_json)
        if getattr(item, "url", None):
            return download_bytes(item.url, settings=settings, model=model)
        raise ProviderError(f"openai:{model} returned an empty image", provider=self.name, model=model)

    def generate_image(self, model: str, prompt: str, *, seed: int | None, settings: ProviderSettings) -> bytes:
        # The images API has no seed parameter; the seed is recorded in the manifest only.
        client = self._client(settings)
        try:
            response = client.images.generate(**self._image_kwargs(model, prompt, settings))
        except openai.OpenAIError as exc:
            raise self._translate(exc, model) from exc
        return self._first_image(response, model, settings)

    def edit_image(self, model: str, prompt: str, image_bytes: bytes, *, settings: ProviderSettings) -> bytes:
        client = self._client(settings)
        kwargs = self._image_kwargs(model, prompt, settings)
        try:
            response = client.images.edit(image=("source.png", image_bytes, "image/png"), **kwargs)
        except openai.OpenAIError as exc:
            raise self._translate(exc, model) from exc
        return self._first_image(response, model, settings)

    def critique_image(
        self,
        model: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        *,
        settings: ProviderSettings,
    ) -> str:
        client = self._client(settings)
        system, user = split_system_prompt(prompt)
        data_url = f"data:{mime_type};base64,{base64.b64encode(image_bytes).decode('ascii')}"
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": user or prompt},
                    {"type": "image_url", "image_url": {"url": data_url}},
                ],
            }
        )
        try:
            response = client.chat.completions.create(
                model=model,
                temperature=0.2,
                max_tokens=settings.max_tokens,
                messages=messages,
            )
        except openai.OpenAIError as exc:
            raise self._translate(exc, model) from exc
        return response.choices[0].message.content or ""
