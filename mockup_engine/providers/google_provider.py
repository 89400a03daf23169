from __future__ import annotations

import base64
from typing import Any

from mockup_engine.framework.config import ProviderSettings
from mockup_engine.framework.errors import ProviderError
from mockup_engine.providers.base import ProviderAdapter, post_json, require_api_key, split_system_prompt

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class GoogleAdapter(ProviderAdapter):
    """Gemini and Imagen through the Generative Language REST API."""

    name = "google"

    def _url(self, settings: ProviderSettings, model: str, method: str) -> str:
        base = (settings.base_url or DEFAULT_BASE_URL).rstrip("/")
        return f"{base}/models/{model}:{method}"

    def _headers(self, settings: ProviderSettings) -> dict[str, str]:
        return {"x-goog-api-key": require_api_key(settings), "Content-Type": "application/json"}

    def _parts(self, body: dict[str, Any]) -> list[dict[str, Any]]:
        candidates = body.get("candidates") or []
        if not candidates:
            return []
        content = candidates[0].get("content") or {}
        return list(content.get("parts") or [])

    def _first_inline_image(self, body: dict[str, Any], model: str) -> bytes:
        for part in self._parts(body):
            inline = part.get("inlineData") or part.get("inline_data")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"])
        raise ProviderError(f"google:{model} returned no image data", provider=self.name, model=model)

    def _imagen_predict(self, model: str, prompt: str, seed: int | None, settings: ProviderSettings) -> bytes:
        parameters: dict[str, Any] = {"sampleCount": 1}
        if seed is not None:
            # Imagen only honours a seed when watermarking is off.
            parameters["seed"] = seed
            parameters["addWatermark"] = False
        body = post_json(
            self._url(settings, model, "predict"),
            {"instances": [{"prompt": prompt}], "parameters": parameters},
            headers=self._headers(settings),
            settings=settings,
            model=model,
        )
        predictions = body.get("predictions") or []
        for prediction in predictions:
            encoded = prediction.get("bytesBase64Encoded")
            if encoded:
                return base64.b64decode(encoded)
        raise ProviderError(f"google:{model} returned no predictions", provider=self.name, model=model)

    def _gemini_image(
        self,
        model: str,
        parts: list[dict[str, Any]],
        seed: int | None,
        settings: ProviderSettings,
    ) -> bytes:
        generation_config: dict[str, Any] = {"responseModalities": ["TEXT", "IMAGE"]}
        if seed is not None:
            generation_config["seed"] = seed
        body = post_json(
            self._url(settings, model, "generateContent"),
            {"contents": [{"role": "user", "parts": parts}], "generationConfig": generation_config},
            headers=self._headers(settings),
            settings=settings,
            model=model,
        )
        return self._first_inline_image(body, model)

    def generate_image(self, model: str, prompt: str, *, seed: int | None, settings: ProviderSettings) -> bytes:
        if model.startswith("imagen"):
            return self._imagen_predict(model, prompt, seed, settings)
        return self._gemini_image(model, [{"text": prompt}], seed, settings)

    def edit_image(self, model: str, prompt: str, image_bytes: bytes, *, settings: ProviderSettings) -> bytes:
        if model.startswith("imagen"):
            raise self._unsupported("image edits", model)
        parts = [
            {"inlineData": {"mimeType": "image/png", "data": base64.b64encode(image_bytes).decode("ascii")}},
            {"text": prompt},
        ]
        return self._gemini_image(model, parts, None, settings)

    def critique_image(
        self,
        model: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        *,
        settings: ProviderSettings,
    ) -> str:
        system, user = split_system_prompt(prompt)
        payload: dict[str, Any] = {
            "contents": [
                {
                    "role": "user",
                    "parts": [
                        {"text": user or prompt},
                        {"inlineData": {"mimeType": mime_type, "data": base64.b64encode(image_bytes).decode("ascii")}},
                    ],
                }
            ],
            "generationConfig": {"temperature": 0.2, "maxOutputTokens": settings.max_tokens},
        }
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        body = post_json(
            self._url(settings, model, "generateContent"),
            payload,
            headers=self._headers(settings),
            settings=settings,
            model=model,
        )
        return "".join(part.get("text", "") for part in self._parts(body))
