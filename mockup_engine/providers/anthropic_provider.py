from __future__ import annotations

import base64
from typing import Any

from mockup_engine.framework.config import ProviderSettings
from mockup_engine.providers.base import ProviderAdapter, post_json, require_api_key, split_system_prompt

DEFAULT_BASE_URL = "https://api.anthropic.com/v1"
API_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    """Messages API, used for vision critique only."""

    name = "anthropic"

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
            "model": model,
            "max_tokens": settings.max_tokens,
            "temperature": 0.2,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "image",
                            "source": {
                                "type": "base64",
                                "media_type": mime_type,
                                "data": base64.b64encode(image_bytes).decode("ascii"),
                            },
                        },
                        {"type": "text", "text": user or prompt},
                    ],
                }
            ],
        }
        if system:
            payload["system"] = system

        base = (settings.base_url or DEFAULT_BASE_URL).rstrip("/")
        body = post_json(
            f"{base}/messages",
            payload,
            headers={
                "x-api-key": require_api_key(settings),
                "anthropic-version": API_VERSION,
                "content-type": "application/json",
            },
            settings=settings,
            model=model,
        )
        blocks = body.get("content") or []
        return "".join(block.get("text", "") for block in blocks if block.get("type") == "text")
