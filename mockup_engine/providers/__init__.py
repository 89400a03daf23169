from __future__ import annotations

import logging

from mockup_engine.framework.capabilities import split_model_id
from mockup_engine.framework.config import AppConfig
from mockup_engine.framework.errors import ProviderError
from mockup_engine.providers.anthropic_provider import AnthropicAdapter
from mockup_engine.providers.base import ProviderAdapter, call_with_retries, guess_mime_type
from mockup_engine.providers.google_provider import GoogleAdapter
from mockup_engine.providers.local_provider import LocalAdapter
from mockup_engine.providers.openai_provider import OpenAIAdapter


class ProviderRegistry:
    _REGISTRY: dict[str, ProviderAdapter] = {
        "openai": OpenAIAdapter(),
        "google": GoogleAdapter(),
        "anthropic": AnthropicAdapter(),
        "local": LocalAdapter(),
    }

    @classmethod
    def register(cls, name: str, adapter: ProviderAdapter) -> None:
        cls._REGISTRY[name.strip().lower()] = adapter

    @classmethod
    def unregister(cls, name: str) -> None:
        cls._REGISTRY.pop(name.strip().lower(), None)

    @classmethod
    def names(cls) -> list[str]:
        return sorted(cls._REGISTRY)

    @classmethod
    def get(cls, provider: str) -> ProviderAdapter:
        key = provider.strip().lower()
        adapter = cls._REGISTRY.get(key)
        if adapter is None:
            raise ProviderError(f"Unknown provider: {provider}", provider=provider, retryable=False)
        return adapter


def generate_image(
    cfg: AppConfig,
    model_id: str,
    prompt: str,
    *,
    seed: int | None = None,
    max_retries: int | None = None,
    logger: logging.Logger | None = None,
) -> bytes:
    provider, model = split_model_id(model_id)
    adapter = ProviderRegistry.get(provider)
    settings = cfg.provider_settings(provider)
    return call_with_retries(
        lambda: adapter.generate_image(model, prompt, seed=seed, settings=settings),
        max_retries=max_retries or cfg.max_retries,
        retry=cfg.retry,
        label=model_id,
        logger=logger,
    )


def edit_image(
    cfg: AppConfig,
    model_id: str,
    prompt: str,
    image_bytes: bytes,
    *,
    max_retries: int | None = None,
    logger: logging.Logger | None = None,
) -> bytes:
    provider, model = split_model_id(model_id)
    adapter = ProviderRegistry.get(provider)
    settings = cfg.provider_settings(provider)
    return call_with_retries(
        lambda: adapter.edit_image(model, prompt, image_bytes, settings=settings),
        max_retries=max_retries or cfg.max_retries,
        retry=cfg.retry,
        label=model_id,
        logger=logger,
    )


def critique_image(
    cfg: AppConfig,
    model_id: str,
    prompt: str,
    image_path: str,
    *,
    max_retries: int | None = None,
    logger: logging.Logger | None = None,
) -> str:
    provider, model = split_model_id(model_id)
    adapter = ProviderRegistry.get(provider)
    settings = cfg.provider_settings(provider)
    with open(image_path, "rb") as handle:
        image_bytes = handle.read()
    mime_type = guess_mime_type(image_path)
    return call_with_retries(
        lambda: adapter.critique_image(model, prompt, image_bytes, mime_type, settings=settings),
        max_retries=max_retries or cfg.max_retries,
        retry=cfg.retry,
        label=model_id,
        logger=logger,
    )


__all__ = [
    "ProviderAdapter",
    "ProviderRegistry",
    "critique_image",
    "edit_image",
    "generate_image",
]
