"""Which fully-qualified model ids can produce images and which can read them."""

from __future__ import annotations

from typing import Iterable

IMAGE_MODELS: frozenset[str] = frozenset(
    {
        "openai:dall-e-3",
        "openai:dall-e-2",
        "openai:gpt-image-1",
        "google:imagen-3.0-generate-002",
        "google:gemini-2.5-flash-image-preview",
        "local:placeholder",
    }
)

VISION_MODELS: frozenset[str] = frozenset(
    {
        "openai:gpt-4o",
        "openai:gpt-4o-mini",
        "openai:gpt-4.1",
        "anthropic:claude-3-5-sonnet-20241022",
        "anthropic:claude-3-7-sonnet-latest",
        "google:gemini-2.5-flash",
        "google:gemini-1.5-pro",
        "local:placeholder",
    }
)


def split_model_id(model_id: str) -> tuple[str, str]:
    """Split ``provider:model``; raises ValueError when either half is missing."""
    if not isinstance(model_id, str) or ":" not in model_id:
        raise ValueError(f"Model id must look like provider:model, got {model_id!r}")
    provider, _, model = model_id.partition(":")
    provider = provider.strip()
    model = model.strip()
    if not provider or not model:
        raise ValueError(f"Model id must look like provider:model, got {model_id!r}")
    return provider, model


def is_image_model(model_id: str, extra: Iterable[str] = ()) -> bool:
    return model_id in IMAGE_MODELS or model_id in set(extra)


def is_vision_model(model_id: str, extra: Iterable[str] = ()) -> bool:
    return model_id in VISION_MODELS or model_id in set(extra)


def qualify_model_name(name: str, extra: Iterable[str] = ()) -> str | None:
    """
    Resolve a bare model name (``dall-e-3``) against known image models.

    Fully-qualified ids are returned unchanged. Returns None when nothing matches.
    """
    if ":" in name:
        return name
    known = sorted(IMAGE_MODELS | set(extra))
    for model_id in known:
        if model_id.partition(":")[2] == name:
            return model_id
    return None


def default_image_model_for(provider: str, extra: Iterable[str] = ()) -> str | None:
    """First known image-capable model for a provider (used when only the provider is known)."""
    preferred = {
        "openai": "openai:dall-e-3",
        "google": "google:imagen-3.0-generate-002",
        "local": "local:placeholder",
    }
    candidate = preferred.get(provider)
    if candidate:
        return candidate
    for model_id in sorted(IMAGE_MODELS | set(extra)):
        if model_id.startswith(f"{provider}:"):
            return model_id
    return None
