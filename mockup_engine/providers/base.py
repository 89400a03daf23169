from __future__ import annotations

import logging
import mimetypes
import os
from typing import Any, Callable, Mapping, TypeVar

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from mockup_engine.framework.config import ProviderSettings, RetryConfig
from mockup_engine.framework.errors import MissingCredentialsError, ProviderError

T = TypeVar("T")

RETRYABLE_STATUS_CODES: frozenset[int] = frozenset({408, 409, 429, 500, 502, 503, 504})


class ProviderAdapter:
    """
    One provider's image and vision endpoints.

    Subclasses override the operations they support; the rest raise a non-retryable
    ProviderError. Adapters are synchronous and are called from worker threads.
    """

    name: str = ""

    def _unsupported(self, operation: str, model: str) -> ProviderError:
        return ProviderError(
            f"{self.name}:{model} does not support {operation}",
            provider=self.name,
            model=model,
            retryable=False,
        )

    def generate_image(self, model: str, prompt: str, *, seed: int | None, settings: ProviderSettings) -> bytes:
        raise self._unsupported("image generation", model)

    def edit_image(self, model: str, prompt: str, image_bytes: bytes, *, settings: ProviderSettings) -> bytes:
        raise self._unsupported("image edits", model)

    def critique_image(
        self,
        model: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str,
        *,
        settings: ProviderSettings,
    ) -> str:
        raise self._unsupported("vision critique", model)


def require_api_key(settings: ProviderSettings) -> str:
    env_name = settings.api_key_env
    key = os.environ.get(env_name, "").strip() if env_name else ""
    if not key:
        raise MissingCredentialsError(
            f"Missing credentials for provider {settings.name}: set {env_name or 'an API key env var'}",
            provider=settings.name,
            retryable=False,
        )
    return key


def split_system_prompt(prompt: str) -> tuple[str, str]:
    """Split a ``SYSTEM: ... USER: ...`` template into (system, user); no marker means all user."""
    text = prompt.strip()
    if not text.startswith("SYSTEM:"):
        return "", text
    body = text[len("SYSTEM:") :]
    marker = body.find("USER:")
    if marker < 0:
        return body.strip(), ""
    return body[:marker].strip(), body[marker + len("USER:") :].strip()


def guess_mime_type(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    return mime or "image/png"


def post_json(
    url: str,
    payload: Mapping[str, Any],
    *,
    headers: Mapping[str, str],
    settings: ProviderSettings,
    model: str,
) -> dict[str, Any]:
    """POST JSON and return the decoded body, mapping transport and HTTP failures to ProviderError."""
    try:
        response = requests.post(url, json=dict(payload), headers=dict(headers), timeout=settings.timeout_seconds)
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise ProviderError(
            f"{settings.name}:{model} request failed: {exc}",
            provider=settings.name,
            model=model,
            retryable=True,
        ) from exc

    if response.status_code >= 400:
        detail = response.text[:500]
        raise ProviderError(
            f"{settings.name}:{model} returned HTTP {response.status_code}: {detail}",
            provider=settings.name,
            model=model,
            retryable=response.status_code in RETRYABLE_STATUS_CODES,
            status_code=response.status_code,
        )

    try:
        body = response.json()
    except ValueError as exc:
        raise ProviderError(
            f"{settings.name}:{model} returned a non-JSON body",
            provider=settings.name,
            model=model,
            retryable=False,
            status_code=response.status_code,
        ) from exc
    if not isinstance(body, dict):
        raise ProviderError(
            f"{settings.name}:{model} returned an unexpected payload",
            provider=settings.name,
            model=model,
        )
    return body


def download_bytes(url: str, *, settings: ProviderSettings, model: str) -> bytes:
    try:
        response = requests.get(url, timeout=settings.timeout_seconds)
    except (requests.Timeout, requests.ConnectionError) as exc:
        raise ProviderError(
            f"Failed to download image from {settings.name}:{model}: {exc}",
            provider=settings.name,
            model=model,
            retryable=True,
        ) from exc
    if response.status_code >= 400:
        raise ProviderError(
            f"Image download from {settings.name}:{model} returned HTTP {response.status_code}",
            provider=settings.name,
            model=model,
            retryable=response.status_code in RETRYABLE_STATUS_CODES,
            status_code=response.status_code,
        )
    return response.content


def is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


def call_with_retries(
    fn: Callable[[], T],
    *,
    max_retries: int,
    retry: RetryConfig,
    label: str,
    logger: logging.Logger | None = None,
) -> T:
    """
    Call ``fn`` with exponential backoff on retryable ProviderErrors.

    ``max_retries`` is the total attempt budget. Non-retryable errors are raised immediately.
    """

    attempts = max(1, int(max_retries))

    def before_sleep(state: Any) -> None:
        if logger is None:
            return
        logger.warning(
            "Transient provider error for %s: %r. Retrying in %.1fs (attempt %d/%d)",
            label,
            state.outcome.exception(),
            state.next_action.sleep,
            state.attempt_number,
            attempts,
        )

    retrying = Retrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(
            multiplier=retry.min_wait_seconds,
            min=retry.min_wait_seconds,
            max=retry.max_wait_seconds,
        ),
        retry=retry_if_exception(is_retryable),
        reraise=True,
        before_sleep=before_sleep,
    )
    return retrying(fn)
