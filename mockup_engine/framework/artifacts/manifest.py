from __future__ import annotations

import asyncio
import hashlib
import json
import os
import re
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Mapping

_SLUG_RE = re.compile(r"[^a-z0-9]+")
_IMAGE_ID_RE = re.compile(r"[^a-z0-9_-]")


def utc_now_iso8601() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def slugify(text: str) -> str:
    """Lowercase, non-alphanumeric runs become a single ``-``, no leading/trailing dashes."""
    return _SLUG_RE.sub("-", str(text).lower()).strip("-")


def image_id_from_path(path: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    return _IMAGE_ID_RE.sub("_", stem.lower())


def prompt_fingerprint(prompt: str) -> str:
    return hashlib.sha256(prompt.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class ManifestItem:
    id: str
    screen: str
    model: str
    path: str
    promptHash: str
    timestamp: str
    variant: int | None = None
    seed: int | None = None
    pass_: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        pass_number = payload.pop("pass_")
        if pass_number is not None:
            payload["pass"] = pass_number
            payload.pop("variant")
        return payload

    @staticmethod
    def from_dict(raw: Mapping[str, Any]) -> "ManifestItem":
        return ManifestItem(
            id=str(raw["id"]),
            screen=str(raw.get("screen") or ""),
            model=str(raw.get("model") or ""),
            path=str(raw["path"]),
            promptHash=str(raw.get("promptHash") or ""),
            timestamp=str(raw.get("timestamp") or ""),
            variant=raw.get("variant"),
            seed=raw.get("seed"),
            pass_=raw.get("pass"),
        )


@contextmanager
def manifest_lock(
    manifest_path: str,
    *,
    timeout_seconds: float = 60.0,
    poll_interval_seconds: float = 0.05,
):
    lock_path = f"{manifest_path}.lock"
    start = time.monotonic()
    os.makedirs(os.path.dirname(os.path.abspath(lock_path)), exist_ok=True)

    while True:
        try:
            fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                file.write(f"pid={os.getpid()}\ncreated_at={utc_now_iso8601()}\n")
            break
        except FileExistsError:
            if (time.monotonic() - start) >= timeout_seconds:
                raise TimeoutError(f"Timed out waiting for manifest lock: {manifest_path}.lock")
            time.sleep(poll_interval_seconds)

    try:
        yield
    finally:
        try:
            os.remove(lock_path)
        except FileNotFoundError:
            pass


def read_manifest(manifest_path: str) -> dict[str, Any]:
    """Read a stage manifest; a missing file reads as an empty manifest."""
    if not os.path.exists(manifest_path):
        return {"items": []}
    with open(manifest_path, "r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"Manifest must contain a JSON object: {manifest_path}")
    items = payload.get("items")
    if items is None:
        payload["items"] = []
    elif not isinstance(items, list):
        raise ValueError(f"Manifest items must be a list: {manifest_path}")
    return payload


def _write_json_atomic(path: str, payload: Mapping[str, Any]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2, ensure_ascii=False)
        handle.write("\n")
    os.replace(tmp_path, path)


class ManifestWriter:
    """
    Single writer for one manifest file.

    Appends are read-modify-write cycles serialized by an ``asyncio.Lock`` (concurrent units in
    one event loop) and by the ``.lock`` file (other processes). File I/O runs in a worker thread.
    """

    def __init__(self, manifest_path: str) -> None:
        self.path = manifest_path
        self._lock = asyncio.Lock()

    def _append_sync(self, item: Mapping[str, Any]) -> None:
        with manifest_lock(self.path):
            payload = read_manifest(self.path)
            payload["items"].append(dict(item))
            _write_json_atomic(self.path, payload)

    def _update_sync(self, header: Mapping[str, Any], items: list[dict[str, Any]] | None) -> dict[str, Any]:
        with manifest_lock(self.path):
            payload = read_manifest(self.path)
            payload.update({key: value for key, value in header.items() if key != "items"})
            if items is not None:
                payload["items"] = items
            _write_json_atomic(self.path, payload)
            return payload

    async def append(self, item: ManifestItem | Mapping[str, Any]) -> None:
        record = item.to_dict() if isinstance(item, ManifestItem) else dict(item)
        async with self._lock:
            await asyncio.to_thread(self._append_sync, record)

    async def update_header(
        self,
        header: Mapping[str, Any],
        *,
        items: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Merge header fields into the manifest; ``items`` replaces the item list when given."""
        async with self._lock:
            return await asyncio.to_thread(self._update_sync, dict(header), items)
