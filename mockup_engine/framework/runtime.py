from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator

from mockup_engine.foundation.logging_utils import close_operational_logger, setup_operational_logger
from mockup_engine.framework.artifacts.manifest import utc_now_iso8601
from mockup_engine.framework.artifacts.run_store import RunStore
from mockup_engine.framework.config import AppConfig


@dataclass
class RunContext:
    run_id: str
    cfg: AppConfig
    store: RunStore
    logger: logging.Logger
    created_at: str


@contextmanager
def open_run(
    cfg: AppConfig,
    *,
    out_dir: str | None = None,
    run_id: str | None = None,
) -> Iterator[RunContext]:
    """Create (or reopen) a run directory and its operational logger for the duration of a command."""
    store = RunStore(out_dir or cfg.out_dir, run_id)
    logger, _ = setup_operational_logger(store.run_dir, store.run_id)
    store.logger = logger
    try:
        store.initialize()
        yield RunContext(
            run_id=store.run_id,
            cfg=cfg,
            store=store,
            logger=logger,
            created_at=utc_now_iso8601(),
        )
    finally:
        close_operational_logger(logger)
