"""Logging helpers for the per-run operational log."""

from __future__ import annotations

import logging
import os

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"


def setup_operational_logger(log_dir: str, run_id: str) -> tuple[logging.Logger, str]:
    """
    Configure a logger that writes an operational log for traceability.
    Logs go to both stderr and a UTF-8 ``run.log`` file under the provided directory.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_file = os.path.join(log_dir, "run.log")

    logger = logging.getLogger(f"mockup_engine.{run_id}")
    logger.setLevel(logging.DEBUG)
    close_operational_logger(logger)

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(logging.INFO)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False

    logger.info("Operational logging initialized for run %s", run_id)
    logger.debug("Operational log file: %s", log_file)

    return logger, log_file


def close_operational_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            logger.removeHandler(handler)
