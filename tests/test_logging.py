import json
from pathlib import Path

from mockup_engine.foundation.logging_utils import close_operational_logger, setup_operational_logger
from mockup_engine.framework.artifacts.run_store import RunStore


def test_operational_logger_writes_utf8_run_log(tmp_path: Path):
    logger, log_file = setup_operational_logger(str(tmp_path), "unit")
    logger.info("Saved spot → level P2 é")
    close_operational_logger(logger)

    assert log_file == str(tmp_path / "run.log")
    content = Path(log_file).read_text(encoding="utf-8")
    assert "Operational logging initialized for run unit" in content
    assert "Saved spot → level P2 é" in content
    assert logger.handlers == []


def test_setup_twice_does_not_duplicate_handlers(tmp_path: Path):
    logger, _ = setup_operational_logger(str(tmp_path), "twice")
    logger, _ = setup_operational_logger(str(tmp_path), "twice")
    try:
        assert len(logger.handlers) == 2
        assert logger.propagate is False
    finally:
        close_operational_logger(logger)


def test_run_store_log_appends_jsonl_and_forwards_to_logger(tmp_path: Path):
    logger, log_file = setup_operational_logger(str(tmp_path), "store")
    store = RunStore(str(tmp_path), "store", logger=logger)
    store.log("warn", "style-missing", "Style not found", {"style": "Neon"})
    store.log("info", "generate-start", "Starting image generation")
    close_operational_logger(logger)

    lines = (tmp_path / "store" / "logs.jsonl").read_text(encoding="utf-8").splitlines()
    entries = [json.loads(line) for line in lines]
    assert [entry["step"] for entry in entries] == ["style-missing", "generate-start"]
    assert entries[0]["level"] == "warn"
    assert entries[0]["meta"] == {"style": "Neon"}
    assert entries[1]["meta"] == {}
    assert entries[0]["ts"].endswith("Z")

    content = Path(log_file).read_text(encoding="utf-8")
    assert "WARNING | [style-missing] Style not found" in content
