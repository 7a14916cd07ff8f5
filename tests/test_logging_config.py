from __future__ import annotations

from pathlib import Path

from loguru import logger

from pocket_notes.logging_config import setup_logging
from pocket_notes.settings import Settings


def test_setup_logging_writes_to_data_dir(tmp_path) -> None:
    settings = Settings(_env_file=None, app_data_dir=str(tmp_path), logging_level="INFO")

    setup_logging(settings)
    logger.info("hello from test", note_id=1)
    logger.complete()

    log_file = Path(tmp_path, "logs", "pocket-notes.log")
    try:
        assert log_file.exists()
        assert "hello from test" in log_file.read_text(encoding="utf-8")
    finally:
        logger.remove()
