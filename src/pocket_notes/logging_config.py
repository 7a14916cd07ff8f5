import sys
from pathlib import Path

from loguru import logger

from pocket_notes.settings import Settings


def setup_logging(settings: Settings, log_to_file: bool = True) -> None:
    """
    Configure logging for the application.

    Logs go to stderr (stdout belongs to the MCP stdio transport) and, unless
    disabled, to a rotating file in the data directory.
    """

    # Remove default handler to avoid duplicate logs
    logger.remove()

    # Console handler - for development/debugging
    logger.add(
        sys.stderr,
        level=settings.logging_level,
        format=settings.logging_format,
        colorize=False,
        backtrace=True,
        diagnose=True,
        enqueue=True,
        catch=True,
    )

    if log_to_file:
        log_dir = Path(settings.app_data_dir).joinpath("logs")
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir.joinpath(f"{settings.app_name}.log").as_posix(),
            level=settings.logging_level,
            format=settings.logging_format,
            rotation=settings.logging_rotation,
            retention=settings.logging_retention,
            compression=settings.logging_compression,
            enqueue=True,
            catch=True,
        )

    # Configure common context (can be overridden per module)
    logger.configure(extra={"app": settings.app_name, "version": settings.app_version})

    # Log startup message
    logger.info(
        "Logging system initialized",
        log_level=settings.logging_level,
    )
