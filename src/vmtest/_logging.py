"""Logging setup for vmtest.

The library only attaches a NullHandler to the ``vmtest`` logger; handlers
are the application's job. VMTEST_LOG_LEVEL (e.g. "DEBUG") sets the level
without any code changes, and configure_logging() is for CLI entry points.

CLI output format:
    DEBUG [2026-02-25 10:02:54] vmtest.qemu_cmd - message
"""

import logging
import os

import click

LIBRARY_LOGGER_NAME: str = "vmtest"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("VMTEST_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and unknown names (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_LEVEL_STYLES: dict[int, dict[str, object]] = {
    logging.DEBUG: {"dim": True},
    logging.INFO: {},
    logging.WARNING: {"fg": "yellow"},
    logging.ERROR: {"fg": "red"},
    logging.CRITICAL: {"fg": "red", "bold": True},
}


class _ClickHandler(logging.Handler):
    """Write records to stderr through click.echo.

    click strips the ANSI styling when stderr is not a terminal.
    """

    def __init__(self) -> None:
        super().__init__()
        self.formatter = logging.Formatter(fmt=_FMT, datefmt=_DATEFMT)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            style = _LEVEL_STYLES.get(record.levelno, {})
            click.echo(click.style(msg, **style), err=True)  # type: ignore[arg-type]
        except Exception:  # noqa: BLE001
            self.handleError(record)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for the given module name.

    All vmtest modules use this so their loggers sit under ``vmtest``.
    """
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Attach the stderr handler to the library logger and set its level.

    Calling it again does not stack handlers.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"). Overrides VMTEST_LOG_LEVEL.
        quiet: Only report errors. Takes precedence over level.
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _ClickHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_ClickHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
