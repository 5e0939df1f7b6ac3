"""Root logger setup shared by the CLI and the scheduler daemon."""

import logging
import sys
from pathlib import Path
from typing import Optional

from dropwatch.config import LoggingConfig

DEBUG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"


def resolve_level(
    settings: LoggingConfig,
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    default: Optional[int] = None,
) -> int:
    """Pick the console level: command-line flags win over the settings file."""
    if debug:
        return logging.DEBUG
    if verbose:
        return logging.INFO
    if quiet:
        return logging.ERROR
    if default is not None:
        return default
    level = logging.getLevelName(settings.level.upper())
    return level if isinstance(level, int) else logging.WARNING


def configure_logging(
    settings: Optional[LoggingConfig] = None,
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
    default_level: Optional[int] = None,
) -> int:
    """Configure the root logger.

    Args:
        settings: Logging section of the settings (level, format, file)
        verbose: Log INFO and above on the console
        debug: Log DEBUG and above, with source locations
        quiet: Only log errors on the console
        log_file: File to log to; overrides ``settings.file``. The file
            always receives DEBUG records.
        default_level: Console level when no flag is given; falls back to
            ``settings.level`` when unset

    Returns:
        The console log level in effect
    """
    settings = settings or LoggingConfig()
    level = resolve_level(settings, verbose=verbose, debug=debug, quiet=quiet, default=default_level)
    format_str = DEBUG_FORMAT if debug else settings.format

    handlers: list[logging.Handler] = []

    target = log_file or (Path(settings.file) if settings.file else None)
    if target:
        target.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(target)
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    if not quiet or not target:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        handlers.append(console_handler)

    logging.basicConfig(
        level=logging.DEBUG if target else level,
        format=format_str,
        handlers=handlers,
        force=True,
    )

    logging.getLogger(__name__).debug(
        f"Logging configured: level={logging.getLevelName(level)}, file={target}"
    )
    return level
