"""loguru sinks for the Garmin trainer service.

Every sink goes through `mask_secrets` so OAuth tokens, PKCE verifiers and
bearer headers never reach stderr or the log file in clear.
"""

import re
import sys
from pathlib import Path

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"
MASK = "***"

_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?i)((?:access_token|refresh_token|code_verifier|client_secret)[\"']?\s*[:=]\s*[\"']?)[^\s\"'&,}]+"),
)


def mask_secrets(message: str) -> str:
    for pattern in _SECRET_PATTERNS:
        message = pattern.sub(rf"\g<1>{MASK}", message)
    return message


def _patch_record(record) -> None:
    record["message"] = mask_secrets(record["message"])


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Replace loguru's default sink with the service sinks.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: LOG_FILE path; console only when empty
        rotation: LOG_ROTATION, size or age at which the file rolls over
        retention: LOG_RETENTION, how long rolled files are kept
    """
    logger.remove()
    logger.configure(patcher=_patch_record)

    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        # diagnose=False: token values show up in frame locals
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            backtrace=True,
            diagnose=False,
        )

    logger.info(f"Logger initialized with level={level} file={log_file or '-'}")
