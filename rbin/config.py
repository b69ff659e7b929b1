import ipaddress
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3000
DEFAULT_PASTE_DIR = "pastes"
DEFAULT_LOG_LEVEL = "info"
DEFAULT_REQUEST_LOG_LEVEL = "debug"
DEFAULT_MAX_BODY_SIZE = 10 * 1024 * 1024  # 10 MB

LOG_LEVELS = ("critical", "error", "warning", "info", "debug")


@dataclass(frozen=True)
class Settings:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    paste_dir: Path = Path(DEFAULT_PASTE_DIR)
    log_level: str = DEFAULT_LOG_LEVEL
    request_log_level: str = DEFAULT_REQUEST_LOG_LEVEL
    max_body_size: int = DEFAULT_MAX_BODY_SIZE


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from RBIN_* environment variables.

    With no explicit mapping, a .env file in the working directory (if any)
    is loaded into os.environ first. Bad values are logged and replaced by
    their defaults rather than stopping startup.
    """
    if environ is None:
        load_dotenv(find_dotenv(usecwd=True))
        environ = os.environ

    host = environ.get("RBIN_HOST", DEFAULT_HOST)
    try:
        ipaddress.ip_address(host)
    except ValueError as e:
        logger.warning("Invalid RBIN_HOST '%s', using default %s: %s", host, DEFAULT_HOST, e)
        host = DEFAULT_HOST

    port = _int_setting(environ, "RBIN_PORT", DEFAULT_PORT)
    if not 0 <= port <= 65535:
        logger.warning("Invalid RBIN_PORT '%s', using default %s", port, DEFAULT_PORT)
        port = DEFAULT_PORT

    max_body_size = _int_setting(environ, "RBIN_MAX_BODY_SIZE", DEFAULT_MAX_BODY_SIZE)
    if max_body_size <= 0:
        logger.warning("Invalid RBIN_MAX_BODY_SIZE '%s', using default %s", max_body_size, DEFAULT_MAX_BODY_SIZE)
        max_body_size = DEFAULT_MAX_BODY_SIZE

    return Settings(
        host=host,
        port=port,
        paste_dir=Path(environ.get("RBIN_PASTE_DIR", DEFAULT_PASTE_DIR)),
        log_level=_level_setting(environ, "RBIN_LOG_LEVEL", DEFAULT_LOG_LEVEL),
        request_log_level=_level_setting(environ, "RBIN_REQUEST_LOG_LEVEL", DEFAULT_REQUEST_LOG_LEVEL),
        max_body_size=max_body_size,
    )


def _int_setting(environ, name, default):
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        logger.warning("Invalid %s '%s', using default %s: %s", name, raw, default, e)
        return default


def _level_setting(environ, name, default):
    raw = environ.get(name, default).strip().lower()
    if raw not in LOG_LEVELS:
        logger.warning("Invalid %s '%s', using default %s", name, raw, default)
        return default
    return raw
