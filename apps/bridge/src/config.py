import io
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import dotenv_values

from heartbeat import DEFAULT_CHECK_INTERVAL, DEFAULT_TIMEOUT

DEFAULT_HTTP_HOST = "127.0.0.1"
DEFAULT_HTTP_PORT = 19800
DEFAULT_MAX_PORT_ATTEMPTS = 100
DEFAULT_SECRET_CODE = "dayz"
DEFAULT_ENV_FILE = ".env"
DEFAULT_LOG_LEVEL = "INFO"

logger = logging.getLogger(__name__)


@dataclass
class Settings:
    host: str = DEFAULT_HTTP_HOST
    port: int = DEFAULT_HTTP_PORT
    max_port_attempts: int = DEFAULT_MAX_PORT_ATTEMPTS
    config_file: Optional[Path] = None
    secret_code: str = DEFAULT_SECRET_CODE
    heartbeat_interval: float = DEFAULT_CHECK_INTERVAL
    heartbeat_timeout: float = DEFAULT_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL


# ---------------------------------------------------------------------------
# .env handling
# ---------------------------------------------------------------------------

def load_env_file(path) -> dict:
    """
    Parse a KEY=VALUE file. Blank lines, comments and lines without a value
    are skipped; the first definition of a key wins. A missing file gives {}.
    """
    path = Path(path)
    if not path.is_file():
        return {}

    values: dict = {}
    # one line at a time so an earlier definition is never replaced
    for line in path.read_text(encoding="utf-8").splitlines():
        parsed = dotenv_values(stream=io.StringIO(line), interpolate=False)
        for key, value in parsed.items():
            if key and value:
                values.setdefault(key, value)
    return values


def apply_env(values: dict) -> None:
    """Copy `values` into os.environ without overwriting variables already set."""
    for key, value in values.items():
        if not os.environ.get(key):
            os.environ[key] = value


# ---------------------------------------------------------------------------
# Port descriptor read by the game to find the bridge
# ---------------------------------------------------------------------------

def default_config_dir() -> Path:
    return Path(os.environ.get("LOCALAPPDATA", "")) / "DayZ" / "RadioVOIP"


def default_config_file() -> Path:
    return default_config_dir() / "config.json"


def port_url(port: int) -> str:
    return f"http://{DEFAULT_HTTP_HOST}:{port}"


def write_port_descriptor(path, port: int) -> bool:
    """Overwrite `path` with {"port": ..., "url": ...}; returns False on failure."""
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps({"port": port, "url": port_url(port)}, indent=2), encoding="utf-8")
    except OSError:
        logger.exception("Could not write port descriptor to %s", path)
        return False
    logger.info("Port descriptor written: %s", path)
    return True


def read_port_descriptor(path) -> Optional[dict]:
    path = Path(path)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
