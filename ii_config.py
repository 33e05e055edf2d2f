# ii_config.py: settings, config file loading and logging setup
from __future__ import annotations
import os
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

DEFAULT_CONFIG_PATH = "config.json"

# --- Defaults (overridable from the config file) ---
WET_THRESHOLD_PCT = 80.0        # humidity >= this -> irrigator is skipped
SENSOR_TIMEOUT_S = 5.0
ACTUATOR_TIMEOUT_S = 5.0
TICK_SECOND = 10                # second of the minute the scheduler wakes up
DURATION_MODE = "per_group"

# --- Admin server ---
ADMIN_HOST = "127.0.0.1"
ADMIN_PORT = 5051
ADMIN_API_KEY = "dev-key"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class AdminSettings:
    enabled: bool = True
    host: str = ADMIN_HOST
    port: int = ADMIN_PORT
    api_key: str = ADMIN_API_KEY


@dataclass
class Settings:
    config_path: Path
    test_environment: bool = False
    wet_threshold: float = WET_THRESHOLD_PCT
    sensor_timeout: float = SENSOR_TIMEOUT_S
    actuator_timeout: float = ACTUATOR_TIMEOUT_S
    tick_second: int = TICK_SECOND
    duration_mode: str = DURATION_MODE
    log_level: str = "INFO"
    log_file: Optional[str] = None
    admin: AdminSettings = field(default_factory=AdminSettings)
    # raw system description (sensors, irrigators, cycles)
    system: Dict[str, Any] = field(default_factory=dict)


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in ("1", "true", "yes", "on")


def read_config_file(path: Path) -> Dict[str, Any]:
    """Parse the JSON system description. Raises ValueError on malformed files."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Config file {path} is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return data


def load_settings(config_path: Optional[str] = None,
                  test_environment: Optional[bool] = None,
                  log_level: Optional[str] = None) -> Settings:
    """
    Build Settings from (in increasing priority): built-in defaults, the JSON
    config file, II_* environment variables (.env honoured), explicit arguments.
    """
    load_dotenv()
    path = Path(config_path or os.getenv("II_CONFIG", DEFAULT_CONFIG_PATH))
    data = read_config_file(path)

    admin_raw = data.get("admin") or {}
    admin = AdminSettings(
        enabled=bool(admin_raw.get("enabled", True)),
        host=str(admin_raw.get("host", ADMIN_HOST)),
        port=int(admin_raw.get("port", ADMIN_PORT)),
        api_key=str(admin_raw.get("api_key", ADMIN_API_KEY)),
    )
    if os.getenv("II_API_KEY"):
        admin.api_key = os.environ["II_API_KEY"]
    if os.getenv("II_ADMIN_PORT"):
        admin.port = int(os.environ["II_ADMIN_PORT"])

    settings = Settings(
        config_path=path,
        test_environment=bool(data.get("test_environment", False)) or _env_flag("II_TEST_ENV"),
        wet_threshold=float(data.get("wet_threshold", WET_THRESHOLD_PCT)),
        sensor_timeout=float(data.get("sensor_timeout", SENSOR_TIMEOUT_S)),
        actuator_timeout=float(data.get("actuator_timeout", ACTUATOR_TIMEOUT_S)),
        tick_second=int(data.get("tick_second", TICK_SECOND)),
        duration_mode=str(data.get("duration_mode", DURATION_MODE)),
        log_level=os.getenv("II_LOG_LEVEL", "INFO"),
        log_file=os.getenv("II_LOG_FILE") or None,
        admin=admin,
        system=data,
    )
    if test_environment:
        settings.test_environment = True
    if log_level:
        settings.log_level = log_level
    if not 0 <= settings.tick_second < 60:
        raise ValueError(f"tick_second must be within 0..59, got {settings.tick_second}")
    return settings


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    if log_file:
        handler = logging.FileHandler(log_file, encoding="utf-8")
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
