import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent.parent

# Settings an operator may change at runtime; they win over the environment.
OVERRIDABLE = ("pixgo_api_key", "admin_password")


@dataclass
class Settings:
    database_url: str = "sqlite:///./pixcheckout.db"
    pixgo_api_key: str = ""
    pixgo_api_base: str = "https://pixgo.org/api/v1"
    pixgo_timeout_seconds: float = 15.0
    admin_password: str = "admin"
    jwt_secret: str = ""
    token_ttl_minutes: int = 720
    poll_interval_seconds: float = 5.0
    max_poll_attempts: int = 120
    log_level: str = "INFO"
    overrides_path: Path = BASE_DIR / "settings.json"
    overrides: dict = field(default_factory=dict)


def _read_overrides(path: Path) -> dict:
    if not path.exists():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise RuntimeError(f"Cannot read settings overrides from {path}: {e}") from e
    if not isinstance(data, dict):
        raise RuntimeError(f"Settings overrides in {path} must be a JSON object")
    return {k: v for k, v in data.items() if k in OVERRIDABLE and isinstance(v, str)}


def load_settings(env_file: Path | None = None) -> Settings:
    load_dotenv(dotenv_path=env_file or BASE_DIR / ".env")

    settings = Settings(
        database_url=os.getenv("DATABASE_URL", "").strip() or Settings.database_url,
        pixgo_api_key=os.getenv("PIXGO_API_KEY", "").strip(),
        pixgo_api_base=os.getenv("PIXGO_API_BASE", "").strip() or Settings.pixgo_api_base,
        pixgo_timeout_seconds=float(os.getenv("PIXGO_TIMEOUT_SECONDS", "15")),
        admin_password=os.getenv("ADMIN_PASSWORD", "").strip() or Settings.admin_password,
        jwt_secret=os.getenv("JWT_SECRET", "").strip(),
        token_ttl_minutes=int(os.getenv("TOKEN_TTL_MINUTES", "720")),
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", "5")),
        max_poll_attempts=int(os.getenv("MAX_POLL_ATTEMPTS", "120")),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
        overrides_path=Path(os.getenv("SETTINGS_OVERRIDES_PATH", "").strip() or Settings.overrides_path),
    )

    if settings.poll_interval_seconds <= 0:
        raise RuntimeError("POLL_INTERVAL_SECONDS must be positive")
    if settings.max_poll_attempts <= 0:
        raise RuntimeError("MAX_POLL_ATTEMPTS must be positive")

    for key, value in _read_overrides(settings.overrides_path).items():
        setattr(settings, key, value)
        settings.overrides[key] = value

    if not settings.pixgo_api_key:
        logger.warning("PIXGO_API_KEY is not set: checkout links will be unavailable")
    return settings


def update_settings(settings: Settings, **changes) -> Settings:
    """Apply operator overrides in place and persist them."""
    for key, value in changes.items():
        if key not in OVERRIDABLE:
            raise ValueError(f"Setting '{key}' cannot be changed at runtime")
        if value is None:
            continue
        setattr(settings, key, value)
        settings.overrides[key] = value
    save_settings(settings)
    return settings


def save_settings(settings: Settings) -> None:
    # Only operator overrides are written; env defaults stay in the environment.
    if not settings.overrides and not Path(settings.overrides_path).exists():
        return
    path = Path(settings.overrides_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(settings.overrides, indent=2), encoding="utf-8")
