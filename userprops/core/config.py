import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import FrozenSet, Optional

DEFAULT_PROTECTED_USER_PROPERTIES = "id,anonymousId"


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    SQL_ECHO: bool = False

    # Reserved user property names (comma-separated)
    PROTECTED_USER_PROPERTIES: str = DEFAULT_PROTECTED_USER_PROPERTIES

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

settings = Settings()


def parse_protected_names(raw: Optional[str]) -> FrozenSet[str]:
    """Split a comma-separated list of reserved names into a frozenset."""
    if raw is None:
        raw = DEFAULT_PROTECTED_USER_PROPERTIES
    return frozenset(name.strip() for name in raw.split(",") if name.strip())


def get_protected_user_properties(settings_obj: Optional[Settings] = None) -> FrozenSet[str]:
    cfg = settings_obj or settings
    return parse_protected_names(getattr(cfg, "PROTECTED_USER_PROPERTIES", None))


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("userprops")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not get_protected_user_properties(cfg):
        log.warning("PROTECTED_USER_PROPERTIES is empty; no property names are reserved")

    return True
