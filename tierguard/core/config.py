import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: str = "sqlite:///./tierguard.db"
    TEST_DATABASE_URL: Optional[str] = None
    SEED_DEFAULTS: bool = True

    # Identity (bearer JWT issued by the external identity provider)
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHMS: str = "HS256"  # comma-separated
    JWT_AUDIENCE: Optional[str] = None
    ALLOW_USER_ID_HEADER: bool = True  # X-User-Id fallback (dev/tests)

    # Admin access
    ADMIN_KEY: Optional[str] = None

    # Caching
    USAGE_CACHE_TTL_SECONDS: int = 300
    FEATURE_CACHE_TTL_SECONDS: int = 300

    # Quota accounting
    USAGE_RESET_DAYS: int = 30
    CHARGE_TIMEOUT_SECONDS: float = 5.0
    MONETIZATION_HEADERS_ENABLED: bool = True

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def jwt_algorithms(self) -> list[str]:
        return [a.strip() for a in self.JWT_ALGORITHMS.split(",") if a.strip()]


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("tierguard")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = ["JWT_SECRET", "ADMIN_KEY"]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if cfg.ENV.lower() == "production" and cfg.ALLOW_USER_ID_HEADER:
        message = "ALLOW_USER_ID_HEADER must be disabled in production"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
