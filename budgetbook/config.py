import os
from dataclasses import dataclass
from typing import Mapping, Optional

from budgetbook.errors import ConfigurationError
from budgetbook.logging_setup import parse_level

ENVIRONMENTS = ("production", "development")


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    environment: str = "production"
    seed_path: str = "data/seed.json"
    log_level: str = "INFO"
    upcoming_days: int = 7
    currency: str = "IDR"
    mirror_path: Optional[str] = None

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str) -> Optional[str]:
            value = env.get(f"BUDGETBOOK_{name}")
            if value is None or not value.strip():
                return None
            return value.strip()

        environment = (_get("ENV") or "production").lower()
        if environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"BUDGETBOOK_ENV must be one of {ENVIRONMENTS}, got {environment!r}"
            )

        raw_days = _get("UPCOMING_DAYS") or "7"
        try:
            upcoming_days = int(raw_days)
        except ValueError:
            raise ConfigurationError(f"BUDGETBOOK_UPCOMING_DAYS is not a number: {raw_days!r}")
        if upcoming_days < 0:
            raise ConfigurationError("BUDGETBOOK_UPCOMING_DAYS must not be negative")

        log_level = _get("LOG_LEVEL") or "INFO"
        try:
            parse_level(log_level)
        except ValueError as exc:
            raise ConfigurationError(str(exc)) from exc

        database_url = _get("DATABASE_URL") or (env.get("DATABASE_URL") or "").strip() or None

        return cls(
            database_url=database_url,
            environment=environment,
            seed_path=_get("SEED_PATH") or cls.seed_path,
            log_level=log_level,
            upcoming_days=upcoming_days,
            currency=(_get("CURRENCY") or cls.currency).upper(),
            mirror_path=_get("MIRROR_PATH"),
        )
