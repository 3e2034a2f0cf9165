import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        data_dir: Path,
        database_url: str,
        session_secret: str,
        session_max_age_days: int,
        legacy_owner_username: Optional[str],
        legacy_owner_password: Optional[str],
        log_level: str,
    ) -> None:
        self.data_dir = data_dir
        self.database_url = database_url
        self.session_secret = session_secret
        self.session_max_age_days = session_max_age_days
        self.legacy_owner_username = legacy_owner_username
        self.legacy_owner_password = legacy_owner_password
        self.log_level = log_level

    @property
    def legacy_owner_configured(self) -> bool:
        return bool(self.legacy_owner_username and self.legacy_owner_password)

    @property
    def session_max_age_secs(self) -> int:
        return self.session_max_age_days * 24 * 3600


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    session_secret = os.getenv(
        "LEDGER_SESSION_SECRET",
        "5f0c2d8e6b1a4b7f9c3e2a1d0b8c7e6f5a4d3c2b1a0f9e8d7c6b5a4f3e2d1c0b",
    )
    session_max_age_days = int(os.getenv("LEDGER_SESSION_MAX_AGE_DAYS", "7"))
    legacy_owner_username = os.getenv("LEDGER_LEGACY_OWNER_USERNAME") or None
    legacy_owner_password = os.getenv("LEDGER_LEGACY_OWNER_PASSWORD") or None
    log_level = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
    return Settings(
        data_dir=data_dir,
        database_url=database_url,
        session_secret=session_secret,
        session_max_age_days=session_max_age_days,
        legacy_owner_username=legacy_owner_username,
        legacy_owner_password=legacy_owner_password,
        log_level=log_level,
    )
