import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        user_id: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.user_id = user_id


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SERVICIOS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "servicios.db"
    database_url = os.getenv("SERVICIOS_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SERVICIOS_TIMEZONE", "America/Bogota")
    csrf_secret = os.getenv(
        "SERVICIOS_CSRF_SECRET",
        "5c1f0d8e2a7b43b6a9e4d1c07f3e8a52b6d9c4e1f0a7b3d8e2c5a9f1b4d7e0c3",
    )
    user_id = int(os.getenv("SERVICIOS_USER_ID", "1"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        user_id=user_id,
    )
