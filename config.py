import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        auth_secret: str,
        token_max_age_hours: int,
        completion_api_key: str,
        completion_base_url: str,
        completion_model: str,
        completion_timeout_secs: float,
        cors_origins: list[str],
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.auth_secret = auth_secret
        self.token_max_age_hours = token_max_age_hours
        self.completion_api_key = completion_api_key
        self.completion_base_url = completion_base_url
        self.completion_model = completion_model
        self.completion_timeout_secs = completion_timeout_secs
        self.cors_origins = cors_origins


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINAI_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finai.db"
    database_url = os.getenv("FINAI_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINAI_TIMEZONE", "Europe/Berlin")
    auth_secret = os.getenv(
        "FINAI_AUTH_SECRET",
        "3f9a1c0d7e2b48c6a5d4e3f2b1a09876c5d4e3f2a1b0c9d8e7f6a5b4c3d2e1f0",
    )
    token_max_age_hours = int(os.getenv("FINAI_TOKEN_MAX_AGE_HOURS", "168"))
    completion_api_key = os.getenv("FINAI_COMPLETION_API_KEY", "")
    completion_base_url = os.getenv(
        "FINAI_COMPLETION_BASE_URL", "https://api.openai.com/v1"
    )
    completion_model = os.getenv("FINAI_COMPLETION_MODEL", "gpt-4o-mini")
    completion_timeout_secs = float(os.getenv("FINAI_COMPLETION_TIMEOUT_SECS", "30"))
    cors_origins = [
        origin.strip()
        for origin in os.getenv("FINAI_CORS_ORIGINS", "*").split(",")
        if origin.strip()
    ]
    return Settings(
        database_url=database_url,
        timezone=timezone,
        auth_secret=auth_secret,
        token_max_age_hours=token_max_age_hours,
        completion_api_key=completion_api_key,
        completion_base_url=completion_base_url,
        completion_model=completion_model,
        completion_timeout_secs=completion_timeout_secs,
        cors_origins=cors_origins,
    )
