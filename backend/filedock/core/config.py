from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    app_name: str = "filedock"
    debug: bool = False

    # Storage
    root_dir: Path = Path(__file__).resolve().parent.parent.parent / "data" / "resources"
    permanent_subdir: str = "permanent"
    temporary_subdir: str = "temporary"
    upload_limit_bytes: int = 1024 * 1024 * 1024

    # Retention
    trash_retention_days: int = 30
    temporary_retention_hours: int = 72
    upload_retention_hours: int = 6
    sweep_interval_seconds: int = 3600

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    cors_origins: list[str] = ["*"]

    model_config = {
        "env_file": str(Path(__file__).resolve().parent.parent.parent / ".env"),
        "env_prefix": "FILEDOCK_",
    }


settings = Settings()
