from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = Path(__file__).resolve().parent.parent / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_ENV_FILE),
        env_file_encoding="utf-8",
    )

    APP_NAME: str = "ControlCompliance"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str

    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    # Catalog import
    CATALOG_PATH: str = str(Path(__file__).resolve().parent.parent.parent / "example-data" / "catalog.json")
    IMPORT_BATCH_SIZE: int = 50
    IMPORT_BATCH_TIMEOUT_SECONDS: float = 30.0
    IMPORT_MAX_CONCURRENT_BATCHES: int = 1
    IMPORT_KEEP_DANGLING_RELATIONS: bool = False

    # Aggregation deadline; None = no deadline
    AGGREGATION_TIMEOUT_SECONDS: float | None = None

    @property
    def cors_origins_list(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]


settings = Settings()
