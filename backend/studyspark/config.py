from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".studyspark" / "data"
    sqlite_filename: str = "studyspark.db"
    due_cards_limit: int = 20
    due_cards_max_limit: int = 100
    log_level: str = "warning"

    model_config = {"env_prefix": "STUDYSPARK_"}


settings = Settings()
