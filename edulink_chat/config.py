"""Application configuration using Pydantic."""
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):

    app_name: str = "edulink-chat"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_db_name: str = "edulink"
    redis_url: Optional[str] = None

    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"

    log_level: str = "INFO"
    message_max_length: int = 4000

    realtime_channel_prefix: str = "realtime"
    reconnect_base_delay: float = 0.5
    reconnect_max_delay: float = 30.0
    reconnect_max_attempts: Optional[int] = None

    model_config = {
        "env_file": ".env",
        "extra": "ignore",
    }


settings = Settings()
