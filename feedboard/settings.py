from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Configuration file
    config_path: str = Field(default="config.yaml", alias="CONFIG_PATH")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # HTTP surface
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


global_settings = Settings()
