from typing import Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from config import YamlConfig


class SettingsSchema(BaseModel):
    db_path: str = "ladder.db"
    remote_url: Optional[str] = None
    remote_api_key: Optional[str] = None
    upload_concurrency: int = Field(default=4, ge=1)
    persist_retries: int = Field(default=2, ge=0)
    tick_interval: float = Field(default=1.0, gt=0)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value}")
        return level

    @field_validator("remote_url")
    @classmethod
    def _http_url(cls, value: Optional[str]) -> Optional[str]:
        if value and not value.startswith(("http://", "https://")):
            raise ValueError("remote_url must start with http:// or https://")
        return value


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))


def load_settings(path: str = "ladder.yaml") -> SettingsSchema:
    data = YamlConfig(path).load()
    validate_settings(data)
    return SettingsSchema(**data)
