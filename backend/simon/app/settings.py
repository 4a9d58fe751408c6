"""Match engine process configuration via environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings


class EngineSettings(BaseSettings):
    model_config = {"env_prefix": "SIMON_"}

    log_dir: str = Field(default="backend/logs/simon", min_length=1)
    seed: int | None = None
    mock_tts: bool = True
    mock_ms_per_char: float = Field(default=50, ge=0)
    pause_multiplier: float = Field(default=1.0, ge=0)
    segment_timeout_seconds: float = Field(default=30, gt=0)
    during_line_interval_seconds: float = Field(default=15, ge=0)
    developer_config_path: str | None = None
