from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Dict, List


class Settings(BaseSettings):
    gemini_api_key: str = ""

    # Gemini models (text requests walk text_models in order)
    image_model: str = "gemini-2.0-flash-exp-image-generation"
    text_models: List[str] = [
        "gemini-2.0-flash",
        "gemini-2.0-flash-lite",
        "gemini-1.5-flash",
    ]
    # Requests-per-minute budget per model name; unknown models fall back to default_rpm
    model_rpm: Dict[str, int] = {
        "gemini-2.0-flash-exp-image-generation": 10,
        "gemini-2.0-flash": 15,
        "gemini-2.0-flash-lite": 30,
        "gemini-1.5-flash": 15,
    }
    default_rpm: int = 10
    rate_window_seconds: float = 60.0
    quota_retry_seconds: float = 30.0
    daily_quota_pause_seconds: float = 30 * 60.0

    # Drawing game durations (seconds)
    drawing_round_seconds: int = 45
    drawing_voting_seconds: int = 20
    drawing_results_seconds: int = 8

    # Adventure game durations (seconds)
    adventure_input_seconds: int = 40
    adventure_voting_seconds: int = 15
    adventure_results_seconds: int = 10
    adventure_image_style: str = "fantasy illustration"

    max_ai_players: int = 4
    chat_rate_limit_seconds: float = 1.0
    max_prompt_length: int = 1024
    # Where generated images are written and served from (/generated/...)
    generated_dir: str = "generated"

    # CORS origins; set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
