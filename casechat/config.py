from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    gemini_api_key: str = ""
    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "info"
    cases_dir: Path = Path("case_files")
    records_dir: Path = Path("records")
    default_chat_model: str = "gemini-2.5-flash"
    default_eval_model: str = "gemini-2.5-flash"
    retry_delay_seconds: float = 25.0
    chat_max_tokens: int = 1024
    eval_max_tokens: int = 2048
    temperature: float | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
