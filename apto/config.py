from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    telegram_bot_token: str
    allowed_chat_ids: list[int] = []

    @field_validator("allowed_chat_ids", mode="before")
    @classmethod
    def parse_chat_ids(cls, v):
        if isinstance(v, str):
            return [int(x.strip()) for x in v.split(",") if x.strip()]
        if isinstance(v, int):
            return [v]
        return v

    anthropic_api_key: str | None = None
    claude_model: str = "sonnet"
    claude_timeout: int = 60
    analysis_timeout: float = 90.0
    db_path: str = "apto.db"
    storage_key: str = "apto_expenses_v1"
    debug: bool = False


settings = Settings()
