# config.py
# Runtime settings. Values come from the environment, with a local .env
# file loaded first. No other module reads os.environ directly.

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

DEFAULT_LLM_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_RECOVERY_MODEL = "anthropic/claude-3.5-haiku"


class Settings(BaseModel):
    history_size: int = Field(default=100, gt=0)
    recovery_model: str = DEFAULT_RECOVERY_MODEL
    llm_base_url: str = DEFAULT_LLM_BASE_URL
    llm_api_key: str | None = None
    recovery_temperature: float = 0.2
    recovery_max_tokens: int = 500
    workspace: str = "./workspace"
    log_level: str = "INFO"
    log_format: str = "console"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables, skipping unset ones."""
        env = {
            "history_size": os.getenv("PLAN_RUNTIME_HISTORY_SIZE"),
            "recovery_model": os.getenv("PLAN_RUNTIME_RECOVERY_MODEL"),
            "llm_base_url": os.getenv("PLAN_RUNTIME_LLM_BASE_URL"),
            "llm_api_key": os.getenv("OPENROUTER_API_KEY"),
            "recovery_temperature": os.getenv("PLAN_RUNTIME_RECOVERY_TEMPERATURE"),
            "recovery_max_tokens": os.getenv("PLAN_RUNTIME_RECOVERY_MAX_TOKENS"),
            "workspace": os.getenv("PLAN_RUNTIME_WORKSPACE"),
            "log_level": os.getenv("LOG_LEVEL"),
            "log_format": os.getenv("LOG_FORMAT"),
        }
        return cls.model_validate({k: v for k, v in env.items() if v is not None})
