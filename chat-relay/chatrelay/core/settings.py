# chatrelay/core/settings.py
from __future__ import annotations

from functools import lru_cache
from typing import List, Optional, Union

from pydantic import AnyUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_SYSTEM_PROMPT = (
    "Given the following conversation, relevant context, and a follow up question, "
    "reply with an answer to the current question the user is asking. "
    "Return only your response to the question given the above information "
    "following the users instructions as needed."
)


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    app_env: str = "dev"
    app_name: str = "Workspace Chat Relay"
    app_host: str = "127.0.0.1"
    app_port: int = 8000

    log_level: str = "INFO"
    db_url: str = "sqlite:///data/app.db"

    # Upstream LLM (OpenAI-compatible HTTP API)
    llm_provider: str = Field(default="openai", validation_alias="LLM_PROVIDER")
    llm_base_url: Optional[Union[AnyUrl, str]] = Field(
        default="http://127.0.0.1:1234", validation_alias="LLM_BASE_URL"
    )
    llm_api_key: Optional[str] = Field(default=None, validation_alias="LLM_API_KEY")
    llm_timeout_sec: float = Field(default=60.0, validation_alias="LLM_TIMEOUT_SEC")
    default_chat_model: str = Field(default="qwen2.5-instruct", validation_alias="DEFAULT_CHAT_MODEL")

    # Workspace defaults
    default_temperature: float = Field(default=0.7, validation_alias="DEFAULT_TEMPERATURE")
    default_history_count: int = Field(default=20, validation_alias="DEFAULT_HISTORY_COUNT")
    default_system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, validation_alias="DEFAULT_SYSTEM_PROMPT")

    # Access
    multi_user_mode: bool = Field(default=False, validation_alias="MULTI_USER_MODE")
    api_keys: str = Field(default="", validation_alias="API_KEYS")  # comma separated
    cors_allowed_origins: str = Field(default="*", validation_alias="CORS_ALLOWED_ORIGINS")

    # Event log sink (JSON lines, append only)
    event_log_path: str = Field(default="logs/chat.log", validation_alias="EVENT_LOG_PATH")

    # Threads
    thread_name_max_chars: int = Field(default=22, validation_alias="THREAD_NAME_MAX_CHARS")

    # "prefer_upstream" | "max"
    usage_completion_policy: str = Field(default="prefer_upstream", validation_alias="USAGE_COMPLETION_POLICY")

    @property
    def db_dialect(self) -> str:
        return self.db_url.split(":", 1)[0] if ":" in self.db_url else self.db_url

    @property
    def api_key_list(self) -> List[str]:
        return [k.strip() for k in self.api_keys.split(",") if k.strip()]

    @property
    def cors_origin_list(self) -> List[str]:
        return [o.strip() for o in self.cors_allowed_origins.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return AppSettings()
