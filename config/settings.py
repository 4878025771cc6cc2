"""
Centralized configuration for SupportDesk Chat.

All settings are loaded from environment variables via .env file.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings."""

    # Brand
    brand_name: str = Field(default="SupportDesk", env="BRAND_NAME")

    # OpenAI (OpenRouter-compatible base URL allowed)
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_base_url: Optional[str] = Field(default=None, env="OPENAI_BASE_URL")
    openai_llm_model: str = Field(default="gpt-4o-mini", env="OPENAI_LLM_MODEL")
    openai_embed_model: str = Field(default="text-embedding-3-small", env="OPENAI_EMBED_MODEL")
    max_tokens: int = Field(default=500, env="MAX_TOKENS")
    temperature: float = Field(default=0.7, env="TEMPERATURE")
    custom_system_prompt: Optional[str] = Field(default=None, env="CUSTOM_SYSTEM_PROMPT")

    # Pinecone
    pinecone_api_key: str = Field(default="", env="PINECONE_API_KEY")
    pinecone_index_name: str = Field(default="chatbot-knowledge-base", env="PINECONE_INDEX_NAME")
    top_k: int = Field(default=3, env="TOP_K")
    similarity_threshold: float = Field(default=0.7, env="SIMILARITY_THRESHOLD")

    # AI call handling
    ai_timeout_seconds: float = Field(default=30.0, env="AI_TIMEOUT_SECONDS")
    escalate_on_ai_failure: bool = Field(default=False, env="ESCALATE_ON_AI_FAILURE")

    # Hand-off
    default_priority: str = Field(default="medium", env="DEFAULT_PRIORITY")
    dequeue_on_customer_disconnect: bool = Field(default=False, env="DEQUEUE_ON_CUSTOMER_DISCONNECT")
    low_confidence_threshold: float = Field(default=0.4, env="LOW_CONFIDENCE_THRESHOLD")
    low_confidence_streak: int = Field(default=3, env="LOW_CONFIDENCE_STREAK")
    seed_demo_staff: bool = Field(default=True, env="SEED_DEMO_STAFF")

    # Auth
    jwt_secret_key: str = Field(default="change-me-in-production", env="JWT_SECRET_KEY")
    jwt_algorithm: str = Field(default="HS256", env="JWT_ALGORITHM")
    jwt_expire_minutes: int = Field(default=480, env="JWT_EXPIRE_MINUTES")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="SupportDesk Chat API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000", env="CORS_ORIGINS"
    )
    rate_limit_per_minute: int = Field(default=100, env="RATE_LIMIT_PER_MINUTE")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def ai_enabled(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def knowledge_enabled(self) -> bool:
        return bool(self.pinecone_api_key and self.openai_api_key)


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
