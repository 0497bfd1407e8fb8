"""
Centralized configuration for the Carrera Cars lead bot.

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

    # Brand / persona
    brand_name: str = Field(default="Carrera Cars", env="BRAND_NAME")
    agent_name: str = Field(default="Pedro", env="AGENT_NAME")

    # AWS / Bedrock
    aws_region: str = Field(default="us-east-1", env="AWS_REGION")
    bedrock_embed_model_id: str = Field(
        default="amazon.titan-embed-text-v2:0", env="BEDROCK_EMBED_MODEL_ID"
    )
    bedrock_llm_model_id: str = Field(
        default="us.anthropic.claude-sonnet-4-20250514-v1:0", env="BEDROCK_LLM_MODEL_ID"
    )

    # OpenAI
    openai_api_key: Optional[str] = Field(default=None, env="OPENAI_API_KEY")
    openai_embed_model: str = Field(default="text-embedding-3-small", env="OPENAI_EMBED_MODEL")
    openai_llm_model: str = Field(default="gpt-4o-mini", env="OPENAI_LLM_MODEL")

    # LLM provider selection
    llm_provider: str = Field(default="bedrock", env="LLM_PROVIDER")  # bedrock | openai
    max_tokens: int = Field(default=1024, env="MAX_TOKENS")
    temperature: float = Field(default=0.7, env="TEMPERATURE")

    # Pinecone
    pinecone_api_key: str = Field(default="", env="PINECONE_API_KEY")
    pinecone_index_name: str = Field(default="carrera-leadbot", env="PINECONE_INDEX_NAME")
    pinecone_cloud: str = Field(default="aws", env="PINECONE_CLOUD")
    pinecone_region: str = Field(default="us-east-1", env="PINECONE_REGION")

    # Retrieval
    retrieval_top_k: int = Field(default=3, env="RETRIEVAL_TOP_K")
    history_limit: int = Field(default=10, env="HISTORY_LIMIT")
    embedding_cache_size: int = Field(default=500, env="EMBEDDING_CACHE_SIZE")

    # WhatsApp Cloud API
    whatsapp_access_token: str = Field(default="", env="WHATSAPP_ACCESS_TOKEN")
    whatsapp_phone_number_id: str = Field(default="", env="WHATSAPP_PHONE_NUMBER_ID")
    whatsapp_webhook_verify_token: str = Field(default="", env="WHATSAPP_WEBHOOK_VERIFY_TOKEN")
    whatsapp_api_version: str = Field(default="v21.0", env="WHATSAPP_API_VERSION")

    # Facebook Lead Ads
    facebook_webhook_verify_token: str = Field(default="", env="FACEBOOK_WEBHOOK_VERIFY_TOKEN")
    facebook_access_token: str = Field(default="", env="FACEBOOK_ACCESS_TOKEN")

    # Typing delay (seconds)
    typing_delay_per_char: float = Field(default=0.05, env="TYPING_DELAY_PER_CHAR")
    typing_delay_min: float = Field(default=2.0, env="TYPING_DELAY_MIN")
    typing_delay_max: float = Field(default=15.0, env="TYPING_DELAY_MAX")

    # Funnel / follow-ups
    escalation_follow_up_hours: int = Field(default=24, env="ESCALATION_FOLLOW_UP_HOURS")
    follow_up_threshold_hours: int = Field(default=24, env="FOLLOW_UP_THRESHOLD_HOURS")
    max_follow_ups: int = Field(default=3, env="MAX_FOLLOW_UPS")
    welcome_message_enabled: bool = Field(default=True, env="WELCOME_MESSAGE_ENABLED")
    dedupe_inbound_messages: bool = Field(default=False, env="DEDUPE_INBOUND_MESSAGES")

    # Escalation email
    manager_email: Optional[str] = Field(default=None, env="MANAGER_EMAIL")
    sendgrid_api_key: Optional[str] = Field(default=None, env="SENDGRID_API_KEY")
    email_from: str = Field(default="bot@carreracars.es", env="EMAIL_FROM")
    ses_enabled: bool = Field(default=False, env="SES_ENABLED")

    # Scheduling
    cron_secret: Optional[str] = Field(default=None, env="CRON_SECRET")

    # Database
    database_url: Optional[str] = Field(default=None, env="DATABASE_URL")
    default_tenant_id: str = Field(default="default", env="DEFAULT_TENANT_ID")

    # API
    api_host: str = Field(default="0.0.0.0", env="API_HOST")
    api_port: int = Field(default=8000, env="API_PORT")
    api_title: str = Field(default="Carrera Cars Lead Bot API", env="API_TITLE")
    api_version: str = Field(default="1.0.0", env="API_VERSION")
    cors_origins: str = Field(default="*", env="CORS_ORIGINS")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    debug: bool = Field(default=False, env="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"

    @property
    def is_bedrock(self) -> bool:
        return self.llm_provider.lower() == "bedrock"

    @property
    def is_openai(self) -> bool:
        return self.llm_provider.lower() == "openai"

    @property
    def embed_model_id(self) -> str:
        if self.is_openai:
            return self.openai_embed_model
        return self.bedrock_embed_model_id

    @property
    def llm_model_id(self) -> str:
        if self.is_openai:
            return self.openai_llm_model
        return self.bedrock_llm_model_id

    @property
    def cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
