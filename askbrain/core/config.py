"""Configuration management for the Ask-Brain RAG engine."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load environment variables from .env file (only if accessible)
try:
    load_dotenv()
except (PermissionError, OSError):
    # In sandboxed environments, .env might not be accessible
    # Environment variables should be set directly
    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Supabase configuration (required)
    SUPABASE_URL: str = Field(..., description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role key")

    # Model provider keys
    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key (embeddings)")
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key (generation)")

    # Environment
    RAG_ENV: str = Field(default="dev", description="Environment: dev, staging, prod")
    LOG_LEVEL: str | None = Field(
        default=None, description="Overrides the level derived from RAG_ENV (DEBUG, INFO, ...)"
    )

    # Embedding configuration
    EMBEDDING_PROVIDER: str = Field(
        default="openai", description="Embedding provider: openai or deterministic"
    )
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(
        default=384, description="Embedding vector dimension (must match the corpus index)"
    )

    # Generation configuration
    CHAT_MODEL: str = Field(
        default="claude-haiku-4-5-20251001", description="Model used to answer RAG turns"
    )
    RAG_DEFAULT_MAX_TOKENS: int = Field(default=1024, description="Default max output tokens")
    RAG_DEFAULT_TEMPERATURE: float = Field(default=0.7, description="Default sampling temperature")

    # Retrieval configuration
    RAG_SEARCH_LIMIT: int = Field(default=40, description="Candidates requested from hybrid search")
    RAG_TOP_N: int = Field(default=12, description="Sources kept after reranking")
    RAG_HISTORY_MESSAGES: int = Field(default=10, description="Prior turns included in the prompt")
    RAG_NO_DATA_MESSAGE: str = Field(
        default="No reliable data for this query in LexyHub at the moment.",
        description="Exact refusal phrase returned when evidence is insufficient",
    )
    CAPABILITY_PATTERNS_PATH: str | None = Field(
        default=None, description="Optional JSON file overriding capability trigger patterns"
    )

    # Per-stage deadlines (seconds)
    EMBEDDING_TIMEOUT_SECONDS: float = Field(default=10.0, description="Query embedding deadline")
    SEARCH_TIMEOUT_SECONDS: float = Field(default=8.0, description="Hybrid search deadline")
    GENERATION_TIMEOUT_SECONDS: float = Field(default=45.0, description="Generation deadline")

    # Training data collection
    TRAINING_COLLECTION_ENABLED: bool = Field(
        default=False, description="Allow opted-in users' turns to be captured for fine-tuning"
    )
    TRAINING_QUEUE_SIZE: int = Field(default=100, description="Bounded training queue size")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If required environment variables are missing
    """
    return Settings()
