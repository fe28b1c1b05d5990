from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Embedding provider
    openai_api_key: SecretStr = SecretStr("")
    embedding_model: str = "text-embedding-3-small"
    embedding_base_url: str = "https://api.openai.com/v1/embeddings"
    embedding_timeout: float = 60.0

    # Batch / retry tuning
    embedding_batch_size: int = 128
    embedding_max_retries: int = 3
    embedding_retry_base_delay: float = 0.2  # seconds

    # Shared secret expected in the X-KnowledgeIndex-Secret header
    shared_secret: SecretStr = SecretStr("")

    # Blob store root; the index document lives at index/embeddings-metadata.json
    data_root_path: str = "/app/data"

    enable_provider_health_check: bool = True

    # Document ingestion
    chunk_size: int = 2000
    chunk_overlap: int = 200
    document_max_chars: int = 80_000
    transcript_max_chars: int = 24_000

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore"
    )

settings = Settings()
