"""Application configuration with sensible defaults."""
import os
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "deepseek-r1:1.5b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text:latest")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))

# Vector store
COLLECTION_NAME = os.getenv("COLLECTION_NAME", "langchaingo-ollama-rag")

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "1000"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "500"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
SCORE_THRESHOLD = float(os.getenv("SCORE_THRESHOLD", "0.80"))
EMBED_CONCURRENCY = int(os.getenv("EMBED_CONCURRENCY", "8"))

# Generation
TEMPERATURE = float(os.getenv("TEMPERATURE", "0.8"))
PROMPT_STRATEGY = os.getenv("PROMPT_STRATEGY", "conversational")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class Settings(BaseModel):
    """Explicit configuration handed to gateways and pipelines.

    Defaults come from the environment-driven constants above, so
    ``Settings()`` reflects the process environment at import time while
    tests and callers can override any field.
    """

    ollama_base_url: str = OLLAMA_BASE_URL
    chat_model: str = CHAT_MODEL
    embedding_model: str = EMBEDDING_MODEL
    ollama_timeout: float = Field(default=OLLAMA_TIMEOUT, gt=0)

    collection_name: str = COLLECTION_NAME
    data_dir: Path = DATA_DIR

    chunk_size: int = Field(default=CHUNK_SIZE, gt=0)
    chunk_overlap: int = Field(default=CHUNK_OVERLAP, ge=0)
    top_k: int = Field(default=RETRIEVAL_TOP_K, gt=0)
    score_threshold: float = Field(default=SCORE_THRESHOLD, ge=0.0, le=1.0)
    embed_concurrency: int = Field(default=EMBED_CONCURRENCY, gt=0)

    temperature: float = Field(default=TEMPERATURE, ge=0.0, le=1.0)
    prompt_strategy: str = PROMPT_STRATEGY

    @property
    def index_dir(self) -> Path:
        """Directory holding the persisted vector index for this collection."""
        return self.data_dir / self.collection_name


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the default settings instance.

    Returns:
        Settings built from environment defaults
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
