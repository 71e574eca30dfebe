"""Application configuration using environment variables.

The settings defined here control the behaviour of the question answering
service.  Defaults are provided for all options so that the application can
run without a .env file, but any value can be overridden by setting
environment variables.  See ``Settings`` for a description of each field.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Ollama configuration
    ollama_host: str = "http://ollama:11434"
    ollama_embed_model: str = "embeddinggemma:latest"
    ollama_gen_model: str = "llama3.2:latest"

    # Embeddings
    embed_dim: int = 768
    embed_retries: int = 1  # extra attempts on transient embedding failures

    # Storage
    lancedb_uri: str = "/data/lancedb"

    # Chunking (ingestion)
    chunk_size: int = 1400
    chunk_overlap: int = 200

    # Retrieval
    retrieval_limit: int = 10
    vector_over_fetch: int = 4  # multiple of limit pulled before re-ranking
    lexical_max_tokens: int = 5
    lexical_min_hits: int = 3

    # Evidence filter
    evidence_max_keep: int = 8
    use_case_min_overlap: int = 1  # shared key terms needed for suitability evidence
    constraint_term_ratio: float = 0.5

    # LLM generation
    reformulate_temperature: float = 0.0
    strict_temperature: float = 0.0
    permissive_temperature: float = 0.2

    # Timeouts (seconds)
    llm_timeout: float = 60.0
    embed_timeout: float = 20.0
    reformulate_timeout: float = 15.0
    store_timeout: float = 8.0

    # Dev tooling
    dev_mode: bool = False

    # Logging
    log_level: str = "INFO"


settings = Settings()
