from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "openai/gpt-4o-mini"
    openrouter_model: str = ""
    planner_model: str = ""  # optional override for question planning only

    # Web search provider
    search_provider: str = "brave"  # brave | tavily | searxng
    brave_api_key: str = ""
    tavily_api_key: str = ""
    searxng_base_url: str = ""
    search_fallback_to_tavily: bool = True
    search_default_language: str = "de-DE"
    search_max_results: int = 10
    search_max_query_chars: int = 400

    # Bounded concurrency + per-call timeouts
    max_parallel_search: int = 4
    max_parallel_vector: int = 8
    max_parallel_llm: int = 2
    search_timeout_seconds: float = 20.0
    vector_timeout_seconds: float = 10.0
    llm_timeout_seconds: float = 120.0

    # Research planning
    max_research_questions: int = 5

    # Vector store / embeddings
    chroma_persist_dir: str = ".cache/chroma"
    chroma_host: str = ""  # set to use a Chroma server instead of the local store
    chroma_port: int = 8000
    local_embed_model: str = "intfloat/multilingual-e5-small"
    local_embed_batch_size: int = 32
    embedding_dimensions: int = 384
    vector_default_min_score: float = 0.3
    vector_default_recall_limit: int = 50
    vector_max_results_per_question: int = 20

    # Collection registry overrides
    collections_config_path: str = ""  # JSON file replacing the built-in registry
    default_collection_ids: list[str] = []

    # Synthesis
    summary_max_sources: int = 5
    dossier_official_sources: int = 3
    dossier_sources_per_category: int = 5
    synthesis_snippet_chars: int = 300
    summary_max_tokens: int = 1500
    dossier_max_tokens: int = 6000

    # App
    cors_origins: str = "http://localhost:3000"
    app_log_level: str = "INFO"
    noisy_log_level: str = "WARNING"
    log_dir: str = "logs"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",")]


settings = Settings()
