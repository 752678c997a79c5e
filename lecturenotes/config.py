from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # LLM backend
    llm_provider: str = "groq"
    groq_api_key: str = "gsk_placeholder"
    default_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.7
    llm_max_tokens: int = 8192
    llm_max_retries: int = 3

    # Segmentation
    segment_minutes: int = 30
    segment_char_budget: int = 10000

    # Chapter proposal / merge
    chapter_batch_size: int = 3
    chapter_batch_delay_ms: int = 1000
    duplicate_window_seconds: int = 120

    # Deep dive
    min_slice_chars: int = 100
    proportional_overlap_chars: int = 500
    context_summary_chars: int = 600
    title_excerpt_chars: int = 3000

    # Correction
    correction_enabled: bool = False
    correction_batch_size: int = 8
    correction_batch_delay_ms: int = 100
    correction_max_segment_length: int = 2500

    # Storage
    db_path: str = "lecture_notes.db"
    exports_root: str = "exports"

    # Server
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    model_config = {"env_file": ".env", "extra": "ignore"}
