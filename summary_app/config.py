from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="theme-summary", alias="APP_NAME")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    llm_base_url: str = Field(
        default="https://api.openai.com/v1/chat/completions",
        alias="LLM_BASE_URL",
    )
    llm_api_key: SecretStr = Field(default="", alias="LLM_API_KEY")
    report_model_name: str = Field(default="gpt-4o-mini", alias="REPORT_MODEL_NAME")
    report_strong_model_name: str = Field(default="gpt-4o", alias="REPORT_STRONG_MODEL_NAME")
    report_timeout_ms: int = Field(default=120000, alias="REPORT_TIMEOUT_MS")
    report_language: str = Field(default="Japanese", alias="REPORT_LANGUAGE")

    # Self-pacing of outbound completion calls
    llm_pacing_requests: int = Field(default=20, alias="LLM_PACING_REQUESTS")
    llm_pacing_window_seconds: float = Field(default=60.0, alias="LLM_PACING_WINDOW_SECONDS")

    # Extraction
    summary_batch_size: int = Field(default=5, alias="SUMMARY_BATCH_SIZE")
    summary_min_reports: int = Field(default=3, alias="SUMMARY_MIN_REPORTS")
    summary_max_concurrent_batches: int = Field(default=2, alias="SUMMARY_MAX_CONCURRENT_BATCHES")
    summary_batch_failure_threshold: float = Field(default=0.5, alias="SUMMARY_BATCH_FAILURE_THRESHOLD")
    summary_batch_timeout_ms: int = Field(default=90000, alias="SUMMARY_BATCH_TIMEOUT_MS")
    summary_batch_max_retries: int = Field(default=2, alias="SUMMARY_BATCH_MAX_RETRIES")
    summary_backoff_base_seconds: float = Field(default=0.5, alias="SUMMARY_BACKOFF_BASE_SECONDS")
    summary_backoff_max_seconds: float = Field(default=5.0, alias="SUMMARY_BACKOFF_MAX_SECONDS")
    summary_overall_timeout_ms: int = Field(default=600000, alias="SUMMARY_OVERALL_TIMEOUT_MS")

    # Synthesis
    summary_target_length: int = Field(default=20000, alias="SUMMARY_TARGET_LENGTH")
    summary_target_sections: int = Field(default=12, alias="SUMMARY_TARGET_SECTIONS")
    summary_max_expansions: int = Field(default=3, alias="SUMMARY_MAX_EXPANSIONS")
    summary_synthesis_max_retries: int = Field(default=2, alias="SUMMARY_SYNTHESIS_MAX_RETRIES")

    # Themes and features
    summary_theme_similarity: float = Field(default=0.8, alias="SUMMARY_THEME_SIMILARITY")
    summary_quotes_per_insight: int = Field(default=5, alias="SUMMARY_QUOTES_PER_INSIGHT")
    summary_max_features: int = Field(default=10, alias="SUMMARY_MAX_FEATURES")
    summary_feature_personas: int = Field(default=3, alias="SUMMARY_FEATURE_PERSONAS")
    summary_feature_details_length: int = Field(default=200, alias="SUMMARY_FEATURE_DETAILS_LENGTH")


@dataclass(slots=True, frozen=True)
class PipelineConfig:
    """Construction-time knobs for SummaryPipeline and its components."""

    batch_size: int = 5
    min_reports: int = 3
    max_concurrent_batches: int = 2
    batch_failure_threshold: float = 0.5
    batch_timeout_ms: int = 90000
    batch_max_retries: int = 2
    backoff_base_seconds: float = 0.5
    backoff_max_seconds: float = 5.0
    overall_timeout_ms: int = 600000
    target_length: int = 20000
    target_sections: int = 12
    max_expansions: int = 3
    synthesis_max_retries: int = 2
    theme_similarity: float = 0.8
    quotes_per_insight: int = 5
    max_features: int = 10
    feature_personas: int = 3
    feature_details_length: int = 200
    model_name: str = "gpt-4o-mini"
    strong_model_name: str = "gpt-4o"
    report_language: str = "Japanese"

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineConfig:
        return cls(
            batch_size=settings.summary_batch_size,
            min_reports=settings.summary_min_reports,
            max_concurrent_batches=settings.summary_max_concurrent_batches,
            batch_failure_threshold=settings.summary_batch_failure_threshold,
            batch_timeout_ms=settings.summary_batch_timeout_ms,
            batch_max_retries=settings.summary_batch_max_retries,
            backoff_base_seconds=settings.summary_backoff_base_seconds,
            backoff_max_seconds=settings.summary_backoff_max_seconds,
            overall_timeout_ms=settings.summary_overall_timeout_ms,
            target_length=settings.summary_target_length,
            target_sections=settings.summary_target_sections,
            max_expansions=settings.summary_max_expansions,
            synthesis_max_retries=settings.summary_synthesis_max_retries,
            theme_similarity=settings.summary_theme_similarity,
            quotes_per_insight=settings.summary_quotes_per_insight,
            max_features=settings.summary_max_features,
            feature_personas=settings.summary_feature_personas,
            feature_details_length=settings.summary_feature_details_length,
            model_name=settings.report_model_name,
            strong_model_name=settings.report_strong_model_name,
            report_language=settings.report_language,
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    settings = Settings()
    if settings.report_timeout_ms <= 0:
        raise ValueError("REPORT_TIMEOUT_MS must be greater than 0")
    if settings.llm_pacing_requests <= 0:
        raise ValueError("LLM_PACING_REQUESTS must be greater than 0")
    if settings.llm_pacing_window_seconds <= 0:
        raise ValueError("LLM_PACING_WINDOW_SECONDS must be greater than 0")
    if settings.summary_batch_size <= 0:
        raise ValueError("SUMMARY_BATCH_SIZE must be greater than 0")
    if settings.summary_min_reports <= 0:
        raise ValueError("SUMMARY_MIN_REPORTS must be greater than 0")
    if settings.summary_max_concurrent_batches <= 0:
        raise ValueError("SUMMARY_MAX_CONCURRENT_BATCHES must be greater than 0")
    if not 0.0 <= settings.summary_batch_failure_threshold < 1.0:
        raise ValueError("SUMMARY_BATCH_FAILURE_THRESHOLD must be in [0, 1)")
    if settings.summary_batch_max_retries < 0:
        raise ValueError("SUMMARY_BATCH_MAX_RETRIES must be >= 0")
    if settings.summary_backoff_max_seconds < settings.summary_backoff_base_seconds:
        raise ValueError("SUMMARY_BACKOFF_MAX_SECONDS must be >= SUMMARY_BACKOFF_BASE_SECONDS")
    if settings.summary_overall_timeout_ms <= 0:
        raise ValueError("SUMMARY_OVERALL_TIMEOUT_MS must be greater than 0")
    if settings.summary_target_length <= 0:
        raise ValueError("SUMMARY_TARGET_LENGTH must be greater than 0")
    if settings.summary_target_sections <= 0:
        raise ValueError("SUMMARY_TARGET_SECTIONS must be greater than 0")
    if settings.summary_max_expansions < 0:
        raise ValueError("SUMMARY_MAX_EXPANSIONS must be >= 0")
    if settings.summary_synthesis_max_retries < 0:
        raise ValueError("SUMMARY_SYNTHESIS_MAX_RETRIES must be >= 0")
    if not 0.0 < settings.summary_theme_similarity <= 1.0:
        raise ValueError("SUMMARY_THEME_SIMILARITY must be in (0, 1]")
    return settings
