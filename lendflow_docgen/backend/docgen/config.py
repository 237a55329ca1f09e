from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./lendflow_docgen.db"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    decision_version: str = "2026-10-01.v1"

    # ---- Pipeline ----
    ai_step_timeout_seconds: float = 180.0
    deterministic_step_timeout_seconds: float = 30.0
    error_message_max_len: int = 500
    placeholder_error_max_len: int = 200
    # slack on top of the summed unit limits before a running run counts as lost
    stale_run_grace_seconds: float = 120.0
    # inline: API runs the pipeline in a background task; celery: enqueue on the pipelines queue
    pipeline_execution: str = "inline"

    # ---- Prose generation (OpenAI-compatible chat completions) ----
    prose_base_url: str = "http://localhost:1234/v1"
    prose_model: str = "local-model"
    prose_api_key: str | None = None
    prose_temperature: float = 0.2
    prose_request_timeout_seconds: float = 170.0

    # ---- Artifact storage ----
    artifact_root: str = "./artifacts"

    # ---- Market rates (FRED) ----
    fred_api_key: str | None = None
    fred_base_url: str = "https://api.stlouisfed.org/fred"
    market_rate_ttl_seconds: int = 24 * 60 * 60
    apor_spread_over_treasury: float = 0.0175

    # ---- Underwriting defaults ----
    dscr_min: float = 1.20
    max_ltv: float = 0.80
    max_term_months: int = 360

    # ---- Dev auth headers ----
    dev_header_org_slug: str = "X-Org-Slug"
    dev_header_user_email: str = "X-User-Email"

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        if env in ("prod", "production"):
            origins = self.cors_allow_origins
            if origins == "*" or origins == ["*"] or (isinstance(origins, str) and "*" in origins):
                raise ValueError("SECURITY: cors_allow_origins wildcard is not allowed in prod")
        if self.ai_step_timeout_seconds <= 0 or self.deterministic_step_timeout_seconds <= 0:
            raise ValueError("step timeouts must be positive")


settings = Settings()
