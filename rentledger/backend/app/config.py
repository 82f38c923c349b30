from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ---- App ----
    app_env: str = "local"  # local|dev|prod
    database_url: str = "sqlite:///./rentledger.db"
    api_version: str = "2025-01.v1"

    # ---- CORS (used by main.py) ----
    cors_allow_origins: list[str] | str = ["*"]

    # ---- Auth (identity lives in the external provider) ----
    auth_mode: str = "dev"  # dev|jwt
    dev_auto_provision: bool = True

    # Dev header names
    dev_header_org_slug: str = "X-Org-Slug"
    dev_header_user_email: str = "X-User-Email"
    dev_header_user_role: str = "X-User-Role"

    # Provider-issued tokens
    jwt_secret: str = "dev-change-me"
    jwt_algorithm: str = "HS256"

    # ---- Ledger ----
    default_rent_due_day: int = 5
    charge_generation_day: int = 1

    # ---- Mobile money matching ----
    phone_country_code: str = "254"

    # ---- Celery ----
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    charge_task_max_retries: int = 3
    charge_task_retry_base_seconds: int = 30

    def model_post_init(self, __context) -> None:
        env = (self.app_env or "local").strip().lower()
        is_prod = env in ("prod", "production")

        if is_prod and (self.auth_mode or "").strip().lower() == "dev":
            raise ValueError("SECURITY: auth_mode=dev is not allowed in prod")

        if not 1 <= int(self.default_rent_due_day) <= 31:
            raise ValueError("default_rent_due_day must be between 1 and 31")
        if not 1 <= int(self.charge_generation_day) <= 28:
            raise ValueError("charge_generation_day must be between 1 and 28")


settings = Settings()
