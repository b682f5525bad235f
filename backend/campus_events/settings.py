from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Signing key used only when JWT_SECRET is unset outside production.
DEV_JWT_SECRET = "dev-insecure-jwt-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="APP_ENV")
    port: int = Field(default=8080, validation_alias="PORT")
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    # Console output for local development; JSON everywhere else.
    log_json: bool = Field(default=True, validation_alias="LOG_JSON")

    # CORS / Frontend
    frontend_url: str = Field(default="http://localhost:3000", validation_alias="FRONTEND_URL")
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # Document store
    mongodb_uri: str = Field(default="mongodb://localhost:27017", validation_alias="MONGODB_URI")
    mongodb_db: str = Field(default="campus_events", validation_alias="MONGODB_DB")
    mongodb_timeout_ms: int = Field(default=5000, validation_alias="MONGODB_TIMEOUT_MS")

    # Auth (JWT)
    jwt_secret: str | None = Field(default=None, validation_alias="JWT_SECRET")
    jwt_issuer: str = Field(default="campus-events-api", validation_alias="JWT_ISSUER")
    jwt_audience: str = Field(default="campus-events-clients", validation_alias="JWT_AUDIENCE")
    access_token_ttl_seconds: int = Field(default=3600, validation_alias="ACCESS_TOKEN_TTL_SECONDS")
    refresh_token_ttl_seconds: int = Field(
        default=7 * 24 * 3600, validation_alias="REFRESH_TOKEN_TTL_SECONDS"
    )
    email_verification_ttl_seconds: int = Field(
        default=3600, validation_alias="EMAIL_VERIFICATION_TTL_SECONDS"
    )
    password_reset_ttl_seconds: int = Field(default=3600, validation_alias="PASSWORD_RESET_TTL_SECONDS")

    # Auth (Email allowlist)
    allowed_email_domain: str = Field(default="usiu.ac.ke", validation_alias="ALLOWED_EMAIL_DOMAIN")
    require_email_verification: bool = Field(
        default=True, validation_alias="REQUIRE_EMAIL_VERIFICATION"
    )

    # AWS (assets + email)
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    assets_bucket_name: str | None = Field(default=None, validation_alias="ASSETS_BUCKET_NAME")
    assets_public_base_url: str | None = Field(
        default=None, validation_alias="ASSETS_PUBLIC_BASE_URL"
    )
    email_enabled: bool = Field(default=False, validation_alias="EMAIL_ENABLED")
    email_from: str = Field(default="no-reply@usiu.ac.ke", validation_alias="EMAIL_FROM")

    # Pagination
    default_page_limit: int = Field(default=20, validation_alias="DEFAULT_PAGE_LIMIT")
    max_page_limit: int = Field(default=100, validation_alias="MAX_PAGE_LIMIT")

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        if v in ("test", "testing"):
            return "test"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def signing_secret(self) -> str:
        secret = str(self.jwt_secret or "").strip()
        if secret:
            return secret
        if self.is_production:
            raise RuntimeError("JWT_SECRET is not set")
        return DEV_JWT_SECRET

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/test may run with the dev signing key and a local MongoDB,
        production must be fully configured.
        """
        if not self.is_production:
            return

        missing: list[str] = []

        secret = str(self.jwt_secret or "").strip()
        if not secret or secret == DEV_JWT_SECRET:
            missing.append("JWT_SECRET")
        if not str(self.mongodb_uri or "").strip():
            missing.append("MONGODB_URI")
        if self.email_enabled and not str(self.email_from or "").strip():
            missing.append("EMAIL_FROM")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "frontend": {
                "frontend_url": self.frontend_url,
                "frontend_urls": self.frontend_urls,
            },
            "mongodb": {
                "mongodb_uri_configured": _has(self.mongodb_uri),
                "mongodb_db": self.mongodb_db,
                "mongodb_timeout_ms": self.mongodb_timeout_ms,
            },
            "auth": {
                "jwt_secret_configured": _has(self.jwt_secret),
                "jwt_issuer": self.jwt_issuer,
                "jwt_audience": self.jwt_audience,
                "access_token_ttl_seconds": self.access_token_ttl_seconds,
                "refresh_token_ttl_seconds": self.refresh_token_ttl_seconds,
                "allowed_email_domain": self.allowed_email_domain,
                "require_email_verification": bool(self.require_email_verification),
            },
            "aws": {
                "aws_region": self.aws_region,
                "assets_bucket_name": self.assets_bucket_name,
                "email_enabled": bool(self.email_enabled),
                "email_from": self.email_from if _has(self.email_from) else None,
            },
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


# Backwards-compatible module-level singleton.
settings = get_settings()
