"""Worker configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


# Fallback form ids used when neither config nor form discovery yields one
DEFAULT_BUYER_FORM_ID = "243446517804154"
DEFAULT_SELLER_FORM_ID = "243446518905158"


class Settings(BaseSettings):
    """Worker settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "sqlite:///./formflow.db"

    # Form service (JotForm)
    FORM_SERVICE_BASE_URL: str = "https://api.jotform.com"
    FORM_SERVICE_API_KEY: str = ""
    FORM_SERVICE_PUBLIC_URL: str = "https://form.jotform.com"
    BUYER_FORM_ID: str = ""  # Discovered by title when empty
    SELLER_FORM_ID: str = ""

    # Polling
    POLL_INTERVAL_SECONDS: int = 30
    POLL_FETCH_LIMIT: int = 100
    INITIAL_LOOKBACK_HOURS: int = 24
    MAX_CONCURRENT_FORMS: int = 4
    MAX_CONCURRENT_SUBMISSIONS: int = 4
    AUTO_START_POLLING: bool = True

    # External call timeouts (seconds)
    FETCH_TIMEOUT_SECONDS: float = 20.0
    ANALYZER_TIMEOUT_SECONDS: float = 60.0
    ARTIFACT_TIMEOUT_SECONDS: float = 60.0
    NOTIFIER_TIMEOUT_SECONDS: float = 20.0

    # Retry/backoff for transient HTTP failures within one pipeline run
    RETRY_MAX_ATTEMPTS: int = 3
    RETRY_BASE_DELAY: float = 0.5
    RETRY_MAX_DELAY: float = 4.0

    # Qualification analyzer
    OPENAI_API_KEY: str = ""
    AI_MODEL: str = "gpt-4o-mini"

    # Report artifacts
    REPORT_SERVICE_URL: str = ""  # Local PDF rendering when empty
    REPORT_SERVICE_TOKEN: str = ""
    REPORT_OUTPUT_DIR: str = "./reports"

    # Notifications (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "noreply@example.com"
    AGENT_NOTIFICATION_EMAIL: str = "agent@example.com"
    DEFAULT_AGENT_ID: str = "agent_123"
    DEFAULT_AGENT_NAME: str = "Your Real Estate Agent"

    # Alerting hook for dead-lettered submissions
    ALERT_WEBHOOK_URL: str = ""

    @property
    def configured_form_ids(self) -> dict[str, str]:
        """Explicitly configured form ids keyed by client type."""
        forms: dict[str, str] = {}
        if self.BUYER_FORM_ID:
            forms["buyer"] = self.BUYER_FORM_ID
        if self.SELLER_FORM_ID:
            forms["seller"] = self.SELLER_FORM_ID
        return forms

    def form_url(self, form_id: str) -> str:
        """Public URL for a hosted form."""
        return f"{self.FORM_SERVICE_PUBLIC_URL.rstrip('/')}/{form_id}"


settings = Settings()
