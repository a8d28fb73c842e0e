import os
from pydantic import BaseModel

class Settings(BaseModel):
    # Basic
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    UF_VALUE_CLP: float = float(os.getenv("UF_VALUE_CLP", "39250"))

    # Models
    MODEL_PROVIDER: str = os.getenv("MODEL_PROVIDER", "mock")  # mock | openai

    # LLM
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_MAX_TOKENS: int = int(os.getenv("OPENAI_MAX_TOKENS", "8000"))
    OPENAI_TEMPERATURE: float = float(os.getenv("OPENAI_TEMPERATURE", "0.3"))
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "120"))

    # Model client resilience
    MODEL_MAX_RETRIES: int = int(os.getenv("MODEL_MAX_RETRIES", "3"))
    MODEL_BACKOFF_BASE_SECONDS: float = float(os.getenv("MODEL_BACKOFF_BASE_SECONDS", "2"))
    MODEL_BACKOFF_MAX_SECONDS: float = float(os.getenv("MODEL_BACKOFF_MAX_SECONDS", "30"))
    BREAKER_THRESHOLD: int = int(os.getenv("BREAKER_THRESHOLD", "5"))
    BREAKER_COOLDOWN_SECONDS: float = float(os.getenv("BREAKER_COOLDOWN_SECONDS", "300"))
    TOKEN_BUDGET_PER_WINDOW: int = int(os.getenv("TOKEN_BUDGET_PER_WINDOW", "50000"))
    TOKEN_BUDGET_WINDOW_SECONDS: float = float(os.getenv("TOKEN_BUDGET_WINDOW_SECONDS", "3600"))

    # Data providers
    EXTRACTOR_PROVIDER: str = os.getenv("EXTRACTOR_PROVIDER", "mock")  # mock | http
    EXTRACTOR_BASE_URL: str | None = os.getenv("EXTRACTOR_BASE_URL")
    SEARCH_PROVIDER: str = os.getenv("SEARCH_PROVIDER", "mock")        # mock | http
    SEARCH_BASE_URL: str | None = os.getenv("SEARCH_BASE_URL")
    LOAN_PROVIDER: str = os.getenv("LOAN_PROVIDER", "mock")            # mock | http
    LOAN_BASE_URL: str | None = os.getenv("LOAN_BASE_URL")

    # Timeouts (seconds)
    EXTRACTOR_TIMEOUT_SECONDS: float = float(os.getenv("EXTRACTOR_TIMEOUT_SECONDS", "45"))
    SEARCH_TIMEOUT_SECONDS: float = float(os.getenv("SEARCH_TIMEOUT_SECONDS", "60"))
    LOAN_TIMEOUT_SECONDS: float = float(os.getenv("LOAN_TIMEOUT_SECONDS", "90"))
    REPORT_TIMEOUT_SECONDS: float = float(os.getenv("REPORT_TIMEOUT_SECONDS", "300"))

    # Search
    MAX_COMPARABLES: int = int(os.getenv("MAX_COMPARABLES", "15"))
    MAX_SEARCH_PAGES: int = int(os.getenv("MAX_SEARCH_PAGES", "2"))
    SUPPORTED_DOMAINS: str = os.getenv(
        "SUPPORTED_DOMAINS",
        "casa.mercadolibre.cl,mercadolibre.cl,portalinmobiliario.com,www.portalinmobiliario.com",
    )

    # CORS
    ALLOW_ORIGINS: str = os.getenv("ALLOW_ORIGINS", "*")

    # Metrics
    PROMETHEUS_ENABLED: bool = os.getenv("PROMETHEUS_ENABLED", "true").lower() == "true"

    @property
    def supported_domains(self) -> list[str]:
        return [d.strip().lower() for d in self.SUPPORTED_DOMAINS.split(",") if d.strip()]

settings = Settings()
