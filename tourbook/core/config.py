from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "local"
    APP_NAME: str = "Tourbook Booking API"
    # Comma-separated origins for CORS (e.g. https://tours.example.com). If empty, uses localhost defaults.
    CORS_ORIGINS: str = ""
    LOG_LEVEL: str = "INFO"

    # Audit trail + payment attempt ledger
    DATABASE_URL: str = "sqlite:///./tourbook.db"

    @field_validator("DATABASE_URL", mode="after")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Render and others give postgres://; SQLAlchemy expects postgresql+psycopg2://."""
        if v and v.startswith("postgres://"):
            return "postgresql+psycopg2://" + v[11:]
        return v

    # GraphQL backend (tours, paystackInitialize/paystackVerify, createBooking)
    GRAPHQL_URL: str = "http://localhost:4000/graphql"
    GRAPHQL_AUTH_TOKEN: str = ""
    GRAPHQL_TIMEOUT: int = 25

    # Paystack inline checkout
    PAYSTACK_PUBLIC_KEY: str = ""
    PAYSTACK_INLINE_JS_URL: str = "https://js.paystack.co/v1/inline.js"

    # Pricing
    BILLING_CURRENCY: str = "GHS"
    CANONICAL_CURRENCY: str = "USD"
    CHILD_DISCOUNT_RATE: float = 0.3

    # Exchange rates (Open Exchange Rates, USD based)
    FX_QUOTE_TTL_SECONDS: int = 3600
    FX_FALLBACK_RATE: float = 15.5  # 1 USD = 15.5 GHS
    FX_TIMEOUT: int = 10
    OPEN_EXCHANGE_RATES_APP_ID: str = ""
    OPEN_EXCHANGE_RATES_URL: str = "https://openexchangerates.org/api/latest.json"

    @field_validator("CHILD_DISCOUNT_RATE", mode="after")
    @classmethod
    def check_discount_rate(cls, v: float) -> float:
        if not 0 <= v <= 1:
            raise ValueError("CHILD_DISCOUNT_RATE must be between 0 and 1")
        return v

    @field_validator("FX_QUOTE_TTL_SECONDS", "FX_FALLBACK_RATE", mode="after")
    @classmethod
    def check_positive(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    @field_validator("BILLING_CURRENCY", "CANONICAL_CURRENCY", mode="after")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.strip().upper()


settings = Settings()
