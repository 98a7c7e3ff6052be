import os
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application configuration from environment variables"""

    # App
    app_name: str = "Rental Marketplace"
    debug: bool = os.getenv("DEBUG", "False").lower() == "true"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database (payment incident log only)
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

    # Marketplace REST API
    api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8002/api")
    api_timeout: float = float(os.getenv("API_TIMEOUT", "15"))

    # Payments: "stripe", "mock" or "auto"
    payment_provider: str = os.getenv("PAYMENT_PROVIDER", "auto")
    stripe_secret_key: str = os.getenv("STRIPE_SECRET_KEY", "")
    stripe_publishable_key: str = os.getenv("STRIPE_PUBLISHABLE_KEY", "")

    # Checkout / views
    checkout_redirect_delay: float = float(os.getenv("CHECKOUT_REDIRECT_DELAY", "1.5"))
    view_idle_timeout_minutes: int = int(os.getenv("VIEW_IDLE_TIMEOUT_MINUTES", "30"))
    view_purge_interval_minutes: int = int(os.getenv("VIEW_PURGE_INTERVAL_MINUTES", "5"))

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
