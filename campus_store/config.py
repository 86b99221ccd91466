from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "Campus Store"
    DATABASE_URL: str = "sqlite:///./campus_store.db"

    # Shared secret of the external auth service (tokens are only verified here)
    SECRET_KEY: str = "change-me-in-production"

    ORDER_NUMBER_PREFIX: str = "ORD"

    # Products or sizes at or below this count show up in the low-stock alert
    LOW_STOCK_THRESHOLD: int = 5

    # Event fan-out: comma-separated URLs that receive every published event
    EVENT_WEBHOOK_URLS: str = ""
    # Receipt emails are handed to this endpoint of the mail collaborator
    RECEIPT_WEBHOOK_URL: str = ""
    WEBHOOK_TIMEOUT_SECONDS: float = 10.0

    # Auto-confirmation of claimed orders
    AUTO_CONFIRM_ENABLED: bool = True
    AUTO_CONFIRM_HOUR: int = 2
    AUTO_CONFIRM_MINUTE: int = 0
    AUTO_CONFIRM_GRACE_DAYS: int = 3

    model_config = {"env_file": ".env"}


settings = Settings()
