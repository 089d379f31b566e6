from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # these must be set in the environment
    database_url: str
    jwt_secret: str

    # Optional Settings with default values
    app_name: str = "Veterinary Practice API"
    debug: bool = False
    log_file: Optional[str] = "vetclinic.log"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
    ]

    # billing
    default_tax_rate: float = 20.0
    invoice_number_prefix: str = "INV"
    purchase_order_number_prefix: str = "PO"
    approval_timeout_seconds: float = 30.0

    # inventory
    reorder_window_days: int = 30

    # post-commit notifications
    notification_webhook_url: Optional[str] = None
    notification_timeout_seconds: float = 10.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

settings = Settings()
