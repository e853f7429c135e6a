from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    DATABASE_URL: str
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    APP_URL: str = "http://localhost:8000"

    # Identity is verified upstream; the gateway forwards the subject in these headers
    IDENTITY_HEADER: str = "X-Identity-Subject"
    IDENTITY_NAME_HEADER: str = "X-Identity-Name"
    IDENTITY_EMAIL_HEADER: str = "X-Identity-Email"

    # log | email | whatsapp
    NOTIFIER_BACKEND: str = "log"
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "notifications@grove.local"
    EMAIL_FROM_NAME: str = "Grove"
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_PHONE_NUMBER: Optional[str] = None

    STORAGE_LOCAL_PATH: str = "./uploads"
    STORAGE_BASE_URL: str = "/uploads"
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    SLUG_MAX_RETRIES: int = 5

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings():
    return Settings()
