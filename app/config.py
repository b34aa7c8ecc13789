from pydantic_settings import BaseSettings
from pydantic import ConfigDict, field_validator


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./chatdesk.db"

    # JWT
    SECRET_KEY: str = "change-me"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Public URL of the web client, used for links in notification emails
    APP_URL: str = "http://localhost:3000"

    # Cloudinary (optional, image messages are rejected when unset)
    CLOUDINARY_CLOUD_NAME: str | None = None
    CLOUDINARY_API_KEY: str | None = None
    CLOUDINARY_API_SECRET: str | None = None

    # SMTP (optional, notifications are skipped when unset)
    EMAIL_HOST: str | None = None
    EMAIL_PORT: int = 587
    EMAIL_USERNAME: str | None = None
    EMAIL_PASSWORD: str | None = None
    EMAIL_FROM: str | None = None

    # Messaging
    PAGE_SIZE: int = 20
    CONVERSATION_LIST_LIMIT: int = 100
    PENDING_MATCH_WINDOW_SECONDS: float = 30.0

    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        """Accept lower-case level names from the environment."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @property
    def is_email_configured(self) -> bool:
        return bool(self.EMAIL_HOST and self.EMAIL_FROM)

    @property
    def is_cloudinary_configured(self) -> bool:
        return bool(
            self.CLOUDINARY_CLOUD_NAME
            and self.CLOUDINARY_API_KEY
            and self.CLOUDINARY_API_SECRET
        )

    model_config = ConfigDict(env_file=".env", extra="ignore")


settings = Settings()
