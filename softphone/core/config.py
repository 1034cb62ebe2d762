"""Application configuration."""
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Twilio
    twilio_account_sid: str
    twilio_auth_token: str
    twilio_phone_number: str

    # Device tokens (all three are needed to mint a browser credential)
    twilio_api_key: Optional[str] = None
    twilio_api_secret: Optional[str] = None
    twilio_twiml_app_sid: Optional[str] = None

    client_identity: str = "browser-user"
    token_ttl_seconds: int = 86400

    # Dialing
    default_country_code: str = "1"
    dial_timeout_seconds: int = 30
    wait_announcement: str = "Your call is being connected. Please wait."
    wait_url: str = "https://demo.twilio.com/docs/voice.xml"

    # Public URL the provider calls back on (e.g. an ngrok tunnel)
    base_url: Optional[str] = None
    environment: str = "development"

    # Browser origins allowed to call the API (the widget may be served elsewhere)
    cors_origins: List[str] = ["*"]

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def token_configured(self) -> bool:
        """Whether every secret needed for device tokens is present."""
        return all(
            [
                self.twilio_account_sid,
                self.twilio_api_key,
                self.twilio_api_secret,
                self.twilio_twiml_app_sid,
            ]
        )


settings = Settings()
