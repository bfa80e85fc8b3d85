from datetime import timedelta

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings; any field can be set as ``COURSEHUB_<FIELD>``."""

    model_config = SettingsConfigDict(env_prefix="COURSEHUB_", extra="ignore")

    database_url: str = "sqlite:///./coursehub.db"

    # DEV default: override COURSEHUB_SECRET_KEY in any real deployment.
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    bcrypt_rounds: int = 12

    # submissions within this many minutes after due are not late
    late_grace_minutes: int = 0

    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def access_token_expire(self) -> timedelta:
        return timedelta(minutes=self.access_token_expire_minutes)

    @property
    def late_grace(self) -> timedelta:
        return timedelta(minutes=self.late_grace_minutes)
