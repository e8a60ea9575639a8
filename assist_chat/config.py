"""Configuration management using pydantic-settings."""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    mongodb_uri: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    database_name: str = Field(default="customer", description="Database holding chat and assist collections")
    assist_collection: str = Field(default="assistrequests", description="Assistance request collection")
    operators_collection: str = Field(default="operators", description="Operator profile collection")

    # Auth
    jwt_secret: str = Field(default="devsecret", description="Secret used to verify access tokens")
    jwt_algorithm: str = Field(default="HS256", description="JWT signature algorithm")

    # Realtime
    redis_url: Optional[str] = Field(default=None, description="Redis URL for cross-process fan-out")
    presence_ttl: int = Field(default=60, description="Presence heartbeat TTL in seconds")
    realtime_op_timeout: float = Field(default=10.0, description="Timeout for one realtime operation")
    operator_role: str = Field(default="operator", description="Role claim that joins the operators room")
    operators_room_for_all: bool = Field(default=False, description="Join every connection to the operators room")
    history_limit: int = Field(default=200, description="Messages returned by a realtime history fetch")

    # Push
    expo_push_url: str = Field(default="https://exp.host/--/api/v2/push/send", description="Expo push endpoint")
    expo_access_token: Optional[str] = Field(default=None, description="Expo access token")
    fcm_service_account_file: Optional[str] = Field(default=None, description="Firebase service account JSON")
    fcm_project_id: Optional[str] = Field(default=None, description="Firebase project id")
    push_enabled: bool = Field(default=True, description="Send push notifications; disabled uses a no-op provider")
    push_batch_size: int = Field(default=99, description="Tokens per push provider call")
    push_timeout: float = Field(default=10.0, description="Push provider HTTP timeout in seconds")

    # Server
    cors_origins: str = Field(default="*", description="Allowed CORS origins (comma separated)")
    log_level: str = Field(default="INFO", description="Log level")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    def get_cors_origins(self) -> List[str]:
        """Get list of allowed CORS origins."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    return Settings()
