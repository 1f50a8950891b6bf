# clubspace/core/config.py
"""
Runtime configuration for the ClubSpace messaging client.

Values come from the environment (prefix ``CLUBSPACE_``) and, outside CI,
from a ``.env`` file next to the project root.
"""

import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

if not os.getenv("CI"):
    env_path = _PROJECT_ROOT / ".env"
    if env_path.exists():
        logger.info(f"[CONFIG] Loading environment from {env_path}")
        load_dotenv(env_path)


MEGABYTE = 1024 * 1024


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")

    # Backend platform
    database_url: str = Field(
        default="sqlite+pysqlite:///:memory:",
        description="SQLAlchemy URL of the backend database",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL for the change feed; in-process feed when unset",
    )

    # Realtime
    realtime_channel_prefix: str = Field(default="realtime")
    realtime_message_scope: Literal["user", "global"] = Field(
        default="user",
        description=(
            "'user' subscribes to a server-side topic scoped to the current user; "
            "'global' listens to every message insert and filters by membership locally"
        ),
    )
    realtime_resubscribe_delay: float = Field(
        default=2.0, description="Seconds to wait before re-subscribing after a feed error"
    )
    realtime_poll_timeout: float = Field(
        default=1.0, description="Seconds a Redis subscriber waits per poll"
    )

    # Read receipts
    mark_read_max_attempts: int = Field(default=3, ge=1)
    mark_read_backoff_seconds: float = Field(default=0.5, ge=0)

    # Request/accept workflow
    conversation_status_policy: Literal["always_active", "privacy_gated"] = Field(
        default="always_active",
        description="Initial status policy for new conversations",
    )

    notifications_page_size: int = Field(default=20, ge=1)

    # Media CDN
    cloudinary_cloud_name: Optional[str] = None
    cloudinary_upload_preset: Optional[SecretStr] = None
    cloudinary_folder: str = "clubspace"
    cloudinary_api_base: str = "https://api.cloudinary.com/v1_1"
    media_upload_timeout: float = Field(default=60.0, gt=0)
    max_image_bytes: int = 10 * MEGABYTE
    max_video_bytes: int = 100 * MEGABYTE
    max_audio_bytes: int = 50 * MEGABYTE

    slow_operation_threshold: float = Field(
        default=1.0, description="Seconds after which an operation is logged as slow"
    )

    model_config = SettingsConfigDict(
        env_prefix="CLUBSPACE_",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("realtime_channel_prefix")
    @classmethod
    def _strip_prefix(cls, value: str) -> str:
        cleaned = value.strip().strip(":")
        if not cleaned:
            raise ValueError("realtime_channel_prefix must not be empty")
        return cleaned

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def media_limits(self) -> dict[str, int]:
        """Return the per-media-type upload size limits in bytes."""
        return {
            "image": self.max_image_bytes,
            "video": self.max_video_bytes,
            "audio": self.max_audio_bytes,
        }


settings = Settings()
