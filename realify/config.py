"""
Realify Application Configuration
==================================

PURPOSE:
    Pydantic-Settings based configuration for the Realify backend.
    All settings can be overridden via environment variables (REALIFY_ prefix).
    DATABASE_URL is read separately by realify.core.database.
"""

import logging
from typing import List, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Runtime settings for the API, billing and generation providers."""

    app_name: str = "Realify"
    environment: str = "production"
    debug: bool = False

    # Identity (Supabase Auth)
    auth_enabled: bool = True  # Set REALIFY_AUTH_ENABLED=false only for local dev (requires debug).
    auth_cache_ttl: int = 300  # seconds
    session_cookie_name: str = "sb-access-token"
    supabase_url: str = "https://placeholder.supabase.co"
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = None

    # Generated image storage (Supabase Storage)
    storage_bucket: str = "generations"
    storage_timeout_s: float = 30.0

    # Stripe billing
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_price_starter: Optional[str] = None
    stripe_price_creator: Optional[str] = None
    stripe_price_credits_small: Optional[str] = None
    stripe_price_credits_medium: Optional[str] = None
    stripe_price_credits_large: Optional[str] = None
    site_url: str = "http://localhost:3000"

    # Replicate-hosted models
    replicate_api_token: Optional[str] = None
    replicate_base_url: str = "https://api.replicate.com/v1"
    replicate_wait_s: int = 60  # Prefer: wait=<n> (max 60 on Replicate)
    replicate_poll_interval_s: float = 1.5
    replicate_timeout_s: float = 180.0
    ideogram_model: str = "ideogram-ai/ideogram-v2-turbo"
    gpt_image_model: str = "openai/gpt-image-1.5"

    # OpenAI Images API
    openai_api_key: Optional[str] = None
    openai_image_model: str = "gpt-image-1"

    # Reference image limits
    max_reference_images: int = 3
    max_reference_image_bytes: int = 10 * 1024 * 1024

    data_directory: str = "/data"
    log_dir: str = "logs"
    log_level: str = "INFO"
    log_json: bool = True  # false renders human-readable console lines

    cors_origins: List[str] = ["http://localhost:3000", "https://realify.app"]

    class Config:
        env_file = ".env"
        env_prefix = "REALIFY_"

    def price_to_plan(self) -> dict[str, str]:
        """Map configured Stripe price ids to plan names (unset prices are skipped)."""
        mapping: dict[str, str] = {}
        if self.stripe_price_starter:
            mapping[self.stripe_price_starter] = "starter"
        if self.stripe_price_creator:
            mapping[self.stripe_price_creator] = "creator"
        return mapping

    def plan_price_id(self, plan: str) -> Optional[str]:
        return {
            "starter": self.stripe_price_starter,
            "creator": self.stripe_price_creator,
        }.get(plan)

    def bundle_price_id(self, bundle: str) -> Optional[str]:
        return {
            "small": self.stripe_price_credits_small,
            "medium": self.stripe_price_credits_medium,
            "large": self.stripe_price_credits_large,
        }.get(bundle)


settings = Settings()
