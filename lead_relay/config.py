

from functools import lru_cache
from typing import Dict, Optional

from pydantic_settings import BaseSettings


DEFAULT_DEAL_FIELD_KEYS: Dict[str, str] = {
    "source": "b3f1c6e2a9d84f0e7c5a1b2d3e4f5a6b7c8d9e0f",
    "listing_reference": "4a7d2c9e1b3f5a6c8d0e2f4a6b8c0d2e4f6a8b0c",
    "listing_price": "9c1e3a5b7d9f1b3d5f7a9c1e3b5d7f9a1c3e5b7d",
    "response_url": "e2d4f6a8c0b2d4f6a8c0e2b4d6f8a0c2e4b6d8f0",
    "enquiry_date": "1f3b5d7a9c2e4f6b8d0a2c4e6b8d0f2a4c6e8b0d",
    "whatsapp_number": "7b9d1f3a5c7e9b1d3f5a7c9e1b3d5f7a9c1e3b5d",
    "agent_name": "c5e7a9b1d3f5c7e9a1b3d5f7c9e1a3b5d7f9c1e3",
    "agent_phone": "2d4f6b8a0c2e4d6f8b0a2c4e6d8f0b2a4c6e8d0f",
    "agent_email": "8e0a2c4b6d8f0e2a4c6b8d0f2e4a6c8b0d2f4e6a",
    "agent_portal_id": "5a7c9e1d3f5b7a9c1e3d5f7b9a1c3e5d7f9b1a3c",
    "bedrooms": "d6f8b0a2c4e6f8d0b2a4c6e8f0d2b4a6c8e0f2d4",
    "category": "3c5e7b9d1f3a5c7e9b1d3f5a7c9e1b3d5f7a9c1e",
    "furnishing": "f0b2d4a6c8e0f2b4d6a8c0e2f4b6d8a0c2e4f6b8",
    "product": "6d8f0a2c4e6d8b0f2a4c6e8d0b2f4a6c8e0d2b4f",
    "quality_score": "a8c0e2d4f6a8c0b2e4d6f8a0c2b4e6d8f0a2c4b6",
    "size": "0e2a4c6d8f0e2b4a6c8d0f2e4b6a8c0d2f4e6b8a",
    "title": "b9d1f3c5e7b9a1d3f5c7e9b1a3d5f7c9e1b3a5d7",
    "property_type": "4f6b8d0c2e4f6a8b0d2c4e6f8a0b2d4c6e8f0a2b",
    "verification_status": "e7a9c1b3d5e7f9a1c3b5d7e9f1a3c5b7d9e1f3a5",
    "event_id": "1c3e5a7b9d1c3f5e7a9b1d3c5f7e9a1b3d5c7f9e",
}


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    app_name: str = "Portal Lead Relay"
    app_version: str = "1.0.0"
    debug: bool = False
    port: int = 3000

    pipedrive_api_token: str = ""
    pipedrive_base_url: str = "https://api.pipedrive.com/v1"
    pipedrive_pipeline_id: Optional[int] = None
    default_currency: str = "AED"

    pf_api_base_url: str = "https://atlas.propertyfinder.com/v1"
    pf_api_key: str = ""
    pf_api_secret: str = ""
    token_refresh_skew_seconds: int = 60
    token_default_ttl_seconds: int = 3600

    webhook_secret: Optional[str] = None
    dubizzle_secret: Optional[str] = None

    enrichment_max_attempts: int = 5
    enrichment_backoff_seconds: float = 0.5

    http_timeout_seconds: float = 15.0

    audit_log_url: Optional[str] = None

    # slot name -> opaque Pipedrive custom field key; empty disables the slot
    deal_field_keys: Dict[str, str] = DEFAULT_DEAL_FIELD_KEYS

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        # blank KEY= lines in .env fall back to the field default
        env_ignore_empty = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
