"""
Centralized configuration for the pluginpass backend.

All environment variables and settings should be defined here
to avoid duplication across modules.
"""
import os
from functools import lru_cache

from pluginpass.ledger.config import DEFAULT_CONFIG_PATH, LedgerConfig, load_config


class Settings:
    """Application settings loaded from environment variables."""

    # CORS - comma-separated list of allowed origins
    ALLOWED_ORIGINS: list = os.environ.get(
        "ALLOWED_ORIGINS",
        "http://localhost:8090,http://localhost:5173,http://127.0.0.1:8090"
    ).split(",")

    # Ledger config file (JSON); env values below override it
    LEDGER_CONFIG_PATH: str = os.environ.get("PLUGINPASS_CONFIG", str(DEFAULT_CONFIG_PATH))

    # Ledger workbook location and worksheet
    LEDGER_PATH: str = os.environ.get("PLUGINPASS_LEDGER_PATH", "")
    SHEET_NAME: str = os.environ.get("PLUGINPASS_SHEET_NAME", "")

    # Shared secret expected as ?token=... on the webhook URL (optional)
    WEBHOOK_TOKEN: str = os.environ.get("PLUGINPASS_WEBHOOK_TOKEN", "")

    # Stripe signing secret (whsec_...); signature checks are skipped when unset
    STRIPE_WEBHOOK_SECRET: str = os.environ.get("STRIPE_WEBHOOK_SECRET", "")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Singleton instance for easy import
settings = get_settings()


def get_ledger_config() -> LedgerConfig:
    """Load the ledger config file and apply environment overrides."""
    config = load_config(settings.LEDGER_CONFIG_PATH)
    if settings.LEDGER_PATH:
        config.ledger_path = settings.LEDGER_PATH
    if settings.SHEET_NAME:
        config.sheet_name = settings.SHEET_NAME
    if settings.WEBHOOK_TOKEN:
        config.webhook_token = settings.WEBHOOK_TOKEN
    return config
