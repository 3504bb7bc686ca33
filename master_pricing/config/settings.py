"""Master pricing configuration settings.

Loads configuration from environment variables with sensible defaults.
"""

import os
from typing import Optional
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load .env file for non-secret configuration (emulator hosts, log level, etc.)
load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    # Firebase Configuration
    firebase_project_id: Optional[str] = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID"))
    use_firebase_emulators: bool = field(default_factory=lambda: _env_flag("USE_FIREBASE_EMULATORS"))
    firestore_emulator_host: str = field(default_factory=lambda: os.getenv("FIRESTORE_EMULATOR_HOST", "localhost:8081"))

    # Config Store
    pricing_config_collection: str = field(
        default_factory=lambda: os.getenv("PRICING_CONFIG_COLLECTION", "servicePricingConfigs")
    )
    default_service_id: str = field(default_factory=lambda: os.getenv("DEFAULT_SERVICE_ID", "paver_patio_sqft"))
    config_read_max_attempts: int = field(default_factory=lambda: int(os.getenv("CONFIG_READ_MAX_ATTEMPTS", "3")))
    # Upper bound on how long a cached config is trusted when no change
    # notification arrives. 0 disables expiry.
    config_cache_ttl_seconds: float = field(
        default_factory=lambda: float(os.getenv("CONFIG_CACHE_TTL_SECONDS", "300"))
    )

    # Logging
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_json: bool = field(default_factory=lambda: _env_flag("LOG_JSON"))

    def validate(self) -> None:
        """Validate settings values.

        Raises:
            ValueError: If a setting is out of range.
        """
        if self.config_read_max_attempts < 1:
            raise ValueError("CONFIG_READ_MAX_ATTEMPTS must be at least 1")
        if self.config_cache_ttl_seconds < 0:
            raise ValueError("CONFIG_CACHE_TTL_SECONDS must not be negative")
        if not self.pricing_config_collection:
            raise ValueError("PRICING_CONFIG_COLLECTION must not be empty")
        if not self.use_firebase_emulators and not self.firebase_project_id:
            raise ValueError("FIREBASE_PROJECT_ID is required in production")

    @property
    def is_emulator_mode(self) -> bool:
        """Check if running in emulator mode."""
        return self.use_firebase_emulators


# Singleton settings instance
settings = Settings()
