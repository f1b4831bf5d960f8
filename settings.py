import json
from pathlib import Path
from typing import Dict, Any, Optional
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Models for the JSON config structures ---

class StatusMappingOverride(BaseModel):
    name: str
    shopify_status: str
    notify: bool = False

# --- Loader for the /config directory ---

CONFIG_DIR = Path(__file__).parent / 'config'


def json_config_settings_source() -> Dict[str, Any]:
    """
    Loads settings from the .json files in the /config directory.
    """
    config = {}

    def load_json(filename: str, key: str):
        filepath = CONFIG_DIR / filename
        if filepath.exists():
            with open(filepath, 'r', encoding='utf-8') as f:
                config[key] = json.load(f)

    load_json('shipment_status_map.json', 'SHIPMENT_STATUS_MAP')
    return config


# --- Main Settings class ---

class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./shipsy_sync.db"
    DATABASE_ECHO: bool = False

    # Shopify
    SHOPIFY_STORE: str = ""
    SHOPIFY_ACCESS_TOKEN: str = ""
    SHOPIFY_API_SECRET: str = ""
    SHOPIFY_API_VERSION: str = "2024-01"

    # Shipsy
    SHIPSY_BASE_URL: str = "https://yemenapi.shipsy.io"
    SHIPSY_API_KEY: str = ""
    SHIPSY_ORGANISATION: str = ""
    SHIPSY_SERVICE_TYPE: str = "express"
    SHIPSY_HUB_CODE: str = "default"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Origin details sent with every consignment
    STORE_NAME: str = "Store"
    STORE_PHONE: str = ""
    STORE_ADDRESS_1: str = ""
    STORE_ADDRESS_2: str = ""
    STORE_PINCODE: str = ""

    # Sync
    ENABLE_AUTO_SYNC: bool = True
    SYNC_INTERVAL_MINUTES: int = 15
    STATUS_UPDATE_INTERVAL_MINUTES: int = 60
    SYNC_BATCH_LIMIT: int = 50
    STATUS_BATCH_LIMIT: int = 100
    MAX_RETRIES: int = 3
    RETRY_DELAY_SECONDS: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"
    LOG_RETENTION_DAYS: int = 30
    LOG_RETENTION_INTERVAL_MINUTES: int = 1440

    # Populated by `json_config_settings_source`
    SHIPMENT_STATUS_MAP: Dict[str, StatusMappingOverride] = {}

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        validate_assignment=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        # Priority: init kwargs, .env, environment, then the JSON files
        return (
            init_settings,
            dotenv_settings,
            env_settings,
            json_config_settings_source,
            file_secret_settings,
        )

    def update(self, **changes: Any) -> "Settings":
        """
        Applies runtime changes in place so every component holding this
        object sees them. Values are validated before anything is assigned.
        """
        unknown = [k for k in changes if k not in type(self).model_fields]
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        validated = self.model_validate({**self.model_dump(), **changes})
        for key in changes:
            setattr(self, key, getattr(validated, key))
        return self

    def public_view(self) -> Dict[str, Any]:
        """Settings safe to expose over the API (no keys or tokens)."""
        return {
            "shipsy": {
                "base_url": self.SHIPSY_BASE_URL,
                "organisation": self.SHIPSY_ORGANISATION,
                "service_type": self.SHIPSY_SERVICE_TYPE,
                "hub_code": self.SHIPSY_HUB_CODE,
            },
            "sync": {
                "enable_auto_sync": self.ENABLE_AUTO_SYNC,
                "sync_interval_minutes": self.SYNC_INTERVAL_MINUTES,
                "status_update_interval_minutes": self.STATUS_UPDATE_INTERVAL_MINUTES,
                "sync_batch_limit": self.SYNC_BATCH_LIMIT,
                "status_batch_limit": self.STATUS_BATCH_LIMIT,
            },
            "store": {
                "name": self.STORE_NAME,
                "phone": self.STORE_PHONE,
                "address": {
                    "line1": self.STORE_ADDRESS_1,
                    "line2": self.STORE_ADDRESS_2,
                    "pincode": self.STORE_PINCODE,
                },
            },
        }


def reload_settings(current: Optional[Settings] = None) -> Settings:
    """Re-reads every source. When `current` is given it is refreshed in place."""
    fresh = Settings()
    if current is None:
        return fresh
    for key in type(current).model_fields:
        setattr(current, key, getattr(fresh, key))
    return current
