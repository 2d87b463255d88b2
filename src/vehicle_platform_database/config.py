"""
# Configuration Management Module

This module provides the configuration system for the Vehicle Platform Database core.
Built on **Pydantic Settings**, it loads values from a config file or the environment,
validates them at startup, and exposes a single `settings` instance.

## Configuration Loading Hierarchy

```
┌─────────────────────────────────────────────────────────────┐
│  1. Environment Variables (HIGHEST PRIORITY)                │
├─────────────────────────────────────────────────────────────┤
│  2. VEHICLE_PLATFORM_DATABASE_CONFIG_PATH                   │
├─────────────────────────────────────────────────────────────┤
│  3. .vpd File (Project Root)                                │
├─────────────────────────────────────────────────────────────┤
│  4. .env File (Project Root)                                │
├─────────────────────────────────────────────────────────────┤
│  5. Default Values (LOWEST PRIORITY)                        │
└─────────────────────────────────────────────────────────────┘
```

## Configuration Groups

### MongoDB (main database)
```python
MONGODB_URL: str  # Connection string (REQUIRED)
MONGODB_DATABASE: str = "vehicle-platform"  # Shared ("main") database name
MAIN_DB_POOL_SIZE: int = 20
MONGODB_CONNECTION_TIMEOUT: int = 10000  # ms
MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000  # ms
MONGODB_SOCKET_TIMEOUT: int = 45000  # ms
```

### Tenant connections
```python
COMPANY_DB_POOL_SIZE: int = 10  # Pool size of each tenant client
MAX_COMPANY_CONNECTIONS: int = 50  # Cache capacity (soft bound)
TENANT_DB_PREFIX: str = "company_"  # company_<tenant_id>
TENANT_CONNECTION_IDLE_TIMEOUT: int = 1800  # seconds before an idle entry is swept
TENANT_CONNECTION_SWEEP_INTERVAL: int = 60  # seconds between sweeps
```

## Usage

```python
from vehicle_platform_database.config import settings

capacity = settings.MAX_COMPANY_CONNECTIONS
```

Note:
    The module performs no logging. It is imported before the logging manager is
    configured, and the logging manager itself reads `LOG_LEVEL` from here.
"""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Constants ---
VPD_FILENAME: str = ".vpd"
DEFAULT_ENV_FILENAME: str = ".env"
CONFIG_ENV_VAR: str = "VEHICLE_PLATFORM_DATABASE_CONFIG_PATH"
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent.parent


# --- Config file discovery (no logging) ---
def get_config_path() -> Optional[str]:
    """
    Determines the configuration file path based on a predefined precedence order.

    1.  **Environment Variable**: `VEHICLE_PLATFORM_DATABASE_CONFIG_PATH` (if set and file exists).
    2.  **VPD Config**: `.vpd` file in the project root directory.
    3.  **Dotenv Config**: `.env` file in the project root directory.
    4.  **Fallback**: `None`, which means environment-variable-only mode.

    Returns:
        Optional[str]: The absolute path to the configuration file, or `None` if not found.
    """
    env_path: Optional[str] = os.environ.get(CONFIG_ENV_VAR)
    if env_path and os.path.exists(env_path):
        return env_path
    vpd_path: Path = PROJECT_ROOT / VPD_FILENAME
    if vpd_path.exists():
        return str(vpd_path)
    env_path_file: Path = PROJECT_ROOT / DEFAULT_ENV_FILENAME
    if env_path_file.exists():
        return str(env_path_file)
    return None


CONFIG_PATH: Optional[str] = get_config_path()
if CONFIG_PATH:
    load_dotenv(dotenv_path=CONFIG_PATH, override=True)


class Settings(BaseSettings):
    """
    Application configuration settings model.

    **Configuration Groups:**
    *   **Server**: Host, port, debug mode, log level.
    *   **Database**: Main MongoDB connection details and pool sizing.
    *   **Tenancy**: Tenant database naming, cache capacity, idle sweeping.

    **Validation:**
    Empty MongoDB URLs, non-positive pool sizes and out-of-range timeouts are rejected
    when the settings object is created, so misconfiguration fails at startup.
    """

    model_config = SettingsConfigDict(
        env_file=CONFIG_PATH if CONFIG_PATH else None,
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",
    )

    # Server configuration
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # MongoDB configuration
    MONGODB_URL: str = "mongodb://localhost:27017"
    MONGODB_DATABASE: str = "vehicle-platform"
    MONGODB_CONNECTION_TIMEOUT: int = 10000
    MONGODB_SERVER_SELECTION_TIMEOUT: int = 5000
    MONGODB_SOCKET_TIMEOUT: int = 45000

    # Authentication (optional)
    MONGODB_USERNAME: Optional[str] = None
    MONGODB_PASSWORD: Optional[SecretStr] = None

    # Connection pools
    MAIN_DB_POOL_SIZE: int = 20
    COMPANY_DB_POOL_SIZE: int = 10

    # Tenant connection cache
    MAX_COMPANY_CONNECTIONS: int = 50
    TENANT_DB_PREFIX: str = "company_"
    TENANT_CONNECTION_IDLE_TIMEOUT: int = 1800
    TENANT_CONNECTION_SWEEP_INTERVAL: int = 60

    @field_validator("MONGODB_URL", mode="before")
    @classmethod
    def no_empty_urls(cls, v: Any, info: Any) -> Any:
        """
        Validates that the MongoDB URL is not empty.

        Raises:
            ValueError: If the URL is empty or whitespace.
        """
        if not v or not str(v).strip():
            raise ValueError(f"{info.field_name} must be set via environment or .vpd and not empty!")
        return v

    @field_validator(
        "MAIN_DB_POOL_SIZE",
        "COMPANY_DB_POOL_SIZE",
        "MAX_COMPANY_CONNECTIONS",
        "TENANT_CONNECTION_SWEEP_INTERVAL",
        mode="before",
    )
    @classmethod
    def validate_positive_integers(cls, v: Any, info: Any) -> int:
        """
        Validates that numeric settings are positive integers.

        Raises:
            ValueError: If the value is not a positive integer.
        """
        value = int(v)
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive integer")
        return value

    @field_validator(
        "MONGODB_CONNECTION_TIMEOUT",
        "MONGODB_SERVER_SELECTION_TIMEOUT",
        "MONGODB_SOCKET_TIMEOUT",
        mode="before",
    )
    @classmethod
    def validate_timeout_values(cls, v: Any, info: Any) -> int:
        """
        Validates that driver timeouts (milliseconds) are within 1ms-300s.

        Raises:
            ValueError: If the timeout is out of range.
        """
        timeout = int(v)
        if timeout < 1 or timeout > 300_000:
            raise ValueError(f"{info.field_name} must be between 1 and 300000 milliseconds")
        return timeout

    @field_validator("TENANT_CONNECTION_IDLE_TIMEOUT", mode="before")
    @classmethod
    def validate_idle_timeout(cls, v: Any) -> int:
        """Idle timeout of zero disables age-based sweeping; negative values are rejected."""
        timeout = int(v)
        if timeout < 0:
            raise ValueError("TENANT_CONNECTION_IDLE_TIMEOUT must not be negative")
        return timeout

    @field_validator("TENANT_DB_PREFIX", mode="before")
    @classmethod
    def validate_tenant_prefix(cls, v: Any) -> str:
        """The prefix becomes part of a MongoDB database name."""
        prefix = str(v).strip()
        if not prefix or any(char in prefix for char in '/\\. "$'):
            raise ValueError("TENANT_DB_PREFIX must be a non-empty database-name fragment")
        return prefix

    @property
    def is_production(self) -> bool:
        """Production mode is defined as `DEBUG=False`."""
        return not self.DEBUG


# Global settings instance
settings: Settings = Settings()
