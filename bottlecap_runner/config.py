"""Configuration for BottleCap Runner.

Simple configuration loader from environment variables, plus the
per-platform data directory used for persisted runner state.
"""

import os
import platform
from functools import lru_cache
from pathlib import Path
from typing import Optional

# Fixed endpoints of the coordination service and the local Ollama backend.
DEFAULT_BACKEND_URL = "wss://bottlecap-runners.limartinyk.partykit.dev/party/main"
DEFAULT_OLLAMA_URL = "http://localhost:11434"

# Identifier the runner token is stored under.
CREDENTIAL_SERVICE = "bottlecap-runner"
CREDENTIAL_ACCOUNT = "token"


# =============================================================================
# Persistent data directory
# =============================================================================

def get_data_dir() -> Path:
    """Get the data directory for bottlecap-runner."""
    if platform.system() == "Windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif platform.system() == "Darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    data_dir = base / "bottlecap-runner"
    data_dir.mkdir(parents=True, exist_ok=True)
    return data_dir


def get_credentials_path() -> Path:
    """Get the path to the credentials file."""
    return get_data_dir() / "credentials.json"


# =============================================================================
# Environment Variable Configuration
# =============================================================================


@lru_cache(maxsize=1)
def load_config() -> dict:
    """
    Load application configuration from environment variables.

    Returns:
        dict with configuration values
    """
    return {
        # Remote coordination service (WebSocket)
        "BACKEND_URL": os.getenv("BOTTLECAP_BACKEND", DEFAULT_BACKEND_URL),

        # Runner token (falls back to the credential store when empty)
        "TOKEN": os.getenv("BOTTLECAP_TOKEN", ""),

        # Local Ollama server
        "OLLAMA_URL": os.getenv("OLLAMA_HOST", DEFAULT_OLLAMA_URL),
        "OLLAMA_TIMEOUT": float(os.getenv("OLLAMA_TIMEOUT", "300.0")),

        # Max seconds a single WebSocket write may block
        "SEND_TIMEOUT": float(os.getenv("BOTTLECAP_SEND_TIMEOUT", "5.0")),

        # Device name advertised in the capability report (default: hostname)
        "DEVICE_NAME": os.getenv("BOTTLECAP_DEVICE_NAME", ""),
    }


def get_config_value(key: str, default: Optional[str] = None) -> Optional[str]:
    """Get a single configuration value."""
    config = load_config()
    return config.get(key, default)


def require_config_value(key: str) -> str:
    """Get a required configuration value, raising if not found."""
    value = get_config_value(key)
    if not value:
        raise RuntimeError(f"Required configuration '{key}' is not set")
    return value
