"""Application configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All configuration is loaded from PACELINK_* environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Pacelink"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Device ---
    role: Literal["handheld", "companion"] = "handheld"
    peer_url: str = "http://localhost:8001"  # base URL of the paired device's API
    delegate_to_companion: bool = False  # drive sessions on the companion when reachable
    simulate_companion: bool = True  # run an in-process companion over a loopback link
    snapshot_interval_seconds: float = 1.0

    # --- Session config ---
    session_config_path: Path | None = None  # defaults to the bundled session_config.yaml

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "env_prefix": "PACELINK_"}


@lru_cache
def get_settings() -> Settings:
    return Settings()
