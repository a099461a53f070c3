"""
Instrumental Agent - Configuration

Loads settings from environment variables, an optional .env file and an
optional YAML file.
"""

from pathlib import Path
from typing import Optional

import structlog
import yaml
from pydantic import Field
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

COLLECTOR_HOST = "collector.instrumentalapp.com"
COLLECTOR_PORT = 8000
RESPONSE_TIMEOUT = 3.0


class Settings(BaseSettings):
    """Collector settings loaded from environment."""
    
    # Credentials
    api_key: str = Field(default="", alias="INSTRUMENTAL_API_KEY")
    metrics_prefix: Optional[str] = Field(default=None, alias="INSTRUMENTAL_METRICS_PREFIX")
    
    # Collector endpoint
    collector_host: str = Field(default=COLLECTOR_HOST, alias="INSTRUMENTAL_COLLECTOR_HOST")
    collector_port: int = Field(default=COLLECTOR_PORT, ge=1, le=65535, alias="INSTRUMENTAL_COLLECTOR_PORT")
    
    # Timeouts (seconds)
    response_timeout: float = Field(default=RESPONSE_TIMEOUT, alias="INSTRUMENTAL_RESPONSE_TIMEOUT")
    connect_timeout: float = Field(default=10.0, alias="INSTRUMENTAL_CONNECT_TIMEOUT")
    
    # Unsent metrics kept while unauthenticated
    max_pending: int = Field(default=10000, alias="INSTRUMENTAL_MAX_PENDING")
    
    # Logging
    log_level: str = Field(default="INFO", alias="INSTRUMENTAL_LOG_LEVEL")
    
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        populate_by_name = True


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Load settings, overlaying values from a YAML file when one is given.
    
    The file may hold the keys at the top level or under a "collector"
    section. Values from the file take precedence over the environment.
    """
    if not config_path:
        return Settings()
    
    path = Path(config_path)
    if not path.exists():
        logger.warning("Config file not found, using defaults", path=config_path)
        return Settings()
    
    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}
    
    if "collector" in data and isinstance(data["collector"], dict):
        data = data["collector"]
    
    logger.info("Configuration loaded", path=config_path)
    return Settings(**data)
