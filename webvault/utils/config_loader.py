import os
from typing import Any, Dict, Optional

import yaml

from pydantic_settings import BaseSettings, SettingsConfigDict

from webvault.utils.env_loader import load_environment


DEFAULT_USER_AGENT = "WebVaultBot/1.0"
CONFIG_SECTION = "webvault"


class Config(BaseSettings):
    data_dir: str = "./data"

    # fetch pool
    fetch_workers: int = 8
    max_urls_per_batch: int = 1000
    request_timeout: float = 30.0
    max_download_bytes: int = 2_000_000
    max_content_chars: int = 20_000
    crawler_user_agent: str = DEFAULT_USER_AGENT

    # job aggregation
    job_cache_ttl: int = 300
    job_source_timeout: float = 10.0
    job_per_source_limit: int = 50

    api_host: str = "0.0.0.0"
    api_port: int = 5174

    log_level: str = "INFO"
    log_path: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


def _load_yaml_config() -> Dict[str, Any]:
    config_path = os.path.join(os.path.dirname(__file__), "../config/config.yaml")
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config() -> Config:
    load_environment()
    file_data = _load_yaml_config()
    section: Dict[str, Any] = file_data.get(CONFIG_SECTION) or {}

    # environment wins over the yaml file; BaseSettings reads env itself
    file_values = {
        key: value
        for key, value in section.items()
        if key in Config.model_fields and os.getenv(key.upper()) is None
    }

    # User-agent precedence: env -> config file -> default
    user_agent = os.getenv("CRAWLER_USER_AGENT")
    if not user_agent:
        user_agent = section.get("user_agent")
    if user_agent:
        file_values["crawler_user_agent"] = user_agent

    return Config(**file_values)


def get_crawler_user_agent() -> str:
    """Return the configured crawler user-agent string."""
    config = load_config()
    return config.crawler_user_agent
