"""Configuration settings for the knowledge base service."""

from pydantic_settings import BaseSettings
from typing import Optional, List, Literal
import os


class Settings(BaseSettings):
    """Application settings."""

    app_name: str = "Knowledge Base Cache Service"
    app_version: str = "1.0.0"
    environment: str = "development"

    # Knowledge base engine transport
    transport: Literal["stdio", "http"] = "stdio"
    server_url: Optional[str] = None  # Required for http transport
    server_command: List[str] = ["node", "src/index.js"]
    server_cwd: str = "../kb-server"
    server_env_file: Optional[str] = None  # Defaults to <server_cwd>/.env
    rpc_timeout: float = 30.0  # seconds, per call
    rpc_max_retries: int = 3
    rpc_retry_delay: float = 1.0  # linear: attempt * delay

    # Search behaviour
    search_default_per_page: int = 10
    search_fetch_per_page: int = 15
    search_min_results: int = 3  # Below this, broaden the query
    article_url_template: str = "https://support.example.com/support/solutions/articles/{id}"
    article_source_tag: str = "freshdesk_kb"

    # Durable tier (SQLite)
    database_path: str = "./data/kb_cache.db"

    # Fast tier (Redis)
    redis_url: Optional[str] = None
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0
    redis_key_prefix: str = "freshdesk:"
    redis_connect_timeout: float = 5.0
    redis_command_timeout: float = 3.0
    redis_init_timeout: float = 10.0
    redis_max_connection_attempts: int = 5
    redis_reconnect_delay: float = 1.0  # base delay, doubled per attempt
    redis_max_reconnect_delay: float = 30.0
    enable_fast_tier: bool = True
    fast_tier_backend: Literal["redis", "memory"] = "redis"  # memory: in-process, for local development

    # Cache TTLs
    article_cache_ttl: int = 300  # 5 minutes
    search_cache_ttl: int = 180  # 3 minutes
    min_promotion_ttl: int = 60  # Minimum TTL when promoting durable hits
    cleanup_interval_minutes: int = 30
    folder_stale_threshold_minutes: int = 60

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    class Config:
        env_file = ".env"
        env_prefix = "KB_"
        case_sensitive = False
        extra = "ignore"  # Allow extra fields in .env file


# Create settings instance
settings = Settings()

# Override with conventional environment variables
if os.getenv("REDIS_URL"):
    settings.redis_url = os.getenv("REDIS_URL")

if os.getenv("KB_SERVER_URL") is None and os.getenv("MCP_SERVER_URL"):
    settings.server_url = os.getenv("MCP_SERVER_URL").strip()
