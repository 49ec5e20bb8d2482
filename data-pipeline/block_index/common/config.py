import os
from dataclasses import dataclass, field
from typing import Optional
from dotenv import load_dotenv

from services.blocks.retry import RetryOptions

load_dotenv()

# Arbitrum One
ARBITRUM_ONE_CHAIN_ID = 42161


def _env(name: str, default: str):
    return field(default_factory=lambda: os.getenv(name, default))


def _env_int(name: str, default: int):
    return field(default_factory=lambda: int(os.getenv(name, str(default))))


@dataclass
class Settings:
    # Node (only validated when a command actually talks to it)
    rpc_url: str = _env("RPC_URL", "")

    # Storage
    store_dir: str = _env("STORE_DIR", "store")
    default_chain_id: int = _env_int("DEFAULT_CHAIN_ID", ARBITRUM_ONE_CHAIN_ID)

    # Logging
    log_level: str = _env("LOG_LEVEL", "INFO")
    log_dir: str = _env("LOG_DIR", "./logs")

    # HTTP Settings
    http_timeout: int = _env_int("HTTP_TIMEOUT", 30)  # seconds

    # Retry Settings
    max_retries: int = _env_int("MAX_RETRIES", 3)
    retry_initial_delay_ms: int = _env_int("RETRY_INITIAL_DELAY_MS", 1000)
    retry_backoff_multiplier: float = field(
        default_factory=lambda: float(os.getenv("RETRY_BACKOFF_MULTIPLIER", "2"))
    )
    rate_limit_delay_ms: int = _env_int("RATE_LIMIT_DELAY_MS", 30000)

    def validate(self):
        """Validate configuration on startup"""
        if self.max_retries < 1:
            raise ValueError("MAX_RETRIES must be at least 1")
        if self.retry_initial_delay_ms < 0 or self.rate_limit_delay_ms < 0:
            raise ValueError("Retry delays must not be negative")
        if self.retry_backoff_multiplier < 1:
            raise ValueError("RETRY_BACKOFF_MULTIPLIER must be at least 1")
        if self.http_timeout <= 0:
            raise ValueError("HTTP_TIMEOUT must be positive")
        if self.default_chain_id <= 0:
            raise ValueError("DEFAULT_CHAIN_ID must be positive")

        # RPC_URL is checked by require_rpc_url() when a node is needed
        return True

    def require_rpc_url(self) -> str:
        if not self.rpc_url:
            raise ValueError("RPC_URL must be set")
        return self.rpc_url

    def retry_options(self, operation_name: Optional[str] = None) -> RetryOptions:
        """Retry options for a single RPC call site"""
        return RetryOptions(
            max_retries=self.max_retries,
            initial_delay=self.retry_initial_delay_ms,
            backoff_multiplier=self.retry_backoff_multiplier,
            rate_limit_delay=self.rate_limit_delay_ms,
            operation_name=operation_name,
        )


settings = Settings()
settings.validate()


def get_config():
    """Get configuration settings"""
    return {
        "rpc_url": settings.rpc_url,
        "store_dir": settings.store_dir,
        "default_chain_id": settings.default_chain_id,
        "log_level": settings.log_level,
        "log_dir": settings.log_dir,
        "http_timeout": settings.http_timeout,
        "max_retries": settings.max_retries,
        "retry_initial_delay_ms": settings.retry_initial_delay_ms,
        "retry_backoff_multiplier": settings.retry_backoff_multiplier,
        "rate_limit_delay_ms": settings.rate_limit_delay_ms,
    }
