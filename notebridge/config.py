"""
Centralized configuration using Pydantic BaseSettings.

Every knob of the gateway, the vector store and the indexing pipeline lives
here with a sensible default. Provider credentials come from the
environment or a `.env` file; everything else can be overridden the same way.

Configuration Philosophy:
    - .env: Only sensitive data (API keys)
    - config.py: All application settings with sensible defaults

Usage:
    from notebridge.config import settings, get_logger

    print(settings.LOCAL_BASE_URL)  # Type-safe access
"""
from __future__ import annotations

import logging
import re
from functools import cached_property, lru_cache
from pathlib import Path
from typing import ClassVar, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings with environment variable support.

    Configuration Sources:
        1. Environment variables
        2. .env file (if present)
        3. Default values (defined below)

    A hosted provider is only registered when its API key is set, so an
    empty environment yields a working local-only configuration.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        validate_default=True,
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    HOST: str = Field(
        default="127.0.0.1",
        description="Server host (local only by default, the API fronts a personal workspace)",
    )
    PORT: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Server port number",
    )
    DEBUG: bool = Field(
        default=False,
        description="Debug mode - enables auto-reload and detailed error messages",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )

    # =========================================================================
    # Local Backend (OpenAI-compatible server such as LM Studio or Ollama)
    # =========================================================================

    LOCAL_BASE_URL: str = Field(
        default="http://localhost:1234/v1",
        description="Base URL of the local OpenAI-compatible API (empty disables the local provider)",
    )
    LOCAL_API_KEY: str = Field(
        default="lm-studio",
        description="Bearer token sent to the local server (most local servers ignore it)",
    )
    LOCAL_WIRE_FORMAT: Literal["openai", "native"] = Field(
        default="openai",
        description="Chat wire format for the local server: OpenAI SSE or native NDJSON (/api/chat)",
    )

    # =========================================================================
    # Hosted Provider Credentials
    # =========================================================================
    # Sensitive: loaded from .env

    OPENAI_API_KEY: str = Field(default="", description="OpenAI API key")
    ANTHROPIC_API_KEY: str = Field(default="", description="Anthropic API key")
    GEMINI_API_KEY: str = Field(default="", description="Google Gemini API key")
    GROK_API_KEY: str = Field(default="", description="xAI Grok API key")
    OPENROUTER_API_KEY: str = Field(default="", description="OpenRouter API key")

    # =========================================================================
    # Model Selection
    # =========================================================================

    CHAT_MODEL: str = Field(
        default="llama3:8b",
        description="Default local chat model used when a request carries no scoped model id",
    )
    EMBEDDING_MODEL: str = Field(
        default="",
        description="Local embedding model (empty enables auto-detection)",
    )
    GENERATION_TEMPERATURE: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Default sampling temperature",
    )
    MAX_COMPLETION_TOKENS: int = Field(
        default=4096,
        ge=1,
        description="Maximum tokens requested from backends that require the field",
    )

    # =========================================================================
    # Smart Memory
    # =========================================================================

    ENABLE_SMART_MEMORY: bool = Field(
        default=False,
        description="Aggressive low-memory mode: unload the previous local model before any switch",
    )
    AUTO_UNLOAD_ON_SWITCH: bool = Field(
        default=False,
        description="Unload the previous local chat model when a different one is requested",
    )

    # =========================================================================
    # Indexing & Retrieval
    # =========================================================================

    ENABLE_BACKGROUND_INDEXING: bool = Field(
        default=True,
        description="Allow sync passes that re-index changed documents",
    )
    CHUNK_MAX_LENGTH: int = Field(
        default=1000,
        ge=50,
        description="Maximum characters per chunk before a new chunk is started",
    )
    INDEX_CHUNK_DELAY_SECONDS: float = Field(
        default=0.3,
        ge=0.0,
        description="Pause between embedding requests to keep the local backend responsive",
    )
    MAX_CONTEXT_CHUNKS: int = Field(
        default=3,
        ge=1,
        le=50,
        description="Number of chunks retrieved as grounding context",
    )
    SYSTEM_PROMPT: str = Field(
        default=(
            "You are a helpful AI assistant. You have access to various tools. "
            "When tools are available, you should use them to answer user questions "
            "accurately. Do not output raw tool codes or JSON formats directly to the "
            "user; instead, rely on the system to execute them and then interpret the results."
        ),
        description="System prompt used when the conversation carries none",
    )

    # =========================================================================
    # Storage
    # =========================================================================

    DATA_DIR: Path = Field(
        default=Path(".notebridge"),
        description="Plugin data directory holding the persisted vector index",
    )
    VECTOR_STORE_FILENAME: str = Field(
        default="vector_store.json",
        description="File name of the persisted vector index inside DATA_DIR",
    )

    # =========================================================================
    # Transport
    # =========================================================================

    TRANSPORT_MODE: Literal["auto", "socket", "client"] = Field(
        default="auto",
        description="socket: raw asyncio sockets, client: aiohttp, auto: socket with aiohttp fallback",
    )
    HTTP_CONNECT_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        gt=0,
        description="Maximum time to establish a connection",
    )
    HTTP_READ_TIMEOUT_SECONDS: float = Field(
        default=300.0,
        gt=0,
        description="Maximum idle time between two reads (local models can be slow to load)",
    )
    STREAM_QUEUE_SIZE: int = Field(
        default=64,
        ge=1,
        description="Capacity of the fragment channel between socket reader and consumer",
    )

    # =========================================================================
    # HTTP API
    # =========================================================================

    RATE_LIMIT: str = Field(
        default="60/minute",
        pattern=r"^\d+/(second|minute|hour|day)$",
        description="Rate limit for the chat endpoint (format: 'count/period')",
    )
    CORS_ORIGINS: str = Field(
        default="app://obsidian.md",
        description="Comma-separated allowed origins",
    )
    STREAM_ERROR_MESSAGE: str = Field(
        default="\n\n[Error: Failed to complete response. Please try again.]",
        description="Marker appended to a stream that fails",
    )

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def uppercase_log_level(cls, v: str) -> str:
        """Ensure LOG_LEVEL is uppercase."""
        return v.upper() if isinstance(v, str) else v

    @field_validator("LOCAL_WIRE_FORMAT", "TRANSPORT_MODE", mode="before")
    @classmethod
    def lowercase_choice(cls, v: str) -> str:
        """Ensure enumerated choices are lowercase."""
        return v.lower() if isinstance(v, str) else v

    @field_validator("LOCAL_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Store base URLs without a trailing slash."""
        return v.strip().rstrip("/")

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @cached_property
    def VECTOR_STORE_PATH(self) -> Path:
        """Location of the persisted vector index."""
        return self.DATA_DIR / self.VECTOR_STORE_FILENAME

    @cached_property
    def CORS_ORIGINS_LIST(self) -> list[str]:
        """Get list of CORS origins."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


# =============================================================================
# Settings Factory with Caching
# =============================================================================

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache for singleton behavior while allowing
    cache invalidation in tests.
    """
    return Settings()


# Convenience alias for direct access
settings = get_settings()


# =============================================================================
# Logging Configuration
# =============================================================================

class SanitizingFormatter(logging.Formatter):
    """
    Logging formatter that redacts credentials.

    Automatically redacts:
    - Bearer tokens
    - API keys (including x-api-key / x-goog-api-key header values)
    - Tokens
    """

    SENSITIVE_PATTERNS: ClassVar[list[tuple[re.Pattern[str], str]]] = [
        (re.compile(r'(Bearer\s+)[^\s"\']+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(x-(?:goog-)?api-key["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(api[_-]?key["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'([?&]key=)[^&\s]+', re.I), r'\1[REDACTED]'),
        (re.compile(r'(token["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+', re.I), r'\1[REDACTED]'),
    ]

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with sensitive data redaction."""
        message = super().format(record)
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            message = pattern.sub(replacement, message)
        return message


def configure_logging(log_level: str = "INFO") -> None:
    """
    Configure application logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

    handler = logging.StreamHandler()
    handler.setFormatter(SanitizingFormatter(log_format))

    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        handlers=[handler],
        force=True,
    )

    # Suppress noisy third-party loggers
    for logger_name in ("aiohttp", "asyncio", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (component path such as "transport.socket")

    Returns:
        Configured logging.Logger instance
    """
    return logging.getLogger(f"notebridge.{name}")


# Initialize logging on module load
configure_logging(settings.LOG_LEVEL)
