"""
Runtime settings, read from the environment (and a .env file if present).
"""
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator


# Default configuration
DEFAULT_CREDENTIALS_PATH = "credentials.json"
DEFAULT_TOKEN_DIR = ".tokens"
DEFAULT_CACHE_DIR = ".cache/accountsync"
DEFAULT_MAX_RETRIES = 5
DEFAULT_MAIL_MAX_RESULTS = 100
DEFAULT_CALENDAR_MAX_RESULTS = 250
DEFAULT_CONTACTS_PAGE_SIZE = 500
MAX_BATCH_CHUNK_SIZE = 100
MAX_BATCH_CONCURRENCY = 5

ENV_PREFIX = "ACCOUNTSYNC_"


class Settings(BaseModel):
    """Engine settings. Batch limits are hard caps and are clamped on load."""

    credentials_path: Path = Field(default=Path(DEFAULT_CREDENTIALS_PATH), description="OAuth client secrets file")
    token_dir: Path = Field(default=Path(DEFAULT_TOKEN_DIR), description="Directory holding one token file per account")
    cache_dir: Path = Field(default=Path(DEFAULT_CACHE_DIR), description="Root directory for the diskcache stores")
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    mail_max_results: int = Field(default=DEFAULT_MAIL_MAX_RESULTS, ge=1)
    calendar_max_results: int = Field(default=DEFAULT_CALENDAR_MAX_RESULTS, ge=1)
    contacts_page_size: int = Field(default=DEFAULT_CONTACTS_PAGE_SIZE, ge=1, le=1000)
    batch_chunk_size: int = Field(default=MAX_BATCH_CHUNK_SIZE, ge=1)
    batch_concurrency: int = Field(default=MAX_BATCH_CONCURRENCY, ge=1)
    log_level: str = Field(default="INFO")

    @field_validator("batch_chunk_size")
    @classmethod
    def cap_chunk_size(cls, v: int) -> int:
        return min(v, MAX_BATCH_CHUNK_SIZE)

    @field_validator("batch_concurrency")
    @classmethod
    def cap_concurrency(cls, v: int) -> int:
        return min(v, MAX_BATCH_CONCURRENCY)

    @field_validator("log_level")
    @classmethod
    def upper_level(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_env(cls, dotenv: bool = True) -> "Settings":
        """Build settings from ACCOUNTSYNC_* environment variables."""
        if dotenv:
            load_dotenv()
        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls(**values)
