"""Configuration module for notegraph."""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives alongside the default database
_USER_ENV = Path.home() / ".notegraph" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_float(name: str, default: str) -> float:
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r; using %s", name, value, default)
        return float(default)


class LlmProvider(str, Enum):
    """Backends the LLM classifier can talk to."""

    NONE = "none"  # No LLM; categorization falls back to keywords
    GEMINI = "gemini"  # Google Generative Language API
    LOCAL = "local"  # Ollama-compatible local server


def _env_provider() -> LlmProvider:
    value = os.getenv("NOTEGRAPH_LLM_PROVIDER", "none").strip().lower()
    try:
        return LlmProvider(value)
    except ValueError:
        logger.warning(
            "Unknown NOTEGRAPH_LLM_PROVIDER %r; falling back to 'none'", value
        )
        return LlmProvider.NONE


class LlmConfig(BaseModel):
    """Settings for the LLM classifier collaborator.

    Instances are immutable; the client swaps the whole object when the
    configuration changes.
    """

    provider: LlmProvider = Field(default_factory=_env_provider)
    gemini_api_key: str = Field(
        default_factory=lambda: os.getenv("GEMINI_API_KEY", ""),
        repr=False,
    )
    gemini_model: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_GEMINI_MODEL", "gemini-2.0-flash")
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta"
    )
    local_llm_url: str = Field(
        default_factory=lambda: os.getenv(
            "NOTEGRAPH_LOCAL_LLM_URL", "http://localhost:11434"
        )
    )
    local_llm_model: str = Field(
        default_factory=lambda: os.getenv("NOTEGRAPH_LOCAL_LLM_MODEL", "mistral")
    )
    # Generation defaults, used when a call does not override them
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=1000, ge=1)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    top_k: int = Field(default=1, ge=1)
    # HTTP timeout in seconds for every request to the backend
    timeout: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_LLM_TIMEOUT", "60"), gt=0
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("local_llm_url", "gemini_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs so paths can be appended safely."""
        return v.rstrip("/")


class NotegraphConfig(BaseModel):
    """Configuration for the notegraph engine."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTEGRAPH_BASE_DIR", "."))
    )
    # Database configuration
    database_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTEGRAPH_DATABASE_PATH", "data/db/notegraph.db")
        )
    )
    # Automatic connections are only created above this overlap similarity
    connection_threshold: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_CONNECTION_THRESHOLD", "0.1")
    )
    # Minimum strength of a user-asserted connection
    manual_strength_floor: float = Field(default=0.5)
    # Connections weaker than this never trigger a hierarchy merge
    merge_strength_threshold: float = Field(default=0.5)
    # Cosine similarity between category names that counts as topic overlap
    category_overlap_threshold: float = Field(
        default_factory=lambda: _env_float("NOTEGRAPH_CATEGORY_OVERLAP_THRESHOLD", "0.3")
    )
    max_keywords: int = Field(default=10, ge=1)
    # Generation options used for categorization prompts
    categorize_temperature: float = Field(default=0.5, ge=0.0, le=2.0)
    categorize_max_tokens: int = Field(default=300, ge=1)
    # Length of the content preview used as a graph node label
    graph_label_length: int = Field(default=30, ge=1)
    # LLM collaborator settings
    llm: LlmConfig = Field(default_factory=LlmConfig)

    model_config = {"validate_assignment": True}

    @model_validator(mode="after")
    def _validate_thresholds(self) -> "NotegraphConfig":
        """Reject thresholds outside the [0, 1] similarity range."""
        for name in (
            "connection_threshold",
            "manual_strength_floor",
            "merge_strength_threshold",
            "category_overlap_threshold",
        ):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.merge_strength_threshold > self.manual_strength_floor:
            logger.warning(
                "merge_strength_threshold (%.2f) exceeds manual_strength_floor "
                "(%.2f); manual connections may not trigger category merging",
                self.merge_strength_threshold,
                self.manual_strength_floor,
            )
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_db_url(self) -> str:
        """Get the database URL for SQLite."""
        db_path = self.get_absolute_path(self.database_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{db_path}"


def load_config(database_path: Optional[str] = None) -> NotegraphConfig:
    """Build a fresh configuration from the environment.

    Args:
        database_path: Optional override for the SQLite database location.
    """
    settings = NotegraphConfig()
    if database_path:
        settings.database_path = Path(database_path)
    return settings


# Default config instance for the command-line entry point
config = NotegraphConfig()
