"""
Application Settings

This module provides a centralized settings class that loads environment
variables from the .env file and makes them available throughout the engine.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# The project root is one level up from the package folder
PROJECT_ROOT = Path(__file__).parent.parent
load_dotenv(PROJECT_ROOT / ".env")


def _resolve(path: str) -> Path:
    candidate = Path(path)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


class Settings:
    """
    Centralized settings class that provides access to all environment variables.
    Usage:
        from proposal_engine.settings import settings
        api_key = settings.GEMINI_API_KEY

    Attributes can be overridden per instance, which is how tests tighten
    timeouts and backoff without touching the environment.
    """

    # Google Gemini API Key (default LLM agents)
    GEMINI_API_KEY: str = os.getenv("GEMINI_API_KEY", "")
    MODEL_NAME: str = os.getenv("MODEL_NAME", "gemini-2.5-flash")

    # Checkpoint database (empty -> in-memory store)
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    # Versions kept per thread by the in-memory store
    CHECKPOINT_MAX_VERSIONS: int = int(os.getenv("CHECKPOINT_MAX_VERSIONS", "50"))

    # Debug mode
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Static configuration files
    DEPENDENCY_CONFIG_PATH: Path = _resolve(os.getenv("DEPENDENCY_CONFIG_PATH", "config/dependencies.json"))
    CRITERIA_DIR: Path = _resolve(os.getenv("CRITERIA_DIR", "config/criteria"))
    DOCUMENTS_DIR: Path = _resolve(os.getenv("DOCUMENTS_DIR", "documents"))

    # Generator / evaluator call policy
    STEP_TIMEOUT_SECONDS: float = float(os.getenv("STEP_TIMEOUT_SECONDS", "120"))
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BACKOFF_BASE: float = float(os.getenv("RETRY_BACKOFF_BASE", "1.0"))
    RETRY_BACKOFF_MAX: float = float(os.getenv("RETRY_BACKOFF_MAX", "30.0"))

    # Quality gate
    MAX_AUTO_REVISIONS: int = int(os.getenv("MAX_AUTO_REVISIONS", "2"))
    DEFAULT_PASSING_THRESHOLD: float = float(os.getenv("DEFAULT_PASSING_THRESHOLD", "0.7"))

    def __init__(self, **overrides):
        for key, value in overrides.items():
            if not hasattr(type(self), key):
                raise AttributeError(f"Unknown setting: {key}")
            setattr(self, key, value)

    def validate(self, require_llm: bool = True) -> None:
        """Validate that all required environment variables are set."""
        errors = []

        if require_llm and not self.GEMINI_API_KEY:
            errors.append("GEMINI_API_KEY is not set in .env file")
        if self.RETRY_MAX_ATTEMPTS < 1:
            errors.append("RETRY_MAX_ATTEMPTS must be at least 1")
        if self.STEP_TIMEOUT_SECONDS <= 0:
            errors.append("STEP_TIMEOUT_SECONDS must be positive")
        if self.MAX_AUTO_REVISIONS < 0:
            errors.append("MAX_AUTO_REVISIONS cannot be negative")
        if self.CHECKPOINT_MAX_VERSIONS < 1:
            errors.append("CHECKPOINT_MAX_VERSIONS must be at least 1")

        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")


# Create a singleton instance for easy import
settings = Settings()
