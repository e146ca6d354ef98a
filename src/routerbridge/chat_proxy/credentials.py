"""Upstream credentials: OpenRouter API key and default model.

Both are read from the environment, falling back to a ``.env`` file when
either is missing. They are validated once at process start; a violation is
fatal.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

API_KEY_ENV = "OPENROUTER_API_KEY"
MODEL_ENV = "OPENROUTER_MODEL"
API_KEY_PREFIX = "sk-or-"
MIN_API_KEY_LENGTH = 32
DEFAULT_MODEL = "openai/gpt-4o"


class StartupError(RuntimeError):
    """Raised when credentials are missing or malformed at startup."""


@dataclass(frozen=True)
class Credentials:
    api_key: str = field(repr=False)
    model: str


def mask_api_key(key: str) -> str:
    if len(key) <= 12:
        return "***"
    return f"{key[:6]}...{key[-6:]}"


def validate_api_key(api_key: str) -> str:
    if not api_key.startswith(API_KEY_PREFIX):
        raise StartupError(f"{API_KEY_ENV} must start with '{API_KEY_PREFIX}'")
    if len(api_key) < MIN_API_KEY_LENGTH:
        raise StartupError(f"{API_KEY_ENV} seems too short to be valid")
    return api_key


def validate_model(model: str) -> str:
    if "/" not in model:
        raise StartupError(
            f"Invalid model: {model}. Must contain a provider prefix (e.g. {DEFAULT_MODEL})"
        )
    return model


def load_credentials(env_file: Optional[Path] = None) -> Credentials:
    api_key = os.environ.get(API_KEY_ENV, "").strip()
    model = os.environ.get(MODEL_ENV, "").strip()

    if not api_key or not model:
        dotenv_path = Path(env_file) if env_file else Path.cwd() / ".env"
        # Existing environment values win over the file.
        if not load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.warning(".env file not found or empty: %s", dotenv_path)
        api_key = api_key or os.environ.get(API_KEY_ENV, "").strip()
        model = model or os.environ.get(MODEL_ENV, "").strip()

    validate_api_key(api_key)
    model = validate_model(model) if model else DEFAULT_MODEL
    return Credentials(api_key=api_key, model=model)
