"""Environment-driven settings.

Values come from a `.env` file (via python-dotenv) and the process
environment, with the environment taking precedence.
"""

import os
from dataclasses import dataclass
from typing import Optional, Union
from pathlib import Path

import dotenv

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_VERTEX_LOCATION = "us-central1"


@dataclass(frozen=True)
class Settings:
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    google_api_key: Optional[str] = None
    deepseek_api_key: Optional[str] = None
    vertex_project: Optional[str] = None
    vertex_location: str = DEFAULT_VERTEX_LOCATION
    vertex_key_file: Optional[str] = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    log_json: bool = False
    log_level: str = "INFO"


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_settings(env_file: Optional[Union[str, Path]] = None) -> Settings:
    """
    Load router settings from `.env` and the environment.

    Args:
        env_file: Path of the dotenv file. Defaults to the nearest `.env`
            found by python-dotenv.

    Returns:
        Settings: Frozen settings object.

    Raises:
        ValueError: If LLM_TIMEOUT_SECONDS is not a number.
    """
    if env_file is None:
        env_file = dotenv.find_dotenv(usecwd=True)
    dotenv.load_dotenv(env_file, override=False)
    env = os.environ

    raw_timeout = env.get("LLM_TIMEOUT_SECONDS")
    try:
        timeout = float(raw_timeout) if raw_timeout else DEFAULT_TIMEOUT_SECONDS
    except ValueError as e:
        raise ValueError(f"LLM_TIMEOUT_SECONDS must be a number, got {raw_timeout!r}") from e

    return Settings(
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        anthropic_api_key=env.get("ANTHROPIC_API_KEY") or None,
        # The web app historically used GOOGLE_AI_API_KEY
        google_api_key=env.get("GOOGLE_API_KEY") or env.get("GOOGLE_AI_API_KEY") or None,
        deepseek_api_key=env.get("DEEPSEEK_API_KEY") or None,
        vertex_project=env.get("GOOGLE_CLOUD_PROJECT") or None,
        vertex_location=env.get("GOOGLE_CLOUD_LOCATION") or DEFAULT_VERTEX_LOCATION,
        vertex_key_file=env.get("VERTEX_KEY_FILE") or None,
        timeout=timeout,
        log_json=_flag(env.get("LLM_LOG_JSON")),
        log_level=(env.get("LLM_LOG_LEVEL") or "INFO").upper(),
    )
