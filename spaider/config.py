"""Centralised configuration for spaider.

Load order (later sources override earlier ones):
  1. Built-in defaults
  2. ~/.spaider/config.json
  3. .env file (via python-dotenv)
  4. Real environment variables

Values are read once at import time and stay read-only for the lifetime of
the process.
"""

import json
import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env first so real env vars still win over it
load_dotenv()

# ── defaults ──────────────────────────────────────────────────────────
_DEFAULTS = {
    "base_url": "http://localhost:1234/v1",
    "api_key": "no-key",
    "model_name": "gpt-4.1",
    "model_provider": "openai",
    "instruction_model": "",  # Empty means use model_name
    "reasoning_model": "",  # Empty means use the instruction model
    "temperature": "0",
    "max_tokens": "8000",
    "request_timeout": "30",
    "max_retries": "2",
    "structured_output": "true",  # Ask the backend for json_schema output
    "preview_chars": "2000",
    "max_discovered_files": "20",
    "filter_discovered": "false",  # Let the LLM filter discovered files
}

# Map config keys to the corresponding env-var names
_ENV_MAP = {
    "base_url": "OPENAI_BASE_URL",
    "api_key": "OPENAI_API_KEY",
    "model_name": "OPENAI_MODEL",
    "model_provider": "LLM_MODEL_PROVIDER",
    "instruction_model": "LLM_INSTRUCTION_MODEL",
    "reasoning_model": "LLM_REASONING_MODEL",
    "temperature": "LLM_TEMPERATURE",
    "max_tokens": "LLM_MAX_TOKENS",
    "request_timeout": "LLM_REQUEST_TIMEOUT",
    "max_retries": "LLM_MAX_RETRIES",
    "structured_output": "LLM_STRUCTURED_OUTPUT",
    "preview_chars": "PREVIEW_CHARS",
    "max_discovered_files": "MAX_DISCOVERED_FILES",
    "filter_discovered": "FILTER_DISCOVERED",
}

_TRUTHY = {"1", "true", "yes", "on"}


# ── data directory (configurable via SPAIDER_DATA_DIR) ────────────────
def _get_data_dir() -> Path:
    """Return the data directory, respecting SPAIDER_DATA_DIR env var."""
    env_dir = os.environ.get("SPAIDER_DATA_DIR")
    if env_dir:
        return Path(env_dir)
    return Path.home() / ".spaider"


_config_path = _get_data_dir() / "config.json"

_file_cfg: dict = {}
if _config_path.is_file():
    try:
        _file_cfg = json.loads(_config_path.read_text(encoding="utf-8"))
        if not isinstance(_file_cfg, dict):
            _file_cfg = {}
    except (json.JSONDecodeError, OSError):
        _file_cfg = {}


def _get(key: str) -> str:
    """Return a config value using the load-order described above."""
    # 4) env var  (highest priority)
    env_name = _ENV_MAP.get(key)
    if env_name:
        env_val = os.getenv(env_name)
        if env_val:  # non-empty string
            return env_val

    # 3) ~/.spaider/config.json
    val = _file_cfg.get(key)
    if val is not None and str(val):
        return str(val)

    # 1) built-in default
    return _DEFAULTS[key]


def _get_bool(key: str) -> bool:
    return _get(key).strip().lower() in _TRUTHY


# ── public constants ──────────────────────────────────────────────────
LLM_BASE_URL: str = _get("base_url")
LLM_API_KEY: str = _get("api_key")
LLM_MODEL_NAME: str = _get("model_name")
LLM_MODEL_PROVIDER: str = _get("model_provider")
LLM_INSTRUCTION_MODEL: str = _get("instruction_model")
LLM_REASONING_MODEL: str = _get("reasoning_model")
LLM_TEMPERATURE: float = float(_get("temperature"))
LLM_MAX_TOKENS: int = int(_get("max_tokens"))
LLM_REQUEST_TIMEOUT: float = float(_get("request_timeout"))
LLM_MAX_RETRIES: int = int(_get("max_retries"))
LLM_STRUCTURED_OUTPUT: bool = _get_bool("structured_output")
PREVIEW_CHARS: int = int(_get("preview_chars"))
MAX_DISCOVERED_FILES: int = int(_get("max_discovered_files"))
FILTER_DISCOVERED: bool = _get_bool("filter_discovered")


def get_model_name(model_type: str = "instruction") -> str:
    """Return the model name for the given model type.

    Model types:
      - "instruction": Structured extraction and file rewriting
      - "reasoning": Planning and change generation

    Resolution order:
      1. If reasoning_model is requested and set, use it
      2. If instruction_model is set, use it
      3. model_name
    """
    if model_type == "reasoning" and LLM_REASONING_MODEL:
        return LLM_REASONING_MODEL
    if LLM_INSTRUCTION_MODEL:
        return LLM_INSTRUCTION_MODEL
    return LLM_MODEL_NAME
