"""Centralized config loading for irx — read once at import time.

Provider keys are not part of config.yaml. They come from the environment
(``DEEPSEEK_API_KEY``, ``GEMINI_API_KEY``, ``ELEVENLABS_API_KEY``, usually
set in ``.env``) or from the credentials file at ``credentials_path``.
"""

from pathlib import Path

import yaml
from dotenv import load_dotenv

# .env sits at the project root, next to pyproject.toml
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

_config = yaml.safe_load(CONFIG_PATH.read_text(encoding="utf-8"))


def get_config() -> dict:
    """Return the flat irx settings (endpoints, timeouts, retry and escalation knobs, paths)."""
    return _config
