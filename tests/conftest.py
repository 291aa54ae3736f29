"""Shared fixtures for the IRX test suite."""

import json
from unittest.mock import patch

import pytest
from httpx import Response

from irx.store import MessageStore

REASONER_URL = "https://reasoner.test/v1/chat/completions"
REVIEWER_URL = "https://reviewer.test/models/test-reviewer:generateContent"
SPEECH_URL = "https://speech.test/v1/text-to-speech"

REASONER_KEY = "sk-test1234567890"
SPEECH_KEY = "abcdef0123456789abcdef0123456789"
REVIEWER_KEY = "AIza" + "x" * 35


async def no_sleep(_seconds):
    return None


def chat_response(content):
    """Chat-completions response carrying ``content``."""
    return Response(200, json={"choices": [{"message": {"content": content}}]})


def review_response(data):
    """generateContent response whose text is ``data`` (dict → JSON, str as-is)."""
    text = data if isinstance(data, str) else json.dumps(data)
    return Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


@pytest.fixture
def test_config(tmp_path):
    """Complete config with test endpoints, zero jitter and tmp paths."""
    return {
        "reasoner_model": "test-reasoner",
        "reasoner_api_url": REASONER_URL,
        "reasoner_temperature": 0.7,
        "thinking_max_tokens": 2000,
        "solution_max_tokens": 4000,
        "reasoner_stream": False,
        "request_timeout": 5,
        "total_timeout": 5,
        "reviewer_model": "test-reviewer",
        "reviewer_api_url": "https://reviewer.test/models/{model}:generateContent",
        "reviewer_timeout": 5,
        "reviewer_temperature": 0.7,
        "reviewer_max_output_tokens": 1024,
        "llm_max_retries": 2,
        "auto_escalation_enabled": True,
        "escalation_max_retries": 3,
        "retry_base_delay": 1,
        "retry_jitter_max": 0,
        "retry_max_delay": 120,
        "history_max_entries": 5,
        "history_path": str(tmp_path / "chat_history.json"),
        "credentials_path": str(tmp_path / "credentials.json"),
        "credential_cache_ttl": 300,
        "credential_cache_size": 64,
        "speech_enabled": True,
        "speech_api_url": SPEECH_URL,
        "speech_voice_id": "voice-1",
        "speech_model_id": "eleven_turbo_v2",
        "speech_output_dir": str(tmp_path / "speech"),
        "expert_prompts_enabled": True,
        "banner": "Welcome to the Interactive Reasoning Explorer",
    }


@pytest.fixture
def mock_config(test_config):
    """Patch the config singleton with test-friendly values."""
    with patch("irx.config._config", test_config):
        yield test_config


@pytest.fixture
def store():
    """Store holding the banner and one question."""
    s = MessageStore("Welcome")
    s.append("user", "What is 2+2?")
    return s
