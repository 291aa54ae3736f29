"""Tests for irx.utils.persistence: chat history and credential files."""

import json

import pytest

from conftest import REASONER_KEY, REVIEWER_KEY
from irx.errors import CredentialInvalidFormat
from irx.utils.credentials import CredentialCache
from irx.utils.persistence import (
    clear_history,
    load_credentials,
    load_history,
    save_credentials,
    save_history,
)


def _messages(n):
    return [{"kind": "user" if i % 2 == 0 else "answer", "text": f"message {i}"} for i in range(n)]


class TestHistory:
    def test_save_keeps_most_recent(self, tmp_path):
        path = tmp_path / "history.json"
        written = save_history(_messages(8), path, max_entries=5)
        assert [m["text"] for m in written] == [f"message {i}" for i in range(3, 8)]

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == "1.0"
        assert "timestamp" in data
        assert len(data["messages"]) == 5

    def test_round_trip(self, tmp_path):
        path = tmp_path / "history.json"
        save_history(_messages(3), path, max_entries=5)
        assert load_history(path) == _messages(3)

    def test_save_of_load_is_idempotent(self, tmp_path):
        path = tmp_path / "history.json"
        save_history(_messages(4), path, max_entries=5)
        first = load_history(path)
        save_history(first, path, max_entries=5)
        assert load_history(path) == first

    def test_missing_file_is_empty(self, tmp_path):
        assert load_history(tmp_path / "nope.json") == []

    def test_malformed_entries_dropped(self, tmp_path):
        path = tmp_path / "history.json"
        path.write_text(json.dumps({"messages": [
            {"kind": "user", "text": "kept"},
            {"kind": "user"},
            {"kind": "robot", "text": "beep"},
        ]}), encoding="utf-8")
        assert load_history(path) == [{"kind": "user", "text": "kept"}]

    def test_corrupt_file_is_empty(self, tmp_path, capsys):
        path = tmp_path / "history.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_history(path) == []
        assert "[IRX] Could not read chat history" in capsys.readouterr().err

    def test_config_path_used_by_default(self, mock_config):
        save_history(_messages(2))
        assert len(load_history()) == 2

    def test_clear(self, tmp_path):
        path = tmp_path / "history.json"
        save_history(_messages(2), path)
        clear_history(path)
        assert not path.exists()
        clear_history(path)  # missing file is fine


class TestCredentials:
    def test_round_trip(self, tmp_path):
        path = tmp_path / "credentials.json"
        save_credentials({"reasoner": REASONER_KEY, "reviewer": REVIEWER_KEY}, path)
        assert load_credentials(path) == {"reasoner": REASONER_KEY, "speech": None, "reviewer": REVIEWER_KEY}

    def test_missing_file_is_none(self, tmp_path):
        assert load_credentials(tmp_path / "nope.json") is None

    def test_invalid_key_not_written(self, tmp_path):
        path = tmp_path / "credentials.json"
        with pytest.raises(CredentialInvalidFormat):
            save_credentials({"reasoner": REASONER_KEY, "reviewer": "too-short"}, path)
        assert not path.exists()

    def test_save_clears_cache(self, tmp_path):
        cache = CredentialCache(ttl=300, max_entries=8)
        cache.set("rejected-key-123", False)
        save_credentials({"reasoner": REASONER_KEY}, tmp_path / "credentials.json", cache=cache)
        assert len(cache) == 0

    def test_load_rejects_bad_stored_key(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text(json.dumps({"reasoner": "bad key"}), encoding="utf-8")
        with pytest.raises(CredentialInvalidFormat):
            load_credentials(path)

    def test_corrupt_file_is_none(self, tmp_path):
        path = tmp_path / "credentials.json"
        path.write_text("{not json", encoding="utf-8")
        assert load_credentials(path) is None
