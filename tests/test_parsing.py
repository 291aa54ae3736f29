"""Tests for irx.utils.parsing: strip_fences, decode_with_repair, post_with_retry."""

import httpx
import pytest
import respx
from httpx import Response

from conftest import no_sleep
from irx.utils.parsing import _is_transient, decode_with_repair, post_with_retry, strip_fences

URL = "https://provider.test/v1/generate"


def _default(note):
    return {"error": note}


# --- strip_fences ---

class TestStripFences:
    def test_strip_json_fences(self):
        text = '```json\n{"key": "value"}\n```'
        assert strip_fences(text) == '{"key": "value"}'

    def test_strip_plain_fences(self):
        text = '```\n{"key": "value"}\n```'
        assert strip_fences(text) == '{"key": "value"}'

    def test_no_fences_returns_stripped(self):
        text = '  {"key": "value"}  '
        assert strip_fences(text) == '{"key": "value"}'

    def test_unbalanced_fence_stripped(self):
        text = '```json\n{"key": "value"}'
        assert strip_fences(text) == '{"key": "value"}'


# --- decode_with_repair ---

class TestDecodeWithRepair:
    def test_clean_object_is_ok(self):
        result = decode_with_repair('{"verdict": "APPROVED"}', _default)
        assert result["status"] == "ok"
        assert result["value"] == {"verdict": "APPROVED"}
        assert result["notes"] == []

    def test_fenced_object_is_repaired(self):
        result = decode_with_repair('```json\n{"verdict": "APPROVED"}\n```', _default)
        assert result["status"] == "repaired"
        assert result["value"] == {"verdict": "APPROVED"}
        assert "Stripped markdown code fences" in result["notes"]

    def test_prose_fails_with_default(self):
        result = decode_with_repair("Looks good to me!", _default)
        assert result["status"] == "failed"
        assert result["value"] == {"error": "Response was not a structured object"}

    def test_broken_json_fails_with_parse_note(self):
        result = decode_with_repair('{"verdict": ', _default)
        assert result["status"] == "failed"
        assert result["value"]["error"].startswith("Could not parse response")

    def test_none_fails(self):
        assert decode_with_repair(None, _default)["status"] == "failed"


# --- _is_transient ---

class TestIsTransient:
    def _status_error(self, code):
        request = httpx.Request("POST", URL)
        return httpx.HTTPStatusError("err", request=request, response=Response(code, request=request))

    @pytest.mark.parametrize("code", [429, 500, 502, 503])
    def test_retryable_status_codes(self, code):
        assert _is_transient(self._status_error(code))

    @pytest.mark.parametrize("code", [400, 401, 403, 404])
    def test_client_errors_not_transient(self, code):
        assert not _is_transient(self._status_error(code))

    def test_timeout_is_transient(self):
        assert _is_transient(httpx.ReadTimeout("slow"))

    def test_value_error_not_transient(self):
        assert not _is_transient(ValueError("nope"))


# --- post_with_retry ---

class TestPostWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self):
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(URL).mock(return_value=Response(200, json={"ok": True}))
            response = await post_with_retry(URL, headers={}, payload={"a": 1}, timeout=5, max_retries=2, sleep=no_sleep)
        assert response.json() == {"ok": True}
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self):
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(URL).mock(side_effect=[Response(503), Response(200, json={"ok": True})])
            response = await post_with_retry(URL, headers={}, payload={}, timeout=5, max_retries=2, sleep=no_sleep)
        assert response.status_code == 200
        assert route.call_count == 2

    @pytest.mark.asyncio
    async def test_auth_error_not_retried(self):
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(URL).mock(return_value=Response(401))
            with pytest.raises(httpx.HTTPStatusError):
                await post_with_retry(URL, headers={}, payload={}, timeout=5, max_retries=2, sleep=no_sleep)
        assert route.call_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_reraise(self):
        with respx.mock(assert_all_called=True) as respx_mock:
            route = respx_mock.post(URL).mock(return_value=Response(500))
            with pytest.raises(httpx.HTTPStatusError):
                await post_with_retry(URL, headers={}, payload={}, timeout=5, max_retries=2, sleep=no_sleep)
        assert route.call_count == 3
