"""Speech collaborator — text-to-speech with a sequential playback queue.

Constructed and owned by the hosting session. Playback is delegated to an
injected player coroutine so the CLI can write clips to disk and the
dashboard can hand them to the browser.
"""

import sys
from collections import deque
from collections.abc import Awaitable, Callable
from pathlib import Path

import httpx

from irx.config import get_config
from irx.errors import IRXError
from irx.utils.credentials import validate_credential
from irx.utils.parsing import post_with_retry

# Content carrying any of these is code or structured review output.
SKIP_MARKERS = ("```", "criticalIssues", "critical_issues", '"status":')

Player = Callable[[bytes], Awaitable[None]]


class FilePlayer:
    """Writes each clip to ``output_dir`` as a numbered mp3 file."""

    def __init__(self, output_dir: str | Path | None = None):
        self.output_dir = Path(output_dir or get_config().get("speech_output_dir", "./data/speech"))
        self.clips: list[Path] = []

    async def __call__(self, audio: bytes) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"clip-{len(self.clips) + 1:04d}.mp3"
        path.write_bytes(audio)
        self.clips.append(path)
        print(f"[IRX] Speech clip written to {path}", file=sys.stderr)


class SpeechService:
    """Generates speech for answers and plays clips one after another."""

    def __init__(self, config: dict | None = None, player: Player | None = None, sleep=None):
        config = config if config is not None else get_config()
        self.enabled = config.get("speech_enabled", True)
        self.api_url = config.get("speech_api_url", "https://api.elevenlabs.io/v1/text-to-speech")
        self.voice_id = config.get("speech_voice_id", "onwK4e9ZLuTAKqWW03F9")
        self.model_id = config.get("speech_model_id", "eleven_turbo_v2")
        self.timeout = config.get("request_timeout", 120)
        self.max_retries = config.get("llm_max_retries", 2)
        self.player = player or FilePlayer(config.get("speech_output_dir"))
        self.queue: deque[bytes] = deque()
        self.is_playing = False
        self.has_user_interacted = False
        self.quota_exceeded = False
        self._sleep = sleep

    def mark_user_interaction(self) -> None:
        """Record that the user interacted with the page; playback is gated on it."""
        self.has_user_interacted = True

    @staticmethod
    def should_skip(text: str) -> bool:
        return not text or not text.strip() or any(marker in text for marker in SKIP_MARKERS)

    async def speak(self, text: str, credential: str | None) -> bool:
        """Generate speech for ``text`` and queue it. Returns True if a clip was queued.

        Speech is best effort: a disabled service, skipped content, missing
        interaction, quota exhaustion or a provider error all return False
        with a diagnostic line and never interrupt the conversation.
        """
        if not self.enabled or self.should_skip(text):
            return False
        if not self.has_user_interacted:
            print("[IRX] Audio playback needs a user interaction first; skipping speech.", file=sys.stderr)
            return False

        try:
            credential = validate_credential(credential, "speech")
            audio = await self._generate(text, credential)
        except (IRXError, httpx.HTTPError) as e:
            print(f"[IRX] Speech generation error: {e!r}", file=sys.stderr)
            return False
        if audio is None:
            return False

        self.queue.append(audio)
        if not self.is_playing:
            await self._drain()
        return True

    async def _generate(self, text: str, credential: str) -> bytes | None:
        kwargs = {"sleep": self._sleep} if self._sleep is not None else {}
        try:
            response = await post_with_retry(
                f"{self.api_url}/{self.voice_id}",
                headers={"Content-Type": "application/json", "xi-api-key": credential},
                payload={
                    "text": text,
                    "model_id": self.model_id,
                    "voice_settings": {"stability": 0.5, "similarity_boost": 0.75},
                },
                timeout=self.timeout,
                max_retries=self.max_retries,
                **kwargs,
            )
        except httpx.HTTPStatusError as e:
            if _is_quota_error(e.response):
                self.quota_exceeded = True
                print("[IRX] Speech provider quota exceeded; speech skipped.", file=sys.stderr)
                return None
            raise
        return response.content

    async def _drain(self) -> None:
        self.is_playing = True
        try:
            while self.queue:
                clip = self.queue.popleft()
                try:
                    await self.player(clip)
                except OSError as e:
                    print(f"[IRX] Audio playback error: {e!r}. Skipping to next.", file=sys.stderr)
        finally:
            self.is_playing = False

    def stop(self) -> None:
        """Flush the queue and halt playback."""
        self.queue.clear()
        self.is_playing = False
        stop = getattr(self.player, "stop", None)
        if callable(stop):
            stop()


def _is_quota_error(response: httpx.Response) -> bool:
    try:
        data = response.json()
    except ValueError:
        return False
    detail = data.get("detail") if isinstance(data, dict) else None
    return isinstance(detail, dict) and detail.get("status") == "quota_exceeded"
