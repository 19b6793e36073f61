import asyncio
from pathlib import Path

import httpx
import pytest

from caption_server.config import ServerConfig
from caption_server.errors import ErrorCode, TranscriptionError
from caption_server.model.backends import get_backend, select_backend
from caption_server.model.backends import local_whisper as local_whisper_module
from caption_server.model.backends.groq import GroqTranscriptionBackend
from caption_server.model.backends.local_whisper import WhisperCliBackend


def _groq(handler) -> GroqTranscriptionBackend:
    return GroqTranscriptionBackend(
        api_key="secret-key",
        model="whisper-large-v3-turbo",
        language="en",
        prompt="Meeting transcript.",
        base_url="https://api.groq.com/openai/v1",
        transport=httpx.MockTransport(handler),
    )


def _wav(tmp_path: Path) -> Path:
    path = tmp_path / "chunk.wav"
    path.write_bytes(b"RIFF....WAVEfmt ")
    return path


def test_groq_posts_multipart_request(tmp_path):
    """Test the hosted backend sends the file and form fields."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = request.content
        return httpx.Response(200, text=" Ship it on Friday.\n")

    async def scenario():
        backend = _groq(handler)
        try:
            return await backend.transcribe(_wav(tmp_path))
        finally:
            await backend.close()

    text = asyncio.run(scenario())

    assert text == " Ship it on Friday.\n"
    assert seen["url"] == "https://api.groq.com/openai/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer secret-key"
    body = seen["body"]
    assert b'filename="chunk.wav"' in body
    assert b'name="model"' in body and b"whisper-large-v3-turbo" in body
    assert b'name="response_format"' in body and b"text" in body
    assert b'name="language"' in body
    assert b"Meeting transcript." in body


def test_groq_non_200_raises(tmp_path):
    """Test API errors become TranscriptionError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    async def scenario():
        backend = _groq(handler)
        try:
            await backend.transcribe(_wav(tmp_path))
        finally:
            await backend.close()

    with pytest.raises(TranscriptionError) as exc_info:
        asyncio.run(scenario())
    assert "429" in str(exc_info.value)
    assert exc_info.value.code == ErrorCode.TRANSCRIPTION_FAILED


def test_groq_transport_error_raises(tmp_path):
    """Test network failures become TranscriptionError."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def scenario():
        backend = _groq(handler)
        try:
            await backend.transcribe(_wav(tmp_path))
        finally:
            await backend.close()

    with pytest.raises(TranscriptionError):
        asyncio.run(scenario())


class _FakeProcess:
    def __init__(self, returncode, stderr=b"", on_run=None):
        self.returncode = None
        self._final = returncode
        self._stderr = stderr
        self._on_run = on_run

    async def communicate(self):
        if self._on_run is not None:
            self._on_run()
        self.returncode = self._final
        return b"", self._stderr

    def kill(self):
        self.returncode = -9

    async def wait(self):
        return self.returncode


def _patch_subprocess(monkeypatch, process, calls):
    async def fake_exec(*args, **kwargs):
        calls.append(list(args))
        return process

    monkeypatch.setattr(
        local_whisper_module.asyncio, "create_subprocess_exec", fake_exec
    )


def test_local_whisper_command_contract(tmp_path):
    """Test CLI arguments match the whisper tool contract."""
    backend = WhisperCliBackend(tmp_path, model="base", language="de")
    audio_path = tmp_path / "peer-1.wav"
    assert backend.command(audio_path) == [
        "whisper",
        str(audio_path),
        "--model",
        "base",
        "--output_format",
        "txt",
        "--output_dir",
        str(tmp_path),
        "--language",
        "de",
        "--task",
        "transcribe",
    ]
    assert backend.output_path(audio_path) == tmp_path / "peer-1.txt"


def test_local_whisper_reads_and_removes_output(tmp_path, monkeypatch):
    """Test transcript text is read from the .txt output and cleaned up."""
    backend = WhisperCliBackend(tmp_path)
    audio_path = tmp_path / "peer-1.wav"
    txt_path = tmp_path / "peer-1.txt"
    calls = []
    process = _FakeProcess(
        0, on_run=lambda: txt_path.write_text("hello team\n", encoding="utf-8")
    )
    _patch_subprocess(monkeypatch, process, calls)

    text = asyncio.run(backend.transcribe(audio_path))

    assert text == "hello team\n"
    assert not txt_path.exists()
    assert calls[0][0] == "whisper"


def test_local_whisper_tolerates_invalid_utf8_output(tmp_path, monkeypatch):
    """Test undecodable bytes in the .txt output are replaced, not raised."""
    backend = WhisperCliBackend(tmp_path)
    txt_path = tmp_path / "peer-1.txt"
    process = _FakeProcess(0, on_run=lambda: txt_path.write_bytes(b"ok \xff\xfe done"))
    _patch_subprocess(monkeypatch, process, [])

    text = asyncio.run(backend.transcribe(tmp_path / "peer-1.wav"))

    assert text == "ok \ufffd\ufffd done"
    assert not txt_path.exists()


def test_local_whisper_missing_output_is_empty(tmp_path, monkeypatch):
    """Test a successful run without an output file yields empty text."""
    backend = WhisperCliBackend(tmp_path)
    _patch_subprocess(monkeypatch, _FakeProcess(0), [])

    assert asyncio.run(backend.transcribe(tmp_path / "peer-1.wav")) == ""


def test_local_whisper_non_zero_exit_raises(tmp_path, monkeypatch):
    """Test a failing CLI reports exit code and stderr."""
    backend = WhisperCliBackend(tmp_path)
    _patch_subprocess(monkeypatch, _FakeProcess(2, stderr=b"bad model"), [])

    with pytest.raises(TranscriptionError) as exc_info:
        asyncio.run(backend.transcribe(tmp_path / "peer-1.wav"))
    assert "code 2" in str(exc_info.value)
    assert "bad model" in str(exc_info.value)


def test_local_whisper_missing_executable(tmp_path, monkeypatch):
    """Test an unstartable CLI is reported as provider unavailable."""
    backend = WhisperCliBackend(tmp_path, executable="no-such-whisper")

    async def fake_exec(*args, **kwargs):
        raise FileNotFoundError("no-such-whisper")

    monkeypatch.setattr(
        local_whisper_module.asyncio, "create_subprocess_exec", fake_exec
    )
    with pytest.raises(TranscriptionError) as exc_info:
        asyncio.run(backend.transcribe(tmp_path / "peer-1.wav"))
    assert exc_info.value.code == ErrorCode.PROVIDER_UNAVAILABLE


def test_get_backend_resolves_aliases():
    """Test provider names resolve to implementations."""
    assert get_backend("groq") is GroqTranscriptionBackend
    assert get_backend("Local-Whisper") is WhisperCliBackend
    assert get_backend("local") is WhisperCliBackend
    with pytest.raises(ValueError):
        get_backend("deepgram")


def test_select_backend_falls_back_without_api_key(tmp_path):
    """Test the hosted provider without a credential uses the local CLI."""
    config = ServerConfig(provider="groq", groq_api_key="", local_model="small")
    backend = select_backend(config, tmp_path)
    assert isinstance(backend, WhisperCliBackend)
    assert backend.model == "small"
    assert backend.output_dir == tmp_path


def test_select_backend_uses_groq_with_key(tmp_path):
    """Test the hosted provider is chosen when a key is configured."""
    config = ServerConfig(provider="groq", groq_api_key="k", groq_model="m")
    backend = select_backend(config, tmp_path)
    try:
        assert isinstance(backend, GroqTranscriptionBackend)
        assert backend.model == "m"
    finally:
        asyncio.run(backend.close())


def test_select_backend_local_provider(tmp_path):
    """Test the local provider ignores any configured key."""
    config = ServerConfig(provider="local-whisper", groq_api_key="k")
    assert isinstance(select_backend(config, tmp_path), WhisperCliBackend)
