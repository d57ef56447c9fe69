"""Shared test fixtures."""
import json
from pathlib import Path
from typing import Callable, List

import httpx
import pytest

from selfie_generator.models import GenerateRequest, RequestMeta, SelfieMode

# 128 chars, PNG magic prefix, valid base64 alphabet.
PNG_BASE64 = "iVBORw0KGgo" + "A" * 117
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 56


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep vendor keys and config lookups out of the host environment."""
    for name in ("DASHSCOPE_API_KEY", "FAL_KEY", "OPENAI_API_KEY", "OPENAI_BASE_URL", "SELFIE_CONFIG"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SELFIE_HOME", str(tmp_path / "selfie-home"))


def write_character(
    root: Path,
    character_id: str = "brooke",
    meta: dict = None,
    images: List[str] = ("a.png",),
    prompt: str = "A friendly barista with short brown hair.",
) -> Path:
    """Create a character directory on disk and return it."""
    character_dir = root / character_id
    character_dir.mkdir(parents=True, exist_ok=True)
    (character_dir / "meta.json").write_text(
        json.dumps(meta if meta is not None else {"name": "Brooke"}),
        encoding="utf-8",
    )
    (character_dir / "character-prompt.md").write_text(prompt, encoding="utf-8")
    if images:
        (character_dir / "images").mkdir(exist_ok=True)
        for image in images:
            (character_dir / "images" / image).write_bytes(PNG_BYTES)
    return character_dir


@pytest.fixture
def character_root(tmp_path: Path) -> Path:
    """Built-in character root holding one character with a reference image."""
    root = tmp_path / "assets" / "characters"
    write_character(root)
    return root


@pytest.fixture
def make_request() -> Callable[..., GenerateRequest]:
    """Factory for GenerateRequest with one PNG reference image."""

    def _make(**overrides) -> GenerateRequest:
        data_url = f"data:image/png;base64,{PNG_BASE64}"
        values = dict(
            character_id="brooke",
            prompt="selfie at the beach",
            mode=SelfieMode.DIRECT,
            reference_path="/tmp/brooke/images/a.png",
            reference_paths=("/tmp/brooke/images/a.png",),
            reference_image_base64=PNG_BASE64,
            reference_image_base64_list=(PNG_BASE64,),
            reference_image_data_url=data_url,
            reference_image_data_urls=(data_url,),
            time_state="morning",
            meta=RequestMeta(state="morning", role_name="Brooke", event_source="test"),
        )
        values.update(overrides)
        return GenerateRequest(**values)

    return _make


class RecordingTransport:
    """httpx.MockTransport wrapper that keeps every request it served."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]):
        self.requests: List[httpx.Request] = []
        self._handler = handler
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport)

    def json_bodies(self) -> List[dict]:
        return [json.loads(request.content) for request in self.requests if request.content]


@pytest.fixture
def recording_transport() -> Callable[[Callable[[httpx.Request], httpx.Response]], RecordingTransport]:
    return RecordingTransport
