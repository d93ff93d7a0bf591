import base64
from types import SimpleNamespace

import pytest
from google.genai.errors import ClientError, ServerError

from imagestudio import upstream
from imagestudio.errors import UpstreamConfigError, UpstreamError
from imagestudio.upstream import (
    GeminiClient,
    GeneratedImage,
    HuggingFaceClient,
    build_generation_params,
    build_upstream_client,
    extract_image_from_response,
    sniff_mime_type,
    to_data_url,
)


@pytest.mark.parametrize(
    ("mode", "size", "detail", "expected"),
    [
        (None, None, None, {"num_inference_steps": 4, "guidance_scale": 1.0, "width": 1024, "height": 1024}),
        (None, "portrait", "Fast draft", {"num_inference_steps": 2, "guidance_scale": 0.0, "width": 768, "height": 1024}),
        ("brand", "LANDSCAPE", "high", {"num_inference_steps": 6, "guidance_scale": 3.0, "width": 1024, "height": 768}),
        ("brand", "square", "balanced", {"num_inference_steps": 4, "guidance_scale": 1.5, "width": 1024, "height": 1024}),
    ],
)
def test_build_generation_params(mode, size, detail, expected) -> None:
    assert build_generation_params(mode, size, detail) == expected


def test_sniff_mime_type(image_bytes_factory) -> None:
    assert sniff_mime_type(image_bytes_factory("PNG")) == "image/png"
    assert sniff_mime_type(image_bytes_factory("JPEG")) == "image/jpeg"
    assert sniff_mime_type(b"not an image") == "image/png"
    assert sniff_mime_type(b"not an image", fallback="image/webp") == "image/webp"


def test_to_data_url() -> None:
    url = to_data_url(GeneratedImage(data=b"\x89PNG", mime_type="image/png"))
    assert url == "data:image/png;base64," + base64.b64encode(b"\x89PNG").decode("ascii")


class FakeHttpResponse:
    def __init__(self, status_code: int, content: bytes = b"", headers: dict | None = None):
        self.status_code = status_code
        self.content = content
        self.headers = headers or {}

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")


def make_hf_client(monkeypatch, response: FakeHttpResponse, api_key: str = "hf_test") -> tuple[HuggingFaceClient, list]:
    client = HuggingFaceClient(api_key=api_key, api_url="https://hf.example/models/x", model="x", timeout_ms=5_000)
    calls: list = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return response

    monkeypatch.setattr(client._session, "post", fake_post)
    return client, calls


def test_hugging_face_request_shape(monkeypatch, png_bytes) -> None:
    client, calls = make_hf_client(monkeypatch, FakeHttpResponse(200, png_bytes, {"content-type": "image/png"}))

    image = client.generate("a red fox", mode="brand", size="portrait", detail="fast")

    assert image == GeneratedImage(data=png_bytes, mime_type="image/png")
    url, kwargs = calls[0]
    assert url == "https://hf.example/models/x"
    assert kwargs["headers"]["Authorization"] == "Bearer hf_test"
    assert kwargs["timeout"] == 5.0
    assert kwargs["json"] == {
        "inputs": "a red fox",
        "parameters": {"num_inference_steps": 2, "guidance_scale": 0.5, "width": 768, "height": 1024},
        "options": {"wait_for_model": True},
    }


def test_hugging_face_detects_actual_format(monkeypatch, image_bytes_factory) -> None:
    jpeg = image_bytes_factory("JPEG")
    client, _ = make_hf_client(monkeypatch, FakeHttpResponse(200, jpeg, {"content-type": "application/octet-stream"}))

    assert client.generate("x").mime_type == "image/jpeg"


def test_hugging_face_error_is_truncated(monkeypatch) -> None:
    client, _ = make_hf_client(monkeypatch, FakeHttpResponse(503, b"e" * 2000))

    with pytest.raises(UpstreamError) as excinfo:
        client.generate("x")

    assert excinfo.value.status_code == 503
    assert len(excinfo.value.detail) == 500


def test_hugging_face_requires_key(monkeypatch) -> None:
    client, calls = make_hf_client(monkeypatch, FakeHttpResponse(200), api_key="")

    assert client.is_configured() is False
    with pytest.raises(UpstreamConfigError):
        client.generate("x")
    assert calls == []


def inline_part(data, mime_type="image/png"):
    return SimpleNamespace(text=None, inline_data=SimpleNamespace(data=data, mime_type=mime_type))


def gemini_response(parts, finish_reason="STOP", block_reason=None):
    return SimpleNamespace(
        prompt_feedback=SimpleNamespace(block_reason=block_reason),
        candidates=[SimpleNamespace(finish_reason=finish_reason, content=SimpleNamespace(parts=parts))],
    )


def test_extract_image_from_gemini_response(png_bytes) -> None:
    response = gemini_response([SimpleNamespace(text="here you go", inline_data=None), inline_part(png_bytes)])

    assert extract_image_from_response(response) == GeneratedImage(data=png_bytes, mime_type="image/png")


def test_extract_image_accepts_base64_text(png_bytes) -> None:
    encoded = base64.b64encode(png_bytes).decode("ascii")
    response = gemini_response([inline_part(encoded, mime_type=None)])

    assert extract_image_from_response(response) == GeneratedImage(data=png_bytes, mime_type="image/png")


def test_extract_image_blocked_prompt() -> None:
    with pytest.raises(UpstreamError) as excinfo:
        extract_image_from_response(gemini_response([], block_reason="SAFETY"))
    assert excinfo.value.status_code == 400


def test_extract_image_without_image_data() -> None:
    response = gemini_response([SimpleNamespace(text="I cannot draw that", inline_data=None)])

    with pytest.raises(UpstreamError) as excinfo:
        extract_image_from_response(response)
    assert excinfo.value.status_code == 502


def test_gemini_client_builds_aspect_ratio() -> None:
    assert GeminiClient.build_config("portrait").image_config.aspect_ratio == "3:4"
    assert GeminiClient.build_config(None).image_config.aspect_ratio == "1:1"
    assert GeminiClient.build_config("landscape").response_modalities == ["IMAGE"]


def test_gemini_client_requires_key() -> None:
    client = GeminiClient(api_key="", model="gemini-2.5-flash-image", timeout_ms=1_000)

    assert client.is_configured() is False
    with pytest.raises(UpstreamConfigError):
        client.generate("x")


def test_build_upstream_client_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("HF_API_KEY", "hf_env")
    monkeypatch.setenv("HF_MODEL_ID", "org/model")
    monkeypatch.delenv("HF_API_URL", raising=False)
    monkeypatch.setenv("GEMINI_API_KEY", "gm_env")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")

    hf = build_upstream_client("huggingface")
    gemini = build_upstream_client("gemini")

    assert isinstance(hf, HuggingFaceClient)
    assert hf.model == "org/model"
    assert hf._api_url == "https://api-inference.huggingface.co/models/org/model"
    assert isinstance(gemini, GeminiClient)
    assert gemini.model == "gemini-test"
    assert gemini.is_configured() is True


def test_get_upstream_client_is_cached(monkeypatch) -> None:
    monkeypatch.setenv("IMAGE_PROVIDER", "gemini")
    upstream.get_upstream_client.cache_clear()
    try:
        assert upstream.get_upstream_client() is upstream.get_upstream_client()
        assert upstream.get_upstream_client().provider == "gemini"
    finally:
        upstream.get_upstream_client.cache_clear()


@pytest.mark.parametrize(
    ("error", "status_code"),
    [
        (ServerError(503, {"error": {"code": 503, "message": "The model is overloaded.", "status": "UNAVAILABLE"}}), 503),
        (ClientError(429, {"error": {"code": 429, "message": "Quota exceeded.", "status": "RESOURCE_EXHAUSTED"}}), 429),
    ],
)
def test_gemini_api_errors_become_upstream_errors(error, status_code) -> None:
    client = GeminiClient(api_key="gm_test", model="gemini-2.5-flash-image", timeout_ms=1_000)

    def fail(**kwargs):
        raise error

    client._client = SimpleNamespace(models=SimpleNamespace(generate_content=fail))

    with pytest.raises(UpstreamError) as excinfo:
        client.generate("x")
    assert excinfo.value.status_code == status_code
