from __future__ import annotations

import base64
import io
import logging
from functools import lru_cache
from typing import Any, NamedTuple

import requests
from google import genai
from google.genai import types
from google.genai.errors import APIError
from PIL import Image, UnidentifiedImageError

from imagestudio.config import (
    get_gemini_api_key,
    get_gemini_model,
    get_hf_api_key,
    get_hf_api_url,
    get_hf_model_id,
    get_image_provider,
    get_upstream_timeout_ms,
)
from imagestudio.errors import UpstreamConfigError, UpstreamError

logger = logging.getLogger("image-studio.upstream")

DEFAULT_MIME_TYPE = "image/png"
SIZE_DIMENSIONS: dict[str, tuple[int, int]] = {
    "portrait": (768, 1024),
    "landscape": (1024, 768),
}
SIZE_ASPECT_RATIOS: dict[str, str] = {
    "portrait": "3:4",
    "landscape": "4:3",
}


class GeneratedImage(NamedTuple):
    data: bytes
    mime_type: str


def build_generation_params(mode: str | None, size: str | None, detail: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {}

    normalized_detail = (detail or "").lower()
    if "fast" in normalized_detail:
        params["num_inference_steps"] = 2
        params["guidance_scale"] = 0.0
    elif "high" in normalized_detail:
        params["num_inference_steps"] = 6
        params["guidance_scale"] = 2.5
    else:
        params["num_inference_steps"] = 4
        params["guidance_scale"] = 1.0

    width, height = SIZE_DIMENSIONS.get((size or "").lower(), (1024, 1024))
    params["width"] = width
    params["height"] = height

    if mode == "brand":
        params["guidance_scale"] += 0.5

    return params


def sniff_mime_type(data: bytes, fallback: str = DEFAULT_MIME_TYPE) -> str:
    try:
        with Image.open(io.BytesIO(data)) as image:
            image_format = image.format
    except (UnidentifiedImageError, OSError):
        return fallback
    return Image.MIME.get(image_format or "", fallback)


def to_data_url(image: GeneratedImage) -> str:
    encoded = base64.b64encode(image.data).decode("ascii")
    return f"data:{image.mime_type};base64,{encoded}"


class HuggingFaceClient:
    provider = "huggingface"

    def __init__(self, api_key: str, api_url: str, model: str, timeout_ms: int):
        self._api_key = api_key
        self._api_url = api_url
        self.model = model
        self._timeout_seconds = timeout_ms / 1000
        self._session = requests.Session()

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def generate(
        self,
        prompt: str,
        mode: str | None = None,
        size: str | None = None,
        detail: str | None = None,
    ) -> GeneratedImage:
        if not self._api_key:
            raise UpstreamConfigError("HF_API_KEY is not configured on the server.")

        response = self._session.post(
            self._api_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "inputs": prompt,
                "parameters": build_generation_params(mode, size, detail),
                "options": {"wait_for_model": True},
            },
            timeout=self._timeout_seconds,
        )
        if not response.ok:
            logger.error("Hugging Face error: %s %s", response.status_code, response.text[:500])
            raise UpstreamError(response.status_code, response.text)

        data = response.content
        header_mime = (response.headers.get("content-type") or "").split(";")[0].strip().lower()
        fallback = header_mime if header_mime.startswith("image/") else DEFAULT_MIME_TYPE
        return GeneratedImage(data=data, mime_type=sniff_mime_type(data, fallback))


class GeminiClient:
    provider = "gemini"

    def __init__(self, api_key: str, model: str, timeout_ms: int):
        self._api_key = api_key
        self.model = model
        self._timeout_ms = timeout_ms
        self._client: genai.Client | None = None

    def is_configured(self) -> bool:
        return bool(self._api_key)

    def _get_client(self) -> genai.Client:
        if self._client is None:
            # google-genai expects timeout in milliseconds.
            http_options = types.HttpOptions(timeout=self._timeout_ms)
            self._client = genai.Client(api_key=self._api_key, http_options=http_options)
        return self._client

    @staticmethod
    def build_config(size: str | None) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=1,
            top_p=0.95,
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            response_modalities=["IMAGE"],
            image_config=types.ImageConfig(
                aspect_ratio=SIZE_ASPECT_RATIOS.get((size or "").lower(), "1:1"),
            ),
        )

    @staticmethod
    def build_prompt(prompt: str, mode: str | None, detail: str | None) -> str:
        text = prompt
        if mode == "brand":
            text += "\nStyle: clean, on-brand marketing visual"
        if "high" in (detail or "").lower():
            text += "\nDetail: highly detailed"
        return text

    def generate(
        self,
        prompt: str,
        mode: str | None = None,
        size: str | None = None,
        detail: str | None = None,
    ) -> GeneratedImage:
        if not self._api_key:
            raise UpstreamConfigError("GEMINI_API_KEY is not configured on the server.")

        try:
            response = self._get_client().models.generate_content(
                model=self.model,
                contents=[
                    types.Content(
                        role="user",
                        parts=[types.Part.from_text(text=self.build_prompt(prompt, mode, detail))],
                    )
                ],
                config=self.build_config(size),
            )
        except APIError as exc:
            status_code = exc.code or 502
            logger.error("Gemini error: %s %s", status_code, exc)
            raise UpstreamError(int(status_code), str(exc)) from exc

        return extract_image_from_response(response)


def extract_image_from_response(response: types.GenerateContentResponse) -> GeneratedImage:
    prompt_feedback = getattr(response, "prompt_feedback", None)
    block_reason = getattr(prompt_feedback, "block_reason", None)
    if block_reason:
        raise UpstreamError(400, f"Prompt blocked by safety filter: {block_reason}")

    collected_text: list[str] = []
    for candidate in response.candidates or []:
        finish_reason = str(candidate.finish_reason or "")
        if finish_reason in {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST"}:
            raise UpstreamError(400, f"Generation blocked: {finish_reason}")

        content = getattr(candidate, "content", None)
        if not content:
            continue

        for part in content.parts or []:
            text_part = getattr(part, "text", None)
            if text_part:
                collected_text.append(text_part)

            inline_data = getattr(part, "inline_data", None)
            raw_data = getattr(inline_data, "data", None)
            if not raw_data:
                continue

            if isinstance(raw_data, str):
                image_bytes = base64.b64decode(raw_data)
            else:
                image_bytes = bytes(raw_data)
            mime_type = getattr(inline_data, "mime_type", None) or sniff_mime_type(image_bytes)
            return GeneratedImage(data=image_bytes, mime_type=mime_type)

    if collected_text:
        logger.warning("Model returned text but no image output: %s", "".join(collected_text)[:500])
    raise UpstreamError(502, "Model response completed without image data")


def build_upstream_client(provider: str) -> HuggingFaceClient | GeminiClient:
    if provider == "gemini":
        return GeminiClient(
            api_key=get_gemini_api_key(),
            model=get_gemini_model(),
            timeout_ms=get_upstream_timeout_ms(),
        )
    return HuggingFaceClient(
        api_key=get_hf_api_key(),
        api_url=get_hf_api_url(),
        model=get_hf_model_id(),
        timeout_ms=get_upstream_timeout_ms(),
    )


@lru_cache(maxsize=1)
def get_upstream_client() -> HuggingFaceClient | GeminiClient:
    return build_upstream_client(get_image_provider())
