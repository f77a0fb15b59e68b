"""
Image edit capability backed by the OpenAI Images API.

The pipeline only depends on the `ImageEditor` protocol; this module provides
the production implementation. Upstream failures are mapped onto
`ModerationBlocked` (retryable with a softer prompt) and `EditError`
(everything else).
"""
from __future__ import annotations

import base64
from io import BytesIO
import logging
import time
from typing import List, Optional, Protocol, Sequence, Tuple

import openai
import requests
from openai import OpenAI
from PIL import Image, UnidentifiedImageError

from domain.errors import EditError, ModerationBlocked
from settings import settings

logger = logging.getLogger(__name__)

# Sizes accepted by the images API; anything else falls back to landscape.
API_SIZES = ("1024x1024", "1024x1536", "1536x1024")
DEFAULT_API_SIZE = "1536x1024"

# Output encodings the images API can return.
OUTPUT_FORMATS = ("png", "jpeg", "webp")

_MIME_BY_FORMAT = {"PNG": "image/png", "JPEG": "image/jpeg", "WEBP": "image/webp"}


class ImageEditor(Protocol):
    def edit(
        self,
        base_image: bytes,
        reference_images: Sequence[bytes],
        mask: Optional[bytes],
        prompt: str,
    ) -> bytes:
        ...


def api_size(target: str) -> str:
    return target if target in API_SIZES else DEFAULT_API_SIZE


def sniff_mime(data: bytes) -> Tuple[str, str]:
    """Return (extension, mime) for encoded image bytes."""
    try:
        with Image.open(BytesIO(data)) as img:
            fmt = img.format or ""
    except (UnidentifiedImageError, OSError):
        fmt = ""
    mime = _MIME_BY_FORMAT.get(fmt, "application/octet-stream")
    ext = {"image/png": "png", "image/jpeg": "jpg", "image/webp": "webp"}.get(mime, "bin")
    return ext, mime


def _error_details(err: BaseException) -> Tuple[str, str, str]:
    code = str(getattr(err, "code", None) or "").strip()
    request_id = str(getattr(err, "request_id", None) or "").strip()
    message = str(getattr(err, "message", None) or err).strip()
    return code, message, request_id


class OpenAIImageEditor:
    """
    Calls `images.edit` with the base image first, then reference images.

    Construct once per process (or per request) and inject into the pipeline.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        size: str = DEFAULT_API_SIZE,
        quality: Optional[str] = None,
        input_fidelity: Optional[str] = None,
        output_format: str = "png",
        timeout: Optional[float] = None,
        client: Optional[OpenAI] = None,
    ) -> None:
        api_key = api_key or settings.OPENAI_API_KEY
        timeout = timeout or settings.IMAGE_EDIT_TIMEOUT_SECONDS
        self._client = client or (OpenAI(api_key=api_key, timeout=timeout) if api_key else None)
        self.model = model or settings.IMAGE_EDIT_MODEL
        self.size = api_size(size)
        self.quality = quality or settings.IMAGE_EDIT_QUALITY
        self.input_fidelity = input_fidelity or settings.IMAGE_EDIT_INPUT_FIDELITY
        self.output_format = output_format
        self.timeout = timeout

    @staticmethod
    def _as_file(name: str, data: bytes) -> Tuple[str, bytes, str]:
        ext, mime = sniff_mime(data)
        return f"{name}.{ext}", data, mime

    def edit(
        self,
        base_image: bytes,
        reference_images: Sequence[bytes],
        mask: Optional[bytes],
        prompt: str,
    ) -> bytes:
        if self._client is None:
            raise EditError("OPENAI_API_KEY is not set", code="not_configured")

        images: List[Tuple[str, bytes, str]] = [self._as_file("base", base_image)]
        images += [self._as_file(f"reference-{i + 1}", ref) for i, ref in enumerate(reference_images)]
        kwargs = {
            "model": self.model,
            "image": images,
            "prompt": prompt,
            "size": self.size,
            "quality": self.quality,
            "input_fidelity": self.input_fidelity,
            "output_format": self.output_format,
        }
        if mask is not None:
            kwargs["mask"] = ("mask.png", mask, "image/png")

        start = time.monotonic()
        logger.info(
            "images.edit:start model=%s size=%s images=%d mask=%s promptLen=%d",
            self.model, self.size, len(images), "yes" if mask is not None else "no", len(prompt),
        )
        try:
            res = self._client.images.edit(**kwargs)
        except openai.APIError as err:
            code, message, request_id = _error_details(err)
            logger.error("images.edit:error requestId=%s code=%s message=%s", request_id, code, message)
            if code == "moderation_blocked":
                raise ModerationBlocked(message, request_id=request_id) from err
            raise EditError(message, code=code, request_id=request_id) from err

        out = self._decode_response(res)
        logger.info("images.edit:success bytes=%d ms=%d", len(out), int((time.monotonic() - start) * 1000))
        return out

    def _decode_response(self, res) -> bytes:
        data = getattr(res, "data", None) or []
        if not data:
            raise EditError("Image edit returned no image data", code="empty_response")
        item = data[0]
        b64 = getattr(item, "b64_json", None)
        if b64:
            return base64.b64decode(b64)
        url = getattr(item, "url", None)
        if url:
            try:
                resp = requests.get(url, timeout=60)
                resp.raise_for_status()
            except requests.RequestException as err:
                raise EditError(f"Failed to download edited image: {err}", code="download_failed") from err
            return resp.content
        raise EditError("Image edit response has no b64_json or url", code="empty_response")
