"""
Tests for the OpenAI-backed image editor. No network: the SDK client is a MagicMock.
"""
import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai
import pytest
import requests

from domain.errors import EditError, ModerationBlocked
from services import image_edit_client as iec
from services.image_edit_client import OpenAIImageEditor, api_size, sniff_mime
from settings import settings

from conftest import make_png


def _response(b64=None, url=None):
    return SimpleNamespace(data=[SimpleNamespace(b64_json=b64, url=url)])


def _api_error(code: str, message: str = "rejected", request_id: str = "req_123") -> openai.APIError:
    request = httpx.Request("POST", "https://api.openai.com/v1/images/edits")
    response = httpx.Response(400, request=request, headers={"x-request-id": request_id})
    return openai.BadRequestError(message, response=response, body={"code": code, "message": message})


def _editor(client):
    return OpenAIImageEditor(api_key="sk-test", model="gpt-image-1.5", quality="high", input_fidelity="high", client=client)


def test_api_size_falls_back_to_landscape():
    assert api_size("1024x1536") == "1024x1536"
    assert api_size("999x999") == "1536x1024"


def test_sniff_mime():
    assert sniff_mime(make_png()) == ("png", "image/png")
    assert sniff_mime(b"nope") == ("bin", "application/octet-stream")


def test_edit_sends_base_first_then_references_and_decodes_b64():
    out = make_png((8, 8), (1, 2, 3))
    client = MagicMock()
    client.images.edit.return_value = _response(b64=base64.b64encode(out).decode())

    base, ref, mask = make_png(), make_png((16, 16)), make_png((64, 48), (0, 0, 0))
    result = _editor(client).edit(base, [ref], mask, "do the thing")

    assert result == out
    kwargs = client.images.edit.call_args.kwargs
    assert kwargs["model"] == "gpt-image-1.5"
    assert kwargs["prompt"] == "do the thing"
    assert kwargs["size"] == "1536x1024"
    assert kwargs["input_fidelity"] == "high"
    assert [name for name, _, _ in kwargs["image"]] == ["base.png", "reference-1.png"]
    assert kwargs["image"][0][1] == base
    assert kwargs["mask"] == ("mask.png", mask, "image/png")


def test_edit_without_mask_omits_mask_argument():
    client = MagicMock()
    client.images.edit.return_value = _response(b64=base64.b64encode(make_png()).decode())
    _editor(client).edit(make_png(), [], None, "text only")
    assert "mask" not in client.images.edit.call_args.kwargs


def test_output_format_is_forwarded():
    client = MagicMock()
    client.images.edit.return_value = _response(b64=base64.b64encode(b"webp").decode())
    editor = OpenAIImageEditor(api_key="sk-test", output_format="webp", client=client)
    editor.edit(make_png(), [], None, "prompt")

    kwargs = client.images.edit.call_args.kwargs
    assert kwargs["output_format"] == "webp"
    # images.edit has no moderation parameter
    assert "moderation" not in kwargs


def test_moderation_blocked_is_mapped():
    client = MagicMock()
    client.images.edit.side_effect = _api_error("moderation_blocked", request_id="req_mod")

    with pytest.raises(ModerationBlocked) as exc:
        _editor(client).edit(make_png(), [], None, "prompt")
    assert exc.value.code == "moderation_blocked"
    assert exc.value.request_id == "req_mod"


def test_other_api_errors_become_edit_error():
    client = MagicMock()
    client.images.edit.side_effect = _api_error("invalid_image", message="bad image")

    with pytest.raises(EditError) as exc:
        _editor(client).edit(make_png(), [], None, "prompt")
    assert not isinstance(exc.value, ModerationBlocked)
    assert exc.value.code == "invalid_image"
    assert exc.value.request_id == "req_123"


def test_url_response_is_downloaded():
    out = make_png((4, 4))
    client = MagicMock()
    client.images.edit.return_value = _response(url="https://example.com/out.png")

    with patch.object(iec.requests, "get") as mock_get:
        mock_get.return_value = MagicMock(content=out, raise_for_status=MagicMock(return_value=None))
        assert _editor(client).edit(make_png(), [], None, "prompt") == out
    mock_get.assert_called_once()


def test_url_download_failure_is_edit_error():
    client = MagicMock()
    client.images.edit.return_value = _response(url="https://example.com/out.png")

    with patch.object(iec.requests, "get", side_effect=requests.ConnectionError("offline")):
        with pytest.raises(EditError) as exc:
            _editor(client).edit(make_png(), [], None, "prompt")
    assert exc.value.code == "download_failed"


def test_empty_response_is_edit_error():
    client = MagicMock()
    client.images.edit.return_value = SimpleNamespace(data=[])
    with pytest.raises(EditError) as exc:
        _editor(client).edit(make_png(), [], None, "prompt")
    assert exc.value.code == "empty_response"


def test_missing_api_key(monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)
    with pytest.raises(EditError) as exc:
        OpenAIImageEditor().edit(make_png(), [], None, "prompt")
    assert exc.value.code == "not_configured"
