"""Tests for extraction module"""
import json

import pytest
from unittest.mock import AsyncMock, Mock, patch

from billscan.extraction import (
    RateLimitError,
    calculate_completeness,
    extract_raw,
    gemini_extract,
    ollama_extract,
    parse_json_response,
)
from billscan.models import RawExtraction


@pytest.fixture
def gemini_settings():
    with patch("billscan.extraction.settings") as mock_settings:
        mock_settings.gemini_api_key = "test-key"
        mock_settings.gemini_model = "gemini-2.0-flash"
        mock_settings.ollama_model = "llava"
        mock_settings.prefer_local = False
        yield mock_settings


def gemini_client(text=None, error=None):
    client = Mock()
    response = Mock()
    response.text = text
    client.aio.models.generate_content = AsyncMock(return_value=response, side_effect=error)
    return client


def test_calculate_completeness_complete(sample_payload):
    """Test completeness with every expected field"""
    assert calculate_completeness(sample_payload) == 1.0


def test_calculate_completeness_partial():
    """Test completeness with some fields missing"""
    payload = {"isBill": True, "items": []}

    assert calculate_completeness(payload) == pytest.approx(2 / 5)


def test_calculate_completeness_empty():
    assert calculate_completeness({}) == 0.0
    assert calculate_completeness({"summary": "oops"}) == 0.0


def test_parse_json_response_clean():
    """Test parsing clean JSON response"""
    result = parse_json_response('{"description": "Lunch", "isBill": true}')

    assert result == {"description": "Lunch", "isBill": True}


def test_parse_json_response_with_markdown():
    """Test parsing JSON response with markdown code blocks"""
    result = parse_json_response('```json\n{"description": "Lunch", "isBill": true}\n```')

    assert result["description"] == "Lunch"


def test_parse_json_response_with_text():
    """Test parsing JSON response with surrounding text"""
    result = parse_json_response('Here you go: {"isBill": false, "error": "A cat"} Hope it helps')

    assert result == {"isBill": False, "error": "A cat"}


def test_parse_json_response_invalid():
    """Test parsing invalid JSON raises error"""
    with pytest.raises(ValueError):
        parse_json_response("not valid json")


def test_parse_json_response_not_an_object():
    with pytest.raises(ValueError, match="JSON object"):
        parse_json_response("[1, 2, 3]")


@pytest.mark.asyncio
async def test_gemini_extract_success(gemini_settings, sample_payload):
    """Test successful Gemini extraction"""
    client = gemini_client(text=json.dumps(sample_payload))

    with patch("billscan.extraction.genai.Client", return_value=client) as mock_cls:
        result = await gemini_extract(b"fake image", "image/png")

    mock_cls.assert_called_once_with(api_key="test-key")
    client.aio.models.generate_content.assert_awaited_once()
    assert client.aio.models.generate_content.call_args.kwargs["model"] == "gemini-2.0-flash"
    assert result.provider == "gemini"
    assert result.payload == sample_payload


@pytest.mark.asyncio
async def test_gemini_extract_no_api_key(gemini_settings):
    """Test Gemini extraction without API key"""
    gemini_settings.gemini_api_key = ""

    with pytest.raises(ValueError, match="GEMINI_API_KEY not set"):
        await gemini_extract(b"fake image")


@pytest.mark.asyncio
async def test_gemini_extract_quota_exhausted(gemini_settings):
    """Test a 429 from Gemini becomes a RateLimitError"""
    client = gemini_client(error=Exception("429 RESOURCE_EXHAUSTED. Quota exceeded"))

    with patch("billscan.extraction.genai.Client", return_value=client):
        with pytest.raises(RateLimitError):
            await gemini_extract(b"fake image")


@pytest.mark.asyncio
async def test_gemini_extract_other_failure(gemini_settings):
    client = gemini_client(error=Exception("Connection reset"))

    with patch("billscan.extraction.genai.Client", return_value=client):
        with pytest.raises(ValueError, match="Gemini extraction failed") as exc_info:
            await gemini_extract(b"fake image")
    assert not isinstance(exc_info.value, RateLimitError)


@pytest.mark.asyncio
async def test_gemini_extract_empty_response(gemini_settings):
    with patch("billscan.extraction.genai.Client", return_value=gemini_client(text="")):
        with pytest.raises(ValueError, match="No response"):
            await gemini_extract(b"fake image")


@pytest.mark.asyncio
async def test_ollama_extract_success(gemini_settings):
    """Test successful Ollama extraction"""
    mock_response = {"message": {"content": '{"isBill": false, "error": "This is a photo of a dog"}'}}

    with patch("billscan.extraction.ollama.chat", return_value=mock_response) as mock_chat:
        result = await ollama_extract(b"fake image")

    assert mock_chat.call_args.kwargs["model"] == "llava"
    assert mock_chat.call_args.kwargs["format"] == "json"
    assert result.provider == "ollama"
    assert result.payload["isBill"] is False


@pytest.mark.asyncio
async def test_ollama_extract_failure(gemini_settings):
    """Test Ollama extraction failure"""
    with patch("billscan.extraction.ollama.chat", side_effect=Exception("Connection error")):
        with pytest.raises(ValueError, match="Ollama extraction failed"):
            await ollama_extract(b"fake image")


@pytest.mark.asyncio
async def test_ollama_extract_model_missing(gemini_settings):
    with patch("billscan.extraction.ollama.chat", side_effect=Exception("model 'llava' not found")):
        with pytest.raises(ValueError, match="ollama pull llava"):
            await ollama_extract(b"fake image")


@pytest.mark.asyncio
async def test_extract_raw_uses_gemini_by_default(gemini_settings, sample_payload):
    gemini_result = RawExtraction(payload=sample_payload, provider="gemini")

    with patch("billscan.extraction.ollama_extract", new=AsyncMock()) as mock_ollama:
        with patch("billscan.extraction.gemini_extract", new=AsyncMock(return_value=gemini_result)):
            result = await extract_raw(b"fake image", "image/jpeg")

    mock_ollama.assert_not_awaited()
    assert result.provider == "gemini"


@pytest.mark.asyncio
async def test_extract_raw_keeps_complete_local_result(gemini_settings, sample_payload):
    """Test a complete local result is used without calling Gemini"""
    local = RawExtraction(payload=sample_payload, provider="ollama")

    with patch("billscan.extraction.ollama_extract", new=AsyncMock(return_value=local)):
        with patch("billscan.extraction.gemini_extract", new=AsyncMock()) as mock_gemini:
            result = await extract_raw(b"fake image", prefer_local=True)

    mock_gemini.assert_not_awaited()
    assert result.provider == "ollama"


@pytest.mark.asyncio
async def test_extract_raw_keeps_local_rejection(gemini_settings):
    local = RawExtraction(payload={"isBill": False, "error": "Not a receipt"}, provider="ollama")

    with patch("billscan.extraction.ollama_extract", new=AsyncMock(return_value=local)):
        with patch("billscan.extraction.gemini_extract", new=AsyncMock()) as mock_gemini:
            result = await extract_raw(b"fake image", prefer_local=True)

    mock_gemini.assert_not_awaited()
    assert result is local


@pytest.mark.asyncio
async def test_extract_raw_falls_back_on_incomplete_local(gemini_settings, sample_payload):
    """Test an incomplete local result falls back to Gemini"""
    local = RawExtraction(payload={"isBill": True}, provider="ollama")
    remote = RawExtraction(payload=sample_payload, provider="gemini")

    with patch("billscan.extraction.ollama_extract", new=AsyncMock(return_value=local)):
        with patch("billscan.extraction.gemini_extract", new=AsyncMock(return_value=remote)):
            result = await extract_raw(b"fake image", prefer_local=True)

    assert result is remote


@pytest.mark.asyncio
async def test_extract_raw_falls_back_on_local_failure(gemini_settings, sample_payload):
    remote = RawExtraction(payload=sample_payload, provider="gemini")

    with patch("billscan.extraction.ollama_extract", new=AsyncMock(side_effect=ValueError("Ollama down"))):
        with patch("billscan.extraction.gemini_extract", new=AsyncMock(return_value=remote)):
            result = await extract_raw(b"fake image", prefer_local=True)

    assert result.provider == "gemini"


@pytest.mark.asyncio
async def test_extract_raw_propagates_rate_limit(gemini_settings):
    with patch("billscan.extraction.gemini_extract", new=AsyncMock(side_effect=RateLimitError("quota"))):
        with pytest.raises(RateLimitError):
            await extract_raw(b"fake image")


@pytest.mark.asyncio
async def test_extract_raw_all_methods_failed(gemini_settings):
    with patch("billscan.extraction.gemini_extract", new=AsyncMock(side_effect=ValueError("boom"))):
        with pytest.raises(ValueError, match="All extraction methods failed"):
            await extract_raw(b"fake image")
