"""Vision LLM extraction with Gemini, plus an optional local Ollama model"""
import asyncio
import base64
import json
import logging
from typing import Any, Dict, Optional

import ollama
from google import genai
from google.genai import types

from .models import RawExtraction
from .settings import settings


logger = logging.getLogger(__name__)

RATE_LIMIT_ERROR = "RATE_LIMIT_EXCEEDED"

EXTRACTION_PROMPT = """
Run OCR on this image and return the result as JSON.
Set "isBill" to true if the image is a bill or receipt, otherwise set it to false
and put a short explanation in "error". Also return a short description and a
category for the bill.

Use this JSON structure:
{
  "description": "string (one short sentence)",
  "category": {
    "name": "string (e.g. Food & Dining, Groceries, Transport, Shopping, Utilities, Health, Entertainment, Other)",
    "icon": "string (an Ionicons name, e.g. restaurant-outline, cart-outline, car-outline)"
  },
  "items": [
    {
      "name": "string",
      "quantity": number,
      "unit_price": number,
      "total_price": number
    }
  ],
  "summary": {
    "tax": [
      {"name": "string", "amount": number}
    ],
    "totalAmount": number,
    "currency": "string (ISO 4217 code, e.g. USD, EUR, INR)"
  },
  "isBill": boolean,
  "error": "string (empty when the image is a bill)"
}

Rules:
1. Numbers must be plain JSON numbers without currency symbols.
2. Put taxes, service charges and tips in summary.tax, not in items.
3. If a field is missing, use 0 for numbers and an empty string for text.
4. Output ONLY the JSON object. Do not include markdown formatting like ```json.
"""

LOCAL_MIN_COMPLETENESS = 0.8


class RateLimitError(ValueError):
    """The extraction provider refused the request because of quota limits"""


def _is_quota_error(error: Exception) -> bool:
    if getattr(error, "code", None) == 429 or getattr(error, "status_code", None) == 429:
        return True
    return "RESOURCE_EXHAUSTED" in str(error)


def calculate_completeness(payload: Dict[str, Any]) -> float:
    """Score how much of the expected structure a payload contains"""
    summary = payload.get("summary") if isinstance(payload.get("summary"), dict) else {}
    checks = [
        "isBill" in payload,
        bool(payload.get("description")),
        isinstance(payload.get("items"), list),
        summary.get("totalAmount") is not None,
        bool(summary.get("currency")),
    ]
    return sum(1 for ok in checks if ok) / len(checks)


def parse_json_response(text: str) -> Dict[str, Any]:
    """Parse JSON from LLM response, handling markdown code blocks"""
    # Remove markdown code blocks if present
    if "```" in text:
        text = text.replace("```json", "").replace("```", "")

    # Find JSON object bounds
    first_brace = text.find("{")
    last_brace = text.rfind("}")

    if first_brace != -1 and last_brace != -1:
        text = text[first_brace:last_brace + 1]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse JSON response: {e}")

    if not isinstance(parsed, dict):
        raise ValueError("Expected a JSON object in the response")
    return parsed


async def gemini_extract(image_bytes: bytes, mime_type: str = "image/jpeg", prompt: str = EXTRACTION_PROMPT) -> RawExtraction:
    """Extract bill data using the Gemini API"""
    if not settings.gemini_api_key:
        raise ValueError("BILLSCAN_GEMINI_API_KEY not set")

    try:
        client = genai.Client(api_key=settings.gemini_api_key)
        response = await client.aio.models.generate_content(
            model=settings.gemini_model,
            contents=[
                prompt,
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
            ],
            config=types.GenerateContentConfig(response_mime_type="application/json"),
        )
    except Exception as e:
        if _is_quota_error(e):
            raise RateLimitError(f"Gemini quota exhausted: {e}")
        raise ValueError(f"Gemini extraction failed: {e}")

    text = response.text
    if not text:
        raise ValueError("No response from Gemini")

    return RawExtraction(payload=parse_json_response(text), provider="gemini")


async def ollama_extract(image_bytes: bytes, prompt: str = EXTRACTION_PROMPT) -> RawExtraction:
    """Extract bill data using a local Ollama vision model"""
    image_b64 = base64.b64encode(image_bytes).decode("utf-8")
    try:
        response = await asyncio.to_thread(
            ollama.chat,
            model=settings.ollama_model,
            messages=[{
                "role": "user",
                "content": prompt,
                "images": [image_b64],
            }],
            format="json",
        )
    except Exception as e:
        if _is_quota_error(e):
            raise RateLimitError(f"Ollama refused the request: {e}")
        if "not found" in str(e).lower():
            raise ValueError(f"Ollama model '{settings.ollama_model}' not found. Please run: ollama pull {settings.ollama_model}")
        raise ValueError(f"Ollama extraction failed: {e}")

    text = response["message"]["content"]
    return RawExtraction(payload=parse_json_response(text), provider="ollama")


async def extract_raw(
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
    prefer_local: Optional[bool] = None,
) -> RawExtraction:
    """Run extraction, trying the local model first when configured.

    A local result is only kept when it is complete enough or explicitly
    says the image is not a bill; otherwise Gemini gets a go. Quota
    errors from Gemini propagate as ``RateLimitError``.
    """
    if prefer_local is None:
        prefer_local = settings.prefer_local

    if prefer_local:
        try:
            result = await ollama_extract(image_bytes)
            if result.payload.get("isBill") is False or calculate_completeness(result.payload) >= LOCAL_MIN_COMPLETENESS:
                return result
            logger.info("Local extraction incomplete, falling back to Gemini")
        except ValueError as e:
            logger.warning("Local extraction failed, falling back to Gemini: %s", e)

    try:
        return await gemini_extract(image_bytes, mime_type)
    except RateLimitError:
        raise
    except Exception as e:
        raise ValueError(f"All extraction methods failed. Last error: {e}")
