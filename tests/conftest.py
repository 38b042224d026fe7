"""Pytest configuration and fixtures"""
import io
from datetime import datetime, timezone

import pytest
from PIL import Image

from billscan.database import init_database
from billscan.models import RawExtraction
from billscan.normalizer import normalize
from billscan.storage import MemoryKeyValueStore


@pytest.fixture
def temp_db(tmp_path):
    """Create a temporary DuckDB database for testing"""
    conn = init_database(tmp_path / "test_bills.duckdb")
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture
def kv_store():
    return MemoryKeyValueStore()


@pytest.fixture
def sample_payload():
    """Provider payload for a successfully recognized restaurant bill"""
    return {
        "description": "Dinner at Spice Route",
        "category": {"name": "Food & Dining", "icon": "restaurant-outline"},
        "items": [
            {"name": "Paneer Tikka", "quantity": 2, "unit_price": 250, "total_price": 500},
            {"name": "Garlic Naan", "quantity": 3, "unit_price": 60, "total_price": 180},
        ],
        "summary": {
            "tax": [
                {"name": "CGST", "amount": 17},
                {"name": "SGST", "amount": 17},
            ],
            "totalAmount": 714,
            "currency": "INR",
        },
        "isBill": True,
        "error": "",
    }


@pytest.fixture
def sample_bill(sample_payload):
    return normalize(RawExtraction(payload=sample_payload, provider="gemini"))


@pytest.fixture
def sample_image_bytes():
    """A PNG wider than the compression limit"""
    buffered = io.BytesIO()
    Image.new("RGB", (1200, 600), color=(240, 240, 240)).save(buffered, format="PNG")
    return buffered.getvalue()


@pytest.fixture
def now():
    return datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
