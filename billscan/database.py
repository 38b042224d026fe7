"""DuckDB tables for the document-style bill history"""
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import duckdb

from .settings import settings


DB_PATH = Path(settings.db_path)

_COLUMNS = "id, owner, date, category_name, category_icon, total_amount, currency, full_data, image_ref, created_at"


def init_database(db_path: Optional[Path] = None) -> duckdb.DuckDBPyConnection:
    """Open the database and create tables if they don't exist"""
    conn = duckdb.connect(str(db_path or DB_PATH))

    conn.execute("CREATE SEQUENCE IF NOT EXISTS bills_seq")

    # One row per saved bill; the full bill JSON is the source of truth
    conn.execute("""
        CREATE TABLE IF NOT EXISTS bills (
            id VARCHAR PRIMARY KEY,
            seq BIGINT DEFAULT nextval('bills_seq'),
            owner VARCHAR NOT NULL,
            date VARCHAR,
            category_name VARCHAR,
            category_icon VARCHAR,
            total_amount DOUBLE,
            currency VARCHAR(3),
            full_data JSON,
            image_ref VARCHAR,
            created_at TIMESTAMP
        )
    """)

    conn.execute("""
        CREATE INDEX IF NOT EXISTS idx_bills_owner ON bills(owner)
    """)

    return conn


def _row_to_dict(row) -> Dict[str, Any]:
    full_data = row[7]
    if isinstance(full_data, str):
        full_data = json.loads(full_data)
    return {
        "id": row[0],
        "owner": row[1],
        "date": row[2],
        "category": {"name": row[3], "icon": row[4]},
        "summary": {
            "totalAmount": float(row[5]) if row[5] is not None else 0.0,
            "currency": row[6],
        },
        "fullData": full_data,
        "imageRef": row[8],
        "createdAt": row[9].isoformat() if row[9] else None,
    }


def insert_bill(conn: duckdb.DuckDBPyConnection, record: Dict[str, Any], owner: str) -> str:
    """Insert one history record and return its id"""
    conn.execute(f"""
        INSERT INTO bills ({_COLUMNS})
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [
        record["id"],
        owner,
        record["date"],
        record["category"]["name"],
        record["category"]["icon"],
        record["summary"]["totalAmount"],
        record["summary"]["currency"],
        json.dumps(record["fullData"]),
        record.get("imageRef"),
        datetime.now(timezone.utc).replace(tzinfo=None),
    ])
    return record["id"]


def update_bill(conn: duckdb.DuckDBPyConnection, record: Dict[str, Any], owner: str) -> bool:
    """Replace the mutable projection of an owner's record; False if they have no such record"""
    exists = conn.execute(
        "SELECT 1 FROM bills WHERE id = ? AND owner = ?", [record["id"], owner]
    ).fetchone()
    if not exists:
        return False

    conn.execute("""
        UPDATE bills SET
            date = ?, category_name = ?, category_icon = ?,
            total_amount = ?, currency = ?, full_data = ?, image_ref = ?
        WHERE id = ? AND owner = ?
    """, [
        record["date"],
        record["category"]["name"],
        record["category"]["icon"],
        record["summary"]["totalAmount"],
        record["summary"]["currency"],
        json.dumps(record["fullData"]),
        record.get("imageRef"),
        record["id"],
        owner,
    ])
    return True


def get_bill(conn: duckdb.DuckDBPyConnection, bill_id: str) -> Optional[Dict[str, Any]]:
    row = conn.execute(f"SELECT {_COLUMNS} FROM bills WHERE id = ?", [bill_id]).fetchone()
    return _row_to_dict(row) if row else None


def list_bills(conn: duckdb.DuckDBPyConnection, owner: str, limit: Optional[int] = None) -> List[Dict[str, Any]]:
    """List an owner's records, newest first"""
    query = f"""
        SELECT {_COLUMNS} FROM bills
        WHERE owner = ?
        ORDER BY created_at DESC, seq DESC
    """
    params: List[Any] = [owner]
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return [_row_to_dict(r) for r in conn.execute(query, params).fetchall()]


def delete_bill(conn: duckdb.DuckDBPyConnection, bill_id: str, owner: str) -> bool:
    exists = conn.execute("SELECT 1 FROM bills WHERE id = ? AND owner = ?", [bill_id, owner]).fetchone()
    conn.execute("DELETE FROM bills WHERE id = ? AND owner = ?", [bill_id, owner])
    return exists is not None
