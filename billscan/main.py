"""FastAPI backend for bill scanning and history"""
import logging
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI, File, Header, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .currency import convert_bill
from .gateway import ExtractionGateway
from .history import DuckDBHistoryStore, HistoryStore, get_history_store
from .image import detect_mime_type, image_to_data_uri
from .logging import configure_logging
from .models import Bill, ExtractionStatus
from .normalizer import normalize
from .rates import RateCache
from .settings import settings
from .storage import FileKeyValueStore
from .totals import recompute_total


logger = logging.getLogger(__name__)

app = FastAPI(title="BillScan", version="0.1.0")

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://localhost:8081",
        "http://localhost:19006",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MB
ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/webp", "image/heic", "image/heif"}

history_store: Optional[HistoryStore] = None
rate_cache: Optional[RateCache] = None
gateway: Optional[ExtractionGateway] = None


class ConvertRequest(BaseModel):
    bill: Bill
    target: str


@app.on_event("startup")
async def startup_event():
    """Wire up stores and services on startup"""
    global history_store, rate_cache, gateway
    configure_logging()
    history_store = get_history_store()
    rate_cache = RateCache(FileKeyValueStore(settings.data_dir), ttl=timedelta(hours=settings.rates_ttl_hours))
    gateway = ExtractionGateway(fallback_currency=settings.default_currency)
    logger.info("BillScan started")


@app.on_event("shutdown")
async def shutdown_event():
    """Close the history database on shutdown"""
    if isinstance(history_store, DuckDBHistoryStore):
        history_store.conn.close()


@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    status = {
        "status": "ok",
        "gemini_configured": bool(settings.gemini_api_key),
        "ollama_available": False,
    }

    if settings.prefer_local:
        try:
            import ollama
            models = ollama.list()
            status["ollama_available"] = any(
                settings.ollama_model in (model.get("model") or model.get("name") or "")
                for model in models.get("models", [])
            )
        except Exception as e:
            logger.debug("Ollama not reachable: %s", e)

    return status


@app.post("/api/extract")
async def extract_endpoint(
    file: UploadFile = File(...),
    x_owner_id: Optional[str] = Header(None),
):
    """Analyze an uploaded bill image and save it to history"""
    image_bytes = await file.read()
    if len(image_bytes) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(image_bytes) > MAX_FILE_SIZE:
        raise HTTPException(status_code=400, detail="Image too large. Maximum size is 10MB.")

    mime_type = file.content_type
    if mime_type not in ALLOWED_CONTENT_TYPES:
        mime_type = detect_mime_type(image_bytes, file.filename or "")
    if mime_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail=f"Unsupported file type: {file.content_type}")

    outcome = await gateway.extract_bill(image_bytes, mime_type)

    response = {
        "status": outcome.status.value,
        "message": outcome.message,
        "retryable": outcome.retryable,
        "bill": None,
        "id": None,
        "warning": False,
        "saved": False,
    }
    if outcome.status != ExtractionStatus.SUCCESS:
        return response

    saved = history_store.save(outcome.bill, image_to_data_uri(image_bytes), owner=x_owner_id)
    bill = outcome.bill
    if saved.success:
        bill = bill.model_copy(update={"id": saved.id})
    else:
        response["message"] = saved.error

    response.update({
        "bill": bill.model_dump(),
        "id": saved.id,
        "warning": saved.warning,
        "saved": saved.success,
    })
    return response


@app.get("/api/bills")
async def list_bills_endpoint(x_owner_id: Optional[str] = Header(None)):
    """List saved bills, newest first"""
    listing = history_store.list(x_owner_id)
    return {
        "bills": [record.model_dump() for record in listing.records],
        "error": listing.error,
    }


@app.get("/api/bills/{bill_id}")
async def get_bill_endpoint(bill_id: str, x_owner_id: Optional[str] = Header(None)):
    """Get a single saved bill"""
    record = history_store.get(bill_id, x_owner_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Bill not found")
    return record.model_dump()


@app.put("/api/bills/{bill_id}")
async def update_bill_endpoint(bill_id: str, bill: Bill, x_owner_id: Optional[str] = Header(None)):
    """Replace a saved bill with an edited copy"""
    edited = normalize(bill, settings.default_currency)
    # Edited bills always carry items plus taxes as their total
    edited.summary.totalAmount = recompute_total(edited)
    if not history_store.update(bill_id, edited, owner=x_owner_id):
        raise HTTPException(status_code=404, detail="Bill not found")
    return {"id": bill_id, "updated": True, "totalAmount": edited.summary.totalAmount}


@app.delete("/api/bills/{bill_id}")
async def delete_bill_endpoint(bill_id: str, x_owner_id: Optional[str] = Header(None)):
    """Delete a saved bill"""
    return {"id": bill_id, "deleted": history_store.delete(bill_id, owner=x_owner_id)}


@app.get("/api/rates/{base}")
async def rates_endpoint(base: str):
    """Get exchange rates for a base currency"""
    snapshot = await rate_cache.get_rates(base)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No exchange rates available for {base.upper()}")
    return snapshot.model_dump(mode="json")


@app.post("/api/convert")
async def convert_endpoint(request: ConvertRequest):
    """Converted view of a bill in the requested currency"""
    target = request.target.strip().upper()
    snapshot = None
    if request.bill.summary.currency != target:
        snapshot = await rate_cache.get_rates(request.bill.summary.currency)
    view = convert_bill(request.bill, target, snapshot)
    return {**view.model_dump(), "converted": view.converted}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
