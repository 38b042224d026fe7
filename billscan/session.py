"""A working copy of one bill and the flows around it.

``BillSession`` replaces the screen-level "current bill" state: it holds
the editable bill, runs extraction, applies edits through the editor,
keeps the rate snapshot for the chosen display currency, and saves to a
history store. Each extraction or load bumps a generation counter and a
response that arrives for an older generation is dropped, so a slow
extraction can never overwrite a newer working copy.
"""
import logging
from typing import Optional

from . import editor
from .currency import convert_bill
from .gateway import ExtractionGateway
from .history import HistoryStore
from .image import image_to_data_uri
from .models import Bill, DisplayBill, ExtractionOutcome, RateSnapshot, SaveResult
from .normalizer import normalize
from .rates import RateCache


logger = logging.getLogger(__name__)


class BillSession:
    def __init__(
        self,
        gateway: ExtractionGateway,
        history: HistoryStore,
        rates: RateCache,
        target_currency: str = "USD",
        owner: Optional[str] = None,
    ) -> None:
        self.gateway = gateway
        self.history = history
        self.rates = rates
        self.target_currency = target_currency.upper()
        self.owner = owner

        self.bill: Optional[Bill] = None
        self.snapshot: Optional[RateSnapshot] = None
        self.last_outcome: Optional[ExtractionOutcome] = None
        self.last_save: Optional[SaveResult] = None
        self._generation = 0

    def _require_bill(self) -> Bill:
        if self.bill is None:
            raise RuntimeError("No bill loaded in this session")
        return self.bill

    async def analyze(self, image_bytes: bytes, mime_type: str = "image/jpeg", autosave: bool = True) -> ExtractionOutcome:
        """Extract a bill from an image and make it the working copy.

        A successful extraction is saved to history right away.
        """
        self._generation += 1
        generation = self._generation

        outcome = await self.gateway.extract_bill(image_bytes, mime_type)
        if generation != self._generation:
            logger.info("Discarding extraction result superseded by a newer request")
            return outcome

        self.last_outcome = outcome
        if outcome.bill is not None:
            self.bill = outcome.bill
            self.snapshot = None
            if autosave:
                self.save(image_ref=image_to_data_uri(image_bytes))
        return outcome

    def load(self, bill_id: str) -> bool:
        """Replace the working copy with a bill from history"""
        self._generation += 1
        record = self.history.get(bill_id, self.owner)
        if record is None:
            return False
        self.bill = normalize(record.fullData)
        self.snapshot = None
        return True

    def save(self, image_ref: Optional[str] = None) -> SaveResult:
        bill = self._require_bill()
        if bill.id is None:
            result = self.history.save(bill, image_ref, owner=self.owner)
            if result.success:
                self.bill = bill.model_copy(update={"id": result.id, "imageRef": image_ref or bill.imageRef})
                if result.warning:
                    logger.info("History is near its retention limit")
        else:
            ok = self.history.update(bill.id, bill, owner=self.owner)
            result = SaveResult(success=ok, id=bill.id, error=None if ok else "Failed to update bill")
        self.last_save = result
        return result

    def upsert_item(self, draft, index: Optional[int] = None) -> Bill:
        self.bill = editor.upsert_item(self._require_bill(), draft, index)
        return self.bill

    def delete_item(self, index: int) -> Bill:
        self.bill = editor.delete_item(self._require_bill(), index)
        return self.bill

    def upsert_tax(self, draft, index: Optional[int] = None) -> Bill:
        self.bill = editor.upsert_tax(self._require_bill(), draft, index)
        return self.bill

    def delete_tax(self, index: int) -> Bill:
        self.bill = editor.delete_tax(self._require_bill(), index)
        return self.bill

    def set_base_currency(self, code: str) -> Bill:
        self.bill = editor.set_base_currency(self._require_bill(), code)
        return self.bill

    def set_target_currency(self, code: str) -> None:
        self.target_currency = code.strip().upper()

    async def refresh_rates(self) -> Optional[RateSnapshot]:
        """Load rates for the bill's current currency.

        The result is dropped if the bill's currency changed while the
        fetch was in flight.
        """
        base = self._require_bill().summary.currency
        if base == self.target_currency:
            return self.snapshot

        snapshot = await self.rates.get_rates(base)
        if self.bill is None or self.bill.summary.currency != base:
            logger.info("Discarding %s rates, bill currency changed", base)
            return self.snapshot
        self.snapshot = snapshot
        return snapshot

    def display(self) -> DisplayBill:
        return convert_bill(self._require_bill(), self.target_currency, self.snapshot)
