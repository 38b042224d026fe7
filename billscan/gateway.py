"""Classify extraction results into the four outcomes callers handle"""
import logging
from typing import Awaitable, Callable, Optional

from .extraction import RATE_LIMIT_ERROR, RateLimitError, extract_raw
from .models import ExtractionOutcome, ExtractionStatus, RawExtraction
from .normalizer import DEFAULT_CURRENCY, normalize


logger = logging.getLogger(__name__)

NOT_A_BILL_MESSAGE = "This image doesn't look like a bill. Try another photo."
RATE_LIMITED_MESSAGE = "Too many requests right now. Please wait a while before trying again."
TRANSIENT_MESSAGE = "Failed to analyze bill. Please try again."

Extractor = Callable[[bytes, str], Awaitable[RawExtraction]]


def _error_text(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def classify(raw: RawExtraction, fallback_currency: str = DEFAULT_CURRENCY) -> ExtractionOutcome:
    """Map a provider payload to exactly one outcome.

    Checked in order: quota error, ``isBill == false``, any other error
    text, then success. The not-a-bill check comes before the generic
    error because the model explains a rejected image in ``error``.
    """
    payload = raw.payload
    error = _error_text(payload.get("error"))

    if error == RATE_LIMIT_ERROR:
        message = _error_text(payload.get("message")) or RATE_LIMITED_MESSAGE
        return ExtractionOutcome(status=ExtractionStatus.RATE_LIMITED, message=message, provider=raw.provider)

    if payload.get("isBill") is False:
        return ExtractionOutcome(
            status=ExtractionStatus.NOT_A_BILL,
            message=error or NOT_A_BILL_MESSAGE,
            provider=raw.provider,
        )

    if error:
        logger.warning("Extraction provider reported an error: %s", error)
        return ExtractionOutcome(status=ExtractionStatus.TRANSIENT_FAILURE, message=error, provider=raw.provider)

    return ExtractionOutcome(
        status=ExtractionStatus.SUCCESS,
        bill=normalize(raw, fallback_currency),
        provider=raw.provider,
    )


class ExtractionGateway:
    def __init__(
        self,
        extractor: Optional[Extractor] = None,
        fallback_currency: str = DEFAULT_CURRENCY,
    ) -> None:
        self.extractor = extractor or extract_raw
        self.fallback_currency = fallback_currency

    async def extract_bill(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> ExtractionOutcome:
        """Extract a bill from an image. Never raises for provider failures."""
        try:
            raw = await self.extractor(image_bytes, mime_type)
        except RateLimitError as e:
            logger.warning("Extraction rate limited: %s", e)
            return ExtractionOutcome(status=ExtractionStatus.RATE_LIMITED, message=RATE_LIMITED_MESSAGE)
        except Exception as e:
            logger.error("Extraction failed: %s", e, exc_info=True)
            return ExtractionOutcome(status=ExtractionStatus.TRANSIENT_FAILURE, message=TRANSIENT_MESSAGE)

        if not isinstance(raw, RawExtraction):
            logger.error("Extractor returned %s instead of a RawExtraction", type(raw).__name__)
            return ExtractionOutcome(status=ExtractionStatus.TRANSIENT_FAILURE, message=TRANSIENT_MESSAGE)

        outcome = classify(raw, self.fallback_currency)
        logger.info(
            "Extraction finished: %s",
            outcome.status.value,
            extra={"provider": raw.provider, "items": len(outcome.bill.items) if outcome.bill else 0},
        )
        return outcome
