"""
In-memory invoice store for facilitator-mode payments.

Payment ids are invoice ids. Consumption is exactly-once: the "used" marker is
set with ``dict.setdefault``, which is atomic, so when two verifications race
for the same id only one of them gets ``ConsumeResult.OK``.

Invoices are evicted, together with their "used" marker, once they are past
expiry plus a retention window. Until then a replayed id still reads as used.
"""

import logging
import secrets
import threading
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

INVOICE_TTL_SECONDS = 15 * 60
# Expired invoices (and their "used" markers) are kept this long before eviction
INVOICE_RETENTION_SECONDS = 15 * 60


class ConsumeResult(str, Enum):
    """Outcome of consuming a payment id"""

    OK = "ok"
    NOT_FOUND = "not_found"
    ALREADY_USED = "already_used"
    NOT_VERIFIED = "not_verified"
    EXPIRED = "expired"


class InvoiceRateLimit(BaseModel):
    requests: int = 1
    window: str = "15m"


class InvoiceMetadata(BaseModel):
    description: str
    memo: str


class Invoice(BaseModel):
    """A payment invoice issued by the facilitator"""

    id: str
    endpoint: str
    price: str
    network: str
    payment_address: str = Field(alias="paymentAddress")
    created_at: datetime = Field(alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")
    verified: bool = False
    paid: bool = False
    used: bool = False
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    verified_at: Optional[datetime] = Field(None, alias="verifiedAt")
    rate_limit: InvoiceRateLimit = Field(default_factory=InvoiceRateLimit, alias="rateLimit")
    metadata: Optional[InvoiceMetadata] = None

    class Config:
        populate_by_name = True

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at


def _utcnow() -> datetime:
    return datetime.fromtimestamp(time.time(), tz=timezone.utc)


def generate_invoice_id() -> str:
    return f"invoice_{int(time.time() * 1000)}_{secrets.token_hex(6)}"


class InvoiceStore:
    """Invoice storage with atomic exactly-once consumption"""

    def __init__(
        self,
        ttl_seconds: int = INVOICE_TTL_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        retention_seconds: int = INVOICE_RETENTION_SECONDS,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._retention = timedelta(seconds=retention_seconds)
        self._clock = clock
        self._lock = threading.Lock()
        self._invoices: dict[str, Invoice] = {}
        self._used: dict[str, object] = {}

    def now(self) -> datetime:
        return self._clock()

    def create(self, endpoint: str, price: str, network: str, payment_address: str) -> Invoice:
        """Issue a new invoice that expires after the store TTL"""
        created = self._clock()
        invoice = Invoice(
            id=generate_invoice_id(),
            endpoint=endpoint,
            price=price,
            network=network,
            paymentAddress=payment_address,
            createdAt=created,
            expiresAt=created + self._ttl,
            metadata=InvoiceMetadata(
                description=f"Payment required for {endpoint}",
                memo=f"Invoice for {endpoint}",
            ),
        )
        with self._lock:
            self._evict_expired(created)
            self._invoices[invoice.id] = invoice
        logger.info("Invoice created: %s for %s (%s)", invoice.id, endpoint, price)
        return invoice

    def get(self, invoice_id: str) -> Invoice | None:
        return self._invoices.get(invoice_id)

    def _evict_expired(self, now: datetime) -> None:
        """Drop invoices past expiry plus the retention window, oldest first"""
        # insertion order is expiry order (fixed TTL)
        evicted = 0
        cutoff = now - self._retention
        while self._invoices:
            invoice_id, invoice = next(iter(self._invoices.items()))
            if invoice.expires_at >= cutoff:
                break
            del self._invoices[invoice_id]
            self._used.pop(invoice_id, None)
            evicted += 1
        if evicted:
            logger.debug("Evicted %d expired invoices", evicted)

    def mark_verified(self, invoice_id: str, transaction_hash: str) -> Invoice | None:
        """Record an externally confirmed payment. Returns None for unknown ids"""
        invoice = self._invoices.get(invoice_id)
        if invoice is None:
            return None
        invoice.verified = True
        invoice.paid = True
        invoice.transaction_hash = transaction_hash
        invoice.verified_at = self._clock()
        logger.info("Invoice %s marked verified (tx %s)", invoice_id, transaction_hash)
        return invoice

    def consume(self, payment_id: str) -> ConsumeResult:
        """Mark a verified, unexpired invoice as used, exactly once"""
        invoice = self._invoices.get(payment_id)
        if invoice is None:
            return ConsumeResult.NOT_FOUND
        if payment_id in self._used:
            return ConsumeResult.ALREADY_USED
        if not (invoice.verified and invoice.paid):
            return ConsumeResult.NOT_VERIFIED
        if invoice.is_expired(self._clock()):
            return ConsumeResult.EXPIRED

        marker = object()
        if self._used.setdefault(payment_id, marker) is not marker:
            logger.warning("Payment id %s already consumed (replay prevented)", payment_id)
            return ConsumeResult.ALREADY_USED
        invoice.used = True
        logger.info("Payment id %s consumed", payment_id)
        return ConsumeResult.OK
