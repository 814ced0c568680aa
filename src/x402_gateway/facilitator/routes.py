"""
Facilitator HTTP routes: invoice issue, payment confirmation and payment-id verification
"""

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from x402_gateway.config import NetworkConfig
from x402_gateway.encoding import encode_base64
from x402_gateway.exceptions import ConfigurationError, UnsupportedNetworkError
from x402_gateway.facilitator.invoices import ConsumeResult, InvoiceStore
from x402_gateway.settings import GatewaySettings

logger = logging.getLogger(__name__)

FACILITATOR_PREFIX = "/api/facilitator"
FACILITATOR_KEY_HEADER = "X-Facilitator-Key"


class InvoiceRequest(BaseModel):
    """Invoice request model"""

    endpoint: Optional[str] = None
    price: Optional[str] = None
    network: str = "BASE"


class VerifyTransactionRequest(BaseModel):
    """Payment confirmation request model"""

    invoice_id: Optional[str] = Field(None, alias="invoiceId")
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    network: str = "BASE"

    class Config:
        populate_by_name = True


def _error(status: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": error, **extra})


def create_facilitator_router(
    settings: GatewaySettings,
    store: InvoiceStore | None = None,
) -> APIRouter:
    """Build the facilitator router backed by *store*"""
    store = store or InvoiceStore()
    router = APIRouter(prefix=FACILITATOR_PREFIX, tags=["facilitator"])

    @router.post("/invoice")
    async def create_invoice(request: InvoiceRequest):
        """Issue a payment invoice"""
        if not request.endpoint or not request.price:
            return _error(400, "endpoint and price are required")
        try:
            network = NetworkConfig.parse(request.network)
            pay_to = settings.get_payout_address(network)
        except UnsupportedNetworkError:
            return _error(400, f"Unsupported network: {request.network}")
        except ConfigurationError as e:
            logger.error("Cannot issue invoice: %s", e)
            return _error(400, str(e))

        invoice = store.create(request.endpoint, request.price, network.value, pay_to)
        return {
            "success": True,
            "invoice": invoice.model_dump(
                mode="json", by_alias=True, exclude={"verified", "paid", "used", "verified_at"}
            ),
        }

    @router.post("/verify")
    async def verify_transaction(
        request: VerifyTransactionRequest,
        facilitator_key: Optional[str] = Header(None, alias=FACILITATOR_KEY_HEADER),
    ):
        """Record an externally confirmed payment for an invoice"""
        if settings.facilitator_api_key and not hmac.compare_digest(
            facilitator_key or "", settings.facilitator_api_key
        ):
            logger.warning("Rejected mark-verified call with missing or wrong facilitator key")
            return _error(401, "Unauthorized")

        if not request.invoice_id or not request.transaction_hash:
            return _error(400, "invoiceId and transactionHash are required")

        invoice = store.get(request.invoice_id)
        if invoice is None:
            return _error(404, "Invoice not found")
        if invoice.is_expired(store.now()):
            return _error(400, "Invoice expired")

        invoice = store.mark_verified(request.invoice_id, request.transaction_hash)
        proof = encode_base64(f"invoice:{invoice.id}:{request.transaction_hash}")
        return {
            "success": True,
            "verified": True,
            "transaction": {
                "hash": request.transaction_hash,
                "network": request.network,
                "invoiceId": invoice.id,
                "verifiedAt": invoice.verified_at.isoformat(),
            },
            "paymentProof": proof,
            "paymentId": invoice.id,
        }

    @router.get("/verify/{payment_id}")
    async def verify_payment_id(payment_id: str):
        """Verify and consume a payment id (x402 facilitator contract)"""
        invoice = store.get(payment_id)
        result = store.consume(payment_id)

        if result is ConsumeResult.NOT_FOUND:
            return JSONResponse(
                status_code=404,
                content={
                    "error": "Payment not found",
                    "valid": False,
                    "message": "The payment ID does not exist or has expired",
                },
            )
        if result is ConsumeResult.ALREADY_USED:
            return JSONResponse(
                status_code=410,
                content={
                    "error": "Payment already consumed",
                    "valid": False,
                    "message": "This payment has already been used",
                },
            )
        if result is ConsumeResult.NOT_VERIFIED:
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Payment not verified",
                    "valid": False,
                    "message": "The payment has not been verified on the blockchain",
                },
            )
        if result is ConsumeResult.EXPIRED:
            return JSONResponse(
                status_code=400,
                content={
                    "error": "Payment expired",
                    "valid": False,
                    "message": "The payment has expired",
                },
            )

        return {
            "valid": True,
            "verified": True,
            "amount": invoice.price,
            "currency": "USD",
            "network": invoice.network,
            "endpoint": invoice.endpoint,
            "transactionHash": invoice.transaction_hash,
            "timestamp": store.now().isoformat(),
        }

    @router.get("/invoice/{invoice_id}")
    async def get_invoice(invoice_id: str):
        """Get invoice status"""
        invoice = store.get(invoice_id)
        if invoice is None:
            return _error(404, "Invoice not found")
        return {
            "success": True,
            "invoice": invoice.model_dump(
                mode="json",
                by_alias=True,
                include={
                    "id",
                    "endpoint",
                    "price",
                    "network",
                    "payment_address",
                    "created_at",
                    "expires_at",
                    "verified",
                    "paid",
                    "transaction_hash",
                },
            ),
        }

    return router
