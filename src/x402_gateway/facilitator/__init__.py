"""
Facilitator client, invoice store and facilitator HTTP routes
"""

from x402_gateway.facilitator.facilitator_client import FacilitatorClient, PaymentIdStatus
from x402_gateway.facilitator.invoices import ConsumeResult, Invoice, InvoiceStore
from x402_gateway.facilitator.routes import FACILITATOR_PREFIX, create_facilitator_router

__all__ = [
    "FACILITATOR_PREFIX",
    "ConsumeResult",
    "FacilitatorClient",
    "Invoice",
    "InvoiceStore",
    "PaymentIdStatus",
    "create_facilitator_router",
]
