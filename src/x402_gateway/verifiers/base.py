"""
Payment verifier base classes
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Generic, TypeVar

from x402_gateway.config import Network
from x402_gateway.types import PaymentProof, VerificationOutcome

ProofT = TypeVar("ProofT", bound=PaymentProof)


@dataclass(frozen=True)
class VerificationContext:
    """What a route expects from a payment on one network"""

    network: Network
    pay_to: str
    price_usd: Decimal
    resource: str
    user_agent: str | None = None


class BasePaymentVerifier(ABC, Generic[ProofT]):
    """Base class for payment verifiers.

    Verifiers never raise for a bad proof; every rejection is a
    ``VerificationOutcome`` with ``verified=False`` and a specific reason.
    """

    def __init__(self) -> None:
        self._logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def verify(self, proof: ProofT, context: VerificationContext) -> VerificationOutcome:
        """Verify *proof* against *context*"""
        pass

    def _reject(self, reason: str, **kwargs) -> VerificationOutcome:
        self._logger.warning(
            "Payment rejected: %s",
            reason,
            extra={"reason": reason, "network": kwargs.get("network")},
        )
        return VerificationOutcome.reject(reason, **kwargs)

    async def close(self) -> None:
        """Release network clients"""
        pass
