"""
Facilitator verifier - delegates payment-id verification to a facilitator service
"""

import httpx

from x402_gateway.facilitator.facilitator_client import FacilitatorClient
from x402_gateway.settings import GatewaySettings
from x402_gateway.types import FacilitatorId, VerificationOutcome
from x402_gateway.verifiers.base import BasePaymentVerifier, VerificationContext


class FacilitatorVerifier(BasePaymentVerifier[FacilitatorId]):
    """Verifies opaque payment ids against ``GET {facilitator}/verify/{id}``"""

    def __init__(
        self,
        settings: GatewaySettings,
        client: FacilitatorClient | None = None,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._client = client

    def _get_client(self) -> FacilitatorClient | None:
        if self._client is None and self._settings.facilitator_url:
            self._client = FacilitatorClient(
                self._settings.facilitator_url,
                timeout=self._settings.facilitator_timeout,
            )
        return self._client

    async def verify(
        self, proof: FacilitatorId, context: VerificationContext | None = None
    ) -> VerificationOutcome:
        client = self._get_client()
        if client is None:
            self._logger.error("No facilitator URL configured. Set X402_FACILITATOR_URL.")
            return self._reject("facilitator_not_configured")

        self._logger.info("Verifying payment id %s at %s", proof.id, client.base_url)
        try:
            status = await client.verify_payment_id(proof.id)
        except httpx.TimeoutException:
            self._logger.error("Facilitator request timed out (%ss)", self._settings.facilitator_timeout)
            return self._reject("facilitator_timeout", transport_error=True)
        except httpx.HTTPError as e:
            self._logger.error("Facilitator request failed: %s", e)
            return self._reject("facilitator_unavailable", transport_error=True)

        if status.status_code == 200:
            if not status.is_valid:
                return self._reject("facilitator_rejected")
            body = status.body or {}
            self._logger.info("Facilitator verified payment id %s", proof.id)
            return VerificationOutcome(
                verified=True,
                settled=True,
                reason="facilitator_verified",
                network=body.get("network"),
                transaction=body.get("transactionHash"),
            )
        if status.status_code == 404:
            return self._reject("payment_not_found")
        if status.status_code == 410:
            return self._reject("payment_already_used")
        return self._reject(f"facilitator_http_{status.status_code}", transport_error=True)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
