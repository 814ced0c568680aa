"""
X402Server - Core payment server for the x402 gateway
"""

import logging
from typing import Any

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.exceptions import ConfigurationError
from x402_gateway.server.schema import (
    build_output_schema,
    create_accepts,
    create_x402_response,
)
from x402_gateway.settings import GatewaySettings
from x402_gateway.tokens import TokenRegistry, parse_usd_price
from x402_gateway.types import (
    AcceptsEntry,
    FacilitatorId,
    NativeChainSignature,
    RoutePaymentDescriptor,
    TypedDataAuthorization,
    VerificationOutcome,
    X402Response,
)
from x402_gateway.utils import is_valid_address
from x402_gateway.verifiers import (
    FacilitatorVerifier,
    SolanaTransactionVerifier,
    TypedDataAuthorizationVerifier,
    VerificationContext,
)

logger = logging.getLogger(__name__)

PAYMENT_REQUIRED_ERROR = "Payment Required"


class X402Server:
    """
    Core payment server for the x402 gateway.

    Builds "payment required" responses for routes and dispatches decoded
    proofs to the verifier for their network.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        evm_verifier: TypedDataAuthorizationVerifier | None = None,
        solana_verifier: SolanaTransactionVerifier | None = None,
        facilitator_verifier: FacilitatorVerifier | None = None,
    ) -> None:
        self.settings = settings
        self._evm_verifier = evm_verifier or TypedDataAuthorizationVerifier(settings)
        self._solana_verifier = solana_verifier or SolanaTransactionVerifier(settings)
        self._facilitator_verifier = facilitator_verifier or FacilitatorVerifier(settings)

    # ------------------------------------------------------------------
    # route configuration
    # ------------------------------------------------------------------

    def resolve_networks(self, descriptor: RoutePaymentDescriptor) -> tuple[Network, ...]:
        """Networks a route accepts, falling back to the configured default"""
        return descriptor.networks or (self.settings.default_network,)

    def validate_route(self, descriptor: RoutePaymentDescriptor) -> None:
        """Check a route can be protected

        Raises:
            ConfigurationError: If the price is malformed or a network has no
                valid payout address
        """
        if not descriptor.requires_payment:
            return
        try:
            parse_usd_price(descriptor.price)
        except ValueError as e:
            raise ConfigurationError(f"Route {descriptor.path}: {e}") from e
        for network in self.resolve_networks(descriptor):
            pay_to = self.settings.get_payout_address(network)
            if not is_valid_address(pay_to, network):
                raise ConfigurationError(
                    f"Route {descriptor.path}: invalid payout address for {network.value}"
                )
            if not TokenRegistry.get_network_tokens(network):
                raise ConfigurationError(
                    f"Route {descriptor.path}: no payable assets on {network.value}"
                )

    # ------------------------------------------------------------------
    # payment required response
    # ------------------------------------------------------------------

    def build_accepts(self, descriptor: RoutePaymentDescriptor) -> list[AcceptsEntry]:
        """One accepts entry per accepted network and payable asset

        Raises:
            ConfigurationError: If a payee is missing or an entry is invalid
        """
        if not descriptor.requires_payment:
            raise ConfigurationError(f"Route {descriptor.path} has no price")
        try:
            price_usd = parse_usd_price(descriptor.price)
        except ValueError as e:
            raise ConfigurationError(f"Route {descriptor.path}: {e}") from e
        resource = self.settings.to_resource_url(descriptor.path)
        description = descriptor.description or f"Access to {descriptor.path}"
        output_schema = build_output_schema(
            descriptor.method, descriptor.query_params, descriptor.body_fields
        )

        accepts = []
        for network in self.resolve_networks(descriptor):
            pay_to = self.settings.get_payout_address(network)
            is_evm = NetworkConfig.is_evm(network)
            for token in TokenRegistry.get_network_tokens(network):
                extra: dict[str, Any] = {
                    "price": descriptor.price,
                    "symbol": token.symbol,
                    "tokenAddress": token.address,
                }
                if is_evm:
                    extra["name"] = token.name
                    extra["version"] = token.version
                if descriptor.facilitator_endpoint:
                    extra["facilitatorEndpoint"] = descriptor.facilitator_endpoint

                accepts.append(
                    create_accepts(
                        network=NetworkConfig.get_x402_name(network),
                        max_amount_required=str(self.settings.required_amount(price_usd, token)),
                        resource=resource,
                        description=description,
                        pay_to=pay_to,
                        asset=token.address if is_evm else token.symbol,
                        mime_type=descriptor.mime_type,
                        max_timeout_seconds=descriptor.max_timeout_seconds,
                        output_schema=output_schema,
                        extra=extra,
                    )
                )
        return accepts

    def build_payment_required(
        self,
        descriptor: RoutePaymentDescriptor,
        error: str = PAYMENT_REQUIRED_ERROR,
    ) -> X402Response:
        """Build the 402 response body for *descriptor*

        Raises:
            ConfigurationError: If the response cannot be built or fails validation
        """
        return create_x402_response(accepts=self.build_accepts(descriptor), error=error)

    # ------------------------------------------------------------------
    # verification
    # ------------------------------------------------------------------

    async def verify_proof(
        self,
        descriptor: RoutePaymentDescriptor,
        proof: NativeChainSignature | TypedDataAuthorization,
        user_agent: str | None = None,
    ) -> VerificationOutcome:
        """Verify a decoded proof against the route's price and payee"""
        network = proof.network
        if network not in self.resolve_networks(descriptor):
            logger.warning(
                "Payment on %s rejected: route %s does not accept it",
                network.value,
                descriptor.path,
            )
            return VerificationOutcome.reject(
                "network_not_accepted", network=NetworkConfig.get_x402_name(network)
            )

        context = VerificationContext(
            network=network,
            pay_to=self.settings.get_payout_address(network),
            price_usd=parse_usd_price(descriptor.price),
            resource=self.settings.to_resource_url(descriptor.path),
            user_agent=user_agent,
        )
        if isinstance(proof, TypedDataAuthorization):
            return await self._evm_verifier.verify(proof, context)
        return await self._solana_verifier.verify(proof, context)

    async def verify_payment_id(self, payment_id: str) -> VerificationOutcome:
        """Verify a facilitator payment id"""
        return await self._facilitator_verifier.verify(FacilitatorId(id=payment_id))

    async def close(self) -> None:
        await self._evm_verifier.close()
        await self._solana_verifier.close()
        await self._facilitator_verifier.close()
