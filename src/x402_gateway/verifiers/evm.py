"""
Typed-data (ERC-3009) authorization verifier for EVM networks.

Gates run strictly in order and each one aborts with its own reason:
field checks, signature recovery, signer/payer reconciliation, replay check
(an in-process nonce claim, then on-chain ``authorizationState``), then
settlement. Settlement problems do not undo verification; they
produce ``verified=True, settled=False`` and an ERROR log.
"""

import time
from typing import Any, Callable

from web3 import AsyncWeb3

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.encoding import hex_to_bytes
from x402_gateway.exceptions import SignatureVerificationError, TransactionError
from x402_gateway.settings import GatewaySettings
from x402_gateway.signers import (
    AuthorizationStateReader,
    EvmAuthorizationStateReader,
    EvmSettlementSigner,
    SettlementSigner,
)
from x402_gateway.tokens import TokenInfo, TokenRegistry
from x402_gateway.types import (
    TransferAuthorization,
    TypedDataAuthorization,
    TypedDataDomain,
    VerificationOutcome,
)
from x402_gateway.utils.eip712 import (
    RECEIVE_AUTH_PRIMARY_TYPE,
    TRANSFER_AUTH_PRIMARY_TYPE,
    TRANSFER_WITH_AUTHORIZATION_ABI,
    build_eip712_domain,
    build_eip712_message,
    domain_variants,
    recover_typed_data_signer,
    split_signature,
)
from x402_gateway.verifiers.base import BasePaymentVerifier, VerificationContext

GATEWAY_USER_AGENT_HINT = "X402-Gateway"


class TypedDataAuthorizationVerifier(BasePaymentVerifier[TypedDataAuthorization]):
    """Verifies and settles ERC-3009 TransferWithAuthorization proofs"""

    def __init__(
        self,
        settings: GatewaySettings,
        state_readers: dict[Network, AuthorizationStateReader] | None = None,
        settlement_signers: dict[Network, SettlementSigner] | None = None,
        clock: Callable[[], float] = time.time,
        receipt_timeout: int = 120,
    ) -> None:
        super().__init__()
        self._settings = settings
        self._state_readers: dict[Network, AuthorizationStateReader] = dict(state_readers or {})
        if settlement_signers is None:
            settlement_signers = self._signers_from_settings(settings)
        self._settlement_signers: dict[Network, SettlementSigner] = dict(settlement_signers)
        self._clock = clock
        self._receipt_timeout = receipt_timeout
        # (network, token, payer, nonce) -> (validBefore, marker) for authorizations
        # redeemed by this process
        self._claimed_nonces: dict[tuple[Network, str, str, bytes], tuple[int, object]] = {}

    # ------------------------------------------------------------------
    # chain access
    # ------------------------------------------------------------------

    def _get_state_reader(self, network: Network) -> AuthorizationStateReader:
        if network not in self._state_readers:
            self._state_readers[network] = EvmAuthorizationStateReader(
                self._settings.get_rpc_url(network)
            )
        return self._state_readers[network]

    @staticmethod
    def _signers_from_settings(settings: GatewaySettings) -> dict[Network, SettlementSigner]:
        """Parse the configured settlement keys

        Raises:
            ConfigurationError: If a key is malformed
        """
        return {
            net: EvmSettlementSigner.from_private_key(key, settings.get_rpc_url(net))
            for net, key in settings.settlement_keys.items()
            if NetworkConfig.is_evm(net)
        }

    def _get_settlement_signer(self, network: Network) -> SettlementSigner | None:
        return self._settlement_signers.get(network)

    def _claim_nonce(
        self, network: Network, token: TokenInfo, auth: TransferAuthorization
    ) -> tuple[Network, str, str, bytes] | None:
        """Reserve an authorization nonce for this process, exactly once

        Covers the window before settlement flips ``authorizationState``. The
        claim is taken with ``dict.setdefault``, which is atomic, and dropped
        once the authorization expires.

        Returns:
            The claim key, or None if another request already holds it
        """
        now = int(self._clock())
        for key, (valid_before, _) in list(self._claimed_nonces.items()):
            if valid_before < now:
                self._claimed_nonces.pop(key, None)

        key = (
            network,
            token.address.lower(),
            auth.from_address.lower(),
            hex_to_bytes(auth.nonce),
        )
        claim = (auth.valid_before, object())
        if self._claimed_nonces.setdefault(key, claim) is not claim:
            return None
        return key

    def _release_nonce(self, key: tuple[Network, str, str, bytes]) -> None:
        self._claimed_nonces.pop(key, None)

    # ------------------------------------------------------------------
    # verify
    # ------------------------------------------------------------------

    async def verify(
        self, proof: TypedDataAuthorization, context: VerificationContext
    ) -> VerificationOutcome:
        network = context.network
        network_name = NetworkConfig.get_x402_name(network)
        auth = proof.authorization
        if auth is None:
            return self._reject("missing_authorization", network=network_name)

        payer = auth.from_address
        chain_id = NetworkConfig.get_chain_id(network)

        # 1. Field checks
        token, error = self._resolve_token(network, proof.domain)
        if error:
            return self._reject(error, network=network_name, payer=payer)

        if proof.domain is not None and proof.domain.chain_id is not None:
            if proof.domain.chain_id != chain_id:
                return self._reject("chain_mismatch", network=network_name, payer=payer)

        mismatch = self._declared_domain_mismatch(proof.domain, token)
        if mismatch:
            self._logger.warning(
                "Declared EIP-712 domain %s does not match %s (%s/%s)",
                mismatch,
                token.symbol,
                token.name,
                token.version,
            )
            return self._reject(
                "domain_mismatch",
                network=network_name,
                payer=payer,
                diagnostics=[f"declared_domain:{mismatch}"],
            )

        required = self._settings.required_amount(context.price_usd, token)
        error = self._validate_authorization(auth, context.pay_to, required)
        if error:
            return self._reject(error, network=network_name, payer=payer)

        # 2. Signature recovery
        domain = self._build_domain(token, chain_id)
        message = build_eip712_message(auth)
        diagnostics: list[str] = []

        if self._settings.skip_signature_verification:
            self._logger.error(
                "SKIP_X402_SIGNATURE_VERIFICATION engaged: accepting unverified signature "
                "for payer %s",
                payer,
            )
            signer = payer
        else:
            try:
                signer = recover_typed_data_signer(domain, message, proof.signature)
            except SignatureVerificationError as e:
                self._logger.debug("Signature recovery failed: %s", e)
                return self._reject("invalid_signature", network=network_name, payer=payer)

        # 3. Signer/payer reconciliation
        if signer.lower() != payer.lower():
            if self._signed_as(domain, message, proof.signature, RECEIVE_AUTH_PRIMARY_TYPE, payer):
                return self._reject(
                    "wrong_typed_data_type",
                    network=network_name,
                    payer=payer,
                    diagnostics=[f"signed as {RECEIVE_AUTH_PRIMARY_TYPE}"],
                )
            if signer.lower() in self._settings.trusted_gateway_signers:
                self._logger.info(
                    "Accepting trusted intermediary signer %s on behalf of payer %s%s",
                    signer,
                    payer,
                    " (gateway user agent)" if self._is_gateway_request(context) else "",
                )
                diagnostics.append(f"trusted_signer:{signer}")
            elif self._settings.allow_signer_mismatch:
                self._logger.error(
                    "ALLOW_X402_SIGNER_MISMATCH engaged: signer %s accepted for payer %s",
                    signer,
                    payer,
                )
                diagnostics.append(f"signer_mismatch_allowed:{signer}")
            else:
                if self._settings.debug_payments:
                    diagnostics.extend(
                        self._probe_domain_variants(
                            token, chain_id, message, proof.signature, payer
                        )
                    )
                return self._reject(
                    "signer_mismatch",
                    network=network_name,
                    payer=payer,
                    diagnostics=diagnostics,
                )

        # 4. Replay check
        claim = self._claim_nonce(network, token, auth)
        if claim is None:
            self._logger.warning(
                "Authorization nonce %s for payer %s is already being redeemed", auth.nonce, payer
            )
            return self._reject("nonce_already_used", network=network_name, payer=payer)
        try:
            used = await self._get_state_reader(network).authorization_state(
                token.address, payer, hex_to_bytes(auth.nonce)
            )
        except (TransactionError, ValueError) as e:
            self._logger.error("Replay check failed for payer %s: %s", payer, e)
            self._release_nonce(claim)
            return self._reject(
                "replay_check_failed",
                network=network_name,
                payer=payer,
                transport_error=True,
            )
        if used:
            return self._reject("nonce_already_used", network=network_name, payer=payer)

        # 5. Settlement
        return await self._settle(proof, auth, token, network, diagnostics)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _resolve_token(
        self, network: Network, domain: TypedDataDomain | None
    ) -> tuple[TokenInfo | None, str | None]:
        contract = domain.verifying_contract if domain is not None else None
        if not contract:
            return TokenRegistry.get_default_token(network), None
        token = TokenRegistry.find_by_address(network, contract)
        if token is None:
            return None, "unsupported_token"
        return token, None

    def _validate_authorization(
        self, auth: TransferAuthorization, pay_to: str, required: int
    ) -> str | None:
        """Validate authorization fields. Returns an error reason or None"""
        if auth.to.lower() != pay_to.lower():
            return "payto_mismatch"
        if auth.value < required:
            return "amount_mismatch"
        try:
            if len(hex_to_bytes(auth.nonce)) != 32:
                return "invalid_nonce"
        except ValueError:
            return "invalid_nonce"
        now = int(self._clock())
        if auth.valid_before < now:
            return "expired"
        if auth.valid_after > now:
            return "not_yet_valid"
        return None

    @staticmethod
    def _declared_domain_mismatch(declared: TypedDataDomain | None, token: TokenInfo) -> str | None:
        """Declared name/version that differ from the registered token, if any"""
        if declared is None:
            return None
        name = declared.name or token.name
        version = declared.version or token.version
        if (name, version) == (token.name, token.version):
            return None
        return f"{name}/{version}"

    @staticmethod
    def _build_domain(token: TokenInfo, chain_id: int) -> dict[str, Any]:
        """The token contract only accepts signatures over its registered domain"""
        return build_eip712_domain(token.name, token.version, chain_id, token.address)

    @staticmethod
    def _signed_as(
        domain: dict[str, Any],
        message: dict[str, Any],
        signature: str,
        primary_type: str,
        payer: str,
    ) -> bool:
        try:
            recovered = recover_typed_data_signer(domain, message, signature, primary_type)
        except SignatureVerificationError:
            return False
        return recovered.lower() == payer.lower()

    def _probe_domain_variants(
        self,
        token: TokenInfo,
        chain_id: int,
        message: dict[str, Any],
        signature: str,
        payer: str,
    ) -> list[str]:
        """Find which domain the client actually signed with. Diagnostics only"""
        found = []
        registered = self._build_domain(token, chain_id)
        for variant in domain_variants(chain_id, token.address, registered):
            if self._signed_as(variant, message, signature, TRANSFER_AUTH_PRIMARY_TYPE, payer):
                note = f"domain_variant:{variant['name']}/{variant['version']}"
                self._logger.warning("Signature matches alternative domain %s", note)
                found.append(note)
        return found

    @staticmethod
    def _is_gateway_request(context: VerificationContext) -> bool:
        return bool(context.user_agent and GATEWAY_USER_AGENT_HINT in context.user_agent)

    async def _settle(
        self,
        proof: TypedDataAuthorization,
        auth: TransferAuthorization,
        token: TokenInfo,
        network: Network,
        diagnostics: list[str],
    ) -> VerificationOutcome:
        network_name = NetworkConfig.get_x402_name(network)
        payer = auth.from_address

        def unsettled(reason: str) -> VerificationOutcome:
            self._logger.error(
                "Payment VERIFIED but NOT SETTLED (%s): funds were not collected from %s",
                reason,
                payer,
                extra={"reason": reason, "network": network_name},
            )
            return VerificationOutcome(
                verified=True,
                settled=False,
                reason=reason,
                network=network_name,
                payer=payer,
                diagnostics=diagnostics,
            )

        signer = self._get_settlement_signer(network)
        if signer is None:
            return unsettled("settlement_not_configured")

        try:
            v, r, s = split_signature(proof.signature)
        except SignatureVerificationError as e:
            self._logger.debug("Cannot split signature: %s", e)
            return unsettled("invalid_signature_length")

        args = [
            AsyncWeb3.to_checksum_address(auth.from_address),
            AsyncWeb3.to_checksum_address(auth.to),
            int(auth.value),
            int(auth.valid_after),
            int(auth.valid_before),
            hex_to_bytes(auth.nonce),
            v,
            r,
            s,
        ]
        self._logger.info(
            "Settling transferWithAuthorization: from=%s, to=%s, value=%s, token=%s",
            auth.from_address,
            auth.to,
            auth.value,
            token.address,
        )
        tx_hash = await signer.write_contract(
            token.address,
            TRANSFER_WITH_AUTHORIZATION_ABI,
            "transferWithAuthorization",
            args,
        )
        if tx_hash is None:
            return unsettled("settlement_submit_failed")

        try:
            receipt = await signer.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except Exception as e:
            self._logger.error("Waiting for settlement receipt %s failed: %s", tx_hash, e)
            outcome = unsettled("settlement_receipt_failed")
            outcome.transaction = tx_hash
            return outcome

        if receipt.get("status") != "confirmed":
            outcome = unsettled("settlement_reverted")
            outcome.transaction = tx_hash
            return outcome

        self._logger.info(
            "Settlement confirmed: %s (block %s)", tx_hash, receipt.get("blockNumber")
        )
        return VerificationOutcome(
            verified=True,
            settled=True,
            reason="settled",
            network=network_name,
            payer=payer,
            transaction=tx_hash,
            diagnostics=diagnostics,
        )
