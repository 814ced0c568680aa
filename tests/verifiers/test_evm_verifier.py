"""
Tests for TypedDataAuthorizationVerifier - ERC-3009 verification and settlement
"""

import asyncio
import dataclasses
import logging
import time
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from x402_gateway.config import Network
from x402_gateway.exceptions import ConfigurationError, TransactionError
from x402_gateway.types import TransferAuthorization, TypedDataAuthorization, TypedDataDomain
from x402_gateway.utils.eip712 import RECEIVE_AUTH_PRIMARY_TYPE
from x402_gateway.verifiers import TypedDataAuthorizationVerifier, VerificationContext

from conftest import (
    BASE_USDC,
    EVM_PAYEE,
    GATEWAY_KEY,
    OTHER_KEY,
    PAYER_KEY,
    make_authorization,
    sign_authorization,
)

TX_HASH = "0x" + "ef" * 32


class FakeChain:
    """Nonce state shared by a fake reader and a fake settlement signer"""

    def __init__(self):
        self.used: set[tuple[str, bytes]] = set()

    async def authorization_state(self, token_address, authorizer, nonce):
        await asyncio.sleep(0)
        return (authorizer.lower(), nonce) in self.used

    async def write_contract(self, contract_address, abi, method, args):
        self.used.add((args[0].lower(), args[5]))
        return TX_HASH


@pytest.fixture
def context():
    return VerificationContext(
        network=Network.BASE,
        pay_to=EVM_PAYEE,
        price_usd=Decimal("0.10"),
        resource="https://api.example.com/api/premium",
    )


@pytest.fixture
def state_reader():
    reader = MagicMock()
    reader.authorization_state = AsyncMock(return_value=False)
    return reader


@pytest.fixture
def settlement_signer():
    signer = MagicMock()
    signer.get_address.return_value = "0x2222222222222222222222222222222222222222"
    signer.write_contract = AsyncMock(return_value=TX_HASH)
    signer.wait_for_transaction_receipt = AsyncMock(
        return_value={"hash": TX_HASH, "blockNumber": 12345, "status": "confirmed"}
    )
    return signer


@pytest.fixture
def make_verifier(settings, state_reader, settlement_signer):
    def _make(settings=settings, signers=None, reader=state_reader):
        return TypedDataAuthorizationVerifier(
            settings,
            state_readers={Network.BASE: reader, Network.POLYGON: reader},
            settlement_signers=(
                signers if signers is not None else {Network.BASE: settlement_signer}
            ),
        )

    return _make


def build_proof(key: str, authorization: dict, domain: dict | None = None, **sign_kwargs):
    return TypedDataAuthorization(
        network=Network.BASE,
        signature=sign_authorization(key, authorization, **sign_kwargs),
        authorization=TransferAuthorization.model_validate(authorization),
        domain=TypedDataDomain.model_validate(domain) if domain else None,
    )


class TestValidAuthorization:
    @pytest.mark.anyio
    async def test_verified_and_settled(self, make_verifier, context, payer, settlement_signer):
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is True
        assert outcome.settled is True
        assert outcome.reason == "settled"
        assert outcome.transaction == TX_HASH
        assert outcome.payer == payer.address
        assert outcome.network == "base"

        settlement_signer.write_contract.assert_awaited_once()
        contract, _abi, method, args = settlement_signer.write_contract.call_args.args
        assert method == "transferWithAuthorization"
        assert contract == BASE_USDC
        assert args[2] == 100000
        assert args[5] == bytes.fromhex("cd" * 32)
        assert args[6] in (27, 28)
        settlement_signer.wait_for_transaction_receipt.assert_awaited_once()

    @pytest.mark.anyio
    async def test_overpayment_is_accepted(self, make_verifier, context, payer):
        proof = build_proof(PAYER_KEY, make_authorization(payer.address, value=250000))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is True

    @pytest.mark.anyio
    async def test_declared_domain_matching_token(self, make_verifier, context, payer):
        proof = build_proof(
            PAYER_KEY,
            make_authorization(payer.address),
            domain={
                "name": "USD Coin",
                "version": "2",
                "chainId": 8453,
                "verifyingContract": BASE_USDC.lower(),
            },
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is True

    @pytest.mark.anyio
    async def test_declared_domain_not_matching_token(
        self, make_verifier, context, payer, settlement_signer
    ):
        proof = build_proof(
            PAYER_KEY,
            make_authorization(payer.address),
            domain={"name": "Totally Not USDC", "version": "999", "verifyingContract": BASE_USDC},
            name="Totally Not USDC",
            version="999",
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is False
        assert outcome.reason == "domain_mismatch"
        assert outcome.diagnostics == ["declared_domain:Totally Not USDC/999"]
        settlement_signer.write_contract.assert_not_called()

    @pytest.mark.anyio
    async def test_undeclared_foreign_domain_does_not_recover(self, make_verifier, context, payer):
        proof = build_proof(
            PAYER_KEY, make_authorization(payer.address), name="Totally Not USDC", version="999"
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is False
        assert outcome.reason == "signer_mismatch"


class TestFieldChecks:
    @pytest.mark.anyio
    async def test_missing_authorization(self, make_verifier, context):
        proof = TypedDataAuthorization(network=Network.BASE, signature="0x" + "ab" * 65)

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is False
        assert outcome.reason == "missing_authorization"

    @pytest.mark.anyio
    async def test_amount_below_price(self, make_verifier, context, payer):
        proof = build_proof(PAYER_KEY, make_authorization(payer.address, value=99999))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "amount_mismatch"

    @pytest.mark.anyio
    async def test_wrong_recipient(self, make_verifier, context, payer):
        authorization = make_authorization(
            payer.address, to_addr="0x3333333333333333333333333333333333333333"
        )
        outcome = await make_verifier().verify(build_proof(PAYER_KEY, authorization), context)

        assert outcome.reason == "payto_mismatch"

    @pytest.mark.anyio
    async def test_expired(self, make_verifier, context, payer):
        now = int(time.time())
        authorization = make_authorization(
            payer.address, valid_after=now - 600, valid_before=now - 10
        )
        outcome = await make_verifier().verify(build_proof(PAYER_KEY, authorization), context)

        assert outcome.reason == "expired"

    @pytest.mark.anyio
    async def test_not_yet_valid(self, make_verifier, context, payer):
        now = int(time.time())
        authorization = make_authorization(
            payer.address, valid_after=now + 600, valid_before=now + 3600
        )
        outcome = await make_verifier().verify(build_proof(PAYER_KEY, authorization), context)

        assert outcome.reason == "not_yet_valid"

    @pytest.mark.anyio
    async def test_short_nonce(self, make_verifier, context, payer):
        authorization = make_authorization(payer.address)
        authorization["nonce"] = "0x1234"
        proof = TypedDataAuthorization(
            network=Network.BASE,
            signature="0x" + "ab" * 65,
            authorization=TransferAuthorization.model_validate(authorization),
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "invalid_nonce"

    @pytest.mark.anyio
    async def test_unregistered_token_contract(self, make_verifier, context, payer):
        proof = build_proof(
            PAYER_KEY,
            make_authorization(payer.address),
            domain={"verifyingContract": "0x4444444444444444444444444444444444444444"},
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "unsupported_token"

    @pytest.mark.anyio
    async def test_chain_mismatch(self, make_verifier, context, payer):
        proof = build_proof(
            PAYER_KEY,
            make_authorization(payer.address),
            domain={"chainId": 137},
            chain_id=137,
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "chain_mismatch"


class TestSignatures:
    @pytest.mark.anyio
    async def test_unrecoverable_signature(self, make_verifier, context, payer, state_reader):
        proof = TypedDataAuthorization(
            network=Network.BASE,
            signature="0x1234",
            authorization=TransferAuthorization.model_validate(make_authorization(payer.address)),
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "invalid_signature"
        state_reader.authorization_state.assert_not_called()

    @pytest.mark.anyio
    async def test_signer_mismatch(self, make_verifier, context, payer, settlement_signer):
        proof = build_proof(OTHER_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is False
        assert outcome.reason == "signer_mismatch"
        settlement_signer.write_contract.assert_not_called()

    @pytest.mark.anyio
    async def test_receive_with_authorization_is_named(self, make_verifier, context, payer):
        proof = build_proof(
            PAYER_KEY,
            make_authorization(payer.address),
            primary_type=RECEIVE_AUTH_PRIMARY_TYPE,
        )

        outcome = await make_verifier().verify(proof, context)

        assert outcome.reason == "wrong_typed_data_type"

    @pytest.mark.anyio
    async def test_trusted_intermediary_signer(
        self, make_verifier, settings, context, payer, gateway_signer
    ):
        trusted = dataclasses.replace(
            settings, trusted_gateway_signers=frozenset({gateway_signer.address})
        )
        proof = build_proof(GATEWAY_KEY, make_authorization(payer.address))

        outcome = await make_verifier(settings=trusted).verify(proof, context)

        assert outcome.verified is True
        assert outcome.payer == payer.address
        assert f"trusted_signer:{gateway_signer.address}" in outcome.diagnostics

    @pytest.mark.anyio
    async def test_gateway_user_agent_alone_grants_nothing(self, make_verifier, context, payer):
        gateway_context = dataclasses.replace(context, user_agent="X402-Gateway/1.0")
        proof = build_proof(GATEWAY_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, gateway_context)

        assert outcome.reason == "signer_mismatch"

    @pytest.mark.anyio
    async def test_allow_signer_mismatch_is_logged(
        self, make_verifier, settings, context, payer, caplog
    ):
        permissive = dataclasses.replace(settings, allow_signer_mismatch=True)
        proof = build_proof(OTHER_KEY, make_authorization(payer.address))

        with caplog.at_level(logging.ERROR):
            outcome = await make_verifier(settings=permissive).verify(proof, context)

        assert outcome.verified is True
        assert "ALLOW_X402_SIGNER_MISMATCH" in caplog.text

    @pytest.mark.anyio
    async def test_domain_variant_diagnostics(self, make_verifier, settings, context, payer):
        debug = dataclasses.replace(settings, debug_payments=True)
        proof = build_proof(PAYER_KEY, make_authorization(payer.address), name="USDC")

        outcome = await make_verifier(settings=debug).verify(proof, context)

        assert outcome.reason == "signer_mismatch"
        assert "domain_variant:USDC/2" in outcome.diagnostics


class TestReplayProtection:
    @pytest.mark.anyio
    async def test_same_authorization_twice(self, settings, context, payer):
        chain = FakeChain()
        signer = MagicMock()
        signer.write_contract = AsyncMock(side_effect=chain.write_contract)
        signer.wait_for_transaction_receipt = AsyncMock(return_value={"status": "confirmed"})
        verifier = TypedDataAuthorizationVerifier(
            settings,
            state_readers={Network.BASE: chain},
            settlement_signers={Network.BASE: signer},
        )
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        first = await verifier.verify(proof, context)
        second = await verifier.verify(proof, context)

        assert first.verified is True
        assert second.verified is False
        assert second.reason == "nonce_already_used"

    @pytest.mark.anyio
    async def test_concurrent_redemption_serves_once(self, settings, context, payer):
        chain = FakeChain()
        signer = MagicMock()
        signer.write_contract = AsyncMock(side_effect=chain.write_contract)
        signer.wait_for_transaction_receipt = AsyncMock(return_value={"status": "confirmed"})
        verifier = TypedDataAuthorizationVerifier(
            settings,
            state_readers={Network.BASE: chain},
            settlement_signers={Network.BASE: signer},
        )
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcomes = await asyncio.gather(
            verifier.verify(proof, context), verifier.verify(proof, context)
        )

        assert [o.verified for o in outcomes].count(True) == 1
        assert {o.reason for o in outcomes} == {"settled", "nonce_already_used"}
        signer.write_contract.assert_awaited_once()

    @pytest.mark.anyio
    async def test_unsettled_authorization_cannot_be_reused(self, make_verifier, context, payer):
        verifier = make_verifier(signers={})
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        first = await verifier.verify(proof, context)
        second = await verifier.verify(proof, context)

        assert first.reason == "settlement_not_configured"
        assert second.verified is False
        assert second.reason == "nonce_already_used"

    @pytest.mark.anyio
    async def test_failed_state_read_releases_nonce(self, make_verifier, context, payer):
        reader = MagicMock()
        reader.authorization_state = AsyncMock(side_effect=[TransactionError("rpc down"), False])
        verifier = make_verifier(reader=reader)
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        first = await verifier.verify(proof, context)
        second = await verifier.verify(proof, context)

        assert first.reason == "replay_check_failed"
        assert second.verified is True

    @pytest.mark.anyio
    async def test_expired_claims_are_dropped(self, settings, state_reader, context, payer):
        now = [time.time()]
        verifier = TypedDataAuthorizationVerifier(
            settings,
            state_readers={Network.BASE: state_reader},
            settlement_signers={},
            clock=lambda: now[0],
        )
        short_lived = make_authorization(
            payer.address, valid_before=int(now[0]) + 60, nonce="0x" + "01" * 32
        )
        await verifier.verify(build_proof(PAYER_KEY, short_lived), context)

        now[0] += 120
        later = make_authorization(
            payer.address, valid_before=int(now[0]) + 60, nonce="0x" + "02" * 32
        )
        outcome = await verifier.verify(build_proof(PAYER_KEY, later), context)

        assert outcome.verified is True
        assert len(verifier._claimed_nonces) == 1

    @pytest.mark.anyio
    async def test_distinct_nonces_both_accepted(self, settings, context, payer):
        chain = FakeChain()
        signer = MagicMock()
        signer.write_contract = AsyncMock(side_effect=chain.write_contract)
        signer.wait_for_transaction_receipt = AsyncMock(return_value={"status": "confirmed"})
        verifier = TypedDataAuthorizationVerifier(
            settings,
            state_readers={Network.BASE: chain},
            settlement_signers={Network.BASE: signer},
        )

        first = await verifier.verify(
            build_proof(PAYER_KEY, make_authorization(payer.address, nonce="0x" + "01" * 32)),
            context,
        )
        second = await verifier.verify(
            build_proof(PAYER_KEY, make_authorization(payer.address, nonce="0x" + "02" * 32)),
            context,
        )

        assert first.settled is True
        assert second.settled is True

    @pytest.mark.anyio
    async def test_state_read_failure_is_fail_closed(self, make_verifier, context, payer):
        reader = MagicMock()
        reader.authorization_state = AsyncMock(side_effect=TransactionError("rpc down"))
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcome = await make_verifier(reader=reader).verify(proof, context)

        assert outcome.verified is False
        assert outcome.reason == "replay_check_failed"
        assert outcome.transport_error is True


class TestSettlement:
    @pytest.mark.anyio
    async def test_no_settlement_key(self, make_verifier, context, payer, caplog):
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        with caplog.at_level(logging.ERROR):
            outcome = await make_verifier(signers={}).verify(proof, context)

        assert outcome.verified is True
        assert outcome.settled is False
        assert outcome.reason == "settlement_not_configured"
        assert "NOT SETTLED" in caplog.text

    @pytest.mark.anyio
    async def test_submit_failure(self, make_verifier, context, payer, settlement_signer):
        settlement_signer.write_contract = AsyncMock(return_value=None)
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is True
        assert outcome.settled is False
        assert outcome.reason == "settlement_submit_failed"

    @pytest.mark.anyio
    async def test_reverted_receipt(self, make_verifier, context, payer, settlement_signer):
        settlement_signer.wait_for_transaction_receipt = AsyncMock(
            return_value={"hash": TX_HASH, "status": "failed"}
        )
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.settled is False
        assert outcome.reason == "settlement_reverted"
        assert outcome.transaction == TX_HASH

    @pytest.mark.anyio
    async def test_receipt_timeout(self, make_verifier, context, payer, settlement_signer):
        settlement_signer.wait_for_transaction_receipt = AsyncMock(
            side_effect=TimeoutError("no receipt")
        )
        proof = build_proof(PAYER_KEY, make_authorization(payer.address))

        outcome = await make_verifier().verify(proof, context)

        assert outcome.verified is True
        assert outcome.reason == "settlement_receipt_failed"

    @pytest.mark.anyio
    async def test_skipped_signature_check_cannot_settle_garbage(
        self, make_verifier, settings, context, payer, settlement_signer
    ):
        skipping = dataclasses.replace(settings, skip_signature_verification=True)
        proof = TypedDataAuthorization(
            network=Network.BASE,
            signature="0x1234",
            authorization=TransferAuthorization.model_validate(make_authorization(payer.address)),
        )

        outcome = await make_verifier(settings=skipping).verify(proof, context)

        assert outcome.verified is True
        assert outcome.settled is False
        assert outcome.reason == "invalid_signature_length"
        settlement_signer.write_contract.assert_not_called()


class TestSettlementKeys:
    def test_signers_built_from_settings(self, settings, gateway_signer):
        keyed = dataclasses.replace(
            settings, settlement_keys={Network.BASE: GATEWAY_KEY.removeprefix("0x")}
        )

        verifier = TypedDataAuthorizationVerifier(keyed)

        assert verifier._get_settlement_signer(Network.BASE).get_address() == gateway_signer.address
        assert verifier._get_settlement_signer(Network.POLYGON) is None

    @pytest.mark.parametrize("key", ["0xabc", "not-a-key"])
    def test_malformed_key_fails_at_construction(self, settings, key):
        broken = dataclasses.replace(settings, settlement_keys={Network.BASE: key})

        with pytest.raises(ConfigurationError, match="settlement private key"):
            TypedDataAuthorizationVerifier(broken)
