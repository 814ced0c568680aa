"""
Settlement signer base interface
"""

from abc import ABC, abstractmethod
from typing import Any


class SettlementSigner(ABC):
    """
    Abstract base class for settlement signers.

    Responsible for submitting authorized transfers on-chain with the
    operator's key and waiting for their confirmation.
    """

    @abstractmethod
    def get_address(self) -> str:
        """Get the settlement account address"""
        pass

    @abstractmethod
    async def write_contract(
        self,
        contract_address: str,
        abi: Any,
        method: str,
        args: list[Any],
    ) -> str | None:
        """
        Execute a contract write transaction.

        Args:
            contract_address: Contract address
            abi: Contract ABI (list or JSON string)
            method: Method name
            args: Method arguments

        Returns:
            Transaction hash, or None on failure
        """
        pass

    @abstractmethod
    async def wait_for_transaction_receipt(
        self,
        tx_hash: str,
        timeout: int = 120,
    ) -> dict[str, Any]:
        """
        Wait for transaction confirmation.

        Args:
            tx_hash: Transaction hash
            timeout: Timeout in seconds

        Returns:
            Transaction receipt summary with a ``status`` of "confirmed" or "failed"
        """
        pass


class AuthorizationStateReader(ABC):
    """Reads ERC-3009 nonce consumption state from a token contract"""

    @abstractmethod
    async def authorization_state(
        self,
        token_address: str,
        authorizer: str,
        nonce: bytes,
    ) -> bool:
        """
        Query ``authorizationState(authorizer, nonce)``.

        Returns:
            True if the nonce has already been used or cancelled

        Raises:
            TransactionError: If the RPC call fails
        """
        pass
