"""
FacilitatorClient - Client for communicating with a payment facilitator service
"""

import json
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from x402_gateway.settings import DEFAULT_FACILITATOR_TIMEOUT

USER_AGENT = "X402-Gateway-Client/1.0"


class PaymentIdStatus(BaseModel):
    """Raw facilitator answer for a payment id"""

    status_code: int = Field(alias="statusCode")
    body: dict[str, Any] | None = None
    malformed_body: bool = Field(False, alias="malformedBody")

    class Config:
        populate_by_name = True

    @property
    def is_valid(self) -> bool:
        """200 is valid unless the body explicitly says otherwise"""
        if self.status_code != 200 or self.malformed_body:
            return False
        body = self.body or {}
        return body.get("valid") is not False and body.get("verified") is not False


class FacilitatorClient:
    """
    Client for communicating with facilitator service.

    Handles payment-id verification. Requests are never
    retried; timeouts and connection errors surface as ``httpx`` exceptions.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = DEFAULT_FACILITATOR_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize facilitator client.

        Args:
            base_url: Facilitator service base URL
            headers: Custom HTTP headers (e.g., X-Facilitator-Key)
            timeout: Hard request timeout in seconds
            transport: Custom transport (tests)
        """
        self._base_url = base_url.rstrip("/")
        self._headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        self._headers.update(headers or {})
        self._timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client"""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                headers=self._headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client"""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def verify_payment_id(self, payment_id: str) -> PaymentIdStatus:
        """
        Ask the facilitator whether *payment_id* is valid and unused.

        A successful check consumes the id on the facilitator side.

        Args:
            payment_id: Opaque payment id issued by the facilitator

        Returns:
            PaymentIdStatus with the HTTP status and parsed JSON body

        Raises:
            httpx.TimeoutException: If the facilitator does not answer in time
            httpx.HTTPError: On connection errors
        """
        client = await self._get_client()
        response = await client.get(f"/verify/{quote(payment_id, safe='')}")
        body, malformed = _json_body(response)
        return PaymentIdStatus(statusCode=response.status_code, body=body, malformedBody=malformed)


def _json_body(response: httpx.Response) -> tuple[dict[str, Any] | None, bool]:
    """Parse a JSON object body. Returns (body, malformed)"""
    if not response.content:
        return None, False
    try:
        body = response.json()
    except json.JSONDecodeError:
        return None, True
    if body is None:
        return None, False
    return (body, False) if isinstance(body, dict) else (None, True)
