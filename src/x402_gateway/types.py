"""
Type definitions for the x402 payment gateway
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal, Optional, Union

from pydantic import BaseModel, Field

from x402_gateway.config import Network

X402_VERSION = 1
SCHEME_EXACT = "exact"


# ---------------------------------------------------------------------------
# Payment proofs
# ---------------------------------------------------------------------------


class TransferAuthorization(BaseModel):
    """TransferWithAuthorization parameters"""

    from_address: str = Field(alias="from")
    to: str
    value: int
    valid_after: int = Field(0, alias="validAfter")
    valid_before: int = Field(alias="validBefore")
    nonce: str  # 32-byte hex string (0x...)

    class Config:
        populate_by_name = True


class TypedDataDomain(BaseModel):
    """EIP-712 domain declared by the client"""

    name: Optional[str] = None
    version: Optional[str] = None
    chain_id: Optional[int] = Field(None, alias="chainId")
    verifying_contract: Optional[str] = Field(None, alias="verifyingContract")

    class Config:
        populate_by_name = True


class NativeChainSignature(BaseModel):
    """A transaction signature on a native (non-EVM) chain"""

    kind: Literal["native_signature"] = "native_signature"
    signature: str
    network: Network
    claimed_address: Optional[str] = None


class TypedDataAuthorization(BaseModel):
    """A signed EIP-712 transfer authorization.

    ``authorization`` is None for legacy colon-delimited EVM proofs, which carry
    a bare signature only and are always rejected.
    """

    kind: Literal["typed_data"] = "typed_data"
    network: Network
    signature: str
    authorization: Optional[TransferAuthorization] = None
    domain: Optional[TypedDataDomain] = None


class FacilitatorId(BaseModel):
    """An opaque payment id issued by a facilitator"""

    kind: Literal["facilitator_id"] = "facilitator_id"
    id: str


PaymentProof = Union[NativeChainSignature, TypedDataAuthorization, FacilitatorId]


# ---------------------------------------------------------------------------
# Verification outcome
# ---------------------------------------------------------------------------


class VerificationOutcome(BaseModel):
    """Result of verifying (and possibly settling) a payment proof.

    ``verified`` answers "did the payer authorize payment"; ``settled`` answers
    "did funds move". A verified-but-unsettled outcome is valid for access but
    must be visible to operators.
    """

    verified: bool
    settled: bool = False
    reason: str
    network: Optional[str] = None
    payer: Optional[str] = None
    transaction: Optional[str] = None
    diagnostics: list[str] = Field(default_factory=list)
    transport_error: bool = Field(False, alias="transportError")

    class Config:
        populate_by_name = True

    @classmethod
    def reject(cls, reason: str, **kwargs: Any) -> "VerificationOutcome":
        return cls(verified=False, reason=reason, **kwargs)

    def to_header_dict(self) -> dict[str, Any]:
        """Fields safe to echo back to the payer"""
        return {
            "success": self.verified,
            "settled": self.settled,
            "network": self.network,
            "transaction": self.transaction,
            "payer": self.payer,
        }


# ---------------------------------------------------------------------------
# x402 "payment required" response
# ---------------------------------------------------------------------------


class FieldDef(BaseModel):
    """Field definition for input/output schema"""

    type: Optional[str] = None
    required: Optional[Union[bool, list[str]]] = None
    description: Optional[str] = None
    enum: Optional[list[str]] = None
    properties: Optional[dict[str, "FieldDef"]] = None


class OutputSchemaInput(BaseModel):
    """Describes how to call the paid endpoint"""

    type: str = "http"
    method: str
    body_type: Optional[str] = Field(None, alias="bodyType")
    path_params: Optional[dict[str, FieldDef]] = Field(None, alias="pathParams")
    query_params: Optional[dict[str, FieldDef]] = Field(None, alias="queryParams")
    body_fields: Optional[dict[str, FieldDef]] = Field(None, alias="bodyFields")
    header_fields: Optional[dict[str, FieldDef]] = Field(None, alias="headerFields")

    class Config:
        populate_by_name = True


class OutputSchema(BaseModel):
    """Input and output expectations of the paid endpoint"""

    input: OutputSchemaInput
    output: Optional[dict[str, Any]] = None


class AcceptsEntry(BaseModel):
    """One advertised payment option"""

    scheme: str = SCHEME_EXACT
    network: str
    max_amount_required: str = Field(alias="maxAmountRequired")
    resource: str
    description: str
    mime_type: str = Field("application/json", alias="mimeType")
    pay_to: str = Field(alias="payTo")
    max_timeout_seconds: int = Field(alias="maxTimeoutSeconds")
    asset: str
    output_schema: Optional[OutputSchema] = Field(None, alias="outputSchema")
    extra: Optional[dict[str, Any]] = None

    class Config:
        populate_by_name = True


class X402Response(BaseModel):
    """Payment required response (402)"""

    x402_version: int = Field(X402_VERSION, alias="x402Version")
    error: Optional[str] = None
    accepts: list[AcceptsEntry] = Field(default_factory=list)

    class Config:
        populate_by_name = True

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Route declaration
# ---------------------------------------------------------------------------


class RequestValidationError(BaseModel):
    """Error returned by a pre-payment validator"""

    status: int = 400
    message: str
    details: Optional[dict[str, Any]] = None


class ValidationResult(BaseModel):
    """Result of a pre-payment request validator"""

    valid: bool
    error: Optional[RequestValidationError] = None

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def fail(
        cls, message: str, status: int = 400, details: dict[str, Any] | None = None
    ) -> "ValidationResult":
        return cls(
            valid=False,
            error=RequestValidationError(status=status, message=message, details=details),
        )


RequestValidator = Callable[[Any], Union[ValidationResult, Awaitable[ValidationResult]]]


@dataclass(frozen=True)
class RoutePaymentDescriptor:
    """Payment declaration for one route, fixed at startup"""

    path: str
    price: str | None
    networks: tuple[Network, ...] = ()
    method: str = "GET"
    description: str | None = None
    query_params: dict[str, Any] | None = None
    body_fields: dict[str, Any] | None = None
    validator: RequestValidator | None = None
    facilitator_endpoint: str | None = None
    max_timeout_seconds: int = 300
    mime_type: str = "application/json"

    @property
    def requires_payment(self) -> bool:
        return bool(self.price and self.price.strip())
