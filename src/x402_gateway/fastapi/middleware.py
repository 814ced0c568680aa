"""
FastAPI middleware for x402 payment processing
"""

import inspect
import logging
from dataclasses import replace
from functools import wraps
from typing import Any, Callable, Iterable, Sequence

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from x402_gateway.config import Network, NetworkConfig
from x402_gateway.encoding import encode_payment_payload
from x402_gateway.exceptions import ConfigurationError, ValidationError
from x402_gateway.proofs import decode_payment_proof
from x402_gateway.server import X402Server
from x402_gateway.types import (
    X402_VERSION,
    RoutePaymentDescriptor,
    ValidationResult,
    VerificationOutcome,
)

logger = logging.getLogger(__name__)

PAYMENT_PROOF_HEADER = "X-Payment-Proof"
PAYMENT_HEADER = "X-Payment"
PAYMENT_ID_HEADER = "X-Payment-Id"
PAYMENT_RESPONSE_HEADER = "X-Payment-Response"
PAYMENT_PROOF_QUERY = "paymentProof"
PAYMENT_ID_QUERY = "paymentId"

NO_VALID_CREDENTIALS_ERROR = "No valid payment credentials"
VERIFICATION_FAILED_ERROR = "Payment verification failed"


class X402Middleware:
    """
    FastAPI middleware for automatic 402 payment handling.

    Usage:
        app = FastAPI()
        server = X402Server(GatewaySettings.from_env())
        middleware = X402Middleware(server)

        @app.get("/protected")
        @middleware.protect(
            RoutePaymentDescriptor(path="/protected", price="$0.10",
                                   networks=(Network.BASE, Network.SOLANA)),
        )
        async def protected_endpoint(request: Request):
            return {"data": "secret"}
    """

    def __init__(self, server: X402Server) -> None:
        self._server = server

    @property
    def server(self) -> X402Server:
        return self._server

    def protect(self, descriptor: RoutePaymentDescriptor) -> Callable:
        """
        Decorator to protect an endpoint with a payment requirement.

        The endpoint must take ``request: Request`` as its first parameter. An
        empty ``path`` or ``method`` on *descriptor* is filled in from the
        request.

        Raises:
            ConfigurationError: At decoration time, if the price is malformed or
                an accepted network has no valid payout address
        """
        self._server.validate_route(descriptor)

        def decorator(func: Callable) -> Callable:
            @wraps(func)
            async def wrapper(request: Request, *args: Any, **kwargs: Any) -> Response:
                if not descriptor.requires_payment:
                    return await _call_endpoint(func, request, *args, **kwargs)

                route = _bind_descriptor(descriptor, request)
                debug = self._server.settings.debug_payments
                logger.info("x402 payment check: %s %s", request.method, route.path)

                # 1. Pre-payment validation
                if route.validator is not None:
                    rejection = await self._run_validator(route, request)
                    if rejection is not None:
                        return rejection

                # 2. Credentials
                proof_raw = (
                    request.headers.get(PAYMENT_PROOF_HEADER)
                    or request.headers.get(PAYMENT_HEADER)
                    or request.query_params.get(PAYMENT_PROOF_QUERY)
                )
                payment_id = request.headers.get(PAYMENT_ID_HEADER) or request.query_params.get(
                    PAYMENT_ID_QUERY
                )
                if debug:
                    logger.debug(
                        "Payment credentials: proof=%s payment_id=%s",
                        bool(proof_raw),
                        bool(payment_id),
                        extra={"headers": dict(request.headers), "query": dict(request.query_params)},
                    )

                if not proof_raw and not payment_id:
                    logger.info("No payment credentials - returning 402")
                    return self._return_payment_required(route)

                # 3. Verification
                outcome = await self._verify(route, request, proof_raw, payment_id)
                if outcome is None:
                    logger.warning("Unrecognized payment proof and no payment id")
                    return self._return_payment_required(route, error=NO_VALID_CREDENTIALS_ERROR)
                if not outcome.verified:
                    logger.warning(
                        "Payment verification failed for %s: %s",
                        route.path,
                        outcome.reason,
                        extra={"reason": outcome.reason, "network": outcome.network},
                    )
                    return _verification_failed(outcome)

                # 4. Downstream handler
                request.state.x402 = outcome
                logger.info(
                    "Payment verified for %s (%s, settled=%s)",
                    route.path,
                    outcome.reason,
                    outcome.settled,
                )
                response = await _call_endpoint(func, request, *args, **kwargs)
                if not isinstance(response, Response):
                    response = JSONResponse(content=jsonable_encoder(response))
                response.headers[PAYMENT_RESPONSE_HEADER] = encode_payment_payload(
                    outcome.to_header_dict()
                )
                return response

            return wrapper

        return decorator

    async def _run_validator(
        self, route: RoutePaymentDescriptor, request: Request
    ) -> JSONResponse | None:
        """Run the route validator. Returns an error response, or None to proceed"""
        try:
            result = route.validator(request)
            if inspect.isawaitable(result):
                result = await result
        except ValidationError as e:
            result = ValidationResult.fail(str(e), status=e.status, details=e.details)
        except Exception as e:
            logger.error("Validation error on %s: %s", route.path, e, exc_info=True)
            return JSONResponse(
                status_code=500,
                content={"success": False, "message": "Validation error", "error": str(e)},
            )

        if not isinstance(result, ValidationResult):
            result = ValidationResult.model_validate(result)
        if result.valid:
            return None

        error = result.error
        message = error.message if error and error.message else "Invalid request"
        logger.warning("Validation failed on %s: %s", route.path, message)
        content: dict[str, Any] = {"success": False, "message": message}
        if error and error.details:
            content["details"] = error.details
        return JSONResponse(status_code=error.status if error else 400, content=content)

    async def _verify(
        self,
        route: RoutePaymentDescriptor,
        request: Request,
        proof_raw: str | None,
        payment_id: str | None,
    ) -> VerificationOutcome | None:
        """Try the proof first, then the payment id. None if nothing was usable"""
        outcome = None
        if proof_raw:
            settings = self._server.settings
            proof = decode_payment_proof(
                proof_raw,
                default_native_network=Network.SOLANA,
                default_evm_network=settings.default_evm_network,
            )
            if proof is not None:
                outcome = await self._server.verify_proof(
                    route, proof, user_agent=request.headers.get("user-agent")
                )
                if outcome.verified:
                    return outcome

        if payment_id:
            id_outcome = await self._server.verify_payment_id(payment_id)
            if id_outcome.verified or outcome is None:
                return id_outcome
        return outcome

    def _return_payment_required(
        self,
        route: RoutePaymentDescriptor,
        error: str | None = None,
    ) -> JSONResponse:
        """Return 402 payment required response"""
        try:
            if error:
                payment_required = self._server.build_payment_required(route, error=error)
            else:
                payment_required = self._server.build_payment_required(route)
        except ConfigurationError as e:
            logger.error("Failed to build x402 response for %s: %s", route.path, e)
            return JSONResponse(
                content={"error": "No supported payment options available"},
                status_code=500,
            )
        return JSONResponse(content=payment_required.to_json_dict(), status_code=402)


def _bind_descriptor(descriptor: RoutePaymentDescriptor, request: Request) -> RoutePaymentDescriptor:
    if descriptor.path and descriptor.method:
        return descriptor
    return replace(
        descriptor,
        path=descriptor.path or request.url.path,
        method=descriptor.method or request.method,
    )


async def _call_endpoint(func: Callable, request: Request, *args: Any, **kwargs: Any) -> Any:
    result = func(request, *args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def _verification_failed(outcome: VerificationOutcome) -> JSONResponse:
    if outcome.transport_error:
        message = "Payment verification is temporarily unavailable, please retry"
    else:
        message = "The provided payment proof is invalid or has expired"
    return JSONResponse(
        status_code=402,
        content={
            "x402Version": X402_VERSION,
            "error": VERIFICATION_FAILED_ERROR,
            "message": message,
        },
    )


def _parse_networks(networks: Iterable[str | Network] | None) -> tuple[Network, ...]:
    return tuple(NetworkConfig.parse(n) for n in networks or ())


def x402_protected(
    server: X402Server,
    price: str | None,
    networks: Sequence[str | Network] | None = None,
    path: str = "",
    method: str = "",
    **kwargs: Any,
) -> Callable:
    """
    Convenience decorator to protect endpoints.

        @app.post("/api/swap")
        @x402_protected(server, price="$0.10", networks=["BASE", "solana"],
                        body_fields={...}, validator=swap_quote_validator)
        async def swap(request: Request):
            ...
    """
    descriptor = RoutePaymentDescriptor(
        path=path,
        price=price,
        networks=_parse_networks(networks),
        method=method,
        **kwargs,
    )
    return X402Middleware(server).protect(descriptor)


def apply_payment_protection(
    app: FastAPI | APIRouter,
    server: X402Server,
    routes: Iterable[tuple[RoutePaymentDescriptor, Callable]],
) -> None:
    """Register a list of (descriptor, handler) pairs, protecting the paid ones"""
    middleware = X402Middleware(server)
    for descriptor, handler in routes:
        endpoint = middleware.protect(descriptor)(handler) if descriptor.requires_payment else handler
        if descriptor.requires_payment:
            logger.info(
                "Applying payment protection to %s %s (%s)",
                descriptor.method,
                descriptor.path,
                descriptor.price,
            )
        app.add_api_route(descriptor.path, endpoint, methods=[descriptor.method or "GET"])
