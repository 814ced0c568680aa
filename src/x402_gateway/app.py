"""
x402 gateway application: facilitator routes plus example paid endpoints
"""

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from x402_gateway import __version__
from x402_gateway.config import NetworkConfig
from x402_gateway.facilitator import FACILITATOR_PREFIX, InvoiceStore, create_facilitator_router
from x402_gateway.fastapi import PAYMENT_RESPONSE_HEADER, apply_payment_protection
from x402_gateway.logging_config import level_from_flags, setup_logging
from x402_gateway.server import X402Server
from x402_gateway.settings import GatewaySettings
from x402_gateway.types import RoutePaymentDescriptor
from x402_gateway.validators import swap_quote_validator, wallet_validator

logger = logging.getLogger(__name__)

SERVER_HOST = "0.0.0.0"
DEFAULT_PORT = 3000


async def premium_endpoint(request: Request):
    """Example paid resource"""
    outcome = request.state.x402
    return {
        "data": "premium content",
        "payment": {"network": outcome.network, "settled": outcome.settled},
    }


async def wallet_report_endpoint(request: Request):
    """Example paid resource gated by a wallet query parameter"""
    return {"wallet": request.query_params["wallet"], "report": "ok"}


async def swap_quote_endpoint(request: Request):
    """Example paid POST resource gated by a body validator"""
    body = await request.json()
    return {
        "inputMint": body["inputMint"],
        "outputMint": body["outputMint"],
        "amount": body["amount"],
        "quote": None,
    }


def example_routes(settings: GatewaySettings) -> list[tuple[RoutePaymentDescriptor, object]]:
    """Example paid routes, accepting every network with a payout address"""
    networks = tuple(settings.payout_addresses)
    return [
        (
            RoutePaymentDescriptor(
                path="/api/x402/premium",
                price="$0.10",
                networks=networks,
                description="Premium example content",
            ),
            premium_endpoint,
        ),
        (
            RoutePaymentDescriptor(
                path="/api/x402/wallet-report",
                price="$0.01",
                networks=networks,
                description="Wallet report",
                query_params={"wallet": {"type": "string", "required": True}},
                validator=wallet_validator("solana"),
            ),
            wallet_report_endpoint,
        ),
        (
            RoutePaymentDescriptor(
                path="/api/x402/swap-quote",
                price="$0.05",
                networks=networks,
                method="POST",
                description="Swap quote",
                body_fields={
                    "inputMint": {"type": "string", "required": True},
                    "outputMint": {"type": "string", "required": True},
                    "amount": {"type": "string", "required": True},
                },
                validator=swap_quote_validator(),
            ),
            swap_quote_endpoint,
        ),
    ]


def create_app(
    settings: GatewaySettings | None = None,
    store: InvoiceStore | None = None,
    server: X402Server | None = None,
) -> FastAPI:
    """Build the gateway FastAPI application"""
    settings = settings or GatewaySettings.from_env()
    server = server or X402Server(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await server.close()

    app = FastAPI(
        title="X402 Gateway",
        description="HTTP 402 payment gateway",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[PAYMENT_RESPONSE_HEADER],
    )
    app.include_router(create_facilitator_router(settings, store))

    @app.get("/")
    async def root():
        """Service info"""
        return {
            "service": "X402 Gateway",
            "status": "running",
            "version": __version__,
            "networks": {
                NetworkConfig.get_x402_name(network): address
                for network, address in settings.payout_addresses.items()
            },
            "facilitator": settings.facilitator_url or FACILITATOR_PREFIX,
        }

    if settings.payout_addresses:
        apply_payment_protection(app, server, example_routes(settings))
    else:
        logger.warning("No payout addresses configured; example paid routes are disabled")

    return app


def main() -> None:
    """Start the gateway server"""
    settings = GatewaySettings.from_env()
    setup_logging(level_from_flags(settings.debug_payments))
    port = int(os.getenv("PORT", DEFAULT_PORT))
    logger.info("Starting X402 Gateway on %s:%s", SERVER_HOST, port)
    for network, address in settings.payout_addresses.items():
        logger.info("  %s payout: %s", network.value, address)
    uvicorn.run(
        create_app(settings),
        host=SERVER_HOST,
        port=port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
