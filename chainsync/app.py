"""FastAPI application: webhook receiver, settlement callback and the poller."""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from chainsync import __version__
from chainsync.api import health, payment_routes, sync_routes
from chainsync.api.common import envelope
from chainsync.chain.badges import BadgeMinter
from chainsync.chain.errors import ChainWriteError
from chainsync.chain.writer import ChainWriter
from chainsync.config import Config
from chainsync.errors import (
    AuthorizationError,
    ChainSyncError,
    ConflictError,
    IndexerQueryError,
    NotFoundError,
    RecordValidationError,
    ServiceUnavailableError,
)
from chainsync.eth.client import ChainClient
from chainsync.log import get_logger
from chainsync.services.settlement import SettlementFailedError, SettlementService
from chainsync.sync.indexer_client import IndexerClient
from chainsync.sync.poller import Poller
from chainsync.sync.upsert import UpsertEngine

logger = get_logger(__name__)

POLLER_STOP_TIMEOUT = 30


@dataclass
class AppServices:
    """Long-lived collaborators shared by every request."""
    config: Config
    indexer: IndexerClient
    engine: UpsertEngine
    poller: Poller
    settlement: SettlementService
    badge_minter: Optional[BadgeMinter] = None


def build_services(
    config: Config,
    indexer: Optional[IndexerClient] = None,
    chain_client: Optional[ChainClient] = None,
) -> AppServices:
    """Wire the services from configuration.

    Chain writes and badge minting are only available when their settings are
    present and the RPC endpoint answers at startup.
    """
    indexer = indexer or IndexerClient(config)
    engine = UpsertEngine()
    poller = Poller(config, indexer, engine)

    needs_chain = config.chain_writes_configured or config.badge_minting_enabled
    if chain_client is None and needs_chain:
        try:
            chain_client = ChainClient(config)
        except ConnectionError as e:
            logger.error(f"Chain writes disabled: {e}")

    writer = None
    badge_minter = None
    if chain_client is not None:
        if config.chain_writes_configured:
            writer = ChainWriter(
                chain_client, config.settlement_token_address, config.campaign_contract_address
            )
            logger.info(f"Chain writes enabled for signer {chain_client.address}")
        if config.badge_minting_enabled:
            badge_minter = BadgeMinter(config, chain_client)
            logger.info("Badge minting enabled")

    return AppServices(
        config=config,
        indexer=indexer,
        engine=engine,
        poller=poller,
        settlement=SettlementService(config, writer),
        badge_minter=badge_minter,
    )


def _error_response(status_code: int, message: str, data: Any = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=envelope(message, data, success=False))


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to status codes and the response envelope."""

    @app.exception_handler(RecordValidationError)
    async def validation_error_handler(request: Request, exc: RecordValidationError):
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg")}
            for err in exc.errors
        ]
        return _error_response(
            400, str(exc), {"entity": exc.entity_type, "index": exc.index, "errors": errors}
        )

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        return _error_response(401, str(exc))

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return _error_response(404, str(exc))

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return _error_response(409, str(exc))

    @app.exception_handler(ServiceUnavailableError)
    async def unavailable_handler(request: Request, exc: ServiceUnavailableError):
        return _error_response(503, str(exc))

    @app.exception_handler(SettlementFailedError)
    async def settlement_failed_handler(request: Request, exc: SettlementFailedError):
        return _error_response(502, str(exc), {
            "orderId": exc.order_id,
            "orderStatus": exc.order_status.value,
            "failedStep": exc.cause.step,
            "confirmedSteps": {step: r.tx_hash for step, r in exc.cause.confirmed.items()},
            "retryable": exc.retryable,
        })

    @app.exception_handler(ChainWriteError)
    async def chain_write_handler(request: Request, exc: ChainWriteError):
        return _error_response(502, str(exc), {"failedStep": exc.step, "retryable": exc.retryable})

    @app.exception_handler(IndexerQueryError)
    async def indexer_error_handler(request: Request, exc: IndexerQueryError):
        return _error_response(502, str(exc))

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"Database error on {request.url.path}: {exc}", exc_info=exc)
        return _error_response(500, "Database error, no changes were saved")

    @app.exception_handler(ChainSyncError)
    async def chainsync_error_handler(request: Request, exc: ChainSyncError):
        logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return _error_response(500, str(exc))


def create_app(config: Config, services: Optional[AppServices] = None) -> FastAPI:
    """Build the FastAPI app. The database must already be initialized."""
    services = services or build_services(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.auto_sync_enabled:
            services.poller.start()
        else:
            logger.info("Auto-sync disabled; use POST /api/sync/force to sync")
        yield
        services.poller.stop(timeout=POLLER_STOP_TIMEOUT)
        services.indexer.close()

    app = FastAPI(
        title="Crowdfunding Chain Sync",
        description="Keeps the relational cache of on-chain crowdfunding data in sync.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(sync_routes.router)
    app.include_router(payment_routes.router)
    return app
