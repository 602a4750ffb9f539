import secrets
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

import conf
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes.base import router
from routes.errors import install_error_handlers
from utils import log

from clients.payments import MockGateway, PaymentGateway
from models.stores import InMemoryLedgerStore, LedgerStore
from settlement import CertificateIssuer, SettlementEngine, SettlementOptions

log.init(conf.get_log_level(), conf.get_environment())
logger = log.get_logger(__name__)


async def build_store(backend: str) -> LedgerStore:
    if backend == "couchbase":
        from clients.couchbase.config import check_connection
        from models.stores.couchbase import CouchbaseLedgerStore

        logger.info("Verifying Couchbase connection...")
        await check_connection()
        logger.info("Couchbase connection verified.")
        return CouchbaseLedgerStore()

    logger.warning("Using the in-memory ledger store; state is lost on restart")
    return InMemoryLedgerStore()


def build_gateway(gateway_conf: conf.PaymentGatewayConf) -> PaymentGateway:
    if gateway_conf.use_stripe:
        from clients.payments.stripe_gateway import StripeGateway

        logger.info("Payment gateway: Stripe")
        return StripeGateway(
            api_key=gateway_conf.stripe_secret_key,
            webhook_secret=gateway_conf.stripe_webhook_secret,
            timeout_seconds=gateway_conf.timeout_seconds,
        )

    signing_secret = gateway_conf.signing_secret
    if not signing_secret:
        signing_secret = secrets.token_hex(32)
        logger.warning("PAYMENT_SIGNING_SECRET not set, using a per-process secret for the mock gateway")
    logger.info("Payment gateway: mock (set STRIPE_SECRET_KEY to use Stripe)")
    return MockGateway(signing_secret, webhook_secret=gateway_conf.stripe_webhook_secret)


def build_engine(
    store: LedgerStore,
    gateway: PaymentGateway,
    settlement_conf: conf.SettlementConf,
    journal_enabled: bool = False,
) -> SettlementEngine:
    journal = None
    if journal_enabled:
        from settlement.journal import TigerBeetleJournal

        journal = TigerBeetleJournal()
        logger.info("TigerBeetle journal enabled")

    return SettlementEngine(
        store=store,
        gateway=gateway,
        issuer=CertificateIssuer(max_attempts=settlement_conf.certificate_max_attempts),
        options=SettlementOptions(
            order_create_max_attempts=settlement_conf.order_create_max_attempts,
            order_create_backoff_seconds=settlement_conf.order_create_backoff_seconds,
            direct_purchase_enabled=settlement_conf.direct_purchase_enabled,
            auto_refund_oversold=settlement_conf.auto_refund_oversold,
        ),
        journal=journal,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    settlement_conf = conf.get_settlement_conf()

    # Tests may install their own engine before startup
    if getattr(app.state, "engine", None) is None:
        store = await build_store(conf.get_store_backend())
        gateway = build_gateway(conf.get_payment_gateway_conf())
        app.state.engine = build_engine(
            store, gateway, settlement_conf, journal_enabled=conf.get_journal_conf().enabled
        )

    from settlement.reconciliation import init_scheduler, shutdown_scheduler

    init_scheduler(app.state.engine, settlement_conf.reconciliation_interval_seconds)

    yield

    shutdown_scheduler()


def create_app(engine: Optional[SettlementEngine] = None) -> FastAPI:
    app = FastAPI(
        title="GreenLedger Settlement API",
        version="0.1.0",
        docs_url="/docs",
        lifespan=lifespan,
        debug=conf.get_http_expose_errors(),
    )
    app.state.engine = engine

    app.include_router(router)
    install_error_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app


if not conf.validate():
    raise ValueError("Invalid configuration.")

app = create_app()

http_conf = conf.get_http_conf()
logger.info(f"Starting API on port {http_conf.port}")

# Log all registered routes to help debug routing issues
logger.info("--- Registered Routes ---")
for route in app.routes:
    methods_set = getattr(route, "methods", None)
    methods = ", ".join(methods_set) if methods_set else "Any"
    path = getattr(route, "path", "<unknown>")
    logger.info(f"{path} [{methods}]")
logger.info("-------------------------")

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=http_conf.host,
        port=http_conf.port,
        reload=http_conf.autoreload,
        log_level="info",
        reload_dirs=[str(Path(__file__).parent), "/models", "/clients"],
        log_config=None,
    )
