from typing import Literal, Optional

from pydantic import BaseModel

from utils import env, log
from utils.env import EnvVarSpec

logger = log.get_logger(__name__)


def _flag(x: str) -> bool:
    return x.lower() == "true"

#### Types ####

class HttpServerConf(BaseModel):
    host: str
    port: int
    autoreload: bool

class PaymentGatewayConf(BaseModel):
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    signing_secret: Optional[str] = None
    timeout_seconds: float

    @property
    def use_stripe(self) -> bool:
        return bool(self.stripe_secret_key)

class SettlementConf(BaseModel):
    order_create_max_attempts: int
    order_create_backoff_seconds: float
    certificate_max_attempts: int
    direct_purchase_enabled: bool
    auto_refund_oversold: bool
    reconciliation_interval_seconds: int

class JournalConf(BaseModel):
    # cluster and address are read by clients.tigerbeetle itself
    enabled: bool

#### Env Vars ####

## Logging ##

LOG_LEVEL = EnvVarSpec(id="LOG_LEVEL", default="INFO")

ENVIRONMENT = EnvVarSpec(id="ENVIRONMENT", default="development")

## HTTP ##

HTTP_HOST = EnvVarSpec(id="HTTP_HOST", default="0.0.0.0")

HTTP_PORT = EnvVarSpec(id="HTTP_PORT", default="8000", parse=int, type=(int, ...))

HTTP_AUTORELOAD = EnvVarSpec(
    id="HTTP_AUTORELOAD",
    parse=_flag,
    default="false",
    type=(bool, ...),
)

HTTP_EXPOSE_ERRORS = EnvVarSpec(
    id="HTTP_EXPOSE_ERRORS",
    default="false",
    parse=_flag,
    type=(bool, ...),
)

## Store ##

STORE_BACKEND = EnvVarSpec(
    id="STORE_BACKEND",
    default="memory",
    type=(Literal["memory", "couchbase"], ...),
)

COUCHBASE_HOST = EnvVarSpec(id="COUCHBASE_HOST")
COUCHBASE_USERNAME = EnvVarSpec(id="COUCHBASE_USERNAME")
COUCHBASE_PASSWORD = EnvVarSpec(id="COUCHBASE_PASSWORD", is_secret=True)
COUCHBASE_BUCKET = EnvVarSpec(id="COUCHBASE_BUCKET")
COUCHBASE_PROTOCOL = EnvVarSpec(
    id="COUCHBASE_PROTOCOL",
    default="couchbase",
    type=(Literal["couchbase", "couchbases"], ...),
)

## Payments ##

STRIPE_SECRET_KEY = EnvVarSpec(id="STRIPE_SECRET_KEY", is_optional=True, is_secret=True)

STRIPE_WEBHOOK_SECRET = EnvVarSpec(id="STRIPE_WEBHOOK_SECRET", is_optional=True, is_secret=True)

# HMAC key for the order|payment proof the mock checkout hands back to the buyer
PAYMENT_SIGNING_SECRET = EnvVarSpec(id="PAYMENT_SIGNING_SECRET", is_optional=True, is_secret=True)

PAYMENT_GATEWAY_TIMEOUT_SECONDS = EnvVarSpec(
    id="PAYMENT_GATEWAY_TIMEOUT_SECONDS",
    default="10",
    parse=float,
    type=(float, ...),
)

## Settlement ##

ORDER_CREATE_MAX_ATTEMPTS = EnvVarSpec(
    id="ORDER_CREATE_MAX_ATTEMPTS",
    default="3",
    parse=int,
    type=(int, ...),
)

ORDER_CREATE_BACKOFF_SECONDS = EnvVarSpec(
    id="ORDER_CREATE_BACKOFF_SECONDS",
    default="0.2",
    parse=float,
    type=(float, ...),
)

CERTIFICATE_MAX_ATTEMPTS = EnvVarSpec(
    id="CERTIFICATE_MAX_ATTEMPTS",
    default="5",
    parse=int,
    type=(int, ...),
)

DIRECT_PURCHASE_ENABLED = EnvVarSpec(
    id="DIRECT_PURCHASE_ENABLED",
    default="false",
    parse=_flag,
    type=(bool, ...),
)

SETTLEMENT_AUTO_REFUND_OVERSOLD = EnvVarSpec(
    id="SETTLEMENT_AUTO_REFUND_OVERSOLD",
    default="false",
    parse=_flag,
    type=(bool, ...),
)

RECONCILIATION_INTERVAL_SECONDS = EnvVarSpec(
    id="RECONCILIATION_INTERVAL_SECONDS",
    default="300",
    parse=int,
    type=(int, ...),
)

## TigerBeetle ##

TIGERBEETLE_ENABLED = EnvVarSpec(
    id="TIGERBEETLE_ENABLED",
    default="false",
    parse=_flag,
    type=(bool, ...),
)

TIGERBEETLE_CLUSTER_ID = EnvVarSpec(
    id="TIGERBEETLE_CLUSTER_ID",
    default="0",
    parse=int,
    type=(int, ...),
)

TIGERBEETLE_ADDRESS = EnvVarSpec(id="TIGERBEETLE_ADDRESS", default="127.0.0.1:3000")

#### Validation ####
VALIDATED_ENV_VARS = [
    HTTP_AUTORELOAD,
    HTTP_EXPOSE_ERRORS,
    HTTP_PORT,
    LOG_LEVEL,
    ENVIRONMENT,
    STORE_BACKEND,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
    PAYMENT_SIGNING_SECRET,
    PAYMENT_GATEWAY_TIMEOUT_SECONDS,
    ORDER_CREATE_MAX_ATTEMPTS,
    ORDER_CREATE_BACKOFF_SECONDS,
    CERTIFICATE_MAX_ATTEMPTS,
    DIRECT_PURCHASE_ENABLED,
    SETTLEMENT_AUTO_REFUND_OVERSOLD,
    RECONCILIATION_INTERVAL_SECONDS,
    TIGERBEETLE_ENABLED,
    TIGERBEETLE_CLUSTER_ID,
    TIGERBEETLE_ADDRESS,
]

COUCHBASE_ENV_VARS = [
    COUCHBASE_HOST,
    COUCHBASE_USERNAME,
    COUCHBASE_PASSWORD,
    COUCHBASE_BUCKET,
    COUCHBASE_PROTOCOL,
]

def validate() -> bool:
    specs = list(VALIDATED_ENV_VARS)
    # Only validate Couchbase vars when it is the configured store
    if env.parse(STORE_BACKEND) == "couchbase":
        specs.extend(COUCHBASE_ENV_VARS)
    ok = env.validate(specs)
    if env.parse(STRIPE_SECRET_KEY) and not env.parse(STRIPE_WEBHOOK_SECRET):
        logger.error("STRIPE_WEBHOOK_SECRET is required when STRIPE_SECRET_KEY is set")
        ok = False
    return ok

#### Getters ####

def get_http_expose_errors() -> bool:
    return env.parse(HTTP_EXPOSE_ERRORS)

def get_log_level() -> str:
    return env.parse(LOG_LEVEL)

def get_environment() -> str:
    return env.parse(ENVIRONMENT)

def get_store_backend() -> str:
    return env.parse(STORE_BACKEND)

def get_http_conf() -> HttpServerConf:
    return HttpServerConf(
        host=env.parse(HTTP_HOST),
        port=env.parse(HTTP_PORT),
        autoreload=env.parse(HTTP_AUTORELOAD),
    )

def get_payment_gateway_conf() -> PaymentGatewayConf:
    return PaymentGatewayConf(
        stripe_secret_key=env.parse(STRIPE_SECRET_KEY),
        stripe_webhook_secret=env.parse(STRIPE_WEBHOOK_SECRET),
        signing_secret=env.parse(PAYMENT_SIGNING_SECRET),
        timeout_seconds=max(0.1, env.parse(PAYMENT_GATEWAY_TIMEOUT_SECONDS)),
    )

def get_settlement_conf() -> SettlementConf:
    return SettlementConf(
        order_create_max_attempts=max(1, env.parse(ORDER_CREATE_MAX_ATTEMPTS)),
        order_create_backoff_seconds=max(0.0, env.parse(ORDER_CREATE_BACKOFF_SECONDS)),
        certificate_max_attempts=max(1, env.parse(CERTIFICATE_MAX_ATTEMPTS)),
        direct_purchase_enabled=env.parse(DIRECT_PURCHASE_ENABLED),
        auto_refund_oversold=env.parse(SETTLEMENT_AUTO_REFUND_OVERSOLD),
        reconciliation_interval_seconds=max(10, env.parse(RECONCILIATION_INTERVAL_SECONDS)),
    )

def get_journal_conf() -> JournalConf:
    return JournalConf(
        enabled=env.parse(TIGERBEETLE_ENABLED),
    )
