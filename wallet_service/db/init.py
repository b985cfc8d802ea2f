import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from wallet_service.core.config import get_settings
from wallet_service.models.audit_log import AuditLog
from wallet_service.models.coupon import Coupon
from wallet_service.models.failed_job import FailedJob
from wallet_service.models.limit_config import GlobalLimitConfig
from wallet_service.models.topup_order import TopupOrder
from wallet_service.models.user import User
from wallet_service.models.wallet import Wallet

DOCUMENT_MODELS = [
    User,
    Wallet,
    Coupon,
    GlobalLimitConfig,
    TopupOrder,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(database=None) -> None:
    """Initialize Beanie. Pass ``database`` to bind an existing (e.g. in-memory) database."""
    if database is None:
        settings = get_settings()
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
        database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
