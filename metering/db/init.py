import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from metering.core.config import get_settings
from metering.core.exceptions import ConfigurationError
from metering.models.failed_job import FailedJob
from metering.models.saga_checkpoint import SagaCheckpoint

DOCUMENT_MODELS = [
    SagaCheckpoint,
    FailedJob,
]

_initialized = False


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db() -> None:
    global _initialized
    if _initialized:
        return
    settings = get_settings()
    if not settings.mongo_configured:
        raise ConfigurationError("MONGODB_URI is not set")
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    _initialized = True
