from contextlib import asynccontextmanager

from fastapi import FastAPI

from locallift.database.database import create_tables, sessionmanager
from locallift.main.aiohttp_client import aiohttp_client
from locallift.main.config import get_settings
from locallift.main.container.container import Container
from locallift.main.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.container = await startup()
    yield
    await shutdown(app.state.container)


async def startup() -> Container:
    settings = get_settings()

    aiohttp_client.start()
    sessionmanager.init(settings.database_url)
    await create_tables()

    container = Container()
    if not settings.rank_check_configured:
        logger.warning("Rank check API is not configured, rank check batches will be empty")

    return container


async def shutdown(container: Container):
    for controller in container.batch_controllers().values():
        await controller.shutdown()

    await sessionmanager.close()
    await aiohttp_client.stop()
