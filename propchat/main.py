from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorDatabase

from propchat.config import settings
from propchat.database.connection import close_mongo_connection, connect_to_mongo, get_database, mongo_db_dependency
from propchat.database.indexes import ensure_indexes
from propchat.middleware.error_handler import register_exception_handlers
from propchat.routers.admin import router as admin_router
from propchat.routers.conversations import router as conversations_router
from propchat.routers.presence import router as presence_router
from propchat.routers.realtime import router as realtime_router
from propchat.utils.logger import get_logger, setup_logging
from propchat.utils.realtime_bus import close_bus, get_bus


setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):

    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    await connect_to_mongo()
    await ensure_indexes(get_database())
    await get_bus()
    try:
        yield
    finally:
        await close_bus()
        await close_mongo_connection()
        logger.info("Shutdown complete")


app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION, debug=settings.DEBUG, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(conversations_router)
app.include_router(admin_router)
app.include_router(presence_router)
app.include_router(realtime_router)


@app.get("/health")
async def health(db: AsyncIOMotorDatabase = Depends(mongo_db_dependency)):

    try:
        collections = await db.list_collection_names()
        database = {"status": "connected", "collections": len(collections)}
    except Exception as exc:
        logger.warning(f"Health check could not reach MongoDB: {exc}")
        database = {"status": "unavailable"}
    return {"status": "ok", "app": settings.APP_NAME, "version": settings.APP_VERSION, "database": database}
