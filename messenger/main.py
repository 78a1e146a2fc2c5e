import logging
import time
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from messenger.config import settings
from messenger.database import async_engine, create_tables
from messenger.error_handlers import register_exception_handlers
from messenger.log import setup_logging
from messenger.websocket_manager import manager

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} {settings.VERSION}")
    if settings.AUTO_CREATE_TABLES:
        await create_tables()
    await manager.start()
    yield
    logger.info(f"Shutting down {settings.APP_NAME}")
    await manager.stop()
    await async_engine.dispose()

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    description="Direct messaging API",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    logger.info(f"{request.method} {request.url.path} {response.status_code} - {process_time:.3f}s")
    return response

register_exception_handlers(app)

from messenger.api.v1 import conversations, messages, websocket

app.include_router(conversations.router, prefix="/api/v1", tags=["conversations"])
app.include_router(messages.router, prefix="/api/v1", tags=["messages"])
app.include_router(websocket.router, prefix="/api/v1/ws", tags=["websocket"])

@app.get("/")
async def root():
    return {"message": f"{settings.APP_NAME} API", "version": settings.VERSION}

@app.get("/health")
async def health():
    return {"status": "ok"}
