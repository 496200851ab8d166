from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import PyMongoError

from textbook_exchange.config import get_settings
from textbook_exchange.database import create_client
from textbook_exchange.errors import InvalidState, NotFound, StorageUnavailable
from textbook_exchange.repositories.mongo import ensure_indexes
from textbook_exchange.routes import admin, auth, listings, messages


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the MongoDB client for the lifetime of the app"""
    settings = get_settings()
    if not settings.jwt_secret_key:
        raise RuntimeError("JWT_SECRET_KEY must be set before starting the API")
    client = create_client(settings)
    app.state.mongo_client = client
    app.state.db = client[settings.mongo_db]
    try:
        await ensure_indexes(app.state.db)
        logger.info(f"MongoDB connection successful, using database {settings.mongo_db}")
    except PyMongoError as e:
        logger.warning(f"MongoDB not reachable at startup: {e}")
    try:
        yield
    finally:
        client.close()
        logger.info("MongoDB client closed")


app = FastAPI(title="Textbook Exchange API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "HEAD", "PATCH"],
    allow_headers=["*"],
)

app.include_router(auth.router, prefix="/auth")
app.include_router(listings.router)
app.include_router(messages.router)
app.include_router(admin.router, prefix="/admin")


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    return JSONResponse(status_code=503, content={"detail": "Storage temporarily unavailable"})


@app.get("/health")
async def health_check(request: Request):
    """Health check endpoint for Docker"""
    try:
        await request.app.state.mongo_client.admin.command("ping")
        return {"status": "healthy", "database": "connected"}
    except PyMongoError as e:
        return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
