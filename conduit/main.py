import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from conduit.config import settings
from conduit.database import engine
from conduit.exceptions import ConduitError
from conduit.logging_config import configure_logging
from conduit.middleware import TimingMiddleware
from conduit.routers import articles, profiles, tags, users
from conduit.security import TokenService

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting Conduit API (env=%s)", settings.APP_ENV)
    yield
    # Shutdown
    await engine.dispose()

app = FastAPI(
    title="Conduit API",
    description="Social publishing backend: articles, tags, comments, favorites and follows",
    version="1.0.0",
    lifespan=lifespan,
)

# Signing key and token lifetime are fixed for the life of the process.
app.state.token_service = TokenService.from_settings(settings)

# Middleware
app.add_middleware(TimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Error envelopes: {"errors": {"<field>": ["<message>", ...]}}
@app.exception_handler(ConduitError)
async def conduit_error_handler(request: Request, exc: ConduitError):
    logger.debug(
        "%s %s -> %s %s", request.method, request.url.path, exc.status_code, type(exc).__name__
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"errors": exc.errors},
        headers=getattr(exc, "headers", None),
    )

@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        "Database error on %s %s: %s", request.method, request.url.path, type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={"errors": {"database": ["operation failed"]}},
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        # List indexes are dropped so a bad tag reports under "tagList".
        loc = [
            part for part in error.get("loc", ()) if isinstance(part, str) and part != "body"
        ]
        field = loc[-1] if loc else "body"
        errors.setdefault(field, []).append(error.get("msg", "is invalid"))
    return JSONResponse(status_code=422, content={"errors": errors})

# Routers
app.include_router(users.router)
app.include_router(profiles.router)
app.include_router(articles.router)
app.include_router(tags.router)

@app.get("/health")
async def health():
    return {"status": "healthy", "version": "1.0.0"}
