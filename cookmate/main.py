# CookMate API Main Entry Point
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .db import create_tables
from .errors import CookMateError
from .infra.rate_limit import limiter
from .infra.redis_client import close_redis
from .settings import settings
from .routers.auth import router as auth_router
from .routers.coach import router as coach_router
from .routers.ready import router as ready_router
from .routers.sessions import router as sessions_router
from .routers.users import router as users_router

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger("cookmate")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_tables:
        create_tables()
        logger.info("Database tables ensured")
    yield
    await close_redis()


app = FastAPI(title="CookMate AI API", version="0.1.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(CookMateError)
async def cookmate_error_handler(request: Request, exc: CookMateError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(p) for p in err["loc"] if p != "body") or "body",
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"status": "fail", "message": "Validation failed", "errors": errors},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"status": "error", "message": "Something went wrong"})


app.include_router(ready_router, prefix="/api", tags=["ready"])
app.include_router(auth_router, prefix="/api", tags=["auth"])
app.include_router(sessions_router, prefix="/api", tags=["sessions"])
app.include_router(coach_router, prefix="/api", tags=["coach"])
app.include_router(users_router, prefix="/api", tags=["users"])
