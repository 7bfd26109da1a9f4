from contextlib import asynccontextmanager
import asyncio
import logging
import os
import time

from dotenv import load_dotenv

# Load environment variables from .env (shell env wins)
load_dotenv()

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from utils.logger import setup_logging, RequestContextLogMiddleware

setup_logging()

from db.database import engine
from db.repository import IntakeRepository
from services.notification_service import NotificationDispatcher
from services.spam_service import RATE_WINDOW_SECONDS, SpamEvaluator
from services.submissions_service import SubmissionIntake
from utils.limiter import limiter
from utils.rate_history import InMemoryRateHistory, build_rate_history, run_sweeper
from routers.submissions import router as submissions_router
from routers.forms import router as forms_router
from routers.health import router as health_router

logger = logging.getLogger("backend")

repository = IntakeRepository()
rate_history = build_rate_history()
dispatcher = NotificationDispatcher(repository)
intake = SubmissionIntake(repository, SpamEvaluator(rate_history, clock=time.time), dispatcher)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    # Redis keys expire on their own; only the in-process store needs sweeping
    if isinstance(app.state.rate_history, InMemoryRateHistory):
        sweeper = asyncio.create_task(run_sweeper(app.state.rate_history, RATE_WINDOW_SECONDS, time.time))
    yield
    if sweeper is not None:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
    await app.state.intake.dispatcher.drain()
    await engine.dispose()


app = FastAPI(title="Form Intake API", lifespan=lifespan)
app.state.repository = repository
app.state.rate_history = rate_history
app.state.intake = intake
app.state.limiter = limiter


# Production-safe error responses
def _is_production() -> bool:
    return (os.getenv("ENV") or os.getenv("APP_ENV") or os.getenv("NODE_ENV") or "").lower() == "production"

def _safe_message(status_code: int) -> str:
    mapping = {
        400: "Invalid request.",
        404: "Not found.",
        405: "Method not allowed.",
        413: "Request too large.",
        422: "Invalid request.",
        429: "Too many requests.",
        500: "Something went wrong. Please try again.",
        503: "Service unavailable. Please try again.",
    }
    return mapping.get(int(status_code or 500), "Something went wrong. Please try again.")

@app.exception_handler(HTTPException)
async def http_exception_sanitizer(request: Request, exc: HTTPException):
    if _is_production():
        # Preserve status code; sanitize message
        return JSONResponse(status_code=exc.status_code, content={"detail": _safe_message(exc.status_code)})
    detail = str(exc.detail) if getattr(exc, "detail", None) else _safe_message(exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"detail": detail})

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=422, content={"detail": _safe_message(422)})

@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error")
    return JSONResponse(status_code=500, content={"detail": _safe_message(500)})

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})

app.add_middleware(SlowAPIMiddleware)

# The embed script posts from arbitrary customer sites
_raw_origins = os.getenv("CORS_ALLOWED_ORIGINS") or ""
_allow_origins = [o.strip() for o in _raw_origins.split(",") if o.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allow_origins,
    allow_credentials=False,  # Must be False when allow_origins=["*"]
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

# Request/response logging middleware
app.add_middleware(RequestContextLogMiddleware)

app.include_router(submissions_router)
app.include_router(forms_router)
app.include_router(health_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
