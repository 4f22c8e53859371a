import logging
import os

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from auditoryx.routers import auth, bookings, creators, notifications, offers, users, webhooks
from auditoryx.services.marketplace_store import marketplace_store
from auditoryx.services.push_sender import push_sender

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Auditoryx API", version="0.1.0")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


cors_origins = _parse_csv_env("CORS_ORIGINS", "*")
allow_any_origin = len(cors_origins) == 1 and cors_origins[0] == "*"

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    # Browsers reject wildcard CORS with credentials enabled.
    allow_credentials=not allow_any_origin,
    allow_methods=["*"],
    allow_headers=["*"],
)

trusted_hosts = _parse_csv_env("TRUSTED_HOSTS", "*")
if not (len(trusted_hosts) == 1 and trusted_hosts[0] == "*"):
    app.add_middleware(TrustedHostMiddleware, allowed_hosts=trusted_hosts)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.include_router(auth.router)
app.include_router(users.router)
app.include_router(offers.router)
app.include_router(bookings.router)
app.include_router(webhooks.router)
app.include_router(creators.router)
app.include_router(notifications.router)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/ready")
def ready():
    return {
        "status": "ready",
        "database": "sqlite" if marketplace_store.db_path else "unconfigured",
        "payment_webhook_configured": bool(os.getenv("PAYMENT_WEBHOOK_SECRET", "").strip()),
        "push_enabled": push_sender.enabled,
    }
