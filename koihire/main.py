import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.sessions import SessionMiddleware

from . import models  # noqa: F401  registers the tables on Base
from .auth import router as auth_router
from .config import CORS_ORIGINS, LOG_LEVEL, SESSION_SECRET
from .database import Base, engine
from .realtime import manager
from .routers import (
    admin, applications, categories, escrow, messages, notifications, payments, payouts, portfolios, projects,
    reviews, service_orders, services, uploads, users, work_notes, ws,
)

logging.basicConfig(
    level=LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    manager.bind(asyncio.get_running_loop())
    logger.info("KoiHire API started")
    yield


app = FastAPI(title="KoiHire Freelance Marketplace", lifespan=lifespan)

app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# create tables
Base.metadata.create_all(bind=engine)

# register routers
app.include_router(auth_router)
for module in (
    users, categories, projects, applications, services, service_orders, payments, escrow, payouts,
    messages, notifications, reviews, portfolios, work_notes, admin, uploads, ws,
):
    app.include_router(module.router)


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# GET health check
@app.get("/")
def root():
    return {"status": "Server running"}
