import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlmodel import Session

from .api.exceptions import register_exception_handlers
from .api.routes import advisor_router, link_router, public_router, wallet_router
from .core import db
from .core.config import get_settings
from .core.db import init_db
from .core.dependencies import get_broker, get_disburser
from .services import ExpirySweeper, LinkLifecycleEngine

settings = get_settings()
logging.basicConfig(level=settings.log_level)

def run_expiry_sweep() -> int:
    with Session(db.get_engine()) as session:
        engine = LinkLifecycleEngine(session, disburser=get_disburser(), broker=get_broker())
        return engine.expire_due()

@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    sweeper = ExpirySweeper(run_expiry_sweep, settings.expiry_sweep_interval_seconds)
    sweeper.start()
    yield
    sweeper.stop()

app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.include_router(wallet_router)
app.include_router(link_router)
app.include_router(public_router)
app.include_router(advisor_router)
register_exception_handlers(app)

@app.get("/health")
def read_health() -> dict[str, str]:
    return {"status": "ok"}
