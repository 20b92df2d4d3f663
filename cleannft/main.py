import asyncio
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cleannft.config import configure_logging, settings
from cleannft.db import engine, Base
from cleannft.errors import register_exception_handlers

from cleannft.models.user import User, UserRole
from cleannft.models.auth_session import AuthSession
from cleannft.models.recycling_station import RecyclingStation
from cleannft.models.device import Device
from cleannft.models.waste_event import WasteEvent
from cleannft.models.point_rule import PointRule
from cleannft.models.point_ledger import PointLedger
from cleannft.models.point_balance import PointBalance
from cleannft.models.outbox_event import OutboxEvent
from cleannft.models.blockchain_tx import BlockchainTx
from cleannft.models.nft_definition import NftDefinition
from cleannft.models.nft_mint import NftMint
from cleannft.models.nft_claim import NftClaim
from cleannft.models.admin_action import AdminAction

from cleannft.routes.auth import router as auth_router
from cleannft.routes.waste_events import router as waste_events_router
from cleannft.routes.points import router as points_router
from cleannft.routes.nft import router as nft_router
from cleannft.routes.admin import router as admin_router

from cleannft.services.maintenance import run_session_cleanup_loop
from cleannft.services.outbox_processor import OutboxProcessor
from cleannft.services.settlement import build_settlement_gateway


logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"

configure_logging()

app = FastAPI(title="CleanNFT")

# ─── CORS ─────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

_background = {"stop": None, "tasks": [], "gateway": None}


@app.on_event("startup")
async def startup():
    settings.check()
    Base.metadata.create_all(bind=engine)

    stop_event = asyncio.Event()
    _background["stop"] = stop_event

    if settings.outbox_processor_enabled:
        gateway = build_settlement_gateway(settings)
        _background["gateway"] = gateway
        _background["tasks"].append(asyncio.create_task(OutboxProcessor(gateway).run_forever(stop_event)))

    if settings.session_cleanup_enabled:
        _background["tasks"].append(asyncio.create_task(run_session_cleanup_loop(stop_event)))

    logger.info(
        "CleanNFT started",
        extra={
            "app_env": settings.app_env,
            "outbox_processor": settings.outbox_processor_enabled,
            "settlement_gateway": settings.settlement_gateway,
        },
    )


@app.on_event("shutdown")
async def shutdown():
    if _background["stop"] is not None:
        _background["stop"].set()
    tasks = _background["tasks"]
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    _background["tasks"] = []
    if _background["gateway"] is not None:
        await _background["gateway"].aclose()
        _background["gateway"] = None


app.include_router(auth_router, prefix=API_PREFIX)
app.include_router(waste_events_router, prefix=API_PREFIX)
app.include_router(points_router, prefix=API_PREFIX)
app.include_router(nft_router, prefix=API_PREFIX)
app.include_router(admin_router, prefix=API_PREFIX)


@app.get("/")
def read_root():
    return {"message": "CleanNFT is running"}


@app.get("/health")
def health():
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("cleannft.main:app", host="127.0.0.1", port=8001, reload=True)
