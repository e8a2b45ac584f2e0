from __future__ import annotations
from contextlib import asynccontextmanager
from typing import Dict

from fastapi import FastAPI

from referral_intake.api.routes.referrals import router as referrals_router
from referral_intake.core.config import settings
from referral_intake.core.logging import setup_logging
from referral_intake.dependencies import Container

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.container = Container()
    try:
        yield
    finally:
        await app.state.container.close()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.include_router(referrals_router)


@app.get("/")
async def root() -> Dict[str, str]:
    return {"service": settings.app_name, "env": settings.app_env, "status": "running"}
