# src/veledger/api/routes_public.py
from __future__ import annotations

from fastapi import APIRouter

from veledger.api.routes_public_parts.epochs import router as epochs_router
from veledger.api.routes_public_parts.health import router as health_router
from veledger.api.routes_public_parts.metrics import router as metrics_router
from veledger.api.routes_public_parts.pools import router as pools_router
from veledger.api.routes_public_parts.state import router as state_router
from veledger.api.routes_public_parts.status import router as status_router
from veledger.api.routes_public_parts.tx import router as tx_router
from veledger.api.routes_public_parts.ve import router as ve_router

public_router = APIRouter()

# Versioned API surface
public_router.include_router(health_router, prefix="/v1", tags=["health"])
public_router.include_router(status_router, prefix="/v1", tags=["status"])
public_router.include_router(state_router, prefix="/v1", tags=["state"])
public_router.include_router(tx_router, prefix="/v1", tags=["tx"])
public_router.include_router(ve_router, prefix="/v1", tags=["ve"])
public_router.include_router(epochs_router, prefix="/v1", tags=["epochs"])
public_router.include_router(pools_router, prefix="/v1", tags=["pools"])

# Ops
public_router.include_router(metrics_router, prefix="/v1", tags=["metrics"])
