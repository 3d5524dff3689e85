"""Cascade detector status, aggregate, auto-block toggle and trade gate endpoints."""

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

router = APIRouter(prefix="/api/cascade", tags=["cascade"])


class AutoToggle(BaseModel):
    autoEnabled: bool
    symbol: Optional[str] = None


@router.get("/status")
async def all_statuses(request: Request):
    """Latest status for every monitored symbol."""
    registry = request.app.state.registry
    return {
        symbol: status.to_dict()
        for symbol, status in registry.get_all_statuses().items()
    }


@router.get("/status/{symbol}")
async def symbol_status(request: Request, symbol: str):
    status = request.app.state.registry.get_status(symbol)
    if status is None:
        raise HTTPException(status_code=404, detail=f"{symbol} is not monitored")
    return {"symbol": symbol, **status.to_dict()}


@router.get("/aggregate")
async def aggregate_status(request: Request):
    return request.app.state.registry.get_aggregate_status().to_dict()


@router.get("/auto")
async def get_auto(request: Request):
    return {"autoEnabled": request.app.state.registry.get_auto_enabled()}


@router.post("/auto")
async def set_auto(request: Request, body: AutoToggle):
    """Toggle automatic entry blocking globally or for one symbol."""
    registry = request.app.state.registry
    try:
        affected = registry.set_auto_enabled(body.autoEnabled, body.symbol)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"{body.symbol} is not monitored")
    return {
        "autoEnabled": body.autoEnabled,
        "symbol": body.symbol,
        "symbols": affected,
    }


@router.get("/gate/{symbol}")
async def gate_decision(request: Request, symbol: str):
    decision = request.app.state.trade_gate.check_entry(symbol)
    return {
        "symbol": symbol,
        "allowed": decision.allowed,
        "reason": decision.reason,
        "status": decision.status.to_dict() if decision.status is not None else None,
    }
