"""Solana wallet balance endpoint."""

import logging

import httpx
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.services.solana import SolanaRPCError, get_sol_balance

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/solana", tags=["Solana"])


class BalanceRequest(BaseModel):
    wallet_address: str | None = Field(None, alias="walletAddress")

    model_config = {"populate_by_name": True}


@router.post("/balance")
async def wallet_balance(payload: BalanceRequest) -> JSONResponse:
    """Confirmed SOL balance of a wallet."""
    if not payload.wallet_address:
        return JSONResponse(status_code=400, content={"success": False, "error": "Wallet address is required"})

    try:
        balance = await get_sol_balance(payload.wallet_address)
    except (SolanaRPCError, httpx.HTTPError) as e:
        logger.error(f"Balance lookup failed for {payload.wallet_address}: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    logger.info(f"Balance retrieved: {balance} SOL")
    return JSONResponse(content={"success": True, "balance": balance})
