"""Solana wallet balance lookup over JSON-RPC."""

import logging

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import get_settings

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_RPC_URL = "https://mainnet.helius-rpc.com/"


class SolanaRPCError(Exception):
    """Raised when the RPC node returns an error object."""
    pass


def rpc_url() -> str:
    """Helius when an API key is configured, otherwise the public endpoint."""
    api_key = get_settings().helius_api_key
    return f"{HELIUS_RPC_URL}?api-key={api_key}" if api_key else PUBLIC_RPC_URL


@retry(
    retry=retry_if_exception_type(httpx.RequestError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
async def get_sol_balance(
    wallet_address: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> float:
    """Get the confirmed SOL balance of a wallet.

    Args:
        wallet_address: Base58 wallet address
        transport: Optional httpx transport (used by tests)

    Returns:
        Balance in SOL

    Raises:
        SolanaRPCError: If the node answers with an error
    """
    logger.info(f"Fetching SOL balance for wallet {wallet_address}")

    async with httpx.AsyncClient(timeout=15.0, transport=transport) as client:
        response = await client.post(
            rpc_url(),
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "getBalance",
                "params": [wallet_address, {"commitment": "confirmed"}],
            },
        )

    data = response.json()
    if data.get("error"):
        logger.error(f"Solana RPC error: {data['error']}")
        raise SolanaRPCError(data["error"].get("message", "RPC error"))

    lamports = (data.get("result") or {}).get("value") or 0
    return lamports / LAMPORTS_PER_SOL
