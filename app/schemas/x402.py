"""Pydantic schemas for x402 payment proofs.

Buyers send the proof JSON-encoded in the ``x-402-payment`` header after
paying on Base:

    {
        "transactionHash": "0xabc...",
        "network": "base",
        "amount": "5",
        "currency": "USDC",
        "from": "0xbuyer...",
        "to": "0xseller...",
        "timestamp": 1730000000
    }
"""

from pydantic import BaseModel, Field


class PaymentProof(BaseModel):
    """Payment proof carried in the x-402-payment header."""
    transaction_hash: str = Field(alias="transactionHash", min_length=1)
    network: str
    amount: float = Field(gt=0, allow_inf_nan=False)
    currency: str = "USDC"
    sender: str = Field(alias="from")
    recipient: str = Field(alias="to")
    timestamp: int | None = None

    model_config = {"populate_by_name": True}
