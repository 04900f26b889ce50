"""x402 pay-per-use discovery and purchase processing.

Discovery endpoints answer with HTTP 402 and a machine-readable list of
what can be paid for (``accepts``), so an automated agent can pay in USDC
on Base and retry. The purchase endpoint takes the resulting payment proof,
validates it against the offering and records the purchase exactly once
per transaction hash.
"""

import logging
import math
import uuid
from typing import Any
from urllib.parse import urlsplit

import redis.asyncio as redis
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.models.advisor import Advisor
from app.models.commerce import AgentOffering, AgentPurchase, OfferingType, PurchaseStatus
from app.schemas.x402 import PaymentProof

logger = logging.getLogger(__name__)

X402_VERSION = 1
MAX_TIMEOUT_SECONDS = 86400
SETTLEMENT_NETWORK = "base-mainnet"

# How long a transaction hash stays locked while its purchase is recorded
TX_LOCK_SECONDS = 300

PAYMENT_HEADER_FIELD = {
    "x-402-payment": {
        "type": "string",
        "required": True,
        "description": "Payment proof from x402 transaction",
    }
}


class X402Error(Exception):
    """A purchase or discovery failure with the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str, body: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body if body is not None else {"success": False, "error": message}


def format_amount(value: float | None) -> str:
    """Render a price the way agents expect it: ``5`` not ``5.0``."""
    value = float(value or 0)
    return str(int(value)) if value.is_integer() else str(value)


def offering_id_from_referer(referer: str | None) -> str | None:
    """Extract ``<id>`` from a referer path like ``/store/offering/<id>``."""
    if not referer:
        return None
    parts = urlsplit(referer).path.split("/")
    if "offering" not in parts:
        return None
    position = parts.index("offering")
    if position + 1 < len(parts) and parts[position + 1]:
        return parts[position + 1]
    return None


def _parse_uuid(value: str | None) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


# =============================================================================
# 402 bodies
# =============================================================================


def build_sim_payment_requirements(
    sim_id: str | None,
    sim: Advisor | None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """402 body for paying to chat with a Sim.

    Unknown or missing Sims get the platform defaults: the default price and
    the default payout wallet.
    """
    settings = settings or get_settings()

    price = settings.x402_default_price
    pay_to = settings.default_wallet_address
    description = "Chat with AI agent"
    if sim is not None:
        description = f"Chat with {sim.name}: {sim.short_description or 'AI-powered conversation'}"
        price = sim.x402_price or settings.x402_default_price
        pay_to = sim.x402_wallet_address or pay_to

    return {
        "x402Version": X402_VERSION,
        "accepts": [
            {
                "scheme": "exact",
                "network": settings.x402_network,
                "maxAmountRequired": format_amount(price),
                "resource": f"/api/chat/{sim_id}" if sim_id else "/api/chat",
                "description": description,
                "mimeType": "application/json",
                "payTo": pay_to,
                "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
                "asset": settings.x402_asset,
                "outputSchema": {
                    "input": {
                        "type": "http",
                        "method": "POST",
                        "bodyType": "json",
                        "bodyFields": {
                            "message": {
                                "type": "string",
                                "required": True,
                                "description": "The message to send to the AI agent",
                            },
                            "conversationId": {
                                "type": "string",
                                "required": False,
                                "description": "Optional conversation ID to continue an existing chat",
                            },
                        },
                        "headerFields": PAYMENT_HEADER_FIELD,
                    },
                    "output": {
                        "type": "object",
                        "properties": {
                            "response": {
                                "type": "string",
                                "description": "AI agent's response message",
                            },
                            "conversationId": {
                                "type": "string",
                                "description": "Conversation ID for tracking the chat session",
                            },
                        },
                    },
                },
                "extra": {
                    "simId": sim_id,
                    "simName": sim.name if sim is not None else None,
                    "accessDuration": "24 hours",
                    "network": SETTLEMENT_NETWORK,
                    "tokenAddress": settings.x402_token_address,
                },
            }
        ],
    }


def required_info_fields(required_info: list[dict[str, Any]] | None) -> dict[str, Any]:
    """Turn an offering's ``required_info`` list into x402 body fields."""
    fields: dict[str, Any] = {}
    if not isinstance(required_info, list):
        return fields
    for item in required_info:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        fields[item["name"]] = {
            "type": item.get("type") or "string",
            "required": item.get("required") is not False,
            "description": item.get("label") or item["name"],
        }
    return fields


def build_offering_payment_requirements(
    offering: AgentOffering,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """402 body for buying one offering."""
    settings = settings or get_settings()
    agent = offering.agent
    pay_to = (agent.x402_wallet_address if agent else None) or settings.default_wallet_address

    return {
        "x402Version": X402_VERSION,
        "accepts": [
            {
                "scheme": "exact",
                "network": settings.x402_network,
                "maxAmountRequired": format_amount(offering.price),
                "resource": f"/api/purchase/{offering.id}",
                "description": f"{offering.title}: {offering.description}",
                "mimeType": "application/json",
                "payTo": pay_to,
                "maxTimeoutSeconds": MAX_TIMEOUT_SECONDS,
                "asset": settings.x402_asset,
                "outputSchema": {
                    "input": {
                        "type": "http",
                        "method": "POST",
                        "bodyType": "json",
                        "bodyFields": required_info_fields(offering.required_info),
                        "headerFields": PAYMENT_HEADER_FIELD,
                    },
                    "output": {
                        "type": "object",
                        "properties": {
                            "success": {
                                "type": "boolean",
                                "description": "Whether the purchase was successful",
                            },
                            "purchaseId": {
                                "type": "string",
                                "description": "Unique purchase identifier",
                            },
                            "message": {
                                "type": "string",
                                "description": "Status message",
                            },
                        },
                    },
                },
                "extra": {
                    "offeringId": str(offering.id),
                    "offeringTitle": offering.title,
                    "offeringType": offering.offering_type.value if offering.offering_type else None,
                    "deliveryMethod": offering.delivery_method,
                    "agentName": agent.name if agent else None,
                    "network": SETTLEMENT_NETWORK,
                    "tokenAddress": settings.x402_token_address,
                },
            }
        ],
    }


# =============================================================================
# Service
# =============================================================================


class X402Service:
    """Look up payable resources and record x402 purchases."""

    def __init__(
        self,
        db: AsyncSession,
        redis_client: redis.Redis | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._db = db
        self._redis = redis_client
        self._settings = settings or get_settings()

    async def sim_payment_requirements(self, sim_id: str | None) -> dict[str, Any]:
        sim = None
        parsed = _parse_uuid(sim_id) if sim_id else None
        if parsed is not None:
            sim = await self._db.get(Advisor, parsed)
        return build_sim_payment_requirements(sim_id, sim, self._settings)

    async def offering_payment_requirements(self, offering_id: str | None) -> dict[str, Any]:
        """402 body for an offering.

        Raises:
            X402Error: 400 without an offering id, 404 for an unknown offering
        """
        if not offering_id:
            raise X402Error(400, "offeringId required", {"x402Version": X402_VERSION, "error": "offeringId required"})

        offering = await self._get_offering(offering_id)
        if offering is None:
            raise X402Error(404, "Offering not found", {"x402Version": X402_VERSION, "error": "Offering not found"})

        return build_offering_payment_requirements(offering, self._settings)

    async def process_purchase(
        self,
        offering_id: str,
        payment_header: str | None,
        buyer_info: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Validate a payment proof and record the purchase.

        Args:
            offering_id: Offering being bought
            payment_header: Raw ``x-402-payment`` header value
            buyer_info: Details the buyer supplied for delivery

        Returns:
            Purchase confirmation with delivery details

        Raises:
            X402Error: 402 without proof, 400 for an invalid or reused proof,
                404 for an unknown or inactive offering
        """
        if not payment_header:
            logger.info("x402 purchase without payment header")
            raise X402Error(402, "Payment required", {
                "x402Version": X402_VERSION,
                "error": "Payment required",
                "message": "x-402-payment header is required",
            })

        try:
            proof = PaymentProof.model_validate_json(payment_header)
        except ValidationError as e:
            logger.info(f"Invalid payment proof format: {e.error_count()} errors")
            raise X402Error(400, "Invalid payment proof format") from e

        logger.info(
            f"Payment proof received for offering {offering_id}",
            extra={"tx_hash": proof.transaction_hash, "amount": proof.amount, "network": proof.network},
        )

        offering = await self._get_offering(offering_id, active_only=True)
        if offering is None:
            raise X402Error(404, "Offering not found or inactive")

        agent = offering.agent
        expected_pay_to = (agent.x402_wallet_address if agent else None) or self._settings.default_wallet_address
        expected_amount = float(offering.price or 0)

        if proof.network.lower() != self._settings.x402_network:
            raise X402Error(400, "Invalid network. Expected base network.")

        if proof.amount < expected_amount:
            raise X402Error(
                400,
                f"Insufficient payment. Expected {format_amount(expected_amount)} USDC, "
                f"received {format_amount(proof.amount)} USDC",
            )

        if proof.recipient.lower() != expected_pay_to.lower():
            raise X402Error(400, "Payment sent to incorrect address")

        if not await self._lock_transaction(proof.transaction_hash):
            logger.info(f"Transaction already being processed: {proof.transaction_hash}")
            raise X402Error(400, "Transaction already processed")

        try:
            purchase = await self._record_purchase(offering, proof, buyer_info or {})
        except Exception:
            await self._unlock_transaction(proof.transaction_hash)
            raise

        logger.info(f"Purchase {purchase.id} completed for offering {offering.id}")
        return self._delivery_response(purchase, offering, proof)

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _get_offering(self, offering_id: str, active_only: bool = False) -> AgentOffering | None:
        parsed = _parse_uuid(offering_id)
        if parsed is None:
            return None
        query = select(AgentOffering).where(AgentOffering.id == parsed)
        if active_only:
            query = query.where(AgentOffering.is_active.is_(True))
        result = await self._db.execute(query)
        return result.scalar_one_or_none()

    async def _lock_transaction(self, tx_hash: str) -> bool:
        """Claim a transaction hash; False if another request holds it."""
        if self._redis is None:
            return True
        acquired = await self._redis.set(f"x402:tx:{tx_hash}", "1", nx=True, ex=TX_LOCK_SECONDS)
        return bool(acquired)

    async def _unlock_transaction(self, tx_hash: str) -> None:
        if self._redis is not None:
            await self._redis.delete(f"x402:tx:{tx_hash}")

    async def _record_purchase(
        self,
        offering: AgentOffering,
        proof: PaymentProof,
        buyer_info: dict[str, Any],
    ) -> AgentPurchase:
        existing = await self._db.execute(
            select(AgentPurchase.id).where(AgentPurchase.transaction_signature == proof.transaction_hash)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info(f"Transaction already processed: {proof.transaction_hash}")
            raise X402Error(400, "Transaction already processed")

        purchase = AgentPurchase(
            id=uuid.uuid4(),
            offering_id=offering.id,
            agent_id=offering.agent_id,
            buyer_wallet=proof.sender,
            amount_paid=proof.amount,
            transaction_signature=proof.transaction_hash,
            payment_network=proof.network,
            payment_method="x402",
            buyer_info=buyer_info,
            status=PurchaseStatus.COMPLETED,
        )
        try:
            async with self._db.begin_nested():
                self._db.add(purchase)
        except IntegrityError as e:
            raise X402Error(400, "Transaction already processed") from e
        return purchase

    @staticmethod
    def _delivery_response(
        purchase: AgentPurchase,
        offering: AgentOffering,
        proof: PaymentProof,
    ) -> dict[str, Any]:
        response: dict[str, Any] = {
            "success": True,
            "purchaseId": str(purchase.id),
            "message": "Purchase completed successfully",
            "offeringTitle": offering.title,
            "offeringType": offering.offering_type.value if offering.offering_type else None,
        }

        if offering.offering_type == OfferingType.DIGITAL_FILE and offering.digital_file_url:
            response["deliveryUrl"] = offering.digital_file_url
            response["deliveryMethod"] = "download"
        elif offering.offering_type == OfferingType.AGENT:
            response["agentId"] = str(offering.agent_id)
            response["conversationsRemaining"] = (
                math.floor(proof.amount / offering.price_per_conversation)
                if offering.price_per_conversation
                else 1
            )
            response["deliveryMethod"] = "agent_access"
        else:
            response["deliveryMethod"] = offering.delivery_method
            response["instructions"] = (
                "Your purchase is confirmed. The seller will contact you based on "
                f"the delivery method: {offering.delivery_method}"
            )

        return response
