"""x402 payment discovery and purchase endpoints.

Every response is JSON. Discovery answers 402 with the payment
requirements; the purchase endpoint answers 200 with delivery details or
an error body with ``success: false``.
"""

import logging
from typing import Any

from fastapi import APIRouter, Header, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import DbSession, RedisClient
from app.services.x402 import X402_VERSION, X402Error, X402Service, offering_id_from_referer

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/x402", tags=["x402"])


def _payment_required(body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=402, content=body)


def _discovery_error(e: Exception) -> JSONResponse:
    logger.error(f"x402 discovery failed: {e}")
    return JSONResponse(status_code=500, content={"x402Version": X402_VERSION, "error": str(e)})


@router.get("/info")
async def sim_info(
    db: DbSession,
    sim_id: str | None = Query(None, alias="simId"),
) -> JSONResponse:
    """Payment requirements for chatting with a Sim."""
    try:
        body = await X402Service(db).sim_payment_requirements(sim_id)
    except SQLAlchemyError as e:
        return _discovery_error(e)
    return _payment_required(body)


@router.get("/offering-info")
async def offering_info(
    db: DbSession,
    offering_id: str | None = Query(None, alias="offeringId"),
    referer: str | None = Header(None),
) -> JSONResponse:
    """Payment requirements for an offering.

    Without ``offeringId`` the id is taken from a referer like
    ``https://.../offering/<id>``.
    """
    if not offering_id:
        offering_id = offering_id_from_referer(referer)
        if offering_id:
            logger.info(f"Extracted offeringId from referer: {offering_id}")

    try:
        body = await X402Service(db).offering_payment_requirements(offering_id)
    except X402Error as e:
        return JSONResponse(status_code=e.status_code, content=e.body)
    except SQLAlchemyError as e:
        return _discovery_error(e)
    return _payment_required(body)


@router.post("/purchase/{offering_id}")
async def purchase(
    offering_id: str,
    request: Request,
    db: DbSession,
    redis_client: RedisClient,
    x_402_payment: str | None = Header(None, alias="x-402-payment"),
) -> JSONResponse:
    """Record a purchase paid through x402."""
    buyer_info: dict[str, Any] = {}
    if "application/json" in request.headers.get("content-type", ""):
        try:
            body = await request.json()
        except ValueError:
            logger.info("No buyer info provided or invalid JSON")
        else:
            if isinstance(body, dict):
                buyer_info = body

    service = X402Service(db, redis_client)
    try:
        result = await service.process_purchase(offering_id, x_402_payment, buyer_info)
    except X402Error as e:
        return JSONResponse(status_code=e.status_code, content=e.body)
    except SQLAlchemyError as e:
        logger.error(f"Failed to record purchase for offering {offering_id}: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": "Failed to process purchase"})

    return JSONResponse(status_code=200, content=result)
