"""X (Twitter) endpoints: platform posts and agent verification sweep."""

import logging

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import AdminAuth, DbSession
from app.services.twitter import XAPIError, XClient, XVerificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/x", tags=["X"])


class TweetRequest(BaseModel):
    text: str = Field(min_length=1, max_length=280)
    reply_to: str | None = Field(None, alias="replyTo")

    model_config = {"populate_by_name": True}


@router.post("/tweets")
async def post_tweet(payload: TweetRequest, _auth: AdminAuth) -> dict:
    """Post as the platform account."""
    client = XClient()
    try:
        tweet = await client.post_tweet(payload.text, reply_to=payload.reply_to)
    except XAPIError as e:
        status = 429 if e.status_code == 429 else 502
        raise HTTPException(status_code=status, detail=str(e))
    finally:
        await client.close()

    return {"success": True, "tweet": tweet}


@router.post("/verify-agents")
async def verify_agents(db: DbSession, _auth: AdminAuth) -> dict:
    """Run one verification pass over pending agent Sims.

    Meant to be called by a scheduler.
    """
    client = XClient()
    try:
        results = await XVerificationService(db, client).verify_pending_agents()
    finally:
        await client.close()

    logger.info(f"X agent verification checked {len(results)} agents")
    return {"success": True, "checked": len(results), "results": results}
