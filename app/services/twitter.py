"""X (Twitter) API client.

This service provides:
- OAuth 1.0a HMAC-SHA1 request signing (RFC 5849)
- X API v2 calls made as the platform account (post, user lookup, timeline)
- The verification sweep for agent Sims that must prove X account ownership
"""

import base64
import hashlib
import hmac
import logging
import secrets
import time
import uuid
from datetime import datetime, timezone
from typing import Any
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from app.config import get_settings
from app.models.advisor import Advisor, VerificationStatus

logger = logging.getLogger(__name__)

DEFAULT_VERIFICATION_TEXT = "Verify me on $SIMAI"
X_AGENT_CATEGORY = "Crypto Mail"


class XAPIError(Exception):
    """Raised when the X API returns an error response."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# OAuth 1.0a signing
# =============================================================================


def percent_encode(value: Any) -> str:
    """RFC 3986 percent-encoding: everything but unreserved characters."""
    return quote(str(value), safe="")


def _normalized_url(url: str) -> str:
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    if port and not ((scheme == "http" and port == 80) or (scheme == "https" and port == 443)):
        host = f"{host}:{port}"
    return urlunsplit((scheme, host, parts.path or "/", "", ""))


def signature_base_string(method: str, url: str, params: dict[str, Any]) -> str:
    """Build the OAuth signature base string.

    Query parameters already present on ``url`` are signed along with
    ``params``. Pairs are sorted by encoded key, then encoded value.
    """
    pairs = [(percent_encode(k), percent_encode(v)) for k, v in params.items()]
    pairs += [
        (percent_encode(k), percent_encode(v))
        for k, v in parse_qsl(urlsplit(url).query, keep_blank_values=True)
    ]
    param_string = "&".join(f"{k}={v}" for k, v in sorted(pairs))

    return "&".join([
        method.upper(),
        percent_encode(_normalized_url(url)),
        percent_encode(param_string),
    ])


def oauth1_signature(
    method: str,
    url: str,
    params: dict[str, Any],
    consumer_secret: str,
    token_secret: str = "",
) -> str:
    """Compute the base64 HMAC-SHA1 signature for a request.

    Args:
        method: HTTP method
        url: Request URL, query string included if any
        params: oauth_* parameters plus any form-encoded body parameters
        consumer_secret: App consumer secret
        token_secret: User access token secret

    Returns:
        Base64-encoded signature
    """
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    base_string = signature_base_string(method, url, params)
    digest = hmac.new(key.encode(), base_string.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def build_oauth1_header(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: str,
    token_secret: str,
    params: dict[str, Any] | None = None,
    nonce: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Build the ``Authorization: OAuth ...`` header value for a request.

    JSON request bodies are not part of the signature; pass only query or
    form parameters in ``params``.
    """
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or secrets.token_hex(16),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
        "oauth_token": token,
        "oauth_version": "1.0",
    }
    oauth_params["oauth_signature"] = oauth1_signature(
        method,
        url,
        {**(params or {}), **oauth_params},
        consumer_secret,
        token_secret,
    )

    return "OAuth " + ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )


# =============================================================================
# X API v2 client
# =============================================================================


class XClient:
    """X API v2 client signed with the platform account's OAuth1 credentials."""

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = get_settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        if not self._settings.x_consumer_key or not self._settings.x_access_token:
            logger.warning("X API OAuth1 credentials not configured")

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=30.0, transport=self._transport)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    def _auth_header(self, method: str, url: str, params: dict[str, Any] | None = None) -> str:
        return build_oauth1_header(
            method,
            url,
            consumer_key=self._settings.x_consumer_key,
            consumer_secret=self._settings.x_consumer_secret,
            token=self._settings.x_access_token,
            token_secret=self._settings.x_access_token_secret,
            params=params,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self._settings.x_api_base_url.rstrip('/')}{path}"
        client = await self._get_client()

        response = await client.request(
            method,
            url,
            params=params,
            json=json_body,
            headers={"Authorization": self._auth_header(method, url, params)},
        )

        if response.status_code >= 400:
            logger.error(f"X API error: {response.status_code} - {response.text}")
            raise XAPIError(f"X API error: {response.status_code}", status_code=response.status_code)

        return response.json()

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def post_tweet(self, text: str, reply_to: str | None = None) -> dict[str, Any]:
        """Post a tweet as the platform account.

        Args:
            text: Tweet text
            reply_to: Tweet id to reply to

        Returns:
            The created tweet (``id`` and ``text``)
        """
        body: dict[str, Any] = {"text": text}
        if reply_to:
            body["reply"] = {"in_reply_to_tweet_id": reply_to}

        data = await self._request("POST", "/2/tweets", json_body=body)
        tweet = data.get("data", {})
        logger.info(f"Posted tweet {tweet.get('id')}")
        return tweet

    @retry(
        retry=retry_if_exception_type(httpx.RequestError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def get_user_by_username(self, username: str) -> dict[str, Any] | None:
        """Look up a user by handle. Returns None when the user does not exist."""
        data = await self._request(
            "GET",
            f"/2/users/by/username/{username.lstrip('@')}",
            params={"user.fields": "description,profile_image_url,public_metrics"},
        )
        return data.get("data")

    @retry(
        retry=retry_if_exception_type(httpx.RequestError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def get_recent_tweets(self, user_id: str, max_results: int = 10) -> list[dict[str, Any]]:
        """Fetch a user's most recent tweets, newest first.

        The API accepts 5 to 100 results per page.
        """
        data = await self._request(
            "GET",
            f"/2/users/{user_id}/tweets",
            params={
                "max_results": max(5, min(max_results, 100)),
                "tweet.fields": "created_at",
            },
        )
        return data.get("data", [])


# =============================================================================
# Agent verification
# =============================================================================


class XVerificationService:
    """Verify agent Sims by finding the required post on their X timeline."""

    def __init__(self, db: AsyncSession, client: XClient | None = None) -> None:
        self._db = db
        self._client = client or XClient()

    async def verify_pending_agents(self) -> list[dict[str, Any]]:
        """Check every pending agent once.

        Agents past their deadline fail. Agents whose recent tweets contain
        the verification text become verified, active and public. Agents
        without an X username are skipped.

        Returns:
            One result per checked agent with agent_id, username and status
        """
        result = await self._db.execute(
            select(Advisor).where(
                Advisor.sim_category == X_AGENT_CATEGORY,
                Advisor.verification_status == VerificationStatus.PENDING,
                Advisor.verification_deadline.is_not(None),
            )
        )
        agents = result.scalars().all()
        logger.info(f"Found {len(agents)} pending agents")

        now = datetime.now(timezone.utc)
        results: list[dict[str, Any]] = []

        for agent in agents:
            username = agent.x_username
            if not username:
                logger.warning(f"Agent {agent.id} missing x_username")
                continue

            if now > agent.verification_deadline:
                logger.info(f"Agent {agent.id} (@{username}) deadline expired")
                agent.verification_status = VerificationStatus.FAILED
                results.append(self._result(agent.id, username, "failed", reason="deadline_expired"))
                continue

            try:
                verified = await self._has_verification_post(
                    username, agent.verification_post_required or DEFAULT_VERIFICATION_TEXT
                )
            except (XAPIError, httpx.HTTPError) as e:
                logger.error(f"Error checking agent {agent.id}: {e}")
                results.append(self._result(agent.id, username, "error", error=str(e)))
                continue

            if verified:
                logger.info(f"Agent {agent.id} (@{username}) verified")
                agent.verification_status = VerificationStatus.VERIFIED
                agent.verified_at = now
                agent.is_active = True
                agent.is_public = True
                results.append(self._result(agent.id, username, "verified"))
            else:
                results.append(self._result(agent.id, username, "pending"))

        await self._db.flush()
        return results

    async def _has_verification_post(self, username: str, verification_text: str) -> bool:
        user = await self._client.get_user_by_username(username)
        if not user:
            raise XAPIError(f"X user @{username} not found", status_code=404)

        tweets = await self._client.get_recent_tweets(user["id"], max_results=10)
        return any(verification_text in (tweet.get("text") or "") for tweet in tweets)

    @staticmethod
    def _result(agent_id: uuid.UUID, username: str, status: str, **extra: Any) -> dict[str, Any]:
        return {"agent_id": str(agent_id), "username": username, "status": status, **extra}
