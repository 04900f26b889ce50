"""Tests for OAuth1 signing, the X API client and agent verification."""

import json
import uuid
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from app.models.advisor import VerificationStatus
from app.services.twitter import (
    XAPIError,
    XClient,
    XVerificationService,
    _normalized_url,
    build_oauth1_header,
    oauth1_signature,
    percent_encode,
    signature_base_string,
)

# Worked example from the X developer documentation ("Creating a signature")
EXAMPLE_URL = "https://api.twitter.com/1.1/statuses/update.json"
EXAMPLE_CONSUMER_KEY = "xvz1evFS4wEEPTGEFPHBog"
EXAMPLE_CONSUMER_SECRET = "kAcSOqF21Fu85e7zjz7ZN2U4ZRhfV3WpwPAoE3Z7kBw"
EXAMPLE_TOKEN = "370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb"
EXAMPLE_TOKEN_SECRET = "LswwdoUaIvS8ltyTt5jkRh4J50vUPVVHtR2YPi5kE"
EXAMPLE_NONCE = "kYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg"
EXAMPLE_TIMESTAMP = 1318622958
EXAMPLE_BODY = {
    "include_entities": "true",
    "status": "Hello Ladies + Gentlemen, a signed OAuth request!",
}
EXAMPLE_SIGNATURE = "hCtSmYh+iHYCEqBWrE7C7hYmtUk="
EXAMPLE_BASE_STRING = (
    "POST&https%3A%2F%2Fapi.twitter.com%2F1.1%2Fstatuses%2Fupdate.json&"
    "include_entities%3Dtrue%26oauth_consumer_key%3Dxvz1evFS4wEEPTGEFPHBog%26"
    "oauth_nonce%3DkYjzVBB8Y0ZFabxSWbWovY3uYSQ2pTgmZeNu2VS4cg%26"
    "oauth_signature_method%3DHMAC-SHA1%26oauth_timestamp%3D1318622958%26"
    "oauth_token%3D370773112-GmHxMAgYyLbNEtIKZeRNFsMKPR9EyMZeS9weJAEb%26"
    "oauth_version%3D1.0%26status%3DHello%2520Ladies%2520%252B%2520Gentlemen"
    "%252C%2520a%2520signed%2520OAuth%2520request%2521"
)


def _example_params() -> dict[str, str]:
    return {
        **EXAMPLE_BODY,
        "oauth_consumer_key": EXAMPLE_CONSUMER_KEY,
        "oauth_nonce": EXAMPLE_NONCE,
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(EXAMPLE_TIMESTAMP),
        "oauth_token": EXAMPLE_TOKEN,
        "oauth_version": "1.0",
    }


class TestOAuth1Signing:
    """Tests against the published signing example."""

    def test_percent_encode_leaves_unreserved(self):
        assert percent_encode("a b+c~-._/!") == "a%20b%2Bc~-._%2F%21"

    def test_normalized_url(self):
        assert _normalized_url("HTTPS://API.X.com:443/2/tweets?x=1") == "https://api.x.com/2/tweets"
        assert _normalized_url("http://localhost:8080/path") == "http://localhost:8080/path"

    def test_signature_base_string(self):
        assert signature_base_string("post", EXAMPLE_URL, _example_params()) == EXAMPLE_BASE_STRING

    def test_signature(self):
        signature = oauth1_signature(
            "POST", EXAMPLE_URL, _example_params(), EXAMPLE_CONSUMER_SECRET, EXAMPLE_TOKEN_SECRET
        )
        assert signature == EXAMPLE_SIGNATURE

    def test_query_parameters_are_signed(self):
        base = signature_base_string("GET", "https://api.x.com/2/users/1/tweets?max_results=10", {})

        assert base.startswith("GET&https%3A%2F%2Fapi.x.com%2F2%2Fusers%2F1%2Ftweets&")
        assert base.endswith("max_results%3D10")

    def test_authorization_header(self):
        header = build_oauth1_header(
            "POST",
            EXAMPLE_URL,
            consumer_key=EXAMPLE_CONSUMER_KEY,
            consumer_secret=EXAMPLE_CONSUMER_SECRET,
            token=EXAMPLE_TOKEN,
            token_secret=EXAMPLE_TOKEN_SECRET,
            params=EXAMPLE_BODY,
            nonce=EXAMPLE_NONCE,
            timestamp=EXAMPLE_TIMESTAMP,
        )

        assert header.startswith("OAuth ")
        assert 'oauth_signature="hCtSmYh%2BiHYCEqBWrE7C7hYmtUk%3D"' in header
        assert f'oauth_consumer_key="{EXAMPLE_CONSUMER_KEY}"' in header
        assert 'oauth_version="1.0"' in header
        # Body parameters are signed but not sent in the header
        assert "status" not in header

    def test_fresh_nonce_and_timestamp(self):
        first = build_oauth1_header("GET", EXAMPLE_URL, "ck", "cs", "t", "ts")
        second = build_oauth1_header("GET", EXAMPLE_URL, "ck", "cs", "t", "ts")

        assert first != second


class TestXClient:
    """Tests for X API v2 calls."""

    @pytest.mark.asyncio
    async def test_post_tweet(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"data": {"id": "123", "text": "gm"}})

        client = XClient(transport=httpx.MockTransport(handler))
        try:
            tweet = await client.post_tweet("gm", reply_to="99")
        finally:
            await client.close()

        assert tweet == {"id": "123", "text": "gm"}
        assert seen["method"] == "POST"
        assert seen["path"] == "/2/tweets"
        assert seen["auth"].startswith("OAuth ")
        assert seen["body"] == {"text": "gm", "reply": {"in_reply_to_tweet_id": "99"}}

    @pytest.mark.asyncio
    async def test_post_tweet_is_not_resent_after_read_timeout(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = XClient(transport=httpx.MockTransport(handler))
        try:
            with pytest.raises(httpx.ReadTimeout):
                await client.post_tweet("gm")
        finally:
            await client.close()

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_recent_tweets_clamps_page_size(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"data": [{"id": "1", "text": "hello"}]})

        client = XClient(transport=httpx.MockTransport(handler))
        tweets = await client.get_recent_tweets("42", max_results=1)
        await client.close()

        assert tweets == [{"id": "1", "text": "hello"}]
        assert seen["params"]["max_results"] == "5"
        assert seen["params"]["tweet.fields"] == "created_at"

    @pytest.mark.asyncio
    async def test_user_lookup_strips_at_sign(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            return httpx.Response(200, json={"data": {"id": "42", "username": "sim"}})

        client = XClient(transport=httpx.MockTransport(handler))
        user = await client.get_user_by_username("@sim")
        await client.close()

        assert user["id"] == "42"
        assert seen["path"] == "/2/users/by/username/sim"

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        client = XClient(transport=httpx.MockTransport(lambda request: httpx.Response(429, text="slow down")))

        with pytest.raises(XAPIError) as exc_info:
            await client.post_tweet("gm")
        await client.close()

        assert exc_info.value.status_code == 429


def _agent(username: str | None, deadline: datetime, required: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        id=uuid.uuid4(),
        x_username=username,
        verification_deadline=deadline,
        verification_post_required=required,
        verification_status=VerificationStatus.PENDING,
        verified_at=None,
        is_active=False,
        is_public=False,
    )


class TestXVerificationService:
    """Tests for the pending-agent sweep."""

    @pytest.mark.asyncio
    async def test_sweep(self, db, make_result):
        future = datetime.now(timezone.utc) + timedelta(days=1)
        past = datetime.now(timezone.utc) - timedelta(days=1)

        expired = _agent("late", past)
        verified = _agent("good", future, required="Verify me on $SIMAI #42")
        pending = _agent("quiet", future)
        broken = _agent("broken", future)
        nameless = _agent(None, future)
        db.execute.return_value = make_result(scalars=[expired, verified, pending, broken, nameless])

        users = {"good": {"id": "1"}, "quiet": {"id": "2"}}
        tweets = {
            "1": [{"id": "a", "text": "gm"}, {"id": "b", "text": "Verify me on $SIMAI #42 please"}],
            "2": [{"id": "c", "text": "nothing to see"}],
        }

        async def lookup(username):
            if username == "broken":
                raise XAPIError("X API error: 503", status_code=503)
            return users[username]

        client = MagicMock()
        client.get_user_by_username = AsyncMock(side_effect=lookup)
        client.get_recent_tweets = AsyncMock(side_effect=lambda user_id, max_results=10: tweets[user_id])

        results = await XVerificationService(db, client=client).verify_pending_agents()

        by_user = {r["username"]: r for r in results}
        assert set(by_user) == {"late", "good", "quiet", "broken"}
        assert by_user["late"]["status"] == "failed"
        assert by_user["late"]["reason"] == "deadline_expired"
        assert by_user["good"]["status"] == "verified"
        assert by_user["good"]["agent_id"] == str(verified.id)
        assert by_user["quiet"]["status"] == "pending"
        assert by_user["broken"]["status"] == "error"

        assert expired.verification_status == VerificationStatus.FAILED
        assert verified.verification_status == VerificationStatus.VERIFIED
        assert verified.verified_at is not None
        assert verified.is_active and verified.is_public
        assert pending.verification_status == VerificationStatus.PENDING
        db.flush.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_user_is_an_error(self, db, make_result):
        agent = _agent("ghost", datetime.now(timezone.utc) + timedelta(hours=1))
        db.execute.return_value = make_result(scalars=[agent])
        client = MagicMock()
        client.get_user_by_username = AsyncMock(return_value=None)

        results = await XVerificationService(db, client=client).verify_pending_agents()

        assert results[0]["status"] == "error"
        assert "not found" in results[0]["error"]
