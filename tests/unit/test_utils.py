"""Unit tests for the small helpers: auth gate, cursors, text cleanup, rate limiting."""

from datetime import datetime

import jwt
import pytest
from bson import ObjectId

from propchat.config import settings
from propchat.repositories.property_repository import resolve_contact_id
from propchat.schemas.actor import Credential, Role
from propchat.utils import rate_limit
from propchat.utils.cursor import decode_cursor, encode_cursor, parse_object_id, to_epoch_ms, utcnow
from propchat.utils.exceptions import InvalidInputError, RateLimitedError, UnauthenticatedError
from propchat.utils.rate_limit import MessageRateLimiter, get_message_rate_limiter
from propchat.utils.security import create_access_token, credential_from_header, resolve_actor
from propchat.utils.text import make_preview, sanitize_text


@pytest.mark.unit
class TestAuthGate:

    def test_token_resolves_to_actor(self):
        token = create_access_token("seller-9", Role.SELLER, "Sid")

        actor = resolve_actor(Credential(token=token))

        assert actor.id == "seller-9"
        assert actor.role is Role.SELLER
        assert actor.name == "Sid"
        assert not actor.is_admin

    def test_admin_flag(self):
        actor = resolve_actor(Credential(token=create_access_token("ops", "admin")))

        assert actor.is_admin

    def test_expired_token(self):
        token = create_access_token("u1", expires_minutes=-1)

        with pytest.raises(UnauthenticatedError, match="expired"):
            resolve_actor(Credential(token=token))

    def test_wrong_signature(self):
        token = jwt.encode({"sub": "u1", "role": "buyer", "exp": 9999999999}, "other-secret", algorithm="HS256")

        with pytest.raises(UnauthenticatedError):
            resolve_actor(Credential(token=token))

    def test_unknown_role_rejected(self):
        token = jwt.encode({"sub": "u1", "role": "superuser", "exp": 9999999999}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

        with pytest.raises(UnauthenticatedError):
            resolve_actor(Credential(token=token))

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer ", "token-without-scheme"])
    def test_bad_authorization_header(self, header):
        with pytest.raises(UnauthenticatedError):
            credential_from_header(header)

    def test_bearer_header(self):
        assert credential_from_header("Bearer abc.def").token == "abc.def"
        assert Credential(token="t").as_header() == {"Authorization": "Bearer t"}


@pytest.mark.unit
class TestCursor:

    def test_round_trip_keeps_millisecond_and_id(self):
        ts = utcnow()
        oid = ObjectId()

        decoded_ts, decoded_oid = decode_cursor(encode_cursor(ts, oid))

        assert decoded_ts == ts
        assert decoded_oid == oid

    def test_epoch_ms_is_exact(self):
        assert to_epoch_ms(datetime(1970, 1, 1, 0, 0, 1, 999000)) == 1999

    def test_parse_object_id(self):
        oid = ObjectId()
        assert parse_object_id(str(oid)) == oid
        assert parse_object_id(oid) is oid

    @pytest.mark.parametrize("value", ["", "xyz", "12345", None])
    def test_parse_object_id_rejects(self, value):
        with pytest.raises(InvalidInputError):
            parse_object_id(value, field="conversation_id")


@pytest.mark.unit
class TestText:

    def test_sanitize(self):
        assert sanitize_text("  <script>alert(1)</script>hi  ", 2000) == "alert(1)hi"
        assert sanitize_text(None, 2000) == ""
        assert sanitize_text("abcdef", 3) == "abc"

    def test_preview(self):
        assert make_preview("a" * 300, 200) == "a" * 200
        assert make_preview("short", 200) == "short"


@pytest.mark.unit
class TestContactResolution:

    @pytest.mark.parametrize(
        "prop, expected",
        [
            ({"owner": "u1"}, "u1"),
            ({"contactId": "agent", "owner": "u1"}, "agent"),
            ({"seller": {"_id": "s1"}}, "s1"),
            ({"postedBy": {"id": "p1"}}, "p1"),
            ({"sellerId": ObjectId("65a000000000000000000009")}, "65a000000000000000000009"),
            ({"title": "nobody"}, None),
        ],
    )
    def test_first_present_field_wins(self, prop, expected):
        assert resolve_contact_id(prop) == expected


@pytest.mark.unit
class TestRateLimiter:

    async def test_blocks_past_the_window_budget(self):
        limiter = MessageRateLimiter(2, 30)

        await limiter.hit("u1")
        await limiter.hit("u1")
        with pytest.raises(RateLimitedError) as exc_info:
            await limiter.hit("u1")

        assert 0 < exc_info.value.details["retry_after"] <= 30

    async def test_keys_are_independent(self):
        limiter = MessageRateLimiter(1, 30)

        await limiter.hit("u1")
        await limiter.hit("u2")

    async def test_reset(self):
        limiter = MessageRateLimiter(1, 30)
        await limiter.hit("u1")

        limiter.reset()
        await limiter.hit("u1")

    def test_shared_limiter_built_from_settings(self, monkeypatch):
        monkeypatch.setattr(rate_limit, "_limiter", None)
        monkeypatch.setattr(settings, "MESSAGE_RATE_LIMIT", 3)

        limiter = get_message_rate_limiter()

        assert limiter.item.amount == 3
        assert limiter.item.get_expiry() == settings.MESSAGE_RATE_WINDOW_SECONDS
        assert get_message_rate_limiter() is limiter
