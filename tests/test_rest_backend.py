"""Tests for the HTTP reservations backend using httpx.MockTransport."""

import json

import httpx
import pytest

from reservation_sync.backend.base import AuthenticationError, BackendError
from reservation_sync.backend.rest import RestBackend
from reservation_sync.session import SessionContext
from tests.conftest import make_row


def _backend(session, handler) -> RestBackend:
    return RestBackend(
        session,
        base_url="https://db.test",
        api_key="anon-key",
        table="reservations",
        timeout=2.0,
        transport=httpx.MockTransport(handler),
    )


class TestReads:
    @pytest.mark.asyncio
    async def test_fetch_all(self, session):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[make_row("2"), make_row("1")])

        async with _backend(session, handler) as backend:
            rows = await backend.fetch_all()

        assert [r["id"] for r in rows] == ["2", "1"]
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/reservations"
        assert request.url.params["order"] == "created_at.desc"
        assert request.headers["apikey"] == "anon-key"
        assert request.headers["Authorization"] == "Bearer test-token"

    @pytest.mark.asyncio
    async def test_fetch_one(self, session):
        def handler(request):
            assert request.url.params["id"] == "eq.7"
            return httpx.Response(200, json=[make_row("7")])

        async with _backend(session, handler) as backend:
            row = await backend.fetch_one("7")
        assert row["id"] == "7"

    @pytest.mark.asyncio
    async def test_fetch_one_missing(self, session):
        async with _backend(session, lambda request: httpx.Response(200, json=[])) as backend:
            assert await backend.fetch_one("7") is None

    @pytest.mark.asyncio
    async def test_unexpected_body(self, session):
        def handler(request):
            return httpx.Response(200, json={"message": "not a list"})

        async with _backend(session, handler) as backend:
            with pytest.raises(BackendError, match="Unexpected"):
                await backend.fetch_all()


class TestWrites:
    @pytest.mark.asyncio
    async def test_update_patches_by_id(self, session):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(204)

        async with _backend(session, handler) as backend:
            await backend.update("3", {"status": "Confirmed"})

        request = seen[0]
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.3"
        assert json.loads(request.content) == {"status": "Confirmed"}
        assert request.headers["Prefer"] == "return=minimal"

    @pytest.mark.asyncio
    async def test_create_without_staff_session(self):
        seen = []

        def handler(request):
            seen.append(request)
            body = json.loads(request.content)
            return httpx.Response(201, json=[dict(body, id=11, created_at="2024-05-01T08:00:00Z")])

        async with _backend(SessionContext(), handler) as backend:
            row = await backend.create({"name": "Karim", "status": "Pending"})

        assert row["id"] == 11
        assert seen[0].method == "POST"
        assert seen[0].headers["Authorization"] == "Bearer anon-key"
        assert seen[0].headers["Prefer"] == "return=representation"

    @pytest.mark.asyncio
    async def test_create_empty_response(self):
        async with _backend(SessionContext(), lambda r: httpx.Response(201, json=[])) as backend:
            with pytest.raises(BackendError, match="no row"):
                await backend.create({"name": "Karim"})


class TestErrors:
    @pytest.mark.asyncio
    async def test_no_session_refused_locally(self):
        def handler(request):
            raise AssertionError("should not reach the network")

        async with _backend(SessionContext(), handler) as backend:
            with pytest.raises(AuthenticationError):
                await backend.fetch_all()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_rejections(self, session, status):
        async with _backend(session, lambda r: httpx.Response(status)) as backend:
            with pytest.raises(AuthenticationError):
                await backend.update("1", {"status": "Canceled"})

    @pytest.mark.asyncio
    async def test_server_error(self, session):
        async with _backend(session, lambda r: httpx.Response(500, text="oops")) as backend:
            with pytest.raises(BackendError, match="500") as exc_info:
                await backend.fetch_all()
        assert not isinstance(exc_info.value, AuthenticationError)

    @pytest.mark.asyncio
    async def test_network_error(self, session):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _backend(session, handler) as backend:
            with pytest.raises(BackendError, match="failed"):
                await backend.fetch_one("1")

    def test_missing_url(self, session):
        with pytest.raises(ValueError, match="BACKEND_URL"):
            RestBackend(session, base_url="")
