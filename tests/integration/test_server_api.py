"""
Integration tests for the reference service wire format.

Requests go through httpx.ASGITransport straight into the FastAPI app.

Tests cover:
- Health endpoint
- Bearer token enforcement
- Error body format and status codes
- ETag / If-Match handling on file contents
- Lease release
"""

import httpx
import pytest
import pytest_asyncio


@pytest_asyncio.fixture
async def http(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        yield client


@pytest_asyncio.fixture
async def token(http):
    response = await http.post(
        "/v1/users",
        json={"username": "alice", "password": "secret", "email": "alice@example.com"},
    )
    assert response.status_code == 201
    return response.json()["token"]


def auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


async def make_file(http, token: str) -> str:
    """Create project, version and file; return the file URL."""
    headers = auth(token)
    project = (await http.post("/v1/user/projects", json={"name": "p"}, headers=headers)).json()
    project_url = f"/v1/projects/{project['project']['handle']}/versions"
    version = (await http.post(project_url, json={"name": "v1"}, headers=headers)).json()
    files_url = f"{project_url}/{version['version']['handle']}/files"
    created = (await http.post(files_url, json={"path": "/main.c"}, headers=headers)).json()
    return f"{files_url}/{created['file']['handle']}"


class TestService:
    """Service-level behavior."""

    @pytest.mark.asyncio
    async def test_health(self, http):
        response = await http.get("/v1/health")
        assert response.status_code == 200
        assert response.json()["healthy"] is True

    @pytest.mark.asyncio
    async def test_missing_token(self, http):
        response = await http.get("/v1/user")
        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_FAILED"

    @pytest.mark.asyncio
    async def test_unknown_token(self, http):
        response = await http.get("/v1/user", headers=auth("bogus"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login(self, http, token):
        response = await http.post("/v1/sessions", json={"username": "alice", "password": "secret"})
        assert response.status_code == 200
        body = response.json()
        assert body["token"] != token
        assert body["user"]["name"] == "alice"
        assert "password" not in str(body["user"])

    @pytest.mark.asyncio
    async def test_bad_login(self, http, token):
        response = await http.post("/v1/sessions", json={"username": "alice", "password": "x"})
        assert response.status_code == 401
        assert response.json() == {
            "error": "Authentication failed",
            "error_code": "AUTHENTICATION_FAILED",
            "details": {},
        }


class TestErrors:
    """Error bodies."""

    @pytest.mark.asyncio
    async def test_malformed_body(self, http, token):
        response = await http.post("/v1/user/projects", json={"title": "x"}, headers=auth(token))
        assert response.status_code == 400
        body = response.json()
        assert body["error_code"] == "VALIDATION_ERROR"
        assert body["details"]["field"] == "name"

    @pytest.mark.asyncio
    async def test_not_found(self, http, token):
        response = await http.get("/v1/projects/missing", headers=auth(token))
        assert response.status_code == 404
        assert response.json()["details"]["resource_type"] == "project"

    @pytest.mark.asyncio
    async def test_conflict(self, http, token):
        headers = auth(token)
        await http.post("/v1/user/projects", json={"name": "p"}, headers=headers)
        response = await http.post("/v1/user/projects", json={"name": "p"}, headers=headers)
        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    @pytest.mark.asyncio
    async def test_invalid_path(self, http, token):
        file_url = await make_file(http, token)
        response = await http.put(f"{file_url}/path", json={"path": "relative"}, headers=auth(token))
        assert response.status_code == 400
        assert response.json()["details"]["field"] == "path"


class TestContents:
    """ETag and If-Match on file contents."""

    @pytest.mark.asyncio
    async def test_etag_tracks_revision(self, http, token):
        file_url = await make_file(http, token)
        headers = auth(token)

        response = await http.get(f"{file_url}/contents", headers=headers)
        assert response.headers["etag"] == '"0"'

        response = await http.put(f"{file_url}/contents", json={"contents": "x"}, headers=headers)
        assert response.json() == {"revision": 1}
        assert response.headers["etag"] == '"1"'

    @pytest.mark.asyncio
    async def test_if_match(self, http, token):
        file_url = await make_file(http, token)
        headers = auth(token)

        stale = {**headers, "If-Match": '"5"'}
        response = await http.put(f"{file_url}/contents", json={"contents": "x"}, headers=stale)
        assert response.status_code == 409
        assert response.json()["details"]["current_revision"] == 0

        current = {**headers, "If-Match": '"0"'}
        response = await http.put(f"{file_url}/contents", json={"contents": "y"}, headers=current)
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_malformed_if_match(self, http, token):
        file_url = await make_file(http, token)
        bad = {**auth(token), "If-Match": "abc"}
        response = await http.put(f"{file_url}/contents", json={"contents": "x"}, headers=bad)
        assert response.status_code == 400


class TestLeases:
    """Lease endpoints."""

    @pytest.mark.asyncio
    async def test_release_once(self, http, token, store):
        headers = auth(token)
        created = (await http.post("/v1/user/projects", json={"name": "p"}, headers=headers)).json()
        lease = created["lease"]
        assert len(store.leases(created["project"]["handle"])) == 1

        response = await http.delete(f"/v1/leases/{lease}", headers=headers)
        assert response.status_code == 204
        assert store.leases() == []

        response = await http.delete(f"/v1/leases/{lease}", headers=headers)
        assert response.status_code == 409
        assert response.json()["error_code"] == "INVALID_STATE"
