"""
REST backend for the KIPR API.

This module implements the entity contract over JSON/HTTPS:
- RestClient: login/registration against a base URL
- RestUser, RestOrganization: session-scoped accessors
- RestProject, RestVersion, RestFile: opened entities holding a server lease

Example:
    >>> async with RestClient() as client:
    ...     user = await client.login("alice", "secret")
    ...     async with await user.projects.open(handle) as project:
    ...         briefs = await project.versions.list()

Invariants:
    - Every request of a session carries its bearer token
    - Opening an entity acquires a lease; close() deletes it
    - File revisions travel as ETag / If-Match headers
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import httpx

from ._http import HttpTransport
from .base import (
    Client,
    File,
    Files,
    Handle,
    Organization,
    Organizations,
    OwnerKind,
    Project,
    Projects,
    Role,
    User,
    Users,
    Version,
    Versions,
)
from .brief import FileBrief, OrganizationBrief, ProjectBrief, UserBrief, VersionBrief
from .config import DEFAULT_URL, ClientSettings

logger = logging.getLogger(__name__)


def _segment(handle: Handle) -> str:
    return quote(handle, safe="")


def _etag(revision: int) -> str:
    return f'"{revision}"'


class RestFile(File):
    def __init__(self, handle: Handle, version: RestVersion, lease: str) -> None:
        super().__init__()
        self._handle = handle
        self._version = version
        self._lease = lease
        self._url = f"{version.files.url}/{_segment(handle)}"

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def version(self) -> RestVersion:
        return self._version

    async def _call(self, method: str, path: str = "", **kwargs: Any) -> Any:
        self._ensure_open()
        return await self._version._user._call(method, self._url + path, **kwargs)

    async def path(self) -> str:
        body = await self._call("GET")
        return body["path"]

    async def move(self, path: str) -> None:
        await self._call("PUT", "/path", json={"path": path})

    async def read(self) -> str:
        body = await self._call("GET", "/contents")
        return body["contents"]

    async def update(self, contents: str, expected_revision: Optional[int] = None) -> int:
        headers = {}
        if expected_revision is not None:
            headers["If-Match"] = _etag(expected_revision)
        body = await self._call("PUT", "/contents", json={"contents": contents}, headers=headers)
        return body["revision"]

    async def revision(self) -> int:
        body = await self._call("GET")
        return body["revision"]

    async def _release(self) -> None:
        await self._version._user._release(self._lease)


class RestFiles(Files[RestFile]):
    def __init__(self, version: RestVersion) -> None:
        self._version = version
        self.url = f"{version.project.versions.url}/{_segment(version.handle)}/files"

    async def _call(self, method: str, path: str = "", **kwargs: Any) -> Any:
        self._version._ensure_open()
        return await self._version._user._call(method, self.url + path, **kwargs)

    def _brief(self, data: Dict[str, Any]) -> FileBrief:
        return FileBrief(
            handle=data["handle"],
            path=data["path"],
            revision=data.get("revision", 0),
            version=self._version,
        )

    async def list(self) -> List[FileBrief]:
        body = await self._call("GET")
        return [self._brief(f) for f in body["files"]]

    async def create(self, path: str) -> RestFile:
        body = await self._call("POST", json={"path": path})
        return RestFile(body["file"]["handle"], self._version, body["lease"])

    async def open(self, handle: Handle) -> RestFile:
        body = await self._call("POST", f"/{_segment(handle)}/leases")
        return RestFile(body["file"]["handle"], self._version, body["lease"])

    async def lookup(self, path: str) -> FileBrief:
        body = await self._call("GET", params={"path": path})
        return self._brief(body["files"][0])


class RestVersion(Version[RestFile]):
    def __init__(self, handle: Handle, project: RestProject, lease: str) -> None:
        super().__init__()
        self._handle = handle
        self._project = project
        self._lease = lease
        self._user = project._user
        self._files = RestFiles(self)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def project(self) -> RestProject:
        return self._project

    @property
    def files(self) -> RestFiles:
        return self._files

    async def _info(self) -> Dict[str, Any]:
        self._ensure_open()
        return await self._user._call(
            "GET", f"{self._project.versions.url}/{_segment(self._handle)}"
        )

    async def name(self) -> str:
        return (await self._info())["name"]

    async def description(self) -> Optional[str]:
        return (await self._info()).get("description")

    async def _release(self) -> None:
        await self._user._release(self._lease)


class RestVersions(Versions[RestVersion]):
    def __init__(self, project: RestProject) -> None:
        self._project = project
        self.url = f"/v1/projects/{_segment(project.handle)}/versions"

    async def _call(self, method: str, path: str = "", **kwargs: Any) -> Any:
        self._project._ensure_open()
        return await self._project._user._call(method, self.url + path, **kwargs)

    def _opened(self, body: Dict[str, Any]) -> RestVersion:
        return RestVersion(body["version"]["handle"], self._project, body["lease"])

    async def list(self) -> List[VersionBrief]:
        body = await self._call("GET")
        return [
            VersionBrief(
                handle=v["handle"],
                name=v["name"],
                description=v.get("description"),
                created_at=v.get("created_at", 0.0),
                project=self._project,
            )
            for v in body["versions"]
        ]

    async def create(self, name: str, description: Optional[str] = None) -> RestVersion:
        body = await self._call("POST", json={"name": name, "description": description})
        return self._opened(body)

    async def restore(
        self,
        handle: Handle,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> RestVersion:
        body = await self._call(
            "POST",
            f"/{_segment(handle)}/restore",
            json={"name": name, "description": description},
        )
        return self._opened(body)

    async def open(self, handle: Handle) -> RestVersion:
        body = await self._call("POST", f"/{_segment(handle)}/leases")
        return self._opened(body)


class RestProject(Project[RestVersion]):
    def __init__(self, handle: Handle, owner, user: RestUser, lease: str) -> None:
        super().__init__()
        self._handle = handle
        self._owner = owner
        self._user = user
        self._lease = lease
        self._versions = RestVersions(self)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def owner(self):
        return self._owner

    @property
    def versions(self) -> RestVersions:
        return self._versions

    async def name(self) -> str:
        self._ensure_open()
        body = await self._user._call("GET", f"/v1/projects/{_segment(self._handle)}")
        return body["name"]

    async def _release(self) -> None:
        await self._user._release(self._lease)


class RestProjects(Projects[RestProject]):
    """Projects owned by a user or by an organization."""

    def __init__(self, owner, user: RestUser, url: str) -> None:
        self._owner = owner
        self._user = user
        self.url = url

    def _opened(self, body: Dict[str, Any]) -> RestProject:
        return RestProject(body["project"]["handle"], self._owner, self._user, body["lease"])

    async def list(self) -> List[ProjectBrief]:
        body = await self._user._call("GET", self.url)
        return [
            ProjectBrief(
                handle=p["handle"],
                name=p["name"],
                owner_kind=OwnerKind(p["owner"]["kind"]),
                owner_handle=p["owner"]["handle"],
                owner=self._owner,
            )
            for p in body["projects"]
        ]

    async def create(self, name: str) -> RestProject:
        body = await self._user._call("POST", self.url, json={"name": name})
        return self._opened(body)

    async def open(self, handle: Handle) -> RestProject:
        body = await self._user._call("POST", f"{self.url}/{_segment(handle)}/leases")
        return self._opened(body)

    async def delete(self, handle: Handle) -> None:
        await self._user._call("DELETE", f"{self.url}/{_segment(handle)}")


class RestUsers(Users):
    def __init__(self, organization: RestOrganization) -> None:
        self._organization = organization
        self.url = f"/v1/organizations/{_segment(organization.handle)}/users"

    async def list(self) -> List[UserBrief]:
        body = await self._organization._user._call("GET", self.url)
        return [
            UserBrief(
                handle=u["handle"],
                name=u["name"],
                role=Role(u["role"]),
                organization=self._organization,
            )
            for u in body["users"]
        ]

    async def add(self, handle: Handle, role: Role = Role.MEMBER) -> None:
        await self._organization._user._call(
            "PUT", f"{self.url}/{_segment(handle)}", json={"role": Role(role).value}
        )

    async def remove(self, handle: Handle) -> None:
        await self._organization._user._call("DELETE", f"{self.url}/{_segment(handle)}")


class RestOrganization(Organization[RestProject]):
    def __init__(self, handle: Handle, user: RestUser) -> None:
        self._handle = handle
        self._user = user
        self._users = RestUsers(self)
        self._projects = RestProjects(
            self, user, f"/v1/organizations/{_segment(handle)}/projects"
        )

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def users(self) -> RestUsers:
        return self._users

    @property
    def projects(self) -> RestProjects:
        return self._projects

    async def _info(self) -> Dict[str, Any]:
        return await self._user._call(
            "GET", f"{self._user.organizations.url}/{_segment(self._handle)}"
        )

    async def name(self) -> str:
        return (await self._info())["name"]

    async def description(self) -> Optional[str]:
        return (await self._info()).get("description")


class RestOrganizations(Organizations[RestOrganization]):
    url = "/v1/user/organizations"

    def __init__(self, user: RestUser) -> None:
        self._user = user

    async def list(self) -> List[OrganizationBrief]:
        body = await self._user._call("GET", self.url)
        return [
            OrganizationBrief(
                handle=o["handle"],
                name=o["name"],
                description=o.get("description"),
                role=Role(o["role"]),
                user=self._user,
            )
            for o in body["organizations"]
        ]

    async def create(self, name: str, description: Optional[str] = None) -> RestOrganization:
        body = await self._user._call(
            "POST", self.url, json={"name": name, "description": description}
        )
        return RestOrganization(body["handle"], self._user)

    async def open(self, handle: Handle) -> RestOrganization:
        body = await self._user._call("GET", f"{self.url}/{_segment(handle)}")
        return RestOrganization(body["handle"], self._user)

    async def delete(self, handle: Handle) -> None:
        await self._user._call("DELETE", f"{self.url}/{_segment(handle)}")


class RestUser(User[RestProject, RestOrganization]):
    """An authenticated session against the KIPR REST API."""

    def __init__(self, token: str, handle: Handle, client: RestClient) -> None:
        self._token = token
        self._handle = handle
        self._client = client
        self._logged_out = False
        self._projects = RestProjects(self, self, "/v1/user/projects")
        self._organizations = RestOrganizations(self)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def client(self) -> RestClient:
        return self._client

    @property
    def projects(self) -> RestProjects:
        return self._projects

    @property
    def organizations(self) -> RestOrganizations:
        return self._organizations

    async def _call(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._client._http.call(method, path, token=self._token, **kwargs)

    async def _release(self, lease: str) -> None:
        # The service drops a session's leases when it ends
        if self._logged_out:
            return
        await self._call("DELETE", f"/v1/leases/{_segment(lease)}")

    async def name(self) -> str:
        return (await self._call("GET", "/v1/user"))["name"]

    async def email(self) -> str:
        return (await self._call("GET", "/v1/user"))["email"]

    async def set_email(self, email: str) -> None:
        await self._call("PUT", "/v1/user/email", json={"email": email})

    async def logout(self) -> None:
        await self._call("DELETE", "/v1/sessions/current")
        self._logged_out = True
        logger.info(f"User {self._handle} logged out")


class RestClient(Client[RestUser]):
    """Client for the KIPR REST API.

    Args:
        url: Base URL; defaults to KIPR_BASE_URL or DEFAULT_URL
        settings: Full client settings (url overrides settings.base_url)
        transport: Optional httpx transport, e.g. httpx.ASGITransport for tests
    """

    DEFAULT_URL = DEFAULT_URL

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or ClientSettings()
        if url is not None:
            settings = settings.model_copy(update={"base_url": url})
        self._settings = settings
        self._http = HttpTransport(settings, transport=transport)

    @property
    def url(self) -> str:
        return self._settings.base_url

    async def login(self, username: str, password: str) -> RestUser:
        body = await self._http.call(
            "POST", "/v1/sessions", json={"username": username, "password": password}
        )
        logger.info(f"User {username} logged in to {self.url}")
        return RestUser(body["token"], body["user"]["handle"], self)

    async def register(self, username: str, password: str, email: str) -> RestUser:
        body = await self._http.call(
            "POST",
            "/v1/users",
            json={"username": username, "password": password, "email": email},
        )
        return RestUser(body["token"], body["user"]["handle"], self)

    async def close(self) -> None:
        await self._http.close()
