"""
API routes for the KIPR reference service.

Each route authenticates the bearer token, runs one MemoryStore operation on
behalf of the session's user, and renders the result as JSON. Opening an
entity returns a lease that the client releases with DELETE /v1/leases/{id}.
"""

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Header, Request, Response
from pydantic import BaseModel, Field

from kipr_sdk import __version__
from kipr_sdk.base import OwnerKind, Role
from kipr_sdk.errors import AuthenticationError, ValidationError
from kipr_sdk.store import (
    FileRecord,
    MemoryStore,
    OrganizationRecord,
    ProjectRecord,
    UserRecord,
    VersionRecord,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["KIPR API"])


# --- Request Models ---


class RegisterRequest(BaseModel):
    username: str
    password: str
    email: str


class LoginRequest(BaseModel):
    username: str
    password: str


class EmailRequest(BaseModel):
    email: str


class NameRequest(BaseModel):
    name: str


class VersionRequest(BaseModel):
    name: str
    description: str | None = None


class RestoreRequest(BaseModel):
    name: str | None = Field(None, description="Defaults to the restored version's name")
    description: str | None = None


class OrganizationRequest(BaseModel):
    name: str
    description: str | None = None


class MemberRequest(BaseModel):
    role: Role = Role.MEMBER


class PathRequest(BaseModel):
    path: str


class ContentsRequest(BaseModel):
    contents: str


# --- Views ---


def user_view(record: UserRecord) -> dict[str, Any]:
    return {"handle": record.handle, "name": record.name, "email": record.email}


def project_view(record: ProjectRecord) -> dict[str, Any]:
    return {
        "handle": record.handle,
        "name": record.name,
        "owner": {"kind": record.owner_kind.value, "handle": record.owner_handle},
    }


def version_view(record: VersionRecord) -> dict[str, Any]:
    return {
        "handle": record.handle,
        "name": record.name,
        "description": record.description,
        "created_at": record.created_at,
    }


def file_view(record: FileRecord) -> dict[str, Any]:
    return {"handle": record.handle, "path": record.path, "revision": record.revision}


def organization_view(record: OrganizationRecord, role: Role) -> dict[str, Any]:
    return {
        "handle": record.handle,
        "name": record.name,
        "description": record.description,
        "role": role.value,
    }


def etag(revision: int) -> str:
    return f'"{revision}"'


def parse_etag(value: str) -> int:
    """Parse an If-Match value produced by etag()."""
    raw = value.strip()
    if raw.startswith("W/"):
        raw = raw[2:]
    raw = raw.strip('"')
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"Invalid If-Match header: {value}", field_name="If-Match", value=value)


# --- Dependencies ---


@dataclass
class Session:
    token: str
    user: UserRecord

    @property
    def actor(self) -> str:
        return self.user.handle


def get_store(request: Request) -> MemoryStore:
    """Get the store from app state."""
    return request.app.state.store


def get_session(
    authorization: str | None = Header(None),
    store: MemoryStore = Depends(get_store),
) -> Session:
    """Resolve the bearer token to the acting user."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Missing bearer token")
    token = token.strip()
    return Session(token=token, user=store.resolve_session(token))


def no_content() -> Response:
    return Response(status_code=204)


# --- Users and Sessions ---


@router.post("/users", status_code=201)
async def register(body: RegisterRequest, store: MemoryStore = Depends(get_store)) -> dict[str, Any]:
    record = store.create_user(body.username, body.password, body.email)
    return {"token": store.open_session(record.handle), "user": user_view(record)}


@router.post("/sessions")
async def login(body: LoginRequest, store: MemoryStore = Depends(get_store)) -> dict[str, Any]:
    record = store.authenticate(body.username, body.password)
    return {"token": store.open_session(record.handle), "user": user_view(record)}


@router.delete("/sessions/current")
async def logout(
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.close_session(session.token)
    return no_content()


@router.get("/user")
async def get_user(session: Session = Depends(get_session)) -> dict[str, Any]:
    return user_view(session.user)


@router.put("/user/email")
async def set_email(
    body: EmailRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return user_view(store.set_email(session.actor, body.email))


# --- Projects by owner ---


def _list_projects(store: MemoryStore, session: Session, kind: OwnerKind, owner: str) -> dict:
    return {"projects": [project_view(p) for p in store.list_projects(session.actor, kind, owner)]}


def _create_project(store: MemoryStore, session: Session, kind: OwnerKind, owner: str, name: str):
    record = store.create_project(session.actor, kind, owner, name)
    lease = store.acquire_lease(session.actor, "project", record.handle, session=session.token)
    return {"lease": lease.lease_id, "project": project_view(record)}


def _open_project(store: MemoryStore, session: Session, kind: OwnerKind, owner: str, handle: str):
    record = store.get_owned_project(session.actor, kind, owner, handle)
    lease = store.acquire_lease(session.actor, "project", record.handle, session=session.token)
    return {"lease": lease.lease_id, "project": project_view(record)}


@router.get("/user/projects")
async def list_user_projects(
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _list_projects(store, session, OwnerKind.USER, session.actor)


@router.post("/user/projects", status_code=201)
async def create_user_project(
    body: NameRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _create_project(store, session, OwnerKind.USER, session.actor, body.name)


@router.post("/user/projects/{project}/leases", status_code=201)
async def open_user_project(
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _open_project(store, session, OwnerKind.USER, session.actor, project)


@router.delete("/user/projects/{project}")
async def delete_user_project(
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.delete_project(session.actor, OwnerKind.USER, session.actor, project)
    return no_content()


@router.get("/organizations/{organization}/projects")
async def list_organization_projects(
    organization: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _list_projects(store, session, OwnerKind.ORGANIZATION, organization)


@router.post("/organizations/{organization}/projects", status_code=201)
async def create_organization_project(
    organization: str,
    body: NameRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _create_project(store, session, OwnerKind.ORGANIZATION, organization, body.name)


@router.post("/organizations/{organization}/projects/{project}/leases", status_code=201)
async def open_organization_project(
    organization: str,
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return _open_project(store, session, OwnerKind.ORGANIZATION, organization, project)


@router.delete("/organizations/{organization}/projects/{project}")
async def delete_organization_project(
    organization: str,
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.delete_project(session.actor, OwnerKind.ORGANIZATION, organization, project)
    return no_content()


# --- Organizations ---


@router.get("/user/organizations")
async def list_organizations(
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return {
        "organizations": [
            organization_view(org, role) for org, role in store.list_organizations(session.actor)
        ]
    }


@router.post("/user/organizations", status_code=201)
async def create_organization(
    body: OrganizationRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.create_organization(session.actor, body.name, body.description)
    return organization_view(record, Role.ADMINISTRATOR)


@router.get("/user/organizations/{organization}")
async def get_organization(
    organization: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.get_organization(session.actor, organization)
    return organization_view(record, record.members[session.actor])


@router.delete("/user/organizations/{organization}")
async def delete_organization(
    organization: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.delete_organization(session.actor, organization)
    return no_content()


@router.get("/organizations/{organization}/users")
async def list_members(
    organization: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return {
        "users": [
            {"handle": user.handle, "name": user.name, "role": role.value}
            for user, role in store.list_members(session.actor, organization)
        ]
    }


@router.put("/organizations/{organization}/users/{user}")
async def add_member(
    organization: str,
    user: str,
    body: MemberRequest | None = None,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    role = body.role if body is not None else Role.MEMBER
    store.add_member(session.actor, organization, user, role)
    return no_content()


@router.delete("/organizations/{organization}/users/{user}")
async def remove_member(
    organization: str,
    user: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.remove_member(session.actor, organization, user)
    return no_content()


# --- Projects and Versions ---


@router.get("/projects/{project}")
async def get_project(
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return project_view(store.get_project(session.actor, project))


@router.get("/projects/{project}/versions")
async def list_versions(
    project: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return {"versions": [version_view(v) for v in store.list_versions(session.actor, project)]}


def _opened_version(store: MemoryStore, session: Session, record: VersionRecord) -> dict:
    lease = store.acquire_lease(session.actor, "version", record.handle, session=session.token)
    return {"lease": lease.lease_id, "version": version_view(record)}


@router.post("/projects/{project}/versions", status_code=201)
async def create_version(
    project: str,
    body: VersionRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.create_version(session.actor, project, body.name, body.description)
    return _opened_version(store, session, record)


@router.get("/projects/{project}/versions/{version}")
async def get_version(
    project: str,
    version: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return version_view(store.get_version(session.actor, project, version))


@router.post("/projects/{project}/versions/{version}/leases", status_code=201)
async def open_version(
    project: str,
    version: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.get_version(session.actor, project, version)
    return _opened_version(store, session, record)


@router.post("/projects/{project}/versions/{version}/restore", status_code=201)
async def restore_version(
    project: str,
    version: str,
    body: RestoreRequest | None = None,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    body = body or RestoreRequest()
    record = store.restore_version(session.actor, project, version, body.name, body.description)
    return _opened_version(store, session, record)


# --- Files ---


def _opened_file(store: MemoryStore, session: Session, record: FileRecord) -> dict:
    lease = store.acquire_lease(session.actor, "file", record.handle, session=session.token)
    return {"lease": lease.lease_id, "file": file_view(record)}


@router.get("/projects/{project}/versions/{version}/files")
async def list_files(
    project: str,
    version: str,
    path: str | None = None,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    if path is not None:
        return {"files": [file_view(store.find_file(session.actor, project, version, path))]}
    return {"files": [file_view(f) for f in store.list_files(session.actor, project, version)]}


@router.post("/projects/{project}/versions/{version}/files", status_code=201)
async def create_file(
    project: str,
    version: str,
    body: PathRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.create_file(session.actor, project, version, body.path)
    return _opened_file(store, session, record)


@router.get("/projects/{project}/versions/{version}/files/{file}")
async def get_file(
    project: str,
    version: str,
    file: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return file_view(store.get_file(session.actor, project, version, file))


@router.post("/projects/{project}/versions/{version}/files/{file}/leases", status_code=201)
async def open_file(
    project: str,
    version: str,
    file: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.get_file(session.actor, project, version, file)
    return _opened_file(store, session, record)


@router.get("/projects/{project}/versions/{version}/files/{file}/contents")
async def read_file(
    project: str,
    version: str,
    file: str,
    response: Response,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    record = store.get_file(session.actor, project, version, file)
    response.headers["ETag"] = etag(record.revision)
    return {"contents": record.contents, "revision": record.revision}


@router.put("/projects/{project}/versions/{version}/files/{file}/contents")
async def update_file(
    project: str,
    version: str,
    file: str,
    body: ContentsRequest,
    response: Response,
    if_match: str | None = Header(None),
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    expected = parse_etag(if_match) if if_match else None
    record = store.update_file(session.actor, project, version, file, body.contents, expected)
    response.headers["ETag"] = etag(record.revision)
    return {"revision": record.revision}


@router.put("/projects/{project}/versions/{version}/files/{file}/path")
async def move_file(
    project: str,
    version: str,
    file: str,
    body: PathRequest,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> dict[str, Any]:
    return file_view(store.move_file(session.actor, project, version, file, body.path))


# --- Leases and Health ---


@router.delete("/leases/{lease}")
async def release_lease(
    lease: str,
    session: Session = Depends(get_session),
    store: MemoryStore = Depends(get_store),
) -> Response:
    store.release_lease(session.actor, lease)
    return no_content()


@router.get("/health")
async def health() -> dict[str, Any]:
    return {"healthy": True, "version": __version__}
