"""
In-memory KIPR backend.

This module provides a complete backend that talks to a MemoryStore in the
same process. Useful for:
- Unit tests that need KIPR behavior without a service
- Local development and demos
- Verifying the REST backend against identical semantics

Every opened File, Version and Project acquires a lease in the store and
releases it on close(). All data is lost on process exit.

Example:
    >>> client = MemoryClient()
    >>> user = await client.register("alice", "secret", "alice@example.com")
    >>> async with await user.projects.create("robot-code") as project:
    ...     version = await project.versions.create("v1")
"""

from __future__ import annotations

import logging
from typing import List, Optional

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
from .store import Lease, MemoryStore

logger = logging.getLogger(__name__)


class MemoryFile(File):
    """A File backed by a MemoryStore record."""

    def __init__(self, handle: Handle, version: MemoryVersion, lease: Lease) -> None:
        super().__init__()
        self._handle = handle
        self._version = version
        self._lease = lease

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def version(self) -> MemoryVersion:
        return self._version

    @property
    def _scope(self) -> tuple:
        return (self._version.project.handle, self._version.handle, self._handle)

    def _record(self):
        self._ensure_open()
        project, version, handle = self._scope
        return self._version._store.get_file(self._version._actor(), project, version, handle)

    async def path(self) -> str:
        return self._record().path

    async def move(self, path: str) -> None:
        self._ensure_open()
        project, version, handle = self._scope
        self._version._store.move_file(self._version._actor(), project, version, handle, path)

    async def read(self) -> str:
        return self._record().contents

    async def update(self, contents: str, expected_revision: Optional[int] = None) -> int:
        self._ensure_open()
        project, version, handle = self._scope
        record = self._version._store.update_file(
            self._version._actor(), project, version, handle, contents, expected_revision
        )
        return record.revision

    async def revision(self) -> int:
        return self._record().revision

    async def _release(self) -> None:
        await self._version._user._release(self._lease)


class MemoryFiles(Files[MemoryFile]):
    def __init__(self, version: MemoryVersion) -> None:
        self._version = version

    def _args(self) -> tuple:
        self._version._ensure_open()
        return (self._version._actor(), self._version.project.handle, self._version.handle)

    def _opened(self, handle: Handle) -> MemoryFile:
        lease = self._version._user._acquire("file", handle)
        return MemoryFile(handle, self._version, lease)

    async def list(self) -> List[FileBrief]:
        store = self._version._store
        return [
            FileBrief(handle=r.handle, path=r.path, revision=r.revision, version=self._version)
            for r in store.list_files(*self._args())
        ]

    async def create(self, path: str) -> MemoryFile:
        record = self._version._store.create_file(*self._args(), path)
        return self._opened(record.handle)

    async def open(self, handle: Handle) -> MemoryFile:
        record = self._version._store.get_file(*self._args(), handle)
        return self._opened(record.handle)

    async def lookup(self, path: str) -> FileBrief:
        record = self._version._store.find_file(*self._args(), path)
        return FileBrief(
            handle=record.handle, path=record.path, revision=record.revision, version=self._version
        )


class MemoryVersion(Version[MemoryFile]):
    def __init__(self, handle: Handle, project: MemoryProject, lease: Lease) -> None:
        super().__init__()
        self._handle = handle
        self._project = project
        self._lease = lease
        self._files = MemoryFiles(self)
        self._user = project._user
        self._store = project._store

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def project(self) -> MemoryProject:
        return self._project

    @property
    def files(self) -> MemoryFiles:
        return self._files

    def _actor(self) -> Handle:
        return self._user._actor()

    def _record(self):
        self._ensure_open()
        return self._store.get_version(self._actor(), self._project.handle, self._handle)

    async def name(self) -> str:
        return self._record().name

    async def description(self) -> Optional[str]:
        return self._record().description

    async def _release(self) -> None:
        await self._user._release(self._lease)


class MemoryVersions(Versions[MemoryVersion]):
    def __init__(self, project: MemoryProject) -> None:
        self._project = project

    def _args(self) -> tuple:
        self._project._ensure_open()
        return (self._project._actor(), self._project.handle)

    def _opened(self, handle: Handle) -> MemoryVersion:
        lease = self._project._user._acquire("version", handle)
        return MemoryVersion(handle, self._project, lease)

    async def list(self) -> List[VersionBrief]:
        return [
            VersionBrief(
                handle=r.handle,
                name=r.name,
                description=r.description,
                created_at=r.created_at,
                project=self._project,
            )
            for r in self._project._store.list_versions(*self._args())
        ]

    async def create(self, name: str, description: Optional[str] = None) -> MemoryVersion:
        record = self._project._store.create_version(*self._args(), name, description)
        return self._opened(record.handle)

    async def restore(
        self,
        handle: Handle,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> MemoryVersion:
        record = self._project._store.restore_version(*self._args(), handle, name, description)
        return self._opened(record.handle)

    async def open(self, handle: Handle) -> MemoryVersion:
        record = self._project._store.get_version(*self._args(), handle)
        return self._opened(record.handle)


class MemoryProject(Project[MemoryVersion]):
    def __init__(self, handle: Handle, owner, user: MemoryUser, lease: Lease) -> None:
        super().__init__()
        self._handle = handle
        self._owner = owner
        self._user = user
        self._lease = lease
        self._store = user._store
        self._versions = MemoryVersions(self)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def owner(self):
        return self._owner

    @property
    def versions(self) -> MemoryVersions:
        return self._versions

    def _actor(self) -> Handle:
        return self._user._actor()

    async def name(self) -> str:
        self._ensure_open()
        return self._store.get_project(self._actor(), self._handle).name

    async def _release(self) -> None:
        await self._user._release(self._lease)


class MemoryProjects(Projects[MemoryProject]):
    """Projects owned by a user or by an organization."""

    def __init__(self, owner, user: MemoryUser, owner_kind: OwnerKind) -> None:
        self._owner = owner
        self._user = user
        self._owner_kind = owner_kind

    def _args(self) -> tuple:
        return (self._user._actor(), self._owner_kind, self._owner.handle)

    def _opened(self, handle: Handle) -> MemoryProject:
        lease = self._user._acquire("project", handle)
        return MemoryProject(handle, self._owner, self._user, lease)

    async def list(self) -> List[ProjectBrief]:
        return [
            ProjectBrief(
                handle=r.handle,
                name=r.name,
                owner_kind=r.owner_kind,
                owner_handle=r.owner_handle,
                owner=self._owner,
            )
            for r in self._user._store.list_projects(*self._args())
        ]

    async def create(self, name: str) -> MemoryProject:
        record = self._user._store.create_project(*self._args(), name)
        return self._opened(record.handle)

    async def open(self, handle: Handle) -> MemoryProject:
        record = self._user._store.get_owned_project(*self._args(), handle)
        return self._opened(record.handle)

    async def delete(self, handle: Handle) -> None:
        self._user._store.delete_project(*self._args(), handle)


class MemoryUsers(Users):
    def __init__(self, organization: MemoryOrganization) -> None:
        self._organization = organization

    @property
    def _store(self) -> MemoryStore:
        return self._organization._user._store

    def _actor(self) -> Handle:
        return self._organization._user._actor()

    async def list(self) -> List[UserBrief]:
        return [
            UserBrief(handle=u.handle, name=u.name, role=role, organization=self._organization)
            for u, role in self._store.list_members(self._actor(), self._organization.handle)
        ]

    async def add(self, handle: Handle, role: Role = Role.MEMBER) -> None:
        self._store.add_member(self._actor(), self._organization.handle, handle, role)

    async def remove(self, handle: Handle) -> None:
        self._store.remove_member(self._actor(), self._organization.handle, handle)


class MemoryOrganization(Organization[MemoryProject]):
    def __init__(self, handle: Handle, user: MemoryUser) -> None:
        self._handle = handle
        self._user = user
        self._users = MemoryUsers(self)
        self._projects = MemoryProjects(self, user, OwnerKind.ORGANIZATION)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def users(self) -> MemoryUsers:
        return self._users

    @property
    def projects(self) -> MemoryProjects:
        return self._projects

    def _record(self):
        return self._user._store.get_organization(self._user._actor(), self._handle)

    async def name(self) -> str:
        return self._record().name

    async def description(self) -> Optional[str]:
        return self._record().description


class MemoryOrganizations(Organizations[MemoryOrganization]):
    def __init__(self, user: MemoryUser) -> None:
        self._user = user

    async def list(self) -> List[OrganizationBrief]:
        return [
            OrganizationBrief(
                handle=org.handle,
                name=org.name,
                description=org.description,
                role=role,
                user=self._user,
            )
            for org, role in self._user._store.list_organizations(self._user._actor())
        ]

    async def create(self, name: str, description: Optional[str] = None) -> MemoryOrganization:
        record = self._user._store.create_organization(self._user._actor(), name, description)
        return MemoryOrganization(record.handle, self._user)

    async def open(self, handle: Handle) -> MemoryOrganization:
        record = self._user._store.get_organization(self._user._actor(), handle)
        return MemoryOrganization(record.handle, self._user)

    async def delete(self, handle: Handle) -> None:
        self._user._store.delete_organization(self._user._actor(), handle)


class MemoryUser(User[MemoryProject, MemoryOrganization]):
    """A user session against a MemoryStore."""

    def __init__(self, client: MemoryClient, handle: Handle, token: str) -> None:
        self._client = client
        self._handle = handle
        self._token = token
        self._store = client.store
        self._logged_out = False
        self._projects = MemoryProjects(self, self, OwnerKind.USER)
        self._organizations = MemoryOrganizations(self)

    @property
    def handle(self) -> Handle:
        return self._handle

    @property
    def client(self) -> MemoryClient:
        return self._client

    @property
    def projects(self) -> MemoryProjects:
        return self._projects

    @property
    def organizations(self) -> MemoryOrganizations:
        return self._organizations

    def _actor(self) -> Handle:
        return self._store.resolve_session(self._token).handle

    def _acquire(self, resource_type: str, handle: Handle) -> Lease:
        return self._store.acquire_lease(self._handle, resource_type, handle, session=self._token)

    async def _release(self, lease: Lease) -> None:
        # logout() already dropped every lease of this session
        if self._logged_out:
            return
        self._store.release_lease(self._handle, lease.lease_id)

    async def name(self) -> str:
        return self._store.get_user(self._actor()).name

    async def email(self) -> str:
        return self._store.get_user(self._actor()).email

    async def set_email(self, email: str) -> None:
        self._store.set_email(self._actor(), email)

    async def logout(self) -> None:
        self._store.close_session(self._token)
        self._logged_out = True
        logger.info(f"User {self._handle} logged out")


class MemoryClient(Client[MemoryUser]):
    """Client for an in-process MemoryStore.

    Several clients may share one store to simulate several users.
    """

    def __init__(self, store: Optional[MemoryStore] = None) -> None:
        self.store = store if store is not None else MemoryStore()

    async def login(self, username: str, password: str) -> MemoryUser:
        record = self.store.authenticate(username, password)
        token = self.store.open_session(record.handle)
        logger.info(f"User {record.name} logged in")
        return MemoryUser(self, record.handle, token)

    async def register(self, username: str, password: str, email: str) -> MemoryUser:
        record = self.store.create_user(username, password, email)
        token = self.store.open_session(record.handle)
        return MemoryUser(self, record.handle, token)
