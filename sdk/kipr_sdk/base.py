"""
Abstract contracts for KIPR API clients.

This module defines one abstract class per entity (File, Version, Project,
User, Organization, Client) plus the sub-collections hanging off them.
Every backend provides one concrete class per contract, and its collections
return the backend's own concrete entity types.

Navigation:
    Client.login -> User
    User.projects / Organization.projects -> Project
    Project.versions -> Version
    Version.files -> File

Invariants:
    - list() returns Briefs; open()/create() return opened entities
    - brief.open() is equivalent to collection.open(brief.handle)
    - Opened File, Version and Project objects hold a lease and must be
      closed exactly once; any later call raises InvalidStateError
    - Project.versions.list() is HEAD first

How to change safely:
    - Contract changes require updating every backend
    - Add new operations with a default implementation where possible
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, List, Optional, TypeVar

from .errors import InvalidStateError, NotFoundError

if TYPE_CHECKING:
    from .brief import (
        FileBrief,
        OrganizationBrief,
        ProjectBrief,
        UserBrief,
        VersionBrief,
    )

logger = logging.getLogger(__name__)

Handle = str

F = TypeVar("F", bound="File")
V = TypeVar("V", bound="Version")
P = TypeVar("P", bound="Project")
U = TypeVar("U", bound="User")
O = TypeVar("O", bound="Organization")


class Role(str, Enum):
    """Organization membership roles."""

    ADMINISTRATOR = "administrator"
    MEMBER = "member"


class OwnerKind(str, Enum):
    """Kinds of entity that can own a project."""

    USER = "user"
    ORGANIZATION = "organization"


class Resource(ABC):
    """An opened entity holding a lease on a remote resource.

    Subclasses implement _release(); close() guarantees it runs at most once.
    """

    resource_type = "resource"

    def __init__(self) -> None:
        self._closed = False

    @property
    @abstractmethod
    def handle(self) -> Handle:
        """The entity's UUID."""
        ...

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise InvalidStateError(
                f"{self.resource_type} {self.handle} is closed",
                resource_type=self.resource_type,
                resource_id=self.handle,
            )

    async def close(self) -> None:
        """Release the lease. Must be called exactly once.

        If the release fails the entity stays open, so close() can be retried.
        """
        self._ensure_open()
        logger.debug(f"Closing {self.resource_type} {self.handle}")
        await self._release()
        self._closed = True

    @abstractmethod
    async def _release(self) -> None:
        ...

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args: Any) -> None:
        if not self._closed:
            await self.close()


class File(Resource):
    """A path-addressable unit of text content scoped to a Version."""

    resource_type = "file"

    @property
    @abstractmethod
    def version(self) -> Version:
        """The Version this File belongs to."""
        ...

    @abstractmethod
    async def path(self) -> str:
        """The current path of the File ('/' is the project root)."""
        ...

    @abstractmethod
    async def move(self, path: str) -> None:
        """Move the File to a new path within its Version.

        Raises:
            ConflictError: If another file already uses the path
        """
        ...

    @abstractmethod
    async def read(self) -> str:
        """Read the full contents of the File."""
        ...

    @abstractmethod
    async def update(self, contents: str, expected_revision: Optional[int] = None) -> int:
        """Replace the full contents of the File.

        Args:
            contents: The new contents
            expected_revision: Fail unless the stored revision matches

        Returns:
            The new revision

        Raises:
            ConflictError: If expected_revision is stale
        """
        ...

    @abstractmethod
    async def revision(self) -> int:
        """The current revision; increases on every update or move."""
        ...


class Files(ABC, Generic[F]):
    """File-related methods of a Version."""

    @abstractmethod
    async def list(self) -> List[FileBrief]:
        """Briefs for every file in the version, sorted by path."""
        ...

    @abstractmethod
    async def create(self, path: str) -> F:
        """Create an empty file at path and return it opened.

        Raises:
            ConflictError: If path already exists in this version
        """
        ...

    @abstractmethod
    async def open(self, handle: Handle) -> F:
        """Open an existing file of this version.

        Raises:
            NotFoundError: If handle does not belong to this version
        """
        ...

    @abstractmethod
    async def lookup(self, path: str) -> FileBrief:
        """Resolve a path to a File Brief.

        Raises:
            NotFoundError: If no file of this version has that path
        """
        ...


class Version(Resource, Generic[F]):
    """A snapshot of a Project's file tree."""

    resource_type = "version"

    @property
    @abstractmethod
    def project(self) -> Project:
        ...

    @property
    @abstractmethod
    def files(self) -> Files[F]:
        ...

    @abstractmethod
    async def name(self) -> str:
        ...

    @abstractmethod
    async def description(self) -> Optional[str]:
        ...


class Versions(ABC, Generic[V]):
    """Version-related methods of a Project."""

    @abstractmethod
    async def list(self) -> List[VersionBrief]:
        """Briefs for every version, in descending order; index 0 is HEAD."""
        ...

    @abstractmethod
    async def create(self, name: str, description: Optional[str] = None) -> V:
        """Snapshot HEAD into a new version, push it as HEAD, return it opened."""
        ...

    @abstractmethod
    async def restore(
        self,
        handle: Handle,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> V:
        """Push a copy of a historical version as the new HEAD.

        The referenced version is never modified. Name and description
        default to those of the referenced version.
        """
        ...

    @abstractmethod
    async def open(self, handle: Handle) -> V:
        """Open any version in the project's history."""
        ...

    async def head(self) -> VersionBrief:
        """Brief of the current HEAD.

        Raises:
            NotFoundError: If the project has no versions yet
        """
        briefs = await self.list()
        if not briefs:
            raise NotFoundError("Project has no versions", resource_type="version")
        return briefs[0]


class Project(Resource, Generic[V]):
    """A named container holding a history of Versions."""

    resource_type = "project"

    @property
    @abstractmethod
    def owner(self) -> Any:
        """The User or Organization whose projects collection opened this."""
        ...

    @property
    @abstractmethod
    def versions(self) -> Versions[V]:
        ...

    @abstractmethod
    async def name(self) -> str:
        ...


class Projects(ABC, Generic[P]):
    """Project-related methods of a User or Organization."""

    @abstractmethod
    async def list(self) -> List[ProjectBrief]:
        ...

    @abstractmethod
    async def create(self, name: str) -> P:
        """Create a project and return it opened.

        Raises:
            ConflictError: If the owner already has a project with that name
        """
        ...

    @abstractmethod
    async def open(self, handle: Handle) -> P:
        ...

    @abstractmethod
    async def delete(self, handle: Handle) -> None:
        """Delete a project with all of its versions and files. Not reversible."""
        ...


class Users(ABC):
    """Membership methods of an Organization."""

    @abstractmethod
    async def list(self) -> List[UserBrief]:
        ...

    @abstractmethod
    async def add(self, handle: Handle, role: Role = Role.MEMBER) -> None:
        """Add a user to the organization.

        Raises:
            PermissionDeniedError: If the acting user is not an administrator
        """
        ...

    @abstractmethod
    async def remove(self, handle: Handle) -> None:
        """Remove a user from the organization.

        Raises:
            PermissionDeniedError: If the acting user is not an administrator
        """
        ...


class Organization(ABC, Generic[P]):
    """A named group owning projects and containing member users."""

    @property
    @abstractmethod
    def handle(self) -> Handle:
        ...

    @property
    @abstractmethod
    def users(self) -> Users:
        ...

    @property
    @abstractmethod
    def projects(self) -> Projects[P]:
        ...

    @abstractmethod
    async def name(self) -> str:
        ...

    @abstractmethod
    async def description(self) -> Optional[str]:
        ...


class Organizations(ABC, Generic[O]):
    """Organization-related methods of a User."""

    @abstractmethod
    async def list(self) -> List[OrganizationBrief]:
        """Briefs for every organization the user belongs to."""
        ...

    @abstractmethod
    async def create(self, name: str, description: Optional[str] = None) -> O:
        """Create an organization; the creating user becomes its administrator."""
        ...

    @abstractmethod
    async def open(self, handle: Handle) -> O:
        ...

    @abstractmethod
    async def delete(self, handle: Handle) -> None:
        """Delete an organization including all of its projects. Not reversible.

        Raises:
            PermissionDeniedError: If the acting user is not an administrator
        """
        ...


class User(ABC, Generic[P, O]):
    """An authenticated user session."""

    @property
    @abstractmethod
    def handle(self) -> Handle:
        ...

    @property
    @abstractmethod
    def projects(self) -> Projects[P]:
        ...

    @property
    @abstractmethod
    def organizations(self) -> Organizations[O]:
        ...

    @abstractmethod
    async def name(self) -> str:
        ...

    @abstractmethod
    async def email(self) -> str:
        ...

    @abstractmethod
    async def set_email(self, email: str) -> None:
        """Update the user's email address.

        Raises:
            ValidationError: If the address is malformed
        """
        ...

    @abstractmethod
    async def logout(self) -> None:
        """End the session. The User object is unusable afterwards.

        Leases held by entities opened through this session are released
        with it; closing those entities afterwards succeeds without a call
        to the backend.
        """
        ...


class Client(ABC, Generic[U]):
    """Entry point to a KIPR backend."""

    @abstractmethod
    async def login(self, username: str, password: str) -> U:
        """Log in, providing access to the user's resources.

        Raises:
            AuthenticationError: If the credentials are rejected
        """
        ...

    @abstractmethod
    async def register(self, username: str, password: str, email: str) -> U:
        """Create an account and log into it.

        Raises:
            ConflictError: If the username is taken
            ValidationError: If the username or email is malformed
        """
        ...

    async def close(self) -> None:
        """Release client-wide resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
