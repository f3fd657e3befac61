"""
Brief metadata records.

A Brief is a point-in-time, read-only snapshot of an entity returned by
list(). It carries display fields plus a back-reference to the object whose
collection produced it, and can be promoted into an opened entity with
open(). Briefs never refresh; open() always fetches current state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from .base import Handle, OwnerKind, Role

if TYPE_CHECKING:
    from .base import Organization, Project, User, Version


@dataclass(frozen=True)
class FileBrief:
    """File metadata.

    Attributes:
        handle: The file's UUID
        path: The file's path when listed
        revision: The file's revision when listed
        version: The Version this file belongs to
    """

    handle: Handle
    path: str
    revision: int = 0
    version: Version = field(default=None, compare=False, repr=False)

    async def open(self) -> Any:
        return await self.version.files.open(self.handle)


@dataclass(frozen=True)
class VersionBrief:
    """Version metadata.

    Attributes:
        handle: The version's UUID
        name: User-defined name
        description: Optional user-defined description
        created_at: Creation time (Unix seconds)
        project: The Project this version belongs to
    """

    handle: Handle
    name: str
    description: Optional[str] = None
    created_at: float = 0.0
    project: Project = field(default=None, compare=False, repr=False)

    async def open(self) -> Any:
        return await self.project.versions.open(self.handle)

    async def restore(self, name: Optional[str] = None, description: Optional[str] = None) -> Any:
        """Push a copy of this version as the project's new HEAD."""
        return await self.project.versions.restore(self.handle, name, description)


@dataclass(frozen=True)
class ProjectBrief:
    """Project metadata.

    Attributes:
        handle: The project's UUID
        name: The project's name
        owner_kind: Whether a user or an organization owns the project
        owner_handle: UUID of the owning user or organization
        owner: The User or Organization whose collection listed it
    """

    handle: Handle
    name: str
    owner_kind: OwnerKind = OwnerKind.USER
    owner_handle: Optional[Handle] = None
    owner: Any = field(default=None, compare=False, repr=False)

    async def open(self) -> Any:
        return await self.owner.projects.open(self.handle)


@dataclass(frozen=True)
class OrganizationBrief:
    """Organization metadata, including the listing user's role."""

    handle: Handle
    name: str
    description: Optional[str] = None
    role: Role = Role.MEMBER
    user: User = field(default=None, compare=False, repr=False)

    async def open(self) -> Any:
        return await self.user.organizations.open(self.handle)


@dataclass(frozen=True)
class UserBrief:
    """Organization member metadata.

    There is no open(): a user session is only obtained through login.
    """

    handle: Handle
    name: str
    role: Role = Role.MEMBER
    organization: Organization = field(default=None, compare=False, repr=False)
