"""
Authoritative in-memory state for KIPR entities.

This module holds the entity records and every rule of the ownership model:
- Users, sessions and password checks
- Organizations and their administrator/member roles
- Projects owned by a user or an organization
- Append-only version history (HEAD first)
- Files addressed by path within a version
- Leases held by opened entities

It backs both the memory client backend and the reference REST service.

Invariants:
    - Every mutation completes without suspending, so a cancelled caller
      never observes a partial change
    - Only a project's HEAD version accepts writes
    - restore_version copies a version; the source is never modified
    - Deleting an organization deletes its projects, versions and files
    - Deleting a project or ending a session drops the leases tied to it
    - All data is lost on process exit

Thread safety:
    Not thread-safe. Use from a single event loop.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .base import OwnerKind, Role
from .errors import (
    AuthenticationError,
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
)
from .validate import normalize_path, validate_email, validate_name

logger = logging.getLogger(__name__)

DEFAULT_HASH_ITERATIONS = 100_000


def new_handle() -> str:
    return str(uuid.uuid4())


@dataclass
class UserRecord:
    handle: str
    name: str
    email: str
    password_salt: bytes = field(repr=False)
    password_hash: bytes = field(repr=False)


@dataclass
class OrganizationRecord:
    handle: str
    name: str
    description: Optional[str]
    members: Dict[str, Role] = field(default_factory=dict)


@dataclass
class ProjectRecord:
    handle: str
    name: str
    owner_kind: OwnerKind
    owner_handle: str
    # HEAD first
    versions: List[str] = field(default_factory=list)


@dataclass
class VersionRecord:
    handle: str
    project_handle: str
    name: str
    description: Optional[str]
    created_at: float
    # path -> file handle
    files: Dict[str, str] = field(default_factory=dict)


@dataclass
class FileRecord:
    handle: str
    version_handle: str
    path: str
    contents: str = ""
    revision: int = 0


@dataclass(frozen=True)
class Lease:
    """A lease held by an opened File, Version or Project."""

    lease_id: str
    resource_type: str
    resource_id: str
    actor: str
    acquired_at: float
    session: Optional[str] = None


class MemoryStore:
    """In-memory store implementing the KIPR ownership model.

    Every operation that acts on behalf of a user takes that user's handle
    as ``actor`` and checks access before touching data.

    Example:
        >>> store = MemoryStore()
        >>> alice = store.create_user("alice", "secret", "alice@example.com")
        >>> project = store.create_project(alice.handle, OwnerKind.USER, alice.handle, "robot-code")
        >>> version = store.create_version(alice.handle, project.handle, "v1")
    """

    def __init__(self, hash_iterations: int = DEFAULT_HASH_ITERATIONS) -> None:
        self.hash_iterations = hash_iterations
        self._users: Dict[str, UserRecord] = {}
        self._users_by_name: Dict[str, str] = {}
        self._sessions: Dict[str, str] = {}
        self._organizations: Dict[str, OrganizationRecord] = {}
        self._projects: Dict[str, ProjectRecord] = {}
        self._versions: Dict[str, VersionRecord] = {}
        self._files: Dict[str, FileRecord] = {}
        self._leases: Dict[str, Lease] = {}

    # --- Users and sessions ---

    def _hash_password(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self.hash_iterations)

    def create_user(self, name: str, password: str, email: str) -> UserRecord:
        """Create an account.

        Raises:
            ConflictError: If the username is taken
            ValidationError: If the username or email is malformed
        """
        name = validate_name(name, "username")
        email = validate_email(email)
        if name.lower() in self._users_by_name:
            raise ConflictError(f"Username '{name}' is taken", resource_type="user", key=name)

        salt = secrets.token_bytes(16)
        record = UserRecord(
            handle=new_handle(),
            name=name,
            email=email,
            password_salt=salt,
            password_hash=self._hash_password(password, salt),
        )
        self._users[record.handle] = record
        self._users_by_name[name.lower()] = record.handle
        logger.info(f"Created user {name} ({record.handle})")
        return record

    def authenticate(self, name: str, password: str) -> UserRecord:
        """Check credentials.

        Raises:
            AuthenticationError: For an unknown user or a wrong password alike
        """
        handle = self._users_by_name.get((name or "").strip().lower())
        record = self._users.get(handle) if handle else None
        if record is None:
            logger.warning("Rejected login attempt")
            raise AuthenticationError()

        candidate = self._hash_password(password, record.password_salt)
        if not hmac.compare_digest(candidate, record.password_hash):
            logger.warning("Rejected login attempt")
            raise AuthenticationError()
        return record

    def open_session(self, user_handle: str) -> str:
        self.get_user(user_handle)
        token = secrets.token_urlsafe(32)
        self._sessions[token] = user_handle
        return token

    def resolve_session(self, token: str) -> UserRecord:
        """Resolve a session token to its user.

        Raises:
            AuthenticationError: If the token is unknown or revoked
        """
        handle = self._sessions.get(token)
        if handle is None or handle not in self._users:
            raise AuthenticationError("Session is invalid or expired")
        return self._users[handle]

    def close_session(self, token: str) -> None:
        """End a session and release every lease acquired through it."""
        if self._sessions.pop(token, None) is None:
            raise AuthenticationError("Session is invalid or expired")
        released = self._drop_leases(lambda lease: lease.session == token)
        if released:
            logger.debug(f"Released {released} leases held by a closed session")

    def get_user(self, handle: str) -> UserRecord:
        record = self._users.get(handle)
        if record is None:
            raise NotFoundError(f"User {handle} not found", resource_type="user", resource_id=handle)
        return record

    def set_email(self, actor: str, email: str) -> UserRecord:
        record = self.get_user(actor)
        record.email = validate_email(email)
        return record

    # --- Organizations ---

    def list_organizations(self, actor: str) -> List[Tuple[OrganizationRecord, Role]]:
        """Organizations the actor belongs to, with the actor's role."""
        return sorted(
            (
                (org, org.members[actor])
                for org in self._organizations.values()
                if actor in org.members
            ),
            key=lambda pair: pair[0].name.lower(),
        )

    def create_organization(
        self,
        actor: str,
        name: str,
        description: Optional[str] = None,
    ) -> OrganizationRecord:
        self.get_user(actor)
        name = validate_name(name)
        if any(org.name.lower() == name.lower() for org in self._organizations.values()):
            raise ConflictError(
                f"Organization '{name}' already exists", resource_type="organization", key=name
            )

        record = OrganizationRecord(
            handle=new_handle(),
            name=name,
            description=description,
            members={actor: Role.ADMINISTRATOR},
        )
        self._organizations[record.handle] = record
        logger.info(f"Created organization {name} ({record.handle})")
        return record

    def get_organization(self, actor: str, handle: str) -> OrganizationRecord:
        """Look up an organization the actor belongs to.

        Raises:
            NotFoundError: If it does not exist or the actor is not a member
        """
        record = self._organizations.get(handle)
        if record is None or actor not in record.members:
            raise NotFoundError(
                f"Organization {handle} not found",
                resource_type="organization",
                resource_id=handle,
            )
        return record

    def _require_admin(self, actor: str, org: OrganizationRecord, action: str) -> None:
        if org.members.get(actor) != Role.ADMINISTRATOR:
            raise PermissionDeniedError(
                f"Only administrators may {action} in organization {org.name}",
                actor=actor,
                resource_id=org.handle,
                required_role=Role.ADMINISTRATOR.value,
            )

    def delete_organization(self, actor: str, handle: str) -> None:
        """Delete an organization and everything it owns."""
        org = self.get_organization(actor, handle)
        self._require_admin(actor, org, "delete the organization")

        owned = [
            p.handle
            for p in self._projects.values()
            if p.owner_kind == OwnerKind.ORGANIZATION and p.owner_handle == handle
        ]
        for project_handle in owned:
            self._drop_project(project_handle)
        del self._organizations[handle]
        logger.info(f"Deleted organization {org.name} ({handle}) and {len(owned)} projects")

    def list_members(self, actor: str, org_handle: str) -> List[Tuple[UserRecord, Role]]:
        org = self.get_organization(actor, org_handle)
        members = [(self._users[h], role) for h, role in org.members.items() if h in self._users]
        return sorted(members, key=lambda pair: pair[0].name.lower())

    def add_member(
        self,
        actor: str,
        org_handle: str,
        user_handle: str,
        role: Role = Role.MEMBER,
    ) -> None:
        org = self.get_organization(actor, org_handle)
        self._require_admin(actor, org, "add users")
        self.get_user(user_handle)
        if user_handle in org.members:
            raise ConflictError(
                f"User {user_handle} is already a member",
                resource_type="member",
                key=user_handle,
            )
        org.members[user_handle] = Role(role)
        logger.info(f"Added {user_handle} to organization {org.name} as {Role(role).value}")

    def remove_member(self, actor: str, org_handle: str, user_handle: str) -> None:
        org = self.get_organization(actor, org_handle)
        self._require_admin(actor, org, "remove users")
        if user_handle not in org.members:
            raise NotFoundError(
                f"User {user_handle} is not a member",
                resource_type="member",
                resource_id=user_handle,
            )
        admins = [h for h, role in org.members.items() if role == Role.ADMINISTRATOR]
        if admins == [user_handle]:
            raise ConflictError(
                "Cannot remove the last administrator",
                resource_type="member",
                key=user_handle,
            )
        del org.members[user_handle]
        logger.info(f"Removed {user_handle} from organization {org.name}")

    # --- Projects ---

    def _authorize_owner(
        self,
        actor: str,
        owner_kind: OwnerKind,
        owner_handle: str,
        admin_action: Optional[str] = None,
    ) -> None:
        owner_kind = OwnerKind(owner_kind)
        if owner_kind == OwnerKind.USER:
            self.get_user(actor)
            if owner_handle != actor:
                raise PermissionDeniedError(
                    "Users may only manage their own projects",
                    actor=actor,
                    resource_id=owner_handle,
                )
            return

        org = self.get_organization(actor, owner_handle)
        if admin_action:
            self._require_admin(actor, org, admin_action)

    def _can_access(self, actor: str, project: ProjectRecord) -> bool:
        if project.owner_kind == OwnerKind.USER:
            return project.owner_handle == actor
        org = self._organizations.get(project.owner_handle)
        return org is not None and actor in org.members

    def list_projects(
        self,
        actor: str,
        owner_kind: OwnerKind,
        owner_handle: str,
    ) -> List[ProjectRecord]:
        self._authorize_owner(actor, owner_kind, owner_handle)
        return sorted(
            (
                p
                for p in self._projects.values()
                if p.owner_kind == owner_kind and p.owner_handle == owner_handle
            ),
            key=lambda p: p.name.lower(),
        )

    def create_project(
        self,
        actor: str,
        owner_kind: OwnerKind,
        owner_handle: str,
        name: str,
    ) -> ProjectRecord:
        owner_kind = OwnerKind(owner_kind)
        self._authorize_owner(actor, owner_kind, owner_handle)
        name = validate_name(name)
        for p in self._projects.values():
            if (
                p.owner_kind == owner_kind
                and p.owner_handle == owner_handle
                and p.name.lower() == name.lower()
            ):
                raise ConflictError(
                    f"Project '{name}' already exists", resource_type="project", key=name
                )

        record = ProjectRecord(
            handle=new_handle(),
            name=name,
            owner_kind=owner_kind,
            owner_handle=owner_handle,
        )
        self._projects[record.handle] = record
        logger.info(f"Created project {name} ({record.handle}) for {owner_kind.value} {owner_handle}")
        return record

    def get_owned_project(
        self,
        actor: str,
        owner_kind: OwnerKind,
        owner_handle: str,
        handle: str,
    ) -> ProjectRecord:
        """Look up a project within one owner's collection."""
        self._authorize_owner(actor, owner_kind, owner_handle)
        record = self._projects.get(handle)
        if record is None or record.owner_kind != owner_kind or record.owner_handle != owner_handle:
            raise NotFoundError(
                f"Project {handle} not found", resource_type="project", resource_id=handle
            )
        return record

    def get_project(self, actor: str, handle: str) -> ProjectRecord:
        """Look up any project the actor can access."""
        record = self._projects.get(handle)
        if record is None or not self._can_access(actor, record):
            raise NotFoundError(
                f"Project {handle} not found", resource_type="project", resource_id=handle
            )
        return record

    def delete_project(
        self,
        actor: str,
        owner_kind: OwnerKind,
        owner_handle: str,
        handle: str,
    ) -> None:
        owner_kind = OwnerKind(owner_kind)
        record = self.get_owned_project(actor, owner_kind, owner_handle, handle)
        if owner_kind == OwnerKind.ORGANIZATION:
            self._authorize_owner(actor, owner_kind, owner_handle, admin_action="delete projects")
        self._drop_project(handle)
        logger.info(f"Deleted project {record.name} ({handle})")

    def _drop_project(self, handle: str) -> None:
        record = self._projects.pop(handle)
        dropped = {handle}
        for version_handle in record.versions:
            version = self._versions.pop(version_handle)
            dropped.add(version_handle)
            for file_handle in version.files.values():
                self._files.pop(file_handle, None)
                dropped.add(file_handle)
        self._drop_leases(lambda lease: lease.resource_id in dropped)

    # --- Versions ---

    def list_versions(self, actor: str, project_handle: str) -> List[VersionRecord]:
        """Versions of a project, HEAD first."""
        project = self.get_project(actor, project_handle)
        return [self._versions[h] for h in project.versions]

    def get_version(self, actor: str, project_handle: str, handle: str) -> VersionRecord:
        project = self.get_project(actor, project_handle)
        record = self._versions.get(handle)
        if record is None or record.project_handle != project.handle:
            raise NotFoundError(
                f"Version {handle} not found in project {project_handle}",
                resource_type="version",
                resource_id=handle,
            )
        return record

    def _push_version(
        self,
        project: ProjectRecord,
        name: str,
        description: Optional[str],
        source: Optional[VersionRecord],
    ) -> VersionRecord:
        record = VersionRecord(
            handle=new_handle(),
            project_handle=project.handle,
            name=name,
            description=description,
            created_at=time.time(),
        )
        if source is not None:
            for path, file_handle in source.files.items():
                original = self._files[file_handle]
                copy = FileRecord(
                    handle=new_handle(),
                    version_handle=record.handle,
                    path=path,
                    contents=original.contents,
                )
                self._files[copy.handle] = copy
                record.files[path] = copy.handle

        self._versions[record.handle] = record
        project.versions.insert(0, record.handle)
        return record

    def create_version(
        self,
        actor: str,
        project_handle: str,
        name: str,
        description: Optional[str] = None,
    ) -> VersionRecord:
        """Snapshot HEAD into a new version and push it as HEAD."""
        project = self.get_project(actor, project_handle)
        name = validate_name(name)
        head = self._versions[project.versions[0]] if project.versions else None
        record = self._push_version(project, name, description, head)
        logger.info(f"Created version {name} ({record.handle}) in project {project.name}")
        return record

    def restore_version(
        self,
        actor: str,
        project_handle: str,
        handle: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> VersionRecord:
        """Push a copy of a historical version as HEAD."""
        source = self.get_version(actor, project_handle, handle)
        project = self._projects[project_handle]
        name = validate_name(name) if name is not None else source.name
        if description is None:
            description = source.description
        record = self._push_version(project, name, description, source)
        logger.info(f"Restored version {source.handle} as {record.handle} in project {project.name}")
        return record

    def _ensure_head(self, version: VersionRecord) -> None:
        project = self._projects[version.project_handle]
        if project.versions[0] != version.handle:
            raise ConflictError(
                f"Version {version.handle} is not HEAD; history is read-only",
                resource_type="version",
                key=version.handle,
            )

    # --- Files ---

    def list_files(self, actor: str, project_handle: str, version_handle: str) -> List[FileRecord]:
        version = self.get_version(actor, project_handle, version_handle)
        return [self._files[version.files[path]] for path in sorted(version.files)]

    def get_file(
        self,
        actor: str,
        project_handle: str,
        version_handle: str,
        handle: str,
    ) -> FileRecord:
        version = self.get_version(actor, project_handle, version_handle)
        record = self._files.get(handle)
        if record is None or record.version_handle != version.handle:
            raise NotFoundError(
                f"File {handle} not found in version {version_handle}",
                resource_type="file",
                resource_id=handle,
            )
        return record

    def find_file(
        self,
        actor: str,
        project_handle: str,
        version_handle: str,
        path: str,
    ) -> FileRecord:
        version = self.get_version(actor, project_handle, version_handle)
        path = normalize_path(path)
        handle = version.files.get(path)
        if handle is None:
            raise NotFoundError(
                f"No file at {path} in version {version_handle}",
                resource_type="file",
                resource_id=path,
            )
        return self._files[handle]

    def create_file(
        self,
        actor: str,
        project_handle: str,
        version_handle: str,
        path: str,
    ) -> FileRecord:
        version = self.get_version(actor, project_handle, version_handle)
        path = normalize_path(path)
        self._ensure_head(version)
        if path in version.files:
            raise ConflictError(f"File {path} already exists", resource_type="file", key=path)

        record = FileRecord(handle=new_handle(), version_handle=version.handle, path=path)
        self._files[record.handle] = record
        version.files[path] = record.handle
        logger.debug(f"Created file {path} ({record.handle}) in version {version.handle}")
        return record

    def update_file(
        self,
        actor: str,
        project_handle: str,
        version_handle: str,
        handle: str,
        contents: str,
        expected_revision: Optional[int] = None,
    ) -> FileRecord:
        """Replace a file's contents; last write wins unless expected_revision is given."""
        record = self.get_file(actor, project_handle, version_handle, handle)
        self._ensure_head(self._versions[version_handle])
        if expected_revision is not None and expected_revision != record.revision:
            raise ConflictError(
                f"File {handle} is at revision {record.revision}, expected {expected_revision}",
                resource_type="file",
                key=handle,
                current_revision=record.revision,
            )
        record.contents = contents
        record.revision += 1
        return record

    def move_file(
        self,
        actor: str,
        project_handle: str,
        version_handle: str,
        handle: str,
        path: str,
    ) -> FileRecord:
        record = self.get_file(actor, project_handle, version_handle, handle)
        version = self._versions[version_handle]
        path = normalize_path(path)
        self._ensure_head(version)
        if path == record.path:
            return record
        if path in version.files:
            raise ConflictError(f"File {path} already exists", resource_type="file", key=path)

        del version.files[record.path]
        version.files[path] = record.handle
        logger.debug(f"Moved file {record.handle} from {record.path} to {path}")
        record.path = path
        record.revision += 1
        return record

    # --- Leases ---

    def acquire_lease(
        self,
        actor: str,
        resource_type: str,
        resource_id: str,
        session: Optional[str] = None,
    ) -> Lease:
        """Record a lease, optionally tied to the session that opened the resource."""
        lease = Lease(
            lease_id=new_handle(),
            resource_type=resource_type,
            resource_id=resource_id,
            actor=actor,
            acquired_at=time.time(),
            session=session,
        )
        self._leases[lease.lease_id] = lease
        logger.debug(f"Lease {lease.lease_id} acquired on {resource_type} {resource_id}")
        return lease

    def release_lease(self, actor: str, lease_id: str) -> None:
        """Release a lease.

        Raises:
            InvalidStateError: If the lease is unknown, already released,
                or held by another user
        """
        lease = self._leases.get(lease_id)
        if lease is None or lease.actor != actor:
            raise InvalidStateError(
                f"Lease {lease_id} is not held", resource_type="lease", resource_id=lease_id
            )
        del self._leases[lease_id]
        logger.debug(f"Lease {lease_id} released")

    def leases(self, resource_id: Optional[str] = None) -> List[Lease]:
        """Outstanding leases, optionally for one resource."""
        return [
            lease
            for lease in self._leases.values()
            if resource_id is None or lease.resource_id == resource_id
        ]

    def _drop_leases(self, predicate) -> int:
        stale = [lease_id for lease_id, lease in self._leases.items() if predicate(lease)]
        for lease_id in stale:
            del self._leases[lease_id]
        return len(stale)
