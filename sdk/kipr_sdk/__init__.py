"""
KIPR Python SDK - Client library for the KIPR project-hosting API.

This SDK provides a typed, asynchronous interface to KIPR resources:
- Users and organizations
- Projects with an append-only version history
- Files addressed by path within a version

Two backends implement the same contract:
- RestClient: JSON over HTTPS
- MemoryClient: in-process, backed by a MemoryStore

Example:
    >>> from kipr_sdk import RestClient
    >>>
    >>> async with RestClient() as client:
    ...     user = await client.login("alice", "secret")
    ...     async with await user.projects.create("robot-code") as project:
    ...         async with await project.versions.create("v1") as version:
    ...             async with await version.files.create("/main.c") as f:
    ...                 await f.update("int main(){}")

Invariants:
    - list() returns Briefs; open()/create() return opened entities
    - Opened files, versions and projects must be closed exactly once
    - Version history is append-only; restore never rewrites a version

Version: 1.0.0
"""

__version__ = "1.0.0"

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
from .brief import (
    FileBrief,
    OrganizationBrief,
    ProjectBrief,
    UserBrief,
    VersionBrief,
)
from .config import DEFAULT_URL, ClientSettings
from .errors import (
    AuthenticationError,
    ConflictError,
    InvalidStateError,
    KiprError,
    NotFoundError,
    PermissionDeniedError,
    TransportError,
    UnavailableError,
    ValidationError,
)
from .memory import MemoryClient
from .rest import RestClient
from .store import MemoryStore

Rest = RestClient

__all__ = [
    # Version
    "__version__",
    # Contracts
    "Client",
    "File",
    "Files",
    "Handle",
    "Organization",
    "Organizations",
    "OwnerKind",
    "Project",
    "Projects",
    "Role",
    "User",
    "Users",
    "Version",
    "Versions",
    # Briefs
    "FileBrief",
    "OrganizationBrief",
    "ProjectBrief",
    "UserBrief",
    "VersionBrief",
    # Backends
    "MemoryClient",
    "MemoryStore",
    "Rest",
    "RestClient",
    # Configuration
    "ClientSettings",
    "DEFAULT_URL",
    # Errors
    "KiprError",
    "ValidationError",
    "AuthenticationError",
    "PermissionDeniedError",
    "NotFoundError",
    "ConflictError",
    "InvalidStateError",
    "TransportError",
    "UnavailableError",
]
