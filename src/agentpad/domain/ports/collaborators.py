"""Interfaces for external collaborators (authorization, file storage)."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Literal


@dataclass
class ProjectAccess:
    """Permission of a user on a project."""

    project_id: str
    permission: Literal["rw", "ro"] = "rw"

    @property
    def read_only(self) -> bool:
        return self.permission != "rw"


@dataclass
class FileReference:
    """A stored file resolved from an opaque file id."""

    path: str
    name: str
    mime_type: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


class ProjectAccessResolver(ABC):
    """Resolves project existence and the acting user's permission."""

    @abstractmethod
    async def resolve(self, user_id: str | None, project_id: str) -> ProjectAccess | None:
        """Return the user's access to the project, or None if not found/denied."""
        pass


class AttachmentResolver(ABC):
    """Resolves opaque file ids to readable paths."""

    @abstractmethod
    async def resolve(self, user_id: str | None, project_id: str, file_id: str) -> FileReference:
        """Resolve a file id.

        Raises:
            AttachmentError: With one of ``invalid_file_id``,
                ``project_not_found_or_access_denied``, ``file_not_found``,
                ``file_missing_on_disk``
        """
        pass
