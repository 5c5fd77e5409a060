"""Interfaces implemented outside the domain layer."""

from agentpad.domain.ports.collaborators import (
    AttachmentResolver,
    FileReference,
    ProjectAccess,
    ProjectAccessResolver,
)
from agentpad.domain.ports.inference_provider import InferenceProvider

__all__ = [
    "AttachmentResolver",
    "FileReference",
    "InferenceProvider",
    "ProjectAccess",
    "ProjectAccessResolver",
]
