"""agentbundler - Dependency-resolving web bundle builder for agent personas."""

__version__ = "0.1.0"
__author__ = "agentbundler Team"
__email__ = "team@agentbundler.dev"

from .builder import BuildContext, Builder, resolve, resolve_and_serialize
from .errors import (
    BundleError,
    CircularDependency,
    DuplicateResourceId,
    MissingDependency,
    ParseError,
)
from .models import Bundle, BuildReport, EntryDefinition, ResolutionResult, ResourceId
from .storage import FileSystemStorage, ResourceStore

__all__ = [
    "resolve",
    "resolve_and_serialize",
    "Builder",
    "BuildContext",
    "Bundle",
    "BuildReport",
    "EntryDefinition",
    "ResolutionResult",
    "ResourceId",
    "ResourceStore",
    "FileSystemStorage",
    "BundleError",
    "ParseError",
    "MissingDependency",
    "CircularDependency",
    "DuplicateResourceId",
]
