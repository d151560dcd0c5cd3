"""
Core layer - Request pipeline, errors and raw types.

This layer provides:
- Transport configuration and the authenticated HTTP client
- The typed error taxonomy
- Typed dataclasses for entities and request shapes
"""

from bitbucket_cli.core.client import (
    APIClient,
    APIError,
    BitbucketError,
    ClientConfig,
    ConfigError,
    ConflictError,
    DeadlineExceededError,
    ErrorKind,
    NotFoundError,
    ParametersError,
    PermissionDeniedError,
    RequestBuildError,
    RequestCancelledError,
    ResponseMalformedError,
    TransportError,
    UnexpectedStatusError,
    ValidationError,
    error_context,
    interpret_response,
)
from bitbucket_cli.core.context import Context
from bitbucket_cli.core.types import (
    PERMISSION_LEVELS,
    AddPermissionRequest,
    CreateProjectRequest,
    CreateRepoRequest,
    DeleteProjectRequest,
    DeleteRepoRequest,
    GetProjectRequest,
    GetRepoRequest,
    Project,
    Repository,
    RevokePermissionRequest,
    UpdateProjectRequest,
    UpdateRepoRequest,
    validate_request,
)

__all__ = [
    "PERMISSION_LEVELS",
    "APIClient",
    "APIError",
    "AddPermissionRequest",
    "BitbucketError",
    "ClientConfig",
    "ConfigError",
    "ConflictError",
    "Context",
    "CreateProjectRequest",
    "CreateRepoRequest",
    "DeadlineExceededError",
    "DeleteProjectRequest",
    "DeleteRepoRequest",
    "ErrorKind",
    "GetProjectRequest",
    "GetRepoRequest",
    "NotFoundError",
    "ParametersError",
    "PermissionDeniedError",
    "Project",
    "Repository",
    "RequestBuildError",
    "RequestCancelledError",
    "ResponseMalformedError",
    "RevokePermissionRequest",
    "TransportError",
    "UnexpectedStatusError",
    "UpdateProjectRequest",
    "UpdateRepoRequest",
    "ValidationError",
    "error_context",
    "interpret_response",
    "validate_request",
]
