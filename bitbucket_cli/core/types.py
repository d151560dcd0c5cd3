"""
Core types for the Bitbucket Server REST API.

Entities (Project, Repository) are read models built from server JSON.
Request types are dataclasses whose field metadata drives both local
validation and the JSON payload, so each request carries its own rules.
"""

from dataclasses import dataclass, field, fields
from typing import Any

from bitbucket_cli.core.client import ParametersError

PERMISSION_LEVELS = ("PROJECT_READ", "PROJECT_WRITE", "PROJECT_ADMIN")


# =============================================================================
# Request field metadata
# =============================================================================


def request_field(
    json_name: str | None = None,
    *,
    default: Any = None,
    required: bool = False,
    omitempty: bool = False,
    choices: tuple[str, ...] = (),
    path_segment: bool = False,
) -> Any:
    """
    Declare a request field.

    Args:
        json_name: Key in the JSON payload (None for path/query-only fields)
        default: Default value
        required: Must be non-empty for the request to validate
        omitempty: Leave out of the payload when None or ""
        choices: Allowed values (checked when the field is set)
        path_segment: Value addresses the resource as one URL path segment

    """
    return field(
        default=default,
        metadata={
            "json": json_name,
            "required": required,
            "omitempty": omitempty,
            "choices": choices,
            "path_segment": path_segment,
        },
    )


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def _is_dot_segment(value: Any) -> bool:
    # "." and ".." are resolved away by URL joining, even when percent-quoted
    return isinstance(value, str) and value != "" and value.strip(".") == ""


def validate_request(request: Any) -> None:
    """
    Check a request against the rules declared on its fields.

    Raises:
        ParametersError: Listing every field that failed

    """
    problems: dict[str, str] = {}
    for f in fields(request):
        value = getattr(request, f.name)
        if f.metadata.get("required") and _is_blank(value):
            problems[f.name] = "required"
            continue
        choices = f.metadata.get("choices")
        if choices and not _is_blank(value) and value not in choices:
            problems[f.name] = f"must be one of {', '.join(choices)}"
        elif f.metadata.get("path_segment") and _is_dot_segment(value):
            problems[f.name] = "must not be only dots"

    if problems:
        summary = ", ".join(f"{name} {problem}" for name, problem in problems.items())
        raise ParametersError(f"parameters: invalid {type(request).__name__}: {summary}", details={"fields": problems})


def encode_request(request: Any) -> dict[str, Any]:
    """Render a request as its JSON payload."""
    payload: dict[str, Any] = {}
    for f in fields(request):
        json_name = f.metadata.get("json")
        if json_name is None:
            continue
        value = getattr(request, f.name)
        if f.metadata.get("omitempty") and _is_blank(value):
            continue
        payload[json_name] = value
    return payload


class RequestType:
    """Mixin giving request dataclasses validate() and to_payload()."""

    def validate(self) -> None:
        validate_request(self)

    def to_payload(self) -> dict[str, Any]:
        return encode_request(self)


# =============================================================================
# Project Types
# =============================================================================


@dataclass
class Project:
    """A Bitbucket project."""

    key: str
    name: str
    id: int | None = None
    description: str | None = None
    scope: str | None = None
    type: str | None = None
    public: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Project":
        """Create from API response dict."""
        return cls(
            key=data.get("key") or "",
            name=data.get("name") or "",
            id=data.get("id"),
            description=data.get("description"),
            scope=data.get("scope"),
            type=data.get("type"),
            public=bool(data.get("public", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API's JSON shape."""
        result: dict[str, Any] = {
            "key": self.key,
            "name": self.name,
            "id": self.id,
            "description": self.description,
            "type": self.type,
            "public": self.public,
        }
        if self.scope:
            result["scope"] = self.scope
        return result


@dataclass
class GetProjectRequest(RequestType):
    key: str = request_field("key", default="", required=True, path_segment=True)


@dataclass
class CreateProjectRequest(RequestType):
    """Fields accepted when creating a project."""

    key: str = request_field("key", default="", required=True, path_segment=True)
    name: str = request_field("name", default="", required=True)
    description: str | None = request_field("description", omitempty=True)
    public: bool | None = request_field("public", omitempty=True)


@dataclass
class UpdateProjectRequest(RequestType):
    """Fields accepted when updating a project. Unset fields are left unchanged."""

    key: str = request_field("key", default="", required=True, path_segment=True)
    name: str | None = request_field("name", omitempty=True)
    description: str | None = request_field("description", omitempty=True)
    public: bool | None = request_field("public", omitempty=True)


@dataclass
class DeleteProjectRequest(RequestType):
    key: str = request_field(default="", required=True, path_segment=True)


@dataclass
class AddPermissionRequest(RequestType):
    """Grant a group a permission level on a project."""

    project_key: str = request_field(default="", required=True, path_segment=True)
    group: str = request_field(default="", required=True)
    permission: str = request_field(default="", required=True, choices=PERMISSION_LEVELS)


@dataclass
class RevokePermissionRequest(RequestType):
    """Remove every permission a group holds on a project."""

    project_key: str = request_field(default="", required=True, path_segment=True)
    group: str = request_field(default="", required=True)


# =============================================================================
# Repository Types
# =============================================================================


@dataclass
class Repository:
    """A repository nested under a project."""

    slug: str
    name: str
    project: Project | None = None
    id: int | None = None
    description: str | None = None
    hierarchy_id: str | None = None
    status_message: str | None = None
    archived: bool = False
    forkable: bool = False
    default_branch: str | None = None
    scm_id: str | None = None
    scope: str | None = None
    state: str | None = None
    public: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Repository":
        """Create from API response dict."""
        project_data = data.get("project")
        return cls(
            slug=data.get("slug") or "",
            name=data.get("name") or "",
            project=Project.from_dict(project_data) if project_data else None,
            id=data.get("id"),
            description=data.get("description"),
            hierarchy_id=data.get("hierarchyId"),
            status_message=data.get("statusMessage"),
            archived=bool(data.get("archived", False)),
            forkable=bool(data.get("forkable", False)),
            default_branch=data.get("defaultBranch"),
            scm_id=data.get("scmId"),
            scope=data.get("scope"),
            state=data.get("state"),
            public=bool(data.get("public", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the API's JSON shape."""
        return {
            "slug": self.slug,
            "name": self.name,
            "project": self.project.to_dict() if self.project else None,
            "id": self.id,
            "description": self.description,
            "hierarchyId": self.hierarchy_id,
            "statusMessage": self.status_message,
            "archived": self.archived,
            "forkable": self.forkable,
            "defaultBranch": self.default_branch,
            "scmId": self.scm_id,
            "scope": self.scope,
            "state": self.state,
            "public": self.public,
        }


@dataclass
class GetRepoRequest(RequestType):
    project_key: str = request_field(default="", required=True, path_segment=True)
    slug: str = request_field(default="", required=True, path_segment=True)


@dataclass
class CreateRepoRequest(RequestType):
    """Fields accepted when creating a repository. The slug is derived from the name if not given."""

    project_key: str = request_field(default="", required=True, path_segment=True)
    name: str = request_field("name", default="", required=True)
    slug: str | None = request_field("slug", omitempty=True)
    description: str | None = request_field("description", omitempty=True)
    scm_id: str = request_field("scmId", default="git", omitempty=True)
    forkable: bool | None = request_field("forkable", omitempty=True)
    default_branch: str | None = request_field("defaultBranch", omitempty=True)
    public: bool | None = request_field("public", omitempty=True)


@dataclass
class UpdateRepoRequest(RequestType):
    """Fields accepted when updating a repository. Renaming also changes the slug."""

    project_key: str = request_field(default="", required=True, path_segment=True)
    slug: str = request_field(default="", required=True, path_segment=True)
    name: str | None = request_field("name", omitempty=True)
    description: str | None = request_field("description", omitempty=True)
    forkable: bool | None = request_field("forkable", omitempty=True)
    default_branch: str | None = request_field("defaultBranch", omitempty=True)
    public: bool | None = request_field("public", omitempty=True)


@dataclass
class DeleteRepoRequest(RequestType):
    project_key: str = request_field(default="", required=True, path_segment=True)
    slug: str = request_field(default="", required=True, path_segment=True)
