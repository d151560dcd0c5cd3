"""
Bitbucket SDK - High-level client with typed operations.

This layer exposes project and repository operations behind abstract service
contracts. Built on top of the core APIClient.
"""

import urllib.parse
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any, TypeVar

from bitbucket_cli.core.client import DEFAULT_TIMEOUT, APIClient, ClientConfig, ResponseMalformedError, error_context
from bitbucket_cli.core.context import Context
from bitbucket_cli.core.types import (
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

T = TypeVar("T")


def _segment(value: str) -> str:
    """Quote a key or slug so it stays a single path segment."""
    return urllib.parse.quote(value, safe="")


def _project_path(key: str) -> str:
    return f"projects/{_segment(key)}"


def _repo_path(project_key: str, slug: str | None = None) -> str:
    path = f"{_project_path(project_key)}/repos"
    if slug is not None:
        path = f"{path}/{_segment(slug)}"
    return path


def _entity(result: T | None) -> T:
    """Entity calls always answer with a body; the interpreter only yields None for a 204."""
    if result is None:
        raise ResponseMalformedError("response malformed: expected an entity, got an empty 204 response", status=204)
    return result


class BitbucketClient:
    """
    High-level Bitbucket Server client.

    Construction checks connectivity (GET projects) and fails if the server
    can't be reached or rejects the credentials.

    Example:
        client = BitbucketClient(host="localhost:7990", scheme="http", username="admin", password="admin")

        project = client.projects.create(CreateProjectRequest(key="TPO", name="TestProject", public=True))
        repo = client.repos.create(CreateRepoRequest(project_key="TPO", name="TestRepo"))
        client.repos.delete(DeleteRepoRequest(project_key="TPO", slug=repo.slug))

    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        host: str | None = None,
        scheme: str | None = None,
        username: str | None = None,
        password: str | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Callable[..., Any] | None = None,
        ctx: Context | None = None,
    ):
        """
        Initialize the Bitbucket client.

        Args:
            config: Transport configuration (built from the other args and env vars if omitted)
            host: Server host[:port] (or BITBUCKET_HOST env var)
            scheme: http or https (or BITBUCKET_SCHEME env var)
            username: Basic auth user (or BITBUCKET_USERNAME env var)
            password: Basic auth password (or BITBUCKET_PASSWORD env var)
            timeout: Upper bound in seconds for every request
            opener: Replacement for urllib.request.urlopen
            ctx: Context for the connectivity check

        """
        if config is None:
            config = ClientConfig.from_env(host=host, scheme=scheme, username=username, password=password)
        self.config = config
        self._client = APIClient(config, timeout=timeout, opener=opener)

        with error_context("error creating bitbucket client"):
            self._client.ping(ctx)

        self.projects: ProjectService = ProjectOperations(self._client)
        self.repos: RepoService = RepoOperations(self._client)


# =============================================================================
# Project Operations
# =============================================================================


class ProjectService(ABC):
    """Operations around Bitbucket projects."""

    @abstractmethod
    def get(self, request: GetProjectRequest, ctx: Context | None = None) -> Project: ...

    @abstractmethod
    def create(self, request: CreateProjectRequest, ctx: Context | None = None) -> Project: ...

    @abstractmethod
    def update(self, request: UpdateProjectRequest, ctx: Context | None = None) -> Project: ...

    @abstractmethod
    def delete(self, request: DeleteProjectRequest, ctx: Context | None = None) -> None: ...

    @abstractmethod
    def add_permission(self, request: AddPermissionRequest, ctx: Context | None = None) -> None: ...

    @abstractmethod
    def revoke_permission(self, request: RevokePermissionRequest, ctx: Context | None = None) -> None: ...


class ProjectOperations(ProjectService):
    """Project operations backed by an APIClient."""

    def __init__(self, client: APIClient):
        self._client = client

    def get(self, request: GetProjectRequest, ctx: Context | None = None) -> Project:
        """
        Get a project by key.

        Args:
            request: Holds the project key
            ctx: Cancellation/deadline context

        Returns:
            Project details

        """
        validate_request(request)
        with error_context("error fetching project"):
            return _entity(self._client.get(_project_path(request.key), parser=Project.from_dict, ctx=ctx))

    def create(self, request: CreateProjectRequest, ctx: Context | None = None) -> Project:
        """
        Create a project.

        Args:
            request: Key, name and optional description/visibility
            ctx: Cancellation/deadline context

        Returns:
            The created Project

        """
        validate_request(request)
        with error_context("error creating project"):
            return _entity(self._client.post("projects", request, parser=Project.from_dict, ctx=ctx))

    def update(self, request: UpdateProjectRequest, ctx: Context | None = None) -> Project:
        """Update a project's name, description or visibility."""
        validate_request(request)
        with error_context("error updating project"):
            return _entity(self._client.put(_project_path(request.key), request, parser=Project.from_dict, ctx=ctx))

    def delete(self, request: DeleteProjectRequest, ctx: Context | None = None) -> None:
        """Delete a project. The server refuses (409) while it still holds repositories."""
        validate_request(request)
        with error_context("error deleting project"):
            self._client.delete(_project_path(request.key), ctx=ctx)

    def add_permission(self, request: AddPermissionRequest, ctx: Context | None = None) -> None:
        """
        Grant a group a permission on a project.

        The group and level travel as query parameters only; the endpoint takes no body.
        """
        validate_request(request)
        with error_context("error adding permission to project"):
            self._client.put(
                f"{_project_path(request.project_key)}/permissions/groups",
                params={"name": request.group, "permission": request.permission},
                ctx=ctx,
            )

    def revoke_permission(self, request: RevokePermissionRequest, ctx: Context | None = None) -> None:
        """Revoke all of a group's permissions on a project."""
        validate_request(request)
        with error_context("error revoking permission from project"):
            self._client.delete(
                f"{_project_path(request.project_key)}/permissions/groups",
                params={"name": request.group},
                ctx=ctx,
            )


# =============================================================================
# Repository Operations
# =============================================================================


class RepoService(ABC):
    """Operations around Bitbucket repositories."""

    @abstractmethod
    def get(self, request: GetRepoRequest, ctx: Context | None = None) -> Repository: ...

    @abstractmethod
    def create(self, request: CreateRepoRequest, ctx: Context | None = None) -> Repository: ...

    @abstractmethod
    def update(self, request: UpdateRepoRequest, ctx: Context | None = None) -> Repository: ...

    @abstractmethod
    def delete(self, request: DeleteRepoRequest, ctx: Context | None = None) -> None: ...


class RepoOperations(RepoService):
    """Repository operations backed by an APIClient."""

    def __init__(self, client: APIClient):
        self._client = client

    def get(self, request: GetRepoRequest, ctx: Context | None = None) -> Repository:
        """Get a repository by project key and slug."""
        validate_request(request)
        with error_context("error fetching repo"):
            return _entity(
                self._client.get(
                    _repo_path(request.project_key, request.slug),
                    parser=Repository.from_dict,
                    ctx=ctx,
                )
            )

    def create(self, request: CreateRepoRequest, ctx: Context | None = None) -> Repository:
        """
        Create a repository in a project.

        Args:
            request: Project key, name and optional settings
            ctx: Cancellation/deadline context

        Returns:
            The created Repository (with its server-assigned slug)

        """
        validate_request(request)
        with error_context("error creating repo"):
            return _entity(
                self._client.post(
                    _repo_path(request.project_key),
                    request,
                    parser=Repository.from_dict,
                    ctx=ctx,
                )
            )

    def update(self, request: UpdateRepoRequest, ctx: Context | None = None) -> Repository:
        validate_request(request)
        with error_context("error updating repo"):
            return _entity(
                self._client.put(
                    _repo_path(request.project_key, request.slug),
                    request,
                    parser=Repository.from_dict,
                    ctx=ctx,
                )
            )

    def delete(self, request: DeleteRepoRequest, ctx: Context | None = None) -> None:
        """Delete a repository. The server schedules deletion and answers 202."""
        validate_request(request)
        with error_context("error deleting repo"):
            self._client.delete(_repo_path(request.project_key, request.slug), ctx=ctx)
