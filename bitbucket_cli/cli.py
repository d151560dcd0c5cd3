"""
Bitbucket CLI - Opinionated command-line interface.

This layer provides the user-facing CLI commands, using the SDK layer
for all operations. It handles:
- Argument parsing
- Credentials from flags and environment variables
- JSON output for piping/automation
"""

import argparse
import json
import logging
import sys
from typing import Any

from bitbucket_cli.core.client import BitbucketError
from bitbucket_cli.core.types import (
    PERMISSION_LEVELS,
    AddPermissionRequest,
    CreateProjectRequest,
    CreateRepoRequest,
    DeleteProjectRequest,
    DeleteRepoRequest,
    GetProjectRequest,
    GetRepoRequest,
    RevokePermissionRequest,
    UpdateProjectRequest,
    UpdateRepoRequest,
)
from bitbucket_cli.sdk import BitbucketClient

# =============================================================================
# Output Helpers
# =============================================================================


def is_tty() -> bool:
    """Check if stdout is a TTY (human) or pipe (machine)."""
    return sys.stdout.isatty()


def json_output(data: Any, pretty: bool = False) -> None:
    """Print JSON output."""
    indent = 2 if pretty or is_tty() else None
    print(json.dumps(data, indent=indent, default=str))


def error_output(error: BitbucketError) -> None:
    """Print error and exit."""
    json_output(error.to_dict())
    sys.exit(1)


def success_output(data: Any) -> None:
    """Print success output."""
    json_output(data)


# =============================================================================
# CLI Commands
# =============================================================================


def cmd_projects_get(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Get a project by key."""
    project = client.projects.get(GetProjectRequest(key=args.key))
    success_output(project.to_dict())


def cmd_projects_create(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Create a project."""
    project = client.projects.create(
        CreateProjectRequest(
            key=args.key,
            name=args.name,
            description=args.description,
            public=args.public,
        )
    )
    success_output(project.to_dict())


def cmd_projects_update(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Update a project."""
    project = client.projects.update(
        UpdateProjectRequest(
            key=args.key,
            name=args.name,
            description=args.description,
            public=args.public,
        )
    )
    success_output(project.to_dict())


def cmd_projects_delete(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Delete a project."""
    client.projects.delete(DeleteProjectRequest(key=args.key))
    success_output({"success": True, "message": f"Project {args.key} deleted"})


def cmd_projects_grant(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Grant a group a permission on a project."""
    client.projects.add_permission(
        AddPermissionRequest(project_key=args.key, group=args.group, permission=args.permission)
    )
    success_output({"success": True, "message": f"Granted {args.permission} on {args.key} to {args.group}"})


def cmd_projects_revoke(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Revoke a group's permissions on a project."""
    client.projects.revoke_permission(RevokePermissionRequest(project_key=args.key, group=args.group))
    success_output({"success": True, "message": f"Revoked permissions on {args.key} from {args.group}"})


def cmd_repos_get(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Get a repository."""
    repo = client.repos.get(GetRepoRequest(project_key=args.key, slug=args.slug))
    success_output(repo.to_dict())


def cmd_repos_create(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Create a repository."""
    repo = client.repos.create(
        CreateRepoRequest(
            project_key=args.key,
            name=args.name,
            slug=args.slug,
            description=args.description,
            forkable=args.forkable,
            default_branch=args.default_branch,
            public=args.public,
        )
    )
    success_output(repo.to_dict())


def cmd_repos_update(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Update a repository."""
    repo = client.repos.update(
        UpdateRepoRequest(
            project_key=args.key,
            slug=args.slug,
            name=args.name,
            description=args.description,
            forkable=args.forkable,
            default_branch=args.default_branch,
            public=args.public,
        )
    )
    success_output(repo.to_dict())


def cmd_repos_delete(client: BitbucketClient, args: argparse.Namespace) -> None:
    """Delete a repository."""
    client.repos.delete(DeleteRepoRequest(project_key=args.key, slug=args.slug))
    success_output({"success": True, "message": f"Repository {args.key}/{args.slug} deleted"})


# =============================================================================
# Argument Parser
# =============================================================================


def _add_visibility_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--public", dest="public", action="store_true", default=None, help="Make it public")
    group.add_argument("--private", dest="public", action="store_false", default=None, help="Make it private")


def _add_forkable_flags(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--forkable", dest="forkable", action="store_true", default=None, help="Allow forks")
    group.add_argument("--no-forkable", dest="forkable", action="store_false", default=None, help="Disallow forks")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="bitbucket",
        description="Bitbucket CLI - Manage Bitbucket Server projects and repositories",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Credentials:
  BITBUCKET_HOST, BITBUCKET_SCHEME, BITBUCKET_USERNAME, BITBUCKET_PASSWORD

Examples:
  bitbucket projects create TPO "TestProject" --public
  bitbucket projects grant TPO developers PROJECT_WRITE
  bitbucket repos create TPO "TestRepo" --forkable
  bitbucket repos get TPO testrepo | jq '.slug'
""",
    )
    parser.add_argument("--host", help="Server host[:port] (overrides BITBUCKET_HOST)")
    parser.add_argument("--scheme", choices=["http", "https"], help="URL scheme (overrides BITBUCKET_SCHEME)")
    parser.add_argument("--username", "-u", help="Basic auth user (overrides BITBUCKET_USERNAME)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log HTTP requests to stderr")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # ========== Projects ==========
    projects = subparsers.add_parser("projects", help="Manage projects")
    projects.set_defaults(func=None, help_parser=projects)
    projects_sub = projects.add_subparsers(dest="subcommand")

    p_get = projects_sub.add_parser("get", help="Get project details")
    p_get.add_argument("key", help="Project key")
    p_get.set_defaults(func=cmd_projects_get)

    p_create = projects_sub.add_parser("create", help="Create a project")
    p_create.add_argument("key", help="Project key")
    p_create.add_argument("name", help="Project name")
    p_create.add_argument("--description", "-d", help="Project description")
    p_create.add_argument("--public", action="store_true", default=None, help="Make the project public")
    p_create.set_defaults(func=cmd_projects_create)

    p_update = projects_sub.add_parser("update", help="Update a project")
    p_update.add_argument("key", help="Project key")
    p_update.add_argument("--name", "-n", help="New project name")
    p_update.add_argument("--description", "-d", help="New project description")
    _add_visibility_flags(p_update)
    p_update.set_defaults(func=cmd_projects_update)

    p_delete = projects_sub.add_parser("delete", help="Delete a project")
    p_delete.add_argument("key", help="Project key")
    p_delete.set_defaults(func=cmd_projects_delete)

    p_grant = projects_sub.add_parser("grant", help="Grant a group a permission on a project")
    p_grant.add_argument("key", help="Project key")
    p_grant.add_argument("group", help="Group name")
    p_grant.add_argument("permission", choices=PERMISSION_LEVELS, help="Permission level")
    p_grant.set_defaults(func=cmd_projects_grant)

    p_revoke = projects_sub.add_parser("revoke", help="Revoke a group's permissions on a project")
    p_revoke.add_argument("key", help="Project key")
    p_revoke.add_argument("group", help="Group name")
    p_revoke.set_defaults(func=cmd_projects_revoke)

    # ========== Repositories ==========
    repos = subparsers.add_parser("repos", help="Manage repositories")
    repos.set_defaults(func=None, help_parser=repos)
    repos_sub = repos.add_subparsers(dest="subcommand")

    r_get = repos_sub.add_parser("get", help="Get repository details")
    r_get.add_argument("key", help="Project key")
    r_get.add_argument("slug", help="Repository slug")
    r_get.set_defaults(func=cmd_repos_get)

    r_create = repos_sub.add_parser("create", help="Create a repository")
    r_create.add_argument("key", help="Project key")
    r_create.add_argument("name", help="Repository name")
    r_create.add_argument("--slug", "-s", help="Repository slug (derived from the name if omitted)")
    r_create.add_argument("--description", "-d", help="Repository description")
    r_create.add_argument("--default-branch", "-b", help="Default branch")
    r_create.add_argument("--public", action="store_true", default=None, help="Make the repository public")
    _add_forkable_flags(r_create)
    r_create.set_defaults(func=cmd_repos_create)

    r_update = repos_sub.add_parser("update", help="Update a repository")
    r_update.add_argument("key", help="Project key")
    r_update.add_argument("slug", help="Repository slug")
    r_update.add_argument("--name", "-n", help="New repository name")
    r_update.add_argument("--description", "-d", help="New repository description")
    r_update.add_argument("--default-branch", "-b", help="Default branch")
    _add_visibility_flags(r_update)
    _add_forkable_flags(r_update)
    r_update.set_defaults(func=cmd_repos_update)

    r_delete = repos_sub.add_parser("delete", help="Delete a repository")
    r_delete.add_argument("key", help="Project key")
    r_delete.add_argument("slug", help="Repository slug")
    r_delete.set_defaults(func=cmd_repos_delete)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    # A bare command group prints its help without touching the network
    if getattr(args, "func", None) is None:
        getattr(args, "help_parser", parser).print_help()
        sys.exit(0)

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        # Create client (checks connectivity)
        client = BitbucketClient(host=args.host, scheme=args.scheme, username=args.username)

        # Run command
        args.func(client, args)
    except BitbucketError as e:
        error_output(e)


if __name__ == "__main__":
    main()
