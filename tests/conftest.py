"""Pytest configuration - loads .env for integration tests and runs a fake Bitbucket server."""

import base64
import json
import threading
import urllib.parse
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any

import pytest
from dotenv import load_dotenv

from bitbucket_cli.core.client import ClientConfig

# Load .env from project root
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

USERNAME = "admin"
PASSWORD = "admin"
API_PREFIX = "/rest/api/1.0/"


# =============================================================================
# Fake Bitbucket Server
# =============================================================================


class FakeBitbucketServer(ThreadingHTTPServer):
    """In-memory stand-in for the projects and repos endpoints."""

    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), FakeBitbucketHandler)
        self.lock = threading.Lock()
        self.projects: dict[str, dict[str, Any]] = {}
        self.repos: dict[tuple[str, str], dict[str, Any]] = {}
        self.permissions: dict[tuple[str, str], str] = {}
        self.requests: list[dict[str, Any]] = []
        self.next_id = 1
        self.expected_auth = "Basic " + base64.b64encode(f"{USERNAME}:{PASSWORD}".encode()).decode()

    @property
    def host(self) -> str:
        return f"127.0.0.1:{self.server_address[1]}"

    def allocate_id(self) -> int:
        value = self.next_id
        self.next_id += 1
        return value


class FakeBitbucketHandler(BaseHTTPRequestHandler):
    server: FakeBitbucketServer

    def log_message(self, format: str, *args: Any) -> None:
        pass

    # ---- plumbing -----------------------------------------------------------

    def _reply(self, status: int, data: Any = None) -> None:
        body = b"" if data is None or status == 204 else json.dumps(data).encode()
        self.send_response(status)
        if body:
            self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _error(self, status: int, message: str) -> None:
        self._reply(status, {"errors": [{"context": None, "message": message, "exceptionName": None}]})

    def _handle(self) -> None:
        length = int(self.headers.get("Content-Length") or 0)
        raw = self.rfile.read(length) if length else b""
        url = urllib.parse.urlsplit(self.path)
        query = dict(urllib.parse.parse_qsl(url.query))

        with self.server.lock:
            self.server.requests.append(
                {
                    "method": self.command,
                    "path": url.path,
                    "query": query,
                    "headers": dict(self.headers.items()),
                    "body": raw,
                }
            )

            if self.headers.get("Authorization") != self.server.expected_auth:
                self._error(401, "Authentication failed. Please check your credentials and try again.")
                return
            if not url.path.startswith(API_PREFIX):
                self._error(404, "Not found")
                return

            segments = [urllib.parse.unquote(s) for s in url.path[len(API_PREFIX) :].split("/") if s]
            payload = json.loads(raw) if raw else {}
            self._route(segments, query, payload)

    def _route(self, segments: list[str], query: dict[str, str], payload: dict[str, Any]) -> None:
        method = self.command
        if not segments or segments[0] != "projects":
            self._error(404, "Not found")
            return

        if len(segments) == 1:
            if method == "GET":
                values = list(self.server.projects.values())
                self._reply(200, {"size": len(values), "limit": 25, "isLastPage": True, "values": values, "start": 0})
            elif method == "POST":
                self._create_project(payload)
            else:
                self._error(405, "Method not allowed")
            return

        key = segments[1]
        project = self.server.projects.get(key)
        if project is None:
            self._error(404, f"Project {key} does not exist.")
            return

        rest = segments[2:]
        if not rest:
            self._project_item(key, project, payload)
        elif rest == ["permissions", "groups"]:
            self._permissions(key, query)
        elif rest[0] == "repos" and len(rest) == 1 and method == "POST":
            self._create_repo(key, project, payload)
        elif rest[0] == "repos" and len(rest) == 2:
            self._repo_item(key, rest[1], payload)
        else:
            self._error(404, "Not found")

    # ---- projects -----------------------------------------------------------

    def _create_project(self, payload: dict[str, Any]) -> None:
        key = payload.get("key")
        if not key or not payload.get("name"):
            self._error(400, "Project key and name are required.")
            return
        if key in self.server.projects:
            self._error(409, f"Project key {key} is already in use.")
            return
        project = {
            "key": key,
            "id": self.server.allocate_id(),
            "name": payload["name"],
            "description": payload.get("description", ""),
            "public": payload.get("public", False),
            "type": "NORMAL",
        }
        self.server.projects[key] = project
        self._reply(201, project)

    def _project_item(self, key: str, project: dict[str, Any], payload: dict[str, Any]) -> None:
        if self.command == "GET":
            self._reply(200, project)
        elif self.command == "PUT":
            for field in ("name", "description", "public"):
                if field in payload:
                    project[field] = payload[field]
            self._reply(200, project)
        elif self.command == "DELETE":
            if any(k == key for k, _ in self.server.repos):
                self._error(409, f"Project {key} still contains repositories.")
                return
            del self.server.projects[key]
            self._reply(204)
        else:
            self._error(405, "Method not allowed")

    def _permissions(self, key: str, query: dict[str, str]) -> None:
        group = query.get("name")
        if not group:
            self._error(400, "Group name is required.")
            return
        if self.command == "PUT":
            permission = query.get("permission")
            if permission not in ("PROJECT_READ", "PROJECT_WRITE", "PROJECT_ADMIN"):
                self._error(400, f"Invalid permission {permission}.")
                return
            self.server.permissions[(key, group)] = permission
            self._reply(204)
        elif self.command == "DELETE":
            self.server.permissions.pop((key, group), None)
            self._reply(204)
        else:
            self._error(405, "Method not allowed")

    # ---- repos --------------------------------------------------------------

    def _create_repo(self, key: str, project: dict[str, Any], payload: dict[str, Any]) -> None:
        name = payload.get("name")
        if not name:
            self._error(400, "Repository name is required.")
            return
        slug = payload.get("slug") or name.lower().replace(" ", "-")
        if (key, slug) in self.server.repos:
            self._error(409, f"This repository URL is already taken by '{name}' in '{key}'")
            return
        repo = {
            "slug": slug,
            "id": self.server.allocate_id(),
            "name": name,
            "description": payload.get("description", ""),
            "hierarchyId": f"h{slug}",
            "scmId": payload.get("scmId", "git"),
            "state": "AVAILABLE",
            "statusMessage": "Available",
            "forkable": payload.get("forkable", True),
            "archived": False,
            "public": payload.get("public", False),
            "project": project,
        }
        if "defaultBranch" in payload:
            repo["defaultBranch"] = payload["defaultBranch"]
        self.server.repos[(key, slug)] = repo
        self._reply(201, repo)

    def _repo_item(self, key: str, slug: str, payload: dict[str, Any]) -> None:
        repo = self.server.repos.get((key, slug))
        if repo is None:
            self._error(404, f"Repository {key}/{slug} does not exist.")
            return
        if self.command == "GET":
            self._reply(200, repo)
        elif self.command == "PUT":
            for field in ("name", "description", "forkable", "public", "defaultBranch"):
                if field in payload:
                    repo[field] = payload[field]
            self._reply(200, repo)
        elif self.command == "DELETE":
            del self.server.repos[(key, slug)]
            self._reply(202, {"context": None, "message": "Repository scheduled for deletion.", "exceptionName": None})
        else:
            self._error(405, "Method not allowed")

    do_GET = _handle
    do_POST = _handle
    do_PUT = _handle
    do_DELETE = _handle


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def bitbucket_server():
    """A fresh fake Bitbucket server for each test."""
    server = FakeBitbucketServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def server_config(bitbucket_server) -> ClientConfig:
    """Valid credentials for the fake server."""
    return ClientConfig(host=bitbucket_server.host, scheme="http", username=USERNAME, password=PASSWORD)


@pytest.fixture
def bitbucket_env(monkeypatch, bitbucket_server) -> FakeBitbucketServer:
    """Point the BITBUCKET_* environment variables at the fake server."""
    monkeypatch.setenv("BITBUCKET_HOST", bitbucket_server.host)
    monkeypatch.setenv("BITBUCKET_SCHEME", "http")
    monkeypatch.setenv("BITBUCKET_USERNAME", USERNAME)
    monkeypatch.setenv("BITBUCKET_PASSWORD", PASSWORD)
    return bitbucket_server
