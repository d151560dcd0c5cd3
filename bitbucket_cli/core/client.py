"""
Core HTTP client for the Bitbucket Server REST API.

Handles transport configuration, request building, dispatch and the mapping
of HTTP outcomes onto typed results or typed errors.
"""

import base64
import http.client
import json
import logging
import os
import re
import time
import urllib.error
import urllib.parse
import urllib.request
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeVar

from bitbucket_cli.core.context import Context

logger = logging.getLogger(__name__)

# Configuration
API_PATH = "/rest/api/1.0/"
DEFAULT_SCHEME = "https"
DEFAULT_TIMEOUT = 10
JSON_MEDIA_TYPE = "application/json"
READ_CHUNK_SIZE = 64 * 1024
SUPPORTED_SCHEMES = ("http", "https")

# Whitespace and control characters never appear in a well-formed relative path
_INVALID_PATH_CHARS = re.compile(r"[\x00-\x20\x7f]")

T = TypeVar("T")


# =============================================================================
# Errors
# =============================================================================


class ErrorKind(str, Enum):
    """Identity of a client error. Compare kinds, not messages."""

    PERMISSION = "permission"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    RESPONSE_MALFORMED = "response_malformed"
    PARAMETERS = "parameters"
    CONFIG = "config"
    UNEXPECTED_STATUS = "unexpected_status"
    TRANSPORT = "transport"
    REQUEST_BUILD = "request_build"


class BitbucketError(Exception):
    """Base error class for client errors."""

    kind: ErrorKind | None = None

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def add_context(self, context: str) -> None:
        """Prefix the message with what was being attempted, keeping the error identity."""
        self.message = f"{context}: {self.message}"
        self.args = (self.message,)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON output."""
        result: dict[str, Any] = {"error": self.message}
        if self.kind is not None:
            result["kind"] = self.kind.value
        if self.details:
            result["details"] = self.details
        return result


class APIError(BitbucketError):
    """API error with status code and message."""

    def __init__(self, message: str, status: int = 0, details: dict | None = None):
        super().__init__(message, details)
        self.status = status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON output."""
        result = super().to_dict()
        if self.status:
            result["status"] = self.status
        return result


class PermissionDeniedError(APIError):
    """The credentials were rejected (HTTP 401)."""

    kind = ErrorKind.PERMISSION


class NotFoundError(APIError):
    """The resource does not exist (HTTP 404)."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(APIError):
    """The resource already exists or is in use (HTTP 409)."""

    kind = ErrorKind.CONFLICT


class ResponseMalformedError(APIError):
    """The server sent a body that is not valid JSON."""

    kind = ErrorKind.RESPONSE_MALFORMED


class UnexpectedStatusError(APIError):
    """Any other 4xx/5xx status."""

    kind = ErrorKind.UNEXPECTED_STATUS


class ValidationError(BitbucketError):
    """Validation error for local input/config issues (not API errors)."""


class ParametersError(ValidationError):
    """A request failed its required-field validation. No network call was made."""

    kind = ErrorKind.PARAMETERS


class ConfigError(ValidationError):
    """The transport configuration is incomplete or invalid."""

    kind = ErrorKind.CONFIG


class RequestBuildError(BitbucketError):
    """The request could not be built (bad path or unencodable payload)."""

    kind = ErrorKind.REQUEST_BUILD


class TransportError(BitbucketError):
    """The network round trip failed."""

    kind = ErrorKind.TRANSPORT


class RequestCancelledError(TransportError):
    """The caller cancelled the context."""


class DeadlineExceededError(TransportError):
    """The context deadline or the client timeout elapsed."""


STATUS_ERRORS: dict[int, type[APIError]] = {
    401: PermissionDeniedError,
    404: NotFoundError,
    409: ConflictError,
}


@contextmanager
def error_context(context: str) -> Iterator[None]:
    """Add ``context`` to any BitbucketError raised inside the block and re-raise it."""
    try:
        yield
    except BitbucketError as e:
        e.add_context(context)
        raise


# =============================================================================
# Transport Configuration
# =============================================================================


@dataclass(frozen=True)
class ClientConfig:
    """
    Connection parameters for a Bitbucket Server instance.

    HTTP access tokens only permit operations inside existing projects, so
    basic auth is required to be able to create projects.
    """

    host: str
    username: str = ""
    password: str = field(default="", repr=False)
    scheme: str = DEFAULT_SCHEME
    authorization: str = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigError("Bitbucket host is required")
        # Allow an empty scheme to mean the default
        scheme = (self.scheme or DEFAULT_SCHEME).lower()
        if scheme not in SUPPORTED_SCHEMES:
            raise ConfigError(f"Unsupported scheme {self.scheme!r}, expected one of {', '.join(SUPPORTED_SCHEMES)}")
        object.__setattr__(self, "scheme", scheme)

        creds = base64.b64encode(f"{self.username}:{self.password}".encode()).decode("ascii")
        object.__setattr__(self, "authorization", f"Basic {creds}")

    @property
    def base_url(self) -> str:
        """Scheme + host + API root, always ending in a slash."""
        return f"{self.scheme}://{self.host}{API_PATH}"

    @classmethod
    def from_env(
        cls,
        host: str | None = None,
        scheme: str | None = None,
        username: str | None = None,
        password: str | None = None,
    ) -> "ClientConfig":
        """
        Build a config from arguments, falling back to environment variables.

        Args:
            host: Server host[:port] (or BITBUCKET_HOST env var)
            scheme: http or https (or BITBUCKET_SCHEME env var, default https)
            username: Basic auth user (or BITBUCKET_USERNAME env var)
            password: Basic auth password (or BITBUCKET_PASSWORD env var)

        """
        host = host or os.environ.get("BITBUCKET_HOST")
        scheme = scheme or os.environ.get("BITBUCKET_SCHEME") or DEFAULT_SCHEME
        username = username or os.environ.get("BITBUCKET_USERNAME")
        password = password or os.environ.get("BITBUCKET_PASSWORD")

        if not host:
            raise ConfigError("BITBUCKET_HOST environment variable not set")
        if not username:
            raise ConfigError("BITBUCKET_USERNAME environment variable not set")
        if not password:
            raise ConfigError("BITBUCKET_PASSWORD environment variable not set")

        return cls(host=host, username=username, password=password, scheme=scheme)


# =============================================================================
# Response Interpreter
# =============================================================================


def _server_messages(body: bytes) -> list[str]:
    """Pull messages out of a Bitbucket error envelope: {"errors": [{"message": ...}]}."""
    try:
        data = json.loads(body)
    except ValueError:
        return []
    if not isinstance(data, dict) or not isinstance(data.get("errors"), list):
        return []
    return [e["message"] for e in data["errors"] if isinstance(e, dict) and e.get("message")]


def interpret_response(
    status: int,
    body: bytes,
    parser: Callable[[Any], T] | None = None,
) -> T | None:
    """
    Map an HTTP response onto a result or a typed error.

    Args:
        status: HTTP status code
        body: Full response body
        parser: Optional function applied to the decoded JSON body

    Returns:
        The parsed result, or None when no parser was given or the status is 204

    Raises:
        APIError: For 401/404/409, unexpected 4xx/5xx, or a body that is not JSON

    """
    error_cls = STATUS_ERRORS.get(status)
    if error_cls is None and status >= 400:
        error_cls = UnexpectedStatusError

    if error_cls is not None:
        messages = _server_messages(body)
        message = error_cls.kind.value.replace("_", " ") if error_cls.kind else "error"
        if error_cls is UnexpectedStatusError:
            message = f"{message} {status}"
        if messages:
            message = f"{message}: {'; '.join(messages)}"
        raise error_cls(message, status=status, details={"errors": messages} if messages else None)

    if parser is None or status == 204:
        return None

    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ResponseMalformedError(f"response malformed: {e}", status=status) from e

    return parser(data)


def encode_payload(payload: Any) -> bytes:
    """Encode a request payload as canonical JSON."""
    if hasattr(payload, "to_payload"):
        payload = payload.to_payload()
    try:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise RequestBuildError(f"failed to encode request payload: {e}") from e


# =============================================================================
# API Client (Request Builder + Dispatcher)
# =============================================================================


class APIClient:
    """
    Low-level HTTP client for the Bitbucket Server API.

    Handles:
    - Basic authentication on every request
    - Request building relative to the API root
    - One round trip per call, bounded by the client timeout and the context
    - Error mapping via interpret_response

    Holds no per-request state, so one instance can be shared between threads.
    """

    def __init__(
        self,
        config: ClientConfig,
        timeout: float = DEFAULT_TIMEOUT,
        opener: Callable[..., Any] | None = None,
    ):
        """
        Initialize the API client.

        Args:
            config: Transport configuration
            timeout: Upper bound in seconds for every call
            opener: Callable with the urllib.request.urlopen signature

        """
        self.config = config
        self.timeout = timeout
        self._base_url = config.base_url
        # Applied after the standard headers so they can't be shadowed
        self._headers: Mapping[str, str] = {"Authorization": config.authorization}
        self._opener = opener or urllib.request.urlopen

    @property
    def base_url(self) -> str:
        return self._base_url

    def build_request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> urllib.request.Request:
        """
        Build an outbound request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            path: Path relative to the API root (e.g., projects/KEY/repos)
            payload: JSON body for non-GET methods (dict or request object)
            params: Query parameters, None values are dropped

        Returns:
            A urllib Request ready to be sent

        Raises:
            RequestBuildError: If the path can't be resolved or the payload can't be encoded

        """
        method = method.upper()
        if _INVALID_PATH_CHARS.search(path):
            raise RequestBuildError(f"invalid request path {path!r}")
        try:
            url = urllib.parse.urljoin(self._base_url, path)
            query = urllib.parse.urlsplit(url).query
        except ValueError as e:
            raise RequestBuildError(f"invalid request path {path!r}: {e}") from e

        if params:
            filtered_params = {k: v for k, v in params.items() if v is not None}
            if filtered_params:
                separator = "&" if query else "?"
                url = f"{url}{separator}{urllib.parse.urlencode(filtered_params)}"

        body = None
        if method != "GET" and payload is not None:
            body = encode_payload(payload)

        req = urllib.request.Request(url, data=body, method=method)
        req.add_header("Accept", JSON_MEDIA_TYPE)
        if body is not None:
            req.add_header("Content-Type", JSON_MEDIA_TYPE)
        for name, value in self._headers.items():
            req.add_header(name, value)
        return req

    def send(
        self,
        request: urllib.request.Request,
        parser: Callable[[Any], T] | None = None,
        ctx: Context | None = None,
    ) -> T | None:
        """
        Send a request and interpret the response.

        Args:
            request: Request from build_request
            parser: Optional function applied to the decoded JSON body
            ctx: Cancellation/deadline context

        Returns:
            Parsed result, or None

        Raises:
            TransportError: On network failure, timeout or cancellation
            APIError: On error statuses or malformed bodies

        """
        ctx = ctx or Context.background()
        timeout = self._call_timeout(ctx)
        deadline = time.monotonic() + timeout
        method = request.get_method()
        url = request.full_url

        try:
            with self._opener(request, timeout=timeout) as response:
                status = response.status
                body = self._read_body(response, ctx, deadline)
        except urllib.error.HTTPError as e:
            status = e.code
            try:
                body = self._read_body(e, ctx, deadline) if e.fp is not None else b""
            finally:
                e.close()
        except TimeoutError as e:
            raise DeadlineExceededError(f"{method} {url} timed out after {timeout:g} seconds") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise DeadlineExceededError(f"{method} {url} timed out after {timeout:g} seconds") from e
            raise TransportError(f"Connection error: {e.reason}") from e
        except (OSError, http.client.HTTPException) as e:
            raise TransportError(f"Connection error: {e}") from e

        logger.debug("%s %s -> %d", method, url, status)
        return interpret_response(status, body, parser)

    def request(
        self,
        method: str,
        path: str,
        payload: Any = None,
        parser: Callable[[Any], T] | None = None,
        params: Mapping[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> T | None:
        """Build and send a request."""
        req = self.build_request(method, path, payload, params)
        return self.send(req, parser, ctx)

    def _call_timeout(self, ctx: Context) -> float:
        """Timeout for one call: the client timeout or the context deadline, whichever is tighter."""
        if ctx.cancelled:
            raise RequestCancelledError("request cancelled before it was sent")
        remaining = ctx.remaining()
        if remaining is None:
            return self.timeout
        if remaining <= 0:
            raise DeadlineExceededError("deadline exceeded before the request was sent")
        return min(self.timeout, remaining)

    @staticmethod
    def _read_body(response: Any, ctx: Context, deadline: float) -> bytes:
        """
        Read the whole body, giving up once the call deadline has passed.

        read1() returns after a single socket read, so a server trickling bytes
        can't hold one read open past the deadline.
        """
        read = getattr(response, "read1", response.read)
        chunks = []
        while True:
            if ctx.cancelled:
                raise RequestCancelledError("request cancelled while reading the response")
            if time.monotonic() >= deadline:
                raise DeadlineExceededError("deadline exceeded while reading the response")
            chunk = read(READ_CHUNK_SIZE)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks)

    # =========================================================================
    # HTTP Methods
    # =========================================================================

    def get(
        self,
        path: str,
        parser: Callable[[Any], T] | None = None,
        params: Mapping[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> T | None:
        """Make a GET request."""
        return self.request("GET", path, parser=parser, params=params, ctx=ctx)

    def post(
        self,
        path: str,
        payload: Any = None,
        parser: Callable[[Any], T] | None = None,
        ctx: Context | None = None,
    ) -> T | None:
        """Make a POST request."""
        return self.request("POST", path, payload, parser=parser, ctx=ctx)

    def put(
        self,
        path: str,
        payload: Any = None,
        parser: Callable[[Any], T] | None = None,
        params: Mapping[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> T | None:
        """Make a PUT request."""
        return self.request("PUT", path, payload, parser=parser, params=params, ctx=ctx)

    def delete(
        self,
        path: str,
        params: Mapping[str, Any] | None = None,
        ctx: Context | None = None,
    ) -> None:
        """Make a DELETE request."""
        self.request("DELETE", path, params=params, ctx=ctx)

    def ping(self, ctx: Context | None = None) -> None:
        """Check that the server is reachable and accepts the credentials."""
        with error_context("error fetching projects"):
            self.get("projects", ctx=ctx)
