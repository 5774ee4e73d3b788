"""
GitHub REST integration for the Workflow Manager API.

This module is the transport layer between the publisher and GitHub's REST
API. It sets the authentication and versioning headers, marshals JSON,
applies per-call timeouts and maps HTTP status codes to typed exceptions.

Classes:
    HTTPClient: Abstract HTTP client interface for dependency injection
    RequestsHTTPClient: HTTPClient backed by the requests library
    GitHubClient: Authenticated low-level client (headers, status mapping, retries)
    GitHubGateway: Abstract gateway consumed by the publisher
    RestGitHubGateway: GitHubGateway implemented against the REST API

Retry policy:
    Calls that change repository state (branch, file, pull request) are
    never retried. Idempotent reads of the workflows directory and of file
    contents retry transport failures with tenacity.
"""

import base64
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .errors import truncate

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors; also the catch-all for unexpected statuses."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_text = truncate(response_text)
        super().__init__(self.message)


class GitHubUnauthorizedError(GitHubAPIError):
    """401: the token is invalid or expired."""


class GitHubForbiddenError(GitHubAPIError):
    """403: the token lacks the required permissions."""


class GitHubNotFoundError(GitHubAPIError):
    """404: the resource does not exist or is invisible to the token."""


class GitHubConflictError(GitHubAPIError):
    """409: the request conflicts with the current state of the resource."""


class GitHubTransportError(GitHubAPIError):
    """The request never produced an HTTP response."""


class GitHubTimeoutError(GitHubTransportError):
    """The request exceeded its timeout."""


STATUS_ERRORS = {
    401: (GitHubUnauthorizedError, "Authentication failed"),
    403: (GitHubForbiddenError, "Insufficient permissions"),
    404: (GitHubNotFoundError, "Resource not found"),
    409: (GitHubConflictError, "Conflict"),
}


class HTTPClient(ABC):
    """Abstract HTTP client interface for dependency injection."""

    @abstractmethod
    def get(
        self,
        url: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """Make a GET request."""

    @abstractmethod
    def post(
        self,
        url: str,
        headers: Dict[str, str],
        json_data: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """Make a POST request."""

    @abstractmethod
    def put(
        self,
        url: str,
        headers: Dict[str, str],
        json_data: Optional[Dict[str, Any]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """Make a PUT request."""


class RequestsHTTPClient(HTTPClient):
    """Concrete HTTP client implementation using a shared requests session."""

    def __init__(self, session: Optional[requests.Session] = None):
        self.session = session or requests.Session()

    def get(self, url, headers, params=None, timeout=DEFAULT_TIMEOUT):
        return self.session.get(url, headers=headers, params=params, timeout=timeout)

    def post(self, url, headers, json_data=None, timeout=DEFAULT_TIMEOUT):
        return self.session.post(url, headers=headers, json=json_data, timeout=timeout)

    def put(self, url, headers, json_data=None, timeout=DEFAULT_TIMEOUT):
        return self.session.put(url, headers=headers, json=json_data, timeout=timeout)


class GitHubClient:
    """Authenticated low-level client for the GitHub REST API."""

    BASE_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"
    USER_AGENT = "workflow-manager-api"

    def __init__(
        self,
        token: str,
        http_client: Optional[HTTPClient] = None,
        base_url: Optional[str] = None,
        api_version: Optional[str] = None,
        user_agent: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        read_retry_attempts: int = 3,
        retry_wait: Optional[Callable] = None,
    ):
        """
        Initialize GitHub client.

        Args:
            token: GitHub access token (sent as a Bearer token, never logged)
            http_client: HTTP client implementation (defaults to RequestsHTTPClient)
            base_url: API base URL, for GitHub Enterprise
            api_version: X-GitHub-Api-Version header value
            user_agent: User-Agent header value
            timeout: Default per-call timeout in seconds
            read_retry_attempts: Attempts for idempotent reads
            retry_wait: tenacity wait strategy between read attempts
        """
        self.token = token
        self.http_client = http_client or RequestsHTTPClient()
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self.timeout = timeout
        self.read_retry_attempts = read_retry_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=1, max=8)
        self._headers = {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {token}",
            "X-GitHub-Api-Version": api_version or self.API_VERSION,
            "User-Agent": user_agent or self.USER_AGENT,
        }

    def _make_request(
        self,
        method: str,
        endpoint: str,
        timeout: Optional[float] = None,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """
        Make a single request to the GitHub API.

        Args:
            method: HTTP method (GET, POST, PUT)
            endpoint: API endpoint (e.g. '/repos/owner/repo')
            timeout: Timeout in seconds for this call
            params: Query parameters (GET only)
            json_data: JSON body (POST/PUT only)

        Returns:
            Response object with a 2xx status

        Raises:
            GitHubAPIError: One of its subclasses, chosen by status code
        """
        url = f"{self.base_url}{endpoint}"
        timeout = timeout if timeout is not None else self.timeout
        logger.debug(f"Making {method} request to {url}")
        try:
            if method.upper() == "GET":
                response = self.http_client.get(url, headers=self._headers, params=params, timeout=timeout)
            elif method.upper() == "POST":
                response = self.http_client.post(url, headers=self._headers, json_data=json_data, timeout=timeout)
            elif method.upper() == "PUT":
                response = self.http_client.put(url, headers=self._headers, json_data=json_data, timeout=timeout)
            else:
                raise ValueError(f"Unsupported HTTP method: {method}")
        except requests.Timeout as e:
            logger.warning(f"GitHub API request timed out after {timeout}s: {method} {endpoint}")
            raise GitHubTimeoutError(f"Request timed out: {e}") from e
        except requests.RequestException as e:
            logger.warning(f"GitHub API request failed: {method} {endpoint}: {e}")
            raise GitHubTransportError(f"Request failed: {e}") from e

        self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        status = response.status_code
        if 200 <= status < 300:
            return
        text = response.text
        if status in STATUS_ERRORS:
            error_class, message = STATUS_ERRORS[status]
            raise error_class(message, status, text)
        if status >= 500:
            raise GitHubAPIError(f"GitHub server error: {status}", status, text)
        raise GitHubAPIError(f"GitHub API request failed: {status}", status, text)

    def read(self, endpoint: str, timeout: Optional[float] = None) -> requests.Response:
        """GET ``endpoint``, retrying transport failures."""

        @retry(
            stop=stop_after_attempt(self.read_retry_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type(GitHubTransportError),
            reraise=True,
        )
        def _retry_request():
            return self._make_request("GET", endpoint, timeout=timeout)

        return _retry_request()


def _json(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise GitHubAPIError("Invalid JSON in GitHub response", response.status_code, response.text) from e


def _repo_path(owner: str, repo: str) -> str:
    return f"/repos/{quote(owner, safe='')}/{quote(repo, safe='')}"


class GitHubGateway(ABC):
    """
    Repository operations needed to publish and read workflow files.

    Implementations are bound to one access token. Every method accepts a
    ``timeout`` in seconds and raises GitHubAPIError subclasses on failure.
    """

    @abstractmethod
    def get_repository(self, owner: str, repo: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Return repository metadata, including ``default_branch``."""

    @abstractmethod
    def get_branch_sha(self, owner: str, repo: str, branch: str, timeout: Optional[float] = None) -> str:
        """Return the commit SHA at the tip of ``branch``."""

    @abstractmethod
    def create_branch(self, owner: str, repo: str, branch: str, sha: str, timeout: Optional[float] = None) -> None:
        """Create ``branch`` pointing at ``sha``."""

    @abstractmethod
    def put_file(
        self,
        owner: str,
        repo: str,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Create or update the file at ``path`` on ``branch``; ``sha`` is required for updates."""

    @abstractmethod
    def create_pull_request(
        self,
        owner: str,
        repo: str,
        head: str,
        base: str,
        title: str,
        body: str,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Open a pull request and return its JSON (``html_url``, ``number``)."""

    @abstractmethod
    def list_directory(self, owner: str, repo: str, path: str, timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Return the entries of directory ``path``."""

    @abstractmethod
    def get_file(self, owner: str, repo: str, path: str, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Return the contents entry of file ``path`` (base64 ``content`` and ``sha``)."""


class RestGitHubGateway(GitHubGateway):
    """GitHubGateway implemented with GitHubClient against the REST API."""

    def __init__(self, github_client: GitHubClient):
        self.github_client = github_client

    def get_repository(self, owner, repo, timeout=None):
        response = self.github_client._make_request("GET", _repo_path(owner, repo), timeout=timeout)
        return _json(response)

    def get_branch_sha(self, owner, repo, branch, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/git/refs/heads/{quote(branch)}"
        response = self.github_client._make_request("GET", endpoint, timeout=timeout)
        data = _json(response)
        # A non-exact match returns every ref sharing the prefix.
        if isinstance(data, list):
            wanted = f"refs/heads/{branch}"
            data = next((ref for ref in data if ref.get("ref") == wanted), None)
            if data is None:
                raise GitHubNotFoundError(f"Branch not found: {branch}", 404)
        try:
            return data["object"]["sha"]
        except (KeyError, TypeError) as e:
            raise GitHubAPIError("Unexpected ref payload", response.status_code, response.text) from e

    def create_branch(self, owner, repo, branch, sha, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/git/refs"
        payload = {"ref": f"refs/heads/{branch}", "sha": sha}
        response = self.github_client._make_request("POST", endpoint, timeout=timeout, json_data=payload)
        if response.status_code != 201:
            raise GitHubAPIError(
                f"Failed to create branch: {response.status_code}", response.status_code, response.text
            )

    def put_file(self, owner, repo, path, content, message, branch, sha=None, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/contents/{quote(path)}"
        payload = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("utf-8"),
            "branch": branch,
        }
        if sha is not None:
            payload["sha"] = sha
        response = self.github_client._make_request("PUT", endpoint, timeout=timeout, json_data=payload)
        return _json(response)

    def create_pull_request(self, owner, repo, head, base, title, body, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/pulls"
        payload = {"title": title, "body": body, "head": head, "base": base}
        response = self.github_client._make_request("POST", endpoint, timeout=timeout, json_data=payload)
        if response.status_code != 201:
            raise GitHubAPIError(
                f"Failed to create pull request: {response.status_code}", response.status_code, response.text
            )
        return _json(response)

    def list_directory(self, owner, repo, path, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/contents/{quote(path)}"
        response = self.github_client.read(endpoint, timeout=timeout)
        data = _json(response)
        if not isinstance(data, list):
            raise GitHubAPIError(f"Not a directory: {path}", response.status_code, response.text)
        return data

    def get_file(self, owner, repo, path, timeout=None):
        endpoint = f"{_repo_path(owner, repo)}/contents/{quote(path)}"
        response = self.github_client.read(endpoint, timeout=timeout)
        data = _json(response)
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            raise GitHubAPIError(f"Not a file: {path}", response.status_code, response.text)
        return data
