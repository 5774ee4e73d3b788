"""
CLI for interacting with the Workflow Manager API.

This module provides a command-line interface for generating GitHub Actions
deployment workflows and publishing them to repositories as pull requests.

Commands:
    preview: Render the workflow of a deployment request file
    create: Publish the workflow of a deployment request file
    list: List the workflow files of a repository
    show: Print a workflow file and its blob SHA
    update: Publish a local edit of a workflow file
    history: Show the caller's publish history
    login: Register a GitHub token for the calling user
    status: Check API health status
"""

import logging
import os
from typing import Any, Dict, Optional

import requests
import typer
import yaml
from rich import box
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

app = typer.Typer(help="CLI for interacting with the Workflow Manager API")
console = Console()

# Configuration
DEFAULT_BASE = os.getenv("WORKFLOW_MANAGER_API_URL", "http://localhost:8080")
DEFAULT_USER = os.getenv("WORKFLOW_MANAGER_USER", "default")
DEFAULT_TIMEOUT = int(os.getenv("WORKFLOW_MANAGER_TIMEOUT", "90"))

BaseOption = typer.Option(None, "--base", "-b", help="Base API URL")
UserOption = typer.Option(None, "--user", "-u", help="User ID sent as X-User-ID")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")


def _base_url(base: Optional[str]) -> str:
    return (base or DEFAULT_BASE).rstrip("/")


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


class APIClient:
    """Thin HTTP client for the Workflow Manager API."""

    def __init__(self, base_url: str, user: Optional[str] = None, timeout: int = DEFAULT_TIMEOUT):
        self.base_url = base_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.headers["X-User-ID"] = user or DEFAULT_USER

    def _make_request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
        **kwargs
    ) -> requests.Response:
        """
        Make an HTTP request to the API.

        Raises:
            requests.RequestException: For transport and HTTP errors
        """
        url = f"{self.base_url}{endpoint}"
        kwargs.setdefault("timeout", self.timeout)
        try:
            response = self.session.request(method.upper(), url, json=json_data, **kwargs)
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            logging.debug(f"API request failed: {e}", exc_info=True)
            raise

    def get(self, endpoint: str, **kwargs) -> requests.Response:
        return self._make_request("GET", endpoint, **kwargs)

    def post(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None, **kwargs) -> requests.Response:
        return self._make_request("POST", endpoint, json_data, **kwargs)

    def put(self, endpoint: str, json_data: Optional[Dict[str, Any]] = None, **kwargs) -> requests.Response:
        return self._make_request("PUT", endpoint, json_data, **kwargs)


def _load_request(config_path: str) -> Dict[str, Any]:
    """
    Load a deployment request from a JSON or YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is not a JSON/YAML mapping
    """
    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise FileNotFoundError(f"Request file '{config_path}' not found")
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid JSON/YAML in request file '{config_path}': {e}")
    if not isinstance(data, dict):
        raise ValueError(f"Request file '{config_path}' must contain a mapping")
    return data


def _handle_api_error(error: requests.RequestException, operation: str) -> None:
    """Print the API's error detail (or the transport error) for ``operation``."""
    response = getattr(error, "response", None)
    if response is None:
        console.print(f"[red]API Error ({operation}):[/red] {error}")
    else:
        try:
            body = response.json()
        except ValueError:
            body = {"detail": response.text}
        detail = body.get("detail", body) if isinstance(body, dict) else body
        console.print(f"[red]API Error ({operation}):[/red] {response.status_code} - {detail}")
        details = body.get("details") if isinstance(body, dict) else None
        if details and details.get("branch"):
            console.print(f"[yellow]Branch left behind:[/yellow] {details['branch']}")
    logging.debug(f"API error during {operation}", exc_info=True)


@app.command("preview")
def preview(
    config: str = typer.Argument(..., help="Path to a JSON/YAML deployment request"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Write the YAML to this file"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Render the workflow for a deployment request without publishing it."""
    _setup_logging(verbose)
    try:
        data = _load_request(config)
        response = APIClient(_base_url(base), user).post("/workflows/preview", json_data=data)
        content = response.json()["yaml"]
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except requests.RequestException as e:
        _handle_api_error(e, "workflow preview")
        raise typer.Exit(1)

    if output:
        with open(output, "w") as f:
            f.write(content)
        console.print(f"[green]Workflow written to[/green] {output}")
    else:
        console.print(Syntax(content, "yaml"))


@app.command("create")
def create(
    config: str = typer.Argument(..., help="Path to a JSON/YAML deployment request"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Generate a workflow and open a pull request adding it."""
    _setup_logging(verbose)
    try:
        data = _load_request(config)
        response = APIClient(_base_url(base), user).post("/workflows", json_data=data)
        result = response.json()
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)
    except requests.RequestException as e:
        _handle_api_error(e, "workflow creation")
        raise typer.Exit(1)

    console.print(f"[green]{result['message']}[/green]")
    console.print(f"[blue]Pull request:[/blue] {result['fileUrl']}")
    console.print(f"[blue]Branch:[/blue] {result['branch']}")


@app.command("list")
def list_workflows(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """List the workflow files of a repository."""
    _setup_logging(verbose)
    try:
        response = APIClient(_base_url(base), user).get(f"/workflows/{owner}/{repo}")
        items = response.json()
    except requests.RequestException as e:
        _handle_api_error(e, f"listing workflows of {owner}/{repo}")
        raise typer.Exit(1)

    if not items:
        console.print("[yellow]No workflows found[/yellow]")
        return

    table = Table(title=f"Workflows in {owner}/{repo}", box=box.SIMPLE_HEAVY)
    table.add_column("Name", style="bold")
    table.add_column("Path", style="blue")
    table.add_column("SHA", style="cyan")
    table.add_column("Size", style="yellow", justify="right")
    for item in items:
        table.add_row(item["name"], item["path"], item["sha"][:10], str(item.get("size", 0)))
    console.print(table)


@app.command("show")
def show(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    path: str = typer.Argument(..., help="Workflow path, e.g. .github/workflows/deploy.yml"),
    raw: bool = typer.Option(False, "--raw", help="Print the JSON response"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Print a workflow file together with the SHA needed to update it."""
    _setup_logging(verbose)
    try:
        response = APIClient(_base_url(base), user).get(
            f"/workflows/{owner}/{repo}/content", params={"path": path}
        )
        data = response.json()
    except requests.RequestException as e:
        _handle_api_error(e, f"reading {path}")
        raise typer.Exit(1)

    if raw:
        console.print_json(data=data)
        return
    console.print(f"[blue]SHA:[/blue] {data['sha']}")
    console.print(Syntax(data["content"], "yaml"))


@app.command("update")
def update(
    owner: str = typer.Argument(..., help="Repository owner"),
    repo: str = typer.Argument(..., help="Repository name"),
    path: str = typer.Argument(..., help="Workflow path in the repository"),
    file: str = typer.Argument(..., help="Local file holding the new content"),
    sha: str = typer.Option(..., "--sha", help="Blob SHA of the file as last read"),
    message: str = typer.Option("", "--message", "-m", help="Commit message"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Open a pull request replacing a workflow file with a local version."""
    _setup_logging(verbose)
    try:
        with open(file, "r") as f:
            content = f.read()
    except FileNotFoundError:
        console.print(f"[red]Error:[/red] File '{file}' not found")
        raise typer.Exit(1)

    payload = {
        "owner": owner,
        "repository": repo,
        "filePath": path,
        "content": content,
        "sha": sha,
        "commitMessage": message,
    }
    try:
        response = APIClient(_base_url(base), user).put(f"/workflows/{owner}/{repo}/file", json_data=payload)
        result = response.json()
    except requests.RequestException as e:
        _handle_api_error(e, f"updating {path}")
        raise typer.Exit(1)

    console.print(f"[green]{result['message']}[/green]")
    console.print(f"[blue]Pull request:[/blue] {result['fileUrl']}")


@app.command("history")
def history(
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show the publish attempts of the calling user."""
    _setup_logging(verbose)
    try:
        records = APIClient(_base_url(base), user).get("/workflows/history").json()
    except requests.RequestException as e:
        _handle_api_error(e, "reading publish history")
        raise typer.Exit(1)

    if not records:
        console.print("[yellow]No publish attempts yet[/yellow]")
        return

    styles = {"created": "green", "updated": "green", "failed": "red"}
    table = Table(title="Publish history", box=box.SIMPLE_HEAVY)
    table.add_column("When", style="dim")
    table.add_column("Repository", style="blue")
    table.add_column("Workflow", style="bold")
    table.add_column("Status")
    table.add_column("Branch", style="cyan")
    table.add_column("Pull request / error")
    for record in records:
        status_value = record["status"]
        table.add_row(
            record["createdAt"][:19],
            f"{record['owner']}/{record['repository']}",
            record["workflowName"],
            f"[{styles.get(status_value, 'white')}]{status_value}[/]",
            record.get("branch") or "-",
            record.get("pullRequestUrl") or record.get("errorMessage") or "-",
        )
    console.print(table)


@app.command("login")
def login(
    token: str = typer.Option(..., "--token", "-t", prompt=True, hide_input=True, help="GitHub access token"),
    base: Optional[str] = BaseOption,
    user: Optional[str] = UserOption,
    verbose: bool = VerboseOption,
) -> None:
    """Register a GitHub access token for the calling user."""
    _setup_logging(verbose)
    try:
        APIClient(_base_url(base), user).put("/auth/token", json_data={"token": token})
    except requests.RequestException as e:
        _handle_api_error(e, "registering token")
        raise typer.Exit(1)
    console.print(f"[green]Token registered for user[/green] {user or DEFAULT_USER}")


@app.command("status")
def status(
    base: Optional[str] = BaseOption,
    verbose: bool = VerboseOption,
) -> None:
    """Check the health status of the Workflow Manager API."""
    _setup_logging(verbose)
    try:
        response = APIClient(_base_url(base), timeout=5).get("/health")
        health_data = response.json()
    except requests.RequestException as e:
        console.print(f"[red]Cannot connect to API:[/red] {e}")
        console.print(f"[blue]Attempted URL:[/blue] {_base_url(base)}")
        raise typer.Exit(1)

    console.print("[green]Workflow Manager API is running[/green]")
    console.print(f"[blue]Base URL:[/blue] {_base_url(base)}")
    console.print(f"[blue]Version:[/blue] {health_data.get('version', 'unknown')}")
    configured = health_data.get("default_token_configured")
    console.print(f"[blue]Default token configured:[/blue] {'yes' if configured else 'no'}")


if __name__ == "__main__":
    app()
