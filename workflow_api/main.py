"""
Workflow Manager API Main Module.

This module provides a FastAPI-based REST API generating GitHub Actions
deployment workflows and publishing them to repositories as pull requests.

The API supports the following operations:
- Workflow preview (render YAML without touching GitHub)
- Workflow creation: validate, render, branch, commit and open a pull request
- Listing and reading workflow files of a repository
- Updating an existing workflow file through a pull request
- Publish history and per-user access token registration

Callers identify themselves with the ``X-User-ID`` header (``default`` when
absent); the user's GitHub token is looked up in the token store.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
import time
from typing import Callable, List, TypeVar

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .errors import TemplateGenerationFailed, WorkflowError
from .gh import (
    GitHubAPIError,
    GitHubForbiddenError,
    GitHubNotFoundError,
    GitHubTimeoutError,
    GitHubUnauthorizedError,
)
from .models import (
    DeploymentRequest,
    PublishRecord,
    PublishResult,
    UpdateWorkflowRequest,
    WorkflowFile,
    WorkflowFileContent,
)
from .service import DEFAULT_USER, WorkflowService
from .storage import store

# Initialize FastAPI application with configuration from settings
app = FastAPI(title=settings.api_title, version=settings.api_version)

logger = logging.getLogger("workflow_api")
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.propagate = False
logger.setLevel(getattr(logging, settings.log_level.value, logging.INFO))

if settings.github_token:
    store.save_token(DEFAULT_USER, settings.github_token)

service = WorkflowService(store, settings=settings)

T = TypeVar("T")

# seconds between client disconnect checks during a publish
DISCONNECT_POLL_INTERVAL = 0.25


def get_user_id(x_user_id: str = Header(default=DEFAULT_USER, alias="X-User-ID")) -> str:
    """Identify the caller from the ``X-User-ID`` header."""
    return x_user_id or DEFAULT_USER


def get_token(user_id: str = Depends(get_user_id)) -> str:
    """Resolve the caller's GitHub token; raises AccessTokenNotFound."""
    return store.get_access_token(user_id)


async def run_cancellable(request: Request, func: Callable[..., T], *args, **kwargs) -> T:
    """
    Run a blocking publish in the threadpool, cancelling it on client disconnect.

    ``func`` receives a ``cancel_event`` keyword argument. The event is set
    as soon as the client is seen to have gone away, and the publisher then
    stops before its next GitHub call with PublishCancelled.
    """
    cancel_event = threading.Event()

    async def client_gone() -> bool:
        if not cancel_event.is_set() and await request.is_disconnected():
            logger.warning(
                "Client disconnected, cancelling publish",
                extra={"props": {"path": request.url.path}},
            )
            cancel_event.set()
        return cancel_event.is_set()

    async def watch_disconnect() -> None:
        while not await client_gone():
            await asyncio.sleep(DISCONNECT_POLL_INTERVAL)

    await client_gone()
    watcher = asyncio.ensure_future(watch_disconnect())
    try:
        return await run_in_threadpool(func, *args, cancel_event=cancel_event, **kwargs)
    finally:
        watcher.cancel()


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """
    Log HTTP requests with timing information.

    Args:
        request: The incoming HTTP request
        call_next: The next middleware/handler in the chain

    Returns:
        HTTP response from the next handler
    """
    start = time.perf_counter()
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        status = getattr(response, "status_code", 500)
        logger.info(
            "HTTP request processed",
            extra={
                "props": {
                    "method": request.method,
                    "path": request.url.path,
                    "user_id": request.headers.get("x-user-id", DEFAULT_USER),
                    "status_code": status,
                    "duration_ms": int(duration_ms),
                    "is_slow": duration_ms > 5000,
                }
            },
        )


# Configure CORS middleware for cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allow_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    """
    Health check endpoint.

    Returns:
        dict: Status, API version and whether a default token is configured
    """
    return {
        "status": "ok",
        "version": settings.api_version,
        "default_token_configured": store.has_token(DEFAULT_USER),
        "timestamp": time.time(),
    }


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


@app.put("/auth/token", status_code=204)
def register_token(req: TokenRequest, user_id: str = Depends(get_user_id)):
    """Register the GitHub access token of the calling user."""
    store.save_token(user_id, req.token)
    logger.info("Access token registered", extra={"props": {"user_id": user_id}})


@app.delete("/auth/token", status_code=204)
def forget_token(user_id: str = Depends(get_user_id)):
    if not store.delete_token(user_id):
        raise HTTPException(404, "Access token not found")


class PreviewResponse(BaseModel):
    yaml: str


@app.post("/workflows/preview", response_model=PreviewResponse)
def preview_workflow(req: DeploymentRequest):
    """
    Render the workflow for a deployment request without publishing it.

    Raises:
        WorkflowValidationError: 400 if the request breaks a deployment rule
    """
    return PreviewResponse(yaml=service.preview_workflow(req))


@app.post("/workflows", response_model=PublishResult, status_code=201)
async def create_workflow(
    request: Request,
    req: DeploymentRequest,
    user_id: str = Depends(get_user_id),
    token: str = Depends(get_token),
):
    """
    Generate a workflow and publish it to the repository as a pull request.

    Returns:
        PublishResult: The opened pull request and its branch

    Raises:
        WorkflowValidationError: 400 before any call to GitHub
        PublishError: Status depends on the failing step (see errors module);
            499 PublishCancelled when the client disconnects mid-publish
    """
    result = await run_cancellable(request, service.create_workflow, token, req, user_id=user_id)
    logger.info(
        "Workflow published",
        extra={
            "props": {
                "user_id": user_id,
                "owner": req.owner,
                "repo": req.repository,
                "workflow": req.workflow_name,
                "deployment_type": req.deployment_type,
                "pr_number": result.pull_request_number,
            }
        },
    )
    return result


@app.get("/workflows/history", response_model=List[PublishRecord])
def publish_history(user_id: str = Depends(get_user_id)):
    """Publish attempts of the calling user, newest first."""
    return service.history(user_id)


@app.get("/workflows/{owner}/{repo}", response_model=List[WorkflowFile])
def list_workflows(owner: str, repo: str, token: str = Depends(get_token)):
    """List the workflow files of a repository; empty when it has none."""
    return service.list_workflows(token, owner, repo)


@app.get("/workflows/{owner}/{repo}/content", response_model=WorkflowFileContent)
def get_workflow_content(
    owner: str,
    repo: str,
    path: str = Query(..., min_length=1),
    token: str = Depends(get_token),
):
    """Return the decoded content and blob SHA of a workflow file."""
    return service.get_workflow_content(token, owner, repo, path)


@app.put("/workflows/{owner}/{repo}/file", response_model=PublishResult)
async def update_workflow(
    request: Request,
    owner: str,
    repo: str,
    req: UpdateWorkflowRequest,
    user_id: str = Depends(get_user_id),
    token: str = Depends(get_token),
):
    """
    Publish an edit of an existing workflow file as a pull request.

    Raises:
        HTTPException: 400 if the path does not match the body's repository
        WorkflowConflict: 409 if the file changed since ``sha`` was read
    """
    if req.owner != owner or req.repository != repo:
        raise HTTPException(400, "owner/repository in the path do not match the request body")
    return await run_cancellable(request, service.update_workflow, token, req, user_id=user_id)


# Exception handlers
@app.exception_handler(WorkflowError)
async def workflow_exception_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """
    Translate domain errors into JSON responses using their ``http_status``.

    Template failures are internal defects: their detail is logged, and the
    client only gets a generic message.
    """
    if isinstance(exc, TemplateGenerationFailed):
        logger.error(
            "template_generation_failed",
            extra={"props": {"path": request.url.path, "error": exc.message, **exc.details}},
        )
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": "failed to generate workflow template", "error": type(exc).__name__},
        )

    logger.warning(
        "workflow_error",
        extra={
            "props": {
                "path": request.url.path,
                "status": exc.http_status,
                "error": type(exc).__name__,
                "detail": exc.message,
                **exc.details,
            }
        },
    )
    content = {"detail": exc.message, "error": type(exc).__name__}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.http_status, content=content)


@app.exception_handler(GitHubAPIError)
async def github_exception_handler(request: Request, exc: GitHubAPIError) -> JSONResponse:
    """Map gateway errors raised on the read path to HTTP statuses."""
    if isinstance(exc, GitHubUnauthorizedError):
        status = 401
    elif isinstance(exc, GitHubForbiddenError):
        status = 403
    elif isinstance(exc, GitHubNotFoundError):
        status = 404
    elif isinstance(exc, GitHubTimeoutError):
        status = 504
    else:
        status = 502
    logger.warning(
        "github_error",
        extra={
            "props": {
                "path": request.url.path,
                "status": status,
                "upstream_status": exc.status_code,
                "response": exc.response_text,
            }
        },
    )
    return JSONResponse(
        status_code=status,
        content={"detail": exc.message, "error": type(exc).__name__, "upstream_status": exc.status_code},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.

    Returns:
        JSONResponse: 422 status with validation error details
    """
    errors = []
    for error in exc.errors():
        error_dict = {
            "type": error.get("type"),
            "loc": error.get("loc", []),
            "msg": str(error.get("msg", "")),
        }
        # ctx may hold exception instances
        if "ctx" in error and error["ctx"]:
            error_dict["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error_dict)

    logger.warning(
        "validation_error",
        extra={"props": {"path": request.url.path, "errors": errors}},
    )
    return JSONResponse(status_code=422, content={"detail": errors})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    logger.warning(
        "http_exception",
        extra={
            "props": {
                "path": request.url.path,
                "status": exc.status_code,
                "detail": str(exc.detail),
            }
        },
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and return a generic 500 without internal details."""
    logger.exception("unhandled_exception")
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})
