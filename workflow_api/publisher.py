"""
Git publishing orchestrator.

A workflow file is landed in a repository as a pull request through a fixed
sequence of steps, each depending on the previous one:

    verify_repository -> resolve_default_branch -> resolve_base_sha
        -> create_branch -> write_file -> open_pull_request

The sequence is a linear state machine::

    Idle -> Verified -> BranchPointResolved -> BranchCreated
         -> FileWritten -> PullRequestOpened

Any step may end in Failed. Nothing is retried and nothing is rolled back:
a failure after create_branch leaves the branch (and possibly the commit)
in the repository, and the raised PublishError names that branch.

Each run is bounded by a PublishContext. The context is checked before every
step and caps every GitHub call's timeout to the remaining budget, so a
cancelled or expired publish never starts another step.
"""

import base64
import binascii
import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional

from .errors import (
    EmptyRepository,
    FileShaRequired,
    GitHubStepFailed,
    PermissionDenied,
    PublishCancelled,
    PublishError,
    PublishTimeout,
    RepositoryNotFound,
    TokenRejected,
    WorkflowAlreadyExists,
    WorkflowConflict,
    WorkflowScopeMissing,
)
from .gh import (
    GitHubAPIError,
    GitHubConflictError,
    GitHubForbiddenError,
    GitHubGateway,
    GitHubNotFoundError,
    GitHubTimeoutError,
    GitHubTransportError,
    GitHubUnauthorizedError,
)
from .models import (
    WORKFLOWS_DIR,
    PublishResult,
    WorkflowFile,
    WorkflowFileContent,
    workflow_file_path,
)
from .validation import WORKFLOW_EXTENSIONS, validate_workflow_path

logger = logging.getLogger(__name__)

DEFAULT_SIGNATURE = "Calance Workflow Manager"


class PublishStep(str, Enum):
    verify_repository = "verify_repository"
    resolve_default_branch = "resolve_default_branch"
    resolve_base_sha = "resolve_base_sha"
    create_branch = "create_branch"
    write_file = "write_file"
    open_pull_request = "open_pull_request"


class PublishState(str, Enum):
    idle = "idle"
    verified = "verified"
    branch_point_resolved = "branch_point_resolved"
    branch_created = "branch_created"
    file_written = "file_written"
    pull_request_opened = "pull_request_opened"
    failed = "failed"


class PublishContext:
    """
    Deadline and cancellation for one publish run.

    Args:
        timeout: Budget in seconds for the whole run
        request_timeout: Upper bound in seconds for a single GitHub call
        cancel_event: Set by the caller to stop the run before its next step
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        timeout: float = 60,
        request_timeout: float = 15,
        cancel_event: Optional[threading.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.request_timeout = request_timeout
        self.cancel_event = cancel_event
        self._clock = clock
        self.deadline = clock() + timeout

    @property
    def cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def remaining(self) -> float:
        return self.deadline - self._clock()

    def checkpoint(self, step: PublishStep, branch: Optional[str] = None) -> None:
        """Raise if the run must not start ``step``."""
        if self.cancelled:
            raise PublishCancelled(f"publish cancelled before {step.value}", step.value, branch=branch)
        if self.remaining() <= 0:
            raise PublishTimeout(f"publish budget exhausted before {step.value}", step.value, branch=branch)

    def call_timeout(self) -> float:
        return max(0.001, min(self.request_timeout, self.remaining()))


class PublishPlan:
    """Everything that differs between publishing a new workflow and updating one."""

    def __init__(
        self,
        owner: str,
        repo: str,
        workflow_name: str,
        file_path: str,
        content: str,
        commit_message: str,
        pr_title: str,
        pr_body: str,
        branch_prefix: str,
        sha: Optional[str] = None,
        result_suffix: str = "",
    ):
        self.owner = owner
        self.repo = repo
        self.workflow_name = workflow_name
        self.file_path = file_path
        self.content = content
        self.commit_message = commit_message
        self.pr_title = pr_title
        self.pr_body = pr_body
        self.branch_prefix = branch_prefix
        self.sha = sha
        self.result_suffix = result_suffix

    @property
    def is_update(self) -> bool:
        return self.sha is not None


class PublishRun:
    """Mutable state of a single publish run."""

    def __init__(self, plan: PublishPlan, context: PublishContext):
        self.plan = plan
        self.context = context
        self.state = PublishState.idle
        self.default_branch: Optional[str] = None
        self.base_sha: Optional[str] = None
        self.branch: Optional[str] = None
        self.completed: List[PublishStep] = []

    def advance(self, step: PublishStep, state: Optional[PublishState] = None) -> None:
        self.completed.append(step)
        if state is not None:
            self.state = state
        logger.debug(
            "Publish step completed",
            extra={"props": {"repo": f"{self.plan.owner}/{self.plan.repo}", "step": step.value, "state": self.state.value}},
        )


class WorkflowPublisher:
    """
    Publishes workflow files as pull requests and reads them back.

    The publisher is bound to a GitHubGateway (and therefore to one access
    token). It keeps no state between calls.
    """

    def __init__(
        self,
        gateway: GitHubGateway,
        request_timeout: float = 15,
        publish_timeout: float = 60,
        signature: str = DEFAULT_SIGNATURE,
        clock: Callable[[], float] = time.time,
    ):
        self.gateway = gateway
        self.request_timeout = request_timeout
        self.publish_timeout = publish_timeout
        self.signature = signature
        self._clock = clock

    def new_context(self, cancel_event: Optional[threading.Event] = None) -> PublishContext:
        return PublishContext(self.publish_timeout, self.request_timeout, cancel_event)

    def publish(
        self,
        owner: str,
        repo: str,
        workflow_name: str,
        content: str,
        context: Optional[PublishContext] = None,
    ) -> PublishResult:
        """
        Publish a new workflow at ``.github/workflows/{workflow_name}.yml`` as a pull request.

        Args:
            owner: Repository owner
            repo: Repository name
            workflow_name: Validated workflow name
            content: Workflow YAML
            context: Deadline/cancellation; a fresh one is created if omitted

        Returns:
            PublishResult pointing at the opened pull request

        Raises:
            PublishError: One of its subclasses, naming the failing step
        """
        plan = PublishPlan(
            owner=owner,
            repo=repo,
            workflow_name=workflow_name,
            file_path=workflow_file_path(workflow_name),
            content=content,
            commit_message=f"Add workflow: {workflow_name}",
            pr_title=f"Add workflow: {workflow_name}",
            pr_body=(
                f"This PR adds the GitHub Actions workflow for `{workflow_name}`.\n\n"
                f"Generated automatically by {self.signature}."
            ),
            branch_prefix="workflow",
        )
        return self._run(plan, context or self.new_context())

    def publish_update(
        self,
        owner: str,
        repo: str,
        file_path: str,
        content: str,
        sha: str,
        commit_message: Optional[str] = None,
        context: Optional[PublishContext] = None,
    ) -> PublishResult:
        """
        Publish an edit of an existing workflow file as a pull request.

        ``sha`` must be the blob SHA the caller last read; GitHub rejects the
        write with a conflict if the file has changed since.

        Raises:
            InvalidWorkflowPath: Before any network call, for a bad path
            FileShaRequired: Before any network call, when ``sha`` is empty
            PublishError: One of its subclasses, naming the failing step
        """
        workflow_name = validate_workflow_path(file_path)
        if not sha:
            raise FileShaRequired(file_path)
        plan = PublishPlan(
            owner=owner,
            repo=repo,
            workflow_name=workflow_name,
            file_path=file_path,
            content=content,
            commit_message=commit_message or f"Update workflow: {workflow_name}",
            pr_title=f"Update workflow: {workflow_name}",
            pr_body=(
                f"This PR updates the GitHub Actions workflow `{workflow_name}`.\n\n"
                f"Updated automatically by {self.signature}."
            ),
            branch_prefix="update-workflow",
            sha=sha,
            result_suffix=" update",
        )
        return self._run(plan, context or self.new_context())

    def _run(self, plan: PublishPlan, context: PublishContext) -> PublishResult:
        run = PublishRun(plan, context)
        props = {"owner": plan.owner, "repo": plan.repo, "workflow": plan.workflow_name, "update": plan.is_update}
        logger.info("Publishing workflow via pull request", extra={"props": props})
        step = PublishStep.verify_repository
        try:
            context.checkpoint(step)
            metadata = self.gateway.get_repository(plan.owner, plan.repo, timeout=context.call_timeout())
            run.advance(step, PublishState.verified)

            step = PublishStep.resolve_default_branch
            run.default_branch = metadata.get("default_branch") if isinstance(metadata, dict) else None
            if not run.default_branch:
                raise GitHubStepFailed(
                    f"repository '{plan.owner}/{plan.repo}' has no default branch", step.value
                )
            run.advance(step)

            step = PublishStep.resolve_base_sha
            context.checkpoint(step)
            run.base_sha = self.gateway.get_branch_sha(
                plan.owner, plan.repo, run.default_branch, timeout=context.call_timeout()
            )
            run.advance(step, PublishState.branch_point_resolved)

            step = PublishStep.create_branch
            context.checkpoint(step)
            branch = f"{plan.branch_prefix}/{plan.workflow_name}-{int(self._clock())}"
            self.gateway.create_branch(plan.owner, plan.repo, branch, run.base_sha, timeout=context.call_timeout())
            run.branch = branch
            run.advance(step, PublishState.branch_created)

            step = PublishStep.write_file
            context.checkpoint(step, run.branch)
            self.gateway.put_file(
                plan.owner,
                plan.repo,
                plan.file_path,
                plan.content,
                plan.commit_message,
                run.branch,
                sha=plan.sha,
                timeout=context.call_timeout(),
            )
            run.advance(step, PublishState.file_written)

            step = PublishStep.open_pull_request
            context.checkpoint(step, run.branch)
            pull_request = self.gateway.create_pull_request(
                plan.owner,
                plan.repo,
                run.branch,
                run.default_branch,
                plan.pr_title,
                plan.pr_body,
                timeout=context.call_timeout(),
            )
            run.advance(step, PublishState.pull_request_opened)
        except GitHubAPIError as e:
            run.state = PublishState.failed
            error = self._classify(step, e, run)
            self._log_failure(run, error)
            raise error from e
        except PublishError as e:
            run.state = PublishState.failed
            self._log_failure(run, e)
            raise

        number = pull_request.get("number", 0)
        result = PublishResult(
            owner=plan.owner,
            repository=plan.repo,
            workflow_name=plan.workflow_name,
            file_path=plan.file_path,
            file_url=pull_request.get("html_url", ""),
            branch=run.branch,
            pull_request_number=number,
            message=f"Pull request #{number} created for workflow '{plan.workflow_name}'{plan.result_suffix}",
        )
        logger.info(
            "Workflow pull request created successfully",
            extra={"props": {**props, "branch": run.branch, "pr_number": number}},
        )
        return result

    def _classify(self, step: PublishStep, error: GitHubAPIError, run: PublishRun) -> PublishError:
        """Translate a gateway error raised during ``step`` into a PublishError."""
        plan = run.plan
        repo = f"{plan.owner}/{plan.repo}"
        kwargs = dict(
            step=step.value,
            status_code=error.status_code,
            response_text=error.response_text,
            branch=run.branch,
        )
        body = (error.response_text or "").lower()

        if isinstance(error, GitHubTimeoutError):
            return PublishTimeout(f"GitHub did not answer in time during {step.value}", **kwargs)
        if isinstance(error, GitHubTransportError):
            return GitHubStepFailed(f"failed to reach GitHub during {step.value}: {error.message}", **kwargs)
        if isinstance(error, GitHubUnauthorizedError):
            return TokenRejected("GitHub rejected the access token; please login again", **kwargs)

        if step == PublishStep.verify_repository and isinstance(error, GitHubNotFoundError):
            return RepositoryNotFound(f"repository '{repo}' not found or you don't have access to it", **kwargs)

        # The repository was verified in the first step, so a missing ref here means no commits.
        if step == PublishStep.resolve_base_sha and isinstance(error, (GitHubNotFoundError, GitHubConflictError)):
            return EmptyRepository(
                f"repository '{repo}' has no commits on '{run.default_branch}'; push an initial commit first",
                **kwargs,
            )

        if step == PublishStep.write_file:
            if (isinstance(error, GitHubNotFoundError) and not plan.is_update) or (
                isinstance(error, GitHubForbiddenError) and "workflow" in body
            ):
                return WorkflowScopeMissing(
                    f"GitHub refused to write '{plan.file_path}'; the token needs the 'workflow' scope",
                    **kwargs,
                )
            if plan.is_update and (isinstance(error, GitHubConflictError) or error.status_code == 422):
                return WorkflowConflict(
                    f"'{plan.file_path}' has changed since sha {plan.sha} was read; reload the file and retry",
                    **kwargs,
                )
            if not plan.is_update and error.status_code == 422:
                return WorkflowAlreadyExists(f"workflow file '{plan.file_path}' already exists in {repo}", **kwargs)

        if isinstance(error, GitHubForbiddenError):
            return PermissionDenied(f"insufficient permissions for {step.value} on '{repo}'", **kwargs)

        return GitHubStepFailed(f"GitHub API failed during {step.value}: {error.message}", **kwargs)

    @staticmethod
    def _log_failure(run: PublishRun, error: PublishError) -> None:
        logger.error(
            f"Workflow publish failed: {error.message}",
            extra={
                "props": {
                    "owner": run.plan.owner,
                    "repo": run.plan.repo,
                    "workflow": run.plan.workflow_name,
                    "step": error.step,
                    "completed_steps": [s.value for s in run.completed],
                    "branch": run.branch,
                    "status_code": error.status_code,
                    "response": error.response_text,
                }
            },
        )

    def list_workflows(self, owner: str, repo: str) -> List[WorkflowFile]:
        """
        List the workflow files of a repository.

        A repository without a ``.github/workflows`` directory has no
        workflows; that is reported as an empty list, not as an error.
        """
        try:
            entries = self.gateway.list_directory(owner, repo, WORKFLOWS_DIR, timeout=self.request_timeout)
        except GitHubNotFoundError:
            logger.info(f"No workflows directory in {owner}/{repo}")
            return []

        workflows = [
            WorkflowFile(
                name=entry["name"],
                path=entry.get("path", f"{WORKFLOWS_DIR}/{entry['name']}"),
                sha=entry.get("sha", ""),
                size=entry.get("size") or 0,
                url=entry.get("html_url"),
                download_url=entry.get("download_url"),
            )
            for entry in entries
            if entry.get("type") == "file" and entry.get("name", "").endswith(WORKFLOW_EXTENSIONS)
        ]
        logger.info(
            "Successfully fetched workflows",
            extra={"props": {"owner": owner, "repo": repo, "count": len(workflows)}},
        )
        return workflows

    def get_workflow_content(self, owner: str, repo: str, file_path: str) -> WorkflowFileContent:
        """Fetch and decode a workflow file; the path is validated before any call."""
        validate_workflow_path(file_path)
        entry = self.gateway.get_file(owner, repo, file_path, timeout=self.request_timeout)
        try:
            content = base64.b64decode(entry.get("content", "")).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise GitHubAPIError(f"failed to decode file content: {e}") from e
        return WorkflowFileContent(
            name=file_path.rsplit("/", 1)[-1],
            path=file_path,
            sha=entry.get("sha", ""),
            size=entry.get("size", len(content.encode("utf-8"))),
            content=content,
        )
