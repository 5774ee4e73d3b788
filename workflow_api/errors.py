"""
Error taxonomy for workflow generation and publishing.

Three families are distinguished:

- WorkflowValidationError: the request is malformed. Always raised before
  any network call.
- TemplateGenerationFailed: rendering failed. This is an internal defect,
  never retried and never shown to end users in detail.
- PublishError: a step of the publish sequence against GitHub failed. The
  error names the step and, when one was already created, the branch left
  behind by the partial publish.

Each class carries an ``http_status`` used by the API layer.
"""

from typing import Any, Dict, Optional

MAX_RESPONSE_TEXT = 500


def truncate(text: Optional[str], limit: int = MAX_RESPONSE_TEXT) -> Optional[str]:
    """Shorten upstream response bodies before they are logged or returned."""
    if text is None or len(text) <= limit:
        return text
    return text[:limit] + "...(truncated)"


class WorkflowError(Exception):
    """Base exception for the Workflow Manager."""

    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class WorkflowValidationError(WorkflowError):
    """The request is malformed."""

    http_status = 400


class InvalidWorkflowName(WorkflowValidationError):
    def __init__(self, workflow_name: str):
        super().__init__(
            "workflow name must contain only alphanumeric characters, hyphens, "
            "and underscores, and be 1-255 characters long",
            {"workflow_name": workflow_name},
        )


class InvalidDeploymentType(WorkflowValidationError):
    def __init__(self, deployment_type: Any):
        super().__init__(
            "deployment type must be either 'ec2' or 'kubernetes'",
            {"deployment_type": deployment_type},
        )


class EC2CommonFieldsRequired(WorkflowValidationError):
    def __init__(self):
        super().__init__("ec2CommonFields is required for EC2 deployment type")


class EC2ProjectsRequired(WorkflowValidationError):
    def __init__(self):
        super().__init__("ec2Projects is required for EC2 deployment type")


class KubernetesCommonFieldsRequired(WorkflowValidationError):
    def __init__(self):
        super().__init__(
            "kubernetesCommonFields is required for Kubernetes deployment type"
        )


class KubernetesProjectsRequired(WorkflowValidationError):
    def __init__(self):
        super().__init__("kubernetesProjects is required for Kubernetes deployment type")


class InvalidWorkflowPath(WorkflowValidationError):
    def __init__(self, file_path: str, reason: str):
        super().__init__(f"invalid workflow file path: {reason}", {"file_path": file_path})


class FileShaRequired(WorkflowValidationError):
    def __init__(self, file_path: str):
        super().__init__(
            "the current file sha is required to update a workflow", {"file_path": file_path}
        )


class TemplateGenerationFailed(WorkflowError):
    """Rendering the workflow template failed."""

    def __init__(self, message: str, deployment_type: Optional[str] = None):
        super().__init__(
            f"failed to generate workflow template: {message}",
            {"deployment_type": deployment_type},
        )


class InvalidYAMLGenerated(TemplateGenerationFailed):
    """The rendered workflow does not parse as YAML."""


class AccessTokenNotFound(WorkflowError):
    """No GitHub token is registered for the user."""

    http_status = 401

    def __init__(self, user_id: str):
        super().__init__(
            "Access token not found. Please login again.", {"user_id": user_id}
        )


class PublishError(WorkflowError):
    """
    A step of the publish sequence failed.

    Attributes:
        step: Name of the failing step (a PublishStep value)
        status_code: Upstream HTTP status, when GitHub answered
        response_text: Upstream body, truncated
        branch: Branch created before the failure, if any
    """

    http_status = 502

    def __init__(
        self,
        message: str,
        step: str,
        status_code: Optional[int] = None,
        response_text: Optional[str] = None,
        branch: Optional[str] = None,
    ):
        self.step = step
        self.status_code = status_code
        self.response_text = truncate(response_text)
        self.branch = branch
        details: Dict[str, Any] = {"step": step}
        if status_code is not None:
            details["status_code"] = status_code
        if self.response_text:
            details["response"] = self.response_text
        if branch:
            details["branch"] = branch
        super().__init__(message, details)


class TokenRejected(PublishError):
    """GitHub answered 401: the token is invalid or expired."""

    http_status = 401


class PermissionDenied(PublishError):
    """GitHub answered 403: the token lacks access to the repository."""

    http_status = 403


class RepositoryNotFound(PublishError):
    """The repository does not exist or is invisible to the token."""

    http_status = 404


class EmptyRepository(PublishError):
    """The repository exists but its default branch has no commits."""

    http_status = 409


class WorkflowScopeMissing(PublishError):
    """GitHub refused to write under .github/workflows; the token needs the ``workflow`` scope."""

    http_status = 403


class WorkflowAlreadyExists(PublishError):
    """A workflow file already exists at the target path."""

    http_status = 409


class WorkflowConflict(PublishError):
    """The supplied file SHA is stale: the file changed since it was read."""

    http_status = 409


class GitHubStepFailed(PublishError):
    """Catch-all for unexpected GitHub answers and transport failures."""

    http_status = 502


class PublishCancelled(PublishError):
    http_status = 499


class PublishTimeout(PublishError):
    http_status = 504
