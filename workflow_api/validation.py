"""
Request validation for workflow generation.

All checks here are pure and run before any call to GitHub.
"""

import posixpath
import re

from .errors import (
    EC2CommonFieldsRequired,
    EC2ProjectsRequired,
    InvalidDeploymentType,
    InvalidWorkflowName,
    InvalidWorkflowPath,
    KubernetesCommonFieldsRequired,
    KubernetesProjectsRequired,
)
from .models import WORKFLOWS_DIR, DeploymentRequest, DeploymentType

WORKFLOW_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_WORKFLOW_NAME_LENGTH = 255
WORKFLOW_EXTENSIONS = (".yml", ".yaml")


def is_valid_workflow_name(name: str) -> bool:
    """Return True if ``name`` can be used as a workflow file name."""
    if not name or len(name) > MAX_WORKFLOW_NAME_LENGTH:
        return False
    return WORKFLOW_NAME_PATTERN.fullmatch(name) is not None


def parse_deployment_type(value) -> DeploymentType:
    """Convert a raw deployment type into DeploymentType or raise InvalidDeploymentType."""
    if isinstance(value, DeploymentType):
        return value
    try:
        return DeploymentType(value)
    except ValueError:
        raise InvalidDeploymentType(value) from None


def validate_request(request: DeploymentRequest) -> DeploymentType:
    """
    Validate a deployment request.

    Rules are applied in order and the first failing rule is raised:
    workflow name, deployment type, then the field groups required by the
    selected deployment type.

    Args:
        request: The request to validate

    Returns:
        The parsed deployment type

    Raises:
        WorkflowValidationError: One of its subclasses, naming the broken rule
    """
    if not is_valid_workflow_name(request.workflow_name):
        raise InvalidWorkflowName(request.workflow_name)

    deployment_type = parse_deployment_type(request.deployment_type)

    if deployment_type == DeploymentType.ec2:
        if request.ec2_common_fields is None:
            raise EC2CommonFieldsRequired()
        if not request.ec2_projects:
            raise EC2ProjectsRequired()
    elif deployment_type == DeploymentType.kubernetes:
        if request.kubernetes_common_fields is None:
            raise KubernetesCommonFieldsRequired()
        if not request.kubernetes_projects:
            raise KubernetesProjectsRequired()

    return deployment_type


def validate_workflow_path(file_path: str) -> str:
    """
    Check that ``file_path`` names a workflow file directly under .github/workflows.

    Returns:
        The workflow name (file name without extension)

    Raises:
        InvalidWorkflowPath: For paths outside the workflows directory,
            traversal attempts, nested directories or wrong extensions
    """
    prefix = WORKFLOWS_DIR + "/"
    if not file_path.startswith(prefix):
        raise InvalidWorkflowPath(file_path, f"must be in {prefix}")
    if posixpath.normpath(file_path) != file_path or "\\" in file_path:
        raise InvalidWorkflowPath(file_path, "path must be normalized")
    file_name = file_path[len(prefix):]
    if "/" in file_name:
        raise InvalidWorkflowPath(file_path, f"must be directly in {prefix}")
    if not file_name.endswith(WORKFLOW_EXTENSIONS):
        raise InvalidWorkflowPath(file_path, "must be a .yml or .yaml file")
    workflow_name = file_name[: file_name.rfind(".")]
    if not workflow_name:
        raise InvalidWorkflowPath(file_path, "missing file name")
    return workflow_name
