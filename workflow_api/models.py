"""
Data Models for the Workflow Manager API.

This module defines the Pydantic models used to describe a deployment target,
the results of publishing a generated workflow, and the workflow files read
back from a repository.

JSON payloads use camelCase field names (``workflowName``,
``ec2CommonFields``...). Python code uses the snake_case attribute names;
both spellings are accepted when constructing a model.

Classes:
    DeploymentType: The two supported deployment targets
    Project: A buildable project (Docker context) shared by both targets
    EC2CommonFields / EC2Project: EC2 specific configuration
    KubernetesCommonFields / KubernetesProject: Kubernetes specific configuration
    DeploymentRequest: Everything needed to render a workflow
    UpdateWorkflowRequest: An edit of an existing workflow file
    PublishResult: Outcome of a successful publish
    WorkflowFile / WorkflowFileContent: Workflow files read from GitHub
    PublishStatus / PublishRecord: In-memory publish history
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model exposing camelCase aliases while keeping snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DeploymentType(str, Enum):
    """
    Enumeration of supported deployment targets.

    The deployment type selects which field groups of a DeploymentRequest
    are mandatory and which workflow template is rendered.
    """

    ec2 = "ec2"
    kubernetes = "kubernetes"


class Project(CamelModel):
    """
    A project built into a Docker image by the build job.

    Attributes:
        id (str): Client-side identifier of the project
        name (str): Project name, used as the build matrix entry
        docker_context_path (str): Docker build context
        dockerfile_path (str): Path to the Dockerfile
        dot_env_testing (str): Contents of the testing .env file
        dot_env_production (str): Contents of the production .env file
    """

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    docker_context_path: str = Field(..., min_length=1)
    dockerfile_path: str = Field(..., min_length=1)
    dot_env_testing: str = ""
    dot_env_production: str = ""


class EC2CommonFields(CamelModel):
    """Configuration shared by every EC2 project of a request."""

    credential_id: str = Field(..., min_length=1)
    aws_region: str = Field(..., min_length=1)
    jenkins_jobs: str = Field(..., min_length=1)
    release_tag: str = Field(..., min_length=1)
    codeowners_emails: str = Field(..., min_length=1)
    devops_stakeholders_emails: str = Field(..., min_length=1)


class EC2Project(CamelModel):
    """
    EC2 specific configuration of one deployed project.

    ``command`` and ``port`` are always rendered. Each of the optional
    fields adds one line to the deploy job when it is non-empty (or true,
    for ``enable_gpu``).
    """

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    command: str = Field(..., min_length=1)
    port: str = Field(..., min_length=1)
    docker_network: str = ""
    mount_path: str = ""
    enable_gpu: bool = False
    log_driver: str = ""
    log_driver_options: str = ""


class KubernetesCommonFields(CamelModel):
    """Configuration shared by every Kubernetes project of a request."""

    jenkins_job_name: str = Field(..., min_length=1)
    release_tag: str = Field(..., min_length=1)
    helm_values_repository: str = Field(..., min_length=1)
    codeowners_email_ids: str = Field(..., min_length=1)
    devops_stakeholders_email_ids: str = Field(..., min_length=1)


class KubernetesProject(CamelModel):
    """A project deployed to Kubernetes."""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class DeploymentRequest(CamelModel):
    """
    Structured description of what to deploy and where to publish the workflow.

    Attributes:
        owner (str): GitHub user or organization owning the repository
        repository (str): Repository receiving the workflow
        workflow_name (str): Workflow file name, without extension
        deployment_type (str): "ec2" or "kubernetes"
        projects (List[Project]): Projects built by the workflow (at least one)
        ec2_common_fields (Optional[EC2CommonFields]): Required for EC2
        ec2_projects (List[EC2Project]): Required (non-empty) for EC2
        kubernetes_common_fields (Optional[KubernetesCommonFields]): Required for Kubernetes
        kubernetes_projects (List[KubernetesProject]): Required (non-empty) for Kubernetes

    Note:
        ``deployment_type`` is kept as a plain string so that an unknown
        value is reported by request validation as InvalidDeploymentType,
        like the other deployment rules, instead of failing model parsing.
    """

    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    workflow_name: str = Field(..., min_length=1)
    deployment_type: str
    projects: List[Project] = Field(..., min_length=1)
    ec2_common_fields: Optional[EC2CommonFields] = None
    ec2_projects: List[EC2Project] = Field(default_factory=list)
    kubernetes_common_fields: Optional[KubernetesCommonFields] = None
    kubernetes_projects: List[KubernetesProject] = Field(default_factory=list)

    @property
    def file_path(self) -> str:
        return workflow_file_path(self.workflow_name)


class UpdateWorkflowRequest(CamelModel):
    """
    Edit of an existing workflow file, published as a pull request.

    ``sha`` is the blob SHA of the file as last read by the caller; GitHub
    rejects the write when the file has changed since.
    """

    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    file_path: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    sha: str = Field(..., min_length=1)
    commit_message: str = ""


class PublishResult(CamelModel):
    """
    Outcome of a successful publish.

    Attributes:
        file_url (str): HTML URL of the opened pull request
        branch (str): Head branch created for the pull request
        pull_request_number (int): Number of the opened pull request
        message (str): Human-readable outcome
    """

    owner: str
    repository: str
    workflow_name: str
    file_path: str
    file_url: str
    branch: str
    pull_request_number: int
    message: str
    created_at: datetime = Field(default_factory=_utcnow)


class WorkflowFile(CamelModel):
    """A workflow file listed from ``.github/workflows``."""

    name: str
    path: str
    sha: str
    size: int = 0
    url: Optional[str] = None
    download_url: Optional[str] = None


class WorkflowFileContent(CamelModel):
    """Decoded content of a workflow file together with its blob SHA."""

    name: str
    path: str
    sha: str
    size: int
    content: str


class PublishStatus(str, Enum):
    created = "created"
    updated = "updated"
    failed = "failed"


class PublishRecord(CamelModel):
    """
    History entry written for every publish attempt.

    Records are kept in memory only; they exist for operators to see what
    was attempted and where a partial publish stopped.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    owner: str
    repository: str
    workflow_name: str
    deployment_type: Optional[str] = None
    file_path: str
    status: PublishStatus
    branch: Optional[str] = None
    pull_request_url: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


WORKFLOWS_DIR = ".github/workflows"


def workflow_file_path(workflow_name: str) -> str:
    """Return the repository path of the workflow file for ``workflow_name``."""
    return f"{WORKFLOWS_DIR}/{workflow_name}.yml"
