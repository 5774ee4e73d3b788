"""
GitHub Actions workflow templates.

Two independently maintained templates turn a validated DeploymentRequest
into workflow YAML:

- EC2WorkflowTemplate: build job + ``deploy-to-ec2``
- KubernetesWorkflowTemplate: build job + ``deploy-to-kubernetes``

Both delegate the actual build/deploy logic to reusable workflows hosted in
a shared repository and only fill in their inputs. Rendering is pure and
deterministic: the same request always produces byte-identical YAML.

GitHub Actions YAML is indentation sensitive; every block below is emitted
with explicit indentation and multi-line values go through ``indent``.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

import yaml

from .errors import InvalidYAMLGenerated, TemplateGenerationFailed
from .models import DeploymentRequest, DeploymentType, Project
from .validation import parse_deployment_type

logger = logging.getLogger(__name__)

DEFAULT_WORKFLOWS_REPO = "Calance-US/calance-workflows"
BUILD_JOB = "build-and-push-dockerimages"
# no line folding: every value stays on its key's line
YAML_WIDTH = float("inf")


def indent(spaces: int, text: str) -> str:
    """
    Prefix every non-empty line of ``text`` with ``spaces`` spaces.

    Empty lines are left untouched so that no whitespace-only lines are
    produced inside YAML block scalars.
    """
    prefix = " " * spaces
    return "\n".join(prefix + line if line != "" else line for line in text.split("\n"))


def expr(expression: str) -> str:
    """Wrap ``expression`` in GitHub Actions expression syntax."""
    return "${{ " + expression + " }}"


def scalar(value, flow: bool = False) -> str:
    """
    Render ``value`` as a single-line YAML string scalar.

    The value is emitted plain when YAML reads it back unchanged and double
    quoted otherwise, so ``#``, ``: `` or a value like ``true`` cannot change
    the document. With ``flow`` the check is made for a position inside a
    flow sequence, where ``,`` and brackets are significant too.
    """
    text = str(value)
    if flow:
        dumped = yaml.safe_dump([text], default_flow_style=True, width=YAML_WIDTH, allow_unicode=True)
        plain = dumped == f"[{text}]\n"
    else:
        dumped = yaml.safe_dump(text, width=YAML_WIDTH, allow_unicode=True)
        plain = dumped in (f"{text}\n", f"{text}\n...\n")
    if plain:
        return text
    return yaml.safe_dump(text, default_style='"', width=YAML_WIDTH, allow_unicode=True).rstrip("\n")


def matrix_list(names: Iterable[str]) -> str:
    """Render names as a YAML flow sequence: ``[a, b, c]``."""
    return "[" + ", ".join(scalar(name, flow=True) for name in names) + "]"


class WorkflowTemplate(ABC):
    """Base class for deployment workflow templates."""

    title: str = ""

    def __init__(self, workflows_repo: str = DEFAULT_WORKFLOWS_REPO):
        self.workflows_repo = workflows_repo

    def render(self, request: DeploymentRequest) -> str:
        """Render the complete workflow for ``request``."""
        release_tag = self.release_tag(request)
        return (
            self.header()
            + self.build_job(request, release_tag)
            + "\n"
            + self.deploy_job(request, release_tag)
        )

    @abstractmethod
    def release_tag(self, request: DeploymentRequest) -> str:
        """Tag of the reusable workflows to pin."""

    @abstractmethod
    def deploy_job(self, request: DeploymentRequest, release_tag: str) -> str:
        """Render the deploy job."""

    def reusable(self, workflow_file: str, release_tag: str) -> str:
        return scalar(f"{self.workflows_repo}/.github/workflows/{workflow_file}@{release_tag}")

    def image_name(self, request: DeploymentRequest) -> str:
        return scalar(f"{request.owner}/{request.repository}-{expr('matrix.project')}")

    def header(self) -> str:
        return f"""name: {self.title}

on:
  push:
    tags:
      - v[0-9]+.[0-9]+.[0-9]+-rc[0-9]+
      - v[0-9]+.[0-9]+.[0-9]+

jobs:
"""

    def build_job(self, request: DeploymentRequest, release_tag: str) -> str:
        """
        Render the job building and pushing one Docker image per project.

        Each project contributes a ``dot_env_file_testing`` block scalar
        whose content is indented by 8 spaces.
        """
        job = f"""  {BUILD_JOB}:
    strategy:
      fail-fast: false
      matrix:
        project: {matrix_list(p.name for p in request.projects)}
    permissions:
      contents: read
      packages: write
    secrets:
      IMAGE_REGISTRY_PASSWORD: {expr('secrets.IMAGE_REGISTRY_PASSWORD')}

    uses: {self.reusable('build.yml', release_tag)}
    with:
      image_name: {self.image_name(request)}
      image_registry: {expr('vars.IMAGE_REGISTRY')}
      image_registry_username: {expr('vars.IMAGE_REGISTRY_USERNAME')}
      docker_context_path: {expr('matrix.project')}
      dockerfile_path: ./{expr('matrix.project')}/Dockerfile
"""
        return job + "".join(self.dot_env_block(project) for project in request.projects)

    @staticmethod
    def dot_env_block(project: Project) -> str:
        return "      dot_env_file_testing: |\n" + indent(8, project.dot_env_testing) + "\n"

    def deploy_header(self, job_name: str, names: Iterable[str], workflow_file: str, release_tag: str) -> str:
        """Common head of both deploy jobs, up to and including ``with:``."""
        return f"""  {job_name}:
    needs: {BUILD_JOB}
    strategy:
      fail-fast: false
      matrix:
        project: {matrix_list(names)}
    permissions:
      contents: read
      packages: write

    uses: {self.reusable(workflow_file, release_tag)}
    with:
"""

    @staticmethod
    def build_outputs() -> str:
        return (
            f"      version: {expr(f'needs.{BUILD_JOB}.outputs.version')}\n"
            f"      cluster_environment: {expr(f'needs.{BUILD_JOB}.outputs.cluster_environment')}\n"
            f"      commit_id: {expr(f'needs.{BUILD_JOB}.outputs.commit_id')}\n"
        )

    @staticmethod
    def secrets(names: Iterable[str]) -> str:
        lines = ["    secrets:"]
        lines.extend(f"      {name}: {expr('secrets.' + name)}" for name in names)
        return "\n".join(lines) + "\n"


class EC2WorkflowTemplate(WorkflowTemplate):
    """Workflow building the images and deploying them to EC2 through Jenkins."""

    title = "Build & Publish Image (EC2)"
    deploy_secrets = ("JENKINS_URL", "JENKINS_USER", "JENKINS_TOKEN", "SMTP_PASSWORD", "AWS_CREDENTIALS")

    def release_tag(self, request: DeploymentRequest) -> str:
        return request.ec2_common_fields.release_tag

    def deploy_job(self, request: DeploymentRequest, release_tag: str) -> str:
        common = request.ec2_common_fields
        job = self.deploy_header(
            "deploy-to-ec2",
            (p.name for p in request.ec2_projects),
            "deploy-ec2.yml",
            release_tag,
        )
        job += f"      repository_name: {expr('github.event.repository.name')}\n"
        job += f"      image_name: {self.image_name(request)}\n"
        job += f"      image_registry: {expr('vars.IMAGE_REGISTRY')}\n"
        job += self.build_outputs()
        job += f"""      aws_region: {scalar(common.aws_region)}
      jenkins_jobs: {scalar(common.jenkins_jobs)}
      workflows_release: {scalar(common.release_tag)}
      codeowners_email_ids: {scalar(common.codeowners_emails)}
      devops_stakeholders_email_ids: {scalar(common.devops_stakeholders_emails)}
"""
        for project in request.ec2_projects:
            job += self.project_inputs(project)
        return job + self.secrets(self.deploy_secrets)

    @staticmethod
    def project_inputs(project) -> str:
        """Per-project inputs; each optional field is emitted only when set."""
        lines: List[str] = [
            f"      # EC2 specific configuration for {' '.join(project.name.splitlines())}",
            f"      command: {scalar(project.command)}",
            f"      port: {scalar(project.port)}",
        ]
        if project.docker_network:
            lines.append(f"      docker_network: {scalar(project.docker_network)}")
        if project.mount_path:
            lines.append(f"      mount_path: {scalar(project.mount_path)}")
        if project.enable_gpu:
            lines.append("      enable_gpu: true")
        if project.log_driver:
            lines.append(f"      log_driver: {scalar(project.log_driver)}")
        if project.log_driver_options:
            lines.append(f"      log_driver_options: {scalar(project.log_driver_options)}")
        return "\n".join(lines) + "\n"


class KubernetesWorkflowTemplate(WorkflowTemplate):
    """Workflow building the images and deploying them with Helm through Jenkins."""

    title = "Build & Publish Image (Kubernetes)"
    deploy_secrets = ("JENKINS_URL", "JENKINS_USER", "JENKINS_TOKEN", "SMTP_PASSWORD")

    def release_tag(self, request: DeploymentRequest) -> str:
        return request.kubernetes_common_fields.release_tag

    def deploy_job(self, request: DeploymentRequest, release_tag: str) -> str:
        common = request.kubernetes_common_fields
        job = self.deploy_header(
            "deploy-to-kubernetes",
            (p.name for p in request.kubernetes_projects),
            "deploy.yml",
            release_tag,
        )
        job += f"      repository_name: {expr('github.event.repository.name')}\n"
        job += f"      image_name: {self.image_name(request)}\n"
        job += f"      release_name: {scalar(request.repository + '-' + expr('matrix.project'))}\n"
        job += f"      image_registry: {expr('vars.IMAGE_REGISTRY')}\n"
        job += self.build_outputs()
        job += f"""      jenkins_job_name: {scalar(common.jenkins_job_name)}
      workflows_release: {scalar(common.release_tag)}
      helm_values_repository: {scalar(common.helm_values_repository)}
      codeowners_email_ids: {scalar(common.codeowners_email_ids)}
      devops_stakeholders_email_ids: {scalar(common.devops_stakeholders_email_ids)}
"""
        return job + self.secrets(self.deploy_secrets)


TEMPLATE_CLASSES: Dict[DeploymentType, type] = {
    DeploymentType.ec2: EC2WorkflowTemplate,
    DeploymentType.kubernetes: KubernetesWorkflowTemplate,
}


def render_workflow(
    request: DeploymentRequest,
    workflows_repo: Optional[str] = None,
    verify: bool = True,
) -> str:
    """
    Render the workflow YAML for an already validated request.

    Args:
        request: Validated deployment request
        workflows_repo: Repository hosting the reusable workflows
        verify: Parse the result with PyYAML before returning it

    Returns:
        Workflow YAML text

    Raises:
        InvalidDeploymentType: For an unknown deployment type
        TemplateGenerationFailed: If rendering fails
        InvalidYAMLGenerated: If ``verify`` is set and the output does not parse
    """
    deployment_type = parse_deployment_type(request.deployment_type)
    template = TEMPLATE_CLASSES[deployment_type](workflows_repo or DEFAULT_WORKFLOWS_REPO)
    try:
        content = template.render(request)
    except (AttributeError, TypeError, ValueError) as e:
        logger.exception(
            "Failed to generate workflow YAML",
            extra={"props": {"deployment_type": deployment_type.value, "workflow": request.workflow_name}},
        )
        raise TemplateGenerationFailed(str(e), deployment_type.value) from e

    if verify:
        try:
            yaml.safe_load(content)
        except yaml.YAMLError as e:
            logger.error(
                "Generated workflow is not valid YAML",
                extra={"props": {"deployment_type": deployment_type.value, "error": str(e)}},
            )
            raise InvalidYAMLGenerated(f"generated YAML is invalid: {e}", deployment_type.value) from e

    return content
