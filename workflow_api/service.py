"""
Workflow service: the operations exposed by the API and the CLI.

WorkflowService wires request validation, template rendering and the
publisher together. It builds one GitHubGateway per access token through an
injectable factory, so tests can substitute a fake gateway, and it writes a
PublishRecord for every publish attempt that reaches GitHub.
"""

import logging
import threading
from typing import Callable, List, Optional

from .config import Settings, get_settings
from .errors import InvalidWorkflowName, PublishError
from .gh import GitHubClient, GitHubGateway, RestGitHubGateway
from .models import (
    DeploymentRequest,
    PublishRecord,
    PublishResult,
    PublishStatus,
    UpdateWorkflowRequest,
    WorkflowFile,
    WorkflowFileContent,
    workflow_file_path,
)
from .publisher import WorkflowPublisher
from .storage import InMemoryStore
from .templates import render_workflow
from .validation import is_valid_workflow_name, validate_request, validate_workflow_path

logger = logging.getLogger(__name__)

GatewayFactory = Callable[[str], GitHubGateway]

DEFAULT_USER = "default"


def rest_gateway_factory(settings: Settings) -> GatewayFactory:
    """Return a factory building REST gateways configured from ``settings``."""

    def factory(token: str) -> GitHubGateway:
        client = GitHubClient(
            token,
            base_url=settings.github_api_url,
            api_version=settings.github_api_version,
            user_agent=settings.github_user_agent,
            timeout=settings.request_timeout,
            read_retry_attempts=settings.read_retry_attempts,
        )
        return RestGitHubGateway(client)

    return factory


class WorkflowService:
    """
    Generate, publish and read GitHub Actions workflows.

    Args:
        store: Publish history sink (and, for the API, the token provider)
        gateway_factory: Builds a gateway bound to an access token
        settings: Application settings; the cached settings by default
    """

    def __init__(
        self,
        store: InMemoryStore,
        gateway_factory: Optional[GatewayFactory] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.gateway_factory = gateway_factory or rest_gateway_factory(self.settings)

    def publisher(self, token: str) -> WorkflowPublisher:
        return WorkflowPublisher(
            self.gateway_factory(token),
            request_timeout=self.settings.request_timeout,
            publish_timeout=self.settings.publish_timeout,
            signature=self.settings.pr_signature,
        )

    def generate_workflow(self, request: DeploymentRequest) -> str:
        """Validate ``request`` and render its workflow YAML; no network access."""
        validate_request(request)
        return render_workflow(
            request,
            workflows_repo=self.settings.reusable_workflows_repo,
            verify=self.settings.verify_generated_yaml,
        )

    preview_workflow = generate_workflow

    def publish_workflow(
        self,
        token: str,
        owner: str,
        repo: str,
        workflow_name: str,
        content: str,
        user_id: str = DEFAULT_USER,
        deployment_type: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PublishResult:
        """Publish already rendered YAML as ``.github/workflows/{workflow_name}.yml``."""
        if not is_valid_workflow_name(workflow_name):
            raise InvalidWorkflowName(workflow_name)
        publisher = self.publisher(token)
        record = PublishRecord(
            user_id=user_id,
            owner=owner,
            repository=repo,
            workflow_name=workflow_name,
            deployment_type=deployment_type,
            file_path=workflow_file_path(workflow_name),
            status=PublishStatus.created,
        )
        try:
            result = publisher.publish(owner, repo, workflow_name, content, publisher.new_context(cancel_event))
        except PublishError as e:
            self._record_failure(record, e)
            raise
        self._record_success(record, result)
        return result

    def create_workflow(
        self,
        token: str,
        request: DeploymentRequest,
        user_id: str = DEFAULT_USER,
        cancel_event: Optional[threading.Event] = None,
    ) -> PublishResult:
        """Validate, render and publish ``request`` in one go."""
        content = self.generate_workflow(request)
        return self.publish_workflow(
            token,
            request.owner,
            request.repository,
            request.workflow_name,
            content,
            user_id=user_id,
            deployment_type=request.deployment_type,
            cancel_event=cancel_event,
        )

    def update_workflow(
        self,
        token: str,
        request: UpdateWorkflowRequest,
        user_id: str = DEFAULT_USER,
        cancel_event: Optional[threading.Event] = None,
    ) -> PublishResult:
        """Publish an edit of an existing workflow file as a pull request."""
        workflow_name = validate_workflow_path(request.file_path)
        publisher = self.publisher(token)
        record = PublishRecord(
            user_id=user_id,
            owner=request.owner,
            repository=request.repository,
            workflow_name=workflow_name,
            file_path=request.file_path,
            status=PublishStatus.updated,
        )
        try:
            result = publisher.publish_update(
                request.owner,
                request.repository,
                request.file_path,
                request.content,
                request.sha,
                commit_message=request.commit_message or None,
                context=publisher.new_context(cancel_event),
            )
        except PublishError as e:
            self._record_failure(record, e)
            raise
        self._record_success(record, result)
        return result

    def list_workflows(self, token: str, owner: str, repo: str) -> List[WorkflowFile]:
        return self.publisher(token).list_workflows(owner, repo)

    def get_workflow_content(self, token: str, owner: str, repo: str, file_path: str) -> WorkflowFileContent:
        return self.publisher(token).get_workflow_content(owner, repo, file_path)

    def history(self, user_id: Optional[str] = None) -> List[PublishRecord]:
        return self.store.list_records(user_id)

    def _record_success(self, record: PublishRecord, result: PublishResult) -> None:
        record.branch = result.branch
        record.pull_request_url = result.file_url
        self.store.add_record(record)

    def _record_failure(self, record: PublishRecord, error: PublishError) -> None:
        record.status = PublishStatus.failed
        record.branch = error.branch
        record.error_message = error.message
        self.store.add_record(record)
        if error.branch:
            logger.warning(
                "Partial publish left a branch behind",
                extra={"props": {"owner": record.owner, "repo": record.repository, "branch": error.branch, "step": error.step}},
            )
