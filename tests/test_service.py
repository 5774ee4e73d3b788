import pytest
import yaml

from tests.conftest import FakeGateway
from workflow_api.config import Settings
from workflow_api.errors import (
    EC2CommonFieldsRequired,
    InvalidWorkflowName,
    InvalidWorkflowPath,
    WorkflowConflict,
)
from workflow_api.gh import GitHubConflictError, RestGitHubGateway
from workflow_api.models import DeploymentRequest, PublishStatus, UpdateWorkflowRequest
from workflow_api.service import WorkflowService, rest_gateway_factory
from workflow_api.storage import InMemoryStore


class TestWorkflowService:
    """Test the service wiring validation, rendering, publishing and history."""

    def setup_method(self):
        self.gateway = FakeGateway()
        self.tokens = []
        self.store = InMemoryStore()
        self.settings = Settings(reusable_workflows_repo="acme/workflows", pr_signature="Acme Bot")

        def factory(token):
            self.tokens.append(token)
            return self.gateway

        self.service = WorkflowService(self.store, gateway_factory=factory, settings=self.settings)

    def test_generate_workflow_uses_settings(self, ec2_request):
        content = self.service.generate_workflow(ec2_request)

        assert "uses: acme/workflows/.github/workflows/build.yml@v1.4.0" in content
        yaml.safe_load(content)
        assert self.gateway.calls == []

    def test_preview_is_generate(self, kubernetes_request):
        assert self.service.preview_workflow(kubernetes_request) == self.service.generate_workflow(kubernetes_request)

    def test_generate_validates_first(self, ec2_request_data):
        ec2_request_data["ec2CommonFields"] = None

        with pytest.raises(EC2CommonFieldsRequired):
            self.service.generate_workflow(DeploymentRequest.model_validate(ec2_request_data))

    def test_create_workflow(self, ec2_request):
        result = self.service.create_workflow("ghp_token", ec2_request, user_id="alice")

        assert self.tokens == ["ghp_token"]
        assert result.file_path == ".github/workflows/deploy-1.yml"
        put = self.gateway.calls[3]
        assert put[4] == self.service.generate_workflow(ec2_request)
        assert "Generated automatically by Acme Bot." in self.gateway.calls[4][6]

        records = self.service.history("alice")
        assert len(records) == 1
        assert records[0].status == PublishStatus.created
        assert records[0].deployment_type == "ec2"
        assert records[0].branch == result.branch
        assert records[0].pull_request_url == result.file_url

    def test_create_invalid_request_makes_no_calls(self, ec2_request_data):
        ec2_request_data["workflowName"] = "a/b"

        with pytest.raises(InvalidWorkflowName):
            self.service.create_workflow("t", DeploymentRequest.model_validate(ec2_request_data))

        assert self.gateway.calls == []
        assert self.service.history() == []

    def test_publish_workflow_validates_name(self):
        with pytest.raises(InvalidWorkflowName):
            self.service.publish_workflow("t", "acme", "svc", "../x", "name: x")

        assert self.gateway.calls == []

    def test_failed_publish_is_recorded(self):
        self.gateway.errors["put_file"] = GitHubConflictError("Conflict", 409, "does not match")
        request = UpdateWorkflowRequest(
            owner="acme", repository="svc", file_path=".github/workflows/deploy.yml", content="x", sha="stale"
        )

        with pytest.raises(WorkflowConflict):
            self.service.update_workflow("t", request, user_id="bob")

        record = self.service.history("bob")[0]
        assert record.status == PublishStatus.failed
        assert record.branch.startswith("update-workflow/deploy-")
        assert "has changed" in record.error_message

    def test_update_workflow(self):
        request = UpdateWorkflowRequest(
            owner="acme",
            repository="svc",
            file_path=".github/workflows/deploy.yml",
            content="name: x\n",
            sha="blob",
            commit_message="Tweak",
        )

        result = self.service.update_workflow("t", request)

        assert result.message.endswith("update")
        assert self.gateway.calls[3][5] == "Tweak"
        assert self.service.history("default")[0].status == PublishStatus.updated

    def test_update_invalid_path(self):
        request = UpdateWorkflowRequest(owner="acme", repository="svc", file_path="Makefile", content="x", sha="s")

        with pytest.raises(InvalidWorkflowPath):
            self.service.update_workflow("t", request)

        assert self.tokens == []

    def test_read_operations(self):
        self.gateway.add_file(".github/workflows/deploy.yml", "name: deploy\n", sha="blob")
        self.gateway.directory = [{"type": "file", "name": "deploy.yml", "path": ".github/workflows/deploy.yml", "sha": "blob"}]

        assert [w.name for w in self.service.list_workflows("t", "acme", "svc")] == ["deploy.yml"]
        assert self.service.get_workflow_content("t", "acme", "svc", ".github/workflows/deploy.yml").sha == "blob"


class TestRestGatewayFactory:
    def test_builds_configured_gateway(self):
        settings = Settings(github_api_url="https://ghe.acme.io/api/v3", request_timeout=7, read_retry_attempts=2)

        gateway = rest_gateway_factory(settings)("ghp_x")

        assert isinstance(gateway, RestGitHubGateway)
        client = gateway.github_client
        assert client.base_url == "https://ghe.acme.io/api/v3"
        assert client.timeout == 7
        assert client.read_retry_attempts == 2
        assert client._headers["Authorization"] == "Bearer ghp_x"
