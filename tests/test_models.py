import pytest
from pydantic import ValidationError

from workflow_api.models import (
    DeploymentRequest,
    EC2Project,
    Project,
    PublishRecord,
    PublishResult,
    PublishStatus,
    UpdateWorkflowRequest,
    workflow_file_path,
)


class TestDeploymentRequest:
    """Test DeploymentRequest parsing."""

    def test_camel_case_payload(self, ec2_request_data):
        """Test that camelCase JSON fields populate snake_case attributes."""
        request = DeploymentRequest.model_validate(ec2_request_data)

        assert request.workflow_name == "deploy-1"
        assert request.deployment_type == "ec2"
        assert request.ec2_common_fields.aws_region == "us-east-1"
        assert request.ec2_projects[1].enable_gpu is True
        assert request.projects[0].dot_env_testing == "DEBUG=true\nPORT=8000"
        assert request.kubernetes_common_fields is None
        assert request.kubernetes_projects == []

    def test_snake_case_construction(self):
        """Test building a request with Python attribute names."""
        request = DeploymentRequest(
            owner="acme",
            repository="svc",
            workflow_name="deploy",
            deployment_type="kubernetes",
            projects=[Project(id="1", name="api", docker_context_path="api", dockerfile_path="api/Dockerfile")],
        )

        assert request.file_path == ".github/workflows/deploy.yml"

    def test_projects_required(self, ec2_request_data):
        """Test that at least one project is required."""
        ec2_request_data["projects"] = []

        with pytest.raises(ValidationError):
            DeploymentRequest.model_validate(ec2_request_data)

    def test_missing_owner(self, ec2_request_data):
        del ec2_request_data["owner"]

        with pytest.raises(ValidationError):
            DeploymentRequest.model_validate(ec2_request_data)

    def test_unknown_deployment_type_is_accepted_by_model(self, ec2_request_data):
        """Deployment type rules are enforced by validation, not by parsing."""
        ec2_request_data["deploymentType"] = "lambda"

        request = DeploymentRequest.model_validate(ec2_request_data)

        assert request.deployment_type == "lambda"

    def test_serializes_with_camel_case(self, ec2_request):
        data = ec2_request.model_dump(by_alias=True)

        assert "workflowName" in data
        assert "ec2CommonFields" in data
        assert data["ec2Projects"][0]["port"] == "8000"


class TestEC2Project:
    def test_optional_defaults(self):
        project = EC2Project(id="1", name="api", command="run", port="80")

        assert project.docker_network == ""
        assert project.mount_path == ""
        assert project.enable_gpu is False
        assert project.log_driver == ""
        assert project.log_driver_options == ""

    def test_port_is_kept_as_text(self):
        project = EC2Project(id="1", name="api", command="run", port="8080:80")

        assert project.port == "8080:80"


class TestOtherModels:
    """Test result, update and history models."""

    def test_update_request_requires_sha(self):
        with pytest.raises(ValidationError):
            UpdateWorkflowRequest(
                owner="acme", repository="svc", file_path=".github/workflows/a.yml", content="x"
            )

    def test_update_request_commit_message_default(self):
        request = UpdateWorkflowRequest.model_validate(
            {
                "owner": "acme",
                "repository": "svc",
                "filePath": ".github/workflows/a.yml",
                "content": "name: a",
                "sha": "abc",
            }
        )

        assert request.commit_message == ""
        assert request.file_path == ".github/workflows/a.yml"

    def test_publish_result_timestamp(self):
        result = PublishResult(
            owner="acme",
            repository="svc",
            workflow_name="deploy",
            file_path=".github/workflows/deploy.yml",
            file_url="https://github.com/acme/svc/pull/1",
            branch="workflow/deploy-1",
            pull_request_number=1,
            message="ok",
        )

        assert result.created_at.tzinfo is not None
        assert result.model_dump(by_alias=True)["pullRequestNumber"] == 1

    def test_publish_record_ids_are_unique(self):
        kwargs = dict(
            user_id="u",
            owner="acme",
            repository="svc",
            workflow_name="deploy",
            file_path=".github/workflows/deploy.yml",
            status=PublishStatus.created,
        )

        assert PublishRecord(**kwargs).id != PublishRecord(**kwargs).id

    def test_workflow_file_path(self):
        assert workflow_file_path("deploy-1") == ".github/workflows/deploy-1.yml"
