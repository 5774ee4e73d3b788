import json
from unittest.mock import Mock, patch

import requests
from typer.testing import CliRunner

from cli.cli import APIClient, app

runner = CliRunner()


def make_response(json_data=None, status_code=200):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = json_data
    response.text = json.dumps(json_data)
    return response


class TestCLI:
    """Test CLI commands against a mocked API client."""

    def setup_method(self):
        self.api = Mock()
        self.patcher = patch("cli.cli.APIClient", return_value=self.api)
        self.api_class = self.patcher.start()

    def teardown_method(self):
        self.patcher.stop()

    def write_request(self, tmp_path, data):
        path = tmp_path / "request.json"
        path.write_text(json.dumps(data))
        return str(path)

    def test_status(self):
        self.api.get.return_value = make_response({"status": "ok", "version": "0.1.0", "default_token_configured": True})

        result = runner.invoke(app, ["status"])

        assert result.exit_code == 0
        assert "Workflow Manager API is running" in result.output
        assert "0.1.0" in result.output
        assert "Default token configured: yes" in result.output

    def test_status_unreachable(self):
        self.api.get.side_effect = requests.ConnectionError("refused")

        result = runner.invoke(app, ["status", "--base", "http://nowhere:1"])

        assert result.exit_code == 1
        assert "Cannot connect to API" in result.output

    def test_preview_to_file(self, tmp_path, ec2_request_data):
        self.api.post.return_value = make_response({"yaml": "name: x\n"})
        output = tmp_path / "deploy.yml"

        result = runner.invoke(app, ["preview", self.write_request(tmp_path, ec2_request_data), "-o", str(output)])

        assert result.exit_code == 0
        assert output.read_text() == "name: x\n"
        self.api.post.assert_called_once_with("/workflows/preview", json_data=ec2_request_data)

    def test_preview_missing_file(self, tmp_path):
        result = runner.invoke(app, ["preview", str(tmp_path / "missing.json")])

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_create_with_user(self, tmp_path, ec2_request_data):
        self.api.post.return_value = make_response(
            {
                "message": "Pull request #7 created for workflow 'deploy-1'",
                "fileUrl": "https://github.com/acme/svc/pull/7",
                "branch": "workflow/deploy-1-1700000000",
            },
            201,
        )

        result = runner.invoke(app, ["create", self.write_request(tmp_path, ec2_request_data), "--user", "alice"])

        assert result.exit_code == 0
        assert "Pull request #7 created" in result.output
        assert self.api_class.call_args[0][1] == "alice"

    def test_create_reports_branch_left_behind(self, tmp_path, ec2_request_data):
        error_response = make_response(
            {
                "detail": "GitHub refused to write",
                "error": "WorkflowScopeMissing",
                "details": {"step": "write_file", "branch": "workflow/deploy-1-1700000000"},
            },
            403,
        )
        self.api.post.side_effect = requests.HTTPError("403", response=error_response)

        result = runner.invoke(app, ["create", self.write_request(tmp_path, ec2_request_data)])

        assert result.exit_code == 1
        assert "403" in result.output
        assert "workflow/deploy-1-1700000000" in result.output

    def test_list_empty(self):
        self.api.get.return_value = make_response([])

        result = runner.invoke(app, ["list", "acme", "svc"])

        assert result.exit_code == 0
        assert "No workflows found" in result.output
        self.api.get.assert_called_once_with("/workflows/acme/svc")

    def test_list_table(self):
        self.api.get.return_value = make_response(
            [{"name": "deploy.yml", "path": ".github/workflows/deploy.yml", "sha": "0123456789abcdef", "size": 42}]
        )

        result = runner.invoke(app, ["list", "acme", "svc"])

        assert result.exit_code == 0
        assert "deploy.yml" in result.output
        assert "0123456789" in result.output

    def test_update_missing_local_file(self, tmp_path):
        result = runner.invoke(
            app, ["update", "acme", "svc", ".github/workflows/deploy.yml", str(tmp_path / "nope.yml"), "--sha", "abc"]
        )

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_update_sends_payload(self, tmp_path):
        local = tmp_path / "deploy.yml"
        local.write_text("name: deploy\n")
        self.api.put.return_value = make_response({"message": "updated", "fileUrl": "https://github.com/acme/svc/pull/8"})

        result = runner.invoke(
            app,
            ["update", "acme", "svc", ".github/workflows/deploy.yml", str(local), "--sha", "abc", "-m", "Bump"],
        )

        assert result.exit_code == 0
        endpoint = self.api.put.call_args[0][0]
        payload = self.api.put.call_args[1]["json_data"]
        assert endpoint == "/workflows/acme/svc/file"
        assert payload["sha"] == "abc"
        assert payload["content"] == "name: deploy\n"
        assert payload["commitMessage"] == "Bump"

    def test_login(self):
        self.api.put.return_value = make_response(None, 204)

        result = runner.invoke(app, ["login", "--token", "ghp_x", "--user", "bob"])

        assert result.exit_code == 0
        self.api.put.assert_called_once_with("/auth/token", json_data={"token": "ghp_x"})


class TestAPIClient:
    def test_sends_user_header(self):
        client = APIClient("http://localhost:8080", user="alice")

        assert client.session.headers["X-User-ID"] == "alice"

    def test_default_user(self):
        client = APIClient("http://localhost:8080")

        assert client.session.headers["X-User-ID"] == "default"
