import base64
import os
from typing import Any, Dict, List, Optional

import pytest

# Keep Rich console output unwrapped so CLI assertions don't depend on path length
os.environ.setdefault("COLUMNS", "500")

from workflow_api.gh import GitHubGateway
from workflow_api.models import DeploymentRequest


class FakeGateway(GitHubGateway):
    """
    Scripted GitHubGateway recording every call.

    Set ``errors[method_name]`` to an exception to make that call fail.
    """

    def __init__(self, default_branch: str = "main", base_sha: str = "abc123", pr_number: int = 7):
        self.default_branch = default_branch
        self.base_sha = base_sha
        self.pr_number = pr_number
        self.calls: List[tuple] = []
        self.timeouts: List[Optional[float]] = []
        self.errors: Dict[str, Exception] = {}
        self.files: Dict[str, Dict[str, Any]] = {}
        self.directory: List[Dict[str, Any]] = []

    def _call(self, name: str, timeout, *args):
        self.calls.append((name,) + args)
        self.timeouts.append(timeout)
        if name in self.errors:
            raise self.errors[name]

    @property
    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def get_repository(self, owner, repo, timeout=None):
        self._call("get_repository", timeout, owner, repo)
        return {"full_name": f"{owner}/{repo}", "default_branch": self.default_branch}

    def get_branch_sha(self, owner, repo, branch, timeout=None):
        self._call("get_branch_sha", timeout, owner, repo, branch)
        return self.base_sha

    def create_branch(self, owner, repo, branch, sha, timeout=None):
        self._call("create_branch", timeout, owner, repo, branch, sha)

    def put_file(self, owner, repo, path, content, message, branch, sha=None, timeout=None):
        self._call("put_file", timeout, owner, repo, path, content, message, branch, sha)
        return {"content": {"path": path, "sha": "newsha"}}

    def create_pull_request(self, owner, repo, head, base, title, body, timeout=None):
        self._call("create_pull_request", timeout, owner, repo, head, base, title, body)
        return {
            "number": self.pr_number,
            "html_url": f"https://github.com/{owner}/{repo}/pull/{self.pr_number}",
        }

    def list_directory(self, owner, repo, path, timeout=None):
        self._call("list_directory", timeout, owner, repo, path)
        return self.directory

    def get_file(self, owner, repo, path, timeout=None):
        self._call("get_file", timeout, owner, repo, path)
        return self.files[path]

    def add_file(self, path: str, content: str, sha: str = "filesha") -> None:
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        # GitHub wraps base64 content at 60 characters
        wrapped = "\n".join(encoded[i:i + 60] for i in range(0, len(encoded), 60))
        self.files[path] = {"type": "file", "name": path.rsplit("/", 1)[-1], "path": path, "sha": sha, "content": wrapped}


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def projects_data():
    return [
        {
            "id": "p1",
            "name": "api",
            "dockerContextPath": "api",
            "dockerfilePath": "api/Dockerfile",
            "dotEnvTesting": "DEBUG=true\nPORT=8000",
        },
        {
            "id": "p2",
            "name": "worker",
            "dockerContextPath": "worker",
            "dockerfilePath": "worker/Dockerfile",
        },
    ]


@pytest.fixture
def ec2_request_data(projects_data):
    return {
        "owner": "acme",
        "repository": "svc",
        "workflowName": "deploy-1",
        "deploymentType": "ec2",
        "projects": projects_data,
        "ec2CommonFields": {
            "credentialId": "aws-cred",
            "awsRegion": "us-east-1",
            "jenkinsJobs": "deploy-svc",
            "releaseTag": "v1.4.0",
            "codeownersEmails": "owners@acme.io",
            "devopsStakeholdersEmails": "devops@acme.io",
        },
        "ec2Projects": [
            {"id": "e1", "name": "api", "command": "uvicorn app:app", "port": "8000"},
            {
                "id": "e2",
                "name": "worker",
                "command": "python worker.py",
                "port": "9000",
                "dockerNetwork": "backend",
                "enableGpu": True,
            },
        ],
    }


@pytest.fixture
def kubernetes_request_data(projects_data):
    return {
        "owner": "acme",
        "repository": "svc",
        "workflowName": "deploy-k8s",
        "deploymentType": "kubernetes",
        "projects": projects_data,
        "kubernetesCommonFields": {
            "jenkinsJobName": "helm-deploy",
            "releaseTag": "v2.0.1",
            "helmValuesRepository": "acme/helm-values",
            "codeownersEmailIds": "owners@acme.io",
            "devopsStakeholdersEmailIds": "devops@acme.io",
        },
        "kubernetesProjects": [
            {"id": "k1", "name": "api"},
            {"id": "k2", "name": "worker"},
            {"id": "k3", "name": "cron"},
        ],
    }


@pytest.fixture
def ec2_request(ec2_request_data):
    return DeploymentRequest.model_validate(ec2_request_data)


@pytest.fixture
def kubernetes_request(kubernetes_request_data):
    return DeploymentRequest.model_validate(kubernetes_request_data)
