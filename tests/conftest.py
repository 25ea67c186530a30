"""Fixtures shared by the assignment-operator tests."""

from pathlib import Path
from typing import Any

import git
import pytest
import yaml

from assignment_operator.config import OperatorConfig

CLUSTER_NAME = "az-eastus2-1"

DEPLOYMENT_TEMPLATE = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: {{ workloadName }}
  labels:
    cluster: {{ clusterName }}
spec:
  template:
    spec:
      containers:
      - name: app
        image: {{ image }}
"""

CONFIG_TEMPLATE = """\
cloud: {{ cloud }}
region: {{ cloudRegion }}
"""


def _configure_user(repo: git.Repo) -> None:
    repo.config_writer().set_value("user", "name", "myusername").release()
    repo.config_writer().set_value("user", "email", "myemail").release()


@pytest.fixture(name="template_repo")
def template_repo_fixture(tmp_path: Path) -> Path:
    """Create a local git repository holding a workload template."""
    repo_path = tmp_path / "templates"
    repo_path.mkdir()
    repo = git.Repo.init(repo_path)
    _configure_user(repo)

    deploy = repo_path / "deploy"
    (deploy / "config").mkdir(parents=True)
    (deploy / ".github").mkdir()
    (deploy / "deployment.yaml").write_text(DEPLOYMENT_TEMPLATE)
    (deploy / "config" / "settings.yaml").write_text(CONFIG_TEMPLATE)
    (deploy / ".github" / "ignored.yaml").write_text("{{ notAVariable }}\n")

    repo.git.add(".")
    repo.git.commit(m="Add templates")
    repo.git.branch("-M", "main")
    repo.git.tag("v1.0.0")
    return repo_path


@pytest.fixture(name="gitops_remote")
def gitops_remote_fixture(tmp_path: Path) -> Path:
    """Create a bare GitOps repository with an initial commit on main."""
    seed_path = tmp_path / "seed"
    seed_path.mkdir()
    seed = git.Repo.init(seed_path)
    _configure_user(seed)

    flux_system = seed_path / CLUSTER_NAME / "flux-system"
    flux_system.mkdir(parents=True)
    (flux_system / "gotk-sync.yaml").write_text("kind: Kustomization\n")
    (seed_path / "README.md").write_text("GitOps repository\n")
    seed.git.add(".")
    seed.git.commit(m="Initial commit")
    seed.git.branch("-M", "main")

    remote_path = tmp_path / "gitops.git"
    remote = git.Repo.init(remote_path, bare=True)
    remote.git.symbolic_ref("HEAD", "refs/heads/main")
    seed.create_remote("origin", str(remote_path))
    seed.git.push("origin", "main")
    return remote_path


@pytest.fixture(name="config")
def config_fixture(gitops_remote: Path) -> OperatorConfig:
    """Create an operator configuration publishing to the test remote."""
    return OperatorConfig(
        gitops_repo_url=f"file://{gitops_remote}",
        step_timeout=60,
        commit_author_name="Application API",
        commit_author_email="application-api@example.com",
    )


@pytest.fixture(name="workload_doc")
def workload_doc_fixture(template_repo: Path) -> dict[str, Any]:
    """Return a Workload resource rendering the test template."""
    return yaml.safe_load(
        f"""
        apiVersion: fleet.gitops.io/v1alpha1
        kind: Workload
        metadata:
          name: myworkload
          namespace: default
        spec:
          templates:
            workload:
              source: file://{template_repo}
              path: deploy
              ref: main
          assignments:
          - id: east
            labels:
            - label: region
              regex: eastus
          values:
            workloadName: myworkload
            image: nginx:1.25
        """
    )


@pytest.fixture(name="assignment_doc")
def assignment_doc_fixture() -> dict[str, Any]:
    """Return a WorkloadAssignment of the test workload."""
    return yaml.safe_load(
        f"""
        apiVersion: fleet.gitops.io/v1alpha1
        kind: WorkloadAssignment
        metadata:
          name: myworkload
          namespace: default
        spec:
          workload: myworkload
          cluster: {CLUSTER_NAME}
          values:
            image: nginx:1.27
        """
    )
