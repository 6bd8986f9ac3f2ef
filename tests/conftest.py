"""Shared fixtures for the gitopsboot tests."""

from pathlib import Path

import pytest

from core.models import CreatedRepositoryIdentity
from requirements_store import REQUIREMENTS_FILE_NAME, RequirementsStore

DEV_REQUIREMENTS = """\
cluster:
  clusterName: mycluster
  provider: gke
  gitKind: github
  environmentGitOwner: acme
environments:
- key: dev
  owner: acme
  repository: environment-mycluster-dev
- key: staging
  namespace: jx-staging
webhook: lighthouse
"""


@pytest.fixture
def store():
    return RequirementsStore()


@pytest.fixture
def identity():
    return CreatedRepositoryIdentity(
        owner="acme",
        repository="environment-mycluster-staging",
        link="https://github.com/acme/environment-mycluster-staging",
        clone_url="https://github.com/acme/environment-mycluster-staging.git",
        git_server="https://github.com",
        git_kind="github",
    )


@pytest.fixture
def write_requirements():
    """Return a helper that writes a requirements file into a directory."""
    def _write(dir, text=DEV_REQUIREMENTS):
        path = Path(dir) / REQUIREMENTS_FILE_NAME
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path
    return _write
