#!/usr/bin/env python3
"""
Tests for linking a new environment repository into the dev repository.
"""

from unittest.mock import Mock

import pytest
import yaml

import linker
from core.errors import ConfigError, GitCommandError, LinkError
from core.models import CreatedRepositoryIdentity
from linker import CrossEnvironmentLinker, PR_BODY, change_request_body, change_request_title

DEV_URL = "https://github.com/acme/environment-mycluster-dev.git"
PR_LINK = "https://github.com/acme/environment-mycluster-dev/pull/7"


@pytest.fixture
def dev_clone(tmp_path, monkeypatch):
    clone_dir = tmp_path / "dev"
    clone_dir.mkdir()
    monkeypatch.setattr(linker.tempfile, "mkdtemp", Mock(return_value=str(clone_dir)))
    return clone_dir


@pytest.fixture
def git():
    git = Mock()
    git.add_and_commit.return_value = True
    return git


@pytest.fixture
def scm():
    scm = Mock()
    scm.open_change_request.return_value = PR_LINK
    return scm


def _saved_environments(clone_dir):
    return yaml.safe_load((clone_dir / "jx-requirements.yml").read_text())["environments"]


def test_title_and_body():
    identity = CreatedRepositoryIdentity(owner="acme", repository="env-prod")

    assert change_request_title("production") == "fix: add remote environment production"
    assert change_request_body(identity) == PR_BODY
    assert change_request_body(None) == PR_BODY


def test_existing_environment_is_updated_not_duplicated(dev_clone, git, scm, store, identity, write_requirements):
    write_requirements(dev_clone)

    link = CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)

    assert link == PR_LINK
    environments = _saved_environments(dev_clone)
    assert [e["key"] for e in environments] == ["dev", "staging"]
    assert environments[1] == {
        "key": "staging",
        "owner": "acme",
        "repository": "environment-mycluster-staging",
        "remoteCluster": True,
        "namespace": "jx-staging",
    }
    scm.open_change_request.assert_called_once_with(
        str(dev_clone),
        DEV_URL,
        "github",
        "",
        "fix: add remote environment staging",
        "adds a link to the new remote environment git repository at https://github.com/acme/environment-mycluster-staging",
    )


def test_new_environment_is_appended(dev_clone, git, scm, store, identity, write_requirements):
    write_requirements(dev_clone)

    CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "production", identity)

    environments = _saved_environments(dev_clone)
    assert [e["key"] for e in environments] == ["dev", "staging", "production"]
    assert environments[2]["remoteCluster"] is True


def test_commits_on_a_branch_before_opening_the_request(dev_clone, git, scm, store, identity, write_requirements):
    write_requirements(dev_clone)
    calls = []
    git.create_branch.side_effect = lambda dir, branch: calls.append(("branch", branch))
    git.add_and_commit.side_effect = lambda dir, message: calls.append(("commit", message)) or True
    scm.open_change_request.side_effect = lambda *args: calls.append(("pr",)) or PR_LINK

    CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)

    assert [c[0] for c in calls] == ["branch", "commit", "pr"]
    assert calls[0][1].startswith("add-env-staging-")
    assert calls[1][1].startswith("fix: add remote environment staging\n\n")


def test_unchanged_requirements_open_no_request(dev_clone, git, scm, store, identity, write_requirements):
    write_requirements(dev_clone)
    git.add_and_commit.return_value = False

    link = CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)

    assert link == ""
    scm.open_change_request.assert_not_called()


def test_missing_dev_requirements_is_a_config_error(dev_clone, git, scm, store, identity):
    with pytest.raises(ConfigError) as exc:
        CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)

    assert "environment-mycluster-dev" in str(exc.value)
    scm.open_change_request.assert_not_called()


def test_clone_failure_is_a_link_error(dev_clone, git, scm, store, identity):
    git.clone.side_effect = GitCommandError("authentication failed")

    with pytest.raises(LinkError):
        CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)


def test_push_failure_is_a_link_error(dev_clone, git, scm, store, identity, write_requirements):
    write_requirements(dev_clone)
    scm.open_change_request.side_effect = GitCommandError("rejected")

    with pytest.raises(LinkError) as exc:
        CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", identity)

    assert isinstance(exc.value.__cause__, GitCommandError)


def test_missing_identity(git, scm, store):
    with pytest.raises(LinkError):
        CrossEnvironmentLinker(git, scm, store).link(DEV_URL, "github", "staging", None)
