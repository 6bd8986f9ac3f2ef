#!/usr/bin/env python3
"""
Tests for merging override flags into the requirements document.
"""

import pytest

from core.errors import ConfigError
from core.models import AppReference, EnvironmentEntry, RequirementsDocument
from reconciler import RequirementFlags, apply_app_changes, override_requirements, reconcile


def test_new_document_gets_exactly_one_target_environment():
    flags = RequirementFlags(cluster_name="mycluster", add_apps=["jetstack/cert-manager", "nginx/ingress"])

    document = reconcile(None, flags, "staging")

    assert [e.key for e in document.environments] == ["staging"]
    assert document.app_names() == ["jetstack/cert-manager", "nginx/ingress"]
    assert document.data["cluster"]["clusterName"] == "mycluster"


def test_remove_wins_when_app_is_added_and_removed():
    flags = RequirementFlags(add_apps=["a", "b"], remove_apps=["b", "not-there"])

    document = reconcile(None, flags, "dev")

    assert document.app_names() == ["a"]


def test_add_is_idempotent_for_existing_apps():
    document = RequirementsDocument(apps=[AppReference(name="a", namespace="tools")])

    apply_app_changes(document, ["a", "a", "b"], [])

    assert document.app_names() == ["a", "b"]
    assert document.apps[0].namespace == "tools"


def test_reconcile_twice_yields_identical_document():
    flags = RequirementFlags(
        cluster_name="mycluster",
        provider="gke",
        tls_email="admin@example.com",
        logs_url="gs://logs",
        environment_owner="acme",
        add_apps=["a", "b"],
        remove_apps=["b"],
    )

    once = reconcile(None, flags, "staging")
    twice = reconcile(once, flags, "staging")

    assert twice == once
    assert twice.to_dict() == once.to_dict()


def test_unset_flags_leave_existing_values_alone():
    existing = RequirementsDocument.from_dict({
        "cluster": {"provider": "eks", "clusterName": "old"},
        "webhook": "prow",
        "environments": [{"key": "dev"}],
    })

    document = reconcile(existing, RequirementFlags(cluster_name="new"), "dev")

    assert document.data["cluster"] == {"provider": "eks", "clusterName": "new"}
    assert document.data["webhook"] == "prow"


def test_reconcile_does_not_mutate_its_input():
    existing = RequirementsDocument(environments=[EnvironmentEntry(key="dev")])

    reconcile(existing, RequirementFlags(cluster_name="x", add_apps=["a"]), "staging")

    assert [e.key for e in existing.environments] == ["dev"]
    assert existing.apps == []
    assert existing.data == {}


def test_existing_environment_is_updated_in_place():
    existing = RequirementsDocument(environments=[EnvironmentEntry(key="dev"), EnvironmentEntry(key="staging")])
    flags = RequirementFlags(environment_owner="acme", environment_repository="env-staging", remote_cluster=True)

    document = reconcile(existing, flags, "staging")

    assert len(document.environments) == 2
    staging = document.find_environment("staging")
    assert staging.owner == "acme"
    assert staging.repository == "env-staging"
    assert staging.remote_cluster is True


def test_derived_defaults_are_applied():
    flags = RequirementFlags(
        tls_email="admin@example.com",
        logs_url="gs://logs",
        autoupgrade_schedule="0 0 * * *",
        git_server="https://github.com",
    )

    data = reconcile(None, flags, "dev").data

    assert data["ingress"]["tls"] == {"email": "admin@example.com", "enabled": True}
    assert data["autoUpdate"] == {"schedule": "0 0 * * *", "enabled": True}
    assert data["storage"]["reports"]["url"] == "gs://logs"
    assert data["storage"]["logs"]["enabled"] is True
    assert data["storage"]["reports"]["enabled"] is True
    assert data["cluster"]["gitKind"] == "github"
    assert data["cluster"]["gitName"] == "github"


def test_explicit_reports_url_is_not_replaced_by_logs_url():
    flags = RequirementFlags(logs_url="gs://logs", reports_url="gs://reports")

    data = reconcile(None, flags, "dev").data

    assert data["storage"]["reports"]["url"] == "gs://reports"



def test_explicit_disable_flags_beat_derived_defaults():
    existing = RequirementsDocument.from_dict({
        "ingress": {"tls": {"email": "admin@example.com", "enabled": True}},
        "autoUpdate": {"schedule": "0 0 * * *", "enabled": True},
        "environments": [{"key": "dev"}],
    })
    flags = RequirementFlags(tls_enabled=False, autoupgrade=False)

    document = reconcile(existing, flags, "dev")

    assert document.data["ingress"]["tls"] == {"email": "admin@example.com", "enabled": False}
    assert document.data["autoUpdate"] == {"schedule": "0 0 * * *", "enabled": False}
    assert reconcile(document, flags, "dev") == document


@pytest.mark.parametrize("flags,environment_key", [
    (RequirementFlags(tls_enabled=False, tls_email="admin@example.com"), "dev"),
    (RequirementFlags(autoupgrade=False, autoupgrade_schedule="@daily"), "dev"),
    (RequirementFlags(remote_cluster=True), "dev"),
    (RequirementFlags(secret_storage="filesystem"), "dev"),
    (RequirementFlags(webhook="smee"), "dev"),
    (RequirementFlags(git_kind="svn"), "staging"),
    (RequirementFlags(), ""),
])
def test_inconsistent_flags_raise_config_error(flags, environment_key):
    with pytest.raises(ConfigError):
        reconcile(None, flags, environment_key)


def test_override_requirements_saves_into_workspace(tmp_path, store):
    flags = RequirementFlags(cluster_name="mycluster", add_apps=["a"])

    document, path = override_requirements(store, str(tmp_path), flags, "dev")

    assert path == str(tmp_path / "jx-requirements.yml")
    reloaded, _ = store.load(str(tmp_path), must_exist=True)
    assert reloaded == document
    assert reloaded.app_names() == ["a"]


def test_override_requirements_prefers_custom_file(tmp_path, store, write_requirements):
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    write_requirements(workspace, "cluster:\n  clusterName: from-workspace\n")
    custom = write_requirements(tmp_path / "custom", "cluster:\n  clusterName: from-terraform\n  provider: gke\n")

    document, path = override_requirements(store, str(workspace), RequirementFlags(), "dev", str(custom))

    assert path == str(workspace / "jx-requirements.yml")
    assert document.data["cluster"] == {"clusterName": "from-terraform", "provider": "gke"}
    reloaded, _ = store.load(str(workspace), must_exist=True)
    assert reloaded.data["cluster"]["clusterName"] == "from-terraform"


def test_override_requirements_missing_custom_file(tmp_path, store):
    with pytest.raises(ConfigError):
        override_requirements(store, str(tmp_path), RequirementFlags(), "dev", str(tmp_path / "nope.yml"))


def test_override_requirements_unparseable_document(tmp_path, store, write_requirements):
    write_requirements(tmp_path, "environments: [\n")

    with pytest.raises(ConfigError):
        override_requirements(store, str(tmp_path), RequirementFlags(), "dev")
