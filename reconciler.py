"""
Requirements reconciliation: merge user supplied override flags into a
requirements document.

Overrides are sparse. A flag left at ``None`` never touches the document, so
re-running with the same flags against the output yields the same document.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from core.errors import ConfigError
from core.models import AppReference, RequirementsDocument
from requirements_store import RequirementsStore
from scm_client import KNOWN_GIT_KINDS, saas_git_kind

SECRET_STORAGE_KINDS = ("local", "vault", "gsm", "asm", "azurekeyvault")
WEBHOOK_KINDS = ("lighthouse", "prow", "jenkins")
REPOSITORY_KINDS = ("nexus", "artifactory", "bucketrepo", "none")
INGRESS_KINDS = ("ingress", "istio")

STORAGE_SECTIONS = ("logs", "reports", "repository", "backup")


@dataclass
class RequirementFlags:
    """Override flags for the requirements document. ``None`` means not set."""
    cluster_name: Optional[str] = None
    provider: Optional[str] = None
    project: Optional[str] = None
    zone: Optional[str] = None
    region: Optional[str] = None
    environment_git_owner: Optional[str] = None
    environment_git_public: Optional[bool] = None
    git_public: Optional[bool] = None
    git_server: Optional[str] = None
    git_kind: Optional[str] = None
    git_name: Optional[str] = None
    domain: Optional[str] = None
    ingress_kind: Optional[str] = None
    tls_email: Optional[str] = None
    tls_enabled: Optional[bool] = None
    secret_storage: Optional[str] = None
    webhook: Optional[str] = None
    repository: Optional[str] = None
    logs_url: Optional[str] = None
    reports_url: Optional[str] = None
    repository_url: Optional[str] = None
    backup_url: Optional[str] = None
    autoupgrade: Optional[bool] = None
    autoupgrade_schedule: Optional[str] = None
    kaniko: Optional[bool] = None
    terraform: Optional[bool] = None
    gitops: Optional[bool] = None

    # target environment entry
    environment_owner: Optional[str] = None
    environment_repository: Optional[str] = None
    remote_cluster: Optional[bool] = None

    add_apps: List[str] = field(default_factory=list)
    remove_apps: List[str] = field(default_factory=list)


# flag attribute -> path of the document field it overrides
FLAG_PATHS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ('cluster_name', ('cluster', 'clusterName')),
    ('provider', ('cluster', 'provider')),
    ('project', ('cluster', 'project')),
    ('zone', ('cluster', 'zone')),
    ('region', ('cluster', 'region')),
    ('environment_git_owner', ('cluster', 'environmentGitOwner')),
    ('environment_git_public', ('cluster', 'environmentGitPublic')),
    ('git_public', ('cluster', 'gitPublic')),
    ('git_server', ('cluster', 'gitServer')),
    ('git_kind', ('cluster', 'gitKind')),
    ('git_name', ('cluster', 'gitName')),
    ('domain', ('ingress', 'domain')),
    ('ingress_kind', ('ingress', 'kind')),
    ('tls_email', ('ingress', 'tls', 'email')),
    ('tls_enabled', ('ingress', 'tls', 'enabled')),
    ('secret_storage', ('secretStorage',)),
    ('webhook', ('webhook',)),
    ('repository', ('repository',)),
    ('logs_url', ('storage', 'logs', 'url')),
    ('reports_url', ('storage', 'reports', 'url')),
    ('repository_url', ('storage', 'repository', 'url')),
    ('backup_url', ('storage', 'backup', 'url')),
    ('autoupgrade', ('autoUpdate', 'enabled')),
    ('autoupgrade_schedule', ('autoUpdate', 'schedule')),
    ('kaniko', ('kaniko',)),
    ('terraform', ('terraform',)),
    ('gitops', ('gitops',)),
)

# flag attribute -> allowed values
_ENUM_FLAGS = (
    ('secret_storage', SECRET_STORAGE_KINDS),
    ('webhook', WEBHOOK_KINDS),
    ('repository', REPOSITORY_KINDS),
    ('ingress_kind', INGRESS_KINDS),
    ('git_kind', KNOWN_GIT_KINDS),
)

logger = logging.getLogger('gitopsboot.reconciler')


def _get_path(data: Dict[str, Any], path: Sequence[str]) -> Any:
    node: Any = data
    for name in path:
        if not isinstance(node, dict):
            return None
        node = node.get(name)
    return node


def _set_path(document: RequirementsDocument, path: Sequence[str], value: Any) -> None:
    document.section(*path[:-1])[path[-1]] = value


def validate_flags(flags: RequirementFlags, environment_key: str) -> None:
    """Reject override sets that are internally inconsistent."""
    if not environment_key:
        raise ConfigError("missing environment key")

    for name, allowed in _ENUM_FLAGS:
        value = getattr(flags, name)
        if value is not None and value not in allowed:
            raise ConfigError(f"invalid value '{value}' for {name.replace('_', '-')}: must be one of {', '.join(allowed)}")

    if flags.tls_enabled is False and flags.tls_email:
        raise ConfigError("conflicting flags: a TLS email was given but TLS is disabled")
    if flags.autoupgrade is False and flags.autoupgrade_schedule:
        raise ConfigError("conflicting flags: an auto upgrade schedule was given but auto upgrade is disabled")
    if flags.remote_cluster and environment_key == "dev":
        raise ConfigError("conflicting flags: the dev environment cannot be a remote cluster environment")


def apply_app_changes(document: RequirementsDocument, add_apps: Sequence[str], remove_apps: Sequence[str]) -> None:
    """Add then remove apps by name; removal wins for names in both lists."""
    names = set(document.app_names())
    for name in add_apps or []:
        if name and name not in names:
            document.apps.append(AppReference(name=name))
            names.add(name)
    removed = set(remove_apps or [])
    if removed:
        document.apps = [app for app in document.apps if app.name not in removed]


def _apply_defaults(document: RequirementsDocument, flags: RequirementFlags) -> None:
    data = document.data

    # An explicit enabled flag always beats the value derived from email or schedule
    if flags.tls_enabled is None and _get_path(data, ('ingress', 'tls', 'email')):
        _set_path(document, ('ingress', 'tls', 'enabled'), True)
    if flags.autoupgrade is None and _get_path(data, ('autoUpdate', 'schedule')):
        _set_path(document, ('autoUpdate', 'enabled'), True)

    logs_url = _get_path(data, ('storage', 'logs', 'url'))
    if logs_url and not _get_path(data, ('storage', 'reports', 'url')):
        _set_path(document, ('storage', 'reports', 'url'), logs_url)
    for name in STORAGE_SECTIONS:
        if _get_path(data, ('storage', name, 'url')):
            _set_path(document, ('storage', name, 'enabled'), True)

    cluster = data.get('cluster')
    if isinstance(cluster, dict):
        if not cluster.get('gitKind') and cluster.get('gitServer'):
            kind = saas_git_kind(cluster['gitServer'])
            if kind:
                cluster['gitKind'] = kind
        if not cluster.get('gitName') and cluster.get('gitKind'):
            cluster['gitName'] = cluster['gitKind']


def reconcile(existing: Optional[RequirementsDocument], flags: Optional[RequirementFlags], environment_key: str) -> RequirementsDocument:
    """Return a copy of ``existing`` (or a new document) with ``flags`` applied.

    The entry for ``environment_key`` is created if missing and updated in
    place otherwise.

    Raises:
        ConfigError: If the flags are inconsistent
    """
    flags = flags or RequirementFlags()
    validate_flags(flags, environment_key)

    document = existing.copy() if existing is not None else RequirementsDocument()

    for name, path in FLAG_PATHS:
        value = getattr(flags, name)
        if value is not None:
            _set_path(document, path, value)

    _apply_defaults(document, flags)

    env, created = document.get_or_create_environment(environment_key)
    if created:
        logger.debug(f"Added environment '{environment_key}' to requirements")
    if flags.environment_owner is not None:
        env.owner = flags.environment_owner or None
    if flags.environment_repository is not None:
        env.repository = flags.environment_repository or None
    if flags.remote_cluster is not None:
        env.remote_cluster = flags.remote_cluster

    apply_app_changes(document, flags.add_apps, flags.remove_apps)
    return document


def override_requirements(
    store: RequirementsStore,
    dir: str,
    flags: Optional[RequirementFlags],
    environment_key: str,
    requirements_file: str = "",
) -> Tuple[RequirementsDocument, str]:
    """Load the document of ``dir`` (or ``requirements_file``), reconcile it and save it back to ``dir``."""
    document, path = store.load(dir, must_exist=False)
    if requirements_file:
        if not os.path.isfile(requirements_file):
            raise ConfigError(f"requirements file {requirements_file} does not exist", target=requirements_file)
        logger.info(f"Using requirements from {requirements_file}")
        document = store.load_file(requirements_file)

    result = reconcile(document, flags, environment_key)
    store.save(result, path)
    return result, path
