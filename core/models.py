"""Core data models for the bootstrap workflow."""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from reconciler import RequirementFlags


@dataclass
class EnvironmentEntry:
    """One named environment inside a requirements document."""
    key: str
    owner: Optional[str] = None
    repository: Optional[str] = None
    remote_cluster: bool = False
    # Fields we do not manage (namespace, promotionStrategy, ...)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EnvironmentEntry':
        extra = {k: v for k, v in data.items() if k not in ('key', 'owner', 'repository', 'remoteCluster')}
        return cls(
            key=str(data.get('key') or ''),
            owner=data.get('owner') or None,
            repository=data.get('repository') or None,
            remote_cluster=bool(data.get('remoteCluster', False)),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'key': self.key}
        if self.owner:
            data['owner'] = self.owner
        if self.repository:
            data['repository'] = self.repository
        if self.remote_cluster:
            data['remoteCluster'] = True
        data.update(self.extra)
        return data


@dataclass
class AppReference:
    """An application (helm chart) installed by the environment."""
    name: str
    namespace: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_value(cls, value: Any) -> 'AppReference':
        # Apps may be listed as bare chart names or as mappings
        if isinstance(value, str):
            return cls(name=value)
        extra = {k: v for k, v in value.items() if k not in ('name', 'namespace')}
        return cls(name=str(value.get('name') or ''), namespace=value.get('namespace'), extra=extra)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {'name': self.name}
        if self.namespace:
            data['namespace'] = self.namespace
        data.update(self.extra)
        return data


@dataclass
class RequirementsDocument:
    """Declarative description of a cluster's environments and apps.

    ``data`` carries every other top-level field (cluster, ingress, storage,
    ...) untouched so that a load/save round trip never drops content.
    """
    environments: List[EnvironmentEntry] = field(default_factory=list)
    apps: List[AppReference] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> 'RequirementsDocument':
        raw = dict(raw or {})
        environments = [EnvironmentEntry.from_dict(e) for e in (raw.pop('environments', None) or [])]
        apps = [AppReference.from_value(a) for a in (raw.pop('apps', None) or [])]
        return cls(environments=environments, apps=apps, data=raw)

    def to_dict(self) -> Dict[str, Any]:
        result = copy.deepcopy(self.data)
        result['environments'] = [e.to_dict() for e in self.environments]
        if self.apps:
            result['apps'] = [a.to_dict() for a in self.apps]
        return result

    def copy(self) -> 'RequirementsDocument':
        return copy.deepcopy(self)

    @property
    def cluster(self) -> Dict[str, Any]:
        return self.section('cluster')

    def section(self, *path: str) -> Dict[str, Any]:
        """Return the nested mapping at ``path``, creating empty mappings on the way."""
        node = self.data
        for name in path:
            child = node.get(name)
            if not isinstance(child, dict):
                child = {}
                node[name] = child
            node = child
        return node

    def find_environment(self, key: str) -> Optional[EnvironmentEntry]:
        for env in self.environments:
            if env.key == key:
                return env
        return None

    def get_or_create_environment(self, key: str) -> Tuple[EnvironmentEntry, bool]:
        """Return the entry for ``key`` and whether it had to be appended."""
        env = self.find_environment(key)
        if env is not None:
            return env, False
        env = EnvironmentEntry(key=key)
        self.environments.append(env)
        return env, True

    def app_names(self) -> List[str]:
        return [a.name for a in self.apps]


@dataclass
class WorkspaceRef:
    """A local directory bound to a git working tree."""
    path: str
    git_url: Optional[str] = None
    # Only temp directories created by the run are owned; caller dirs are borrowed
    owned: bool = False


@dataclass
class CreatedRepositoryIdentity:
    """Identity of the hosted repository created by the publish step."""
    owner: str
    repository: str
    link: str = ""
    clone_url: str = ""
    git_server: str = ""
    git_kind: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repository}"


@dataclass(frozen=True)
class BootstrapOptions:
    """Immutable inputs of one bootstrap run."""
    environment: str = "dev"
    initial_git_url: str = ""
    dir: str = ""
    requirements_file: str = ""
    dev_git_url: str = ""
    dev_git_kind: str = ""
    no_operator: bool = False
    batch_mode: bool = False
    disable_verify_packages: bool = False
    # includes the app add/remove lists
    flags: Optional['RequirementFlags'] = None

    @property
    def make_public(self) -> bool:
        return bool(self.flags is not None and self.flags.environment_git_public)


class StepStatus(str, Enum):
    SKIPPED = "skipped"
    DECLINED = "declined"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class StepResult:
    """Outcome of a single workflow step."""
    name: str
    status: StepStatus
    detail: str = ""


@dataclass
class BootstrapContext:
    """Results accumulated as the run moves from one state to the next."""
    environment: str
    git_url: str = ""
    dev_git_kind: str = ""
    workspace: Optional[WorkspaceRef] = None
    requirements: Optional[RequirementsDocument] = None
    requirements_path: str = ""
    committed: bool = False
    created_repository: Optional[CreatedRepositoryIdentity] = None
    change_request_link: str = ""
    steps: List[StepResult] = field(default_factory=list)

    def record(self, name: str, status: StepStatus, detail: str = "") -> StepResult:
        result = StepResult(name=name, status=status, detail=detail)
        self.steps.append(result)
        return result


class OutcomeKind(str, Enum):
    COMPLETED = "completed"
    COMPLETED_NO_OPERATOR = "completed_no_operator"
    DECLINED = "declined"
    FAILED = "failed"


@dataclass
class BootstrapOutcome:
    """Terminal result of one bootstrap run."""
    kind: OutcomeKind
    context: BootstrapContext
    reason: Optional[str] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.kind != OutcomeKind.FAILED
