"""Core package initialization."""

from .models import (
    EnvironmentEntry,
    AppReference,
    RequirementsDocument,
    WorkspaceRef,
    CreatedRepositoryIdentity,
    BootstrapOptions,
    BootstrapContext,
    StepStatus,
    StepResult,
    OutcomeKind,
    BootstrapOutcome,
)
from .errors import (
    BootstrapError,
    ConfigError,
    WorkspaceError,
    VerificationError,
    PublicationError,
    LinkError,
    OperatorInstallError,
    GitCommandError,
)

__all__ = [
    'EnvironmentEntry',
    'AppReference',
    'RequirementsDocument',
    'WorkspaceRef',
    'CreatedRepositoryIdentity',
    'BootstrapOptions',
    'BootstrapContext',
    'StepStatus',
    'StepResult',
    'OutcomeKind',
    'BootstrapOutcome',
    'BootstrapError',
    'ConfigError',
    'WorkspaceError',
    'VerificationError',
    'PublicationError',
    'LinkError',
    'OperatorInstallError',
    'GitCommandError',
]
