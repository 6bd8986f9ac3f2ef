"""Error hierarchy for the bootstrap workflow.

Every failure that ends a run is a ``BootstrapError``. The subclasses name the
step family that failed so callers can tell them apart without parsing
messages.
"""

from typing import Optional


class BootstrapError(Exception):
    """Base class for all errors that terminate a bootstrap run."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class ConfigError(BootstrapError):
    """Bad or ambiguous user input, or an unparseable requirements document."""


class WorkspaceError(BootstrapError):
    """Failed to create a directory or clone the source repository."""


class VerificationError(BootstrapError):
    """The local environment or the workspace is not ready to proceed."""


class PublicationError(BootstrapError):
    """Failed to create or push the hosted environment repository."""


class LinkError(BootstrapError):
    """Failed to link the new environment into the development repository."""


class OperatorInstallError(BootstrapError):
    """Failed to install the git operator into the cluster."""


class GitCommandError(BootstrapError):
    """A git subprocess returned a non-zero exit code."""

    def __init__(self, message: str, command: str = "", stderr: str = "", target: Optional[str] = None):
        super().__init__(message, target=target)
        self.command = command
        self.stderr = stderr
