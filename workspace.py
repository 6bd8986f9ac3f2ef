"""
Workspace acquisition: pick the local working tree a bootstrap run operates on.
"""

import logging
import os
import tempfile

from core.errors import BootstrapError, WorkspaceError
from core.models import WorkspaceRef
from git_client import GitClient, mask_credentials

DEFAULT_ENVIRONMENT = "dev"
# Canonical template for a development cluster
DEFAULT_BOOT_REPOSITORY = "https://github.com/jenkins-x/jenkins-x-boot-helmfile-config.git"
# Template for remote (staging, production, ...) environments
DEFAULT_ENVIRONMENT_REPOSITORY = "https://github.com/jenkins-x/default-environment-helmfile.git"

TEMP_DIR_PREFIX = "gitopsboot-"


def resolve_git_url(explicit_git_url: str, environment_key: str) -> str:
    if explicit_git_url:
        return explicit_git_url
    if (environment_key or DEFAULT_ENVIRONMENT) == DEFAULT_ENVIRONMENT:
        return DEFAULT_BOOT_REPOSITORY
    return DEFAULT_ENVIRONMENT_REPOSITORY


class WorkspaceAcquirer:
    """Uses a caller supplied directory or clones a template into a temp directory."""

    def __init__(self, git: GitClient):
        self.git = git
        self.logger = logging.getLogger('gitopsboot.workspace')

    def acquire(self, explicit_dir: str, explicit_git_url: str, environment_key: str) -> WorkspaceRef:
        git_url = resolve_git_url(explicit_git_url, environment_key)

        if explicit_dir:
            try:
                os.makedirs(explicit_dir, exist_ok=True)
            except OSError as e:
                raise WorkspaceError(f"failed to create directory {explicit_dir}: {e}", target=explicit_dir) from e
            try:
                if not self.git.is_repository_root(explicit_dir):
                    self.logger.debug(f"Initialising git repository in {explicit_dir}")
                    self.git.init(explicit_dir)
            except BootstrapError as e:
                raise WorkspaceError(f"failed to initialise git repository in {explicit_dir}: {e}", target=explicit_dir) from e
            self.logger.info(f"Using existing directory {explicit_dir}")
            return WorkspaceRef(path=explicit_dir, git_url=git_url, owned=False)

        try:
            dir = tempfile.mkdtemp(prefix=TEMP_DIR_PREFIX)
        except OSError as e:
            raise WorkspaceError(f"failed to create temporary directory: {e}") from e

        self.logger.debug(f"Cloning {mask_credentials(git_url)} to directory {dir}")
        try:
            self.git.clone(git_url, dir)
        except BootstrapError as e:
            raise WorkspaceError(f"failed to clone {mask_credentials(git_url)} to directory {dir}: {e}", target=git_url) from e
        return WorkspaceRef(path=dir, git_url=git_url, owned=True)
