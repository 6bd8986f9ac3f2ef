"""
Links a newly created environment repository into the development environment
repository by opening a Pull Request that adds (or updates) its entry in the
dev requirements.
"""

import logging
import tempfile
import uuid

from core.errors import BootstrapError, ConfigError, LinkError
from core.models import CreatedRepositoryIdentity
from git_client import GitClient, mask_credentials
from requirements_store import RequirementsStore
from scm_client import ScmClient, to_valid_repo_name

DEV_CLONE_PREFIX = "gitopsboot-dev-"

PR_TITLE_TEMPLATE = "fix: add remote environment {key}"
PR_BODY = "adds a link to the new remote environment git repository"


def change_request_title(environment_key: str) -> str:
    return PR_TITLE_TEMPLATE.format(key=environment_key)


def change_request_body(identity: CreatedRepositoryIdentity) -> str:
    body = PR_BODY
    if identity is not None and identity.link:
        body += " at " + identity.link
    return body


class CrossEnvironmentLinker:
    """Adds the new environment to the dev repository's requirements via a Pull Request."""

    def __init__(self, git: GitClient, scm: ScmClient, store: RequirementsStore):
        self.git = git
        self.scm = scm
        self.store = store
        self.logger = logging.getLogger('gitopsboot.linker')

    def link(self, dev_repo_url: str, git_kind: str, environment_key: str, identity: CreatedRepositoryIdentity) -> str:
        """Open the Pull Request on ``dev_repo_url`` and return its link.

        Raises:
            ConfigError: If the dev repository has no valid requirements document
            LinkError: If cloning, committing or opening the Pull Request fails
        """
        if identity is None:
            raise LinkError("no created repository available to link", target=dev_repo_url)

        safe_url = mask_credentials(dev_repo_url)
        try:
            dir = tempfile.mkdtemp(prefix=DEV_CLONE_PREFIX)
            self.git.clone(dev_repo_url, dir)
        except (OSError, BootstrapError) as e:
            raise LinkError(f"failed to clone repository {safe_url}: {e}", target=dev_repo_url) from e

        try:
            requirements, path = self.store.load(dir, must_exist=True)
        except ConfigError as e:
            raise ConfigError(f"failed to load requirements file in git clone of {safe_url} in directory {dir}: {e}", target=dev_repo_url) from e

        env, created = requirements.get_or_create_environment(environment_key)
        env.owner = identity.owner
        env.repository = identity.repository
        env.remote_cluster = True
        if created:
            self.logger.info(f"Adding environment '{environment_key}' to {safe_url}")
        else:
            self.logger.info(f"Updating environment '{environment_key}' in {safe_url}")

        self.store.save(requirements, path)

        title = change_request_title(environment_key)
        body = change_request_body(identity)
        branch = to_valid_repo_name(f"add-env-{environment_key}-{uuid.uuid4().hex[:8]}")
        try:
            self.git.create_branch(dir, branch)
            if not self.git.add_and_commit(dir, f"{title}\n\n{body}"):
                # Entry already pointed at this repository
                self.logger.info(f"Environment '{environment_key}' in {safe_url} is already up to date")
                return ""
        except BootstrapError as e:
            raise LinkError(f"failed to commit modified requirements file {path}: {e}", target=path) from e

        try:
            return self.scm.open_change_request(dir, dev_repo_url, git_kind, "", title, body)
        except LinkError:
            raise
        except BootstrapError as e:
            raise LinkError(f"failed to create Pull Request on {safe_url}: {e}", target=dev_repo_url) from e
