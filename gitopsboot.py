#!/usr/bin/env python3
"""
gitopsboot - Bootstrap a GitOps environment repository.

Creates (or reuses) a git repository holding the cluster requirements, applies
the override flags, publishes it as a new hosted repository, optionally links it
into the development environment repository via a Pull Request and optionally
installs the git operator that applies it to the cluster.
"""

import argparse
import getpass
import logging
import sys
from contextlib import contextmanager
from typing import Callable, Optional, Sequence, Tuple, Type

from dotenv import load_dotenv

from core.errors import (
    BootstrapError,
    ConfigError,
    LinkError,
    OperatorInstallError,
    PublicationError,
    VerificationError,
    WorkspaceError,
)
from core.models import (
    BootstrapContext,
    BootstrapOptions,
    BootstrapOutcome,
    OutcomeKind,
    StepStatus,
)
from git_client import GitClient, mask_credentials
from linker import CrossEnvironmentLinker
from operator_installer import GitOperatorInstaller, OperatorSettings
from reconciler import RequirementFlags, override_requirements
from reporting import format_outcome
from requirements_store import RequirementsStore
from scm_client import ScmClient, ScmSettings, mask_token, saas_git_kind
from verifier import PackageVerifier
from workspace import DEFAULT_ENVIRONMENT, WorkspaceAcquirer

INITIAL_COMMIT_MESSAGE = "fix: initial code"
OPERATOR_QUESTION = "do you want to install the git operator into the cluster?"
OPERATOR_HELP = "the git operator is used to install/upgrade the components in the cluster via GitOps"

# confirm(question, default, help) -> answer
ConfirmFunc = Callable[[str, bool, str], bool]
StepReturn = Tuple[StepStatus, str]

STEP_GIT_KIND = "resolve dev git kind"
STEP_WORKSPACE = "acquire workspace"
STEP_REQUIREMENTS = "reconcile requirements"
STEP_VERIFY = "verify"
STEP_COMMIT = "commit"
STEP_PUBLISH = "publish repository"
STEP_LINK = "link dev repository"
STEP_CONFIRM = "confirm operator install"
STEP_OPERATOR = "install operator"


@contextmanager
def wrap_errors(error_cls: Type[BootstrapError], message: str, target: Optional[str] = None):
    """Prefix any failure with ``message`` and convert it to ``error_cls``.

    Configuration errors keep their kind so callers can tell bad input apart
    from failed side effects.
    """
    try:
        yield
    except BootstrapError as e:
        cls = type(e) if isinstance(e, (ConfigError, error_cls)) else error_cls
        raise cls(f"{message}: {e}", target=e.target or target) from e
    except Exception as e:
        raise error_cls(f"{message}: {e}", target=target) from e


class BootstrapOrchestrator:
    """Runs the bootstrap steps in order and reports a single outcome."""

    def __init__(
        self,
        git: GitClient,
        scm: ScmClient,
        store: RequirementsStore,
        verifier: PackageVerifier,
        operator_installer: GitOperatorInstaller,
        confirm: Optional[ConfirmFunc] = None,
        acquirer: Optional[WorkspaceAcquirer] = None,
        linker: Optional[CrossEnvironmentLinker] = None,
    ):
        self.git = git
        self.scm = scm
        self.store = store
        self.verifier = verifier
        self.operator_installer = operator_installer
        self.confirm = confirm
        self.acquirer = acquirer or WorkspaceAcquirer(git)
        self.linker = linker or CrossEnvironmentLinker(git, scm, store)
        self.logger = logging.getLogger('gitopsboot')

    def run(self, options: BootstrapOptions) -> BootstrapOutcome:
        context = BootstrapContext(environment=options.environment or DEFAULT_ENVIRONMENT)
        steps = (
            (STEP_GIT_KIND, self._resolve_dev_git_kind),
            (STEP_WORKSPACE, self._acquire_workspace),
            (STEP_REQUIREMENTS, self._reconcile_requirements),
            (STEP_VERIFY, self._verify),
            (STEP_COMMIT, self._commit),
            (STEP_PUBLISH, self._publish),
            (STEP_LINK, self._link_dev_repository),
            (STEP_CONFIRM, self._confirm_operator),
            (STEP_OPERATOR, self._install_operator),
        )

        for name, step in steps:
            try:
                status, detail = step(options, context)
            except BootstrapError as e:
                self.logger.error(f"{name} failed: {e}")
                context.record(name, StepStatus.FAILED, str(e))
                return BootstrapOutcome(OutcomeKind.FAILED, context, reason=str(e), error=e)

            context.record(name, status, detail)
            if status == StepStatus.DECLINED:
                self.logger.info("Skipping the git operator install")
                return BootstrapOutcome(OutcomeKind.DECLINED, context)

        if options.no_operator:
            return BootstrapOutcome(OutcomeKind.COMPLETED_NO_OPERATOR, context)
        return BootstrapOutcome(OutcomeKind.COMPLETED, context)

    # Start -> GitURLResolved
    def _resolve_dev_git_kind(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        if not options.no_operator and not options.batch_mode and self.confirm is None:
            raise ConfigError("cannot ask for confirmation of the git operator install: use --batch-mode or --no-operator")
        if not options.dev_git_url:
            return StepStatus.SKIPPED, "no dev git URL"

        dev_url = mask_credentials(options.dev_git_url)
        if context.environment == DEFAULT_ENVIRONMENT:
            self.logger.warning(
                f"you are creating a {context.environment} environment but are also trying to create a "
                f"Pull Request on a development environment git repository {dev_url} - did you mean to do that?"
            )
        kind = options.dev_git_kind or saas_git_kind(options.dev_git_url)
        if not kind:
            raise ConfigError("missing git kind option: --dev-git-kind", target=options.dev_git_url)
        context.dev_git_kind = kind
        return StepStatus.COMPLETED, kind

    # GitURLResolved -> WorkspaceAcquired
    def _acquire_workspace(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        workspace = self.acquirer.acquire(options.dir, options.initial_git_url, context.environment)
        context.workspace = workspace
        context.git_url = workspace.git_url or ""
        return StepStatus.COMPLETED, workspace.path

    # WorkspaceAcquired -> RequirementsReconciled
    def _reconcile_requirements(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        dir = context.workspace.path
        with wrap_errors(ConfigError, f"failed to override requirements in dir {dir}", dir):
            requirements, path = override_requirements(
                self.store,
                dir,
                options.flags or RequirementFlags(),
                context.environment,
                options.requirements_file,
            )
        context.requirements = requirements
        context.requirements_path = path
        return StepStatus.COMPLETED, path

    # RequirementsReconciled -> Verified
    def _verify(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        dir = context.workspace.path
        with wrap_errors(VerificationError, f"failed to verify requirements in dir {dir}", dir):
            self.verifier.verify(options.disable_verify_packages, dir)
        self.logger.info(f"created git source at {dir}")
        return StepStatus.COMPLETED, dir

    # Verified -> Committed
    def _commit(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        dir = context.workspace.path
        with wrap_errors(WorkspaceError, f"failed to add files to git in dir {dir}", dir):
            context.committed = self.git.add_and_commit(dir, INITIAL_COMMIT_MESSAGE)
        if not context.committed:
            return StepStatus.COMPLETED, "nothing to commit"
        return StepStatus.COMPLETED, INITIAL_COMMIT_MESSAGE

    # Committed -> RemotePublished
    def _publish(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        dir = context.workspace.path
        with wrap_errors(PublicationError, f"failed to create the environment git repository from dir {dir}", dir):
            identity = self.scm.create_remote_repo(dir, options.make_public, environment_key=context.environment)
        context.created_repository = identity
        return StepStatus.COMPLETED, identity.link or identity.full_name

    # RemotePublished -> LinkedToDevRepo
    def _link_dev_repository(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        if not options.dev_git_url:
            return StepStatus.SKIPPED, "no dev git URL"
        dev_url = mask_credentials(options.dev_git_url)
        with wrap_errors(LinkError, f"failed to create Pull Request on dev repository {dev_url}", options.dev_git_url):
            link = self.linker.link(options.dev_git_url, context.dev_git_kind, context.environment, context.created_repository)
        context.change_request_link = link
        return StepStatus.COMPLETED, link or "already up to date"

    # -> OperatorConfirmed
    def _confirm_operator(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        if options.no_operator:
            return StepStatus.SKIPPED, "--no-operator"
        if options.batch_mode:
            return StepStatus.COMPLETED, "batch mode"
        with wrap_errors(OperatorInstallError, "failed to get confirmation of git operator install"):
            confirmed = self.confirm(OPERATOR_QUESTION, True, OPERATOR_HELP)
        if not confirmed:
            return StepStatus.DECLINED, "declined by user"
        return StepStatus.COMPLETED, "confirmed"

    # -> OperatorInstalled
    def _install_operator(self, options: BootstrapOptions, context: BootstrapContext) -> StepReturn:
        if options.no_operator:
            return StepStatus.SKIPPED, "--no-operator"
        dir = context.workspace.path
        git_url = context.created_repository.link if context.created_repository else ""
        with wrap_errors(OperatorInstallError, "failed to install the git operator", dir):
            self.operator_installer.install(dir, options.batch_mode, git_url, self.scm.git_username, self.scm.git_token)
        return StepStatus.COMPLETED, self.operator_installer.settings.namespace


def setup_logger(verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger('gitopsboot')
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    # Prevent propagation to root logger to avoid duplicate messages
    logger.propagate = False
    if verbose:
        formatter = logging.Formatter('[%(asctime)s - %(pathname)s:%(lineno)d - %(levelname)s] %(message)s')
    else:
        formatter = logging.Formatter('%(message)s')
    if not logger.handlers:
        logger.addHandler(logging.StreamHandler())
    for handler in logger.handlers:
        handler.setFormatter(formatter)
    return logger


def prompt_confirm(question: str, default: bool, help: str) -> bool:
    suffix = "[Y/n]" if default else "[y/N]"
    answer = input(f"? {question} {suffix} ").strip().lower()
    if answer == "?":
        print(help)
        return prompt_confirm(question, default, help)
    if not answer:
        return default
    return answer in ("y", "yes")


def prompt_input(question: str, secret: bool) -> str:
    if secret:
        return getpass.getpass(f"? {question}: ")
    return input(f"? {question}: ")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='gitopsboot - Creates a new git repository for a new GitOps environment')

    parser.add_argument('--env', '-e', default='',
                        help='The name of the environment to create (default: dev)')
    parser.add_argument('--initial-git-url', default='',
                        help='The git URL to clone to fetch the initial set of files if --dir is not given')
    parser.add_argument('--dir', default='',
                        help='The directory to create the git repository in. If not specified a temporary directory is used')
    parser.add_argument('--requirements', '-r', default='',
                        help='A jx-requirements.yml file to use in the created git repository')
    parser.add_argument('--dev-git-url', default='',
                        help='The git URL of the development environment. If specified a Pull Request is created on it linking the new environment')
    parser.add_argument('--dev-git-kind', default='',
                        help='The kind of git server for the development environment')
    parser.add_argument('--add', action='append', default=[], metavar='APP',
                        help='An app/chart to add to the requirements (repeatable)')
    parser.add_argument('--remove', action='append', default=[], metavar='APP',
                        help='An app/chart to remove from the requirements (repeatable)')
    parser.add_argument('--no-operator', action='store_true',
                        help="Don't install the git operator after creating the git repository")
    parser.add_argument('--batch-mode', '-b', action='store_true',
                        help='Run without asking any questions')
    parser.add_argument('--disable-verify-packages', action='store_true',
                        help='Skip checking that git, kubectl, helm and helmfile are installed')
    parser.add_argument('--operator-namespace', default=None,
                        help='The namespace to install the git operator into')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')

    req = parser.add_argument_group('requirements overrides')
    req.add_argument('--cluster', dest='cluster_name', help='The name of the cluster')
    req.add_argument('--provider', help='The kubernetes provider (gke, eks, aks, kind, ...)')
    req.add_argument('--project', help='The cloud project')
    req.add_argument('--zone', help='The cloud zone')
    req.add_argument('--region', help='The cloud region')
    req.add_argument('--env-git-owner', dest='environment_git_owner', help='The git owner (user or organisation) of the environment repositories')
    req.add_argument('--env-git-public', dest='environment_git_public', action=argparse.BooleanOptionalAction, default=None,
                     help='Create the environment repositories as public repositories')
    req.add_argument('--git-public', action=argparse.BooleanOptionalAction, default=None,
                     help='Create new application repositories as public repositories')
    req.add_argument('--git-server', help='The git server URL')
    req.add_argument('--git-kind', help='The kind of git server')
    req.add_argument('--git-name', help='The name of the git server')
    req.add_argument('--domain', help='The ingress domain')
    req.add_argument('--ingress-kind', help='The ingress kind (ingress or istio)')
    req.add_argument('--tls-email', help='The email address for TLS certificates (enables TLS)')
    req.add_argument('--tls', dest='tls_enabled', action=argparse.BooleanOptionalAction, default=None,
                     help='Enable TLS on ingress')
    req.add_argument('--secret-storage', help='Where secrets are stored (local, vault, gsm, asm, azurekeyvault)')
    req.add_argument('--webhook', help='The webhook handler (lighthouse, prow, jenkins)')
    req.add_argument('--repository', help='The artifact repository (nexus, artifactory, bucketrepo, none)')
    req.add_argument('--bucket-logs', dest='logs_url', help='The bucket URL for build logs')
    req.add_argument('--bucket-reports', dest='reports_url', help='The bucket URL for reports')
    req.add_argument('--bucket-repo', dest='repository_url', help='The bucket URL for the artifact repository')
    req.add_argument('--bucket-backup', dest='backup_url', help='The bucket URL for backups')
    req.add_argument('--autoupgrade', action=argparse.BooleanOptionalAction, default=None,
                     help='Enable automatic upgrades')
    req.add_argument('--autoupgrade-schedule', help='The cron schedule for automatic upgrades')
    req.add_argument('--kaniko', action=argparse.BooleanOptionalAction, default=None, help='Use kaniko for image builds')
    req.add_argument('--terraform', action=argparse.BooleanOptionalAction, default=None, help='The cluster is managed by terraform')
    req.add_argument('--gitops', action=argparse.BooleanOptionalAction, default=None, help='Manage the cluster via GitOps')
    req.add_argument('--env-owner', dest='environment_owner', help='The git owner of the new environment repository')
    req.add_argument('--env-repository', dest='environment_repository', help='The name of the new environment repository')
    req.add_argument('--remote', dest='remote_cluster', action=argparse.BooleanOptionalAction, default=None,
                     help='The environment runs in a remote cluster')
    return parser


_FLAG_ARGS = (
    'cluster_name', 'provider', 'project', 'zone', 'region', 'environment_git_owner',
    'environment_git_public', 'git_public', 'git_server', 'git_kind', 'git_name', 'domain',
    'ingress_kind', 'tls_email', 'tls_enabled', 'secret_storage', 'webhook', 'repository',
    'logs_url', 'reports_url', 'repository_url', 'backup_url', 'autoupgrade',
    'autoupgrade_schedule', 'kaniko', 'terraform', 'gitops', 'environment_owner',
    'environment_repository', 'remote_cluster',
)


def options_from_args(args: argparse.Namespace) -> BootstrapOptions:
    flags = RequirementFlags(**{name: getattr(args, name) for name in _FLAG_ARGS})
    flags.add_apps = list(args.add or [])
    flags.remove_apps = list(args.remove or [])
    return BootstrapOptions(
        environment=args.env or DEFAULT_ENVIRONMENT,
        initial_git_url=args.initial_git_url,
        dir=args.dir,
        requirements_file=args.requirements,
        dev_git_url=args.dev_git_url,
        dev_git_kind=args.dev_git_kind,
        no_operator=args.no_operator,
        batch_mode=args.batch_mode,
        disable_verify_packages=args.disable_verify_packages,
        flags=flags,
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the gitopsboot script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load environment variables from .env file (if it exists)
    load_dotenv(override=True)

    settings = ScmSettings.from_env()
    if not settings.git_token:
        print("Error: GIT_TOKEN (or GITHUB_TOKEN) environment variable is required")
        print("Set it in .env file or as a system environment variable")
        return 1
    print(f"Using GIT_TOKEN: {mask_token(settings.git_token)}")

    setup_logger(args.verbose)

    operator_settings = OperatorSettings.from_env()
    if args.operator_namespace:
        operator_settings.namespace = args.operator_namespace

    store = RequirementsStore()
    git = GitClient(user_name=settings.git_username or None, user_email=settings.git_user_email or None)
    scm = ScmClient(settings, git, store)
    orchestrator = BootstrapOrchestrator(
        git=git,
        scm=scm,
        store=store,
        verifier=PackageVerifier(store),
        operator_installer=GitOperatorInstaller(operator_settings, git, prompt=None if args.batch_mode else prompt_input),
        confirm=None if args.batch_mode else prompt_confirm,
    )

    outcome = orchestrator.run(options_from_args(args))
    print()
    print(format_outcome(outcome))
    if outcome.kind == OutcomeKind.FAILED:
        print(f"Fatal error: {outcome.reason}")
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
