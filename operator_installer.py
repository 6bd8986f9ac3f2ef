"""
Installs the git operator (a helm chart) that keeps the cluster in sync with the
environment git repository.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional

import yaml

from core.errors import OperatorInstallError
from git_client import GitClient, mask_credentials

DEFAULT_OPERATOR_NAMESPACE = "jx-git-operator"
DEFAULT_RELEASE_NAME = "jx-git-operator"
DEFAULT_CHART_REPO_NAME = "jx"
DEFAULT_CHART_REPO_URL = "https://storage.googleapis.com/jenkinsxio/charts"
DEFAULT_CHART = "jx/jx-git-operator"


@dataclass
class OperatorSettings:
    namespace: str = DEFAULT_OPERATOR_NAMESPACE
    release_name: str = DEFAULT_RELEASE_NAME
    chart: str = DEFAULT_CHART
    chart_repo_name: str = DEFAULT_CHART_REPO_NAME
    chart_repo_url: str = DEFAULT_CHART_REPO_URL
    chart_version: str = ""
    helm_binary: str = "helm"

    @classmethod
    def from_env(cls, environ=None) -> 'OperatorSettings':
        env = os.environ if environ is None else environ
        return cls(
            namespace=env.get('OPERATOR_NAMESPACE') or DEFAULT_OPERATOR_NAMESPACE,
            chart_version=env.get('OPERATOR_CHART_VERSION') or "",
            helm_binary=env.get('HELM_BINARY') or "helm",
        )


class GitOperatorInstaller:
    """Installs or upgrades the git operator release with helm."""

    def __init__(
        self,
        settings: Optional[OperatorSettings] = None,
        git: Optional[GitClient] = None,
        prompt: Optional[Callable[[str, bool], str]] = None,
    ):
        self.settings = settings or OperatorSettings()
        self.git = git or GitClient()
        # prompt(question, secret) -> answer; only used outside batch mode
        self.prompt = prompt
        self.logger = logging.getLogger('gitopsboot.operator')

    def install(self, dir: str, batch_mode: bool, git_url: str, git_username: str, git_token: str) -> None:
        if not git_url and dir:
            git_url = self.git.get_remote_url(dir, "origin")
        if not git_url:
            raise OperatorInstallError(f"no git URL for the operator to watch: could not find an origin remote in {dir}", target=dir)
        if not git_username:
            git_username = self._ask(batch_mode, "git username for the git operator", False)
        if not git_username:
            raise OperatorInstallError("no git username available for the git operator: set GIT_USERNAME", target=git_url)
        if not git_token:
            git_token = self._ask(batch_mode, "git token for the git operator", True)
        if not git_token:
            raise OperatorInstallError("no git token available for the git operator: set GIT_TOKEN", target=git_url)

        s = self.settings
        self._helm("repo", "add", s.chart_repo_name, s.chart_repo_url)
        self._helm("repo", "update")

        args = [
            "upgrade", "--install", s.release_name, s.chart,
            "--namespace", s.namespace,
            "--create-namespace",
            # values come from stdin so the token never shows up in the process list
            "-f", "-",
        ]
        if s.chart_version:
            args.extend(["--version", s.chart_version])
        values = yaml.safe_dump({"url": git_url, "username": git_username, "password": git_token}, default_flow_style=False)
        self._helm(*args, secret=git_token, input=values)
        self.logger.info(f"Installed the git operator into namespace {s.namespace}")

    def _ask(self, batch_mode: bool, question: str, secret: bool) -> str:
        if batch_mode or self.prompt is None:
            return ""
        return (self.prompt(question, secret) or "").strip()

    def _helm(self, *args: str, secret: str = "", input: Optional[str] = None) -> None:
        cmd: List[str] = [self.settings.helm_binary, *args]
        display = mask_credentials(" ".join(cmd))
        if secret:
            display = display.replace(secret, "****")
        self.logger.debug(display)
        try:
            result = subprocess.run(cmd, input=input, capture_output=True, text=True)
        except OSError as e:
            raise OperatorInstallError(f"failed to run {display}: {e}") from e
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if secret:
                stderr = stderr.replace(secret, "****")
            raise OperatorInstallError(f"{display} failed (rc={result.returncode}): {stderr}")
