"""
Pre-install verification of the local tool chain and the workspace requirements.
"""

import logging
import shutil
from collections import Counter
from typing import Callable, List, Optional, Sequence

from core.errors import ConfigError, VerificationError
from requirements_store import RequirementsStore
from scm_client import KNOWN_GIT_KINDS

REQUIRED_PACKAGES = ("git", "kubectl", "helm", "helmfile")


class PackageVerifier:
    """Checks that the tools and the requirements needed to boot are in place."""

    def __init__(
        self,
        store: Optional[RequirementsStore] = None,
        packages: Sequence[str] = REQUIRED_PACKAGES,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.store = store or RequirementsStore()
        self.packages = tuple(packages)
        self.which = which
        self.logger = logging.getLogger('gitopsboot.verifier')

    def verify(self, disable_package_checks: bool, dir: str) -> None:
        """Raise VerificationError describing every problem found."""
        problems: List[str] = []
        if disable_package_checks:
            self.logger.debug("Package verification disabled")
        else:
            missing = self.missing_packages()
            if missing:
                problems.append(f"missing required packages on PATH: {', '.join(missing)}")

        problems.extend(self.requirements_problems(dir))
        if problems:
            raise VerificationError(f"verification failed for {dir}: {'; '.join(problems)}", target=dir)
        self.logger.info(f"Verified requirements in {dir}")

    def missing_packages(self) -> List[str]:
        missing = [name for name in self.packages if not self.which(name)]
        for name in self.packages:
            if name not in missing:
                self.logger.debug(f"Found package {name}")
        return missing

    def requirements_problems(self, dir: str) -> List[str]:
        try:
            requirements, path = self.store.load(dir, must_exist=True)
        except ConfigError as e:
            return [str(e)]

        problems: List[str] = []
        if not requirements.environments:
            problems.append(f"no environments defined in {path}")
        duplicates = [key for key, count in Counter(e.key for e in requirements.environments).items() if count > 1]
        if duplicates:
            problems.append(f"duplicate environment keys in {path}: {', '.join(sorted(duplicates))}")
        if any(not e.key for e in requirements.environments):
            problems.append(f"environment without a key in {path}")
        cluster = requirements.data.get('cluster') or {}
        git_kind = cluster.get('gitKind') if isinstance(cluster, dict) else None
        if git_kind and git_kind not in KNOWN_GIT_KINDS:
            problems.append(f"unknown cluster.gitKind '{git_kind}' in {path}")
        return problems
