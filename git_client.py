"""
Thin git transport: runs the git binary for clone, add/commit, remote and push.
"""

import logging
import os
import re
import subprocess
from typing import List, Optional

from core.errors import GitCommandError

# user:password@ in https URLs
_CREDENTIALS_RE = re.compile(r'(https?://)[^/@\s]+@')


def mask_credentials(text: str) -> str:
    """Hide any user:token pair embedded in a URL."""
    if not text:
        return text
    return _CREDENTIALS_RE.sub(r'\1****@', text)


class GitClient:
    """Runs git commands in a working tree."""

    def __init__(self, git_binary: str = "git", user_name: Optional[str] = None, user_email: Optional[str] = None):
        self.git_binary = git_binary
        self.user_name = user_name
        self.user_email = user_email
        self.logger = logging.getLogger('gitopsboot.git')

    def run(self, *args: str, cwd: Optional[str] = None, check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.git_binary, *args]
        command_text = mask_credentials(" ".join(cmd))
        self.logger.debug(f"{command_text} (cwd={cwd})")
        try:
            result = subprocess.run(cmd, cwd=cwd, capture_output=True, text=True)
        except OSError as e:
            raise GitCommandError(f"failed to run {command_text}: {e}", command=command_text, target=cwd) from e
        if check and result.returncode != 0:
            stderr = mask_credentials(result.stderr.strip())
            raise GitCommandError(
                f"{command_text} failed (rc={result.returncode}): {stderr}",
                command=command_text,
                stderr=stderr,
                target=cwd,
            )
        return result

    def clone(self, url: str, dir: str) -> str:
        """Clone ``url`` into the (empty or missing) directory ``dir``."""
        self.run("clone", url, dir)
        self.logger.debug(f"Cloned {mask_credentials(url)} to {dir}")
        return dir

    def init(self, dir: str) -> None:
        self.run("init", cwd=dir)

    def is_repository_root(self, dir: str) -> bool:
        """True only when ``dir`` is the top level of its own work tree, not a subdirectory of another one."""
        result = self.run("rev-parse", "--show-toplevel", cwd=dir, check=False)
        if result.returncode != 0:
            return False
        return os.path.realpath(result.stdout.strip()) == os.path.realpath(dir)

    def has_changes(self, dir: str) -> bool:
        result = self.run("status", "--porcelain", cwd=dir)
        return result.stdout.strip() != ""

    def add_and_commit(self, dir: str, message: str) -> bool:
        """Stage everything in ``dir`` and commit it.

        Returns False without committing when there is nothing to commit.
        """
        self.run("add", "-A", cwd=dir)
        if not self.has_changes(dir):
            self.logger.debug(f"Nothing to commit in {dir}")
            return False
        self.run(*self._identity_args(), "commit", "-m", message, cwd=dir)
        return True

    def create_branch(self, dir: str, name: str) -> None:
        self.run("checkout", "-b", name, cwd=dir)

    def current_branch(self, dir: str) -> str:
        result = self.run("rev-parse", "--abbrev-ref", "HEAD", cwd=dir)
        return result.stdout.strip()

    def set_remote(self, dir: str, name: str, url: str) -> None:
        result = self.run("remote", "get-url", name, cwd=dir, check=False)
        if result.returncode == 0:
            self.run("remote", "set-url", name, url, cwd=dir)
        else:
            self.run("remote", "add", name, url, cwd=dir)

    def get_remote_url(self, dir: str, name: str = "origin") -> str:
        result = self.run("remote", "get-url", name, cwd=dir, check=False)
        if result.returncode != 0:
            return ""
        return result.stdout.strip()

    def push(self, dir: str, remote: str = "origin", ref: str = "HEAD", set_upstream: bool = False) -> None:
        args = ["push"]
        if set_upstream:
            args.append("--set-upstream")
        args.extend([remote, ref])
        self.run(*args, cwd=dir)

    def _identity_args(self) -> List[str]:
        args: List[str] = []
        if self.user_name:
            args.extend(["-c", f"user.name={self.user_name}"])
        if self.user_email:
            args.extend(["-c", f"user.email={self.user_email}"])
        return args
