"""
Source control platform client: creates hosted environment repositories and
opens pull requests (GitHub via PyGithub, GitLab via its REST API).
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import quote, urlparse

import requests
from github import Github, GithubException

from core.errors import BootstrapError, ConfigError, LinkError, PublicationError
from core.models import CreatedRepositoryIdentity
from git_client import GitClient, mask_credentials
from requirements_store import RequirementsStore

KIND_GITHUB = "github"
KIND_GITLAB = "gitlab"
KIND_BITBUCKET_CLOUD = "bitbucketcloud"
KIND_BITBUCKET_SERVER = "bitbucketserver"
KIND_GITEA = "gitea"
KIND_FAKE = "fake"

KNOWN_GIT_KINDS = (KIND_GITHUB, KIND_GITLAB, KIND_BITBUCKET_CLOUD, KIND_BITBUCKET_SERVER, KIND_GITEA, KIND_FAKE)
# Kinds this client can create repositories and pull requests on
SUPPORTED_GIT_KINDS = (KIND_GITHUB, KIND_GITLAB)

DEFAULT_GIT_SERVER = "https://github.com"

_SCP_URL_RE = re.compile(r'^(?:[\w.-]+@)?(?P<host>[\w.-]+):(?P<path>[^/].*)$')


def _split_url(git_url: str) -> Tuple[str, str]:
    """Return (host, path) of an https or scp-style git URL."""
    git_url = (git_url or "").strip()
    if not git_url:
        return "", ""
    if "://" in git_url:
        parsed = urlparse(git_url)
        return (parsed.hostname or "").lower(), parsed.path.strip("/")
    match = _SCP_URL_RE.match(git_url)
    if match:
        return match.group('host').lower(), match.group('path').strip("/")
    return "", ""


def saas_git_kind(git_url: str) -> str:
    """Infer the git kind from a well known hosting service URL.

    Returns an empty string when the host is not recognised.
    """
    host, _ = _split_url(git_url)
    if not host:
        return ""
    if host == "github.com" or host.startswith("github"):
        return KIND_GITHUB
    if host == "gitlab.com":
        return KIND_GITLAB
    if host == "bitbucket.org":
        return KIND_BITBUCKET_CLOUD
    if host == "fake.git":
        return KIND_FAKE
    return ""


def parse_repo_url(git_url: str) -> Tuple[str, str, str]:
    """Split a repository URL into (server URL, owner, repository name)."""
    host, path = _split_url(git_url)
    if path.endswith(".git"):
        path = path[:-4]
    if not host or "/" not in path:
        raise ConfigError(f"cannot parse git repository URL {mask_credentials(git_url)}", target=git_url)
    owner, name = path.rsplit("/", 1)
    if "://" in git_url:
        parsed = urlparse(git_url)
        server = f"{parsed.scheme}://{parsed.hostname}"
        if parsed.port:
            server += f":{parsed.port}"
    else:
        server = f"https://{host}"
    return server, owner, name


def url_with_credentials(git_url: str, username: str, token: str) -> str:
    """Embed username/token into an https git URL for pushing."""
    parsed = urlparse(git_url)
    if parsed.scheme not in ("http", "https") or not token:
        return git_url
    netloc = parsed.hostname or ""
    if parsed.port:
        netloc += f":{parsed.port}"
    user = quote(username or "oauth2", safe="")
    return parsed._replace(netloc=f"{user}:{quote(token, safe='')}@{netloc}").geturl()


def to_valid_repo_name(name: str) -> str:
    """Lower case, replace anything but letters, digits, '-', '_' and '.' with '-'."""
    cleaned = re.sub(r'[^a-z0-9._-]+', '-', name.lower())
    cleaned = re.sub(r'-{2,}', '-', cleaned)
    return cleaned.strip('-.')


def mask_token(token: Optional[str]) -> str:
    if not token:
        return "(none)"
    if len(token) <= 10:
        return "*" * len(token)
    return f"{token[:6]}...{token[-4:]}"


@dataclass
class ScmSettings:
    """Git server settings and credentials."""
    git_server: str = DEFAULT_GIT_SERVER
    git_kind: str = ""
    git_username: str = ""
    git_token: str = ""
    git_user_email: str = ""

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'ScmSettings':
        env = os.environ if environ is None else environ
        git_server = (env.get('GIT_SERVER') or DEFAULT_GIT_SERVER).rstrip('/')
        return cls(
            git_server=git_server,
            git_kind=env.get('GIT_KIND') or saas_git_kind(git_server),
            git_username=env.get('GIT_USERNAME') or "",
            git_token=env.get('GIT_TOKEN') or env.get('GITHUB_TOKEN') or "",
            git_user_email=env.get('GIT_USER_EMAIL') or "",
        )


def _github_api_url(server: str) -> str:
    host, _ = _split_url(server)
    if host == "github.com":
        return "https://api.github.com"
    return f"{server.rstrip('/')}/api/v3"


def _default_github_factory(base_url: str, token: str) -> Github:
    return Github(token, base_url=base_url)


class ScmClient:
    """Creates environment repositories and opens change requests."""

    def __init__(
        self,
        settings: ScmSettings,
        git: GitClient,
        store: Optional[RequirementsStore] = None,
        github_factory: Callable[[str, str], Github] = _default_github_factory,
        session: Optional[requests.Session] = None,
    ):
        self.settings = settings
        self.git = git
        self.store = store or RequirementsStore()
        self.github_factory = github_factory
        self.session = session or requests.Session()
        self.created_repository: Optional[CreatedRepositoryIdentity] = None
        self._resolved_username: Optional[str] = None
        self.logger = logging.getLogger('gitopsboot.scm')

    @property
    def git_username(self) -> str:
        return self.settings.git_username or self._resolved_username or ""

    @property
    def git_token(self) -> str:
        return self.settings.git_token

    # ------------------------------------------------------------------
    # Repository creation
    # ------------------------------------------------------------------

    def create_remote_repo(self, dir: str, make_public: bool, environment_key: str = "dev") -> CreatedRepositoryIdentity:
        """Create the hosted repository for the workspace in ``dir`` and push to it."""
        if not self.git_token:
            raise PublicationError("no git token configured: set GIT_TOKEN or GITHUB_TOKEN", target=dir)

        requirements, _ = self.store.load(dir, must_exist=False)
        cluster = requirements.cluster
        git_server = (cluster.get('gitServer') or self.settings.git_server or DEFAULT_GIT_SERVER).rstrip('/')
        git_kind = cluster.get('gitKind') or self.settings.git_kind or saas_git_kind(git_server)
        env = requirements.find_environment(environment_key)

        owner = (env.owner if env else None) or cluster.get('environmentGitOwner') or ""
        name = (env.repository if env else None) or self._default_repo_name(cluster.get('clusterName'), environment_key)

        try:
            if git_kind == KIND_GITHUB:
                identity = self._create_github_repo(git_server, owner, name, not make_public)
            elif git_kind == KIND_GITLAB:
                identity = self._create_gitlab_repo(git_server, owner, name, make_public)
            else:
                raise PublicationError(f"unsupported git kind '{git_kind}' for server {git_server}", target=git_server)
        except BootstrapError:
            raise
        except (GithubException, requests.RequestException) as e:
            raise PublicationError(f"failed to create repository {owner or '<user>'}/{name} on {git_server}: {e}", target=git_server) from e

        self.logger.info(f"Created environment repository {identity.link or identity.full_name}")

        push_url = url_with_credentials(identity.clone_url, self.git_username, self.git_token)
        try:
            self.git.set_remote(dir, "origin", identity.clone_url)
            self.git.push(dir, push_url, "HEAD")
        except BootstrapError as e:
            raise PublicationError(f"failed to push {dir} to {identity.clone_url}: {e}", target=identity.clone_url) from e
        self.logger.info(f"Pushed code to the repository {identity.clone_url}")

        self.created_repository = identity
        return identity

    def _default_repo_name(self, cluster_name: Optional[str], environment_key: str) -> str:
        parts = ["environment"]
        if cluster_name:
            parts.append(cluster_name)
        parts.append(environment_key)
        return to_valid_repo_name("-".join(parts))

    def _create_github_repo(self, git_server: str, owner: str, name: str, private: bool) -> CreatedRepositoryIdentity:
        gh = self.github_factory(_github_api_url(git_server), self.git_token)
        user = gh.get_user()
        login = user.login
        self._resolved_username = login
        if not owner:
            owner = login

        try:
            if owner == login:
                repo = user.create_repo(name, private=private)
            else:
                repo = gh.get_organization(owner).create_repo(name, private=private)
        except GithubException as e:
            # 422: repository already exists, reuse it
            if e.status != 422:
                raise
            self.logger.info(f"Repository {owner}/{name} already exists, reusing it")
            repo = gh.get_repo(f"{owner}/{name}")

        return CreatedRepositoryIdentity(
            owner=repo.owner.login,
            repository=repo.name,
            link=repo.html_url,
            clone_url=repo.clone_url,
            git_server=git_server,
            git_kind=KIND_GITHUB,
        )

    def _gitlab_request(self, method: str, git_server: str, path: str, **kwargs) -> requests.Response:
        url = f"{git_server.rstrip('/')}/api/v4{path}"
        headers = {"PRIVATE-TOKEN": self.git_token, "Accept": "application/json"}
        return self.session.request(method, url, headers=headers, timeout=30, **kwargs)

    def _create_gitlab_repo(self, git_server: str, owner: str, name: str, public: bool) -> CreatedRepositoryIdentity:
        user_resp = self._gitlab_request("GET", git_server, "/user")
        user_resp.raise_for_status()
        login = user_resp.json().get('username', '')
        self._resolved_username = login
        if not owner:
            owner = login

        data: Dict[str, object] = {"name": name, "path": name, "visibility": "public" if public else "private"}
        if owner != login:
            ns_resp = self._gitlab_request("GET", git_server, f"/namespaces/{quote(owner, safe='')}")
            ns_resp.raise_for_status()
            data["namespace_id"] = ns_resp.json()["id"]

        resp = self._gitlab_request("POST", git_server, "/projects", json=data)
        if resp.status_code == 400 and "taken" in resp.text:
            self.logger.info(f"Project {owner}/{name} already exists, reusing it")
            resp = self._gitlab_request("GET", git_server, f"/projects/{quote(f'{owner}/{name}', safe='')}")
        resp.raise_for_status()
        project = resp.json()

        namespace = project.get('namespace') or {}
        return CreatedRepositoryIdentity(
            owner=namespace.get('full_path') or owner,
            repository=project.get('path') or name,
            link=project.get('web_url', ''),
            clone_url=project.get('http_url_to_repo', ''),
            git_server=git_server,
            git_kind=KIND_GITLAB,
        )

    # ------------------------------------------------------------------
    # Change requests
    # ------------------------------------------------------------------

    def open_change_request(self, dir: str, remote_url: str, git_kind: str, base_branch: str, title: str, body: str) -> str:
        """Push the current branch of ``dir`` and open a pull request for it.

        Returns the link to the opened request.
        """
        if git_kind not in SUPPORTED_GIT_KINDS:
            raise LinkError(f"cannot open a pull request on git kind '{git_kind}' for {remote_url}", target=remote_url)
        if not self.git_token:
            raise LinkError("no git token configured: set GIT_TOKEN or GITHUB_TOKEN", target=remote_url)

        server, owner, name = parse_repo_url(remote_url)
        branch = self.git.current_branch(dir)
        try:
            if git_kind == KIND_GITHUB:
                gh = self.github_factory(_github_api_url(server), self.git_token)
                if not self.git_username:
                    self._resolved_username = gh.get_user().login
                self._push_branch(dir, remote_url, branch)
                repo = gh.get_repo(f"{owner}/{name}")
                pr = repo.create_pull(title=title, body=body, head=branch, base=base_branch or repo.default_branch)
                link = pr.html_url
            else:
                project_path = f"/projects/{quote(f'{owner}/{name}', safe='')}"
                self._push_branch(dir, remote_url, branch)
                if not base_branch:
                    project_resp = self._gitlab_request("GET", server, project_path)
                    project_resp.raise_for_status()
                    base_branch = project_resp.json().get('default_branch') or "main"
                mr_resp = self._gitlab_request(
                    "POST",
                    server,
                    f"{project_path}/merge_requests",
                    json={"source_branch": branch, "target_branch": base_branch, "title": title, "description": body},
                )
                mr_resp.raise_for_status()
                link = mr_resp.json().get('web_url', '')
        except (GithubException, requests.RequestException) as e:
            raise LinkError(f"failed to open pull request on {remote_url}: {e}", target=remote_url) from e

        self.logger.info(f"Created Pull Request: {link}")
        return link

    def _push_branch(self, dir: str, remote_url: str, branch: str) -> None:
        push_url = url_with_credentials(remote_url, self.git_username, self.git_token)
        self.git.push(dir, push_url, f"{branch}:{branch}")
