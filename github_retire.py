#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "httpx>=0.27.0",
#     "gidgethub[httpx]>=5.0.0",
#     "rich>=13.7.0",
#     "typer>=0.12.3",
#     "tzdata>=2024.1"
# ]
# ///

"""CLI for inventorying, snapshotting, and archiving an organization's GitHub repositories."""

import asyncio
import base64
import io
import os
import re
import shutil
import stat
import subprocess
import tempfile
import uuid
import zipfile
from collections.abc import AsyncIterator, Coroutine, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from http import HTTPStatus
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import httpx
import typer
from gidgethub import HTTPException
from gidgethub.httpx import GitHubAPI
from rich.console import Console
from rich.table import Table

console = Console(highlight=False)
app = typer.Typer(add_completion=False, no_args_is_help=True, rich_markup_mode="rich")

GITHUB_HOST = "https://github.com"
DEFAULT_REMOTE = "origin"
USER_AGENT = "github-retire"
ARCHIVE_ISSUE_TITLE = "This repository is being archived"
RECENT_ACTIVITY_WEEKS = 4
_REPO_NAME_PATTERN = re.compile(r"[A-Za-z0-9._-]+")


class RetireError(RuntimeError):
    """Base class for failures reported to the CLI user."""


class ConfigurationError(RetireError):
    """Missing or invalid organization, token, time zone, or tooling."""


class SnapshotError(RetireError):
    """A snapshot run failed and produced no archive."""


class TransportError(SnapshotError):
    """Clone, fetch, or pull failed while talking to the remote."""


class BranchReconcileError(SnapshotError):
    """A local tracking branch could not be created."""


class MergeConflictError(SnapshotError):
    """Pulling the checked-out branch stopped on a conflict."""


class PackagingError(SnapshotError):
    """The archive could not be written to disk."""


class HostingApiError(RetireError):
    """The GitHub REST API rejected a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(RetireError):
    """No repository with the requested name exists in the organization."""


def _default_data_dir() -> Path:
    return Path(tempfile.gettempdir()) / "github-retire"


@dataclass(frozen=True)
class Settings:
    """Immutable configuration shared by every operation."""

    organization: str
    token: str
    time_zone: str = "UTC"
    remote_name: str = DEFAULT_REMOTE
    data_dir: Path = field(default_factory=_default_data_dir)
    author_name: str = "github-retire"
    author_email: str = "github-retire@users.noreply.github.com"

    def __post_init__(self) -> None:
        if not self.organization.strip():
            message = "GitHub organization name is required"
            raise ConfigurationError(message)
        if not self.token.strip():
            message = "GitHub access token is required"
            raise ConfigurationError(message)
        self.zone  # noqa: B018  # fail fast on unknown zones

    @property
    def zone(self) -> ZoneInfo:
        """Return the display time zone."""
        try:
            return ZoneInfo(self.time_zone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            message = f"Unknown time zone: {self.time_zone!r}"
            raise ConfigurationError(message) from exc


@dataclass(frozen=True)
class RepoInfo:
    """Subset of repository metadata shown in the inventory."""

    id: int
    name: str
    full_name: str
    description: str
    private: bool
    archived: bool
    stars: int
    forks: int
    open_issues: int
    created_at: str
    updated_at: str
    pushed_at: str | None
    html_url: str

    @classmethod
    def from_payload(cls, payload: dict) -> "RepoInfo":
        """Create a `RepoInfo` instance from raw GitHub API data."""
        owner = payload.get("owner", {}).get("login", "")
        return cls(
            id=payload.get("id", 0),
            name=payload.get("name", ""),
            full_name=payload.get("full_name", f"{owner}/{payload.get('name', '')}"),
            description=payload.get("description") or "",
            private=payload.get("private", False),
            archived=payload.get("archived", False),
            stars=payload.get("stargazers_count", 0),
            forks=payload.get("forks_count", 0),
            open_issues=payload.get("open_issues_count", 0),
            created_at=payload.get("created_at", ""),
            updated_at=payload.get("updated_at", ""),
            pushed_at=payload.get("pushed_at"),
            html_url=payload.get("html_url", ""),
        )


@dataclass(frozen=True)
class ExtendedRepoInfo:
    """Activity statistics for a single repository."""

    repo_id: int
    watchers: int
    views: int
    recent_commits: int


@dataclass(frozen=True)
class RepoQuota:
    """Private repository allowance of the organization's plan."""

    private_repo_limit: int
    private_repo_count: int

    @property
    def remaining(self) -> int:
        return self.private_repo_limit - self.private_repo_count


@dataclass(frozen=True)
class RateLimitInfo:
    remaining: int
    reset: datetime


class IssueStatus(StrEnum):
    CREATED = "created"
    DISABLED = "disabled"
    FAILED = "failed"


@dataclass(frozen=True)
class IssueResult:
    """Outcome of posting the archive notice issue."""

    status: IssueStatus
    reason: str | None = None
    status_code: int | None = None
    url: str | None = None


@asynccontextmanager
async def _github(token: str) -> AsyncIterator[GitHubAPI]:
    """Yield an authenticated GitHub client bound to a fresh HTTP session."""
    timeout = httpx.Timeout(10.0, read=30.0)
    async with httpx.AsyncClient(
        timeout=timeout,
        follow_redirects=True,
        headers={"Accept": "application/vnd.github+json"},
    ) as client:
        yield GitHubAPI(client, USER_AGENT, oauth_token=token)


def _api_error(exc: HTTPException) -> HostingApiError:
    message = exc.args[0] if exc.args else ""
    return HostingApiError(f"GitHub API error: {message}", status_code=int(exc.status_code))


async def fetch_repositories(settings: Settings) -> list[RepoInfo]:
    """Return every repository owned by the configured organization."""
    async with _github(settings.token) as gh:
        repos: list[RepoInfo] = []
        try:
            async for payload in gh.getiter(
                "/orgs/{org}/repos{?type,per_page}",
                {"org": settings.organization, "type": "all", "per_page": 100},
            ):
                repos.append(RepoInfo.from_payload(payload))
        except HTTPException as exc:
            raise _api_error(exc) from exc
    return repos


def find_repository(repos: Sequence[RepoInfo], name: str) -> RepoInfo:
    """Return the repository called ``name`` (case-insensitive)."""
    wanted = name.lower()
    for repo in repos:
        if repo.name.lower() == wanted:
            return repo
    message = f"Repository {name!r} not found in the organization"
    raise NotFoundError(message)


def _recent_commit_total(activity: Any, weeks: int = RECENT_ACTIVITY_WEEKS) -> int:
    """Sum commit totals over the most recent ``weeks`` weeks."""
    # GitHub answers 202 with an empty body while statistics are being computed.
    if not isinstance(activity, list):
        return 0
    newest_first = sorted(activity, key=lambda week: week.get("week", 0), reverse=True)
    return sum(int(week.get("total", 0)) for week in newest_first[:weeks])


async def fetch_extended_info(settings: Settings, repo_id: int) -> ExtendedRepoInfo:
    """Collect watcher, weekly view, and recent commit counts for a repository."""
    url_vars = {"id": repo_id}
    async with _github(settings.token) as gh:
        try:
            watchers = [watcher async for watcher in gh.getiter("/repositories/{id}/subscribers", url_vars)]
            views = await gh.getitem("/repositories/{id}/traffic/views{?per}", {**url_vars, "per": "week"})
            activity = await gh.getitem("/repositories/{id}/stats/commit_activity", url_vars)
        except HTTPException as exc:
            raise _api_error(exc) from exc
    return ExtendedRepoInfo(
        repo_id=repo_id,
        watchers=len(watchers),
        views=int((views or {}).get("count", 0)),
        recent_commits=_recent_commit_total(activity),
    )


async def create_issue(settings: Settings, repo_id: int, title: str, body: str) -> dict:
    """Open an issue and return the created payload."""
    async with _github(settings.token) as gh:
        return await gh.post(
            "/repositories/{id}/issues",
            {"id": repo_id},
            data={"title": title, "body": body},
        )


def _issues_disabled(exc: HTTPException) -> bool:
    # "Issues are disabled for this repo" is reported as 410 Gone.
    return exc.status_code == HTTPStatus.GONE


async def create_archive_issue(settings: Settings, repo_id: int, requested_by: str) -> IssueResult:
    """Post the archive notice, tolerating repositories with issues disabled."""
    body = f"Archive process initiated by {requested_by} via the github-retire tool."
    try:
        payload = await create_issue(settings, repo_id, ARCHIVE_ISSUE_TITLE, body)
    except HTTPException as exc:
        if _issues_disabled(exc):
            console.log(f"Issues are disabled for repository {repo_id}; could not create archive issue")
            return IssueResult(IssueStatus.DISABLED, reason=str(exc), status_code=int(exc.status_code))
        error = _api_error(exc)
        return IssueResult(IssueStatus.FAILED, reason=str(error), status_code=error.status_code)
    return IssueResult(IssueStatus.CREATED, url=(payload or {}).get("html_url"))


async def set_archived(settings: Settings, repo_id: int, repo_name: str) -> None:
    """Flip the repository's archived flag."""
    async with _github(settings.token) as gh:
        try:
            await gh.patch(
                "/repositories/{id}",
                {"id": repo_id},
                data={"name": repo_name, "archived": True},
            )
        except HTTPException as exc:
            raise _api_error(exc) from exc


async def archive_repository(settings: Settings, repo_id: int, repo_name: str, requested_by: str) -> IssueResult:
    """Post the archive notice while still writable, then archive the repository."""
    notice = await create_archive_issue(settings, repo_id, requested_by)
    if notice.status is IssueStatus.FAILED:
        raise HostingApiError(notice.reason or "Unable to create archive issue", status_code=notice.status_code)
    await set_archived(settings, repo_id, repo_name)
    console.log(f"{settings.organization}/{repo_name}: archived")
    return notice


async def fetch_repo_quota(settings: Settings) -> RepoQuota:
    async with _github(settings.token) as gh:
        try:
            org = await gh.getitem("/orgs/{org}", {"org": settings.organization})
        except HTTPException as exc:
            raise _api_error(exc) from exc
    plan = org.get("plan") or {}
    return RepoQuota(
        private_repo_limit=plan.get("private_repos", 0),
        private_repo_count=org.get("owned_private_repos", 0),
    )


async def fetch_rate_limit(settings: Settings) -> RateLimitInfo:
    """Return the core API budget, with the reset time in the configured zone."""
    async with _github(settings.token) as gh:
        try:
            data = await gh.getitem("/rate_limit")
        except HTTPException as exc:
            raise _api_error(exc) from exc
    core = data["resources"]["core"]
    return RateLimitInfo(
        remaining=int(core["remaining"]),
        reset=datetime.fromtimestamp(int(core["reset"]), tz=settings.zone),
    )


async def remaining_api_calls(settings: Settings) -> int:
    return (await fetch_rate_limit(settings)).remaining


async def api_reset_time(settings: Settings) -> datetime:
    return (await fetch_rate_limit(settings)).reset


async def fetch_authenticated_login(settings: Settings) -> str:
    async with _github(settings.token) as gh:
        try:
            user = await gh.getitem("/user")
        except HTTPException as exc:
            raise _api_error(exc) from exc
    return user.get("login", "")


def _run_git(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    check: bool = True,
    env: Mapping[str, str] | None = None,
) -> subprocess.CompletedProcess:
    """Execute a git command and return the completed process."""
    return subprocess.run(  # noqa: S603  # Running git CLI with explicit arguments
        ["git", *args],
        cwd=str(cwd) if cwd else None,
        text=True,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        check=check,
        env={**os.environ, "GIT_TERMINAL_PROMPT": "0", **(env or {})},
    )


def _auth_env(token: str) -> dict[str, str]:
    """Credentials for every network git call: token as user, empty password.

    Passed through ``GIT_CONFIG_*`` so the header never lands in ``.git/config``
    (which ends up inside the archive) or on the command line.
    """
    credentials = base64.b64encode(f"{token}:".encode()).decode()
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": f"http.{GITHUB_HOST}/.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {credentials}",
    }


def _identity_env(settings: Settings) -> dict[str, str]:
    return {
        "GIT_AUTHOR_NAME": settings.author_name,
        "GIT_AUTHOR_EMAIL": settings.author_email,
        "GIT_COMMITTER_NAME": settings.author_name,
        "GIT_COMMITTER_EMAIL": settings.author_email,
    }


def _git_step(
    args: Sequence[str],
    *,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    error: type[SnapshotError] = TransportError,
) -> subprocess.CompletedProcess:
    """Run git, translating failures into ``error``."""
    try:
        return _run_git(args, cwd=cwd, env=env)
    except FileNotFoundError as exc:
        message = "git executable not found on PATH"
        raise ConfigurationError(message) from exc
    except subprocess.CalledProcessError as exc:
        output = exc.stdout.strip() if exc.stdout else str(exc)
        message = f"git {args[0]} failed: {output}"
        raise error(message) from exc


def _build_clone_url(organization: str, repo_name: str) -> str:
    """Return the HTTPS clone URL; GitHub URLs are case-insensitive."""
    return f"{GITHUB_HOST}/{organization}/{repo_name}.git".lower()


def _local_branch_name(friendly_name: str, remote_name: str = DEFAULT_REMOTE) -> str:
    """Map ``origin/feature/login`` to ``feature/login``."""
    return friendly_name.removeprefix(f"{remote_name}/")


def reconcile_branches(checkout: Path, remote_name: str = DEFAULT_REMOTE) -> list[str]:
    """Create a local tracking branch for every remote branch that lacks one.

    Returns the names of the branches created; an already reconciled checkout
    yields an empty list.
    """
    heads = _git_step(
        ["for-each-ref", "--format=%(refname)%09%(upstream)", "refs/heads"],
        cwd=checkout,
        error=BranchReconcileError,
    )
    local_names: set[str] = set()
    tracked: set[str] = set()
    for line in heads.stdout.splitlines():
        refname, _, upstream = line.partition("\t")
        local_names.add(refname.removeprefix("refs/heads/"))
        if upstream:
            tracked.add(upstream)

    remotes = _git_step(
        ["for-each-ref", "--format=%(refname)%09%(symref)", f"refs/remotes/{remote_name}"],
        cwd=checkout,
        error=BranchReconcileError,
    )
    created: list[str] = []
    for line in remotes.stdout.splitlines():
        refname, _, symref = line.partition("\t")
        if symref or refname in tracked:
            continue
        local_name = _local_branch_name(refname.removeprefix("refs/remotes/"), remote_name)
        if local_name == "HEAD" or local_name in local_names:
            continue
        _git_step(["branch", "--track", local_name, refname], cwd=checkout, error=BranchReconcileError)
        local_names.add(local_name)
        created.append(local_name)
    return created


def _has_upstream(checkout: Path) -> bool:
    result = _run_git(
        ["rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{upstream}"],
        cwd=checkout,
        check=False,
    )
    return result.returncode == 0


def _merge_in_progress(checkout: Path) -> bool:
    return (checkout / ".git" / "MERGE_HEAD").exists()


def synchronize(checkout: Path, settings: Settings) -> None:
    """Fetch every branch and tag, then merge-pull the checked-out branch.

    Conflicting hunks resolve to the remote side; the merge commit, if any, is
    made by the configured service identity.
    """
    remote = settings.remote_name
    auth = _auth_env(settings.token)
    _git_step(
        ["fetch", remote, f"+refs/heads/*:refs/remotes/{remote}/*", "--tags"],
        cwd=checkout,
        env=auth,
    )
    if not _has_upstream(checkout):
        console.log(f"{checkout.name}: checked-out branch has no upstream; skipped pull")
        return
    try:
        result = _run_git(
            ["pull", "--no-rebase", "--ff", "--no-edit", "--strategy-option=theirs"],
            cwd=checkout,
            env={**auth, **_identity_env(settings)},
        )
    except subprocess.CalledProcessError as exc:
        output = exc.stdout.strip() if exc.stdout else str(exc)
        if _merge_in_progress(checkout) or "CONFLICT" in output:
            message = f"Unable to merge remote changes: {output}"
            raise MergeConflictError(message) from exc
        message = f"git pull failed: {output}"
        raise TransportError(message) from exc
    if result.stdout.strip():
        console.log(result.stdout.strip())


def _write_symlink(archive: zipfile.ZipFile, path: Path, arcname: str) -> None:
    info = zipfile.ZipInfo(arcname)
    info.create_system = 3
    info.external_attr = (stat.S_IFLNK | 0o777) << 16
    archive.writestr(info, os.readlink(path))


def package_directory(source: Path, destination: Path) -> Path:
    """Zip ``source`` (working tree and ``.git``) into ``destination``.

    The archive is written next to the destination and renamed into place, so
    a failed write never leaves a readable artifact behind.
    """
    partial = destination.with_name(f"{destination.name}.partial")
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=1) as archive:
            for root, dirnames, filenames in os.walk(source):
                dirnames.sort()
                base = Path(root)
                for name in [*dirnames, *sorted(filenames)]:
                    path = base / name
                    arcname = path.relative_to(source).as_posix()
                    if path.is_symlink():
                        _write_symlink(archive, path, arcname)
                    else:
                        archive.write(path, arcname)
        os.replace(partial, destination)
    except OSError as exc:
        partial.unlink(missing_ok=True)
        message = f"Unable to write archive {destination}: {exc}"
        raise PackagingError(message) from exc
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    return destination


class ArchiveStream(io.BufferedReader):
    """Readable archive that deletes its backing file when closed."""

    def __init__(self, path: Path) -> None:
        super().__init__(io.FileIO(path, "rb"))
        self.path = path

    def close(self) -> None:
        if self.closed:
            return
        try:
            super().close()
        finally:
            self.path.unlink(missing_ok=True)


class SnapshotState(StrEnum):
    START = "start"
    CLONING = "cloning"
    RECONCILING = "reconciling"
    SYNCHRONIZING = "synchronizing"
    PACKAGING = "packaging"
    CLEANUP = "cleanup"
    STREAMING = "streaming"
    FAILED = "failed"


_NEXT_STATE = {
    SnapshotState.START: SnapshotState.CLONING,
    SnapshotState.CLONING: SnapshotState.RECONCILING,
    SnapshotState.RECONCILING: SnapshotState.SYNCHRONIZING,
    SnapshotState.SYNCHRONIZING: SnapshotState.PACKAGING,
    SnapshotState.PACKAGING: SnapshotState.CLEANUP,
    SnapshotState.CLEANUP: SnapshotState.STREAMING,
}


def _validate_repo_name(repo_name: str) -> None:
    if not _REPO_NAME_PATTERN.fullmatch(repo_name) or repo_name in {".", ".."}:
        message = f"Invalid repository name: {repo_name!r}"
        raise SnapshotError(message)


class SnapshotRun:
    """A single clone -> reconcile -> synchronize -> package -> stream pass.

    Each run owns a uniquely named working copy and artifact under
    ``settings.data_dir``; the working copy never outlives ``execute``.
    """

    def __init__(self, settings: Settings, repo_name: str) -> None:
        _validate_repo_name(repo_name)
        self.settings = settings
        self.repo_name = repo_name
        run_id = uuid.uuid4().hex[:12]
        self.workdir = settings.data_dir / f"{repo_name}-{run_id}"
        self.checkout = self.workdir / repo_name
        self.archive_path = settings.data_dir / f"{repo_name}-{run_id}.zip"
        self.state = SnapshotState.START
        self.history: list[SnapshotState] = [SnapshotState.START]
        self.created_branches: list[str] = []

    def _enter(self, state: SnapshotState) -> None:
        if state is SnapshotState.FAILED:
            if self.state is SnapshotState.FAILED:
                message = "Snapshot run has already failed"
                raise SnapshotError(message)
        elif _NEXT_STATE.get(self.state) is not state:
            message = f"Illegal snapshot transition {self.state} -> {state}"
            raise SnapshotError(message)
        self.state = state
        self.history.append(state)
        console.log(f"{self.repo_name}: {state}")

    def _clone(self) -> None:
        url = _build_clone_url(self.settings.organization, self.repo_name)
        self.workdir.mkdir(parents=True)
        result = _git_step(
            ["clone", "--recurse-submodules", url, str(self.checkout)],
            env=_auth_env(self.settings.token),
        )
        if result.stdout.strip():
            console.log(result.stdout.strip())

    def _abort(self) -> None:
        self._enter(SnapshotState.FAILED)
        shutil.rmtree(self.workdir, ignore_errors=True)
        self.archive_path.unlink(missing_ok=True)

    def execute(self) -> ArchiveStream:
        """Run every stage and hand back the archive as a delete-on-close stream."""
        try:
            self._enter(SnapshotState.CLONING)
            self._clone()
            self._enter(SnapshotState.RECONCILING)
            self.created_branches = reconcile_branches(self.checkout, self.settings.remote_name)
            self._enter(SnapshotState.SYNCHRONIZING)
            synchronize(self.checkout, self.settings)
            self._enter(SnapshotState.PACKAGING)
            package_directory(self.checkout, self.archive_path)
            self._enter(SnapshotState.CLEANUP)
            shutil.rmtree(self.workdir)
            self._enter(SnapshotState.STREAMING)
            return ArchiveStream(self.archive_path)
        except BaseException:
            self._abort()
            raise


def create_snapshot(settings: Settings, repo_name: str) -> ArchiveStream:
    """Snapshot ``repo_name`` with all branches and tags as a zip stream."""
    return SnapshotRun(settings, repo_name).execute()


@dataclass(frozen=True)
class CliOptions:
    """Global options captured before a subcommand runs."""

    organization: str | None
    token: str | None
    time_zone: str
    data_dir: Path | None


def _obtain_token() -> str | None:
    """Return a GitHub token via the `gh` CLI or `None` if unavailable."""
    gh_executable = shutil.which("gh")
    if not gh_executable:
        console.log("GitHub CLI not found; cannot retrieve token")
        return None
    try:
        console.log("Attempting to retrieve GitHub token via gh auth token")
        proc = subprocess.run(  # noqa: S603  # Running trusted gh CLI command
            [gh_executable, "auth", "token"],
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "(no stderr)"
        console.log(f"Failed to retrieve token from gh CLI: {stderr}")
        return None
    token = proc.stdout.strip()
    if not token:
        console.log("gh auth token returned empty output")
        return None
    console.log("Obtained GitHub token via gh CLI")
    return token


def _require_token_or_exit() -> str:
    """Retrieve a GitHub token and exit if it cannot be obtained."""
    token = _obtain_token()
    if not token:
        console.print("[red]No GITHUB_TOKEN set and unable to retrieve one via gh CLI. Exiting.")
        raise typer.Exit(1)
    return token


def _load_settings(ctx: typer.Context) -> Settings:
    """Build validated settings from the global options, exiting on bad input."""
    options: CliOptions = ctx.obj
    if not options.organization:
        console.print("[red]Missing organization; pass --org or set GITHUB_RETIRE_ORG.")
        raise typer.Exit(1)
    token = options.token or _require_token_or_exit()
    kwargs: dict[str, Any] = {}
    if options.data_dir is not None:
        kwargs["data_dir"] = options.data_dir.expanduser().resolve()
    try:
        return Settings(
            organization=options.organization,
            token=token,
            time_zone=options.time_zone,
            **kwargs,
        )
    except ConfigurationError as error:
        console.print(f"[red]{error}")
        raise typer.Exit(1) from error


def _run_api(coro: Coroutine[Any, Any, Any]) -> Any:
    """Run an API coroutine, reporting failures CLI-style."""
    try:
        return asyncio.run(coro)
    except RetireError as error:
        console.print(f"[red]{error}")
        raise typer.Exit(1) from error


def _lookup_repository(settings: Settings, name: str) -> RepoInfo:
    repos = _run_api(fetch_repositories(settings))
    try:
        return find_repository(repos, name)
    except NotFoundError as error:
        console.print(f"[red]{error}")
        raise typer.Exit(1) from error


def _render_repositories(repos: list[RepoInfo]) -> None:
    table = Table("Repository", "Stars", "Forks", "Open issues", "Private", "Archived", "Last push", title="Repositories")
    for repo in repos:
        table.add_row(
            repo.name,
            str(repo.stars),
            str(repo.forks),
            str(repo.open_issues),
            "yes" if repo.private else "no",
            "yes" if repo.archived else "no",
            repo.pushed_at or "-",
        )
    console.print(table)


def _write_snapshot(stream: ArchiveStream, output: Path) -> int:
    """Copy the archive stream to ``output``; the stream is always closed."""
    with stream:
        output.parent.mkdir(parents=True, exist_ok=True)
        with output.open("wb") as handle:
            shutil.copyfileobj(stream, handle)
    return output.stat().st_size


def _snapshot_to_file(settings: Settings, repo_name: str, output: Path) -> Path:
    try:
        with console.status(f"Snapshotting {settings.organization}/{repo_name}"):
            stream = create_snapshot(settings, repo_name)
        size = _write_snapshot(stream, output)
    except RetireError as error:
        console.print(f"[red]Snapshot failed: {error}")
        raise typer.Exit(1) from error
    except OSError as error:
        console.print(f"[red]Unable to write {output}: {error}")
        raise typer.Exit(1) from error
    console.print(f"[green]Wrote {output} ({size} bytes)")
    return output


@app.callback(context_settings={"help_option_names": ["-h", "--help"]})
def main(
    ctx: typer.Context,
    organization: str | None = typer.Option(
        None,
        "--org",
        "-o",
        envvar="GITHUB_RETIRE_ORG",
        help="GitHub organization to manage",
    ),
    token: str | None = typer.Option(
        None,
        "--token",
        envvar="GITHUB_TOKEN",
        help="Access token (defaults to `gh auth token`)",
    ),
    time_zone: str = typer.Option(
        "UTC",
        "--timezone",
        envvar="GITHUB_RETIRE_TIMEZONE",
        help="IANA time zone used to display rate-limit reset times",
    ),
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        envvar="GITHUB_RETIRE_DATA_DIR",
        help="Scratch directory for clones and archives",
    ),
) -> None:
    """Inventory, snapshot, and archive an organization's repositories."""
    ctx.obj = CliOptions(organization=organization, token=token, time_zone=time_zone, data_dir=data_dir)


@app.command("list")
def list_repositories(ctx: typer.Context) -> None:
    """List the organization's repositories."""
    settings = _load_settings(ctx)
    repos = _run_api(fetch_repositories(settings))
    if not repos:
        console.print("[yellow]No repositories found.")
        raise typer.Exit
    _render_repositories(repos)


@app.command()
def info(ctx: typer.Context, name: str = typer.Argument(..., help="Repository name")) -> None:
    """Show watchers, weekly views, and recent commit activity."""
    settings = _load_settings(ctx)
    repo = _lookup_repository(settings, name)
    extended = _run_api(fetch_extended_info(settings, repo.id))
    table = Table("Field", "Value", title=repo.full_name)
    table.add_row("Description", repo.description or "-")
    table.add_row("Created", repo.created_at)
    table.add_row("Last push", repo.pushed_at or "-")
    table.add_row("Watchers", str(extended.watchers))
    table.add_row("Views (this week)", str(extended.views))
    table.add_row(f"Commits (last {RECENT_ACTIVITY_WEEKS} weeks)", str(extended.recent_commits))
    console.print(table)


@app.command()
def snapshot(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
    output: Path | None = typer.Option(None, "--output", "-O", help="Destination zip (default: ./<name>.zip)"),
) -> None:
    """Download a zip of the repository with every branch and tag."""
    settings = _load_settings(ctx)
    _snapshot_to_file(settings, name, output or Path(f"{name}.zip"))


@app.command()
def archive(  # noqa: PLR0913  # CLI entrypoint needs many options
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Repository name"),
    output: Path | None = typer.Option(None, "--output", "-O", help="Snapshot destination (default: ./<name>.zip)"),
    skip_snapshot: bool = typer.Option(False, "--skip-snapshot", help="Archive without downloading a snapshot first"),
    requested_by: str | None = typer.Option(None, "--requested-by", help="Name recorded in the archive notice"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Snapshot a repository, post an archive notice, and mark it archived."""
    settings = _load_settings(ctx)
    repo = _lookup_repository(settings, name)
    if repo.archived:
        console.print(f"[yellow]{repo.full_name} is already archived.")
        raise typer.Exit
    if not skip_snapshot:
        _snapshot_to_file(settings, repo.name, output or Path(f"{repo.name}.zip"))
    if not yes and not typer.confirm(f"Archive {repo.full_name}? It will become read-only"):
        console.print("[yellow]Aborted.")
        raise typer.Exit(1)
    requester = requested_by or _run_api(fetch_authenticated_login(settings))
    notice = _run_api(archive_repository(settings, repo.id, repo.name, requester))
    if notice.status is IssueStatus.CREATED:
        console.print(f"Archive notice: {notice.url}")
    else:
        console.print("[yellow]Issues are disabled; no archive notice was posted.")
    console.print(f"[green]{repo.full_name} archived.")


@app.command()
def quota(ctx: typer.Context) -> None:
    """Show private repository usage against the plan limit."""
    settings = _load_settings(ctx)
    result = _run_api(fetch_repo_quota(settings))
    console.print(
        f"Private repositories: {result.private_repo_count} of {result.private_repo_limit} ({result.remaining} remaining)",
    )


@app.command("rate-limit")
def rate_limit(ctx: typer.Context) -> None:
    """Show remaining API calls and when the budget resets."""
    settings = _load_settings(ctx)
    limit = _run_api(fetch_rate_limit(settings))
    console.print(f"Remaining API calls: {limit.remaining}")
    console.print(f"Resets at: {limit.reset.isoformat()} ({settings.time_zone})")


if __name__ == "__main__":
    app()
