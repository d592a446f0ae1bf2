"""Remote git reference lookups via ``git ls-remote``.

Only references are queried; nothing is cloned or fetched. A missing ``git``
binary, a timeout, and a failing command all surface uniformly as
:class:`SourceUnavailableError`.
"""

from __future__ import annotations

import logging
import re
import typing as typ

from manifest_edit_errors import CrateNotFoundError, SourceUnavailableError
from plumbum import local
from plumbum.commands.processes import CommandNotFound, ProcessTimedOut

__all__ = ["GitCli", "GitQuery", "Runner", "parse_ls_remote"]

LOGGER = logging.getLogger(__name__)

COMMIT_PATTERN = re.compile(r"^[0-9a-f]{40}$")
SYMREF_PATTERN = re.compile(r"^ref:\s+refs/heads/(?P<branch>\S+)\s+HEAD$")

GitResult = tuple[int, str, str]
Runner = typ.Callable[[list[str], int], GitResult]


class GitQuery(typ.Protocol):
    """Collaborator able to resolve references in a remote repository."""

    def resolve_ref(self, repo_url: str, ref_spec: str) -> str:
        """Return the commit id ``ref_spec`` points at."""
        ...

    def default_branch(self, repo_url: str) -> str:
        """Return the branch the remote ``HEAD`` points at."""
        ...


def _run_git(command: list[str], timeout_secs: int) -> GitResult:
    invocation = local[command[0]][command[1:]]
    return invocation.run(retcode=None, timeout=timeout_secs)


def parse_ls_remote(output: str) -> dict[str, str]:
    """Map each reference name in ``git ls-remote`` output to its commit."""
    refs: dict[str, str] = {}
    for line in output.splitlines():
        commit, _, name = line.partition("\t")
        if COMMIT_PATTERN.match(commit) and name:
            refs[name.strip()] = commit
    return refs


class GitCli:
    """Answer :class:`GitQuery` calls by shelling out to ``git``."""

    def __init__(self, *, timeout_secs: int = 30, runner: Runner | None = None) -> None:
        self.timeout_secs = timeout_secs
        self._runner = runner or _run_git

    def _ls_remote(self, repo_url: str, *args: str) -> str:
        command = ["git", "ls-remote", *args, repo_url]
        try:
            return_code, stdout, stderr = self._runner(command, self.timeout_secs)
        except CommandNotFound as err:
            message = "git not found on PATH; unable to query remote references"
            raise SourceUnavailableError(
                message, name=repo_url, source=repo_url
            ) from err
        except ProcessTimedOut as err:
            LOGGER.exception(
                "git ls-remote timed out for %s after %s seconds",
                repo_url,
                self.timeout_secs,
            )
            message = (
                f"git ls-remote timed out for {repo_url!r} after "
                f"{self.timeout_secs} seconds"
            )
            raise SourceUnavailableError(
                message, name=repo_url, source=repo_url
            ) from err

        if return_code != 0:
            diagnostics = (stderr or stdout or "").strip()
            detail = f": {diagnostics}" if diagnostics else ""
            LOGGER.error("git ls-remote failed for %s%s", repo_url, detail)
            message = (
                f"git ls-remote failed for {repo_url!r} with exit code "
                f"{return_code}{detail}"
            )
            raise SourceUnavailableError(message, name=repo_url, source=repo_url)
        return stdout

    def default_branch(self, repo_url: str) -> str:
        """Return the branch the remote ``HEAD`` symbolic reference names."""
        output = self._ls_remote(repo_url, "--symref")
        for line in output.splitlines():
            match = SYMREF_PATTERN.match(line.strip())
            if match is not None:
                return match.group("branch")
        message = f"remote {repo_url!r} does not advertise a default branch"
        raise CrateNotFoundError(message, name=repo_url, source=repo_url)

    def resolve_ref(self, repo_url: str, ref_spec: str) -> str:
        """Return the commit id that ``ref_spec`` resolves to.

        Branches win over tags of the same name; annotated tags are peeled to
        the commit they point at. A full commit id is returned unchanged.
        """
        if COMMIT_PATTERN.match(ref_spec):
            return ref_spec
        refs = parse_ls_remote(self._ls_remote(repo_url))
        for candidate in (
            f"refs/heads/{ref_spec}",
            f"refs/tags/{ref_spec}^{{}}",
            f"refs/tags/{ref_spec}",
            ref_spec,
        ):
            if candidate in refs:
                return refs[candidate]
        abbreviated = [
            commit for commit in refs.values() if commit.startswith(ref_spec.lower())
        ]
        if len(ref_spec) >= 7 and abbreviated:
            return abbreviated[0]
        message = f"reference {ref_spec!r} not found in {repo_url!r}"
        raise CrateNotFoundError(message, name=repo_url, source=repo_url)
