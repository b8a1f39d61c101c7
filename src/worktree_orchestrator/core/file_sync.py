"""File synchronization for new worktrees.

Applies the configured copy/symlink/ignore rules to the files of the main
checkout so that a fresh worktree gets its local, untracked state
(``.env`` files, dependency caches, editor settings) without a manual step.

Rules are evaluated in order and the first rule that matches a path wins:

    >>> rules = [FileRule(pattern="*.env", action="copy"),
    ...          FileRule(pattern="node_modules", action="symlink")]
    >>> engine = FileSyncEngine()
    >>> engine.apply_rules("/code/app", "/code/app-feature", rules)
    SyncResult(copied=['.env'], symlinked=['node_modules'], ...)
"""

import logging
import os
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from functools import lru_cache
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from worktree_orchestrator.config import FileAction, FileRule
from worktree_orchestrator.core.git import GitAdapter
from worktree_orchestrator.errors import FileOperationError, VersionControlError
from worktree_orchestrator.models.file_sync import RuleMatch, SyncError, SyncResult

logger = logging.getLogger(__name__)

DEFAULT_COPY_CONCURRENCY = 10

_GLOB_CHARS = frozenset("*?[")


def is_glob(pattern: str) -> bool:
    """Whether pattern contains glob metacharacters."""
    return any(c in _GLOB_CHARS for c in pattern)


def normalize_path(path: str) -> str:
    """POSIX relative form without ``./`` prefix or surrounding slashes."""
    path = path.replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


def _translate(body: str) -> str:
    out = []
    i = 0
    n = len(body)
    while i < n:
        c = body[i]
        if c == "*":
            if body.startswith("**", i):
                if body.startswith("**/", i):
                    out.append("(?:.*/)?")
                    i += 3
                else:
                    out.append(".*")
                    i += 2
                continue
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = body.find("]", i + 2 if body.startswith("[!", i) else i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                inner = body[i + 1:end]
                if inner.startswith("!"):
                    inner = "^" + inner[1:]
                out.append(f"[{inner.replace(chr(92), chr(92) * 2)}]")
                i = end + 1
                continue
        else:
            out.append(re.escape(c))
        i += 1
    return "".join(out)


@lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> re.Pattern:
    """
    Compile a rule pattern into a regex over POSIX relative paths.

    ``*`` and ``?`` never cross ``/``; ``**`` does. A pattern without ``/``
    matches at any depth; a leading ``/`` anchors it to the root.
    """
    anchored = pattern.startswith("/")
    body = normalize_path(pattern)
    regex = _translate(body)
    if not anchored and "/" not in body:
        regex = "(?:.*/)?" + regex
    return re.compile(f"^{regex}$")


def matching_entry(pattern: str, rel_path: str) -> Optional[str]:
    """
    Return the shallowest prefix of rel_path (a directory or the path
    itself) matched by pattern, or None.
    """
    regex = compile_pattern(pattern)
    parts = rel_path.split("/")
    for depth in range(1, len(parts) + 1):
        prefix = "/".join(parts[:depth])
        if regex.match(prefix):
            return prefix
    return None


def pattern_matches(pattern: str, rel_path: str) -> bool:
    return matching_entry(pattern, normalize_path(rel_path)) is not None


def _overlaps(path: str, others: Iterable[str]) -> bool:
    for other in others:
        if path == other or path.startswith(other + "/") or other.startswith(path + "/"):
            return True
    return False


def match_rules(
    candidates: Iterable[str],
    rules: list[FileRule],
    source_root: Optional[Path] = None,
) -> list[RuleMatch]:
    """
    Assign candidate paths to rules, first match wins.

    Args:
        candidates: Relative paths eligible for synchronization.
        rules: Ordered rules.
        source_root: When given, literal patterns that matched no candidate
            are resolved against the file system (for ignored paths such as
            ``node_modules``). Missing literals are reported with exists=False.

    Returns:
        RuleMatch entries in rule order.
    """
    remaining = sorted({normalize_path(c) for c in candidates if normalize_path(c)})
    taken: set[str] = set()
    matches: list[RuleMatch] = []

    for index, rule in enumerate(rules):
        entries: dict[str, list[str]] = {}
        unmatched = []
        for path in remaining:
            entry = matching_entry(rule.pattern, path)
            if entry is None:
                unmatched.append(path)
            else:
                entries.setdefault(entry, []).append(path)
        remaining = unmatched

        for entry, claimed in entries.items():
            matches.append(
                RuleMatch(rule_index=index, action=rule.action, entry=entry, claimed=claimed)
            )
            taken.add(entry)
            taken.update(claimed)

        if entries or source_root is None or is_glob(rule.pattern):
            continue

        literal = normalize_path(rule.pattern)
        if not literal or _overlaps(literal, taken):
            continue

        exists = os.path.lexists(Path(source_root) / literal)
        matches.append(
            RuleMatch(
                rule_index=index,
                action=rule.action,
                entry=literal,
                literal=True,
                exists=exists,
            )
        )
        if exists:
            taken.add(literal)

    return matches


def _copy_path(source: Path, dest: Path) -> None:
    """Copy a file, symlink, or directory, preserving permissions."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    if source.is_dir() and not source.is_symlink():
        shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)
    else:
        if os.path.lexists(dest) and not dest.is_dir():
            dest.unlink()
        shutil.copy2(source, dest, follow_symlinks=False)


class FileSyncEngine:
    """Materializes file rules from a source checkout into a worktree."""

    def __init__(
        self,
        git: Optional[GitAdapter] = None,
        max_workers: int = DEFAULT_COPY_CONCURRENCY,
    ):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.git = git
        self.max_workers = max_workers

    def enumerate_candidates(self, source: Path, include_untracked: bool) -> list[str]:
        """
        Tracked files, plus untracked-but-not-ignored files when requested.

        Raises:
            FileOperationError: If tracked files cannot be listed.
        """
        try:
            git = self.git or GitAdapter(source)
            candidates = git.list_tracked_files(source)
        except VersionControlError as e:
            raise FileOperationError(
                f"Cannot list files in {source}: {e.message}", path=str(source), step="copying_files"
            ) from e

        if include_untracked:
            try:
                candidates += git.list_untracked_files(source)
            except VersionControlError as e:
                logger.warning(f"Could not list untracked files, continuing without them: {e}")

        return candidates

    def apply_rules(
        self,
        source_path: Union[str, Path],
        dest_path: Union[str, Path],
        rules: list[FileRule],
        include_untracked: bool = True,
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> SyncResult:
        """
        Copy and symlink rule matches from source_path into dest_path.

        Args:
            source_path: Main checkout.
            dest_path: Worktree directory. Must exist and be writable.
            rules: Ordered file rules.
            include_untracked: Consider untracked, non-ignored files.
            on_progress: Receives one message per completed entry.

        Returns:
            SyncResult with copied/symlinked entries and per-path errors.

        Raises:
            FileOperationError: If the destination cannot be written at all.
        """
        source = Path(source_path).resolve()
        dest = Path(dest_path).resolve()

        if not dest.is_dir() or not os.access(dest, os.W_OK):
            raise FileOperationError(
                f"Destination is not a writable directory: {dest}",
                path=str(dest),
                step="copying_files",
            )

        result = SyncResult()
        if not rules:
            logger.debug("No file rules configured")
            return result

        candidates = self.enumerate_candidates(source, include_untracked)
        matches = match_rules(candidates, rules, source_root=source)

        copies: list[RuleMatch] = []
        links: list[RuleMatch] = []
        for match in matches:
            if match.action == FileAction.IGNORE:
                result.ignored.append(match.entry)
            elif not match.exists:
                if match.action == FileAction.COPY:
                    result.errors.append(
                        SyncError(path=match.entry, error="Source path does not exist")
                    )
                else:
                    logger.debug(f"Skipping symlink for missing {match.entry}")
            elif match.action == FileAction.COPY:
                copies.append(match)
            else:
                links.append(match)

        self._copy_entries(source, dest, copies, result, on_progress)
        self._symlink_entries(source, dest, links, result, on_progress)

        logger.info(
            f"Synchronized files: {len(result.copied)} copied, "
            f"{len(result.symlinked)} symlinked, {len(result.errors)} error(s)"
        )
        return result

    def _copy_entries(
        self,
        source: Path,
        dest: Path,
        matches: list[RuleMatch],
        result: SyncResult,
        on_progress: Optional[Callable[[str], None]],
    ) -> None:
        jobs: list[tuple[str, str]] = []
        for match in matches:
            files = match.claimed if match.claimed and not match.literal else [match.entry]
            jobs.extend((match.entry, rel) for rel in files)

        if not jobs:
            return

        def copy_one(job: tuple[str, str]) -> tuple[str, str, Optional[str]]:
            entry, rel = job
            try:
                _copy_path(source / rel, dest / rel)
                return entry, rel, None
            except OSError as e:
                return entry, rel, e.strerror or str(e)

        failed_entries: set[str] = set()
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            for entry, rel, error in pool.map(copy_one, jobs):
                if error:
                    failed_entries.add(entry)
                    result.errors.append(SyncError(path=rel, error=error))
                    logger.warning(f"Could not copy {rel}: {error}")

        for match in matches:
            if match.entry not in failed_entries:
                result.copied.append(match.entry)
                if on_progress:
                    on_progress(f"Copied {match.entry}")

    def _symlink_entries(
        self,
        source: Path,
        dest: Path,
        matches: list[RuleMatch],
        result: SyncResult,
        on_progress: Optional[Callable[[str], None]],
    ) -> None:
        for match in matches:
            link = dest / match.entry

            if not os.path.lexists(link):
                self._link(source, dest, match.entry, result, on_progress)
                continue

            partly_copied = link.is_dir() and not link.is_symlink() and any(
                copied.startswith(match.entry + "/") for copied in result.copied
            )
            pending = [
                rel for rel in match.claimed
                if rel != match.entry and not os.path.lexists(dest / rel)
            ]
            if partly_copied and pending:
                # An earlier copy rule created the directory; link what it left out.
                logger.debug(f"{match.entry} was partly copied, linking {len(pending)} file(s)")
                for rel in pending:
                    self._link(source, dest, rel, result, on_progress)
                continue

            result.errors.append(
                SyncError(path=match.entry, error="Destination already exists; not linked")
            )
            logger.warning(f"Could not symlink {match.entry}: already exists in worktree")

    def _link(
        self,
        source: Path,
        dest: Path,
        rel: str,
        result: SyncResult,
        on_progress: Optional[Callable[[str], None]],
    ) -> None:
        target = source / rel
        link = dest / rel
        try:
            link.parent.mkdir(parents=True, exist_ok=True)
            relative_target = os.path.relpath(target, start=link.parent)
            os.symlink(relative_target, link, target_is_directory=target.is_dir())
        except OSError as e:
            result.errors.append(SyncError(path=rel, error=e.strerror or str(e)))
            logger.warning(f"Could not symlink {rel}: {e}")
            return

        result.symlinked.append(rel)
        if on_progress:
            on_progress(f"Linked {rel} -> {relative_target}")


__all__ = [
    "DEFAULT_COPY_CONCURRENCY",
    "FileSyncEngine",
    "compile_pattern",
    "is_glob",
    "match_rules",
    "matching_entry",
    "pattern_matches",
]
