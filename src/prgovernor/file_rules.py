from __future__ import annotations

from collections.abc import Sequence
from fnmatch import fnmatchcase
from functools import lru_cache
import re

from prgovernor.config import AutomergePolicy
from prgovernor.models import ClassificationResult, PullRequestFile


_NUMERIC_RANGE = re.compile(r"(-?\d+)\.\.(-?\d+)")


def is_file_allowed(
    filename: str, allowed_paths: Sequence[str], deny_paths: Sequence[str]
) -> bool:
    """Deny patterns win outright; otherwise at least one allow pattern must match."""
    for pattern in deny_paths:
        if glob_matches(filename, pattern):
            return False

    for pattern in allowed_paths:
        if glob_matches(filename, pattern):
            return True

    return False


def classify_files(
    files: Sequence[PullRequestFile], policy: AutomergePolicy
) -> ClassificationResult:
    """Classify a diff against the automerge size and path rules.

    Checks run in a fixed order and only the first failure is reported:
    empty diff, file count, total changed lines, then path rules per file
    (renames must pass for both the old and the new path).
    """
    if not files:
        return ClassificationResult(eligible=False, reason="no files changed")

    if len(files) > policy.max_files:
        return ClassificationResult(
            eligible=False,
            reason=f"too many files: {len(files)} > {policy.max_files}",
        )

    total_changed_lines = sum(item.additions + item.deletions for item in files)
    if total_changed_lines > policy.max_changed_lines:
        return ClassificationResult(
            eligible=False,
            reason=f"too many changed lines: {total_changed_lines} > {policy.max_changed_lines}",
        )

    for item in files:
        if not is_file_allowed(item.filename, policy.allowed_paths, policy.deny_paths):
            return ClassificationResult(
                eligible=False,
                reason=f"file not allowed: {item.filename}",
            )
        if item.previous_filename and not is_file_allowed(
            item.previous_filename, policy.allowed_paths, policy.deny_paths
        ):
            return ClassificationResult(
                eligible=False,
                reason=f"file not allowed: {item.previous_filename} (renamed to {item.filename})",
            )

    return ClassificationResult(eligible=True, reason="all file checks passed")


def glob_matches(path: str, pattern: str) -> bool:
    """Match a repo-relative path against a glob.

    Braces expand first (``{md,txt}``, ``{1..3}``). ``*``, ``?`` and
    ``[...]`` stay within one path segment, a ``**`` segment spans zero or
    more segments, and dotfiles are not special.
    """
    path_parts = tuple(part for part in path.replace("\\", "/").split("/") if part)
    if not path_parts:
        return False
    for expanded in _expand_braces(pattern.strip()):
        pattern_parts = _split_pattern(expanded)
        if pattern_parts and _match_parts(path_parts, 0, pattern_parts, 0):
            return True
    return False


@lru_cache(maxsize=256)
def _expand_braces(pattern: str) -> tuple[str, ...]:
    start = pattern.find("{")
    while start != -1:
        end, options = _brace_options(pattern, start)
        if options is not None:
            prefix, suffix = pattern[:start], pattern[end + 1 :]
            expanded: list[str] = []
            for option in options:
                expanded.extend(_expand_braces(f"{prefix}{option}{suffix}"))
            return tuple(dict.fromkeys(expanded))
        start = pattern.find("{", start + 1)
    return (pattern,)


def _brace_options(pattern: str, start: int) -> tuple[int, list[str] | None]:
    """Return the closing index and alternatives of the brace set at ``start``.

    Alternatives are None when the set is unterminated or is a single item
    that is not a range; such braces match literally.
    """
    depth = 0
    options: list[str] = []
    option_start = start + 1
    for index in range(start + 1, len(pattern)):
        char = pattern[index]
        if char == "{":
            depth += 1
        elif char == "}":
            if depth:
                depth -= 1
                continue
            options.append(pattern[option_start:index])
            if len(options) > 1:
                return index, options
            return index, _brace_range(options[0])
        elif char == "," and not depth:
            options.append(pattern[option_start:index])
            option_start = index + 1
    return len(pattern), None


def _brace_range(body: str) -> list[str] | None:
    match = _NUMERIC_RANGE.fullmatch(body)
    if match is None:
        return None
    first, last = int(match.group(1)), int(match.group(2))
    step = 1 if last >= first else -1
    return [str(value) for value in range(first, last + step, step)]


@lru_cache(maxsize=512)
def _split_pattern(pattern: str) -> tuple[str, ...]:
    parts: list[str] = []
    for part in pattern.lstrip("/").split("/"):
        if not part:
            continue
        # Adjacent globstars collapse to one.
        if part == "**" and parts and parts[-1] == "**":
            continue
        # fnmatch spells class negation as [!...] only.
        parts.append(part.replace("[^", "[!"))
    return tuple(parts)


def _match_parts(
    path_parts: tuple[str, ...],
    path_index: int,
    pattern_parts: tuple[str, ...],
    pattern_index: int,
) -> bool:
    while pattern_index < len(pattern_parts):
        segment = pattern_parts[pattern_index]
        if segment == "**":
            if pattern_index == len(pattern_parts) - 1:
                return True
            for next_index in range(path_index, len(path_parts)):
                if _match_parts(path_parts, next_index, pattern_parts, pattern_index + 1):
                    return True
            return False
        if path_index >= len(path_parts):
            return False
        if not fnmatchcase(path_parts[path_index], segment):
            return False
        path_index += 1
        pattern_index += 1
    return path_index == len(path_parts)
