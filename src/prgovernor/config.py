from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import tomllib
from typing import cast


@dataclass(frozen=True)
class RuntimeConfig:
    fanout_workers: int = 1
    github_max_attempts: int = 3
    github_retry_backoff_seconds: float = 1.0
    log_dir: Path | None = None


@dataclass(frozen=True)
class AutomergePolicy:
    allowed_paths: tuple[str, ...]
    deny_paths: tuple[str, ...]
    max_files: int
    max_changed_lines: int
    min_approvals: int
    require_checks: bool = True
    dry_run: bool = True


@dataclass(frozen=True)
class MergeReadyPolicy:
    required_approvals: int
    require_checks: bool = True


@dataclass(frozen=True)
class RepoPolicy:
    """Per-repository policy; a ``None`` block means that feature is disabled."""

    automerge: AutomergePolicy | None = None
    merge_ready: MergeReadyPolicy | None = None
    trusted_reviewers: tuple[str, ...] = ()


DISABLED_POLICY = RepoPolicy()


@dataclass(frozen=True)
class RepoConfig:
    repo_id: str
    owner: str
    name: str
    policy: RepoPolicy = field(default=DISABLED_POLICY)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class AppConfig:
    runtime: RuntimeConfig
    repos: tuple[RepoConfig, ...]

    def policy_for(self, repo_full_name: str) -> RepoPolicy:
        normalized = repo_full_name.strip().lower()
        for repo in self.repos:
            if repo.full_name.lower() == normalized:
                return repo.policy
        return DISABLED_POLICY


class ConfigError(ValueError):
    pass


def load_config(path: Path) -> AppConfig:
    with path.open("rb") as fh:
        data = tomllib.load(fh)
    return parse_config(data)


def parse_config(data: dict[str, object]) -> AppConfig:
    runtime_data = _optional_table(data, "runtime") or {}
    repo_data = _optional_table(data, "repo") or {}

    runtime = RuntimeConfig(
        fanout_workers=_int_with_default(runtime_data, "fanout_workers", 1),
        github_max_attempts=_int_with_default(runtime_data, "github_max_attempts", 3),
        github_retry_backoff_seconds=_float_with_default(
            runtime_data, "github_retry_backoff_seconds", 1.0
        ),
        log_dir=_optional_path(runtime_data, "log_dir"),
    )
    if runtime.fanout_workers < 1:
        raise ConfigError("runtime.fanout_workers must be >= 1")
    if runtime.github_max_attempts < 1:
        raise ConfigError("runtime.github_max_attempts must be >= 1")
    if runtime.github_retry_backoff_seconds < 0:
        raise ConfigError("runtime.github_retry_backoff_seconds must be >= 0")

    return AppConfig(runtime=runtime, repos=_load_repo_configs(repo_data))


def _load_repo_configs(repo_data: dict[str, object]) -> tuple[RepoConfig, ...]:
    repos: list[RepoConfig] = []
    for repo_id, raw_value in sorted(repo_data.items()):
        repo_table = _require_sub_table(raw_value, table_name=f"[repo.{repo_id}]")
        repos.append(_parse_repo_config(repo_id=repo_id, repo_data=repo_table))
    _ensure_unique_full_names(repos)
    return tuple(repos)


def _parse_repo_config(*, repo_id: str, repo_data: dict[str, object]) -> RepoConfig:
    owner = _require_str(repo_data, "owner")
    name = _str_with_default(repo_data, "name", repo_id)

    automerge_data = repo_data.get("automerge")
    merge_ready_data = repo_data.get("merge_ready")
    automerge = (
        None
        if automerge_data is None
        else _parse_automerge_policy(
            _require_sub_table(automerge_data, table_name=f"[repo.{repo_id}.automerge]")
        )
    )
    merge_ready = (
        None
        if merge_ready_data is None
        else _parse_merge_ready_policy(
            _require_sub_table(merge_ready_data, table_name=f"[repo.{repo_id}.merge_ready]")
        )
    )

    return RepoConfig(
        repo_id=repo_id,
        owner=owner,
        name=name,
        policy=RepoPolicy(
            automerge=automerge,
            merge_ready=merge_ready,
            trusted_reviewers=_logins_with_default(repo_data, "trusted_reviewers", ()),
        ),
    )


def _parse_automerge_policy(data: dict[str, object]) -> AutomergePolicy | None:
    if not _bool_with_default(data, "enabled", True):
        return None
    policy = AutomergePolicy(
        allowed_paths=_tuple_of_str(data, "allowed_paths"),
        deny_paths=_tuple_of_str(data, "deny_paths"),
        max_files=_int_with_default(data, "max_files", 10),
        max_changed_lines=_int_with_default(data, "max_changed_lines", 200),
        min_approvals=_int_with_default(data, "min_approvals", 1),
        require_checks=_bool_with_default(data, "require_checks", True),
        dry_run=_bool_with_default(data, "dry_run", True),
    )
    if policy.max_files < 1:
        raise ConfigError("automerge.max_files must be >= 1")
    if policy.max_changed_lines < 0:
        raise ConfigError("automerge.max_changed_lines must be >= 0")
    if policy.min_approvals < 0:
        raise ConfigError("automerge.min_approvals must be >= 0")
    return policy


def _parse_merge_ready_policy(data: dict[str, object]) -> MergeReadyPolicy | None:
    if not _bool_with_default(data, "enabled", True):
        return None
    policy = MergeReadyPolicy(
        required_approvals=_int_with_default(data, "required_approvals", 1),
        require_checks=_bool_with_default(data, "require_checks", True),
    )
    if policy.required_approvals < 0:
        raise ConfigError("merge_ready.required_approvals must be >= 0")
    return policy


def _optional_table(data: dict[str, object], key: str) -> dict[str, object] | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ConfigError(f"[{key}] must be a TOML table when provided")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"[{key}] must have string keys")
    return cast(dict[str, object], value)


def _require_sub_table(value: object, *, table_name: str) -> dict[str, object]:
    if not isinstance(value, dict):
        raise ConfigError(f"{table_name} must be a TOML table")
    if not all(isinstance(item, str) for item in value.keys()):
        raise ConfigError(f"{table_name} must have string keys")
    return cast(dict[str, object], value)


def _require_str(data: dict[str, object], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} is required and must be a non-empty string")
    return value


def _optional_str(data: dict[str, object], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string if provided")
    return value


def _str_with_default(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _int_with_default(data: dict[str, object], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{key} must be an integer")
    return value


def _float_with_default(data: dict[str, object], key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int | float):
        raise ConfigError(f"{key} must be a number")
    return float(value)


def _bool_with_default(data: dict[str, object], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _tuple_of_str(data: dict[str, object], key: str) -> tuple[str, ...]:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    out: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ConfigError(f"{key} must be a list of non-empty strings")
        out.append(item.strip())
    return tuple(out)


def _optional_path(data: dict[str, object], key: str) -> Path | None:
    value = _optional_str(data, key)
    if value is None:
        return None
    return Path(value).expanduser()


def _logins_with_default(
    data: dict[str, object], key: str, default: tuple[str, ...]
) -> tuple[str, ...]:
    value = data.get(key, list(default))
    if not isinstance(value, list):
        raise ConfigError(f"{key} must be a list of strings")
    normalized: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ConfigError(f"{key} must be a list of strings")
        login = item.strip().lower()
        if not login:
            raise ConfigError(f"{key} entries must be non-empty strings")
        if login not in normalized:
            normalized.append(login)
    return tuple(normalized)


def _ensure_unique_full_names(repos: list[RepoConfig]) -> None:
    seen: dict[str, str] = {}
    for repo in repos:
        key = repo.full_name.lower()
        existing_id = seen.get(key)
        if existing_id is not None:
            raise ConfigError(
                f"Duplicate repo full_name {repo.full_name!r} across repo ids "
                f"{existing_id!r} and {repo.repo_id!r}"
            )
        seen[key] = repo.repo_id
