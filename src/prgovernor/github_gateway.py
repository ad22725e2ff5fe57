from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import time
from typing import Final, cast
from urllib.parse import quote, urlencode

from prgovernor.models import (
    CheckRun,
    CheckRunsSummary,
    CombinedStatus,
    PullRequestFile,
    PullRequestRef,
    PullRequestSnapshot,
    PullRequestSummary,
)
from prgovernor.observability import log_event
from prgovernor.pr_operations import PullRequestOperations
from prgovernor.shell import run_capture
from prgovernor.transient_errors import is_transient_error


LOGGER = logging.getLogger("prgovernor.github_gateway")
_PAGE_SIZE: Final[int] = 100
# Returned instead of raising when a missing_ok request gets a 404.
_NOT_FOUND: Final[object] = object()
# Review states that do not replace a reviewer's previous verdict.
_NON_VERDICT_REVIEW_STATES: Final[frozenset[str]] = frozenset({"COMMENTED", "PENDING"})
# gh is a Go binary; these are the net package's messages for transport failures.
_TRANSPORT_ERROR_MARKERS: Final[tuple[tuple[str, str], ...]] = (
    ("connection reset", "ECONNRESET"),
    ("connection refused", "ECONNREFUSED"),
    ("no such host", "ENOTFOUND"),
    ("temporary failure in name resolution", "EAI_AGAIN"),
    ("broken pipe", "EPIPE"),
    ("i/o timeout", "ETIMEDOUT"),
    ("tls handshake timeout", "ETIMEDOUT"),
    ("context deadline exceeded", "ETIMEDOUT"),
)


class GitHubApiError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None, code: str | None = None):
        super().__init__(message)
        self.status = status
        self.code = code


@dataclass(frozen=True)
class GitHubGateway(PullRequestOperations):
    """PR operations over the GitHub REST API, issued through the ``gh`` CLI.

    Every request is retried up to ``max_attempts`` times with exponential
    backoff while the failure classifies as transient; permanent failures
    (4xx, malformed payloads) raise on the first attempt.
    """

    max_attempts: int = 3
    retry_backoff_seconds: float = 1.0
    request_timeout_seconds: float | None = 60.0

    def list_files(
        self, ref: PullRequestRef, *, early_exit_threshold: int | None = None
    ) -> tuple[PullRequestFile, ...]:
        files: list[PullRequestFile] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.pr_number}/files?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError(
                    "Unexpected GitHub response: expected list of pull request files"
                )
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                filename = _as_string(item_obj.get("filename"))
                if not filename:
                    continue
                files.append(
                    PullRequestFile(
                        filename=filename,
                        additions=_as_int(item_obj.get("additions"), field="additions"),
                        deletions=_as_int(item_obj.get("deletions"), field="deletions"),
                        status=_as_string(item_obj.get("status")) or "modified",
                        previous_filename=_as_optional_str(item_obj.get("previous_filename")),
                    )
                )
            # Past the threshold the count alone decides the outcome.
            if early_exit_threshold is not None and len(files) > early_exit_threshold:
                break
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_files",
            pr_number=ref.pr_number,
            count=len(files),
            early_exit_threshold=early_exit_threshold,
        )
        return tuple(files)

    def get_approver_logins(self, ref: PullRequestRef) -> frozenset[str]:
        """Logins whose most recent verdict on the pull request is an approval.

        Reviews arrive oldest first. A later ``CHANGES_REQUESTED`` or
        ``DISMISSED`` review replaces an approval; plain comments do not.
        """
        latest_state_by_login: dict[str, str] = {}
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.pr_number}/reviews?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError("Unexpected GitHub response: expected list of reviews")
            for item in payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                user_obj = _as_object_dict(item_obj.get("user"))
                login = _as_login(user_obj.get("login") if user_obj else None)
                state = _as_string(item_obj.get("state")).strip().upper()
                if not login or not state or state in _NON_VERDICT_REVIEW_STATES:
                    continue
                latest_state_by_login[login] = state
            if len(payload) < _PAGE_SIZE:
                break
            page += 1

        approvers = frozenset(
            login for login, state in latest_state_by_login.items() if state == "APPROVED"
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request_reviews",
            pr_number=ref.pr_number,
            reviewer_count=len(latest_state_by_login),
            approver_count=len(approvers),
        )
        return approvers

    def get_labels(self, ref: PullRequestRef) -> tuple[str, ...]:
        names: list[str] = []
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{ref.owner}/{ref.repo}/issues/{ref.pr_number}/labels?{query}"
            payload = self._api_json("GET", path)
            if not isinstance(payload, list):
                raise GitHubApiError("Unexpected GitHub response: expected list of labels")
            names.extend(_label_names(payload))
            if len(payload) < _PAGE_SIZE:
                break
            page += 1
        labels = tuple(names)
        log_event(
            LOGGER,
            "github_read",
            endpoint="issue_labels",
            pr_number=ref.pr_number,
            count=len(labels),
        )
        return labels

    def add_labels(self, ref: PullRequestRef, labels: tuple[str, ...] | list[str]) -> None:
        path = f"/repos/{ref.owner}/{ref.repo}/issues/{ref.pr_number}/labels"
        self._api_json("POST", path, payload={"labels": list(labels)})
        log_event(
            LOGGER,
            "github_write",
            endpoint="issue_labels",
            operation="add",
            pr_number=ref.pr_number,
            labels=tuple(labels),
        )

    def remove_label(self, ref: PullRequestRef, label: str) -> None:
        path = (
            f"/repos/{ref.owner}/{ref.repo}/issues/{ref.pr_number}/labels/"
            f"{quote(label, safe='')}"
        )
        # A concurrent evaluation may have removed it first.
        result = self._api_json("DELETE", path, missing_ok=True)
        log_event(
            LOGGER,
            "github_write",
            endpoint="issue_labels",
            operation="remove",
            pr_number=ref.pr_number,
            label=label,
            already_absent=result is _NOT_FOUND,
        )

    def get(self, ref: PullRequestRef) -> PullRequestSnapshot:
        path = f"/repos/{ref.owner}/{ref.repo}/pulls/{ref.pr_number}"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError("Unexpected GitHub response: expected object for pull request")

        head = _as_object_dict(payload_obj.get("head"))
        base = _as_object_dict(payload_obj.get("base"))
        if head is None or base is None:
            raise GitHubApiError("Unexpected GitHub response: missing pull request head/base")
        labels_obj = payload_obj.get("labels")

        snapshot = PullRequestSnapshot(
            number=_as_int(payload_obj.get("number"), field="number"),
            head_sha=_as_string(head.get("sha")),
            base_sha=_as_string(base.get("sha")),
            state=_as_string(payload_obj.get("state")),
            draft=payload_obj.get("draft") is True,
            labels=_label_names(labels_obj) if isinstance(labels_obj, list) else (),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="pull_request",
            pr_number=snapshot.number,
        )
        return snapshot

    def get_check_runs_for_ref(self, owner: str, repo: str, sha: str) -> CheckRunsSummary:
        check_runs: list[CheckRun] = []
        total_count = 0
        page = 1
        while True:
            query = urlencode({"per_page": _PAGE_SIZE, "page": page})
            path = f"/repos/{owner}/{repo}/commits/{sha}/check-runs?{query}"
            payload_obj = _as_object_dict(self._api_json("GET", path))
            if payload_obj is None:
                raise GitHubApiError("Unexpected GitHub response: expected object for check runs")
            total_count = _as_int(payload_obj.get("total_count"), field="total_count")
            runs_payload = payload_obj.get("check_runs")
            if not isinstance(runs_payload, list):
                raise GitHubApiError("Unexpected GitHub response: expected check_runs list")
            for item in runs_payload:
                item_obj = _as_object_dict(item)
                if item_obj is None:
                    continue
                check_runs.append(
                    CheckRun(
                        id=_as_int(item_obj.get("id"), field="id"),
                        name=_as_string(item_obj.get("name")),
                        status=_as_string(item_obj.get("status")).strip().lower(),
                        conclusion=_normalize_optional_lower_str(item_obj.get("conclusion")),
                    )
                )
            if len(runs_payload) < _PAGE_SIZE or len(check_runs) >= total_count:
                break
            page += 1
        log_event(
            LOGGER,
            "github_read",
            endpoint="check_runs",
            sha=sha,
            total_count=total_count,
            count=len(check_runs),
        )
        return CheckRunsSummary(total_count=total_count, check_runs=tuple(check_runs))

    def get_combined_status(self, owner: str, repo: str, sha: str) -> CombinedStatus:
        path = f"/repos/{owner}/{repo}/commits/{sha}/status"
        payload_obj = _as_object_dict(self._api_json("GET", path))
        if payload_obj is None:
            raise GitHubApiError(
                "Unexpected GitHub response: expected object for combined status"
            )
        combined = CombinedStatus(
            state=_as_string(payload_obj.get("state")).strip().lower(),
            total_count=_as_int(payload_obj.get("total_count"), field="total_count"),
        )
        log_event(
            LOGGER,
            "github_read",
            endpoint="combined_status",
            sha=sha,
            state=combined.state,
            total_count=combined.total_count,
        )
        return combined

    def list_open_pull_requests(
        self, owner: str, repo: str, *, per_page: int = _PAGE_SIZE
    ) -> tuple[PullRequestSummary, ...]:
        query = urlencode(
            {
                "state": "open",
                "sort": "updated",
                "direction": "desc",
                "per_page": per_page,
            }
        )
        payload = self._api_json("GET", f"/repos/{owner}/{repo}/pulls?{query}")
        if not isinstance(payload, list):
            raise GitHubApiError("Unexpected GitHub response: expected list of pull requests")

        pulls: list[PullRequestSummary] = []
        for item in payload:
            item_obj = _as_object_dict(item)
            if item_obj is None:
                continue
            head = _as_object_dict(item_obj.get("head"))
            labels_obj = item_obj.get("labels")
            pulls.append(
                PullRequestSummary(
                    number=_as_int(item_obj.get("number"), field="number"),
                    head_sha=_as_string(head.get("sha") if head else None),
                    labels=_label_names(labels_obj) if isinstance(labels_obj, list) else (),
                )
            )
        log_event(
            LOGGER,
            "github_read",
            endpoint="open_pull_requests",
            repo_full_name=f"{owner}/{repo}",
            count=len(pulls),
        )
        return tuple(pulls)

    def _api_json(
        self,
        method: str,
        path: str,
        payload: dict[str, object] | None = None,
        *,
        missing_ok: bool = False,
    ) -> object:
        attempt = 1
        while True:
            try:
                return self._api_json_once(method, path, payload, missing_ok=missing_ok)
            except Exception as exc:
                if attempt >= self.max_attempts or not is_transient_error(exc):
                    log_event(
                        LOGGER,
                        "github_request_failed",
                        level=logging.WARNING,
                        method=method.upper(),
                        path=path,
                        attempt=attempt,
                        error_type=type(exc).__name__,
                        error=str(exc),
                    )
                    raise
                delay = self.retry_backoff_seconds * (2 ** (attempt - 1))
                log_event(
                    LOGGER,
                    "github_request_retry",
                    method=method.upper(),
                    path=path,
                    attempt=attempt,
                    delay_seconds=delay,
                    error_type=type(exc).__name__,
                )
                time.sleep(delay)
                attempt += 1

    def _api_json_once(
        self,
        method: str,
        path: str,
        payload: dict[str, object] | None,
        *,
        missing_ok: bool = False,
    ) -> object:
        method_upper = method.upper()
        cmd = ["gh", "api", "--method", method_upper, "--include", path]
        stdin_payload: str | None = None
        if payload is not None:
            cmd.extend(["--input", "-"])
            stdin_payload = json.dumps(payload)

        result = run_capture(
            cmd, input_text=stdin_payload, timeout_seconds=self.request_timeout_seconds
        )
        try:
            status_code, _headers, body = _parse_http_response(result.stdout)
        except GitHubApiError as exc:
            code = _transport_error_code(result.stderr)
            raise GitHubApiError(
                f"GitHub {method_upper} {path} failed without an HTTP response: "
                f"{_preview_for_log(result.stderr)}",
                code=code,
            ) from exc

        if status_code == 404 and missing_ok:
            return _NOT_FOUND
        if status_code < 200 or status_code >= 300:
            message = body.strip() or "<empty>"
            raise GitHubApiError(
                f"GitHub {method_upper} {path} failed with status {status_code}: "
                f"{_preview_for_log(message)}",
                status=status_code,
            )
        if not body.strip():
            return None
        try:
            return json.loads(body)
        except json.JSONDecodeError as exc:
            raise GitHubApiError(
                f"GitHub {method_upper} {path} returned invalid JSON: {_preview_for_log(body)}"
            ) from exc


def _parse_http_response(raw: str) -> tuple[int, dict[str, str], str]:
    normalized = raw.replace("\r\n", "\n")
    lines = normalized.split("\n")
    status_line_index = -1
    for index, line in enumerate(lines):
        if line.startswith("HTTP/"):
            status_line_index = index
            break
    if status_line_index < 0:
        raise GitHubApiError("Unexpected GitHub response: missing HTTP status line")

    status_line = lines[status_line_index]
    status_parts = status_line.split(" ", 2)
    if len(status_parts) < 2:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}")
    try:
        status_code = int(status_parts[1])
    except ValueError as exc:
        raise GitHubApiError(f"Unexpected GitHub response status line: {status_line!r}") from exc

    headers: dict[str, str] = {}
    body_start = len(lines)
    for index in range(status_line_index + 1, len(lines)):
        line = lines[index]
        if line == "":
            body_start = index + 1
            break
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()
    body = "\n".join(lines[body_start:])
    return status_code, headers, body


def _transport_error_code(stderr: str) -> str | None:
    lowered = stderr.lower()
    for marker, code in _TRANSPORT_ERROR_MARKERS:
        if marker in lowered:
            return code
    return None


def _preview_for_log(text: str, *, limit: int = 240) -> str:
    compact = " ".join(text.split())
    if not compact:
        return "<empty>"
    if len(compact) <= limit:
        return compact
    return f"{compact[:limit]}..."


def _label_names(labels: list[object]) -> tuple[str, ...]:
    names: list[str] = []
    for entry in labels:
        if isinstance(entry, str):
            names.append(entry)
            continue
        entry_obj = _as_object_dict(entry)
        if entry_obj is None:
            continue
        name = entry_obj.get("name")
        if isinstance(name, str) and name:
            names.append(name)
    return tuple(names)


def _normalize_optional_lower_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized or None


def _as_object_dict(value: object) -> dict[str, object] | None:
    if not isinstance(value, dict):
        return None
    if not all(isinstance(key, str) for key in value.keys()):
        return None
    return cast(dict[str, object], value)


def _as_string(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return str(value)


def _as_optional_str(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return str(value)


def _as_login(value: object) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def _as_int(value: object, *, field: str) -> int:
    if isinstance(value, bool):
        raise GitHubApiError(f"Unexpected GitHub response type for {field}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError as exc:
            raise GitHubApiError(f"Unexpected GitHub response value for {field}: {value}") from exc
    raise GitHubApiError(f"Unexpected GitHub response type for {field}")
