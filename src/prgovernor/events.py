"""Webhook event entry points.

Each handler loads the repository policy, works out which pull requests the
event affects and evaluates them as independent units. A failing unit never
stops its siblings: every failure is logged with its PR number and repository,
then reported together in one ``EventHandlingError`` once all units finished.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
import contextvars
import logging
from typing import Final, cast

from prgovernor.automerge import evaluate_automerge
from prgovernor.config import RepoPolicy
from prgovernor.merge_readiness import evaluate_merge_readiness
from prgovernor.models import (
    EvaluationFailure,
    EvaluationOutcome,
    LabelTransition,
    PullRequestRef,
)
from prgovernor.observability import log_event, logging_repo_context
from prgovernor.pr_operations import PullRequestOperations


LOGGER = logging.getLogger("prgovernor.events")
PolicyLoader = Callable[[str], RepoPolicy]
_OPEN_PR_PAGE_SIZE: Final[int] = 100
_IGNORED_PULL_REQUEST_ACTIONS: Final[frozenset[str]] = frozenset({"closed"})

_Unit = tuple[PullRequestRef, str, Callable[[], LabelTransition]]


class EventHandlingError(RuntimeError):
    def __init__(self, message: str, *, failures: Sequence[EvaluationFailure]) -> None:
        super().__init__(message)
        self.failures = tuple(failures)


class StatusEventError(EventHandlingError):
    pass


class PayloadError(ValueError):
    pass


def handle_status_event(
    *,
    payload: Mapping[str, object],
    prs: PullRequestOperations,
    load_policy: PolicyLoader,
    max_workers: int = 1,
) -> tuple[EvaluationOutcome, ...]:
    """Re-evaluate merge-readiness for open PRs whose head is the status commit."""
    sha = _require_str(payload, "sha", context="status payload")
    owner, name, full_name = _repository_identity(payload)

    with logging_repo_context(full_name):
        policy = load_policy(full_name)
        if policy.merge_ready is None:
            log_event(
                LOGGER,
                "status_event_skipped",
                level=logging.DEBUG,
                repo_full_name=full_name,
                reason="merge_ready_disabled",
            )
            return ()

        pulls = prs.list_open_pull_requests(owner, name, per_page=_OPEN_PR_PAGE_SIZE)
        matching = [pull for pull in pulls if pull.head_sha == sha]
        log_event(
            LOGGER,
            "status_event_matched",
            repo_full_name=full_name,
            sha=sha,
            open_pr_count=len(pulls),
            matched_pr_numbers=tuple(pull.number for pull in matching),
        )

        units = [
            _merge_readiness_unit(
                prs=prs,
                ref=PullRequestRef(owner=owner, repo=name, pr_number=pull.number),
                policy=policy,
                head_sha=sha,
            )
            for pull in matching
        ]
        outcomes, failures = _evaluate_all(units, max_workers=max_workers)

    if failures:
        raise StatusEventError(
            f"{len(failures)} PR(s) failed merge-readiness evaluation after status event",
            failures=failures,
        )
    return outcomes


def handle_check_run_event(
    *,
    payload: Mapping[str, object],
    prs: PullRequestOperations,
    load_policy: PolicyLoader,
    max_workers: int = 1,
) -> tuple[EvaluationOutcome, ...]:
    action = payload.get("action")
    check_run = _require_mapping(payload, "check_run", context="check_run payload")
    if action != "completed":
        log_event(LOGGER, "check_run_event_ignored", level=logging.DEBUG, action=action)
        return ()
    head_sha = _require_str(check_run, "head_sha", context="check_run")
    owner, name, full_name = _repository_identity(payload)

    with logging_repo_context(full_name):
        policy = load_policy(full_name)
        if policy.merge_ready is None:
            log_event(
                LOGGER,
                "check_run_event_skipped",
                level=logging.DEBUG,
                repo_full_name=full_name,
                reason="merge_ready_disabled",
            )
            return ()

        units: list[_Unit] = []
        for pull in _as_list(check_run.get("pull_requests")):
            pull_obj = _as_mapping(pull)
            if pull_obj is None:
                continue
            head = _as_mapping(pull_obj.get("head"))
            if head is None or head.get("sha") != head_sha:
                continue
            units.append(
                _merge_readiness_unit(
                    prs=prs,
                    ref=PullRequestRef(
                        owner=owner,
                        repo=name,
                        pr_number=_require_int(pull_obj, "number", context="check_run PR"),
                    ),
                    policy=policy,
                    head_sha=head_sha,
                )
            )
        outcomes, failures = _evaluate_all(units, max_workers=max_workers)

    if failures:
        raise EventHandlingError(
            f"{len(failures)} PR(s) failed merge-readiness evaluation after check_run event",
            failures=failures,
        )
    return outcomes


def handle_pull_request_event(
    *,
    payload: Mapping[str, object],
    prs: PullRequestOperations,
    load_policy: PolicyLoader,
) -> tuple[EvaluationOutcome, ...]:
    """Evaluate automerge, then merge-readiness, for the PR carried by the payload.

    Serves both ``pull_request`` and ``pull_request_review`` deliveries; the
    payload's head SHA and labels are used instead of refetching them.
    """
    action = payload.get("action")
    if isinstance(action, str) and action in _IGNORED_PULL_REQUEST_ACTIONS:
        log_event(LOGGER, "pull_request_event_ignored", level=logging.DEBUG, action=action)
        return ()
    pull = _require_mapping(payload, "pull_request", context="pull_request payload")
    owner, name, full_name = _repository_identity(payload)
    ref = PullRequestRef(
        owner=owner,
        repo=name,
        pr_number=_require_int(pull, "number", context="pull_request"),
    )
    head = _as_mapping(pull.get("head"))
    head_sha = head.get("sha") if head is not None else None
    labels_obj = pull.get("labels")
    current_labels = _label_names(labels_obj) if isinstance(labels_obj, list) else None

    with logging_repo_context(full_name):
        policy = load_policy(full_name)
        units: list[_Unit] = [
            (
                ref,
                "automerge",
                lambda: evaluate_automerge(
                    prs=prs,
                    ref=ref,
                    policy=policy.automerge,
                    trusted_reviewers=policy.trusted_reviewers,
                    head_sha=head_sha if isinstance(head_sha, str) else None,
                    current_labels=current_labels,
                ),
            ),
            _merge_readiness_unit(
                prs=prs,
                ref=ref,
                policy=policy,
                head_sha=head_sha if isinstance(head_sha, str) else None,
                current_labels=current_labels,
            ),
        ]
        outcomes, failures = _evaluate_all(units, max_workers=1)

    if failures:
        raise EventHandlingError(
            f"{len(failures)} evaluation(s) failed for {full_name}#{ref.pr_number}",
            failures=failures,
        )
    return outcomes


def dispatch_event(
    event_name: str,
    *,
    payload: Mapping[str, object],
    prs: PullRequestOperations,
    load_policy: PolicyLoader,
    max_workers: int = 1,
) -> tuple[EvaluationOutcome, ...]:
    log_event(LOGGER, "event_dispatched", event_name=event_name, action=payload.get("action"))
    if event_name == "status":
        return handle_status_event(
            payload=payload, prs=prs, load_policy=load_policy, max_workers=max_workers
        )
    if event_name == "check_run":
        return handle_check_run_event(
            payload=payload, prs=prs, load_policy=load_policy, max_workers=max_workers
        )
    if event_name in {"pull_request", "pull_request_review"}:
        return handle_pull_request_event(payload=payload, prs=prs, load_policy=load_policy)
    log_event(LOGGER, "event_unsupported", level=logging.DEBUG, event_name=event_name)
    return ()


def _merge_readiness_unit(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    policy: RepoPolicy,
    head_sha: str | None,
    current_labels: Sequence[str] | None = None,
) -> _Unit:
    return (
        ref,
        "merge_ready",
        lambda: evaluate_merge_readiness(
            prs=prs,
            ref=ref,
            policy=policy.merge_ready,
            trusted_reviewers=policy.trusted_reviewers,
            head_sha=head_sha,
            current_labels=current_labels,
        ),
    )


def _evaluate_all(
    units: Sequence[_Unit], *, max_workers: int
) -> tuple[tuple[EvaluationOutcome, ...], tuple[EvaluationFailure, ...]]:
    if not units:
        return (), ()

    outcomes: list[EvaluationOutcome] = []
    failures: list[EvaluationFailure] = []
    with ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(units))),
        thread_name_prefix="prgovernor-eval",
    ) as pool:
        futures = [
            (ref, evaluation, pool.submit(contextvars.copy_context().run, evaluate))
            for ref, evaluation, evaluate in units
        ]
        # Gather in submission order so logs follow the PR listing order.
        for ref, evaluation, future in futures:
            try:
                transition = future.result()
            except Exception as exc:  # noqa: BLE001
                failure = EvaluationFailure(
                    repo_full_name=ref.full_name,
                    pr_number=ref.pr_number,
                    evaluation=evaluation,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                failures.append(failure)
                log_event(
                    LOGGER,
                    f"{evaluation}_evaluation_failed",
                    level=logging.ERROR,
                    repo_full_name=failure.repo_full_name,
                    pr_number=failure.pr_number,
                    error_type=failure.error_type,
                    error=failure.error,
                )
                continue
            outcomes.append(EvaluationOutcome(ref=ref, evaluation=evaluation, transition=transition))
            log_event(
                LOGGER,
                "evaluation_completed",
                repo_full_name=ref.full_name,
                pr_number=ref.pr_number,
                evaluation=evaluation,
                action=transition.action,
            )
    return tuple(outcomes), tuple(failures)


def _repository_identity(payload: Mapping[str, object]) -> tuple[str, str, str]:
    repository = _require_mapping(payload, "repository", context="payload")
    name = _require_str(repository, "name", context="repository")
    owner_obj = _as_mapping(repository.get("owner"))
    owner = owner_obj.get("login") if owner_obj is not None else None
    if not isinstance(owner, str) or not owner:
        raise PayloadError("repository.owner.login is required and must be a non-empty string")
    full_name = repository.get("full_name")
    if not isinstance(full_name, str) or not full_name:
        full_name = f"{owner}/{name}"
    return owner, name, full_name


def _label_names(labels: list[object]) -> tuple[str, ...]:
    names: list[str] = []
    for entry in labels:
        entry_obj = _as_mapping(entry)
        name = entry_obj.get("name") if entry_obj is not None else entry
        if isinstance(name, str) and name:
            names.append(name)
    return tuple(names)


def _require_mapping(
    data: Mapping[str, object], key: str, *, context: str
) -> Mapping[str, object]:
    value = _as_mapping(data.get(key))
    if value is None:
        raise PayloadError(f"{context}: {key} is required and must be an object")
    return value


def _require_str(data: Mapping[str, object], key: str, *, context: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise PayloadError(f"{context}: {key} is required and must be a non-empty string")
    return value


def _require_int(data: Mapping[str, object], key: str, *, context: str) -> int:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise PayloadError(f"{context}: {key} is required and must be an integer")
    return value


def _as_mapping(value: object) -> Mapping[str, object] | None:
    if not isinstance(value, Mapping):
        return None
    return cast(Mapping[str, object], value)


def _as_list(value: object) -> list[object]:
    if not isinstance(value, list):
        return []
    return cast(list[object], value)
