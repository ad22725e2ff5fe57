from __future__ import annotations

import logging

import pytest

from conftest import FakePullRequestOperations, green_check, make_file
from prgovernor.config import AutomergePolicy, MergeReadyPolicy, RepoPolicy
from prgovernor.events import (
    EventHandlingError,
    PayloadError,
    StatusEventError,
    dispatch_event,
    handle_check_run_event,
    handle_pull_request_event,
    handle_status_event,
)
from prgovernor.labels import LABELS
from prgovernor.models import Labeled, Noop, PullRequestSummary, Skipped, Unlabeled


MERGE_READY_POLICY = RepoPolicy(
    merge_ready=MergeReadyPolicy(required_approvals=1),
    trusted_reviewers=("alice",),
)


def _repository() -> dict[str, object]:
    return {"name": "api", "full_name": "acme/api", "owner": {"login": "acme"}}


def _status_payload(sha: str = "abc123") -> dict[str, object]:
    return {"sha": sha, "state": "success", "repository": _repository()}


def _loader(policy: RepoPolicy):
    seen: list[str] = []

    def load(full_name: str) -> RepoPolicy:
        seen.append(full_name)
        return policy

    return load, seen


def test_status_event_with_merge_ready_disabled_lists_nothing() -> None:
    prs = FakePullRequestOperations()
    load, seen = _loader(RepoPolicy())

    result = handle_status_event(payload=_status_payload(), prs=prs, load_policy=load)

    assert result == ()
    assert seen == ["acme/api"]
    assert prs.calls == []


def test_status_event_evaluates_only_prs_at_the_sha_in_listing_order() -> None:
    prs = FakePullRequestOperations(
        approvers={"alice"},
        check_runs=(green_check(),),
        open_pull_requests=(
            PullRequestSummary(number=11, head_sha="abc123"),
            PullRequestSummary(number=12, head_sha="def456"),
            PullRequestSummary(number=13, head_sha="abc123"),
        ),
    )
    load, _ = _loader(MERGE_READY_POLICY)

    outcomes = handle_status_event(payload=_status_payload(), prs=prs, load_policy=load)

    assert [outcome.ref.pr_number for outcome in outcomes] == [11, 13]
    assert all(outcome.evaluation == "merge_ready" for outcome in outcomes)
    assert prs.called("list_open_pull_requests") == [("acme", "api", 100)]
    assert [ref.pr_number for ref in prs.called("get_approver_logins")] == [11, 13]
    assert {call[2] for call in prs.called("get_check_runs_for_ref")} == {"abc123"}


def test_status_event_with_no_matching_prs_is_empty() -> None:
    prs = FakePullRequestOperations(
        open_pull_requests=(PullRequestSummary(number=5, head_sha="other"),)
    )
    load, _ = _loader(MERGE_READY_POLICY)
    assert handle_status_event(payload=_status_payload(), prs=prs, load_policy=load) == ()
    assert prs.called("get_approver_logins") == []


@pytest.mark.parametrize("max_workers", [1, 4])
def test_status_event_isolates_failures(
    max_workers: int, caplog: pytest.LogCaptureFixture
) -> None:
    prs = FakePullRequestOperations(
        approvers={"alice"},
        open_pull_requests=(
            PullRequestSummary(number=1, head_sha="abc123"),
            PullRequestSummary(number=2, head_sha="abc123"),
            PullRequestSummary(number=3, head_sha="abc123"),
        ),
        errors={("get_approver_logins", 2): RuntimeError("boom")},
    )
    load, _ = _loader(MERGE_READY_POLICY)
    caplog.set_level(logging.ERROR, logger="prgovernor")

    with pytest.raises(StatusEventError) as exc_info:
        handle_status_event(
            payload=_status_payload(), prs=prs, load_policy=load, max_workers=max_workers
        )

    error = exc_info.value
    assert str(error) == "1 PR(s) failed merge-readiness evaluation after status event"
    assert len(error.failures) == 1
    failure = error.failures[0]
    assert failure.pr_number == 2
    assert failure.repo_full_name == "acme/api"
    assert failure.error_type == "RuntimeError"
    assert failure.error == "boom"
    assert sorted(ref.pr_number for ref in prs.called("get_approver_logins")) == [1, 2, 3]
    assert "event=merge_ready_evaluation_failed" in caplog.text
    assert "pr_number=2" in caplog.text


def test_status_event_requires_sha_and_repository() -> None:
    load, _ = _loader(MERGE_READY_POLICY)
    prs = FakePullRequestOperations()
    with pytest.raises(PayloadError, match="sha"):
        handle_status_event(payload={"repository": _repository()}, prs=prs, load_policy=load)
    with pytest.raises(PayloadError, match="owner.login"):
        handle_status_event(
            payload={"sha": "abc", "repository": {"name": "api"}}, prs=prs, load_policy=load
        )


def test_check_run_event_uses_linked_pull_requests() -> None:
    prs = FakePullRequestOperations(approvers={"alice"}, check_runs=(green_check(),))
    load, _ = _loader(MERGE_READY_POLICY)
    payload = {
        "action": "completed",
        "repository": _repository(),
        "check_run": {
            "head_sha": "abc123",
            "pull_requests": [
                {"number": 7, "head": {"sha": "abc123"}},
                {"number": 8, "head": {"sha": "stale"}},
            ],
        },
    }

    outcomes = handle_check_run_event(payload=payload, prs=prs, load_policy=load)

    assert [outcome.ref.pr_number for outcome in outcomes] == [7]
    assert outcomes[0].transition == Labeled()
    assert prs.called("list_open_pull_requests") == []


def test_check_run_event_ignores_unfinished_runs() -> None:
    prs = FakePullRequestOperations()
    load, seen = _loader(MERGE_READY_POLICY)
    payload = {
        "action": "created",
        "repository": _repository(),
        "check_run": {"head_sha": "abc123", "pull_requests": []},
    }
    assert handle_check_run_event(payload=payload, prs=prs, load_policy=load) == ()
    assert seen == []


def test_check_run_failures_raise_event_handling_error() -> None:
    prs = FakePullRequestOperations(errors={("get_labels", 7): RuntimeError("nope")})
    load, _ = _loader(MERGE_READY_POLICY)
    payload = {
        "action": "completed",
        "repository": _repository(),
        "check_run": {"head_sha": "abc", "pull_requests": [{"number": 7, "head": {"sha": "abc"}}]},
    }
    with pytest.raises(EventHandlingError) as exc_info:
        handle_check_run_event(payload=payload, prs=prs, load_policy=load)
    assert not isinstance(exc_info.value, StatusEventError)
    assert exc_info.value.failures[0].pr_number == 7


def _pull_request_payload(action: str = "synchronize") -> dict[str, object]:
    return {
        "action": action,
        "repository": _repository(),
        "pull_request": {
            "number": 21,
            "head": {"sha": "feed"},
            "labels": [{"name": "automerge"}, {"name": "docs"}],
        },
    }


def test_pull_request_event_runs_both_evaluations_in_order() -> None:
    policy = RepoPolicy(
        automerge=AutomergePolicy(
            allowed_paths=("**/*.md",),
            deny_paths=(),
            max_files=5,
            max_changed_lines=100,
            min_approvals=1,
        ),
        merge_ready=MergeReadyPolicy(required_approvals=1),
        trusted_reviewers=("alice",),
    )
    prs = FakePullRequestOperations(
        files=(make_file("README.md"),), approvers={"alice"}, check_runs=(green_check(),)
    )
    load, _ = _loader(policy)

    outcomes = handle_pull_request_event(
        payload=_pull_request_payload(), prs=prs, load_policy=load
    )

    assert [outcome.evaluation for outcome in outcomes] == ["automerge", "merge_ready"]
    assert outcomes[0].transition == Noop(labeled=True)
    assert outcomes[1].transition == Labeled()
    assert prs.called("get_labels") == []
    assert prs.called("get") == []
    assert {call[2] for call in prs.called("get_check_runs_for_ref")} == {"feed"}
    assert prs.called("add_labels")[0][1] == (LABELS.MERGE_READY,)


def test_pull_request_event_ignores_closed_prs() -> None:
    prs = FakePullRequestOperations()
    load, seen = _loader(MERGE_READY_POLICY)
    result = handle_pull_request_event(
        payload=_pull_request_payload("closed"), prs=prs, load_policy=load
    )
    assert result == ()
    assert seen == []


def test_dispatch_routes_known_events() -> None:
    prs = FakePullRequestOperations()
    load, _ = _loader(RepoPolicy())

    review = dispatch_event(
        "pull_request_review", payload=_pull_request_payload("submitted"), prs=prs, load_policy=load
    )
    assert [outcome.transition for outcome in review] == [
        Skipped(reason="feature disabled"),
        Skipped(reason="feature disabled"),
    ]
    assert dispatch_event("status", payload=_status_payload(), prs=prs, load_policy=load) == ()
    assert dispatch_event("push", payload={}, prs=prs, load_policy=load) == ()


def test_review_event_with_one_trusted_approval_unlabels_automerge() -> None:
    policy = RepoPolicy(
        automerge=AutomergePolicy(
            allowed_paths=("**/*.md", "**/*.txt", "docs/**"),
            deny_paths=(".github/**", "package.json"),
            max_files=5,
            max_changed_lines=80,
            min_approvals=2,
        ),
        trusted_reviewers=("alice", "bob"),
    )
    prs = FakePullRequestOperations(
        files=(make_file("README.md", 10, 5), make_file("docs/guide.md", 15, 10)),
        approvers={"alice", "mallory"},
        labels=["prgovernor:automerge"],
        check_runs=(green_check(),),
    )
    load, _ = _loader(policy)
    payload = {
        "action": "submitted",
        "repository": _repository(),
        "pull_request": {
            "number": 21,
            "head": {"sha": "feed"},
            "labels": [{"name": "prgovernor:automerge"}],
        },
    }

    outcomes = dispatch_event("pull_request_review", payload=payload, prs=prs, load_policy=load)

    assert [outcome.transition for outcome in outcomes] == [
        Unlabeled(reason="insufficient approvals: 1/2"),
        Skipped(reason="feature disabled"),
    ]
    assert [label for _, label in prs.called("remove_label")] == [LABELS.AUTOMERGE]
    assert prs.called("get_labels") == []
    assert prs.called("get_check_runs_for_ref") == []
