from __future__ import annotations

from hypothesis import given, strategies as st
import pytest

from conftest import FakePullRequestOperations, green_check
from prgovernor.models import CheckRun, CombinedStatus, PullRequestRef
from prgovernor.signals import ci_signals_pass, count_trusted_approvals, is_ci_passing


REF = PullRequestRef(owner="acme", repo="docs", pr_number=7)


def test_count_trusted_approvals_is_case_insensitive() -> None:
    assert count_trusted_approvals({"alice", "Bob", "mallory"}, ("ALICE", "bob")) == 2
    assert count_trusted_approvals({"mallory"}, ("alice",)) == 0
    assert count_trusted_approvals((), ("alice",)) == 0
    assert count_trusted_approvals({"alice"}, ()) == 0


def test_count_trusted_approvals_counts_each_login_once() -> None:
    assert count_trusted_approvals(["alice", "ALICE", " alice "], ("alice",)) == 1


def test_no_ci_at_all_passes() -> None:
    assert ci_signals_pass((), CombinedStatus(state="pending", total_count=0)) is True
    assert ci_signals_pass((), None) is True


@pytest.mark.parametrize("conclusion", ["success", "neutral", "skipped"])
def test_green_conclusions_pass(conclusion: str) -> None:
    run = CheckRun(id=1, name="lint", status="completed", conclusion=conclusion)
    assert ci_signals_pass((run,), CombinedStatus(state="success", total_count=1)) is True


@pytest.mark.parametrize(
    "conclusion", ["failure", "cancelled", "timed_out", "action_required", "stale", None]
)
def test_other_conclusions_fail(conclusion: str | None) -> None:
    run = CheckRun(id=1, name="lint", status="completed", conclusion=conclusion)
    assert ci_signals_pass((green_check(2), run), None) is False


@pytest.mark.parametrize("status", ["queued", "in_progress"])
def test_unfinished_check_runs_fail(status: str) -> None:
    run = CheckRun(id=1, name="build", status=status, conclusion=None)
    assert ci_signals_pass((run,), None) is False


@pytest.mark.parametrize(
    ("state", "expected"),
    [("success", True), ("pending", True), ("failure", False), ("error", False)],
)
def test_combined_status_states(state: str, expected: bool) -> None:
    assert ci_signals_pass((green_check(),), CombinedStatus(state=state, total_count=2)) is expected


def test_failing_state_without_statuses_is_ignored() -> None:
    assert ci_signals_pass((), CombinedStatus(state="failure", total_count=0)) is True


def test_is_ci_passing_reads_both_sources_for_the_sha() -> None:
    prs = FakePullRequestOperations(
        check_runs=(green_check(1), green_check(2)),
        combined_status=CombinedStatus(state="success", total_count=1),
    )
    assert is_ci_passing(prs, REF, "deadbeef") is True
    assert prs.called("get_check_runs_for_ref") == [("acme", "docs", "deadbeef")]
    assert prs.called("get_combined_status") == [("acme", "docs", "deadbeef")]


def test_is_ci_passing_fails_on_red_combined_status() -> None:
    prs = FakePullRequestOperations(
        check_runs=(green_check(),),
        combined_status=CombinedStatus(state="error", total_count=3),
    )
    assert is_ci_passing(prs, REF, "deadbeef") is False


_check_runs = st.lists(
    st.builds(
        CheckRun,
        id=st.integers(min_value=1, max_value=1000),
        name=st.sampled_from(["lint", "test", "build"]),
        status=st.sampled_from(["queued", "in_progress", "completed"]),
        conclusion=st.sampled_from([None, "success", "neutral", "skipped", "failure"]),
    ),
    max_size=6,
)


@given(_check_runs)
def test_one_non_green_run_fails_everything(runs: list[CheckRun]) -> None:
    expected = all(
        run.status == "completed" and run.conclusion in {"success", "neutral", "skipped"}
        for run in runs
    )
    assert ci_signals_pass(runs, None) is expected
