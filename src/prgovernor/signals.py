from __future__ import annotations

from collections.abc import Iterable
import logging
from typing import Final

from prgovernor.models import CheckRun, CombinedStatus, PullRequestRef
from prgovernor.observability import log_event
from prgovernor.pr_operations import PullRequestOperations


LOGGER = logging.getLogger("prgovernor.signals")
_GREEN_CONCLUSIONS: Final[frozenset[str]] = frozenset({"success", "neutral", "skipped"})
_FAILING_COMBINED_STATES: Final[frozenset[str]] = frozenset({"failure", "error"})


def count_trusted_approvals(
    approver_logins: Iterable[str], trusted_reviewers: Iterable[str]
) -> int:
    # The approver source already drops stale and dismissed reviews.
    approvers = {login.strip().lower() for login in approver_logins}
    trusted = {login.strip().lower() for login in trusted_reviewers}
    trusted.discard("")
    return len(approvers & trusted)


def ci_signals_pass(check_runs: Iterable[CheckRun], combined_status: CombinedStatus | None) -> bool:
    for check_run in check_runs:
        if check_run.status != "completed":
            return False
        if check_run.conclusion not in _GREEN_CONCLUSIONS:
            return False
    if combined_status is None or combined_status.total_count == 0:
        return True
    return combined_status.state not in _FAILING_COMBINED_STATES


def is_ci_passing(prs: PullRequestOperations, ref: PullRequestRef, head_sha: str) -> bool:
    """Combine check runs and the legacy combined status for ``head_sha``.

    A commit with no CI at all passes, so repositories without CI are never
    blocked.
    """
    check_runs = prs.get_check_runs_for_ref(ref.owner, ref.repo, head_sha)
    combined_status = prs.get_combined_status(ref.owner, ref.repo, head_sha)
    passing = ci_signals_pass(check_runs.check_runs, combined_status)
    log_event(
        LOGGER,
        "ci_signals_evaluated",
        level=logging.DEBUG,
        pr_number=ref.pr_number,
        head_sha=head_sha,
        check_run_count=check_runs.total_count,
        combined_state=combined_status.state,
        combined_count=combined_status.total_count,
        passing=passing,
    )
    return passing
