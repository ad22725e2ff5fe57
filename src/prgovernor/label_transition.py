from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
import logging

from prgovernor.labels import find_matching_label
from prgovernor.models import Labeled, LabelTransition, Noop, PullRequestRef, Unlabeled
from prgovernor.observability import log_event
from prgovernor.pr_operations import PullRequestOperations
from prgovernor.signals import count_trusted_approvals, is_ci_passing


LOGGER = logging.getLogger("prgovernor.label_transition")


@dataclass(frozen=True)
class CheckStep:
    """One gate in an evaluation; ``check`` returns a failure reason or None."""

    name: str
    check: Callable[[], str | None]


def evaluate_label_transition(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    label: str,
    steps: Sequence[CheckStep],
    current_labels: Sequence[str] | None = None,
) -> LabelTransition:
    """Run ``steps`` in order and converge the PR's ``label`` on the verdict.

    Steps after the first failure never run. The label add or removal is the
    final remote call, so an exception from any step leaves labels untouched.
    Re-running with unchanged inputs returns ``Noop``.
    """
    labels = tuple(current_labels) if current_labels is not None else prs.get_labels(ref)
    present_label = find_matching_label(labels, label)

    for step in steps:
        reason = step.check()
        if reason is None:
            continue
        log_event(
            LOGGER,
            "label_check_failed",
            level=logging.DEBUG,
            label=label,
            pr_number=ref.pr_number,
            step=step.name,
            reason=reason,
        )
        if present_label is None:
            return Noop(labeled=False)
        prs.remove_label(ref, present_label)
        log_event(
            LOGGER,
            "label_removed",
            repo_full_name=ref.full_name,
            pr_number=ref.pr_number,
            label=present_label,
            reason=reason,
        )
        return Unlabeled(reason=reason)

    if present_label is not None:
        return Noop(labeled=True)
    prs.add_labels(ref, [label])
    log_event(
        LOGGER,
        "label_added",
        repo_full_name=ref.full_name,
        pr_number=ref.pr_number,
        label=label,
    )
    return Labeled()


def approvals_step(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    trusted_reviewers: Sequence[str],
    minimum: int,
) -> CheckStep:
    def check() -> str | None:
        approvers = prs.get_approver_logins(ref)
        trusted_approval_count = count_trusted_approvals(approvers, trusted_reviewers)
        if trusted_approval_count < minimum:
            return f"insufficient approvals: {trusted_approval_count}/{minimum}"
        return None

    return CheckStep(name="approvals", check=check)


def ci_step(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    head_sha: str | None,
) -> CheckStep:
    def check() -> str | None:
        sha = head_sha or prs.get(ref).head_sha
        if not is_ci_passing(prs, ref, sha):
            return "CI not passing"
        return None

    return CheckStep(name="ci", check=check)
