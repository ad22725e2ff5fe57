from __future__ import annotations

from collections.abc import Sequence
import logging

from prgovernor.config import MergeReadyPolicy
from prgovernor.label_transition import approvals_step, ci_step, evaluate_label_transition
from prgovernor.labels import LABELS
from prgovernor.models import LabelTransition, PullRequestRef, Skipped
from prgovernor.observability import log_event
from prgovernor.pr_operations import PullRequestOperations


LOGGER = logging.getLogger("prgovernor.merge_readiness")


def evaluate_merge_readiness(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    policy: MergeReadyPolicy | None,
    trusted_reviewers: Sequence[str],
    head_sha: str | None = None,
    current_labels: Sequence[str] | None = None,
) -> LabelTransition:
    """Label the PR merge-ready once trusted approvals and CI both pass."""
    if policy is None:
        log_event(
            LOGGER,
            "merge_ready_skipped",
            level=logging.DEBUG,
            repo_full_name=ref.full_name,
            pr_number=ref.pr_number,
        )
        return Skipped(reason="feature disabled")

    steps = [
        approvals_step(
            prs=prs,
            ref=ref,
            trusted_reviewers=trusted_reviewers,
            minimum=policy.required_approvals,
        )
    ]
    if policy.require_checks:
        steps.append(ci_step(prs=prs, ref=ref, head_sha=head_sha))

    return evaluate_label_transition(
        prs=prs,
        ref=ref,
        label=LABELS.MERGE_READY,
        steps=steps,
        current_labels=current_labels,
    )
