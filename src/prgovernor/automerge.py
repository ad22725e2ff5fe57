"""Automerge eligibility labeling.

Checks run cheapest first and stop at the first failure: changed files
(count, size, path rules), then trusted approvals, then CI when the policy
requires it. Passing PRs get ``LABELS.AUTOMERGE``; nothing is merged.
"""

from __future__ import annotations

from collections.abc import Sequence
import logging

from prgovernor.config import AutomergePolicy
from prgovernor.file_rules import classify_files
from prgovernor.label_transition import (
    CheckStep,
    approvals_step,
    ci_step,
    evaluate_label_transition,
)
from prgovernor.labels import LABELS
from prgovernor.models import LabelTransition, PullRequestRef, Skipped
from prgovernor.observability import log_event
from prgovernor.pr_operations import PullRequestOperations


LOGGER = logging.getLogger("prgovernor.automerge")


def evaluate_automerge(
    *,
    prs: PullRequestOperations,
    ref: PullRequestRef,
    policy: AutomergePolicy | None,
    trusted_reviewers: Sequence[str],
    head_sha: str | None = None,
    current_labels: Sequence[str] | None = None,
) -> LabelTransition:
    if policy is None:
        log_event(
            LOGGER,
            "automerge_skipped",
            level=logging.DEBUG,
            repo_full_name=ref.full_name,
            pr_number=ref.pr_number,
        )
        return Skipped(reason="feature disabled")

    steps = [
        _files_step(prs=prs, ref=ref, policy=policy),
        approvals_step(
            prs=prs,
            ref=ref,
            trusted_reviewers=trusted_reviewers,
            minimum=policy.min_approvals,
        ),
    ]
    if policy.require_checks:
        steps.append(ci_step(prs=prs, ref=ref, head_sha=head_sha))

    return evaluate_label_transition(
        prs=prs,
        ref=ref,
        label=LABELS.AUTOMERGE,
        steps=steps,
        current_labels=current_labels,
    )


def _files_step(
    *, prs: PullRequestOperations, ref: PullRequestRef, policy: AutomergePolicy
) -> CheckStep:
    def check() -> str | None:
        files = prs.list_files(ref, early_exit_threshold=policy.max_files)
        classification = classify_files(files, policy)
        if classification.eligible:
            return None
        return classification.reason

    return CheckStep(name="files", check=check)
