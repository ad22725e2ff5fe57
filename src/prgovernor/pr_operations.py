from __future__ import annotations

from abc import ABC, abstractmethod

from prgovernor.models import (
    CheckRunsSummary,
    CombinedStatus,
    PullRequestFile,
    PullRequestRef,
    PullRequestSnapshot,
    PullRequestSummary,
)


class PullRequestOperations(ABC):
    """Remote pull-request reads and label writes used by the evaluators.

    Implementations may raise transient or permanent errors; callers decide
    what to retry with ``is_transient_error``.
    """

    @abstractmethod
    def list_files(
        self, ref: PullRequestRef, *, early_exit_threshold: int | None = None
    ) -> tuple[PullRequestFile, ...]:
        """List changed files; may stop once more than ``early_exit_threshold`` are seen."""

    @abstractmethod
    def get_approver_logins(self, ref: PullRequestRef) -> frozenset[str]:
        """Lowercased logins whose current review verdict is an approval."""

    @abstractmethod
    def get_labels(self, ref: PullRequestRef) -> tuple[str, ...]:
        """Label names currently applied to the pull request."""

    @abstractmethod
    def add_labels(self, ref: PullRequestRef, labels: tuple[str, ...] | list[str]) -> None:
        """Apply labels to the pull request."""

    @abstractmethod
    def remove_label(self, ref: PullRequestRef, label: str) -> None:
        """Remove one label from the pull request."""

    @abstractmethod
    def get(self, ref: PullRequestRef) -> PullRequestSnapshot:
        """Fetch the pull request, including its head SHA."""

    @abstractmethod
    def get_check_runs_for_ref(self, owner: str, repo: str, sha: str) -> CheckRunsSummary:
        """Check runs reported against a commit."""

    @abstractmethod
    def get_combined_status(self, owner: str, repo: str, sha: str) -> CombinedStatus:
        """Legacy combined commit status for a commit."""

    @abstractmethod
    def list_open_pull_requests(
        self, owner: str, repo: str, *, per_page: int = 100
    ) -> tuple[PullRequestSummary, ...]:
        """One page of open pull requests, most recently updated first."""
