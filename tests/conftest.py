from __future__ import annotations

from collections.abc import Iterable, Iterator
import logging

import pytest

from prgovernor.models import (
    CheckRun,
    CheckRunsSummary,
    CombinedStatus,
    PullRequestFile,
    PullRequestRef,
    PullRequestSnapshot,
    PullRequestSummary,
)
from prgovernor.pr_operations import PullRequestOperations


class FakePullRequestOperations(PullRequestOperations):
    """In-memory PR operations; label writes update ``labels`` so reruns see them."""

    def __init__(
        self,
        *,
        files: Iterable[PullRequestFile] = (),
        approvers: Iterable[str] = (),
        labels: Iterable[str] = (),
        head_sha: str = "abc123",
        check_runs: Iterable[CheckRun] = (),
        combined_status: CombinedStatus = CombinedStatus(state="pending", total_count=0),
        open_pull_requests: Iterable[PullRequestSummary] = (),
        errors: dict[tuple[str, int], Exception] | None = None,
    ) -> None:
        self.files = tuple(files)
        self.approvers = frozenset(approvers)
        self.labels: list[str] = list(labels)
        self.head_sha = head_sha
        self.check_runs = tuple(check_runs)
        self.combined_status = combined_status
        self.open_pull_requests = tuple(open_pull_requests)
        self.errors = dict(errors or {})
        self.calls: list[tuple[str, object]] = []

    def list_files(
        self, ref: PullRequestRef, *, early_exit_threshold: int | None = None
    ) -> tuple[PullRequestFile, ...]:
        self._record("list_files", ref, (ref, early_exit_threshold))
        return self.files

    def get_approver_logins(self, ref: PullRequestRef) -> frozenset[str]:
        self._record("get_approver_logins", ref, ref)
        return self.approvers

    def get_labels(self, ref: PullRequestRef) -> tuple[str, ...]:
        self._record("get_labels", ref, ref)
        return tuple(self.labels)

    def add_labels(self, ref: PullRequestRef, labels: tuple[str, ...] | list[str]) -> None:
        self._record("add_labels", ref, (ref, tuple(labels)))
        for label in labels:
            if label not in self.labels:
                self.labels.append(label)

    def remove_label(self, ref: PullRequestRef, label: str) -> None:
        self._record("remove_label", ref, (ref, label))
        self.labels.remove(label)

    def get(self, ref: PullRequestRef) -> PullRequestSnapshot:
        self._record("get", ref, ref)
        return PullRequestSnapshot(
            number=ref.pr_number,
            head_sha=self.head_sha,
            base_sha="base",
            state="open",
            draft=False,
            labels=tuple(self.labels),
        )

    def get_check_runs_for_ref(self, owner: str, repo: str, sha: str) -> CheckRunsSummary:
        self.calls.append(("get_check_runs_for_ref", (owner, repo, sha)))
        return CheckRunsSummary(total_count=len(self.check_runs), check_runs=self.check_runs)

    def get_combined_status(self, owner: str, repo: str, sha: str) -> CombinedStatus:
        self.calls.append(("get_combined_status", (owner, repo, sha)))
        return self.combined_status

    def list_open_pull_requests(
        self, owner: str, repo: str, *, per_page: int = 100
    ) -> tuple[PullRequestSummary, ...]:
        self.calls.append(("list_open_pull_requests", (owner, repo, per_page)))
        return self.open_pull_requests

    def called(self, name: str) -> list[object]:
        return [args for call_name, args in self.calls if call_name == name]

    def _record(self, name: str, ref: PullRequestRef, args: object) -> None:
        self.calls.append((name, args))
        error = self.errors.get((name, ref.pr_number))
        if error is not None:
            raise error


def make_file(filename: str, additions: int = 5, deletions: int = 0) -> PullRequestFile:
    return PullRequestFile(filename=filename, additions=additions, deletions=deletions)


def green_check(check_id: int = 1) -> CheckRun:
    return CheckRun(id=check_id, name=f"check-{check_id}", status="completed", conclusion="success")


@pytest.fixture(autouse=True)
def reset_prgovernor_logger() -> Iterator[None]:
    yield
    logger = logging.getLogger("prgovernor")
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
