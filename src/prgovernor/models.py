from __future__ import annotations

from dataclasses import dataclass
from typing import ClassVar, Literal


LabelAction = Literal["skipped", "labeled", "unlabeled", "noop"]
CheckRunStatus = Literal["queued", "in_progress", "completed"]


@dataclass(frozen=True)
class PullRequestRef:
    owner: str
    repo: str
    pr_number: int

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class PullRequestFile:
    filename: str
    additions: int
    deletions: int
    status: str = "modified"
    previous_filename: str | None = None

    @property
    def changes(self) -> int:
        return self.additions + self.deletions


@dataclass(frozen=True)
class PullRequestSnapshot:
    number: int
    head_sha: str
    base_sha: str
    state: str
    draft: bool
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class PullRequestSummary:
    number: int
    head_sha: str
    labels: tuple[str, ...] = ()


@dataclass(frozen=True)
class CheckRun:
    id: int
    name: str
    status: str
    conclusion: str | None


@dataclass(frozen=True)
class CheckRunsSummary:
    total_count: int
    check_runs: tuple[CheckRun, ...]


@dataclass(frozen=True)
class CombinedStatus:
    state: str
    total_count: int


@dataclass(frozen=True)
class ClassificationResult:
    eligible: bool
    reason: str


@dataclass(frozen=True)
class Skipped:
    action: ClassVar[LabelAction] = "skipped"
    reason: str


@dataclass(frozen=True)
class Labeled:
    action: ClassVar[LabelAction] = "labeled"


@dataclass(frozen=True)
class Unlabeled:
    action: ClassVar[LabelAction] = "unlabeled"
    reason: str


@dataclass(frozen=True)
class Noop:
    action: ClassVar[LabelAction] = "noop"
    labeled: bool


LabelTransition = Skipped | Labeled | Unlabeled | Noop


@dataclass(frozen=True)
class EvaluationFailure:
    repo_full_name: str
    pr_number: int
    evaluation: str
    error_type: str
    error: str


@dataclass(frozen=True)
class EvaluationOutcome:
    ref: PullRequestRef
    evaluation: str
    transition: LabelTransition
