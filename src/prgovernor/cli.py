from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

from prgovernor.automerge import evaluate_automerge
from prgovernor.config import AppConfig, load_config
from prgovernor.events import EventHandlingError, dispatch_event
from prgovernor.github_gateway import GitHubGateway
from prgovernor.merge_readiness import evaluate_merge_readiness
from prgovernor.models import EvaluationOutcome, LabelTransition, PullRequestRef
from prgovernor.observability import configure_logging, logging_repo_context


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="prgovernor")
    subparsers = parser.add_subparsers(dest="command", required=True)

    evaluate_parser = subparsers.add_parser(
        "evaluate", help="Evaluate automerge and merge-readiness labels for one pull request"
    )
    _add_common_arguments(evaluate_parser)
    evaluate_parser.add_argument("--repo", type=str, required=True, help="owner/name")
    evaluate_parser.add_argument("--pr", type=int, required=True, help="Pull request number")
    evaluate_parser.add_argument(
        "--json",
        action="store_true",
        help="Print outcomes as JSON",
    )

    event_parser = subparsers.add_parser(
        "handle-event", help="Process a stored GitHub webhook payload"
    )
    _add_common_arguments(event_parser)
    event_parser.add_argument(
        "--event",
        type=str,
        required=True,
        help="GitHub event name (status, check_run, pull_request, pull_request_review)",
    )
    event_parser.add_argument(
        "--payload",
        type=Path,
        required=True,
        help="Path to the JSON webhook payload ('-' reads stdin)",
    )

    return parser


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=Path("prgovernor.toml"))
    parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        choices=("low", "high"),
        default=None,
        help="Enable runtime logging to stderr (default mode: high)",
    )


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(args.verbose, log_dir=config.runtime.log_dir)

    if args.command == "evaluate":
        _cmd_evaluate(
            config,
            repo_full_name=str(args.repo),
            pr_number=int(args.pr),
            as_json=bool(args.json),
        )
        return
    if args.command == "handle-event":
        exit_code = _cmd_handle_event(
            config, event_name=str(args.event), payload_path=args.payload
        )
        if exit_code:
            raise SystemExit(exit_code)
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_evaluate(
    config: AppConfig, *, repo_full_name: str, pr_number: int, as_json: bool
) -> None:
    owner, name = _split_repo_full_name(repo_full_name)
    ref = PullRequestRef(owner=owner, repo=name, pr_number=pr_number)
    policy = config.policy_for(ref.full_name)
    github = _build_gateway(config)

    with logging_repo_context(ref.full_name):
        head_sha: str | None = None
        current_labels: tuple[str, ...] | None = None
        if policy.automerge is not None or policy.merge_ready is not None:
            snapshot = github.get(ref)
            head_sha = snapshot.head_sha
            current_labels = snapshot.labels
        automerge = evaluate_automerge(
            prs=github,
            ref=ref,
            policy=policy.automerge,
            trusted_reviewers=policy.trusted_reviewers,
            head_sha=head_sha,
            current_labels=current_labels,
        )
        merge_ready = evaluate_merge_readiness(
            prs=github,
            ref=ref,
            policy=policy.merge_ready,
            trusted_reviewers=policy.trusted_reviewers,
            head_sha=head_sha,
            current_labels=current_labels,
        )

    outcomes = (
        EvaluationOutcome(ref=ref, evaluation="automerge", transition=automerge),
        EvaluationOutcome(ref=ref, evaluation="merge_ready", transition=merge_ready),
    )
    _print_outcomes(outcomes, as_json=as_json)


def _cmd_handle_event(config: AppConfig, *, event_name: str, payload_path: Path) -> int:
    payload = _read_payload(payload_path)
    try:
        outcomes = dispatch_event(
            event_name,
            payload=payload,
            prs=_build_gateway(config),
            load_policy=config.policy_for,
            max_workers=config.runtime.fanout_workers,
        )
    except EventHandlingError as exc:
        print(str(exc), file=sys.stderr)
        for failure in exc.failures:
            print(
                f"repo={failure.repo_full_name} pr_number={failure.pr_number} "
                f"evaluation={failure.evaluation} error_type={failure.error_type} "
                f"error={failure.error}",
                file=sys.stderr,
            )
        return 1
    _print_outcomes(outcomes, as_json=False)
    return 0


def _print_outcomes(outcomes: tuple[EvaluationOutcome, ...], *, as_json: bool) -> None:
    if as_json:
        payload = [
            {
                "repo_full_name": outcome.ref.full_name,
                "pr_number": outcome.ref.pr_number,
                "evaluation": outcome.evaluation,
                **_transition_fields(outcome.transition),
            }
            for outcome in outcomes
        ]
        print(json.dumps(payload, indent=2))
        return

    if not outcomes:
        print("No pull requests evaluated.")
        return
    for outcome in outcomes:
        fields = " ".join(
            f"{key}={value}" for key, value in _transition_fields(outcome.transition).items()
        )
        print(
            f"repo={outcome.ref.full_name} pr_number={outcome.ref.pr_number} "
            f"evaluation={outcome.evaluation} {fields}"
        )


def _transition_fields(transition: LabelTransition) -> dict[str, object]:
    fields: dict[str, object] = {"action": transition.action}
    reason = getattr(transition, "reason", None)
    if reason is not None:
        fields["reason"] = reason
    labeled = getattr(transition, "labeled", None)
    if labeled is not None:
        fields["labeled"] = labeled
    return fields


def _read_payload(path: Path) -> dict[str, object]:
    raw = sys.stdin.read() if str(path) == "-" else path.read_text(encoding="utf-8")
    payload = json.loads(raw)
    if not isinstance(payload, dict):
        raise RuntimeError("Webhook payload must be a JSON object")
    return payload


def _build_gateway(config: AppConfig) -> GitHubGateway:
    return GitHubGateway(
        max_attempts=config.runtime.github_max_attempts,
        retry_backoff_seconds=config.runtime.github_retry_backoff_seconds,
    )


def _split_repo_full_name(raw: str) -> tuple[str, str]:
    owner, sep, name = raw.strip().partition("/")
    if not sep or not owner or not name or "/" in name:
        raise RuntimeError(f"--repo must look like owner/name, got {raw!r}")
    return owner, name
