"""Cycle report formatting functions.

Provides human-readable and machine-readable output for sync cycles:

- ``format_outcome`` -- summary of one one-way pass.
- ``format_cycle_report`` -- both passes of a cycle.
- ``outcome_to_json`` -- structured dict for ``once --json`` output.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .models import ApplyStatus, ChangeKind

if TYPE_CHECKING:
    from .models import ApplyResult, SyncOutcome


_HEADINGS = {
    ChangeKind.CREATE: "Created",
    ChangeKind.UPDATE: "Updated",
    ChangeKind.RENAME: "Renamed",
    ChangeKind.DELETE: "Deleted",
}


def _label(result: ApplyResult) -> str:
    if result.change == ChangeKind.RENAME:
        return f"{result.old_path} -> {result.path}"
    return result.path


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_outcome(outcome: SyncOutcome) -> str:
    """Format one replication pass as human-readable text.

    Applied changes are grouped by change kind.  Skipped paths are
    summarised by reason only to avoid excessive output; failures are
    listed with their error.

    Args:
        outcome: The completed pass.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = [outcome.summary()]

    groups: dict[ChangeKind, list[ApplyResult]] = defaultdict(list)
    for r in outcome.applied:
        groups[r.change].append(r)

    for kind in _HEADINGS:
        if kind not in groups:
            continue
        lines.append(f"  {_HEADINGS[kind]}:")
        for r in groups[kind]:
            lines.append(f"    {_label(r)}")

    if outcome.failed:
        lines.append("  Failed:")
        for r in outcome.failed:
            lines.append(f"    {_label(r)}: {r.error}")

    reasons = outcome.skip_reasons()
    if reasons:
        parts = ", ".join(
            f"{n} {reason}" for reason, n in sorted(reasons.items())
        )
        lines.append(f"  Skipped: {parts}")

    return "\n".join(lines)


def format_cycle_report(outcomes: list[SyncOutcome]) -> str:
    """Format every pass of a cycle, separated by blank lines.

    Returns ``"No changes."`` when no pass considered anything.
    """
    if not any(o.results for o in outcomes):
        return "No changes."
    return "\n\n".join(format_outcome(o) for o in outcomes if o.results)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def outcome_to_json(outcome: SyncOutcome) -> dict:
    """Convert a pass outcome to a structured dict for JSON serialisation.

    Args:
        outcome: The pass outcome.

    Returns:
        Dict with roots, timestamps, counts, and per-result details.
    """
    results_list = []
    for r in outcome.results:
        entry: dict = {
            "path": r.path,
            "change": r.change.value,
            "status": r.status.value,
        }
        if r.old_path:
            entry["old_path"] = r.old_path
        if r.reason:
            entry["reason"] = r.reason
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "source_root": outcome.source_root,
        "dest_root": outcome.dest_root,
        "started_at": outcome.started_at,
        "completed_at": outcome.completed_at,
        "counts": {
            "considered": outcome.considered,
            ApplyStatus.APPLIED.value: len(outcome.applied),
            ApplyStatus.SKIPPED.value: len(outcome.skipped),
            ApplyStatus.FAILED.value: len(outcome.failed),
        },
        "results": results_list,
    }
