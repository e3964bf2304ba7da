"""Run report formatting functions.

Provides human-readable and machine-readable output for a run:

- ``format_sync_report`` -- full post-run summary.
- ``report_to_json`` -- structured dict, e.g. for a scheduler's run log.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import SyncReport, SyncResult


def _label(r: SyncResult) -> str:
    kind = r.artifact_type.name.lower()
    local = r.local_id if r.local_id is not None else "?"
    remote = r.remote_id if r.remote_id is not None else "?"
    return f"{kind} {local} <-> {remote} (project {r.project_id})"


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Format a run report as human-readable text.

    Sections are only included when they contain at least one result.
    Unchanged pairs are summarised by count only.

    Args:
        report: The completed run report.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = []

    header = f"Sync run: {report.status.value.upper()}"
    if report.cancelled:
        header += " (cancelled)"
    lines.append(header)
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    lines.append(
        f"Processed {len(report.results)} artifacts: "
        f"{len(report.updated_remote)} pushed, "
        f"{len(report.updated_local)} pulled, "
        f"{len(report.created_remote) + len(report.created_local)} created, "
        f"{len(report.containers)} containers, "
        f"{len(report.errors)} errors"
    )
    lines.append("")

    sections = [
        ("Pushed to remote:", report.updated_remote),
        ("Pulled from remote:", report.updated_local),
        ("Created (remote):", report.created_remote),
        ("Created (local):", report.created_local),
        ("Containers created:", report.containers),
    ]
    for title, results in sections:
        if not results:
            continue
        lines.append(title)
        for r in results:
            lines.append(f"  {_label(r)}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {_label(r)}: {r.error}")
        lines.append("")

    if report.skipped:
        lines.append(f"Unchanged: {len(report.skipped)} pairs")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a run report to a structured dict for JSON serialisation.

    Args:
        report: The run report.

    Returns:
        Dict with run status, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "project_id": r.project_id,
            "artifact_type": r.artifact_type.name.lower(),
            "local_id": r.local_id,
            "remote_id": r.remote_id,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "status": report.status.value,
        "cancelled": report.cancelled,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "pushed": len(report.updated_remote),
            "pulled": len(report.updated_local),
            "created_remote": len(report.created_remote),
            "created_local": len(report.created_local),
            "containers": len(report.containers),
            "errors": len(report.errors),
            "unchanged": len(report.skipped),
        },
        "results": results_list,
    }
