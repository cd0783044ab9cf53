"""Markdown rendering of caching task state."""

from typing import Optional

from .tasks import CachingTask, TaskStatus


def format_duration(seconds: float) -> str:
    """
    Compact human duration.

    Example:
        >>> format_duration(65)
        '1m 5s'
        >>> format_duration(7200)
        '2h'
    """
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)

    if hours:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    if minutes:
        return f"{minutes}m {secs}s" if secs else f"{minutes}m"
    return f"{secs}s"


def _source_line(task: CachingTask) -> str:
    if task.source_details:
        return f"{task.source_type} ({task.source_details})"
    return task.source_type


def format_task_started(task: CachingTask) -> str:
    """Message returned right after a background task is created."""
    lines = [
        f"# Caching started: {task.crate_name}-{task.version}",
        "",
        f"**Task ID:** `{task.task_id}`",
        f"**Source:** {_source_line(task)}",
    ]
    if task.members:
        lines.append(f"**Members:** {', '.join(task.members)}")
    lines.extend([
        "",
        "Poll the task ID for progress, or cancel it to stop caching.",
    ])
    return "\n".join(lines)


def format_task(task: CachingTask) -> str:
    """Detailed status of a single task."""
    lines = [
        f"## {task.crate_name}-{task.version}: {task.status.display}",
        "",
        f"- **Task ID:** `{task.task_id}`",
        f"- **Source:** {_source_line(task)}",
    ]
    if task.stage is not None and task.status == TaskStatus.IN_PROGRESS:
        lines.append(f"- **Stage:** {task.stage.number}/3 {task.stage.description}")
        if task.total_steps > 1:
            lines.append(f"- **Step:** {task.current_step}/{task.total_steps}")
        if task.step_description:
            lines.append(f"- **Current:** {task.step_description}")

    label = "Duration" if task.is_terminal else "Elapsed"
    lines.append(f"- **{label}:** {format_duration(task.elapsed_seconds())}")

    if task.error:
        lines.extend(["", "**Error:**", "```", task.error, "```"])
    return "\n".join(lines)


def format_task_list(tasks: list[CachingTask], status: Optional[TaskStatus] = None) -> str:
    """Summary of many tasks, grouped by status."""
    title = f"# Caching tasks ({status.value})" if status else "# Caching tasks"
    if not tasks:
        return f"{title}\n\nNo tasks found."

    sections = [title]
    for group in TaskStatus:
        grouped = [t for t in tasks if t.status == group]
        if not grouped:
            continue
        sections.append(f"\n### {group.display} ({len(grouped)})\n")
        sections.extend(format_task(t) for t in grouped)
    return "\n\n".join(sections)
