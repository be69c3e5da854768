"""Task summaries and application-start detection for auto-run tasks."""

import re
import time

from termai.agent.state import StopReason, TaskStep, TaskSummary

# Output that suggests a program came up and is now serving or waiting on input.
APP_SUCCESS_INDICATORS = [
    re.compile(r"please select", re.IGNORECASE),
    re.compile(r"choose.*option", re.IGNORECASE),
    re.compile(r"menu:", re.IGNORECASE),
    re.compile(r"available.*options", re.IGNORECASE),
    re.compile(r"welcome to", re.IGNORECASE),
    re.compile(r"server.*running", re.IGNORECASE),
    re.compile(r"listening on", re.IGNORECASE),
    re.compile(r"started.*successfully", re.IGNORECASE),
    re.compile(r"ready.*http", re.IGNORECASE),
    re.compile(r"application.*started", re.IGNORECASE),
    re.compile(r"press.*to.*exit", re.IGNORECASE),
    re.compile(r"enter.*to.*continue", re.IGNORECASE),
    re.compile(r"waiting for input", re.IGNORECASE),
    re.compile(r"╔.*╗"),
    re.compile(r"═{3,}"),
]

SERVER_PATTERN = re.compile(
    r"npm\s+(start|run\s+dev)|python.*main|node\s+|yarn\s+(start|dev)"
    r"|flask\s+run|uvicorn|gunicorn",
    re.IGNORECASE,
)

_PORT_RE = re.compile(
    r"(?:port|localhost:|127\.0\.0\.1:|0\.0\.0\.0:)\s*(\d{4,5})",
    re.IGNORECASE,
)

FINAL_MESSAGES = {
    StopReason.COMPLETE: "Task completed successfully!",
    StopReason.LIMIT: "Stopped: Maximum steps reached",
    StopReason.ERROR: "Stopped due to errors",
    StopReason.USER: "Stopped by user",
}


def looks_like_app_started(output: str) -> bool:
    return any(pattern.search(output) for pattern in APP_SUCCESS_INDICATORS)


def extract_port(text: str) -> int | None:
    """Extract a listening port from a command or its output."""
    match = _PORT_RE.search(text)
    return int(match.group(1)) if match else None


def build_task_summary(
    steps: list[TaskStep],
    start_time: float | None,
    reason: StopReason,
    narrative: str = "",
) -> TaskSummary:
    """
    Summarize an auto-run task.

    The app is reported running when one of the last three steps started a
    server successfully, in error when failures outnumber successes, and
    stopped otherwise.

    Args:
        steps: Executed steps, oldest first
        start_time: When the task started (None means now)
        reason: Why the task ended
        narrative: Mission report text from the final response

    Returns:
        TaskSummary for the task-complete event
    """
    end_time = time.time()
    successful = sum(1 for step in steps if step.exit_code == 0)
    failed = len(steps) - successful

    recent = steps[-3:]
    server_running = any(
        SERVER_PATTERN.search(step.command) and step.exit_code == 0 for step in recent
    )
    app_port = extract_port(" ".join(step.output or step.command for step in recent))

    if server_running:
        app_status = "running"
    elif failed > successful:
        app_status = "error"
    else:
        app_status = "stopped"

    return TaskSummary(
        total_steps=len(steps),
        successful_steps=successful,
        failed_steps=failed,
        start_time=start_time or end_time,
        end_time=end_time,
        app_status=app_status,
        final_message=FINAL_MESSAGES[reason],
        app_port=app_port,
        narrative=narrative,
        steps=list(steps),
    )
