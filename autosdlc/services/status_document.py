"""
Status Document Format

Renders an AgentStatusRecord as the markdown status document agents publish,
and parses such documents back. The parser is structural: sections must
appear in order and every field line must be present and well formed.
"""

import re
from typing import Iterator, Optional

from pydantic import ValidationError

from autosdlc.errors import StatusParseError
from autosdlc.models.agent import (
    AgentMetrics,
    AgentStatus,
    AgentStatusRecord,
    AgentType,
    CurrentActivity,
    RecentAction,
)

RENDERED_ACTIONS = 10
NONE_MARKER = "None"
NO_ACTIONS_LINE = "- No recent actions"
RESULT_SEPARATOR = " → "
ARROW = "→"
ESCAPED_ARROW = "\\→"

_TITLE_RE = re.compile(r"^# Agent Status: (\S+)$")
_LAST_UPDATED_RE = re.compile(r"^\*\*Last Updated\*\*: (.+)$")
_STATUS_RE = re.compile(r"^\*\*Status\*\*: (\w+)$")
_TASK_RE = re.compile(r"^- \*\*Task\*\*: (.+)$")
_PROGRESS_RE = re.compile(r"^- \*\*Progress\*\*: (\d+)%$")
_DEPENDENCIES_RE = re.compile(r"^- \*\*Dependencies\*\*: (.+)$")
_ACTION_RE = re.compile(r"^- \[([^\]]+)\](?: (.*))?$")
_TASKS_COMPLETED_RE = re.compile(r"^- \*\*Tasks Completed\*\*: (\d+)$")
_UPTIME_RE = re.compile(r"^- \*\*Uptime\*\*: (\d+)s$")
_ERROR_COUNT_RE = re.compile(r"^- \*\*Error Count\*\*: (\d+)$")
_EXTRA_FIELD_RE = re.compile(r"^- \*\*[^*]+\*\*: .*$")


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _format_action(action: RecentAction) -> str:
    # Arrows in the action text are escaped so the first separator is the real one
    text = _one_line(action.action).replace(ARROW, ESCAPED_ARROW)
    line = f"- [{action.timestamp}] {text}"
    if action.result:
        line += f"{RESULT_SEPARATOR}{_one_line(action.result)}"
    return line


def render_status_document(record: AgentStatusRecord) -> str:
    """Render the full status document for one agent."""
    activity = record.current_activity
    metrics = record.metrics

    task = _one_line(activity.task or "") or NONE_MARKER
    dependencies = ", ".join(activity.dependencies) if activity.dependencies else NONE_MARKER

    actions = record.recent_actions[-RENDERED_ACTIONS:]
    action_lines = [_format_action(a) for a in actions] if actions else [NO_ACTIONS_LINE]

    lines = [
        f"# Agent Status: {record.agent_type.value}",
        "",
        f"**Last Updated**: {record.last_updated}",
        f"**Status**: {record.status.value}",
        "",
        "## Current Activity",
        f"- **Task**: {task}",
        f"- **Progress**: {activity.progress}%",
        f"- **Dependencies**: {dependencies}",
        "",
        "## Recent Actions",
        *action_lines,
        "",
        "## Metrics",
        f"- **Tasks Completed**: {metrics.tasks_completed}",
        f"- **Uptime**: {metrics.uptime_seconds}s",
        f"- **Error Count**: {metrics.error_count}",
    ]
    return "\n".join(lines) + "\n"


class _LineCursor:
    """Walks non-blank lines, remembering line numbers for error messages"""

    def __init__(self, text: str):
        self._lines: Iterator[tuple[int, str]] = (
            (number, line.rstrip())
            for number, line in enumerate(text.splitlines(), start=1)
            if line.strip()
        )
        self._peeked: Optional[tuple[int, str]] = None
        self.line_number = 0

    def peek(self) -> Optional[str]:
        if self._peeked is None:
            self._peeked = next(self._lines, None)
        return self._peeked[1] if self._peeked else None

    def take(self, what: str) -> str:
        line = self.peek()
        if line is None:
            raise StatusParseError(f"unexpected end of document, expected {what}")
        self.line_number = self._peeked[0]
        self._peeked = None
        return line

    def expect(self, pattern: re.Pattern, what: str) -> re.Match:
        line = self.take(what)
        match = pattern.match(line)
        if not match:
            raise StatusParseError(f"expected {what}, got {line!r}", self.line_number)
        return match

    def expect_exact(self, text: str) -> None:
        line = self.take(text)
        if line != text:
            raise StatusParseError(f"expected {text!r}, got {line!r}", self.line_number)


def _parse_action(line: str, line_number: int) -> RecentAction:
    match = _ACTION_RE.match(line)
    if not match:
        raise StatusParseError(f"malformed action line {line!r}", line_number)
    text, _, result = (match.group(2) or "").partition(RESULT_SEPARATOR)
    return RecentAction(
        timestamp=match.group(1),
        action=text.replace(ESCAPED_ARROW, ARROW),
        result=result or None,
    )


def parse_status_document(text: str) -> AgentStatusRecord:
    """
    Parse a status document back into a record.

    Raises:
        StatusParseError: If the document does not follow the grammar
    """
    cursor = _LineCursor(text)

    raw_type = cursor.expect(_TITLE_RE, "'# Agent Status' title").group(1)
    try:
        agent_type = AgentType(raw_type)
    except ValueError:
        raise StatusParseError(f"unknown agent type {raw_type!r}", cursor.line_number) from None

    last_updated = cursor.expect(_LAST_UPDATED_RE, "'**Last Updated**' line").group(1).strip()

    raw_status = cursor.expect(_STATUS_RE, "'**Status**' line").group(1)
    try:
        status = AgentStatus(raw_status)
    except ValueError:
        raise StatusParseError(f"unknown status {raw_status!r}", cursor.line_number) from None

    cursor.expect_exact("## Current Activity")
    raw_task = cursor.expect(_TASK_RE, "'Task' field").group(1).strip()
    progress = int(cursor.expect(_PROGRESS_RE, "'Progress' field").group(1))
    if progress > 100:
        raise StatusParseError(f"progress {progress}% out of range", cursor.line_number)
    raw_dependencies = cursor.expect(_DEPENDENCIES_RE, "'Dependencies' field").group(1).strip()

    cursor.expect_exact("## Recent Actions")
    actions: list[RecentAction] = []
    saw_placeholder = False
    while cursor.peek() is not None and cursor.peek() != "## Metrics":
        line = cursor.take("action line")
        if line == NO_ACTIONS_LINE:
            saw_placeholder = True
            continue
        actions.append(_parse_action(line, cursor.line_number))
    if saw_placeholder and actions:
        raise StatusParseError("'No recent actions' mixed with action lines", cursor.line_number)

    cursor.expect_exact("## Metrics")
    tasks_completed = int(cursor.expect(_TASKS_COMPLETED_RE, "'Tasks Completed' field").group(1))
    uptime = int(cursor.expect(_UPTIME_RE, "'Uptime' field").group(1))
    error_count = int(cursor.expect(_ERROR_COUNT_RE, "'Error Count' field").group(1))

    # Extra metric bullets (agent name, port) are allowed after the counters
    while cursor.peek() is not None:
        line = cursor.take("end of document")
        if not _EXTRA_FIELD_RE.match(line):
            raise StatusParseError(f"unexpected trailing content {line!r}", cursor.line_number)

    dependencies = [] if raw_dependencies == NONE_MARKER else raw_dependencies.split(",")

    try:
        return AgentStatusRecord(
            agent_type=agent_type,
            status=status,
            last_updated=last_updated,
            current_activity=CurrentActivity(
                task=None if raw_task == NONE_MARKER else raw_task,
                progress=progress,
                dependencies=dependencies,
            ),
            recent_actions=actions,
            metrics=AgentMetrics(
                tasks_completed=tasks_completed,
                uptime_seconds=uptime,
                error_count=error_count,
            ),
        )
    except ValidationError as e:
        raise StatusParseError(f"invalid field values: {e}") from e
