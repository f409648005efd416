"""Parse Claude Code JSONL session files."""

import json
import logging
from pathlib import Path
from typing import Iterator, Optional

from .models import (
    AssistantEntry,
    EntryValidationError,
    ParsedSession,
    SessionEntry,
    SummaryEntry,
    SystemEntry,
    ToolResultBlock,
    ToolUseBlock,
    Usage,
    UserEntry,
    parse_content,
)

logger = logging.getLogger(__name__)

# Bookkeeping lines written by Claude Code that never carry conversation
NON_MESSAGE_TYPES = ("file-history-snapshot", "queue-operation")

DEFAULT_CLAUDE_PROJECTS_DIR = Path.home() / ".claude" / "projects"


def parse_jsonl_file(file_path: Path) -> Iterator[tuple[int, dict]]:
    """Yield (line number, JSON object) for each valid line of a JSONL file.

    Blank lines are ignored. Lines that are not valid JSON, or that decode to
    something other than an object, are logged and skipped.
    """
    with open(file_path, "r", encoding="utf-8", errors="replace") as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning(
                    "Skipping line %d of %s: invalid JSON (%s)", line_number, file_path, e
                )
                continue
            if not isinstance(obj, dict):
                logger.warning(
                    "Skipping line %d of %s: expected a JSON object", line_number, file_path
                )
                continue
            yield line_number, obj


def _require_str(obj: dict, key: str) -> str:
    value = obj.get(key)
    if not isinstance(value, str) or not value:
        raise EntryValidationError(f"missing required field '{key}'")
    return value


def _optional_str(obj: dict, key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def _common_fields(obj: dict) -> dict:
    return {
        "uuid": _require_str(obj, "uuid"),
        "timestamp": _require_str(obj, "timestamp"),
        "session_id": _optional_str(obj, "sessionId") or "",
        "version": _optional_str(obj, "version") or "",
        "cwd": _optional_str(obj, "cwd") or "",
        "git_branch": _optional_str(obj, "gitBranch") or None,
        "parent_uuid": _optional_str(obj, "parentUuid") or None,
        "is_sidechain": obj.get("isSidechain") is True,
        "raw": obj,
    }


def _message_data(obj: dict) -> dict:
    message = obj.get("message")
    if not isinstance(message, dict):
        raise EntryValidationError("missing required field 'message'")
    return message


def _parse_user(obj: dict) -> UserEntry:
    fields = _common_fields(obj)
    message = _message_data(obj)
    return UserEntry(
        content=parse_content(message.get("content", "")),
        is_meta=obj.get("isMeta") is True,
        **fields,
    )


def _parse_assistant(obj: dict) -> AssistantEntry:
    fields = _common_fields(obj)
    message = _message_data(obj)
    return AssistantEntry(
        content=parse_content(message.get("content", "")),
        usage=Usage.from_dict(message.get("usage")),
        model=_optional_str(message, "model"),
        stop_reason=_optional_str(message, "stop_reason"),
        **fields,
    )


def _parse_system(obj: dict) -> SystemEntry:
    fields = _common_fields(obj)
    content = obj.get("content")
    if not isinstance(content, str):
        # Some versions nest system text inside a message object
        message = obj.get("message")
        content = message.get("content") if isinstance(message, dict) else None
    level = _optional_str(obj, "level") or "info"
    return SystemEntry(
        content=content if isinstance(content, str) else "",
        level=level,
        subtype=_optional_str(obj, "subtype"),
        **fields,
    )


def _parse_summary(obj: dict) -> SummaryEntry:
    summary = obj.get("summary")
    if not isinstance(summary, str):
        raise EntryValidationError("missing required field 'summary'")
    return SummaryEntry(summary=summary, leaf_uuid=_optional_str(obj, "leafUuid"), raw=obj)


ENTRY_PARSERS = {
    "user": _parse_user,
    "assistant": _parse_assistant,
    "system": _parse_system,
    "summary": _parse_summary,
}


def parse_entry(obj: dict) -> SessionEntry:
    """Validate a JSON object against the entry union and build the entry.

    Raises:
        EntryValidationError: if the type is unknown or a required field is missing.
    """
    entry_type = obj.get("type")
    parser = ENTRY_PARSERS.get(entry_type) if isinstance(entry_type, str) else None
    if parser is None:
        raise EntryValidationError(f"unrecognized entry type {entry_type!r}")
    return parser(obj)


def _update_metadata(session: ParsedSession, entry: SessionEntry) -> None:
    meta = session.metadata
    meta.total_entries += 1

    if isinstance(entry, SummaryEntry):
        return

    # First entry carrying a value wins
    if not session.session_id and entry.session_id:
        session.session_id = entry.session_id
    if not session.version and entry.version:
        session.version = entry.version
    if not session.cwd and entry.cwd:
        session.cwd = entry.cwd
    if not session.git_branch and entry.git_branch:
        session.git_branch = entry.git_branch

    if not session.start_time:
        session.start_time = entry.timestamp
    session.end_time = entry.timestamp

    if isinstance(entry, UserEntry):
        meta.user_messages += 1
    elif isinstance(entry, AssistantEntry):
        meta.assistant_messages += 1
    elif isinstance(entry, SystemEntry):
        meta.system_messages += 1
        if entry.level == "error":
            meta.errors += 1

    if isinstance(entry, (UserEntry, AssistantEntry)) and isinstance(entry.content, list):
        for block in entry.content:
            if isinstance(block, ToolUseBlock):
                meta.tool_uses += 1
            elif isinstance(block, ToolResultBlock):
                meta.tool_results += 1


def parse_session(file_path: Path) -> ParsedSession:
    """Parse a JSONL session file into a ParsedSession.

    Malformed lines are skipped with a warning. A missing or unreadable file
    raises OSError; an empty file produces a session with no entries.
    """
    file_path = Path(file_path)
    session = ParsedSession(file_path=file_path)

    for line_number, obj in parse_jsonl_file(file_path):
        entry_type = obj.get("type")
        if entry_type in NON_MESSAGE_TYPES:
            logger.debug("Ignoring %s line %d of %s", entry_type, line_number, file_path)
            session.skipped_lines += 1
            continue

        try:
            entry = parse_entry(obj)
        except EntryValidationError as e:
            logger.warning("Skipping line %d of %s: %s", line_number, file_path, e)
            session.skipped_lines += 1
            continue

        session.entries.append(entry)
        _update_metadata(session, entry)

    return session


def project_dir_name(project_path: Path) -> str:
    """Convert a project path to Claude's project directory name.

    e.g. /home/dev/app -> -home-dev-app, C:\\Users\\dev -> C--Users-dev
    """
    return str(project_path).replace("\\", "-").replace("/", "-").replace(":", "-")


def discover_session_files(
    project_path: Optional[Path] = None,
    projects_dir: Optional[Path] = None,
) -> list[Path]:
    """List the JSONL session files Claude Code stored for a project."""
    projects_dir = projects_dir or DEFAULT_CLAUDE_PROJECTS_DIR
    project_path = Path(project_path or Path.cwd()).resolve()
    sessions_dir = projects_dir / project_dir_name(project_path)

    if not sessions_dir.is_dir():
        logger.warning("No session directory found at %s", sessions_dir)
        return []

    return sorted(sessions_dir.glob("*.jsonl"))
