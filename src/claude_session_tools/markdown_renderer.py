"""Render enriched sessions as Markdown documents."""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from .domain import (
    AssistantTextMessage,
    AssistantThinkingMessage,
    ClearCommandMessage,
    CommandStdoutMessage,
    DomainMessage,
    EnrichedSession,
    RequestInterruptedMessage,
    SlashCommandMessage,
    SubagentInvocationMessage,
    SubagentThread,
    SystemMessage,
    ToolCallMessage,
    ToolResultMessage,
    UserMessage,
)
from .models import ToolResultBlock

logger = logging.getLogger(__name__)

MAIN_FILE_SUFFIX = "session"
HEADING_PATTERN = re.compile(r"^(#{1,6})\s")
SYSTEM_EMOJI = {"error": "❌", "warning": "⚠️"}


@dataclass
class RenderOptions:
    """Verbosity controls for Markdown output."""

    include_thinking: bool = True
    include_tool_details: bool = True
    include_system_messages: bool = True
    max_output_length: int = 10000
    no_truncate: bool = True


@dataclass
class SubagentFile:
    filename: str
    content: str
    subagent_type: str


@dataclass
class EnrichedMarkdownResult:
    """Main document plus one document per subagent thread."""

    main_markdown: str
    main_filename: str
    subagent_files: list[SubagentFile] = field(default_factory=list)
    files_written: list[Path] = field(default_factory=list)


def format_timestamp(iso_timestamp: Optional[str], time_only: bool = False) -> str:
    """Format an ISO timestamp for display; unparsable values are returned as-is."""
    if not iso_timestamp:
        return ""
    try:
        dt = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    except ValueError:
        return iso_timestamp
    if time_only:
        return dt.strftime("%H:%M:%S")
    return dt.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def adjust_markdown_headings(text: str, parent_level: int) -> str:
    """Shift headings inside embedded Markdown below the enclosing heading.

    Headings are only moved when the shallowest one would sit at or above
    ``parent_level``; levels are capped at h6.
    """
    lines = text.split("\n")
    levels = [len(m.group(1)) for m in map(HEADING_PATTERN.match, lines) if m]
    if not levels:
        return text

    min_level = min(levels)
    if min_level > parent_level:
        return text
    offset = parent_level + 1 - min_level

    adjusted = []
    for line in lines:
        match = HEADING_PATTERN.match(line)
        if match:
            new_level = min(len(match.group(1)) + offset, 6)
            line = "#" * new_level + line[len(match.group(1)) :]
        adjusted.append(line)
    return "\n".join(adjusted)


def truncate_text(text: str, options: RenderOptions) -> str:
    """Cut text to max_output_length unless truncation is disabled."""
    if options.no_truncate or len(text) <= options.max_output_length:
        return text
    remaining = len(text) - options.max_output_length
    return (
        f"{text[: options.max_output_length]}\n\n"
        f"... (truncated, {remaining} more characters)"
    )


def code_block(text: str, language: str = "") -> list[str]:
    """Wrap text in a fence longer than any backtick run inside it."""
    longest = max((len(run) for run in re.findall(r"`{3,}", text)), default=2)
    fence = "`" * max(3, longest + 1)
    return [f"{fence}{language}", text, fence, ""]


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "unknown"


def session_prefix(session: EnrichedSession) -> str:
    """The short session id used in file names and links.

    Sessions without an id fall back to the transcript's file name, so id-less
    sessions exported to one directory do not overwrite each other.
    """
    if session.session_id:
        return session.session_id[:8]
    if session.file_path is not None:
        return slugify(session.file_path.stem)
    return "unknown"


def main_filename(session: EnrichedSession) -> str:
    return f"{session_prefix(session)}-{MAIN_FILE_SUFFIX}.md"


def assign_thread_filenames(session: EnrichedSession) -> dict[str, str]:
    """Map each subagent thread key to its file name.

    The first thread of a subagent type gets ``<prefix>-subagent-<type>.md``;
    later threads of the same type get ``-2``, ``-3``... in the order of
    ``EnrichedSession.all_subagent_threads``. An ordinal is skipped when the
    name is already taken, e.g. by a type whose slug ends in ``-2``.
    """
    prefix = session_prefix(session)
    used = {main_filename(session)}
    filenames = {}
    for thread in session.all_subagent_threads:
        slug = slugify(thread.subagent_type)
        filename = f"{prefix}-subagent-{slug}.md"
        ordinal = 1
        while filename in used:
            ordinal += 1
            filename = f"{prefix}-subagent-{slug}-{ordinal}.md"
        used.add(filename)
        filenames[thread.key] = filename
    return filenames


def format_context_badges(message: DomainMessage) -> str:
    badges = []
    if message.command_context:
        badges.append(f"`{message.command_context.command}`")
    if message.subagent_context:
        badges.append(f"`@{message.subagent_context.subagent}`")
    return f"{' '.join(badges)} " if badges else ""


def _heading(title: str, message: DomainMessage, timestamp: Optional[str] = None) -> str:
    time_str = format_timestamp(timestamp or message.timestamp, time_only=True)
    suffix = f"_{time_str}_" if time_str else ""
    return f"## {title} {format_context_badges(message)}{suffix}".rstrip()


def _format_bash_input(tool_input: dict, options: RenderOptions) -> list[str]:
    lines = []
    if tool_input.get("command"):
        lines.append(f"**Command:** `{tool_input['command']}`")
    if tool_input.get("description"):
        lines.append(f"**Description:** {tool_input['description']}")
    return lines


def _format_read_input(tool_input: dict, options: RenderOptions) -> list[str]:
    lines = [f"**File:** `{tool_input.get('file_path', '')}`"]
    if tool_input.get("offset") is not None:
        lines.append(f"**Offset:** {tool_input['offset']}")
    if tool_input.get("limit") is not None:
        lines.append(f"**Limit:** {tool_input['limit']} lines")
    return lines


def _format_write_input(tool_input: dict, options: RenderOptions) -> list[str]:
    lines = [f"**File:** `{tool_input.get('file_path', '')}`"]
    content = tool_input.get("content")
    if isinstance(content, str) and content:
        lines.append("**Content:**")
        lines.extend(code_block(truncate_text(content, options)))
    return lines


def _format_edit_input(tool_input: dict, options: RenderOptions) -> list[str]:
    lines = [f"**File:** `{tool_input.get('file_path', '')}`"]
    for key, label in (("old_string", "Replace"), ("new_string", "With")):
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            lines.append(f"**{label}:**")
            lines.extend(code_block(truncate_text(value, options)))
    return lines


def _format_search_input(tool_input: dict, options: RenderOptions) -> list[str]:
    lines = [f"**Pattern:** `{tool_input.get('pattern', '')}`"]
    if tool_input.get("path"):
        lines.append(f"**Path:** `{tool_input['path']}`")
    if tool_input.get("glob"):
        lines.append(f"**Glob:** `{tool_input['glob']}`")
    return lines


TOOL_INPUT_FORMATTERS = {
    "Bash": _format_bash_input,
    "Read": _format_read_input,
    "Write": _format_write_input,
    "Edit": _format_edit_input,
    "Grep": _format_search_input,
    "Glob": _format_search_input,
}


def format_tool_input(tool_name: str, tool_input: dict, options: RenderOptions) -> list[str]:
    """Render tool input readably for known tools, as JSON otherwise."""
    formatter = TOOL_INPUT_FORMATTERS.get(tool_name)
    if formatter is not None:
        return formatter(tool_input, options)
    dumped = json.dumps(tool_input, indent=2, ensure_ascii=False)
    return ["**Input:**"] + code_block(truncate_text(dumped, options), "json")


def format_tool_result_content(content: Union[str, list], options: RenderOptions) -> list[str]:
    lines = []
    if isinstance(content, str):
        lines.extend(code_block(truncate_text(content, options)))
        return lines
    for block in content:
        if isinstance(block, dict) and block.get("type") == "text":
            lines.extend(code_block(truncate_text(str(block.get("text", "")), options)))
        else:
            dumped = json.dumps(block, indent=2, ensure_ascii=False)
            lines.extend(code_block(truncate_text(dumped, options), "json"))
    return lines


def _render_result(
    result: ToolResultBlock,
    message: DomainMessage,
    timestamp: Optional[str],
    options: RenderOptions,
) -> list[str]:
    emoji, status = ("❌", "Error") if result.is_error else ("✅", "Result")
    lines = [_heading(f"{emoji} Tool {status}", message, timestamp), ""]
    if options.include_tool_details:
        lines.extend(format_tool_result_content(result.content, options))
    lines.extend(["---", ""])
    return lines


def _render_tool_call(message: ToolCallMessage, options: RenderOptions) -> list[str]:
    lines = [_heading(f"🔧 Tool: {message.tool_use.name}", message), ""]
    if options.include_tool_details:
        lines.extend(format_tool_input(message.tool_use.name, message.tool_use.input, options))
        lines.append("")
    lines.extend(["---", ""])
    if message.result is not None:
        lines.extend(_render_result(message.result, message, message.result_timestamp, options))
    return lines


def _render_subagent_invocation(
    message: SubagentInvocationMessage,
    options: RenderOptions,
    filenames: dict[str, str],
) -> list[str]:
    lines = [
        _heading(f"🤖 Subagent Invocation: `{message.subagent_type}`", message),
        "",
        f"**Subagent Type:** `{message.subagent_type}`",
        f"**Description:** {message.description}",
        f"**Invocation ID:** `{message.tool_use.id}`",
        "",
    ]
    if options.include_tool_details and message.prompt:
        lines.extend(["### Prompt", "", adjust_markdown_headings(message.prompt, 3), ""])

    thread = message.thread
    if thread is not None:
        filename = filenames.get(thread.key)
        if filename:
            lines.append(f"📄 **Thread:** [{filename}](./{filename})")
            lines.append("")
        lines.append(f"**Thread Stats:** {thread.total_messages} messages")
    else:
        lines.append("_No subagent thread was recorded for this invocation._")
    lines.append("")

    if options.include_tool_details and message.result is not None:
        label = "Subagent Error" if message.result.is_error else "Subagent Result"
        lines.extend([f"### {label}", ""])
        lines.extend(format_tool_result_content(message.result.content, options))

    lines.extend(["---", ""])
    return lines


def render_message(
    message: DomainMessage,
    options: RenderOptions,
    filenames: Optional[dict[str, str]] = None,
) -> list[str]:
    """Render one domain message as Markdown lines (possibly none)."""
    filenames = filenames or {}

    if isinstance(message, CommandStdoutMessage):
        return []
    if isinstance(message, ClearCommandMessage):
        return [_heading("🧹 Clear Command", message), "", "_Session context cleared_", "", "---", ""]
    if isinstance(message, RequestInterruptedMessage):
        return [_heading("⛔ Request Interrupted", message), "", f"_{message.content}_", "", "---", ""]
    if isinstance(message, SlashCommandMessage):
        lines = [_heading("⚡ Slash Command", message), ""]
        if message.command_args:
            lines.extend([f"**Arguments:** {message.command_args}", ""])
        if options.include_tool_details and message.command_prompt.strip():
            lines.extend(
                ["### Command Prompt", "", adjust_markdown_headings(message.command_prompt, 3), ""]
            )
        lines.extend(["---", ""])
        return lines
    if isinstance(message, UserMessage):
        if message.is_meta and not options.include_system_messages:
            return []
        title = "👤 User (meta)" if message.is_meta else "👤 User"
        return [_heading(title, message), "", adjust_markdown_headings(message.content, 2), "", "---", ""]
    if isinstance(message, AssistantTextMessage):
        if not message.content.strip():
            return []
        return [
            _heading("🤖 Assistant", message),
            "",
            adjust_markdown_headings(message.content, 2),
            "",
            "---",
            "",
        ]
    if isinstance(message, AssistantThinkingMessage):
        if not options.include_thinking or not message.thinking.strip():
            return []
        quoted = "> " + message.thinking.replace("\n", "\n> ")
        return [_heading("🧠 Assistant (thinking)", message), "", quoted, "", "---", ""]
    if isinstance(message, ToolCallMessage):
        return _render_tool_call(message, options)
    if isinstance(message, SubagentInvocationMessage):
        return _render_subagent_invocation(message, options, filenames)
    if isinstance(message, ToolResultMessage):
        lines = []
        for result in message.unmatched_results:
            lines.extend(_render_result(result, message, message.timestamp, options))
        return lines
    if isinstance(message, SystemMessage):
        if not options.include_system_messages:
            return []
        emoji = SYSTEM_EMOJI.get(message.level, "📊")
        return [
            _heading(f"{emoji} System {message.level.upper()}", message),
            "",
            adjust_markdown_headings(message.content, 2),
            "",
            "---",
            "",
        ]
    raise TypeError(f"Unknown domain message type: {type(message).__name__}")


def render_session_markdown(
    session: EnrichedSession,
    options: Optional[RenderOptions] = None,
    filenames: Optional[dict[str, str]] = None,
) -> str:
    """Render the main thread as a Markdown document."""
    options = options or RenderOptions()
    if filenames is None:
        filenames = assign_thread_filenames(session)

    lines = [f"# Session: {session.session_id or 'unknown'}", ""]
    lines.append(f"**Start:** {format_timestamp(session.start_time)}")
    lines.append(f"**End:** {format_timestamp(session.end_time)}")
    lines.append(f"**Working Directory:** `{session.cwd}`")
    if session.git_branch:
        lines.append(f"**Git Branch:** `{session.git_branch}`")
    if session.summaries:
        lines.append(f"**Summary:** {session.summaries[-1].summary}")
    lines.extend(["", "---", ""])

    for message in session.main_thread.messages:
        lines.extend(render_message(message, options, filenames))

    if session.orphan_threads:
        lines.extend(["## 🧵 Unlinked Subagent Threads", ""])
        for thread in session.orphan_threads:
            filename = filenames.get(thread.key, "")
            started = format_timestamp(thread.start_time)
            lines.append(
                f"- [{filename}](./{filename}) ({thread.total_messages} messages, started {started})"
            )
        lines.extend(["", "---", ""])

    return "\n".join(lines)


def render_subagent_thread(thread: SubagentThread, options: Optional[RenderOptions] = None) -> str:
    """Render one subagent thread as its own Markdown document."""
    options = options or RenderOptions()

    lines = [f"# Subagent Thread: `{thread.subagent_type}`", ""]
    if thread.invocation_id:
        lines.append(f"**Invocation ID:** `{thread.invocation_id}`")
    else:
        lines.append("**Invocation ID:** _unlinked (no matching Task invocation)_")
    lines.append(f"**Start:** {format_timestamp(thread.start_time)}")
    lines.append(f"**End:** {format_timestamp(thread.end_time)}")
    lines.append(f"**Total Messages:** {thread.total_messages}")
    lines.append("")

    if thread.prompt:
        lines.extend(["## Original Prompt", "", adjust_markdown_headings(thread.prompt, 2), ""])
    lines.extend(["---", ""])

    for message in thread.messages:
        lines.extend(render_message(message, options))

    return "\n".join(lines)


def render_enriched_markdown(
    session: EnrichedSession, options: Optional[RenderOptions] = None
) -> EnrichedMarkdownResult:
    """Render the main document and every subagent thread document."""
    options = options or RenderOptions()
    filenames = assign_thread_filenames(session)

    result = EnrichedMarkdownResult(
        main_markdown=render_session_markdown(session, options, filenames),
        main_filename=main_filename(session),
    )
    for thread in session.all_subagent_threads:
        result.subagent_files.append(
            SubagentFile(
                filename=filenames[thread.key],
                content=render_subagent_thread(thread, options),
                subagent_type=thread.subagent_type,
            )
        )
    return result


def write_enriched_markdown(result: EnrichedMarkdownResult, output_dir: Path) -> list[Path]:
    """Write the main file, then the subagent files, creating output_dir."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    main_path = output_dir / result.main_filename
    main_path.write_text(result.main_markdown, encoding="utf-8")
    written = [main_path]

    for subagent_file in result.subagent_files:
        path = output_dir / subagent_file.filename
        path.write_text(subagent_file.content, encoding="utf-8")
        written.append(path)

    logger.debug("Wrote %d markdown files to %s", len(written), output_dir)
    result.files_written = written
    return written
