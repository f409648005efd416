"""Read-only queries over parsed session entries.

Every function takes the entry sequence of a ParsedSession and returns fresh
values; nothing here mutates the entries, so calls can be repeated and
combined in any order.
"""

import json
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from .models import (
    AssistantEntry,
    SessionEntry,
    SummaryEntry,
    ToolUseBlock,
    UserEntry,
    block_text,
)

SUBAGENT_TOOL_NAME = "Task"

READ_TOOLS = ("Read",)
WRITE_TOOLS = ("Write",)
EDIT_TOOLS = ("Edit", "MultiEdit")


@dataclass
class TokenUsage:
    """Token totals summed over assistant entries."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cache_creation: int = 0
    total_cache_read: int = 0

    @property
    def total(self) -> int:
        return self.total_input_tokens + self.total_output_tokens


@dataclass
class ToolUse:
    """A tool_use block together with the entry that made it."""

    block: ToolUseBlock
    entry: AssistantEntry

    @property
    def id(self) -> str:
        return self.block.id

    @property
    def name(self) -> str:
        return self.block.name

    @property
    def input(self) -> dict:
        return self.block.input


@dataclass
class BashCommand:
    command: str
    description: Optional[str] = None


@dataclass
class SubagentInvocation:
    """A Task tool call that spawned a subagent."""

    subagent_type: str
    description: str
    prompt: str
    timestamp: str
    entry_uuid: str
    invocation_id: str


@dataclass
class ConversationMessage:
    timestamp: str
    role: str  # user, assistant
    content: str


def get_token_usage(entries: Iterable[SessionEntry]) -> TokenUsage:
    """Sum token usage over all assistant entries; missing counts are zero."""
    usage = TokenUsage()
    for entry in entries:
        if isinstance(entry, AssistantEntry):
            usage.total_input_tokens += entry.usage.input_tokens
            usage.total_output_tokens += entry.usage.output_tokens
            usage.total_cache_creation += entry.usage.cache_creation_input_tokens
            usage.total_cache_read += entry.usage.cache_read_input_tokens
    return usage


def get_tool_uses(entries: Iterable[SessionEntry]) -> list[ToolUse]:
    """Flatten tool_use blocks in entry order, then content order."""
    tool_uses = []
    for entry in entries:
        if isinstance(entry, AssistantEntry) and isinstance(entry.content, list):
            for block in entry.content:
                if isinstance(block, ToolUseBlock):
                    tool_uses.append(ToolUse(block=block, entry=entry))
    return tool_uses


def get_tool_uses_by_name(entries: Iterable[SessionEntry], name: str) -> list[ToolUse]:
    return [tool for tool in get_tool_uses(entries) if tool.name == name]


def get_tool_counts(entries: Iterable[SessionEntry]) -> list[tuple[str, int]]:
    """Count tool uses per tool name, most used first."""
    counts = Counter(tool.name for tool in get_tool_uses(entries))
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))


def _file_paths(entries: Iterable[SessionEntry], tool_names: Sequence[str]) -> list[str]:
    seen: dict[str, None] = {}
    for tool in get_tool_uses(entries):
        if tool.name in tool_names:
            file_path = tool.input.get("file_path")
            if isinstance(file_path, str) and file_path:
                seen.setdefault(file_path, None)
    return list(seen)


def get_files_read(entries: Iterable[SessionEntry]) -> list[str]:
    return _file_paths(entries, READ_TOOLS)


def get_files_written(entries: Iterable[SessionEntry]) -> list[str]:
    return _file_paths(entries, WRITE_TOOLS)


def get_files_edited(entries: Iterable[SessionEntry]) -> list[str]:
    return _file_paths(entries, EDIT_TOOLS)


def get_bash_commands(entries: Iterable[SessionEntry]) -> list[BashCommand]:
    commands = []
    for tool in get_tool_uses_by_name(entries, "Bash"):
        command = tool.input.get("command")
        if not isinstance(command, str):
            continue
        description = tool.input.get("description")
        commands.append(
            BashCommand(
                command=command,
                description=description if isinstance(description, str) else None,
            )
        )
    return commands


def get_subagent_invocations(entries: Iterable[SessionEntry]) -> list[SubagentInvocation]:
    """Extract one record per Task tool call."""
    invocations = []
    for tool in get_tool_uses_by_name(entries, SUBAGENT_TOOL_NAME):
        invocations.append(
            SubagentInvocation(
                subagent_type=str(tool.input.get("subagent_type") or "unknown"),
                description=str(tool.input.get("description") or ""),
                prompt=str(tool.input.get("prompt") or ""),
                timestamp=tool.entry.timestamp,
                entry_uuid=tool.entry.uuid,
                invocation_id=tool.id,
            )
        )
    return invocations


def get_conversation_flow(entries: Iterable[SessionEntry]) -> list[ConversationMessage]:
    """Extract the user/assistant exchange.

    Every user entry is emitted; block content without text (tool results,
    images) is given as the JSON of its blocks. Assistant entries that are
    purely tool calls produce nothing.
    """
    flow = []
    for entry in entries:
        if isinstance(entry, UserEntry):
            if isinstance(entry.content, str):
                content = entry.content
            else:
                content = block_text(entry.content) or _raw_content_json(entry)
            flow.append(ConversationMessage(entry.timestamp, "user", content))
        elif isinstance(entry, AssistantEntry):
            text = block_text(entry.content)
            if isinstance(entry.content, str) or text:
                flow.append(ConversationMessage(entry.timestamp, "assistant", text))
    return flow


def _raw_content_json(entry: UserEntry) -> str:
    message = entry.raw.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    return json.dumps(content if content is not None else [], ensure_ascii=False)


def search_entries(
    entries: Iterable[SessionEntry], query: str, case_sensitive: bool = False
) -> list[SessionEntry]:
    """Return entries whose JSON form contains the query string."""
    needle = query if case_sensitive else query.lower()
    matches = []
    for entry in entries:
        haystack = json.dumps(entry.raw, ensure_ascii=False)
        if not case_sensitive:
            haystack = haystack.lower()
        if needle in haystack:
            matches.append(entry)
    return matches


def get_main_entries(entries: Iterable[SessionEntry]) -> list[SessionEntry]:
    """Entries of the main conversation (sidechain and summary lines excluded)."""
    return [e for e in entries if not isinstance(e, SummaryEntry) and not e.is_sidechain]


def get_sidechain_entries(entries: Iterable[SessionEntry]) -> list[SessionEntry]:
    return [e for e in entries if not isinstance(e, SummaryEntry) and e.is_sidechain]
