"""Data models for raw Claude Code session entries."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Union


class EntryValidationError(ValueError):
    """Raised when a JSON object is not a recognizable session entry."""


@dataclass
class TextBlock:
    """Plain text content block."""

    text: str = ""


@dataclass
class ThinkingBlock:
    """Extended thinking content block."""

    thinking: str = ""
    signature: Optional[str] = None


@dataclass
class ToolUseBlock:
    """A tool invocation made by the assistant."""

    id: str
    name: str
    input: dict = field(default_factory=dict)


@dataclass
class ToolResultBlock:
    """The result of a tool invocation, sent back as user content."""

    tool_use_id: str
    content: Union[str, list] = ""
    is_error: bool = False


@dataclass
class OtherBlock:
    """Any content block whose type is not modelled (images, documents, ...)."""

    type: str
    data: dict = field(default_factory=dict)


ContentBlock = Union[TextBlock, ThinkingBlock, ToolUseBlock, ToolResultBlock, OtherBlock]


def _text_block(data: dict) -> TextBlock:
    return TextBlock(text=str(data.get("text") or ""))


def _thinking_block(data: dict) -> ThinkingBlock:
    return ThinkingBlock(
        thinking=str(data.get("thinking") or ""),
        signature=data.get("signature"),
    )


def _tool_use_block(data: dict) -> ToolUseBlock:
    tool_input = data.get("input")
    return ToolUseBlock(
        id=str(data.get("id") or ""),
        name=str(data.get("name") or "unknown"),
        input=tool_input if isinstance(tool_input, dict) else {},
    )


def _tool_result_block(data: dict) -> ToolResultBlock:
    content = data.get("content", "")
    if content is None:
        content = ""
    elif not isinstance(content, (str, list)):
        content = str(content)
    return ToolResultBlock(
        tool_use_id=str(data.get("tool_use_id") or ""),
        content=content,
        is_error=bool(data.get("is_error", False)),
    )


BLOCK_PARSERS = {
    "text": _text_block,
    "thinking": _thinking_block,
    "tool_use": _tool_use_block,
    "tool_result": _tool_result_block,
}


def parse_content_block(data: Any) -> ContentBlock:
    """Convert one raw content block into its typed dataclass."""
    if isinstance(data, str):
        return TextBlock(text=data)
    if not isinstance(data, dict):
        return OtherBlock(type="unknown", data={"value": data})
    block_type = data.get("type")
    parser = BLOCK_PARSERS.get(block_type)
    if parser is None:
        return OtherBlock(type=str(block_type or "unknown"), data=data)
    return parser(data)


def parse_content(content: Any) -> Union[str, list[ContentBlock]]:
    """Parse message content, which is either a string or a list of blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return [parse_content_block(block) for block in content]
    return str(content)


@dataclass
class Usage:
    """Token usage reported on an assistant message."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @classmethod
    def from_dict(cls, data: Any) -> "Usage":
        if not isinstance(data, dict):
            return cls()

        def count(key: str) -> int:
            value = data.get(key)
            return value if isinstance(value, int) else 0

        return cls(
            input_tokens=count("input_tokens"),
            output_tokens=count("output_tokens"),
            cache_creation_input_tokens=count("cache_creation_input_tokens"),
            cache_read_input_tokens=count("cache_read_input_tokens"),
        )


@dataclass
class BaseEntry:
    """Fields shared by user, assistant and system entries."""

    uuid: str
    timestamp: str
    session_id: str = ""
    version: str = ""
    cwd: str = ""
    git_branch: Optional[str] = None
    parent_uuid: Optional[str] = None
    is_sidechain: bool = False
    raw: dict = field(default_factory=dict, repr=False)


@dataclass
class UserEntry(BaseEntry):
    """A user turn: typed prompt, injected meta prompt or tool results."""

    content: Union[str, list[ContentBlock]] = ""
    is_meta: bool = False

    type = "user"


@dataclass
class AssistantEntry(BaseEntry):
    """An assistant turn (text, thinking and tool use blocks)."""

    content: Union[str, list[ContentBlock]] = ""
    usage: Usage = field(default_factory=Usage)
    model: Optional[str] = None
    stop_reason: Optional[str] = None

    type = "assistant"


@dataclass
class SystemEntry(BaseEntry):
    """A system notice (info, warning or error)."""

    content: str = ""
    level: str = "info"
    subtype: Optional[str] = None

    type = "system"


@dataclass
class SummaryEntry:
    """A conversation summary line; carries no uuid or timestamp."""

    summary: str
    leaf_uuid: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)

    type = "summary"


SessionEntry = Union[UserEntry, AssistantEntry, SystemEntry, SummaryEntry]


@dataclass
class SessionMetadata:
    """Entry counts collected while parsing."""

    total_entries: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    system_messages: int = 0
    tool_uses: int = 0
    tool_results: int = 0
    errors: int = 0

    def to_dict(self) -> dict:
        return {
            "totalEntries": self.total_entries,
            "userMessages": self.user_messages,
            "assistantMessages": self.assistant_messages,
            "systemMessages": self.system_messages,
            "toolUses": self.tool_uses,
            "toolResults": self.tool_results,
            "errors": self.errors,
        }


@dataclass
class ParsedSession:
    """A transcript file after line parsing."""

    file_path: Optional[Path] = None
    session_id: str = ""
    version: str = ""
    cwd: str = ""
    git_branch: Optional[str] = None
    start_time: str = ""
    end_time: str = ""
    entries: list[SessionEntry] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    skipped_lines: int = 0

    def to_dict(self) -> dict:
        """Serialize for JSON export; entries are emitted exactly as read."""
        data = {
            "sessionId": self.session_id,
            "version": self.version,
            "cwd": self.cwd,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "entries": [entry.raw for entry in self.entries],
            "metadata": self.metadata.to_dict(),
        }
        if self.git_branch:
            data["gitBranch"] = self.git_branch
        return data


def block_text(content: Union[str, list[ContentBlock]], separator: str = "\n") -> str:
    """Join the text of string content or of all text blocks."""
    if isinstance(content, str):
        return content
    return separator.join(block.text for block in content if isinstance(block, TextBlock))
