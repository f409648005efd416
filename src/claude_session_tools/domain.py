"""Domain model built from raw session entries.

Raw entries are a flat, chronologically ordered list. The domain model groups
them into a main thread and subagent threads and classifies every entry into
one of the message types below. One assistant entry with several content
blocks becomes several messages; a slash command invocation and its injected
prompt become one.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Union

from .models import (
    AssistantEntry,
    SessionEntry,
    SummaryEntry,
    SystemEntry,
    ToolResultBlock,
    ToolUseBlock,
    UserEntry,
)
from .queries import TokenUsage


@dataclass
class CommandContext:
    """The slash command a message was produced under."""

    command: str  # with leading slash, e.g. "/git:commit"
    command_uuid: str


@dataclass
class SubagentContext:
    """The subagent thread a message belongs to."""

    subagent: str
    invocation_id: Optional[str] = None


@dataclass
class MessageBase:
    uuid: str
    timestamp: str
    source_uuids: list[str] = field(default_factory=list)
    command_context: Optional[CommandContext] = None
    subagent_context: Optional[SubagentContext] = None


@dataclass
class UserMessage(MessageBase):
    content: str = ""
    is_meta: bool = False
    raw_entry: Optional[UserEntry] = field(default=None, repr=False)


@dataclass
class AssistantTextMessage(MessageBase):
    content: str = ""
    block_index: int = 0
    raw_entry: Optional[AssistantEntry] = field(default=None, repr=False)


@dataclass
class AssistantThinkingMessage(MessageBase):
    thinking: str = ""
    block_index: int = 0
    raw_entry: Optional[AssistantEntry] = field(default=None, repr=False)


@dataclass
class ToolCallMessage(MessageBase):
    tool_use: ToolUseBlock = field(default_factory=lambda: ToolUseBlock(id="", name="unknown"))
    result: Optional[ToolResultBlock] = None
    result_timestamp: Optional[str] = None
    block_index: int = 0
    raw_entry: Optional[AssistantEntry] = field(default=None, repr=False)


@dataclass
class ToolResultMessage(MessageBase):
    """Tool results returned to the model.

    Results matched to a tool call in the same thread are rendered with that
    call; ``unmatched_results`` holds the rest.
    """

    results: list[ToolResultBlock] = field(default_factory=list)
    unmatched_results: list[ToolResultBlock] = field(default_factory=list)
    raw_entry: Optional[SessionEntry] = field(default=None, repr=False)


@dataclass
class SlashCommandMessage(MessageBase):
    """A slash command invocation merged with its injected prompt."""

    command_name: str = ""  # without leading slash
    command_args: str = ""
    command_prompt: str = ""


@dataclass
class SubagentInvocationMessage(MessageBase):
    """A Task tool call; ``thread`` is None when no sidechain was recorded."""

    tool_use: ToolUseBlock = field(default_factory=lambda: ToolUseBlock(id="", name="Task"))
    subagent_type: str = "unknown"
    description: str = ""
    prompt: str = ""
    thread: Optional["SubagentThread"] = None
    result: Optional[ToolResultBlock] = None
    result_timestamp: Optional[str] = None
    block_index: int = 0
    raw_entry: Optional[AssistantEntry] = field(default=None, repr=False)


@dataclass
class SystemMessage(MessageBase):
    level: str = "info"
    content: str = ""
    raw_entry: Optional[SystemEntry] = field(default=None, repr=False)


@dataclass
class ClearCommandMessage(MessageBase):
    raw_entry: Optional[UserEntry] = field(default=None, repr=False)


@dataclass
class CommandStdoutMessage(MessageBase):
    content: str = ""
    raw_entry: Optional[UserEntry] = field(default=None, repr=False)


@dataclass
class RequestInterruptedMessage(MessageBase):
    content: str = ""
    raw_entry: Optional[UserEntry] = field(default=None, repr=False)


DomainMessage = Union[
    UserMessage,
    AssistantTextMessage,
    AssistantThinkingMessage,
    ToolCallMessage,
    ToolResultMessage,
    SlashCommandMessage,
    SubagentInvocationMessage,
    SystemMessage,
    ClearCommandMessage,
    CommandStdoutMessage,
    RequestInterruptedMessage,
]


@dataclass
class SessionThread:
    """An ordered sequence of domain messages."""

    messages: list[DomainMessage] = field(default_factory=list)
    root_uuid: str = ""
    leaf_uuid: str = ""
    start_time: str = ""
    end_time: str = ""

    @property
    def total_messages(self) -> int:
        return len(self.messages)


@dataclass
class SubagentThread(SessionThread):
    """A reconstructed sidechain conversation.

    ``invocation_id`` is the id of the Task tool call that spawned it, or None
    when no invocation could be associated (an orphan thread).
    """

    subagent_type: str = "unknown"
    invocation_id: Optional[str] = None
    prompt: str = ""
    entry_uuids: list[str] = field(default_factory=list)

    @property
    def is_orphan(self) -> bool:
        return self.invocation_id is None

    @property
    def key(self) -> str:
        """Unique within a session: the invocation id, else the first entry uuid."""
        if self.invocation_id:
            return self.invocation_id
        return self.entry_uuids[0] if self.entry_uuids else self.root_uuid


@dataclass(frozen=True)
class SessionStats:
    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    system_messages: int = 0
    slash_commands: int = 0
    subagent_invocations: int = 0
    tool_calls: int = 0
    errors: int = 0


@dataclass(frozen=True)
class EnrichedSession:
    """A fully built session.

    Collections are read-only views (a mapping proxy and tuples); the threads
    they hold are not copied.
    """

    session_id: str
    version: str
    cwd: str
    git_branch: Optional[str]
    start_time: str
    end_time: str
    main_thread: SessionThread
    subagent_threads: Mapping[str, SubagentThread]
    orphan_threads: tuple[SubagentThread, ...]
    summaries: tuple[SummaryEntry, ...]
    stats: SessionStats
    tokens: TokenUsage
    raw_entries: tuple[SessionEntry, ...]
    file_path: Optional[Path] = None

    def __post_init__(self):
        object.__setattr__(self, "subagent_threads", MappingProxyType(dict(self.subagent_threads)))
        object.__setattr__(self, "orphan_threads", tuple(self.orphan_threads))
        object.__setattr__(self, "summaries", tuple(self.summaries))

    @property
    def all_subagent_threads(self) -> list[SubagentThread]:
        """Linked threads in invocation order, then orphans in file order."""
        return list(self.subagent_threads.values()) + list(self.orphan_threads)
