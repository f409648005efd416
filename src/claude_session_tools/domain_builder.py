"""Build the threaded domain model from parsed session entries.

The builder works in five passes over the flat entry list:

1. split main-thread entries from sidechain (subagent) entries;
2. merge slash command invocations with the prompt injected right after them;
3. rebuild sidechain conversations by following ``parentUuid`` links and
   attach each to the Task tool call that spawned it;
4. classify every remaining entry into domain messages;
5. compute statistics from the resulting main thread.

Malformed input never raises: unmatched commands stay plain messages and
sidechains with no Task call are kept as orphan threads.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from .domain import (
    AssistantTextMessage,
    AssistantThinkingMessage,
    ClearCommandMessage,
    CommandContext,
    CommandStdoutMessage,
    DomainMessage,
    EnrichedSession,
    RequestInterruptedMessage,
    SessionStats,
    SessionThread,
    SlashCommandMessage,
    SubagentContext,
    SubagentInvocationMessage,
    SubagentThread,
    SystemMessage,
    ToolCallMessage,
    ToolResultMessage,
    UserMessage,
)
from .models import (
    AssistantEntry,
    OtherBlock,
    ParsedSession,
    SessionEntry,
    SummaryEntry,
    SystemEntry,
    TextBlock,
    ThinkingBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserEntry,
    block_text,
)
from .queries import SUBAGENT_TOOL_NAME, get_token_usage

logger = logging.getLogger(__name__)

COMMAND_NAME_PATTERN = re.compile(r"<command-name>\s*/?(.*?)\s*</command-name>", re.DOTALL)
COMMAND_ARGS_PATTERN = re.compile(r"<command-args>(.*?)</command-args>", re.DOTALL)
COMMAND_STDOUT_PATTERN = re.compile(
    r"<local-command-(?:stdout|stderr)>(.*?)</local-command-(?:stdout|stderr)>", re.DOTALL
)
INTERRUPTED_PREFIX = "[Request interrupted by user"
CLEAR_COMMANDS = ("clear",)

ThreadEntry = Union[UserEntry, AssistantEntry, SystemEntry]
PendingCall = Union[ToolCallMessage, SubagentInvocationMessage]


@dataclass
class CommandInvocation:
    """A slash command marker found in user content."""

    name: str
    args: str = ""

    @property
    def text(self) -> str:
        return f"/{self.name} {self.args}".strip()


@dataclass
class _TaskCall:
    position: int
    entry: AssistantEntry
    block: ToolUseBlock
    batch: int = 0
    result_position: Optional[int] = None

    @property
    def prompt(self) -> str:
        return str(self.block.input.get("prompt") or "")

    @property
    def subagent_type(self) -> str:
        return str(self.block.input.get("subagent_type") or "unknown")


@dataclass
class _Chain:
    """Sidechain entries reachable from one root, in file order."""

    position: int
    entries: list[ThreadEntry] = field(default_factory=list)

    def first_user_text(self) -> str:
        for entry in self.entries:
            if isinstance(entry, UserEntry):
                return block_text(entry.content).strip()
        return ""


def parse_command(text: str) -> Optional[CommandInvocation]:
    """Return the slash command named in user content, if any."""
    match = COMMAND_NAME_PATTERN.search(text)
    if not match or not match.group(1):
        return None
    args_match = COMMAND_ARGS_PATTERN.search(text)
    args = args_match.group(1).strip() if args_match else ""
    return CommandInvocation(name=match.group(1), args=args)


def _has_tool_results(entry: UserEntry) -> bool:
    return isinstance(entry.content, list) and any(
        isinstance(block, ToolResultBlock) for block in entry.content
    )


def _is_command_prompt(entry: ThreadEntry) -> bool:
    """True for the meta entry Claude Code injects after a slash command."""
    if not isinstance(entry, UserEntry) or not entry.is_meta or _has_tool_results(entry):
        return False
    text = block_text(entry.content)
    if not text.strip():
        return False
    return parse_command(text) is None and not COMMAND_STDOUT_PATTERN.search(text)


class _ThreadBuilder:
    """Classifies the entries of one thread into domain messages."""

    def __init__(
        self,
        subagent_context: Optional[SubagentContext] = None,
        threads_by_invocation: Optional[dict[str, SubagentThread]] = None,
    ):
        self.messages: list[DomainMessage] = []
        self.subagent_context = subagent_context
        self.threads_by_invocation = threads_by_invocation or {}
        self.command_context: Optional[CommandContext] = None
        self.pending_calls: dict[str, PendingCall] = {}

    def add_entries(self, entries: Sequence[ThreadEntry], merge_commands: bool) -> None:
        i = 0
        while i < len(entries):
            entry = entries[i]
            if merge_commands and isinstance(entry, UserEntry) and not entry.is_meta:
                command = parse_command(block_text(entry.content))
                if command and command.name not in CLEAR_COMMANDS and i + 1 < len(entries):
                    prompt_entry = entries[i + 1]
                    if _is_command_prompt(prompt_entry):
                        self._add_slash_command(entry, command, prompt_entry)
                        i += 2
                        continue
            self._add_entry(entry)
            i += 1

    def _append(self, message: DomainMessage) -> None:
        if message.command_context is None:
            message.command_context = self.command_context
        if message.subagent_context is None:
            message.subagent_context = self.subagent_context
        self.messages.append(message)

    def _add_slash_command(
        self, entry: UserEntry, command: CommandInvocation, prompt_entry: UserEntry
    ) -> None:
        self.command_context = CommandContext(command=f"/{command.name}", command_uuid=entry.uuid)
        self._append(
            SlashCommandMessage(
                uuid=entry.uuid,
                timestamp=entry.timestamp,
                source_uuids=[entry.uuid, prompt_entry.uuid],
                command_name=command.name,
                command_args=command.args,
                command_prompt=block_text(prompt_entry.content),
            )
        )

    def _add_entry(self, entry: ThreadEntry) -> None:
        if isinstance(entry, UserEntry):
            self._add_user(entry)
        elif isinstance(entry, AssistantEntry):
            self._add_assistant(entry)
        elif isinstance(entry, SystemEntry):
            self._append(
                SystemMessage(
                    uuid=entry.uuid,
                    timestamp=entry.timestamp,
                    source_uuids=[entry.uuid],
                    level=entry.level,
                    content=entry.content,
                    raw_entry=entry,
                )
            )
        else:
            logger.debug("Ignoring unexpected entry %r in thread", type(entry).__name__)

    def _add_user(self, entry: UserEntry) -> None:
        base = {"uuid": entry.uuid, "timestamp": entry.timestamp, "source_uuids": [entry.uuid]}

        if _has_tool_results(entry):
            results = [b for b in entry.content if isinstance(b, ToolResultBlock)]
            self._add_tool_results(entry, results)
            return

        text = block_text(entry.content)
        command = parse_command(text)
        if command and command.name in CLEAR_COMMANDS:
            self.command_context = None
            self._append(ClearCommandMessage(raw_entry=entry, **base))
            return

        stdout = COMMAND_STDOUT_PATTERN.search(text)
        if stdout:
            self._append(
                CommandStdoutMessage(content=stdout.group(1).strip(), raw_entry=entry, **base)
            )
            return

        if text.lstrip().startswith(INTERRUPTED_PREFIX):
            self._append(RequestInterruptedMessage(content=text.strip(), raw_entry=entry, **base))
            return

        if not entry.is_meta:
            # A new prompt from the user ends the scope of the previous command
            self.command_context = None
        if command:
            text = command.text
        self._append(UserMessage(content=text, is_meta=entry.is_meta, raw_entry=entry, **base))

    def _add_tool_results(self, entry: ThreadEntry, results: list[ToolResultBlock]) -> None:
        unmatched = []
        for result in results:
            call = self.pending_calls.get(result.tool_use_id)
            if call is not None and call.result is None:
                call.result = result
                call.result_timestamp = entry.timestamp
            else:
                unmatched.append(result)
        self._append(
            ToolResultMessage(
                uuid=entry.uuid,
                timestamp=entry.timestamp,
                source_uuids=[entry.uuid],
                results=results,
                unmatched_results=unmatched,
                raw_entry=entry,
            )
        )

    def _add_assistant(self, entry: AssistantEntry) -> None:
        base = {"uuid": entry.uuid, "timestamp": entry.timestamp, "source_uuids": [entry.uuid]}

        if isinstance(entry.content, str):
            self._append(AssistantTextMessage(content=entry.content, raw_entry=entry, **base))
            return

        for index, block in enumerate(entry.content):
            if isinstance(block, TextBlock):
                self._append(
                    AssistantTextMessage(
                        content=block.text, block_index=index, raw_entry=entry, **base
                    )
                )
            elif isinstance(block, ThinkingBlock):
                self._append(
                    AssistantThinkingMessage(
                        thinking=block.thinking, block_index=index, raw_entry=entry, **base
                    )
                )
            elif isinstance(block, ToolUseBlock):
                self._add_tool_use(entry, block, index, base)
            elif isinstance(block, ToolResultBlock):
                self._add_tool_results(entry, [block])
            elif isinstance(block, OtherBlock):
                logger.debug("Ignoring %s block in entry %s", block.type, entry.uuid)

    def _add_tool_use(
        self, entry: AssistantEntry, block: ToolUseBlock, index: int, base: dict
    ) -> None:
        message: PendingCall
        if block.name == SUBAGENT_TOOL_NAME:
            message = SubagentInvocationMessage(
                tool_use=block,
                subagent_type=str(block.input.get("subagent_type") or "unknown"),
                description=str(block.input.get("description") or ""),
                prompt=str(block.input.get("prompt") or ""),
                thread=self.threads_by_invocation.get(block.id),
                block_index=index,
                raw_entry=entry,
                **base,
            )
        else:
            message = ToolCallMessage(tool_use=block, block_index=index, raw_entry=entry, **base)
        if block.id:
            self.pending_calls.setdefault(block.id, message)
        self._append(message)


def _partition(
    entries: Sequence[SessionEntry],
) -> tuple[list[tuple[int, ThreadEntry]], list[tuple[int, ThreadEntry]], list[SummaryEntry]]:
    """Split entries into main, sidechain and summary groups, keeping file positions."""
    main, sidechain, summaries = [], [], []
    for position, entry in enumerate(entries):
        if isinstance(entry, SummaryEntry):
            summaries.append(entry)
        elif entry.is_sidechain:
            sidechain.append((position, entry))
        else:
            main.append((position, entry))
    return main, sidechain, summaries


def _collect_task_calls(main: list[tuple[int, ThreadEntry]]) -> list[_TaskCall]:
    """Task calls in invocation order.

    Each call records the position of its first result and its batch: a run of
    consecutive assistant entries, which is how parallel calls are written.
    """
    task_calls: dict[str, _TaskCall] = {}
    batch = 0
    for position, entry in main:
        if not isinstance(entry, AssistantEntry):
            batch += 1
            if isinstance(entry, UserEntry) and isinstance(entry.content, list):
                for block in entry.content:
                    if not isinstance(block, ToolResultBlock):
                        continue
                    call = task_calls.get(block.tool_use_id)
                    if call is not None and call.result_position is None:
                        call.result_position = position
            continue
        if not isinstance(entry.content, list):
            continue
        for block in entry.content:
            if isinstance(block, ToolUseBlock) and block.name == SUBAGENT_TOOL_NAME:
                if not block.id or block.id in task_calls:
                    continue
                task_calls[block.id] = _TaskCall(
                    position=position, entry=entry, block=block, batch=batch
                )
    return list(task_calls.values())


def _group_sidechains(sidechain: list[tuple[int, ThreadEntry]]) -> list[_Chain]:
    """Rebuild sidechain conversations from parentUuid links.

    Entries are indexed by uuid; an entry joins the chain of its parent, and an
    entry without a known parent starts a new chain.
    """
    chains: list[_Chain] = []
    chain_index: dict[str, int] = {}
    for position, entry in sidechain:
        index = chain_index.get(entry.parent_uuid) if entry.parent_uuid else None
        if index is None:
            if entry.parent_uuid:
                logger.debug(
                    "Sidechain entry %s references unknown parent %s; starting a new thread",
                    entry.uuid,
                    entry.parent_uuid,
                )
            chains.append(_Chain(position=position))
            index = len(chains) - 1
        chains[index].entries.append(entry)
        chain_index.setdefault(entry.uuid, index)
    return chains


def _link_chains(
    chains: list[_Chain], task_calls: list[_TaskCall]
) -> tuple[dict[str, _Chain], list[_Chain]]:
    """Associate each chain with the Task call that spawned it.

    Candidates are unclaimed Task calls that appear earlier in the file than
    the chain's first entry and whose result had not yet arrived when the
    chain started. A call whose prompt equals the chain's opening user text
    wins. Otherwise the nearest preceding call is used; calls made in the
    same batch pair with threads in invocation order.
    """
    claimed: set[int] = set()
    links: dict[str, _Chain] = {}
    orphans: list[_Chain] = []

    for chain in chains:
        candidates = [
            i
            for i, call in enumerate(task_calls)
            if i not in claimed
            and call.position < chain.position
            and (call.result_position is None or call.result_position > chain.position)
        ]
        if not candidates:
            logger.debug("No Task invocation found for sidechain at entry %d", chain.position)
            orphans.append(chain)
            continue

        opening = chain.first_user_text()
        nearest = max(task_calls[i].batch for i in candidates)
        chosen = next(i for i in candidates if task_calls[i].batch == nearest)
        if opening:
            for i in candidates:
                if task_calls[i].prompt.strip() == opening:
                    chosen = i
                    break
        claimed.add(chosen)
        links[task_calls[chosen].block.id] = chain

    return links, orphans


def _finish_thread(thread: SessionThread) -> SessionThread:
    if thread.messages:
        thread.root_uuid = thread.messages[0].uuid
        thread.leaf_uuid = thread.messages[-1].uuid
        thread.start_time = thread.messages[0].timestamp
        thread.end_time = thread.messages[-1].timestamp
    return thread


def _build_subagent_thread(
    chain: _Chain, subagent_type: str, invocation_id: Optional[str], prompt: str
) -> SubagentThread:
    builder = _ThreadBuilder(
        subagent_context=SubagentContext(subagent=subagent_type, invocation_id=invocation_id)
    )
    builder.add_entries(chain.entries, merge_commands=False)
    thread = SubagentThread(
        messages=builder.messages,
        subagent_type=subagent_type,
        invocation_id=invocation_id,
        prompt=prompt,
        entry_uuids=[entry.uuid for entry in chain.entries],
    )
    _finish_thread(thread)
    return thread


def compute_stats(messages: Sequence[DomainMessage]) -> SessionStats:
    """Count main-thread messages by classification."""
    assistant_entries = set()
    counts = {
        "user_messages": 0,
        "system_messages": 0,
        "slash_commands": 0,
        "subagent_invocations": 0,
        "tool_calls": 0,
        "errors": 0,
    }
    for message in messages:
        raw_entry = getattr(message, "raw_entry", None)
        if isinstance(raw_entry, AssistantEntry):
            assistant_entries.add(raw_entry.uuid)

        if isinstance(message, UserMessage) and not message.is_meta:
            counts["user_messages"] += 1
        elif isinstance(message, SystemMessage):
            counts["system_messages"] += 1
            if message.level == "error":
                counts["errors"] += 1
        elif isinstance(message, SlashCommandMessage):
            counts["slash_commands"] += 1
        elif isinstance(message, SubagentInvocationMessage):
            counts["subagent_invocations"] += 1
        elif isinstance(message, ToolCallMessage):
            counts["tool_calls"] += 1
        elif isinstance(message, ToolResultMessage):
            counts["errors"] += sum(1 for result in message.results if result.is_error)

    return SessionStats(
        total_messages=len(messages),
        assistant_messages=len(assistant_entries),
        **counts,
    )


def build_enriched_session(parsed: ParsedSession) -> EnrichedSession:
    """Build the threaded, classified session from a ParsedSession."""
    main, sidechain, summaries = _partition(parsed.entries)

    task_calls = _collect_task_calls(main)
    links, orphan_chains = _link_chains(_group_sidechains(sidechain), task_calls)

    subagent_threads: dict[str, SubagentThread] = {}
    for call in task_calls:
        chain = links.get(call.block.id)
        if chain is not None:
            subagent_threads[call.block.id] = _build_subagent_thread(
                chain, call.subagent_type, call.block.id, call.prompt
            )

    orphan_threads = [
        _build_subagent_thread(chain, "unknown", None, chain.first_user_text())
        for chain in orphan_chains
    ]

    builder = _ThreadBuilder(threads_by_invocation=subagent_threads)
    builder.add_entries([entry for _, entry in main], merge_commands=True)
    main_thread = _finish_thread(SessionThread(messages=builder.messages))

    return EnrichedSession(
        session_id=parsed.session_id,
        version=parsed.version,
        cwd=parsed.cwd,
        git_branch=parsed.git_branch,
        start_time=parsed.start_time,
        end_time=parsed.end_time,
        main_thread=main_thread,
        subagent_threads=subagent_threads,
        orphan_threads=orphan_threads,
        summaries=summaries,
        stats=compute_stats(main_thread.messages),
        tokens=get_token_usage(parsed.entries),
        raw_entries=tuple(parsed.entries),
        file_path=parsed.file_path,
    )
