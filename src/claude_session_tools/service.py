"""Operations on Claude Code session files.

Each function loads one transcript and answers one question about it; the CLI
is a thin layer over these.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from .domain_builder import build_enriched_session
from .markdown_renderer import (
    EnrichedMarkdownResult,
    RenderOptions,
    render_enriched_markdown,
    render_session_markdown,
    write_enriched_markdown,
)
from .models import ParsedSession, SessionEntry, SessionMetadata
from .parser import discover_session_files, parse_session
from .queries import (
    BashCommand,
    ConversationMessage,
    SubagentInvocation,
    TokenUsage,
    get_bash_commands,
    get_conversation_flow,
    get_files_edited,
    get_files_read,
    get_files_written,
    get_subagent_invocations,
    get_token_usage,
    get_tool_counts,
    get_tool_uses,
    search_entries,
)

logger = logging.getLogger(__name__)

TITLE_LENGTH = 80


@dataclass
class SessionInfo:
    session_id: str
    version: str
    cwd: str
    git_branch: Optional[str]
    start_time: str
    end_time: str
    stats: SessionMetadata
    tokens: TokenUsage


@dataclass
class FileAccess:
    read: list[str] = field(default_factory=list)
    written: list[str] = field(default_factory=list)
    edited: list[str] = field(default_factory=list)


@dataclass
class SessionListItem:
    index: int
    file_path: Path
    file_name: str
    timestamp: str
    title: str
    session_id: str


@dataclass
class ExportOutcome:
    """Result of exporting one file in a batch."""

    file_path: Path
    files_written: list[Path] = field(default_factory=list)
    subagent_threads: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class BatchExportResult:
    outcomes: list[ExportOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> list[ExportOutcome]:
        return [o for o in self.outcomes if o.ok]

    @property
    def failed(self) -> list[ExportOutcome]:
        return [o for o in self.outcomes if not o.ok]


def session_info(file_path: Path) -> SessionInfo:
    """Get session metadata, entry statistics and token totals."""
    session = parse_session(file_path)
    return SessionInfo(
        session_id=session.session_id,
        version=session.version,
        cwd=session.cwd,
        git_branch=session.git_branch,
        start_time=session.start_time,
        end_time=session.end_time,
        stats=session.metadata,
        tokens=get_token_usage(session.entries),
    )


def session_tools(file_path: Path) -> list[str]:
    """Unique tool names used in the session, sorted."""
    session = parse_session(file_path)
    return sorted({tool.name for tool in get_tool_uses(session.entries)})


def session_tool_counts(file_path: Path) -> list[tuple[str, int]]:
    return get_tool_counts(parse_session(file_path).entries)


def session_files(file_path: Path) -> FileAccess:
    session = parse_session(file_path)
    return FileAccess(
        read=get_files_read(session.entries),
        written=get_files_written(session.entries),
        edited=get_files_edited(session.entries),
    )


def session_agents(file_path: Path) -> list[SubagentInvocation]:
    return get_subagent_invocations(parse_session(file_path).entries)


def session_conversation(
    file_path: Path, limit: Optional[int] = None
) -> list[ConversationMessage]:
    conversation = get_conversation_flow(parse_session(file_path).entries)
    if limit:
        return conversation[:limit]
    return conversation


def session_bash(file_path: Path) -> list[BashCommand]:
    return get_bash_commands(parse_session(file_path).entries)


def session_search(
    file_path: Path, query: str, case_sensitive: bool = False
) -> list[SessionEntry]:
    return search_entries(parse_session(file_path).entries, query, case_sensitive)


def session_export(file_path: Path, pretty: bool = False) -> str:
    """Export the parsed session as JSON (compact by default)."""
    data = parse_session(file_path).to_dict()
    if pretty:
        return json.dumps(data, indent=2, ensure_ascii=False)
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False)


def session_to_markdown(file_path: Path, options: Optional[RenderOptions] = None) -> str:
    """Render the main thread of a session as one Markdown document."""
    enriched = build_enriched_session(parse_session(file_path))
    return render_session_markdown(enriched, options)


def session_to_enriched_markdown(
    file_path: Path,
    options: Optional[RenderOptions] = None,
    output_dir: Optional[Path] = None,
) -> EnrichedMarkdownResult:
    """Render the main document and subagent documents.

    Files are only written when output_dir is given; the rendered Markdown is
    returned either way.
    """
    enriched = build_enriched_session(parse_session(file_path))
    result = render_enriched_markdown(enriched, options)
    if output_dir is not None:
        write_enriched_markdown(result, output_dir)
    return result


def _session_title(session: ParsedSession) -> str:
    for message in get_conversation_flow(session.entries):
        if message.role == "user" and message.content.strip():
            return message.content[:TITLE_LENGTH].replace("\n", " ")
    return "No user message found"


def session_list(
    project_path: Optional[Path] = None, projects_dir: Optional[Path] = None
) -> list[SessionListItem]:
    """List a project's sessions, most recent first."""
    items = []
    for file_path in discover_session_files(project_path, projects_dir):
        try:
            session = parse_session(file_path)
        except OSError as e:
            logger.warning("Failed to parse session %s: %s", file_path.name, e)
            continue
        items.append(
            SessionListItem(
                index=0,
                file_path=file_path,
                file_name=file_path.stem,
                timestamp=session.start_time,
                title=_session_title(session),
                session_id=session.session_id,
            )
        )

    items.sort(key=lambda item: item.timestamp, reverse=True)
    for index, item in enumerate(items, start=1):
        item.index = index
    return items


def _export_one(file_path: Path, output_dir: Path, options: RenderOptions) -> ExportOutcome:
    try:
        result = session_to_enriched_markdown(file_path, options, output_dir)
    except Exception as e:
        logger.warning("Failed to export %s: %s", file_path, e)
        return ExportOutcome(file_path=file_path, error=str(e) or type(e).__name__)
    return ExportOutcome(
        file_path=file_path,
        files_written=result.files_written,
        subagent_threads=len(result.subagent_files),
    )


def export_all_markdown(
    files: Iterable[Path],
    output_dir: Path,
    options: Optional[RenderOptions] = None,
    workers: int = 1,
) -> BatchExportResult:
    """Export many sessions; a failing file never stops the others.

    Files are independent, so with ``workers > 1`` they are processed on a
    thread pool. Outcomes are returned in input order.
    """
    options = options or RenderOptions()
    files = list(files)

    if workers <= 1 or len(files) <= 1:
        return BatchExportResult([_export_one(f, output_dir, options) for f in files])

    outcomes: dict[int, ExportOutcome] = {}
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {
            pool.submit(_export_one, file_path, output_dir, options): index
            for index, file_path in enumerate(files)
        }
        for fut in as_completed(futures):
            outcomes[futures[fut]] = fut.result()

    return BatchExportResult([outcomes[i] for i in range(len(files))])
