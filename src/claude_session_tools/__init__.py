"""Parse Claude Code session transcripts and render them as Markdown."""

__version__ = "0.1.0"

from .domain import EnrichedSession, SessionThread, SubagentThread
from .domain_builder import build_enriched_session
from .markdown_renderer import (
    EnrichedMarkdownResult,
    RenderOptions,
    render_enriched_markdown,
    render_session_markdown,
    render_subagent_thread,
    write_enriched_markdown,
)
from .models import ParsedSession
from .parser import parse_session

__all__ = [
    "__version__",
    # Parsing
    "ParsedSession",
    "parse_session",
    # Domain model
    "EnrichedSession",
    "SessionThread",
    "SubagentThread",
    "build_enriched_session",
    # Rendering
    "EnrichedMarkdownResult",
    "RenderOptions",
    "render_enriched_markdown",
    "render_session_markdown",
    "render_subagent_thread",
    "write_enriched_markdown",
]
