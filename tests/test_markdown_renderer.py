"""Tests for Markdown renderer."""

import tempfile
from pathlib import Path

import pytest

from claude_session_tools.domain_builder import build_enriched_session
from claude_session_tools.markdown_renderer import (
    RenderOptions,
    adjust_markdown_headings,
    assign_thread_filenames,
    code_block,
    format_timestamp,
    main_filename,
    render_enriched_markdown,
    render_message,
    render_session_markdown,
    render_subagent_thread,
    slugify,
    truncate_text,
    write_enriched_markdown,
)
from claude_session_tools.models import ParsedSession
from claude_session_tools.parser import parse_entry

from transcripts import (
    SESSION_ID,
    assistant,
    command_invocation,
    system,
    task,
    text,
    thinking,
    tool_result,
    tool_use,
    ts,
    user,
)


def _build(*objs, session_id=SESSION_ID, file_path=None):
    parsed = ParsedSession(
        file_path=file_path,
        session_id=session_id,
        cwd="/workspace/project",
        git_branch="main",
        start_time=ts(0),
        end_time=ts(59),
        entries=[parse_entry(obj) for obj in objs],
    )
    return build_enriched_session(parsed)


@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def subagent_session():
    """Two Explore threads, one Plan thread and one orphan."""
    return _build(
        user("u1", "Investigate the build", at=0),
        assistant(
            "a1",
            [
                text("Starting three agents"),
                task("toolu_01A", "Explore", "Look at the parser", "Parser"),
                task("toolu_01B", "Explore", "Look at the renderer", "Renderer"),
                task("toolu_01C", "Plan", "Plan the fix", "Plan"),
            ],
            at=1,
        ),
        user("p1", "Look at the parser", at=2, is_sidechain=True),
        assistant("p2", "Parser is fine", at=3, parent_uuid="p1", is_sidechain=True),
        user("r1", "Look at the renderer", at=4, is_sidechain=True),
        assistant("r2", "Renderer is broken", at=5, parent_uuid="r1", is_sidechain=True),
        user("l1", "Plan the fix", at=6, is_sidechain=True),
        user("o1", "Stray", at=7, is_sidechain=True),
        user(
            "u2",
            [
                tool_result("toolu_01A", "ok"),
                tool_result("toolu_01B", "broken"),
                tool_result("toolu_01C", "plan"),
            ],
            at=8,
        ),
    )


class TestFormatTimestamp:
    def test_full(self):
        assert format_timestamp(ts(5)) == "2025-10-21 10:00:05 UTC"

    def test_time_only(self):
        assert format_timestamp(ts(65), time_only=True) == "10:01:05"

    def test_handles_none_and_garbage(self):
        assert format_timestamp(None) == ""
        assert format_timestamp("yesterday") == "yesterday"


class TestAdjustMarkdownHeadings:
    def test_shifts_below_parent(self):
        assert adjust_markdown_headings("# Title\n## Sub\ntext", 2) == "### Title\n#### Sub\ntext"

    def test_leaves_deeper_headings(self):
        assert adjust_markdown_headings("### Deep\ntext", 2) == "### Deep\ntext"

    def test_caps_at_h6(self):
        assert adjust_markdown_headings("#### a\n# b", 4) == "###### a\n##### b"

    def test_no_headings(self):
        assert adjust_markdown_headings("#hashtag\nplain", 2) == "#hashtag\nplain"


class TestHelpers:
    def test_truncate_text(self):
        options = RenderOptions(max_output_length=4, no_truncate=False)
        assert truncate_text("abcdefghij", options) == "abcd\n\n... (truncated, 6 more characters)"

    def test_truncation_disabled_by_default(self):
        assert truncate_text("x" * 20000, RenderOptions()) == "x" * 20000

    def test_code_block_outgrows_inner_fences(self):
        assert code_block("```py\nx\n```") == ["````", "```py\nx\n```", "````", ""]
        assert code_block("plain", "json") == ["```json", "plain", "```", ""]

    def test_slugify(self):
        assert slugify("commit-grouper") == "commit-grouper"
        assert slugify("General Purpose!") == "general-purpose"
        assert slugify("!!!") == "unknown"


class TestRenderSessionMarkdown:
    def test_single_user_message(self):
        markdown = render_session_markdown(_build(user("u1", "Hello")))
        assert f"# Session: {SESSION_ID}" in markdown
        assert "## 👤 User" in markdown
        assert "Hello" in markdown
        assert "🤖 Assistant" not in markdown
        assert "🔧 Tool" not in markdown

    def test_header(self):
        markdown = render_session_markdown(
            _build(user("u1", "hi"), {"type": "summary", "summary": "Greeting"})
        )
        assert "**Start:** 2025-10-21 10:00:00 UTC" in markdown
        assert "**Working Directory:** `/workspace/project`" in markdown
        assert "**Git Branch:** `main`" in markdown
        assert "**Summary:** Greeting" in markdown

    def test_tool_call_with_result(self):
        session = _build(
            assistant("a1", [tool_use("t1", "Bash", command="ls -la", description="List")], at=1),
            user("u1", [tool_result("t1", "total 0")], at=2),
        )
        markdown = render_session_markdown(session)
        assert "## 🔧 Tool: Bash _10:00:01_" in markdown
        assert "**Command:** `ls -la`" in markdown
        assert "## ✅ Tool Result _10:00:02_" in markdown
        assert "total 0" in markdown

    def test_tool_error_and_unknown_tool_input(self):
        session = _build(
            assistant("a1", [tool_use("t1", "WebFetch", url="https://example.com")], at=1),
            user("u1", [tool_result("t1", "timeout", is_error=True)], at=2),
        )
        markdown = render_session_markdown(session)
        assert "**Input:**" in markdown
        assert '"url": "https://example.com"' in markdown
        assert "## ❌ Tool Error" in markdown

    def test_without_tool_details(self):
        session = _build(
            assistant("a1", [tool_use("t1", "Bash", command="ls -la")], at=1),
            user("u1", [tool_result("t1", "secret output")], at=2),
        )
        markdown = render_session_markdown(session, RenderOptions(include_tool_details=False))
        assert "## 🔧 Tool: Bash" in markdown
        assert "ls -la" not in markdown
        assert "secret output" not in markdown

    def test_thinking_toggle(self):
        session = _build(assistant("a1", [thinking("Let me think\nmore"), text("Answer")]))
        shown = render_session_markdown(session)
        assert "## 🧠 Assistant (thinking)" in shown
        assert "> Let me think\n> more" in shown

        hidden = render_session_markdown(session, RenderOptions(include_thinking=False))
        assert "🧠" not in hidden
        assert "Answer" in hidden

    def test_system_messages_toggle(self):
        session = _build(
            system("s1", "Rate limited", level="warning"),
            system("s2", "Crashed", level="error"),
            user("u1", "meta note", isMeta=True),
        )
        shown = render_session_markdown(session)
        assert "## ⚠️ System WARNING" in shown
        assert "## ❌ System ERROR" in shown
        assert "## 👤 User (meta)" in shown

        hidden = render_session_markdown(session, RenderOptions(include_system_messages=False))
        assert "System" not in hidden.split("---", 1)[1]
        assert "meta note" not in hidden

    def test_slash_command_and_context_badge(self):
        session = _build(
            user("u1", command_invocation("git:commit", "--amend"), at=0),
            user("u2", "# Commit workflow\nStage and commit.", isMeta=True, at=0),
            assistant("a1", "Committing now", at=1),
        )
        markdown = render_session_markdown(session)
        assert "## ⚡ Slash Command `/git:commit`" in markdown
        assert "**Arguments:** --amend" in markdown
        assert "#### Commit workflow" in markdown
        assert "## 🤖 Assistant `/git:commit` _10:00:01_" in markdown

    def test_special_messages(self):
        session = _build(
            user("u1", command_invocation("clear"), at=0),
            user("u2", "<local-command-stdout>hidden stdout</local-command-stdout>", at=1),
            user("u3", "[Request interrupted by user]", at=2),
        )
        markdown = render_session_markdown(session)
        assert "## 🧹 Clear Command" in markdown
        assert "hidden stdout" not in markdown
        assert "## ⛔ Request Interrupted" in markdown

    def test_long_output_truncated_when_enabled(self):
        session = _build(
            assistant("a1", [tool_use("t1", "Read", file_path="/big.txt")], at=1),
            user("u1", [tool_result("t1", "y" * 500)], at=2),
        )
        markdown = render_session_markdown(
            session, RenderOptions(max_output_length=100, no_truncate=False)
        )
        assert "... (truncated, 400 more characters)" in markdown
        assert "y" * 101 not in markdown

    def test_unknown_message_type_raises(self):
        with pytest.raises(TypeError):
            render_message(object(), RenderOptions())


class TestSubagentRendering:
    def test_filenames_get_ordinals(self, subagent_session):
        filenames = assign_thread_filenames(subagent_session)
        assert filenames == {
            "toolu_01A": "58186f35-subagent-explore.md",
            "toolu_01B": "58186f35-subagent-explore-2.md",
            "toolu_01C": "58186f35-subagent-plan.md",
            "o1": "58186f35-subagent-unknown.md",
        }
        assert main_filename(subagent_session) == "58186f35-session.md"

    def test_main_document_links_threads(self, subagent_session):
        markdown = render_session_markdown(subagent_session)
        assert "## 🤖 Subagent Invocation: `Explore`" in markdown
        assert "📄 **Thread:** [58186f35-subagent-explore-2.md](./58186f35-subagent-explore-2.md)" in markdown
        assert "**Thread Stats:** 2 messages" in markdown
        assert "### Subagent Result" in markdown
        assert "## 🧵 Unlinked Subagent Threads" in markdown
        assert "[58186f35-subagent-unknown.md](./58186f35-subagent-unknown.md)" in markdown

    def test_invocation_without_thread(self):
        session = _build(assistant("a1", [task("toolu_01A", "Explore", "go")]))
        markdown = render_session_markdown(session)
        assert "_No subagent thread was recorded for this invocation._" in markdown

    def test_subagent_document(self, subagent_session):
        thread = subagent_session.subagent_threads["toolu_01B"]
        markdown = render_subagent_thread(thread)
        assert markdown.startswith("# Subagent Thread: `Explore`")
        assert "**Invocation ID:** `toolu_01B`" in markdown
        assert "**Total Messages:** 2" in markdown
        assert "## Original Prompt" in markdown
        assert "Renderer is broken" in markdown
        assert "`@Explore`" in markdown

    def test_orphan_document(self, subagent_session):
        [orphan] = subagent_session.orphan_threads
        markdown = render_subagent_thread(orphan)
        assert "# Subagent Thread: `unknown`" in markdown
        assert "_unlinked (no matching Task invocation)_" in markdown

    def test_enriched_result_without_output_dir(self, subagent_session):
        result = render_enriched_markdown(subagent_session)
        assert result.main_markdown
        assert result.main_filename == "58186f35-session.md"
        assert [f.filename for f in result.subagent_files] == [
            "58186f35-subagent-explore.md",
            "58186f35-subagent-explore-2.md",
            "58186f35-subagent-plan.md",
            "58186f35-subagent-unknown.md",
        ]
        assert result.files_written == []

    def test_write_files(self, subagent_session, temp_dir):
        result = render_enriched_markdown(subagent_session)
        output_dir = temp_dir / "out"
        written = write_enriched_markdown(result, output_dir)

        assert written[0] == output_dir / "58186f35-session.md"
        assert len(written) == 5
        assert result.files_written == written
        assert all(path.exists() for path in written)
        assert (output_dir / "58186f35-subagent-plan.md").read_text(encoding="utf-8") == (
            result.subagent_files[2].content
        )

    def test_empty_session_id_prefix(self):
        session = _build(user("u1", "hi"), session_id="")
        assert main_filename(session) == "unknown-session.md"
        assert "# Session: unknown" in render_session_markdown(session)

    def test_empty_session_id_uses_file_name(self):
        session = _build(
            assistant("a1", [task("toolu_01A", "Explore", "look")], at=1),
            user("s1", "look", at=2, is_sidechain=True),
            session_id="",
            file_path=Path("/tmp/Agent Notes.jsonl"),
        )
        assert main_filename(session) == "agent-notes-session.md"
        assert assign_thread_filenames(session) == {"toolu_01A": "agent-notes-subagent-explore.md"}

    def test_type_ending_in_ordinal_does_not_collide(self):
        session = _build(
            assistant(
                "a1",
                [
                    task("toolu_01A", "Explore", "first look"),
                    task("toolu_01B", "Explore", "second look"),
                    task("toolu_01C", "explore-2", "third look"),
                ],
                at=1,
            ),
            user("x1", "first look", at=2, is_sidechain=True),
            user("y1", "second look", at=3, is_sidechain=True),
            user("z1", "third look", at=4, is_sidechain=True),
        )
        filenames = assign_thread_filenames(session)
        assert filenames == {
            "toolu_01A": "58186f35-subagent-explore.md",
            "toolu_01B": "58186f35-subagent-explore-2.md",
            "toolu_01C": "58186f35-subagent-explore-2-2.md",
        }
        assert main_filename(session) not in filenames.values()
