"""CLI for parsing and exporting Claude Code sessions."""

import logging
from pathlib import Path
from typing import Optional

import click

from . import __version__
from . import service
from .config import Config
from .markdown_renderer import RenderOptions
from .models import SummaryEntry, block_text

FILE_ARGUMENT = click.Path(exists=True, dir_okay=False, path_type=Path)


def render_option_flags(func):
    """Attach the Markdown verbosity options shared by export commands."""
    options = [
        click.option("--thinking/--no-thinking", default=True, help="Include thinking blocks"),
        click.option(
            "--tool-details/--no-tool-details",
            default=True,
            help="Include tool input/output details",
        ),
        click.option(
            "--system-messages/--no-system-messages",
            default=True,
            help="Include system messages",
        ),
        click.option(
            "--max-output-length",
            type=click.IntRange(min=1),
            default=None,
            help="Maximum tool output length when truncating",
        ),
        click.option(
            "--truncate/--no-truncate",
            default=None,
            help="Truncate long tool output (default from config)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _render_options(
    cfg: Config,
    thinking: bool,
    tool_details: bool,
    system_messages: bool,
    max_output_length: Optional[int],
    truncate: Optional[bool],
) -> RenderOptions:
    return cfg.render_options(
        include_thinking=thinking,
        include_tool_details=tool_details,
        include_system_messages=system_messages,
        max_output_length=max_output_length,
        truncate=truncate,
    )


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to config file",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx, config: Optional[Path], verbose: bool):
    """Parse and query Claude Code session .jsonl files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config.load(config)


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
def info(file: Path):
    """Show session information and statistics."""
    try:
        result = service.session_info(file)
    except OSError as e:
        raise click.ClickException(str(e))

    click.echo(f"Session ID:    {result.session_id}")
    click.echo(f"Version:       {result.version}")
    click.echo(f"Working Dir:   {result.cwd}")
    if result.git_branch:
        click.echo(f"Git Branch:    {result.git_branch}")
    click.echo(f"Start:         {result.start_time}")
    click.echo(f"End:           {result.end_time}")
    click.echo()
    click.echo("Statistics:")
    click.echo(f"  Total entries:      {result.stats.total_entries:,}")
    click.echo(f"  User messages:      {result.stats.user_messages:,}")
    click.echo(f"  Assistant messages: {result.stats.assistant_messages:,}")
    click.echo(f"  System messages:    {result.stats.system_messages:,}")
    click.echo(f"  Tool uses:          {result.stats.tool_uses:,}")
    click.echo(f"  Tool results:       {result.stats.tool_results:,}")
    click.echo(f"  Errors:             {result.stats.errors:,}")
    click.echo()
    click.echo("Tokens:")
    click.echo(f"  Input:          {result.tokens.total_input_tokens:,}")
    click.echo(f"  Output:         {result.tokens.total_output_tokens:,}")
    click.echo(f"  Cache creation: {result.tokens.total_cache_creation:,}")
    click.echo(f"  Cache read:     {result.tokens.total_cache_read:,}")
    click.echo(f"  Total:          {result.tokens.total:,}")


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.option("--count", is_flag=True, help="Show how often each tool was used")
def tools(file: Path, count: bool):
    """List all tools used in the session."""
    try:
        if count:
            for name, uses in service.session_tool_counts(file):
                click.echo(f"{uses:>5}  {name}")
            return
        names = service.session_tools(file)
    except OSError as e:
        raise click.ClickException(str(e))

    for name in names:
        click.echo(name)


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.option("--read", "only", flag_value="read", help="Only files read")
@click.option("--written", "only", flag_value="written", help="Only files written")
@click.option("--edited", "only", flag_value="edited", help="Only files edited")
def files(file: Path, only: Optional[str]):
    """List all files accessed during the session."""
    try:
        access = service.session_files(file)
    except OSError as e:
        raise click.ClickException(str(e))

    if only:
        for path in getattr(access, only):
            click.echo(path)
        return

    for label, paths in (("Read", access.read), ("Written", access.written), ("Edited", access.edited)):
        click.echo(f"{label} ({len(paths)}):")
        for path in paths:
            click.echo(f"  {path}")


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
def agents(file: Path):
    """List all subagents invoked during the session."""
    try:
        invocations = service.session_agents(file)
    except OSError as e:
        raise click.ClickException(str(e))

    if not invocations:
        click.echo("No subagents were invoked in this session.")
        return

    for inv in invocations:
        click.echo(f"{inv.subagent_type}: {inv.description}")
        click.echo(f"  Invocation: {inv.invocation_id}")
        click.echo(f"  Time:       {inv.timestamp}")


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.option("--limit", type=click.IntRange(min=1), default=None, help="Show only the first N messages")
def conversation(file: Path, limit: Optional[int]):
    """Show the user/assistant conversation flow."""
    try:
        messages = service.session_conversation(file, limit=limit)
    except OSError as e:
        raise click.ClickException(str(e))

    for message in messages:
        click.echo(f"[{message.timestamp}] {message.role.upper()}:")
        click.echo(message.content)
        click.echo()


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
def bash(file: Path):
    """List all bash commands executed in the session."""
    try:
        commands = service.session_bash(file)
    except OSError as e:
        raise click.ClickException(str(e))

    if not commands:
        click.echo("No bash commands were executed in this session.")
        return

    for cmd in commands:
        click.echo(f"$ {cmd.command}")
        if cmd.description:
            click.echo(f"  # {cmd.description}")


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.argument("query")
@click.option("--case-sensitive", is_flag=True, help="Match case exactly")
def search(file: Path, query: str, case_sensitive: bool):
    """Find entries containing QUERY."""
    try:
        matches = service.session_search(file, query, case_sensitive=case_sensitive)
    except OSError as e:
        raise click.ClickException(str(e))

    for entry in matches:
        if isinstance(entry, SummaryEntry):
            click.echo(f"summary: {entry.summary[:100]}")
            continue
        preview = block_text(getattr(entry, "content", "") or "")[:100].replace("\n", " ")
        click.echo(f"[{entry.timestamp}] {entry.type} {entry.uuid}: {preview}")
    click.echo(f"\n{len(matches)} matching entries")


@main.command()
@click.argument("file", type=FILE_ARGUMENT)
@click.option("--pretty", is_flag=True, help="Pretty-print the JSON")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Output file (defaults to stdout)",
)
def export(file: Path, pretty: bool, output: Optional[Path]):
    """Export the parsed session as JSON."""
    try:
        data = service.session_export(file, pretty=pretty)
        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(data, encoding="utf-8")
    except OSError as e:
        raise click.ClickException(str(e))

    if output:
        click.echo(f"Exported to {output}")
    else:
        click.echo(data)


@main.command("to-markdown")
@click.argument("file", type=FILE_ARGUMENT)
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Write the session and subagent threads here (defaults to stdout)",
)
@render_option_flags
@click.pass_context
def to_markdown(ctx, file: Path, output_dir: Optional[Path], **render_flags):
    """Export a session to markdown."""
    cfg: Config = ctx.obj["config"]
    options = _render_options(cfg, **render_flags)

    try:
        if output_dir is None:
            click.echo(service.session_to_markdown(file, options))
            return
        result = service.session_to_enriched_markdown(file, options, output_dir)
    except OSError as e:
        raise click.ClickException(str(e))

    subagents = len(result.subagent_files)
    extra = f" (+ {subagents} subagent thread{'s' if subagents != 1 else ''})" if subagents else ""
    click.echo(f"Exported to {result.files_written[0]}{extra}")


@main.command("list")
@click.option(
    "-p",
    "--project",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project path (defaults to the current directory)",
)
@click.pass_context
def list_sessions(ctx, project: Optional[Path]):
    """List sessions recorded for a project."""
    cfg: Config = ctx.obj["config"]
    items = service.session_list(project, cfg.projects_dir)

    if not items:
        click.echo("No session files found.")
        return

    for item in items:
        click.echo(f"{item.index:>3}. {item.timestamp}  {item.file_name}")
        click.echo(f"     {item.title}")


@main.command("export-all-markdown")
@click.option(
    "-p",
    "--project",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Project path (defaults to the current directory)",
)
@click.option(
    "-o",
    "--output-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Output directory (overrides config)",
)
@click.option("--workers", type=click.IntRange(min=1), default=1, help="Sessions exported in parallel")
@render_option_flags
@click.pass_context
def export_all_markdown(
    ctx,
    project: Optional[Path],
    output_dir: Optional[Path],
    workers: int,
    **render_flags,
):
    """Export all sessions of a project to markdown files."""
    cfg: Config = ctx.obj["config"]
    options = _render_options(cfg, **render_flags)
    output = output_dir or cfg.output_dir

    items = service.session_list(project, cfg.projects_dir)
    if not items:
        click.echo("No session files found.")
        return

    click.echo(f"Exporting {len(items)} session(s) to {output}\n")
    result = service.export_all_markdown(
        [item.file_path for item in items], output, options, workers=workers
    )

    for outcome in result.outcomes:
        if outcome.ok:
            click.echo(f"  {outcome.file_path.name} done ({len(outcome.files_written)} files)")
        else:
            click.echo(f"  {outcome.file_path.name} ERROR: {outcome.error}")

    click.echo(f"\nDone: {len(result.succeeded)} exported, {len(result.failed)} failed")


@main.command()
@click.option(
    "--projects-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Set Claude projects directory",
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Set default export directory",
)
@click.option("--max-output-length", type=click.IntRange(min=1), default=None, help="Set truncation length")
@click.option("--truncate/--no-truncate", default=None, help="Truncate long tool output by default")
@click.option("--show", is_flag=True, help="Show current configuration")
@click.pass_context
def config(
    ctx,
    projects_dir: Optional[Path],
    output_dir: Optional[Path],
    max_output_length: Optional[int],
    truncate: Optional[bool],
    show: bool,
):
    """Configure default settings."""
    cfg: Config = ctx.obj["config"]
    changes = (projects_dir, output_dir, max_output_length, truncate)

    if show or all(value is None for value in changes):
        click.echo("Current configuration:")
        click.echo(f"  Projects dir:      {cfg.projects_dir}")
        click.echo(f"  Output dir:        {cfg.output_dir}")
        click.echo(f"  Max output length: {cfg.max_output_length}")
        click.echo(f"  Truncate:          {cfg.truncate}")
        return

    if projects_dir:
        cfg.projects_dir = projects_dir
    if output_dir:
        cfg.output_dir = output_dir
    if max_output_length:
        cfg.max_output_length = max_output_length
    if truncate is not None:
        cfg.truncate = truncate

    cfg.save(ctx.parent.params.get("config"))
    click.echo("Configuration saved.")
    click.echo(f"  Projects dir: {cfg.projects_dir}")
    click.echo(f"  Output dir:   {cfg.output_dir}")


if __name__ == "__main__":
    main()
