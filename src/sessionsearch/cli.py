"""Session search CLI.

Provides commands to index agent transcripts, search them at session or
message granularity, and inspect a single transcript directly.
"""

import asyncio
import json
import logging
import sys
from collections.abc import Coroutine
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, NoReturn, Optional, TypeVar

import structlog
import typer

from sessionsearch.config import AppConfig, expand_home
from sessionsearch.errors import SessionSearchError
from sessionsearch.models.enums import QueryMode, SearchScope
from sessionsearch.models.hit import MessageContext, MessageHit, SessionHit
from sessionsearch.models.inspect import SessionEntry, ToolCall, ToolCallMatch
from sessionsearch.models.query import DEFAULT_LIMIT, SearchFilters, SearchRequest
from sessionsearch.services.factory import create_services
from sessionsearch.services.inspector import SessionInspector, filter_tools, parse_read_arguments
from sessionsearch.services.normalizer import extract_tool_calls
from sessionsearch.services.reports import run_doctor

MAX_OUTPUT_LEN = 160
DEFAULT_TOOL_FILTER = "read"
SESSION_FIELDS = ("path", "title", "last_message_at", "score")
MESSAGE_FIELDS = ("path", "title", "timestamp", "role", "turn_index", "score")

T = TypeVar("T")


class ScopeOption(str, Enum):
    """Search granularity."""

    SESSION = "session"
    MESSAGE = "message"


def configure_logging(verbose: bool = False) -> None:
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=lambda *args: structlog.PrintLogger(file=sys.stderr),
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if verbose else logging.WARNING),
        context_class=dict,
        cache_logger_on_first_use=False,
    )


logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="sessionsearch",
    help="""Index AI-agent session transcripts and search them.

Examples:

  # Index the default sessions root
  sessionsearch index

  # Search user messages from the last week
  sessionsearch find "migration plan" --days 7

  # Show the read tool calls of a session by id prefix
  sessionsearch show 2025-01-14""",
    rich_markup_mode="markdown",
)


@app.callback()
def main(
    ctx: typer.Context,
    db: Optional[str] = typer.Option(
        None,
        "--db",
        envvar="SESSIONSEARCH_DB",
        help="Index database file (default: ~/.config/sessionsearch/index.sqlite)",
    ),
    root: Optional[str] = typer.Option(
        None,
        "--root",
        envvar="SESSIONSEARCH_ROOT",
        help="Sessions root directory (default: ~/.config/sessionsearch/sessions)",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log progress to stderr",
    ),
) -> None:
    configure_logging(verbose)
    ctx.obj = AppConfig.resolve(db_path=db, sessions_root=root)


@app.command()
def index(
    ctx: typer.Context,
    root: Optional[str] = typer.Option(
        None,
        "--root",
        help="Sessions root directory to index (overrides the global --root)",
    ),
    full: bool = typer.Option(
        False,
        "--full",
        help="Full reindex (ignore the mtime/size check)",
    ),
    as_json: bool = typer.Option(False, "--json", help="JSON output (machine-friendly)"),
) -> None:
    """Index every transcript under the sessions root."""
    config: AppConfig = ctx.obj
    target = expand_home(root) if root else config.sessions_root

    async def run_sync() -> Any:
        async with create_services(config) as services:
            return await services.sync.sync(target, force_full=full)

    result = _run(run_sync())

    for error in result.errors:
        logger.warning("indexing_error", error=error)

    if as_json:
        typer.echo(json.dumps(result.model_dump(exclude={"errors"}), indent=2))
        return

    typer.echo(f"scanned: {result.scanned}")
    typer.echo(f"indexed: {result.indexed}")
    typer.echo(f"skipped: {result.skipped}")
    typer.echo(f"removed: {result.removed}")
    typer.echo(f"parse_errors: {result.parse_errors}")


@app.command()
def find(
    ctx: typer.Context,
    query: str = typer.Argument(..., help="Search query (literal by default)"),
    scope: ScopeOption = typer.Option(ScopeOption.MESSAGE, "--scope", help="Search scope"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Filter by agent name"),
    workspace: Optional[str] = typer.Option(None, "--workspace", help="Filter by workspace path"),
    repo: Optional[str] = typer.Option(None, "--repo", "--project", help="Filter by repo name or path"),
    branch: Optional[str] = typer.Option(None, "--branch", help="Filter by git branch"),
    role: Optional[str] = typer.Option(None, "--role", help="Filter by message role (user/assistant)"),
    include_assistant: bool = typer.Option(
        False,
        "--include-assistant",
        help="Include assistant messages (default: user only)",
    ),
    after: Optional[str] = typer.Option(None, "--after", help="Only results at or after this ISO-8601 time"),
    before: Optional[str] = typer.Option(None, "--before", help="Only results at or before this ISO-8601 time"),
    days: Optional[int] = typer.Option(None, "--days", min=0, help="Only results from the last N days"),
    around: int = typer.Option(0, "--around", min=0, help="Context messages around each match"),
    limit: int = typer.Option(DEFAULT_LIMIT, "--limit", "-n", help="Maximum number of results to return"),
    fts: bool = typer.Option(False, "--fts", help="Use raw FTS5 query syntax (advanced)"),
    snippet: bool = typer.Option(False, "--snippet", help="Show a text snippet for each result"),
    fields: Optional[str] = typer.Option(
        None,
        "--fields",
        help="Comma-separated fields for JSON output (add 'context' to include --around messages)",
    ),
    as_json: bool = typer.Option(False, "--json", help="JSON array output"),
    as_jsonl: bool = typer.Option(False, "--jsonl", help="JSON Lines output"),
) -> None:
    """Search indexed sessions or messages."""
    if as_json and as_jsonl:
        _fail("--json and --jsonl are mutually exclusive")

    config: AppConfig = ctx.obj
    search_scope = SearchScope(scope.value)
    field_set = build_field_set(fields, search_scope)
    if as_json or as_jsonl:
        include_context = "context" in field_set
    else:
        include_context = fields is None or "context" in field_set

    if after is None and days is not None:
        after = (datetime.now(timezone.utc) - timedelta(days=days)).strftime("%Y-%m-%dT%H:%M:%SZ")

    request = SearchRequest(
        text=query,
        scope=search_scope,
        mode=QueryMode.FTS if fts else QueryMode.LITERAL,
        filters=SearchFilters(
            agent=agent,
            workspace=workspace,
            repo=repo,
            branch=branch,
            role=resolve_role_filter(role, include_assistant) if search_scope is SearchScope.MESSAGE else None,
            after=after,
            before=before,
        ),
        limit=limit,
        around=around if search_scope is SearchScope.MESSAGE and include_context else 0,
    )

    async def run_search() -> Any:
        async with create_services(config) as services:
            return await services.query.search(request)

    hits = _run(run_search())

    if as_json or as_jsonl:
        _emit_json([hit_to_json(hit, field_set) for hit in hits], lines=as_jsonl)
        return

    for hit in hits:
        if isinstance(hit, SessionHit):
            _emit_session_hit(hit, snippet)
        else:
            _emit_message_hit(hit, snippet)


@app.command()
def show(
    ctx: typer.Context,
    target: str = typer.Argument(..., metavar="PATH|SESSION_ID", help="Session file path or id prefix"),
    turn: Optional[int] = typer.Option(None, "--turn", min=0, help="Show a specific turn by index"),
    line: Optional[int] = typer.Option(None, "--line", min=1, help="Show a specific line number"),
    tool: Optional[str] = typer.Option(None, "--tool", help="Filter by tool name"),
    limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Maximum number of tool calls to show"),
    extract: bool = typer.Option(False, "--extract", help="Show file contents from read tool calls"),
    as_json: bool = typer.Option(False, "--json", help="JSON output (machine-friendly)"),
) -> None:
    """Inspect one transcript directly, without the index."""
    if turn is not None and line is not None:
        _fail("--turn and --line are mutually exclusive")

    config: AppConfig = ctx.obj
    inspector = SessionInspector()
    tool_filter = tool if turn is not None or line is not None or tool else DEFAULT_TOOL_FILTER

    async def run_show() -> list[str]:
        path = await inspector.resolve_by_prefix(target, config.sessions_root)

        if turn is not None or line is not None:
            entry = (
                await inspector.load_by_turn(path, turn)
                if turn is not None
                else await inspector.load_by_line(path, line)
            )
            tools = filter_tools(_entry_tools(entry), tool_filter)
            if extract:
                return await _extract_reads(inspector, tools)
            if as_json:
                return [json.dumps(entry_to_json(entry, tools), indent=2)]
            return format_entry(entry, tools)

        matches = await inspector.scan_tool_calls(path, tool_filter, limit)
        if extract:
            return await _extract_reads(inspector, [match.tool for match in matches])
        if as_json:
            return [json.dumps([match_to_json(match) for match in matches], indent=2)]
        return format_matches(matches)

    for text in _run(run_show()):
        typer.echo(text)


@app.command()
def stats(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="JSON output (machine-friendly)"),
) -> None:
    """Show the number of indexed sessions and their time range."""
    config: AppConfig = ctx.obj

    async def run_stats() -> Any:
        async with create_services(config) as services:
            return await services.reports.load_stats()

    report = _run(run_stats())

    if as_json:
        typer.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    typer.echo(f"sessions: {report.session_count}")
    typer.echo(f"oldest: {report.oldest_message_at or '(unknown)'}")
    typer.echo(f"newest: {report.newest_message_at or '(unknown)'}")


@app.command()
def agents(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="JSON output (machine-friendly)"),
) -> None:
    """List agents with their number of indexed sessions."""
    config: AppConfig = ctx.obj

    async def run_agents() -> Any:
        async with create_services(config) as services:
            return await services.reports.load_agents()

    infos = _run(run_agents())

    if as_json:
        _emit_json([info.model_dump(mode="json") for info in infos], lines=False)
        return

    if not infos:
        typer.echo("no sessions indexed")
        return
    for info in infos:
        typer.echo(f"{info.name}: {info.session_count}")


@app.command()
def doctor(
    ctx: typer.Context,
    as_json: bool = typer.Option(False, "--json", help="JSON output (machine-friendly)"),
) -> None:
    """Check the sessions root, the index file and FTS5 support."""
    config: AppConfig = ctx.obj
    report = _run(run_doctor(config.db_path, config.sessions_root))

    if as_json:
        typer.echo(json.dumps(report.model_dump(mode="json"), indent=2))
        return

    typer.echo(f"root: {report.root}")
    typer.echo(f"root_exists: {_flag(report.root_exists)}")
    typer.echo(f"db_path: {report.db_path}")
    typer.echo(f"db_exists: {_flag(report.db_exists)}")
    typer.echo(f"schema_ok: {_flag(report.schema_ok)}")
    if report.schema_error:
        typer.echo(f"schema_error: {report.schema_error}")
    typer.echo(f"fts5_available: {_flag(report.fts5_available)}")
    typer.echo(f"indexed_sessions: {report.indexed_sessions}")
    typer.echo(f"newest_message_at: {report.newest_message_at or '(unknown)'}")


@app.command()
def version() -> None:
    """Show version information."""
    from sessionsearch import __version__

    typer.echo(f"sessionsearch {__version__}")


def resolve_role_filter(role: str | None, include_assistant: bool) -> str | None:
    """Message searches default to user turns unless a role or --include-assistant is given."""
    role = role.strip().lower() if role else None
    if role:
        return role
    return None if include_assistant else "user"


def trim_output(text: str) -> str:
    """Collapse whitespace and cut to the display width."""
    return " ".join(text.split())[:MAX_OUTPUT_LEN]


def build_field_set(fields: str | None, scope: SearchScope) -> set[str]:
    """Parse a comma-separated field list, falling back to the per-scope defaults."""
    if fields is None:
        return set(SESSION_FIELDS if scope is SearchScope.SESSION else MESSAGE_FIELDS)
    return {field.strip().lower() for field in fields.split(",") if field.strip()}


def hit_to_json(hit: SessionHit | MessageHit, fields: set[str]) -> dict[str, Any]:
    data = hit.model_dump(mode="json", exclude_none=True)
    if isinstance(hit, SessionHit):
        if hit.snippet:
            data["snippet"] = trim_output(hit.snippet)
    else:
        data["text"] = trim_output(hit.text)
        for context in data.get("context", []):
            context["text"] = trim_output(context["text"])
    return {key: value for key, value in data.items() if key in fields}


def entry_to_json(entry: SessionEntry, tools: list[ToolCall]) -> dict[str, Any]:
    data: dict[str, Any] = {"line": entry.line}
    if entry.message_index is not None:
        data["turn"] = entry.message_index
    if entry.role is not None:
        data["role"] = entry.role
    if entry.timestamp is not None:
        data["timestamp"] = entry.timestamp
    data["tools"] = [tool.model_dump(mode="json") for tool in tools]
    return data


def match_to_json(match: ToolCallMatch) -> dict[str, Any]:
    data: dict[str, Any] = {"line": match.line}
    if match.message_index is not None:
        data["turn"] = match.message_index
    data["tool"] = match.tool.model_dump(mode="json")
    return data


def format_entry(entry: SessionEntry, tools: list[ToolCall]) -> list[str]:
    if not tools:
        return ["no tool calls found"]

    lines = [f"line {entry.line} ({_turn_label(entry.message_index)}, role {entry.role or 'unknown'})"]
    if entry.timestamp:
        lines.append(f"timestamp {entry.timestamp}")
    for tool in tools:
        lines.extend([f"tool={tool.name}", format_tool_arguments(tool.arguments), ""])
    return lines


def format_matches(matches: list[ToolCallMatch]) -> list[str]:
    if not matches:
        return ["no tool calls found"]

    lines = []
    for match in matches:
        lines.extend(
            [
                f"line {match.line} ({_turn_label(match.message_index)}) tool={match.tool.name}",
                format_tool_arguments(match.tool.arguments),
                "",
            ]
        )
    return lines


def format_tool_arguments(arguments: Any) -> str:
    if arguments is None:
        return "(no arguments)"
    read = parse_read_arguments(arguments)
    if read is not None:
        path, offset, limit = read
        return f"path={path} offset={offset} limit={limit}"
    return trim_output(json.dumps(arguments))


def _entry_tools(entry: SessionEntry) -> list[ToolCall]:
    return extract_tool_calls(entry.value)


async def _extract_reads(inspector: SessionInspector, tools: list[ToolCall]) -> list[str]:
    lines: list[str] = []
    for tool in tools:
        if tool.name.lower() != DEFAULT_TOOL_FILTER:
            continue
        excerpt = await inspector.read_tool_excerpt(tool.arguments)
        if excerpt is None:
            continue
        lines.append(f">>> {excerpt.path}:{excerpt.offset} (limit {excerpt.limit})")
        lines.extend(f"{number:>4} {text}" for number, text in excerpt.lines)
        lines.append("")
    return lines or ["no readable tool calls found"]


def _emit_session_hit(hit: SessionHit, show_snippet: bool) -> None:
    typer.echo(f"{hit.last_message_at or '(unknown)'} | {hit.title or '(untitled)'}")
    typer.echo(hit.path)
    if show_snippet and hit.snippet:
        text = trim_output(hit.snippet)
        if text:
            typer.echo(text)
    typer.echo()


def _emit_message_hit(hit: MessageHit, show_snippet: bool) -> None:
    typer.echo(f"{hit.timestamp or '(unknown)'} | {hit.title or '(untitled)'}")
    typer.echo(f"{hit.path}#{hit.turn_index}")
    if show_snippet:
        text = trim_output(hit.text)
        if text:
            typer.echo(text)
    for context in hit.context or []:
        _emit_context(context)
    typer.echo()


def _emit_context(context: MessageContext) -> None:
    text = trim_output(context.text)
    if text:
        typer.echo(f"  {context.turn_index}:{context.role or 'unknown'} {text}")


def _emit_json(values: list[dict[str, Any]], lines: bool) -> None:
    if lines:
        for value in values:
            typer.echo(json.dumps(value))
        return
    typer.echo(json.dumps(values, indent=2))


def _turn_label(message_index: int | None) -> str:
    return f"turn {message_index}" if message_index is not None else "turn ?"


def _flag(value: bool) -> str:
    return "true" if value else "false"


def _run(coro: Coroutine[Any, Any, T]) -> T:
    try:
        return asyncio.run(coro)
    except SessionSearchError as e:
        _fail(e.message)
    except OSError as e:
        _fail(str(e))


def _fail(message: str) -> NoReturn:
    typer.echo(f"error: {message}", err=True)
    raise typer.Exit(1)
