"""Command line interface for Vellum."""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .api import NoteStore, set_data_dir
from .corpus import Corpus
from .errors import VellumError
from .indexer import IndexResult
from .search import SearchHit
from .session import QuerySession
from .text import Messages, Styles

console = Console()

app = typer.Typer(
    help=Messages.APP_HELP,
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
)
corpus_app = typer.Typer(help=Messages.HELP_CORPUS, no_args_is_help=True)
app.add_typer(corpus_app, name="corpus")


@dataclass(slots=True)
class CliState:
    data_dir: Path | None = None


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"Vellum v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Path | None = typer.Option(
        None,
        "--data-dir",
        help=Messages.HELP_DATA_DIR,
        file_okay=False,
    ),
    verbose: bool = typer.Option(False, "--verbose", help=Messages.HELP_VERBOSE),
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=_version_callback,
        is_eager=True,
        help=Messages.HELP_VERSION,
    ),
) -> None:
    """Global Typer callback for shared options."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    ctx.obj = CliState(data_dir=data_dir)


def _build_store(data_dir: Path | None) -> NoteStore:
    if data_dir is not None:
        set_data_dir(data_dir)
    return NoteStore()


def _store(ctx: typer.Context) -> NoteStore:
    state = ctx.obj if isinstance(ctx.obj, CliState) else CliState()
    try:
        return _build_store(state.data_dir)
    except (VellumError, RuntimeError) as exc:
        _fail(exc)


def _fail(exc: Exception) -> None:
    console.print(_styled(str(exc), Styles.ERROR))
    raise typer.Exit(code=1)


@corpus_app.command("create")
def corpus_create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help=Messages.HELP_CORPUS_NAME),
    root: Path | None = typer.Option(
        None,
        "--root",
        "-r",
        help=Messages.HELP_CORPUS_ROOT,
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Create a new, empty corpus."""
    store = _store(ctx)
    try:
        corpus = store.create_corpus(name, root=root)
    except VellumError as exc:
        _fail(exc)
    console.print(
        _styled(Messages.INFO_CORPUS_CREATED.format(name=corpus.name, id=corpus.id), Styles.SUCCESS)
    )


@corpus_app.command("list")
def corpus_list(ctx: typer.Context) -> None:
    """List every corpus with its note count."""
    store = _store(ctx)
    corpora = store.list_corpora()
    if not corpora:
        console.print(_styled(Messages.INFO_NO_CORPORA, Styles.WARNING))
        return
    _render_corpora(corpora)


@corpus_app.command("delete")
def corpus_delete(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help=Messages.HELP_CORPUS_REF),
) -> None:
    """Delete a corpus and all of its chunks."""
    store = _store(ctx)
    try:
        store.delete_corpus(ref)
    except VellumError as exc:
        _fail(exc)
    console.print(_styled(Messages.INFO_CORPUS_DELETED.format(ref=ref), Styles.SUCCESS))


@app.command(help=Messages.HELP_INDEX)
def index(
    ctx: typer.Context,
    refs: list[str] | None = typer.Argument(None, help=Messages.HELP_INDEX_REFS),
    root: Path | None = typer.Option(
        None,
        "--root",
        "-r",
        help=Messages.HELP_CORPUS_ROOT,
        exists=True,
        file_okay=False,
        resolve_path=True,
    ),
    fresh: bool = typer.Option(False, "--fresh", help=Messages.HELP_INDEX_FRESH),
) -> None:
    store = _store(ctx)
    try:
        if root is not None:
            if not refs or len(refs) != 1:
                raise VellumError(Messages.ERROR_ROOT_NEEDS_ONE_CORPUS, code="cli.usage")
            results = [store.refresh(refs[0], root=root, clear_cache=fresh)]
        else:
            targets = list(refs) if refs else [
                corpus.id for corpus in store.list_corpora() if corpus.root is not None
            ]
            if not targets:
                console.print(_styled(Messages.INFO_NO_CORPORA, Styles.WARNING))
                return
            results = store.refresh_many(targets, clear_cache=fresh)
    except (VellumError, RuntimeError) as exc:
        _fail(exc)
    names = {corpus.id: corpus.name for corpus in store.list_corpora()}
    for result in results:
        _render_index_result(names.get(result.corpus_id, str(result.corpus_id)), result)


@app.command("ls", help=Messages.HELP_LS)
def list_paths(
    ctx: typer.Context,
    pattern: str = typer.Argument("*", help=Messages.HELP_LS_PATTERN),
    corpora: list[str] | None = typer.Option(None, "--corpus", "-c", help=Messages.HELP_SCOPE),
    session_id: str | None = typer.Option(None, "--session", "-s", help=Messages.HELP_SESSION),
) -> None:
    store = _store(ctx)
    try:
        session = _select_session(store, corpora, session_id, track=False)
        listing = store.list_paths(session, pattern)
    except VellumError as exc:
        _fail(exc)
    if not listing:
        console.print(_styled(Messages.INFO_NO_PATHS, Styles.WARNING))
        return
    names = {corpus.id: corpus.name for corpus in store.list_corpora()}
    for corpus_id, paths in listing.items():
        console.print(_styled(names.get(corpus_id, str(corpus_id)), Styles.TITLE))
        for path in paths:
            console.print(f"  {path}", highlight=False)


@app.command(help=Messages.HELP_SEARCH)
def search(
    ctx: typer.Context,
    query: str = typer.Argument(..., help=Messages.HELP_SEARCH_QUERY),
    corpora: list[str] | None = typer.Option(None, "--corpus", "-c", help=Messages.HELP_SCOPE),
    session_id: str | None = typer.Option(None, "--session", "-s", help=Messages.HELP_SESSION),
    top: int | None = typer.Option(None, "--top", "-k", min=0, help=Messages.HELP_SEARCH_TOP),
    path: str | None = typer.Option(None, "--path", "-p", help=Messages.HELP_SEARCH_PATH),
    keyword: bool = typer.Option(False, "--keyword", help=Messages.HELP_SEARCH_KEYWORD),
    track: bool = typer.Option(False, "--track", help=Messages.HELP_TRACK),
) -> None:
    store = _store(ctx)
    try:
        session = _select_session(store, corpora, session_id, track=track)
        if keyword:
            hits = store.keyword_search(session, query, top, path=path)
        else:
            hits = store.search(session, query, top, path=path)
    except (VellumError, RuntimeError) as exc:
        _fail(exc)
    if session.tracked and session_id is None:
        console.print(_styled(Messages.INFO_SESSION_TRACKED.format(id=session.id), Styles.INFO))
    if not hits:
        console.print(_styled(Messages.INFO_NO_RESULTS, Styles.WARNING))
        return
    names = {corpus.id: corpus.name for corpus in store.list_corpora()}
    _render_hits(hits, names)


@app.command(help=Messages.HELP_SESSIONS)
def sessions(
    ctx: typer.Context,
    limit: int = typer.Option(10, "--limit", "-n", min=1, help=Messages.HELP_SESSIONS_LIMIT),
) -> None:
    store = _store(ctx)
    recent = store.recent_sessions(limit)
    if not recent:
        console.print(_styled(Messages.INFO_NO_SESSIONS, Styles.WARNING))
        return
    _render_sessions(recent)


@app.command(help=Messages.HELP_CAT)
def cat(
    ctx: typer.Context,
    ref: str = typer.Argument(..., help=Messages.HELP_CORPUS_REF),
    path: str = typer.Argument(..., help=Messages.HELP_NOTE_PATH),
) -> None:
    store = _store(ctx)
    try:
        content = store.read_note(ref, path)
    except VellumError as exc:
        _fail(exc)
    typer.echo(content)


def _select_session(
    store: NoteStore,
    corpora: Sequence[str] | None,
    session_id: str | None,
    *,
    track: bool,
) -> QuerySession:
    if session_id is not None:
        return store.resolve_session(session_id)
    scope: list[int | str] = list(corpora) if corpora else [
        corpus.id for corpus in store.list_corpora()
    ]
    return store.create_session(scope, tracked=track)


def _render_corpora(corpora: Sequence[Corpus]) -> None:
    console.print(_styled(Messages.TABLE_CORPORA_TITLE, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_ID, justify="right")
    table.add_column(Messages.TABLE_HEADER_NAME)
    table.add_column(Messages.TABLE_HEADER_NOTES, justify="right")
    table.add_column(Messages.TABLE_HEADER_ROOT, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_UPDATED)
    for corpus in corpora:
        table.add_row(
            str(corpus.id),
            corpus.name,
            str(corpus.note_count),
            str(corpus.root) if corpus.root else "-",
            corpus.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def _render_index_result(name: str, result: IndexResult) -> None:
    console.print(
        _styled(
            Messages.INFO_INDEX_SUMMARY.format(
                name=name,
                added=len(result.added),
                modified=len(result.modified),
                removed=len(result.removed),
                unchanged=len(result.unchanged),
                chunks=result.chunks_written,
            ),
            Styles.SUCCESS if not result.failed else Styles.WARNING,
        )
    )
    for path, reason in sorted(result.failed.items()):
        console.print(
            _styled(Messages.INFO_INDEX_FAILED_PATH.format(path=path, reason=reason), Styles.ERROR)
        )


def _render_hits(hits: Sequence[SearchHit], names: dict[int, str]) -> None:
    console.print(_styled(Messages.TABLE_RESULTS_TITLE, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_INDEX, justify="right")
    table.add_column(Messages.TABLE_HEADER_SCORE, justify="right")
    table.add_column(Messages.TABLE_HEADER_CORPUS)
    table.add_column(Messages.TABLE_HEADER_PATH, overflow="fold")
    table.add_column(Messages.TABLE_HEADER_CHUNK, justify="right")
    table.add_column(Messages.TABLE_HEADER_PREVIEW, overflow="fold")
    for idx, hit in enumerate(hits, start=1):
        table.add_row(
            str(idx),
            f"{hit.score:.3f}",
            names.get(hit.corpus_id, str(hit.corpus_id)),
            hit.path,
            str(hit.chunk_index),
            _format_preview(hit.text),
        )
    console.print(table)


def _render_sessions(items: Sequence[QuerySession]) -> None:
    console.print(_styled(Messages.TABLE_SESSIONS_TITLE, Styles.TITLE))
    table = Table(show_header=True, header_style=Styles.TABLE_HEADER)
    table.add_column(Messages.TABLE_HEADER_ID, justify="right")
    table.add_column(Messages.TABLE_HEADER_SCOPE)
    table.add_column(Messages.TABLE_HEADER_CREATED)
    for item in items:
        table.add_row(
            str(item.id),
            ", ".join(str(corpus_id) for corpus_id in item.scope) or "-",
            item.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def _styled(text: str, style: str) -> str:
    return f"[{style}]{text}[/{style}]"


def _format_preview(text: str | None, limit: int = 80) -> str:
    if not text:
        return "-"
    snippet = " ".join(text.split())
    if len(snippet) <= limit:
        return snippet
    return snippet[: limit - 1].rstrip() + "…"


def run(argv: list[str] | None = None) -> None:
    """Entry point wrapper allowing optional argument override."""
    args = list(argv) if argv is not None else sys.argv[1:]
    app(args=args)
