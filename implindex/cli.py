"""implindex CLI — inspect implementor shards the way a doc page merges them."""

import html
import logging
import re

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from implindex import __version__

console = Console()

_TAG_RE = re.compile(r"</?[a-zA-Z][^>]*>")


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--diagnostics-dir",
    envvar="IMPLINDEX_DIAGNOSTICS_DIR",
    default=None,
    type=click.Path(file_okay=False),
    help="Also write diagnostics as JSONL into this directory",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, diagnostics_dir: str | None, verbose: bool):
    """implindex — merge and inspect trait implementor shards.

    Loads per-library implementor shards (rustdoc implementor scripts or
    canonical JSON/YAML files) into a page session and shows the merged,
    deduplicated listing for a trait.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    ctx.obj = {"diagnostics_dir": diagnostics_dir}


def _new_session(obj: dict):
    from implindex.diagnostics import DiagnosticLog
    from implindex.registry.session import PageSession

    return PageSession(DiagnosticLog(obj.get("diagnostics_dir")))


def _plain(markup: str) -> str:
    text = _TAG_RE.sub("", markup.replace("<br>", " "))
    return " ".join(html.unescape(text).split())


def _print_diagnostics(session) -> None:
    events = session.diagnostics.events()
    if not events:
        return
    console.print(f"\n[yellow]{len(events)} diagnostic(s):[/]")
    for event in events:
        console.print("  [yellow]![/] " + escape(f"[{event.code}] {event.message}"))


# ── Show ─────────────────────────────────────────────────────────────


@main.command()
@click.argument("trait_id")
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.option("--library", "-l", multiple=True, help="Only show impls from this library")
@click.pass_obj
def show(obj: dict, trait_id: str, paths: tuple, library: tuple):
    """Show the merged implementor listing for TRAIT_ID.

    PATHS are shard files or directories searched recursively.
    """
    from implindex.registry.models import split_listing
    from implindex.shards.loader import load_into

    session = _new_session(obj)
    updates = []
    # Attach before loading: an empty snapshot first, then one delta per shard.
    session.attach(trait_id, updates.append)
    loaded = load_into(session, paths)

    records = session.query(trait_id)
    if library:
        records = tuple(r for r in records if r.library_id in library)

    console.print(
        f"\n[bold blue]implindex[/] — {escape(trait_id)}: {len(records)} impl(s) "
        f"from {loaded} file(s), {len(updates)} notification(s)\n"
    )

    if not records:
        console.print("[yellow]No implementors found.[/]")
        _print_diagnostics(session)
        return

    listing = split_listing(records)
    for title, group in (("Implementors", listing.implementors), ("Auto implementors", listing.synthetic)):
        if not group:
            continue
        table = Table(title=f"{title} ({len(group)})")
        table.add_column("Library", style="cyan")
        table.add_column("Type")
        table.add_column("Signature")
        for record in group:
            table.add_row(
                escape(record.library_id),
                escape(record.target_type_id),
                escape(_plain(record.source_text)),
            )
        console.print(table)

    _print_diagnostics(session)


# ── Traits ───────────────────────────────────────────────────────────


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.pass_obj
def traits(obj: dict, paths: tuple):
    """List every trait with merged implementors under PATHS."""
    from implindex.shards.loader import load_into

    session = _new_session(obj)
    registry = session.initialize()
    load_into(session, paths)

    trait_ids = registry.trait_ids()
    if not trait_ids:
        console.print("[yellow]No traits found.[/]")
        _print_diagnostics(session)
        return

    table = Table(title=f"Traits ({len(trait_ids)})")
    table.add_column("Trait", style="cyan")
    table.add_column("Impls", justify="right")
    table.add_column("Libraries", justify="right")
    for trait_id in trait_ids:
        bucket = registry.query(trait_id)
        table.add_row(escape(trait_id), str(len(bucket)), str(len({r.library_id for r in bucket})))
    console.print(table)

    _print_diagnostics(session)


# ── Validate ─────────────────────────────────────────────────────────


@main.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.pass_context
def validate(ctx: click.Context, paths: tuple):
    """Validate shard files without merging them."""
    from implindex.errors import ShardLoadError
    from implindex.shards.loader import discover_shard_files, load_shard_file
    from implindex.shards.validator import Severity, validate_shard

    failed = False
    for root in paths:
        for path in discover_shard_files(root):
            console.print(f"\n[bold blue]implindex[/] — Validating: {escape(str(path))}")
            try:
                implementors = load_shard_file(path)
            except ShardLoadError as e:
                console.print(f"  [red]x[/] {escape(e.reason)}")
                failed = True
                continue

            for library_id, descriptors in implementors.items():
                result = validate_shard(library_id, descriptors)
                mark = "[green]v[/]" if result.passed else "[red]x[/]"
                console.print(f"  {mark} " + escape(f"{library_id or '<empty>'} {result.summary()}"))
                for issue in result.issues:
                    color = {Severity.ERROR: "red", Severity.WARNING: "yellow"}.get(issue.severity, "dim")
                    location = f" at {issue.path}" if issue.path else ""
                    code = escape(f"[{issue.code}]")
                    console.print(f"      [{color}]{code}[/]" + escape(f"{location} {issue.message}"))
                failed = failed or not result.passed

    if failed:
        console.print("\n[red]FAIL[/]")
        ctx.exit(1)
    console.print("\n[green]Valid![/]")


# ── Schema ───────────────────────────────────────────────────────────


@main.command(name="schema")
def dump_schema():
    """Print the JSON Schema for shard payloads."""
    import json

    from implindex.shards.schema import get_schema

    click.echo(json.dumps(get_schema(), indent=2))


if __name__ == "__main__":
    main()
