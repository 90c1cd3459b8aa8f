"""
CLI entry point for packsmith.

This module provides the Typer-based command-line interface. All user
interaction (prompts, trust consent, collision confirmation) lives here;
the engine only ever sees callbacks.

Commands:
    pack add       Fetch, validate, trust and register a pack
    pack remove    Uninstall a pack everywhere, deregister it and delete its checkout
    pack update    Update one or all git packs, re-trusting changed content
    pack list      List registered packs
    pack info      Show a registered pack's components
    pack validate  Validate a pack directory without registering it
    sync           Converge a project (or the global scope) with packs

Architecture Note:
    The CLI is intentionally thin - it parses arguments, builds callbacks and
    delegates to PackManager. Every PacksmithError is rendered with its code
    and suggestion; with --json it is emitted as a JSON object instead.
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from packsmith import __version__
from packsmith.config import EngineSettings
from packsmith.converge.scope import SyncScope
from packsmith.errors import PackNotRegisteredError, PacksmithError
from packsmith.log import setup_logging
from packsmith.pack.loader import ManifestLoader
from packsmith.pack.manifest import PromptOption
from packsmith.pack.prompts import PromptAnswerer, StaticAnswerer
from packsmith.pack.trust import TrustableItem, TrustItemType, TrustManager
from packsmith.packs import PackManager, SyncReport, UpdateOutcome, UpdateStatus
from packsmith.store.registry import Collision

# Initialize Typer app with metadata
app = typer.Typer(
    name="packsmith",
    help="Install and converge packs of MCP servers, hooks, settings and templates.",
    add_completion=False,
    no_args_is_help=True,
)

# Rich console for formatted output (consent prompts use stderr)
console = Console()
err_console = Console(stderr=True)


@dataclass
class CliState:
    home: Path | None = None
    verbose: bool = False

    def settings(self) -> EngineSettings:
        return EngineSettings.load(self.home)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]packsmith[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging."),
    ] = False,
    home: Annotated[
        Optional[Path],
        typer.Option(
            "--home",
            help="Registry root (default: $PACKSMITH_HOME or ~/.packsmith).",
            resolve_path=True,
        ),
    ] = None,
) -> None:
    """
    packsmith - declarative packs for your agent configuration.

    Register packs once, then sync them into any project. Every artifact a
    pack creates is recorded so removing the pack restores the project.
    """
    setup_logging(verbose)
    ctx.obj = CliState(home=home, verbose=verbose)


def _state(ctx: typer.Context) -> CliState:
    return ctx.obj if isinstance(ctx.obj, CliState) else CliState()


# =============================================================================
# Output helpers
# =============================================================================


def _output_json_error(error_type: str, message: str, code: int = 0, suggestion: str | None = None) -> None:
    """Output an error in JSON format."""
    output = {
        "error": True,
        "error_type": error_type,
        "message": message,
        "code": code,
        "suggestion": suggestion,
    }
    print(json.dumps(output, indent=2))


def _report_error(error: Exception, json_output: bool) -> None:
    if isinstance(error, PacksmithError):
        if json_output:
            _output_json_error(type(error).__name__, error.message, error.code, error.suggestion)
        else:
            console.print(f"[red]Error [E{error.code}]:[/red] {escape(error.message)}")
            if error.suggestion:
                console.print(f"[dim]Suggestion: {escape(error.suggestion)}[/dim]")
        return
    if json_output:
        _output_json_error(type(error).__name__, str(error))
    else:
        console.print(f"[red]Error:[/red] {escape(str(error))}")


# =============================================================================
# Interactive callbacks
# =============================================================================

TRUST_GROUP_TITLES = {
    TrustItemType.SHELL_COMMAND: "Shell commands run at install time",
    TrustItemType.CONFIGURE_SCRIPT: "Configure script",
    TrustItemType.DOCTOR_COMMAND: "Diagnostic commands",
    TrustItemType.DOCTOR_SCRIPT: "Diagnostic scripts",
    TrustItemType.FIX_SCRIPT: "Fix scripts",
    TrustItemType.MCP_SERVER_COMMAND: "MCP server commands",
    TrustItemType.HOOK_FILE: "Hook files",
    TrustItemType.PROMPT_SCRIPT: "Prompt scripts",
}


def _trust_callback(assume_yes: bool, interactive: bool = True):
    def confirm(grouped: dict[TrustItemType, list[TrustableItem]]) -> bool:
        err_console.print("[bold yellow]This pack contains content that runs with your privileges:[/bold yellow]")
        for item_type, items in grouped.items():
            err_console.print(f"\n[bold]{TRUST_GROUP_TITLES.get(item_type, item_type.value)}[/bold]")
            for item in items:
                label = item.relative_path or item.content
                err_console.print(f"  [cyan]•[/cyan] {escape(label)}")
                if item.description and item.description != label:
                    err_console.print(f"    [dim]{escape(item.description)}[/dim]")
        err_console.print()
        if assume_yes:
            err_console.print("[dim]Trusted (--yes)[/dim]")
            return True
        if not interactive:
            return False
        return typer.confirm("Trust this content?", default=False)

    return confirm


def _collision_callback(assume_yes: bool, interactive: bool = True):
    def confirm(collisions: list[Collision]) -> bool:
        err_console.print("[bold yellow]Artifact collisions:[/bold yellow]")
        for collision in collisions:
            err_console.print(f"  [yellow]•[/yellow] {escape(collision.describe())}")
        if assume_yes:
            return True
        if not interactive:
            return False
        return typer.confirm("Continue anyway?", default=False)

    return confirm


class ConsoleAnswerer(PromptAnswerer):
    """Answer prompts interactively; preset values are used without asking."""

    def __init__(self, presets: dict[str, str] | None = None) -> None:
        self.presets = dict(presets or {})

    def ask_input(self, key: str, label: str, default: str | None) -> str:
        if key in self.presets:
            return self.presets[key]
        return typer.prompt(label, default=default or "", show_default=bool(default))

    def ask_select(self, key: str, label: str, options: Sequence[PromptOption], default: str | None) -> str:
        if key in self.presets:
            return self.presets[key]
        console.print(f"[bold]{escape(label)}[/bold]")
        default_index = 1
        for index, option in enumerate(options, start=1):
            if option.value == default:
                default_index = index
            console.print(f"  {index}. {escape(option.label or option.value)}")
        while True:
            choice = typer.prompt("Choice", default=str(default_index))
            if choice.isdigit() and 1 <= int(choice) <= len(options):
                return options[int(choice) - 1].value
            console.print(f"[red]Enter a number between 1 and {len(options)}[/red]")


def _parse_presets(values: list[str] | None) -> dict[str, str]:
    presets: dict[str, str] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got '{item}'", param_hint="--set")
        presets[key] = value
    return presets


def _parse_exclusions(values: list[str] | None) -> dict[str, list[str]] | None:
    if not values:
        return None
    exclusions: dict[str, list[str]] = {}
    for component_id in values:
        pack, sep, _ = component_id.partition(".")
        if not sep:
            raise typer.BadParameter(f"Expected <pack>.<component>, got '{component_id}'", param_hint="--exclude")
        exclusions.setdefault(pack, []).append(component_id)
    return exclusions


# =============================================================================
# Pack Subcommand Group
# =============================================================================

pack_app = typer.Typer(
    name="pack",
    help="Manage registered packs.",
    no_args_is_help=True,
)
app.add_typer(pack_app, name="pack")


@pack_app.command("add")
def pack_add(
    ctx: typer.Context,
    source: Annotated[
        str,
        typer.Argument(help="Git URL, user/repo shorthand, or path to a local pack."),
    ],
    ref: Annotated[
        Optional[str],
        typer.Option("--ref", "-r", help="Tag, branch or commit to check out."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Trust the pack and accept collisions without asking."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """
    Fetch, validate, trust and register a pack.

    Example:
        $ packsmith pack add user/my-pack --ref v1.2.0
    """
    try:
        manager = PackManager(_state(ctx).settings())
        entry = manager.add(
            source,
            ref=ref,
            confirm_trust=_trust_callback(yes, interactive=not json_output),
            confirm_collisions=_collision_callback(yes, interactive=not json_output),
            cwd=Path.cwd(),
        )
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps(entry.model_dump(mode="json", by_alias=True, exclude_none=True), indent=2))
    else:
        console.print(
            f"[green]✓[/green] Added [cyan]{entry.identifier}[/cyan] v{entry.version} ({entry.short_sha})"
        )


@pack_app.command("remove")
def pack_remove(
    ctx: typer.Context,
    identifier: Annotated[str, typer.Argument(help="Pack identifier.")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """Uninstall a pack from every synced scope, then deregister it."""
    try:
        entry = PackManager(_state(ctx).settings()).remove(identifier)
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps({"removed": entry.identifier}, indent=2))
    else:
        console.print(f"[green]✓[/green] Removed [cyan]{entry.identifier}[/cyan]")


def _print_update(outcome: UpdateOutcome) -> None:
    name = f"[cyan]{outcome.identifier}[/cyan]"
    if outcome.status == UpdateStatus.UPDATED:
        console.print(f"[green]✓[/green] {name} {(outcome.old_sha or '')[:7]} → {(outcome.new_sha or '')[:7]}")
    elif outcome.status == UpdateStatus.UNCHANGED:
        console.print(f"[dim]•[/dim] {name} already up to date")
    elif outcome.status == UpdateStatus.SKIPPED:
        console.print(f"[dim]•[/dim] {name} skipped: {escape(outcome.message)}")
    else:
        console.print(f"[red]✗[/red] {name} failed: {escape(outcome.message)}")


@pack_app.command("update")
def pack_update(
    ctx: typer.Context,
    identifier: Annotated[
        Optional[str],
        typer.Argument(help="Pack identifier (default: every registered pack)."),
    ] = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Trust changed content without asking."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """Update git packs to the newest revision of their ref."""
    try:
        manager = PackManager(_state(ctx).settings())
        confirm = _trust_callback(yes, interactive=not json_output)
        if identifier is not None:
            outcomes = [manager.update(identifier, confirm_trust=confirm)]
        else:
            outcomes = manager.update_all(confirm_trust=confirm)
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps({"updates": [o.to_dict() for o in outcomes]}, indent=2))
    else:
        if not outcomes:
            console.print("[dim]No packs registered.[/dim]")
        for outcome in outcomes:
            _print_update(outcome)

    if any(o.status == UpdateStatus.FAILED for o in outcomes):
        raise typer.Exit(code=1)


@pack_app.command("list")
def pack_list(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """List registered packs."""
    try:
        registry = PackManager(_state(ctx).settings()).registry()
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    entries = registry.entries()
    if json_output:
        output = {
            "packs": [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in entries],
            "count": len(entries),
        }
        print(json.dumps(output, indent=2))
        return

    if not entries:
        console.print("[dim]No packs registered.[/dim]")
        console.print("[dim]Add one with: packsmith pack add <source>[/dim]")
        return

    table = Table(show_header=True, header_style="bold")
    table.add_column("Pack", style="cyan")
    table.add_column("Version")
    table.add_column("Commit", style="dim")
    table.add_column("Source")
    for entry in entries:
        table.add_row(entry.identifier, entry.version, entry.short_sha, entry.source_url)
    console.print(table)


@pack_app.command("info")
def pack_info(
    ctx: typer.Context,
    identifier: Annotated[str, typer.Argument(help="Pack identifier.")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """Show detailed information about a registered pack."""
    try:
        manager = PackManager(_state(ctx).settings())
        registry = manager.registry()
        entry = registry.get(identifier)
        if entry is None:
            raise PackNotRegisteredError(path=str(registry.path), identifier=identifier)
        manifest = ManifestLoader(entry.path).load()
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        output = {
            "entry": entry.model_dump(mode="json", by_alias=True, exclude_none=True),
            "manifest": manifest.to_yaml_dict(),
        }
        print(json.dumps(output, indent=2))
        return

    console.print(f"[bold cyan]{manifest.display_name}[/bold cyan] ({manifest.identifier}) v{manifest.version}")
    if manifest.description:
        console.print(f"[bold]Description:[/bold] {escape(manifest.description)}")
    console.print(f"[bold]Source:[/bold] {escape(entry.source_url)}" + (f" @ {entry.ref}" if entry.ref else ""))
    console.print(f"[bold]Commit:[/bold] {entry.short_sha}")
    if manifest.peer_dependencies:
        peers = ", ".join(f"{p.pack} >= {p.min_version}" for p in manifest.peer_dependencies)
        console.print(f"[bold]Peers:[/bold] {peers}")
    console.print()

    if manifest.components:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Component", style="cyan")
        table.add_column("Type")
        table.add_column("Action")
        table.add_column("Depends on", style="dim")
        for component in manifest.components:
            required = " [red]*[/red]" if component.is_required else ""
            table.add_row(
                component.id + required,
                component.type.value,
                component.install_action.type,
                ", ".join(component.dependencies),
            )
        console.print(table)

    if manifest.templates:
        console.print("[bold]Template sections:[/bold] " + ", ".join(t.section_identifier for t in manifest.templates))
    if manifest.prompts:
        console.print("[bold]Prompts:[/bold] " + ", ".join(p.key for p in manifest.prompts))
    console.print(f"[dim]Pack path: {entry.local_path}[/dim]")


@pack_app.command("validate")
def pack_validate(
    pack_path: Annotated[
        Path,
        typer.Argument(
            help="Path to pack directory.",
            exists=True,
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """Validate a pack's manifest and referenced files."""
    loader = ManifestLoader(pack_path)
    errors = loader.validate_structure()
    items: list[TrustableItem] = []
    manifest = None
    if not errors:
        manifest = loader.load()
        items = TrustManager().analyze(manifest, pack_path)

    if json_output:
        output = {
            "valid": not errors,
            "errors": errors,
            "pack_path": str(pack_path),
        }
        if manifest is not None:
            output["manifest"] = {"identifier": manifest.identifier, "version": manifest.version}
            output["trust_items"] = [
                {"type": item.type.value, "key": item.hash_key, "description": item.description}
                for item in items
            ]
        print(json.dumps(output, indent=2))
    elif errors:
        console.print(f"[red]Pack validation failed: {len(errors)} error(s)[/red]")
        console.print()
        for error in errors:
            console.print(f"  [red]•[/red] {escape(error)}")
    else:
        console.print(f"[green]✓[/green] Pack [cyan]{manifest.identifier}[/cyan] v{manifest.version} is valid")
        if items:
            console.print(f"[dim]{len(items)} item(s) will require trust when added[/dim]")

    raise typer.Exit(code=0 if not errors else 1)


# =============================================================================
# sync
# =============================================================================


def _display_sync_report(report: SyncReport) -> None:
    result = report.result
    for lock in report.lock_results:
        if not lock.ok:
            console.print(f"[red]✗[/red] lock {lock.identifier}@{lock.sha[:7]}: {escape(lock.message)}")
    for outcome in report.updates:
        _print_update(outcome)

    for identifier in result.removed:
        console.print(f"[yellow]-[/yellow] Removed [cyan]{identifier}[/cyan]")
    for identifier in result.configured:
        failures = result.failures_for(identifier)
        mark = "[red]✗[/red]" if failures else "[green]✓[/green]"
        console.print(f"{mark} [cyan]{identifier}[/cyan]")
        for failure in failures:
            console.print(f"    [red]{escape(failure.step)}:[/red] {escape(failure.message)}")
    for identifier, keys in result.unresolved_placeholders.items():
        console.print(f"[yellow]![/yellow] {identifier}: unresolved placeholders {', '.join(keys)}")
    if not result.configured and not result.removed:
        console.print("[dim]Nothing to configure.[/dim]")
    if result.backups:
        console.print(f"[dim]Backed up {len(result.backups)} file(s) before overwriting them[/dim]")
    for mismatch in report.lock_drift:
        current = mismatch.current[:7] if mismatch.current else "unregistered"
        console.print(f"[yellow]![/yellow] {mismatch.identifier}: pin {mismatch.locked[:7]} -> {current}")
    if report.lockfile_path is not None:
        console.print(f"[dim]Lockfile: {report.lockfile_path}[/dim]")


@app.command()
def sync(
    ctx: typer.Context,
    project: Annotated[
        Optional[Path],
        typer.Argument(
            help="Project directory (default: current directory).",
            file_okay=False,
            dir_okay=True,
            resolve_path=True,
        ),
    ] = None,
    global_scope: Annotated[
        bool,
        typer.Option("--global", "-g", help="Configure the global scope instead of a project."),
    ] = False,
    packs: Annotated[
        Optional[list[str]],
        typer.Option("--pack", "-p", help="Pack to configure (repeatable; default: the configured packs)."),
    ] = None,
    exclude: Annotated[
        Optional[list[str]],
        typer.Option("--exclude", "-x", help="Component id to leave out (repeatable)."),
    ] = None,
    use_lock: Annotated[
        bool,
        typer.Option("--lock", help="Check out the commits pinned in packsmith.lock.yaml first."),
    ] = False,
    update: Annotated[
        bool,
        typer.Option("--update", help="Update the packs before configuring."),
    ] = False,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Accept defaults, trust changes and collisions without asking."),
    ] = False,
    values: Annotated[
        Optional[list[str]],
        typer.Option("--set", help="Prompt answer as KEY=VALUE (repeatable)."),
    ] = None,
    none: Annotated[
        bool,
        typer.Option("--none", help="Remove every pack from the scope."),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output in JSON format."),
    ] = False,
) -> None:
    """
    Converge a project (or the global scope) with the selected packs.

    Packs no longer selected are removed, new ones installed and retained
    ones refreshed. Running sync twice changes nothing.

    Example:
        $ packsmith sync . --pack my-pack --pack other-pack
        $ packsmith sync --global --pack my-pack
        $ packsmith sync . --lock
    """
    try:
        settings = _state(ctx).settings()
        presets = _parse_presets(values)
        if global_scope:
            scope = SyncScope.global_scope(settings)
        else:
            scope = SyncScope.project(project or Path.cwd(), settings)

        non_interactive = yes or json_output
        answerer = StaticAnswerer(presets) if non_interactive else ConsoleAnswerer(presets)
        report = PackManager(settings).sync(
            scope,
            answerer,
            pack_ids=[] if none else packs,
            use_lock=use_lock,
            update=update,
            confirm_trust=_trust_callback(yes, interactive=not non_interactive),
            confirm_collisions=_collision_callback(yes, interactive=not non_interactive),
            exclusions=_parse_exclusions(exclude),
        )
    except PacksmithError as e:
        _report_error(e, json_output)
        raise typer.Exit(code=1)

    if json_output:
        print(json.dumps(report.to_dict(), indent=2))
    else:
        _display_sync_report(report)

    if not report.ok:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
