"""dotvault CLI - Command-line interface for vault synchronization."""

import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from dotvault import __version__
from dotvault.backends import Backend, BackendKind, create_backend, parse_backend_kind
from dotvault.config import Settings
from dotvault.drift import DriftDetector, DriftReport, compare_remote
from dotvault.engine import Outcome, SyncEngine, SyncReport
from dotvault.errors import (
    AuthError,
    DotvaultError,
    DriftError,
    ItemIOError,
    UsageError,
    ValidationError,
)
from dotvault.manifest import Manifest, VaultLocation, load_manifest
from dotvault.operations import VaultOperations
from dotvault.paths import PathResolver
from dotvault.state import ChecksumStore
from dotvault.util import content_digest, setup_logging, short_digest

app = typer.Typer(
    name="dotvault",
    help="Sync dotfiles and secrets with a password manager vault",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)
console = Console()

OUTCOME_STYLES = {
    Outcome.PUSHED: "green",
    Outcome.PULLED: "blue",
    Outcome.SKIPPED: "dim",
    Outcome.CONFLICT: "yellow",
    Outcome.ERROR: "red",
    Outcome.PLANNED: "cyan",
}


class Runtime:
    """Objects shared by every command, built on first use."""

    def __init__(
        self,
        paths: PathResolver,
        config_path: Optional[Path] = None,
        manifest_path: Optional[Path] = None,
        verbose: bool = False,
    ):
        self.paths = paths
        self.config_path = config_path
        self.manifest_path = manifest_path
        self.verbose = verbose
        self._settings: Settings | None = None
        self._manifest: Manifest | None = None
        self._backend: Backend | None = None
        self._engine: SyncEngine | None = None

    @property
    def settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings.load(self.paths, self.config_path)
        return self._settings

    @property
    def manifest(self) -> Manifest:
        if self._manifest is None:
            path = self.manifest_path or self.settings.resolve_manifest(self.paths)
            self._manifest = load_manifest(path, self.paths)
        return self._manifest

    @property
    def store(self) -> ChecksumStore:
        return ChecksumStore(self.paths.state_file, self.paths.lock_file)

    @property
    def backend(self) -> Backend:
        if self._backend is None:
            self._backend = create_backend(self.settings, self.paths)
        return self._backend

    @property
    def manifest_exists(self) -> bool:
        path = self.manifest_path or self.settings.resolve_manifest(self.paths)
        return path.exists()

    @property
    def location(self) -> VaultLocation | None:
        """Manifest location, else None (the backend's configured default)."""
        if not self.manifest_exists:
            return None
        location = self.manifest.location
        return None if location.is_default else location

    @property
    def engine(self) -> SyncEngine:
        if self._engine is None:
            self._engine = SyncEngine(
                self.backend,
                self.store,
                self.settings,
                self.location,
                backup_dir=self.paths.backup_dir,
            )
        return self._engine

    @property
    def operations(self) -> VaultOperations:
        return VaultOperations(self.engine, self.manifest, self.paths)


@contextmanager
def handle_errors() -> Iterator[None]:
    """Print dotvault errors and exit non-zero."""
    try:
        yield
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled by user[/yellow]")
        raise typer.Exit(130)
    except ValidationError as e:
        header = f"Invalid manifest {e.source}" if e.source else "Invalid manifest"
        console.print(f"[red]Error: {header}[/red]")
        for violation in e.violations:
            console.print(f"  • {violation}")
        raise typer.Exit(1)
    except AuthError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        console.print("Run 'dotvault unlock' to start a session.")
        raise typer.Exit(1)
    except DotvaultError as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(1)


def stdin_is_interactive() -> bool:
    return sys.stdin.isatty()


def require_online(rt: Runtime, command: str) -> None:
    """Exit quietly when offline mode is on."""
    if rt.settings.offline:
        console.print(f"[yellow]Offline mode: skipping '{command}' (vault not contacted)[/yellow]")
        raise typer.Exit(0)


def print_report(report: SyncReport, title: str, verbose: bool = False) -> None:
    """Render a per-item report and a summary line."""
    if report.dry_run:
        console.print("[yellow]Dry run mode - no changes made[/yellow]\n")

    if not report.results:
        console.print("[dim]No items to process[/dim]")
        return

    table = Table(title=title)
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Outcome", style="bold")
    table.add_column("Details")
    if verbose:
        table.add_column("Hashes", style="dim")

    for result in report.results:
        style = OUTCOME_STYLES[result.outcome]
        outcome = result.outcome.value
        if result.outcome is Outcome.PLANNED and result.decision is not None:
            outcome = f"would {result.decision.value}"
        row = [result.name, f"[{style}]{outcome}[/{style}]", result.reason]
        if verbose:
            row.append(result.describe_hashes())
        table.add_row(*row)

    console.print(table)

    counts = report.counts()
    summary = ", ".join(
        f"{count} {outcome.value}" for outcome, count in counts.items() if count
    )
    console.print(f"\n[bold]Summary:[/bold] {summary}")
    if counts[Outcome.CONFLICT]:
        console.print(
            "  [yellow]⚠ Conflicts remain.[/yellow] "
            "[dim]Resolve with --force-local or --force-vault[/dim]"
        )
    if report.vault_locked:
        console.print("  [red]Vault is locked.[/red] Run 'dotvault unlock' to start a session.")


@app.callback()
def callback(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose output"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress non-error output"),
    config: Optional[Path] = typer.Option(None, "--config", help="Config file to use"),
    manifest: Optional[Path] = typer.Option(None, "--manifest", help="Item manifest to use"),
) -> None:
    """dotvault - Sync dotfiles and secrets with a password manager vault."""
    setup_logging(verbose=verbose, quiet=quiet)
    ctx.obj = Runtime(PathResolver.from_env(), config, manifest, verbose)


@app.command()
def version() -> None:
    """Show dotvault version."""
    console.print(f"dotvault version {__version__}")


@app.command()
def sync(
    ctx: typer.Context,
    items: Optional[list[str]] = typer.Argument(None, help="Items to sync (default: all)"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show decisions without applying"),
    force_local: bool = typer.Option(False, "--force-local", "-l", help="Resolve conflicts with local files"),
    force_vault: bool = typer.Option(False, "--force-vault", help="Resolve conflicts with vault content"),
    verbose: bool = typer.Option(False, "--verbose", help="Show hashes for each item"),
) -> None:
    """Bidirectional sync between local files and the vault.

    Exit status is 0 when everything is in sync, 1 on errors and 2 when
    conflicts remain.
    """
    rt: Runtime = ctx.obj
    verbose = verbose or rt.verbose

    with handle_errors():
        if force_local and force_vault:
            raise UsageError("--force-local and --force-vault are mutually exclusive")
        require_online(rt, "sync")
        selected = rt.manifest.select(items, syncable_only=False) if items else rt.manifest.syncable()
        report = rt.engine.sync(
            selected,
            dry_run=dry_run,
            force_local=force_local,
            force_vault=force_vault,
            verbose=verbose,
        )

    print_report(report, "Sync Results", verbose=verbose)
    raise typer.Exit(report.exit_code)


@app.command()
def push(
    ctx: typer.Context,
    items: Optional[list[str]] = typer.Argument(None, help="Items to push"),
    all_items: bool = typer.Option(False, "--all", "-a", help="Push every syncable item"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show changes without applying"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite vault entries changed elsewhere"),
) -> None:
    """Push local files to the vault."""
    rt: Runtime = ctx.obj

    with handle_errors():
        if not items and not all_items:
            raise UsageError("Name the items to push, or use --all")
        require_online(rt, "push")
        selected = rt.manifest.select(items, syncable_only=False) if items else rt.manifest.syncable()
        report = rt.operations.push(selected, dry_run=dry_run, force=force)

    print_report(report, "Push Results", verbose=rt.verbose)
    raise typer.Exit(report.exit_code)


@app.command()
def pull(
    ctx: typer.Context,
    items: Optional[list[str]] = typer.Argument(None, help="Items to pull (default: all)"),
    force: bool = typer.Option(False, "--force", "-f", help="Skip the local drift check"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show changes without applying"),
) -> None:
    """Restore local files from the vault."""
    rt: Runtime = ctx.obj

    with handle_errors():
        require_online(rt, "pull")
        selected = rt.manifest.select(items, syncable_only=False) if items else rt.manifest.syncable()
        try:
            report = rt.operations.pull(selected, force=force, dry_run=dry_run)
        except DriftError as e:
            console.print(f"[yellow]⚠ {e}[/yellow]")
            console.print("[dim]Push them first, or re-run with --force to overwrite (backups are kept)[/dim]")
            raise typer.Exit(1)

    print_report(report, "Pull Results", verbose=rt.verbose)
    raise typer.Exit(report.exit_code)


def _print_drift(report: DriftReport, title: str) -> None:
    table = Table(title=title)
    table.add_column("Item", style="cyan", no_wrap=True)
    table.add_column("Status", style="bold")

    for name in report.changed:
        table.add_row(name, "[yellow]changed[/yellow]")
    for name in report.missing:
        table.add_row(name, "[red]missing[/red]")
    for name in report.untracked:
        table.add_row(name, "[dim]untracked[/dim]")
    for name in report.unreadable:
        table.add_row(name, "[red]unreadable[/red]")
    for name in report.in_sync:
        table.add_row(name, "[green]in sync[/green]")

    console.print(table)


@app.command()
def drift(
    ctx: typer.Context,
    quick: bool = typer.Option(False, "--quick", "-q", help="Compare with the last sync only (no vault access)"),
) -> None:
    """Show local files that differ from the vault.

    Exits 1 when drift is found, 0 otherwise.
    """
    rt: Runtime = ctx.obj

    with handle_errors():
        if not quick and rt.settings.offline:
            console.print("[yellow]Offline mode: using the quick check[/yellow]")
            quick = True

        if quick:
            report = DriftDetector(rt.manifest, rt.store).check()
            title = "Drift Since Last Sync"
        else:
            report = compare_remote(rt.manifest, rt.backend, rt.location)
            title = "Drift Against Vault"

    if not report.available:
        console.print("[dim]No sync history yet. Run 'dotvault sync' first.[/dim]")
        raise typer.Exit(0)

    _print_drift(report, title)

    if report.has_drift:
        console.print(
            f"\n[yellow]⚠ {len(report.changed)} changed, {len(report.missing)} missing, "
            f"{len(report.unreadable)} unreadable[/yellow]"
        )
        raise typer.Exit(1)
    console.print("\n[green]✓ No drift detected[/green]")


@app.command()
def delete(
    ctx: typer.Context,
    names: list[str] = typer.Argument(..., help="Vault items to delete"),
    force: bool = typer.Option(False, "--force", "-f", help="Delete without prompting"),
    confirm: Optional[str] = typer.Option(None, "--confirm", help="Item name typed back, required for protected items"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted"),
) -> None:
    """Delete items from the vault.

    Protected items (SSH-*, AWS-*, Git-*, Environment-Secrets) need --force
    and the name typed back, either with --confirm or at the prompt.
    """
    rt: Runtime = ctx.obj
    interactive = stdin_is_interactive()
    failures = 0
    locked = False

    with handle_errors():
        require_online(rt, "delete")
        ops = rt.operations

        for name in names:
            item_force = force
            confirmation = confirm

            if ops.is_protected(name):
                if force and confirmation is None and interactive:
                    console.print(f"[bold red]'{name}' is a protected item.[/bold red]")
                    confirmation = typer.prompt("Type the item name to confirm")
            elif not item_force and interactive:
                item_force = typer.confirm(f"Delete '{name}' from the vault?")
                if not item_force:
                    console.print(f"[yellow]Skipped {name}[/yellow]")
                    continue

            try:
                ops.delete(name, force=item_force, confirmation=confirmation, dry_run=dry_run)
            except DotvaultError as e:
                console.print(f"[red]✗[/red] {name}: {e}")
                locked = locked or isinstance(e, AuthError)
                failures += 1
                continue

            if dry_run:
                console.print(f"[cyan]Would delete[/cyan] {name}")
            else:
                console.print(f"[green]✓[/green] Deleted {name}")

    if locked:
        console.print("Run 'dotvault unlock' to start a session.")
    if failures:
        raise typer.Exit(1)


@app.command(name="list")
def list_items(
    ctx: typer.Context,
    location: Optional[str] = typer.Option(None, "--location", help="Location as TYPE:VALUE (e.g. folder:dotfiles)"),
) -> None:
    """List entries stored in the vault."""
    rt: Runtime = ctx.obj

    with handle_errors():
        require_online(rt, "list")
        if location:
            kind, sep, value = location.partition(":")
            scope = VaultLocation(kind, value) if sep else VaultLocation("auto", location)
        else:
            scope = rt.location
        names = rt.backend.list(scope)
        managed = set(rt.manifest.names()) if rt.manifest_exists else set()

    if not names:
        console.print("[yellow]No items found in the vault.[/yellow]")
        return

    table = Table(title=f"Vault Items ({rt.backend.name})")
    table.add_column("Name", style="cyan")
    table.add_column("Managed", style="green")
    for name in names:
        table.add_row(name, "✓" if name in managed else "")
    console.print(table)


@app.command()
def get(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Vault entry to show"),
    notes: bool = typer.Option(False, "--notes", "-n", help="Print only the stored content"),
) -> None:
    """Show one vault entry."""
    rt: Runtime = ctx.obj

    with handle_errors():
        require_online(rt, "get")
        content = rt.backend.read(name, rt.location)

    if notes:
        typer.echo(content, nl=not content.endswith("\n"))
        return

    console.print(
        f"[bold cyan]{escape(name)}[/bold cyan] [dim]({rt.backend.name}, {len(content)} bytes, "
        f"{short_digest(content_digest(content))})[/dim]"
    )
    end = "" if content.endswith("\n") else "\n"
    console.print(content, markup=False, highlight=False, end=end)


@app.command()
def create(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Vault entry to create"),
    content: Optional[str] = typer.Argument(None, help="Content to store (default: --file or stdin)"),
    from_file: Optional[Path] = typer.Option(None, "--file", help="Read content from a file"),
    force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing entry"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be stored"),
) -> None:
    """Store content in the vault under NAME.

    Content comes from the argument, --file, or standard input.
    """
    rt: Runtime = ctx.obj

    with handle_errors():
        if from_file is not None:
            try:
                content = from_file.expanduser().read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise ItemIOError(f"Cannot read {from_file}: {e}") from e
        elif content is None:
            if stdin_is_interactive():
                raise UsageError("Content required: pass it as an argument, with --file, or on stdin")
            content = sys.stdin.read()

        if dry_run:
            console.print("[yellow]Dry run mode - no changes made[/yellow]\n")
            console.print(f"Item name: {name}")
            console.print(f"Content size: {len(content)} bytes")
            console.print("Preview:")
            for line in content.splitlines()[:5]:
                console.print(f"  {line}", markup=False, highlight=False)
            return

        require_online(rt, "create")
        manifest = rt.manifest if rt.manifest_exists else Manifest([])
        replaced = VaultOperations(rt.engine, manifest, rt.paths).create(name, content, force=force)

    console.print(f"[green]✓[/green] {'Updated' if replaced else 'Created'} {name}")


@app.command()
def check(ctx: typer.Context) -> None:
    """Check that required items exist in the vault."""
    rt: Runtime = ctx.obj

    with handle_errors():
        require_online(rt, "check")
        statuses = rt.operations.check_required()

    table = Table(title="Vault Items")
    table.add_column("Item", style="cyan")
    table.add_column("Required")
    table.add_column("Status")

    missing_required = []
    for status in statuses:
        if status.error:
            state = f"[red]error: {status.error}[/red]"
        elif status.present:
            state = "[green]✓ present[/green]"
        elif status.required:
            state = "[red]✗ missing[/red]"
        else:
            state = "[dim]○ missing (optional)[/dim]"
        if status.required and not status.present:
            missing_required.append(status.name)
        table.add_row(status.name, "yes" if status.required else "no", state)

    console.print(table)

    if missing_required:
        console.print(f"\n[red]✗ Missing required items: {', '.join(missing_required)}[/red]")
        raise typer.Exit(1)
    console.print("\n[green]✓ All required items present[/green]")


@app.command()
def validate(ctx: typer.Context) -> None:
    """Validate the item manifest."""
    rt: Runtime = ctx.obj

    with handle_errors():
        manifest = rt.manifest

    console.print(f"[green]✓[/green] Manifest is valid: {manifest.source}")
    console.print(f"  Items: {len(manifest.items)} ({len(manifest.syncable())} syncable, {len(manifest.required())} required)")
    console.print(f"  Location: {manifest.location}")
    for warning in manifest.warnings:
        console.print(f"  [yellow]⚠ {warning}[/yellow]")


@app.command()
def status(ctx: typer.Context) -> None:
    """Show configuration, last sync times and local drift."""
    rt: Runtime = ctx.obj

    with handle_errors():
        settings = rt.settings
        manifest = rt.manifest
        store = rt.store
        report = DriftDetector(manifest, store).check()

    console.print(f"[bold]Backend:[/bold] {settings.backend}")
    console.print(f"[bold]Location:[/bold] {rt.location or VaultLocation(settings.location_type, settings.location_value)}")
    console.print(f"[bold]Manifest:[/bold] {manifest.source} ({len(manifest.items)} items)")
    console.print(f"[bold]State file:[/bold] {store.path}")
    if settings.offline:
        console.print("[yellow]Offline mode is on[/yellow]")

    for kind in ("sync", "push", "pull"):
        stamp = store.last_synced(kind)
        console.print(f"  Last {kind}: {stamp or '[dim]never[/dim]'}")

    if not report.available:
        console.print("\n[dim]No sync history yet.[/dim]")
        return

    console.print(
        f"\n[green]{len(report.in_sync)} in sync[/green], "
        f"[yellow]{len(report.changed)} changed[/yellow], "
        f"[red]{len(report.missing)} missing[/red], "
        f"[dim]{len(report.untracked)} untracked[/dim]"
    )


@app.command()
def unlock(ctx: typer.Context) -> None:
    """Unlock the vault and cache the session."""
    rt: Runtime = ctx.obj

    with handle_errors():
        require_online(rt, "unlock")
        backend = rt.backend
        if backend.is_unlocked():
            console.print(f"[green]✓[/green] {backend.name} is already unlocked")
            return
        password = typer.prompt("Master password", hide_input=True)
        backend.unlock(password)

    console.print(f"[green]✓[/green] {backend.name} unlocked")
    console.print(f"  Session cached in {rt.paths.session_file}")


@app.command()
def lock(ctx: typer.Context) -> None:
    """Forget the cached vault session."""
    rt: Runtime = ctx.obj

    with handle_errors():
        rt.backend.lock()

    console.print(f"[green]✓[/green] {rt.settings.backend} session cleared")


@app.command(name="backend")
def backend_command(
    ctx: typer.Context,
    name: Optional[str] = typer.Argument(None, help="Backend to use (bitwarden, 1password, pass)"),
) -> None:
    """Show or change the configured backend."""
    rt: Runtime = ctx.obj

    with handle_errors():
        settings = rt.settings
        if name is None:
            console.print(f"Current backend: [cyan]{settings.backend}[/cyan]")
            console.print("Available: " + ", ".join(kind.value for kind in BackendKind))
            return

        kind = parse_backend_kind(name)
        # Persist file values only, never environment overrides
        settings = Settings.load(rt.paths, rt.config_path, environ={})
        settings.backend = kind.value
        settings.save()

    console.print(f"[green]✓[/green] Backend set to {kind.value}")
    console.print(f"  Saved to {settings.config_path}")


def main() -> None:
    """Main entry point for the CLI."""
    app()
