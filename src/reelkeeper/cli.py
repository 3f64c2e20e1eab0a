"""Command line interface for the Reelkeeper project."""

from __future__ import annotations

import difflib
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from click.core import ParameterSource
from pydantic import ValidationError
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from reelkeeper.config import (
    STAMP_PREFIX,
    ConfigError,
    ConfigManager,
    ReelkeeperConfig,
)
from reelkeeper.ingestion import (
    RetryingExtractionClient,
    TimestampVerifier,
    VerificationReport,
    VerificationStatus,
)
from reelkeeper.ingestion.extractors import LocalMetadataExtractor
from reelkeeper.logs import configure_logging
from reelkeeper.manifests import ManifestGenerator
from reelkeeper.pipeline import (
    PipelineError,
    PipelineOrchestrator,
    PipelineState,
    RunCancelledError,
    RunOptions,
    RunResult,
)
from reelkeeper.pipeline.progress import format_bytes
from reelkeeper.sources import CredentialsExpiredError, LoggingNotifier
from reelkeeper.sources.local import LocalMediaStore
from reelkeeper.state import (
    LedgerError,
    LedgerRepository,
    MissingLedgerError,
    OperationEvent,
    ProjectLedger,
)

console = Console()


# Output modes accepted by ``_emit_message``; quiet mode only lets errors through.
_SUMMARY_MODES = frozenset({"summary", "warning", "error"})


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Report a failed command and stop it.

    In JSON mode the error is printed as ``{"error": {"code", "message",
    "details"}}`` and the process exits with status 1; otherwise a
    ``click.ClickException`` carries the message, chained to ``original``.

    Raises:
        SystemExit: In JSON mode.
        click.ClickException: In every other mode.
    """
    if json_output:
        error: dict[str, Any] = {"code": code, "message": message}
        if details is not None:
            error["details"] = details
        console.print_json(data={"error": error})
        raise SystemExit(1)
    if isinstance(original, click.ClickException):
        raise original
    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool, summary_only: bool) -> None:
    """Print ``message`` unless the active output mode suppresses ``mode``.

    ``mode`` is one of ``detail``, ``summary``, ``warning`` or ``error``.
    """
    if quiet:
        if mode == "error":
            console.print(message)
        return
    if summary_only and mode not in _SUMMARY_MODES:
        return
    console.print(message)


def _format_summary_line(command: str, target: Path | str, metrics: dict[str, Any]) -> str:
    """Return ``<Command> summary for <target>: key=value, ...`` in Rich markup."""
    rendered = ", ".join(f"{name}={value}" for name, value in metrics.items())
    return f"[green]{command} summary for {target}: {rendered}.[/green]"


def _resolve_output_modes(
    ctx: click.Context,
    config: ReelkeeperConfig,
    *,
    quiet: bool,
    summary_mode: bool,
    json_output: bool,
) -> tuple[bool, bool]:
    """Return ``(quiet, summary_only)`` from the flags, falling back to ``config.cli``.

    Raises:
        click.ClickException: If JSON is combined with an explicit quiet or
            summary flag, or quiet and summary end up both enabled.
    """

    def _given(name: str) -> bool:
        return ctx.get_parameter_source(name) == ParameterSource.COMMANDLINE

    quiet_enabled = quiet if _given("quiet") else config.cli.quiet_default
    summary_only = summary_mode if _given("summary_mode") else config.cli.summary_default

    if json_output:
        for flag, name, enabled in (
            ("--quiet", "quiet", quiet_enabled),
            ("--summary", "summary_mode", summary_only),
        ):
            if enabled and _given(name):
                raise click.ClickException(f"--json cannot be combined with {flag}.")
        return False, False

    if quiet_enabled and summary_only:
        raise click.ClickException(
            "Quiet and summary output are mutually exclusive; check the flags and "
            "the cli section of the configuration."
        )
    return quiet_enabled, summary_only


def _config_lines(manager: ConfigManager) -> list[str]:
    return [line for line in manager.read_text().splitlines() if not line.startswith(STAMP_PREFIX)]


def _format_history_event(event: OperationEvent) -> str:
    notes = ", ".join(event.notes) if event.notes else ""
    note_suffix = f" ({notes})" if notes else ""
    destination = event.destination or "-"
    return (
        f"[{event.timestamp.isoformat()}] {event.operation.upper()} "
        f"{event.identity} -> {destination}{note_suffix}"
    )


def _repository_for(config: ReelkeeperConfig) -> LedgerRepository:
    return LedgerRepository(Path(config.ledger.directory))


def _select_ledger(repository: LedgerRepository, project: Optional[str]) -> Optional[ProjectLedger]:
    """Return the ledger matching ``project`` (id or name), or the current one.

    A named project that does not exist yet yields None; the pipeline creates
    it when the first run commits.
    """
    if project is None:
        return repository.load_current()
    if repository.exists(project):
        return repository.load(project)
    for ledger in repository.list_projects():
        if ledger.name == project:
            return ledger
    return None


def _build_store(
    config: ReelkeeperConfig, source_root: Path, target_root: Path, copy_mode: bool
) -> LocalMediaStore:
    return LocalMediaStore(
        source_root,
        target_root,
        copy_mode=copy_mode,
        processing=config.processing,
        exclude_dirnames=[config.organization.destination_folder_name],
    )


def _build_client(config: ReelkeeperConfig, source_root: Path) -> RetryingExtractionClient:
    return RetryingExtractionClient(
        LocalMetadataExtractor(source_root),
        max_attempts=config.extraction.max_attempts,
        backoff_seconds=config.extraction.backoff_seconds,
    )


def _verification_table(report: VerificationReport) -> Table:
    table = Table(title="Timestamp verification")
    table.add_column("Item", overflow="fold")
    table.add_column("Status")
    table.add_column("Captured")
    table.add_column("Detail", overflow="fold")
    styles = {
        VerificationStatus.VERIFIED: "green",
        VerificationStatus.UNVERIFIABLE: "yellow",
        VerificationStatus.ERROR: "red",
        VerificationStatus.PENDING: "dim",
    }
    for result in report.results:
        captured = result.captured_at.isoformat() if result.captured_at else "-"
        style = styles[result.status]
        table.add_row(
            result.identity,
            f"[{style}]{result.status.value}[/{style}]",
            captured,
            result.error_detail or "",
        )
    return table


def _plan_table(result: RunResult) -> Table:
    table = Table(title="Chronological plan")
    table.add_column("Item", overflow="fold")
    table.add_column("Captured")
    table.add_column("Folder")
    table.add_column("Name", overflow="fold")
    for item in result.items:
        table.add_row(
            item.identity,
            item.captured_at.isoformat(),
            item.bucket_path or "-",
            item.final_name,
        )
    return table


def _state_listener(quiet: bool, summary_only: bool):
    """Return a subscriber that prints each stage change once."""
    last_status: dict[str, Any] = {"value": None}

    def _listener(state: PipelineState) -> None:
        if state.status == last_status["value"]:
            return
        last_status["value"] = state.status
        step = f" ({state.step_index}/{state.total_steps})" if state.step_index else ""
        _emit_message(
            f"[cyan]{state.status.value.capitalize()}{step} {state.progress_percent:.0f}%[/cyan]",
            mode="detail",
            quiet=quiet,
            summary_only=summary_only,
        )

    return _listener


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="reelkeeper")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def cli(verbose: bool) -> None:
    """Reelkeeper sorts media into chronological folders using original capture dates."""
    try:
        config = ConfigManager().load(ensure_file=False)
        settings = config.logging
    except ConfigError:
        settings = ReelkeeperConfig().logging
    configure_logging(settings, verbose=verbose)


@cli.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option(
    "--targeted-from",
    "targeted_from",
    type=click.Path(exists=True, dir_okay=False, path_type=str),
    help="Previous report; only its unverifiable and failed items are re-checked.",
)
@click.option(
    "--save",
    "save_path",
    type=click.Path(dir_okay=False, path_type=str),
    help="Write the resulting report to this JSON file.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit the report as JSON.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def verify(
    ctx: click.Context,
    source: str,
    targeted_from: str | None,
    save_path: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Check which files under SOURCE carry an original capture timestamp."""

    try:
        config = ConfigManager().load()
        quiet_enabled, summary_only = _resolve_output_modes(
            ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )

        source_root = Path(source).expanduser().resolve()
        store = _build_store(config, source_root, source_root, copy_mode=True)
        items = store.list()

        previous: VerificationReport | None = None
        if targeted_from:
            try:
                previous = VerificationReport.model_validate_json(
                    Path(targeted_from).read_text(encoding="utf-8")
                )
            except (OSError, ValidationError) as exc:
                raise click.ClickException(f"Unable to read previous report: {exc}") from exc

        verifier = TimestampVerifier(_build_client(config, source_root))
        report = verifier.verify(items, previous=previous, targeted=previous is not None)

        if save_path:
            Path(save_path).write_text(report.model_dump_json(indent=2), encoding="utf-8")

        if json_output:
            console.print_json(data=report.model_dump(mode="json"))
            return

        _emit_message(
            _verification_table(report),
            mode="detail",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
        counts = report.counts()
        rejected = counts["unverifiable"] + counts["error"]
        if rejected:
            _emit_message(
                f"[yellow]{rejected} item(s) have no usable capture date "
                "and will be excluded.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        _emit_message(
            _format_summary_line("Verification", source_root, counts),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except CredentialsExpiredError as exc:
        _handle_cli_error(
            f"Credentials rejected by the metadata service: {exc}",
            code="auth_error",
            json_output=json_output,
            original=exc,
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
    except Exception as exc:
        _handle_cli_error(
            f"Unexpected error while verifying files: {exc}",
            code="internal_error",
            json_output=json_output,
            details={"exception": type(exc).__name__},
            original=exc,
        )


@cli.command()
@click.argument("source", type=click.Path(exists=True, file_okay=False, path_type=str))
@click.option(
    "--output",
    type=click.Path(file_okay=False, path_type=str),
    help="Directory receiving the dated folders (defaults to a folder inside SOURCE).",
)
@click.option("--project", type=str, help="Project name or id whose ledger tracks this run.")
@click.option(
    "--strategy",
    type=click.Choice(["year-month", "year", "flat"]),
    help="Date bucketing granularity.",
)
@click.option("--max-items", type=click.IntRange(min=1), help="Cap on new items in this run.")
@click.option("--copy", "copy_mode", is_flag=True, help="Copy files and keep the originals.")
@click.option("--dry-run", is_flag=True, help="Preview the plan without committing it.")
@click.option(
    "--export",
    "export_path",
    type=click.Path(dir_okay=False, path_type=str),
    help="Also export the processed items to this JSON file.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit JSON describing the run.")
@click.option("--summary", "summary_mode", is_flag=True, help="Only emit summary lines.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def org(
    ctx: click.Context,
    source: str,
    output: str | None,
    project: str | None,
    strategy: str | None,
    max_items: int | None,
    copy_mode: bool,
    dry_run: bool,
    export_path: str | None,
    json_output: bool,
    summary_mode: bool,
    quiet: bool,
) -> None:
    """Organize media under SOURCE into chronological folders.

    Args:
        ctx: Click context used for parameter source inspection.
        source: Directory holding the media to organize.
        output: Directory receiving the dated folders.
        project: Project whose ledger records processed items.
        strategy: Bucketing strategy override.
        max_items: Per-run cap override.
        copy_mode: Copy instead of move.
        dry_run: Stop at the preview and discard it.
        export_path: Optional JSON export of the processed items.
        json_output: If True, emit JSON describing the run.
        summary_mode: When True, limit output to summary lines and warnings.
        quiet: When True, suppress non-error CLI output entirely.

    Raises:
        click.ClickException: If configuration loading or the run fails.
    """

    try:
        manager = ConfigManager()
        manager.ensure_exists()
        config = manager.load()
        quiet_enabled, summary_only = _resolve_output_modes(
            ctx, config, quiet=quiet, summary_mode=summary_mode, json_output=json_output
        )

        source_root = Path(source).expanduser().resolve()
        if output:
            target_root = Path(output).expanduser().resolve()
        else:
            target_root = source_root / config.organization.destination_folder_name
        if not dry_run:
            target_root.mkdir(parents=True, exist_ok=True)

        repository = _repository_for(config)
        ledger = _select_ledger(repository, project)
        store = _build_store(config, source_root, target_root, copy_mode)
        generator = ManifestGenerator(config.manifests)
        staging_dir = manager.state_dir / config.pipeline.staging_dirname

        options = RunOptions.from_config(
            config,
            project_name=project,
            source_scope=source_root.as_posix(),
            bucket_strategy=strategy,
            max_items_per_run=max_items,
            staging_dir=None if dry_run else staging_dir,
            manifest_dir=None if dry_run else target_root,
            media_root=target_root.as_posix(),
        )
        orchestrator = PipelineOrchestrator(
            _build_client(config, source_root),
            content=store,
            ledger=ledger,
            repository=repository,
            notifier=LoggingNotifier(),
            manifest_generator=generator,
            options=options,
        )
        if not json_output:
            orchestrator.subscribe(_state_listener(quiet_enabled, summary_only))

        items = store.list()
        result = orchestrator.start_run(items)
        staged_bytes = orchestrator.get_state().counters.total_bytes

        if result.batch_message:
            _emit_message(
                f"[cyan]{result.batch_message}[/cyan]",
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if not json_output and result.items:
            _emit_message(
                _plan_table(result), mode="detail", quiet=quiet_enabled, summary_only=summary_only
            )

        if dry_run:
            orchestrator.discard_preview()
        else:
            result = orchestrator.confirm_commit()

        export_file = None
        if export_path and result.items:
            export_file = orchestrator.export_local(Path(export_path))

        if json_output:
            payload = result.model_dump(mode="json")
            payload["dry_run"] = dry_run
            payload["context"] = {
                "source_root": source_root.as_posix(),
                "target_root": target_root.as_posix(),
                "copy_mode": copy_mode,
            }
            if export_file is not None:
                payload["export"] = export_file.model_dump(mode="json")
            console.print_json(data=payload)
            return

        for exclusion in result.exclusions:
            _emit_message(
                f"[yellow]Excluded {exclusion.name}: {exclusion.reason} "
                f"({exclusion.stage}).[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        for note in result.notes:
            _emit_message(
                f"  - {note}", mode="detail", quiet=quiet_enabled, summary_only=summary_only
            )
        for manifest in result.manifests:
            _emit_message(
                f"[green]Wrote {manifest.kind} manifest to {manifest.path}.[/green]",
                mode="detail",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )
        if result.remaining_items:
            _emit_message(
                f"[yellow]{result.remaining_items} item(s) left for a later run.[/yellow]",
                mode="warning",
                quiet=quiet_enabled,
                summary_only=summary_only,
            )

        metrics: dict[str, Any] = {
            "organized": len(result.items),
            "folders": len(result.buckets),
            "excluded": len(result.exclusions),
            "already_processed": len(result.already_processed),
            "remaining": result.remaining_items,
            "size": format_bytes(staged_bytes),
        }
        if dry_run:
            metrics["dry_run"] = True
        _emit_message(
            _format_summary_line("Organization", target_root, metrics),
            mode="summary",
            quiet=quiet_enabled,
            summary_only=summary_only,
        )
    except CredentialsExpiredError as exc:
        _handle_cli_error(
            f"Credentials rejected by the metadata service: {exc}",
            code="auth_error",
            json_output=json_output,
            original=exc,
        )
    except RunCancelledError as exc:
        _handle_cli_error(str(exc), code="cancelled", json_output=json_output, original=exc)
    except PipelineError as exc:
        _handle_cli_error(
            str(exc),
            code="pipeline_error",
            json_output=json_output,
            details={"stage": exc.stage} if exc.stage else None,
            original=exc,
        )
    except LedgerError as exc:
        _handle_cli_error(str(exc), code="ledger_error", json_output=json_output, original=exc)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
    except click.ClickException as exc:
        _handle_cli_error(str(exc), code="cli_error", json_output=json_output, original=exc)
    except Exception as exc:
        _handle_cli_error(
            f"Unexpected error while organizing media: {exc}",
            code="internal_error",
            json_output=json_output,
            details={"exception": type(exc).__name__},
            original=exc,
        )


@cli.group()
def ledger() -> None:
    """Inspect and manage project ledgers."""


@ledger.command("list")
@click.option("--json", "json_output", is_flag=True, help="Emit the projects as JSON.")
def ledger_list(json_output: bool) -> None:
    """List stored projects, most recently updated first."""
    try:
        repository = _repository_for(ConfigManager().load())
        projects = repository.list_projects()
        current = repository.current_id()
    except (ConfigError, LedgerError) as exc:
        _handle_cli_error(str(exc), code="ledger_error", json_output=json_output, original=exc)
        return

    if json_output:
        console.print_json(
            data={
                "current": current,
                "projects": [project.model_dump(mode="json") for project in projects],
            }
        )
        return

    if not projects:
        console.print("[yellow]No projects recorded yet.[/yellow]")
        return

    table = Table(title="Projects")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Items", justify="right")
    table.add_column("Folders", justify="right")
    table.add_column("Runs", justify="right")
    table.add_column("Updated")
    for project in projects:
        marker = "*" if project.id == current else ""
        table.add_row(
            f"{project.id}{marker}",
            project.name,
            str(project.total_items_processed),
            str(len(project.buckets)),
            str(project.total_runs_completed),
            project.last_updated_at.isoformat(),
        )
    console.print(table)


@ledger.command("show")
@click.argument("project_id")
@click.option(
    "--history",
    "history_limit",
    type=int,
    default=10,
    show_default=True,
    help="Number of recent history events to show.",
)
@click.option("--json", "json_output", is_flag=True, help="Emit the ledger as JSON.")
def ledger_show(project_id: str, history_limit: int, json_output: bool) -> None:
    """Show the folders and recent history of PROJECT_ID."""
    try:
        repository = _repository_for(ConfigManager().load())
        project = repository.load(project_id)
        events = repository.read_history(project_id, limit=history_limit)
    except MissingLedgerError as exc:
        _handle_cli_error(str(exc), code="missing_ledger", json_output=json_output, original=exc)
        return
    except (ConfigError, LedgerError) as exc:
        _handle_cli_error(str(exc), code="ledger_error", json_output=json_output, original=exc)
        return

    if json_output:
        payload = project.model_dump(mode="json")
        payload["history"] = [event.model_dump(mode="json") for event in events]
        console.print_json(data=payload)
        return

    console.print(
        f"[bold]{project.name}[/bold] ({project.id}): "
        f"{project.total_items_processed} items across {project.total_runs_completed} runs"
    )
    table = Table(title="Date folders")
    table.add_column("Key")
    table.add_column("Folder")
    table.add_column("Items", justify="right")
    table.add_column("Location")
    table.add_column("Last updated")
    for key in sorted(project.buckets):
        bucket = project.buckets[key]
        table.add_row(
            key,
            bucket.display_name,
            str(bucket.item_count),
            bucket.remote_folder_id or "-",
            bucket.last_updated_at.isoformat(),
        )
    console.print(table)
    if events:
        console.print("[bold]Recent history[/bold]")
        for event in events:
            console.print(_format_history_event(event))


@ledger.command("clear")
@click.argument("project_id")
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
def ledger_clear(project_id: str, yes: bool) -> None:
    """Delete the ledger of PROJECT_ID so its items are processed again."""
    if not yes:
        click.confirm(f"Delete the ledger for {project_id}?", abort=True)
    try:
        repository = _repository_for(ConfigManager().load())
        repository.delete(project_id)
    except (ConfigError, LedgerError) as exc:
        raise click.ClickException(str(exc)) from exc
    console.print(f"[green]Cleared ledger {project_id}.[/green]")


@ledger.command("stats")
@click.option("--json", "json_output", is_flag=True, help="Emit the totals as JSON.")
def ledger_stats(json_output: bool) -> None:
    """Show totals across every stored project."""
    try:
        stats = _repository_for(ConfigManager().load()).stats()
    except (ConfigError, LedgerError) as exc:
        _handle_cli_error(str(exc), code="ledger_error", json_output=json_output, original=exc)
        return
    if json_output:
        console.print_json(data=stats.model_dump(mode="json"))
        return
    console.print(
        f"Projects: {stats.project_count}, files processed: {stats.total_files_processed}, "
        f"date folders: {stats.total_buckets}"
    )


@cli.group()
def config() -> None:
    """Manage Reelkeeper configuration files and overrides."""


@config.command("view")
@click.option(
    "--no-env", is_flag=True, help="Show the file and defaults without REELKEEPER__ variables."
)
def config_view(no_env: bool) -> None:
    """Print the effective configuration as YAML."""
    try:
        loaded = ConfigManager().load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    rendered = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False)
    console.print(Syntax(rendered, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="YAML literal stored under KEY.")
def config_set(key: str, value: str) -> None:
    """Write VALUE under the dotted KEY, e.g. ``pipeline.max_items_per_run``.

    The change is validated before it is written and shown as a diff.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        before = _config_lines(manager)
        manager.set_value(key, yaml.safe_load(value))
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    changes = list(
        difflib.unified_diff(
            before,
            _config_lines(manager),
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
    )
    if not changes:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(changes), "diff", word_wrap=False))
    console.print(f"[green]Updated {key.strip()}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
