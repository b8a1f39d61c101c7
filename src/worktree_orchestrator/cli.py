"""CLI entry point for worktree-orchestrator."""

import json
from contextlib import nullcontext
from pathlib import Path
from typing import Callable, NoReturn, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from worktree_orchestrator.config import (
    get_config_path,
    load_config,
    migrate_config,
)
from worktree_orchestrator.core.git import GitAdapter
from worktree_orchestrator.core.orchestrator import WorktreeOrchestrator, accept_all
from worktree_orchestrator.errors import Failure, WorktreeError
from worktree_orchestrator.logging_config import setup_logging
from worktree_orchestrator.models.lifecycle import (
    ApprovalAction,
    ApprovalDecision,
    BranchProposal,
    CreateOptions,
    CreateResult,
    RemoveResult,
)
from worktree_orchestrator.models.worktree_info import WorktreeInfo, WorktreeStatusSummary

console = Console()

EDITOR_LAUNCH_EXIT_CODE = 6


def print_failure(failure: Failure) -> None:
    """Print a failure with its step and remediation."""
    step = f" [dim]({failure.step})[/dim]" if failure.step else ""
    console.print(f"[bold red]Error:{step}[/bold red] {escape(failure.message)}")
    for suggestion in failure.remediation:
        console.print(f"  [yellow]-[/yellow] {escape(suggestion)}")


def fail(ctx: click.Context, error: WorktreeError) -> NoReturn:
    """Report an error raised before an orchestration run and exit with its code."""
    print_failure(error.to_failure())
    ctx.exit(error.exit_code)


def get_orchestrator(ctx: click.Context, **kwargs) -> WorktreeOrchestrator:
    """
    Build an orchestrator for the repository selected with --repo.

    Exits with the error's code if the repository or configuration is invalid.
    """
    try:
        return WorktreeOrchestrator(ctx.obj["repo"], **kwargs)
    except WorktreeError as e:
        fail(ctx, e)


@click.group()
@click.version_option(package_name="worktree-orchestrator")
@click.option(
    "-C",
    "--repo",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Path inside the repository (default: current directory).",
)
@click.option("-v", "--verbose", is_flag=True, help="Show progress logging.")
@click.option("--debug", is_flag=True, help="Show debug logging.")
@click.pass_context
def main(ctx: click.Context, repo: Optional[Path], verbose: bool, debug: bool) -> None:
    """wto - create ready-to-use git worktrees.

    Names and registers the worktree, copies or links local files into it,
    installs dependencies and opens your editor.
    """
    setup_logging(verbose=verbose, debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["repo"] = repo


def _prompt_approval(status) -> Callable[[BranchProposal], ApprovalDecision]:
    def approve(proposal: BranchProposal) -> ApprovalDecision:
        if status is not None:
            status.stop()

        state = "existing" if proposal.branch_exists else "new"
        console.print(f"[bold]Branch:[/bold] {escape(proposal.branch_name)} ({state})")
        console.print(f"[bold]Path:[/bold]   {proposal.worktree_path}")
        if proposal.base_branch and not proposal.branch_exists:
            console.print(f"[bold]Base:[/bold]   {escape(proposal.base_branch)}")

        action = click.prompt(
            "Proceed?",
            type=click.Choice([a.value for a in ApprovalAction]),
            default=ApprovalAction.ACCEPT.value,
        )
        decision = ApprovalDecision(action=ApprovalAction(action))
        if decision.action == ApprovalAction.EDIT:
            decision.branch_name = click.prompt("Branch name", default=proposal.branch_name)

        if status is not None and decision.action != ApprovalAction.CANCEL:
            status.start()
        return decision

    return approve


def _print_create_result(result: CreateResult) -> None:
    if "worktree" in result.skipped:
        console.print(
            "[yellow]Worktree creation is disabled; enable it with "
            "\"enabled\": true in .wto/config.json.[/yellow]"
        )
        return

    if result.pruned_paths:
        console.print(f"[dim]Pruned {len(result.pruned_paths)} stale worktree record(s)[/dim]")

    if result.failure is not None:
        print_failure(result.failure)
        if result.install and result.install.output:
            console.print("[dim]Installer output (last lines):[/dim]")
            for line in result.install.output.splitlines()[-10:]:
                console.print(f"[dim]  {escape(line)}[/dim]")
        if result.install is not None and result.worktree_path:
            console.print(f"[bold]Worktree kept at:[/bold] {result.worktree_path}")
        return

    console.print()
    console.print("[bold green]Worktree ready![/bold green]")
    console.print()
    console.print(f"[bold]Branch:[/bold]  {escape(result.branch_name)}")
    console.print(f"[bold]Path:[/bold]    {result.worktree_path}")

    if result.sync:
        console.print(
            f"[bold]Files:[/bold]   {len(result.sync.copied)} copied, "
            f"{len(result.sync.symlinked)} symlinked"
        )
    if result.install:
        console.print(
            f"[bold]Deps:[/bold]    installed with {result.install.package_manager.value} "
            f"in {result.install.duration_ms / 1000:.1f}s"
        )
    if result.editor and result.editor.success:
        console.print(f"[bold]Editor:[/bold]  opened with {' '.join(result.editor.command[:-1])}")

    for error in result.non_fatal_errors:
        console.print(f"[yellow]Warning:[/yellow] {escape(error)}")
    console.print()


@main.command("create")
@click.argument("branch")
@click.option(
    "-p",
    "--path",
    type=click.Path(path_type=Path),
    help="Custom path for the worktree.",
)
@click.option(
    "-b",
    "--base",
    "base_branch",
    help="Base branch for creating new branches.",
)
@click.option("--no-deps", is_flag=True, help="Skip dependency installation.")
@click.option("--no-editor", is_flag=True, help="Do not open an editor.")
@click.option(
    "--reuse-worktree",
    is_flag=True,
    help="Accept an existing directory at the destination as-is.",
)
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Replace an existing directory at the destination.",
)
@click.option("-y", "--yes", is_flag=True, help="Skip the approval prompt.")
@click.option("--json", "as_json", is_flag=True, help="Output the result as JSON (implies --yes).")
@click.option("--spec-id", default=None, help="Identifier recorded on the worktree metadata.")
@click.pass_context
def create_worktree(
    ctx: click.Context,
    branch: str,
    path: Optional[Path],
    base_branch: Optional[str],
    no_deps: bool,
    no_editor: bool,
    reuse_worktree: bool,
    force: bool,
    yes: bool,
    as_json: bool,
    spec_id: Optional[str],
) -> None:
    """Create a worktree for BRANCH.

    If BRANCH doesn't exist, it will be created from the base branch
    (or the current HEAD if not specified).

    Example:
        wto create login
        wto create bugfix/fix-123 --base main
        wto create feature/dev --no-deps --no-editor
        wto create feature/dev --reuse-worktree
    """
    if force and reuse_worktree:
        raise click.UsageError("--force and --reuse-worktree are mutually exclusive")
    if not branch.strip():
        raise click.BadParameter("branch name cannot be empty", param_hint="BRANCH")

    options = CreateOptions(
        skip_deps=no_deps,
        skip_editor=no_editor,
        reuse_existing=reuse_worktree,
        custom_path=path,
        force=force,
        base_branch=base_branch,
        spec_id=spec_id,
    )

    status = None if as_json else console.status(f"[bold blue]Creating worktree for '{escape(branch)}'...")
    approve = accept_all if (yes or as_json) else _prompt_approval(status)

    def on_progress(message: str) -> None:
        if status is not None:
            status.update(f"[bold blue]{escape(message)}")

    orchestrator = get_orchestrator(ctx, approve=approve, on_progress=on_progress)

    with status if status is not None else nullcontext():
        result = orchestrator.create(branch, options)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_create_result(result)

    if result.failure is not None:
        ctx.exit(result.exit_code)
    if result.editor is not None and not result.editor.success:
        ctx.exit(EDITOR_LAUNCH_EXIT_CODE)


def _confirm_removal(info: WorktreeInfo, status: WorktreeStatusSummary) -> bool:
    console.print(f"[bold]Worktree:[/bold] {info.short_path}")
    console.print(f"[bold]Branch:[/bold]   {escape(info.branch)}")
    for note in status.describe():
        console.print(f"[yellow]Warning:[/yellow] {note}")
    return click.confirm("Remove this worktree?", default=False)


def _print_remove_result(result: RemoveResult) -> None:
    if result.failure is not None:
        for warning in result.warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        print_failure(result.failure)
        return

    console.print(f"[bold green]Removed worktree:[/bold green] {result.worktree_path}")
    if result.branch_deleted:
        console.print(f"[green]Deleted branch '{escape(result.branch_name)}'[/green]")
    for warning in result.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


@main.command("remove")
@click.argument("branch")
@click.option(
    "-f",
    "--force",
    is_flag=True,
    help="Remove even with uncommitted changes.",
)
@click.option("--delete-branch", is_flag=True, help="Also delete the branch.")
@click.option("-y", "--yes", is_flag=True, help="Skip confirmation prompt.")
@click.option("--json", "as_json", is_flag=True, help="Output the result as JSON (implies --yes).")
@click.pass_context
def remove_worktree(
    ctx: click.Context,
    branch: str,
    force: bool,
    delete_branch: bool,
    yes: bool,
    as_json: bool,
) -> None:
    """Remove the worktree for BRANCH.

    BRANCH can be the branch name, the worktree directory name, or its path.

    Example:
        wto remove feature/old-feature
        wto remove feature/test --delete-branch
    """
    orchestrator = get_orchestrator(ctx)
    confirm = None if (yes or as_json) else _confirm_removal

    result = orchestrator.remove(branch, force=force, delete_branch=delete_branch, confirm=confirm)

    if as_json:
        click.echo(result.model_dump_json(indent=2))
    else:
        _print_remove_result(result)

    if result.failure is not None:
        ctx.exit(result.exit_code)


@main.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option(
    "-v",
    "--verbose",
    "show_details",
    is_flag=True,
    help="Include the main worktree and stale-record details.",
)
@click.pass_context
def list_worktrees(ctx: click.Context, as_json: bool, show_details: bool) -> None:
    """List worktrees for this repository.

    Example:
        wto list
        wto list --verbose
        wto list --json
    """
    orchestrator = get_orchestrator(ctx)
    try:
        worktrees = orchestrator.list_worktrees()
    except WorktreeError as e:
        fail(ctx, e)
        return

    if as_json:
        click.echo(json.dumps([wt.model_dump(mode="json") for wt in worktrees], indent=2))
        return

    if not show_details:
        worktrees = [wt for wt in worktrees if not wt.is_main]

    if not worktrees:
        console.print("[yellow]No worktrees found.[/yellow]")
        if not show_details:
            console.print("[dim]Use --verbose to show the main worktree.[/dim]")
        return

    table = Table(title="Git Worktrees", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Branch", style="green")
    table.add_column("Commit", style="dim")
    table.add_column("Path")
    table.add_column("Status", justify="center")
    if show_details:
        table.add_column("Details", style="dim")

    for wt in worktrees:
        if wt.is_main:
            status = "[blue]main[/blue]"
        elif wt.is_prunable:
            status = "[red]stale[/red]"
        elif wt.is_locked:
            status = "[magenta]locked[/magenta]"
        elif wt.is_detached:
            status = "[yellow]detached[/yellow]"
        else:
            status = "[green]active[/green]"

        row = [wt.name, escape(wt.branch), wt.commit_hash, wt.short_path, status]
        if show_details:
            row.append(escape(wt.prunable_reason or ""))
        table.add_row(*row)

    console.print()
    console.print(table)
    console.print()


@main.command("prune")
@click.option("--dry-run", is_flag=True, help="Show what would be pruned without pruning.")
@click.pass_context
def prune_worktrees(ctx: click.Context, dry_run: bool) -> None:
    """Remove records of worktrees whose directory no longer exists.

    Example:
        wto prune --dry-run
        wto prune
    """
    orchestrator = get_orchestrator(ctx)
    try:
        result = orchestrator.prune(dry_run=dry_run)
    except WorktreeError as e:
        fail(ctx, e)
        return

    if not result.pruned_paths:
        console.print("[green]No stale worktree records.[/green]")
        return

    verb = "Would prune" if dry_run else "Pruned"
    console.print(f"[bold]{verb} {result.pruned_count} stale record(s):[/bold]")
    for path in result.pruned_paths:
        console.print(f"  {path}")


@main.group("config")
def config_group() -> None:
    """Inspect and upgrade the repository configuration."""


def _repo_root(ctx: click.Context) -> Path:
    try:
        return GitAdapter(ctx.obj["repo"]).main_worktree_path
    except WorktreeError as e:
        fail(ctx, e)


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context) -> None:
    """Print the effective configuration as JSON."""
    root = _repo_root(ctx)
    try:
        config = load_config(root)
    except WorktreeError as e:
        fail(ctx, e)
        return

    config_path = get_config_path(root)
    if not config_path.exists():
        click.echo(f"{config_path} not found; showing defaults", err=True)
    click.echo(json.dumps(config.to_document(), indent=2))


@config_group.command("migrate")
@click.pass_context
def config_migrate(ctx: click.Context) -> None:
    """Upgrade the configuration file to the current schema version."""
    root = _repo_root(ctx)
    try:
        migrated = migrate_config(root)
    except WorktreeError as e:
        fail(ctx, e)
        return

    if migrated:
        console.print(f"[green]Migrated {get_config_path(root)}[/green]")
    else:
        console.print("[dim]Configuration is already current.[/dim]")


if __name__ == "__main__":
    main()
