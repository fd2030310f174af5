"""taskbot CLI — Typer-based command-line interface."""

from __future__ import annotations

import asyncio
from datetime import datetime

import typer
from rich.console import Console
from rich.table import Table

from taskbot import __version__

app = typer.Typer(
    name="taskbot",
    help="taskbot - scheduled agent automation with compiled executors",
    no_args_is_help=True,
)

console = Console()


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"taskbot v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=_version_callback, is_eager=True
    ),
) -> None:
    """taskbot - scheduled agent automation with compiled executors."""


def _ts(value: float | None) -> str:
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M") if value else "-"


def _bot():
    from taskbot.app import get_app

    return get_app()


# ════════════════════════════════════════════════════════════
# run — scheduler daemon
# ════════════════════════════════════════════════════════════


@app.command()
def run() -> None:
    """Start the scheduler and run jobs until interrupted."""
    bot = _bot()
    if not bot.config.scheduler.enabled:
        console.print("[yellow]Scheduler is disabled (scheduler.enabled = false)[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]taskbot scheduler running[/green] ({bot.store.count_active_jobs()} active jobs)")
    try:
        asyncio.run(bot.serve())
    except KeyboardInterrupt:
        console.print("\nBye!")


# ════════════════════════════════════════════════════════════
# ask — manage jobs in natural language
# ════════════════════════════════════════════════════════════


@app.command()
def ask(message: str = typer.Argument(help="Request, e.g. 'check HN every morning at 8'")) -> None:
    """Talk to the assistant; it manages jobs with its job tools."""
    response = asyncio.run(_bot().ask(message))
    console.print(f"\n[bold cyan]taskbot:[/bold cyan] {response}\n")


# ════════════════════════════════════════════════════════════
# status — config + DB info
# ════════════════════════════════════════════════════════════


@app.command()
def status() -> None:
    """Show configuration and store status."""
    bot = _bot()
    jobs = bot.store.list_jobs()
    pending = bot.store.list_pending_approvals()
    executors = bot.cache.list_active()

    table = Table(title="taskbot status")
    table.add_column("Key", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Version", __version__)
    table.add_row("Model", bot.config.assistant.model)
    table.add_row("Cheap model", bot.config.assistant.cheap_model)
    table.add_row("DB Path", bot.config.database.path)
    table.add_row("Jobs", f"{len(jobs)} ({sum(j.status == 'active' for j in jobs)} active)")
    table.add_row("Pending approvals", str(len(pending)))
    table.add_row("Active executors", str(len(executors)))
    table.add_row("Cost saved", f"${sum(e.cost_saved for e in executors):.4f}")
    table.add_row("Daily budget", f"${bot.config.scheduler.daily_budget:.2f}")

    console.print(table)


# ════════════════════════════════════════════════════════════
# jobs — job management (sub-command group)
# ════════════════════════════════════════════════════════════

jobs_app = typer.Typer(help="Manage jobs")
app.add_typer(jobs_app, name="jobs")


@jobs_app.command("list")
def jobs_list(
    status_filter: str | None = typer.Option(None, "--status", "-s", help="Filter by status"),
) -> None:
    """List jobs."""
    from taskbot.core.triggers import describe_cron

    jobs = _bot().store.list_jobs(status_filter)
    if not jobs:
        console.print("[dim]No jobs found.[/dim]")
        return

    table = Table(title="Jobs")
    table.add_column("ID", style="cyan")
    table.add_column("Description", style="white")
    table.add_column("Trigger", style="yellow")
    table.add_column("Status", style="green")
    table.add_column("Next run", style="blue")
    table.add_column("Runs", justify="right")
    table.add_column("Fails", justify="right", style="red")

    for job in jobs:
        spec = describe_cron(job.trigger_spec) if job.trigger_type == "scheduled" else job.trigger_spec
        table.add_row(
            job.job_id,
            job.description[:60],
            f"{job.trigger_type}: {spec}",
            job.status,
            _ts(job.next_run_at),
            str(job.run_count),
            str(job.consecutive_failures),
        )
    console.print(table)


@jobs_app.command("add")
def jobs_add(
    description: str = typer.Argument(help="What the job does"),
    trigger: str = typer.Option(..., "--trigger", "-t", help="Cron, phrase, ISO time or condition"),
    trigger_type: str = typer.Option("scheduled", "--type", help="scheduled | one_time | condition"),
    instructions: str | None = typer.Option(None, "--instructions", "-i", help="Agent instructions"),
    approval: str = typer.Option("auto", "--approval", help="auto | approve_first | approve_always"),
    model: str | None = typer.Option(None, "--model", "-m", help="Model override"),
) -> None:
    """Create a job."""
    from taskbot.exceptions import TaskbotError

    bot = _bot()
    try:
        job = bot.store.create_job(
            description=description,
            trigger_type=trigger_type,
            trigger_spec=trigger,
            instructions=instructions,
            approval_policy=approval,
            model=model,
        )
    except (TaskbotError, ValueError) as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Job created:[/green] {job.job_id} (next run {_ts(job.next_run_at)})")


def _resolve(ref: str):
    from taskbot.agent.tools.job_tools import resolve_job_ref

    bot = _bot()
    job, ambiguous = resolve_job_ref(bot.store, ref)
    if ambiguous:
        console.print("[yellow]Multiple jobs match:[/yellow]")
        for j in ambiguous:
            console.print(f"  {j.job_id}  {j.description}")
        raise typer.Exit(code=1)
    if job is None:
        console.print(f"[red]No job found matching:[/red] {ref}")
        raise typer.Exit(code=1)
    return bot, job


@jobs_app.command("pause")
def jobs_pause(ref: str = typer.Argument(help="Job ID or description fragment")) -> None:
    """Pause a job."""
    bot, job = _resolve(ref)
    bot.store.pause_job(job.job_id)
    bot.scheduler.on_job_paused(job.job_id)
    console.print(f"[green]Paused:[/green] {job.description}")


@jobs_app.command("resume")
def jobs_resume(ref: str = typer.Argument(help="Job ID or description fragment")) -> None:
    """Resume a paused job."""
    bot, job = _resolve(ref)
    job = bot.scheduler.on_job_resumed(job.job_id)
    console.print(f"[green]Resumed:[/green] {job.description} (next run {_ts(job.next_run_at)})")


@jobs_app.command("remove")
def jobs_remove(ref: str = typer.Argument(help="Job ID or description fragment")) -> None:
    """Delete a job and its run history."""
    bot, job = _resolve(ref)
    bot.store.delete_job(job.job_id)
    bot.scheduler.on_job_deleted(job.job_id)
    console.print(f"[green]Removed job:[/green] {job.job_id}")


@jobs_app.command("run")
def jobs_run(ref: str = typer.Argument(help="Job ID or description fragment")) -> None:
    """Run a job now and wait for the result."""
    bot, job = _resolve(ref)

    async def _run():
        task = bot.scheduler.trigger_manual_run(job.job_id)
        return await task if task else None

    result = asyncio.run(_run())
    if result is None:
        console.print(f"[yellow]Job {job.job_id} is already running[/yellow]")
        raise typer.Exit(code=1)
    run = result.run
    color = "green" if result.success else "red"
    console.print(f"[{color}]{run.status}[/{color}] via {result.source} in {run.duration_ms or 0}ms")
    console.print(run.result_detail or run.error or "")


@jobs_app.command("results")
def jobs_results(
    ref: str = typer.Argument(help="Job ID or description fragment"),
    limit: int = typer.Option(5, "--limit", "-n", help="Number of runs"),
) -> None:
    """Show recent runs of a job."""
    bot, job = _resolve(ref)
    runs = bot.store.list_runs(job.job_id, limit=limit)
    if not runs:
        console.print("[dim]No runs yet.[/dim]")
        return

    table = Table(title=f"Runs: {job.description[:50]}")
    table.add_column("Run", style="cyan")
    table.add_column("Started", style="dim")
    table.add_column("Status", style="green")
    table.add_column("Source", style="yellow")
    table.add_column("Duration", justify="right")
    table.add_column("Result / error", style="white")
    for r in runs:
        table.add_row(
            r.run_id,
            _ts(r.started_at),
            r.status,
            r.source or "-",
            f"{(r.duration_ms or 0) / 1000:.1f}s",
            (r.error or r.result_summary or "")[:80],
        )
    console.print(table)


# ════════════════════════════════════════════════════════════
# runs — approvals (sub-command group)
# ════════════════════════════════════════════════════════════

runs_app = typer.Typer(help="Inspect and approve runs")
app.add_typer(runs_app, name="runs")


@runs_app.command("pending")
def runs_pending() -> None:
    """List runs awaiting approval."""
    bot = _bot()
    runs = bot.store.list_pending_approvals()
    if not runs:
        console.print("[dim]No runs awaiting approval.[/dim]")
        return
    for r in runs:
        job = bot.store.get_job(r.job_id)
        console.print(f"  {r.run_id}  {_ts(r.started_at)}  {job.description if job else r.job_id}")


@runs_app.command("approve")
def runs_approve(run_id: str = typer.Argument(help="Run ID awaiting approval")) -> None:
    """Approve a pending run and execute it now."""
    bot = _bot()

    async def _approve():
        task = bot.scheduler.approve_run(run_id)
        return await task if task else None

    result = asyncio.run(_approve())
    if result is None:
        console.print(f"[red]Run {run_id} could not be approved[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Run {run_id}:[/green] {result.run.status}")


@runs_app.command("reject")
def runs_reject(run_id: str = typer.Argument(help="Run ID awaiting approval")) -> None:
    """Reject a pending run."""
    if _bot().scheduler.reject_run(run_id):
        console.print(f"[green]Rejected:[/green] {run_id}")
    else:
        console.print(f"[red]Run {run_id} is not awaiting approval[/red]")
        raise typer.Exit(code=1)


# ════════════════════════════════════════════════════════════
# executors — compiled executor cache
# ════════════════════════════════════════════════════════════

executors_app = typer.Typer(help="Inspect compiled executors")
app.add_typer(executors_app, name="executors")


@executors_app.command("list")
def executors_list() -> None:
    """List active executors."""
    executors = _bot().cache.list_active()
    if not executors:
        console.print("[dim]No active executors.[/dim]")
        return

    table = Table(title="Executors")
    table.add_column("ID", style="cyan")
    table.add_column("Owner", style="blue")
    table.add_column("Ver", justify="right")
    table.add_column("Steps", justify="right")
    table.add_column("OK/Fail", justify="right")
    table.add_column("Saved", justify="right", style="green")
    table.add_column("Last used", style="dim")
    for e in executors:
        table.add_row(
            e.executor_id,
            e.owner_key,
            str(e.version),
            f"{e.stats.deterministic_steps}/{e.stats.total_steps}",
            f"{e.success_count}/{e.failure_count}",
            f"${e.cost_saved:.4f}",
            _ts(e.last_used_at),
        )
    console.print(table)
