"""botbrain CLI — inspect and drive the learning loop.

`botbrain init` prepares the database, `botbrain policy Alex` shows an
agent's policy, `botbrain schedule` runs hourly reflection for the
configured roster.
"""

from __future__ import annotations

import logging

import orjson
import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from botbrain.cli.context import BrainContext, run_async

console = Console()

app = typer.Typer(
    name="botbrain",
    help="botbrain -- online movement tuning and policy reflection for game agents.",
    no_args_is_help=True,
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    ctx = BrainContext.get()
    level = "DEBUG" if verbose else ctx.settings.log_level
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _json(data: object) -> str:
    return orjson.dumps(data, option=orjson.OPT_INDENT_2).decode()


@app.command("init")
def init():
    """Create the database schema and seed the arm catalog."""
    ctx = BrainContext.get()
    run_async(ctx.ensure_ready())
    console.print(
        Panel(
            f"[green]Database ready at {ctx.settings.db_path}[/green]\n\n"
            "Enable reflection with an advisor:\n"
            "  [bold]export BOTBRAIN_ADVISOR_PROVIDER=ollama[/bold]",
            title="botbrain",
            border_style="cyan",
        )
    )


@app.command("arms")
def arms():
    """List the movement arm catalog."""
    ctx = BrainContext.get()

    async def _arms():
        await ctx.ensure_ready()
        return await ctx.registry.list_arms()

    table = Table(title="Movement arms")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Parameters", style="white")
    for arm in run_async(_arms()):
        params = ", ".join(f"{k}={v}" for k, v in arm.params.model_dump().items())
        table.add_row(str(arm.id), arm.name, params)
    console.print(table)


@app.command("stats")
def stats(agent: str = typer.Argument(help="Agent id")):
    """Show bandit statistics for an agent."""
    ctx = BrainContext.get()

    async def _stats():
        await ctx.ensure_ready()
        rows = await ctx.bandit.stats(agent)
        names = {a.id: a.name for a in await ctx.registry.list_arms()}
        return rows, names

    rows, names = run_async(_stats())
    table = Table(title=f"Arm statistics — {agent}")
    table.add_column("Arm", style="cyan")
    table.add_column("Pulls", justify="right")
    table.add_column("Mean reward", justify="right")
    table.add_column("Last selected", style="dim")
    for st in rows:
        table.add_row(
            names.get(st.arm_id, str(st.arm_id)),
            str(st.n),
            f"{st.reward_mean:.3f}",
            st.last_selected_at.strftime("%Y-%m-%d %H:%M") if st.last_selected_at else "-",
        )
    console.print(table)


@app.command("policy")
def policy(agent: str = typer.Argument(help="Agent id")):
    """Show an agent's current policy (creates the default on first use)."""
    ctx = BrainContext.get()

    async def _policy():
        await ctx.ensure_ready()
        return await ctx.policy_store.get_current_policy(agent)

    doc = run_async(_policy())
    console.print(Panel(_json(doc), title=f"{agent} — policy v{doc['version']}", border_style="cyan"))


@app.command("history")
def history(agent: str = typer.Argument(help="Agent id")):
    """List every stored policy version for an agent."""
    ctx = BrainContext.get()

    async def _history():
        await ctx.ensure_ready()
        return await ctx.policy_store.history(agent)

    docs = run_async(_history())
    if not docs:
        console.print(f"[dim]No policy stored for {agent} yet.[/dim]")
        return

    table = Table(title=f"Policy history — {agent}")
    table.add_column("Version", justify="right")
    table.add_column("Preferred arm", style="cyan")
    table.add_column("Skill weights")
    table.add_column("Smalltalk", justify="right")
    for doc in docs:
        movement = doc.get("movement") if isinstance(doc.get("movement"), dict) else {}
        chat = doc.get("chat") if isinstance(doc.get("chat"), dict) else {}
        weights = doc.get("skill_weights") or {}
        table.add_row(
            str(doc.get("version")),
            str(movement.get("preferred_arm", "-")),
            ", ".join(f"{k}={v:.2f}" for k, v in weights.items()),
            str(chat.get("smalltalk_rate", "-")),
        )
    console.print(table)


@app.command("reflect")
def reflect(agent: str = typer.Argument(help="Agent id")):
    """Run one reflection for an agent now."""
    ctx = BrainContext.get()

    async def _reflect():
        reflection = await ctx.reflection()
        return await reflection.reflect_and_patch(agent)

    result = run_async(_reflect())
    if result.ok:
        console.print(Panel(_json(result.patch), title=f"{agent} patched", border_style="green"))
        console.print(f"Policy is now version {result.updated['version']}.")
    else:
        console.print(f"[yellow]Reflection skipped for {agent}:[/yellow] {result.error}")
        raise typer.Exit(code=1)


@app.command("schedule")
def schedule(
    once: bool = typer.Option(False, "--once", help="Run a single tick and exit"),
):
    """Reflect every roster agent on the configured interval."""
    ctx = BrainContext.get()

    async def _schedule():
        scheduler = await ctx.scheduler()
        if once:
            return await scheduler.run_once()
        await scheduler.start()
        try:
            await scheduler.wait()
        finally:
            await scheduler.stop()
        return None

    console.print(f"[dim]Roster: {', '.join(ctx.settings.roster())}[/dim]")
    try:
        report = run_async(_schedule())
    except KeyboardInterrupt:
        console.print("[dim]Scheduler stopped.[/dim]")
        return

    if report is not None:
        table = Table(title=f"Reflection tick {report.tick}")
        table.add_column("Agent", style="cyan")
        table.add_column("Result")
        for agent in ctx.settings.roster():
            result = report.results.get(agent)
            if result is not None and result.ok:
                table.add_row(agent, f"[green]v{result.updated['version']}[/green]")
            else:
                table.add_row(agent, f"[yellow]{report.failures.get(agent, '-')}[/yellow]")
        console.print(table)


@app.command("version")
def version():
    """Show the installed version."""
    from botbrain import __version__
    console.print(f"botbrain v{__version__}")
