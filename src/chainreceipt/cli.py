import json, asyncio
import click
from eth_utils import to_checksum_address
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .config import Settings
from .domain.errors import ReceiptError
from .domain.models import JobInput, JobStatus
from .logs import configure_logging

console = Console()

STATE_STYLE = {"waiting": "yellow", "active": "cyan", "completed": "green", "failed": "red"}


def _settings(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def _who(p: dict | None) -> str:
    if not p:
        return "-"
    return p.get("name") or to_checksum_address(p["address"])


def _status_panel(st: JobStatus) -> Panel:
    t = Table.grid(padding=(0, 2))
    t.add_column(style="bold"); t.add_column()
    t.add_row("state", f"[{STATE_STYLE[st.state]}]{st.state}[/]")
    t.add_row("attempts", str(st.attempts))
    if st.state == "waiting":
        t.add_row("queue position", str(st.queue_position))
        t.add_row("estimated wait", f"{st.estimated_wait_s}s")
    if st.document_ref:
        t.add_row("document", st.document_ref)
    if st.error:
        t.add_row("error", f"[red]{st.error}[/]")
    if st.result:
        r = st.result
        totals = r["totals"]
        t.add_row("bill", r["bill_id"])
        t.add_row("type", f"{r['type_label']} ({r['confidence_label']})")
        t.add_row("from / to", f"{_who(r['sender'])} -> {_who(r['recipient'])}")
        t.add_row("in / out", f"{totals['total_in_usd']} / {totals['total_out_usd']}")
        t.add_row("fee", f"{r['fee']['fee_native']} {r['native_symbol']} ({r['fee']['fee_usd']})")
        t.add_row("net", totals["net_change_usd"])
        if r.get("internal_transfers"):
            t.add_row("internal", f"{len(r['internal_transfers'])} native transfers (not in totals)")
        prices = ", ".join(f"{p['source']} {p['drift_s']}s" for p in r.get("price_sources") or [])
        if prices:
            t.add_row("prices", prices)
        t.add_row("hash", r.get("receipt_hash") or "-")
    return Panel(t, title=st.id, expand=False)


def _run(coro):
    try:
        return asyncio.run(coro)
    except ReceiptError as e:
        raise click.ClickException(e.reason())


@click.group()
@click.option("--data-dir", type=str, default=None, help="Job journal and documents directory")
@click.option("--log-level", type=str, default=None, help="Overrides CHAINRECEIPT_LOG_LEVEL")
@click.pass_context
def cli(ctx, data_dir, log_level):
    """chainreceipt: turn a transaction hash into a priced, classified receipt."""
    settings = Settings.from_env()
    overrides = {}
    if data_dir: overrides["data_dir"] = data_dir
    if log_level: overrides["log_level"] = log_level.upper()
    if overrides:
        from dataclasses import replace
        settings = replace(settings, **overrides)
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings}


@cli.command("submit")
@click.argument("tx_hash")
@click.option("--chain-id", type=int, required=True)
@click.option("--wallet", "connected_wallet", type=str, default=None, help="Whose point of view to report from")
@click.option("--priority", type=int, default=0, show_default=True)
@click.pass_context
def submit_cmd(ctx, tx_hash, chain_id, connected_wallet, priority):
    """Queue a generation job and print its id."""
    from .application.queue import JobQueue
    from .services import build_store

    settings = _settings(ctx)

    async def run():
        queue = JobQueue(build_store(settings), settings)
        return await queue.submit(JobInput(tx_hash, chain_id, connected_wallet, priority))

    handle = _run(run())
    console.print(handle.id)


@cli.command("status")
@click.argument("job_id")
@click.option("--json", "as_json", is_flag=True, help="Print the raw status as JSON")
@click.pass_context
def status_cmd(ctx, job_id, as_json):
    """Show a job's state, and its receipt once completed."""
    from .application.queue import JobQueue
    from .services import build_store

    settings = _settings(ctx)
    st = _run(JobQueue(build_store(settings), settings).get_status(job_id))
    if st is None:
        raise click.ClickException(f"unknown job {job_id}")
    if as_json:
        from dataclasses import asdict
        click.echo(json.dumps(asdict(st), indent=2))
    else:
        console.print(_status_panel(st))


@cli.command("work")
@click.option("--forever/--until-idle", default=False, show_default=True,
              help="Keep polling for new jobs instead of exiting once the queue is drained")
@click.pass_context
def work_cmd(ctx, forever):
    """Run the worker pool against the job journal."""
    from .services import build_services

    settings = _settings(ctx)

    async def run():
        services = build_services(settings)
        try:
            if forever:
                await services.workers.run_forever()
            else:
                await services.workers.run_until_idle()
        finally:
            await services.aclose()

    try:
        _run(run())
    except KeyboardInterrupt:
        console.print("[yellow]interrupted[/]")


@cli.command("generate")
@click.argument("tx_hash")
@click.option("--chain-id", type=int, required=True)
@click.option("--wallet", "connected_wallet", type=str, default=None)
@click.pass_context
def generate_cmd(ctx, tx_hash, chain_id, connected_wallet):
    """Submit and process one job in-process, then show the result."""
    from .services import build_services

    settings = _settings(ctx)

    async def run():
        services = build_services(settings)
        try:
            handle = await services.queue.submit(JobInput(tx_hash, chain_id, connected_wallet))
            with console.status(f"[bold]generating[/] {handle.id}"):
                await services.workers.run_until_idle()
            return await services.queue.get_status(handle.id)
        finally:
            await services.aclose()

    st = _run(run())
    console.print(_status_panel(st))
    if st.state == "failed":
        raise SystemExit(1)


@cli.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
@click.pass_context
def serve_cmd(ctx, host, port):
    """Serve the HTTP API with an embedded worker pool."""
    import uvicorn
    from .presentation.api import create_app
    from .services import build_services

    services = build_services(_settings(ctx))
    app = create_app(services.queue, services.workers, services.aclose)
    uvicorn.run(app, host=host, port=port, log_config=None)


if __name__ == "__main__":
    cli()
