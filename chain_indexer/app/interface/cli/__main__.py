import asyncio
import inspect
import typer
import logging
from dotenv import load_dotenv
from InquirerPy import inquirer
from chain_indexer.app.application.services.monitoring import HealthState
from chain_indexer.app.domain.indexer_settings import LogSource
from chain_indexer.app.domain.models import IndexerStatus
from chain_indexer.app.interface.tasks import TASKS
from chain_indexer.app.interface.tasks.db_task import init_db_task
from chain_indexer.app.interface.tasks.indexer_tasks import (
    create_indexer_task,
    indexer_status_task,
    run_indexer_task,
    set_indexer_status_task,
)
from chain_indexer.app.interface.tasks.monitoring_tasks import health_task
from chain_indexer.app.interface.tasks.scheduler_task import scheduler_task


load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

app = typer.Typer()
indexer_app = typer.Typer(help="cli for indexing on chain data.")
scheduler_app = typer.Typer(help="periodic indexer runs.")
db_app = typer.Typer(help="database helpers.")
app.add_typer(indexer_app, name="indexer")
app.add_typer(scheduler_app, name="scheduler")
app.add_typer(db_app, name="db")

# Parameters the interactive picker asks for, with their prompt and parser
_PROMPTS: dict[str, tuple[str, str, type]] = {
    "indexer_id": ("Indexer ID:", "1", int),
    "name": ("Indexer name:", "", str),
    "owner": ("Owner:", "", str),
    "start_block": ("Start block:", "0", int),
    "interval": ("Scheduler interval in seconds:", "60", float),
}


@indexer_app.command("run")
def run() -> None:
    task_name = inquirer.select(
        message="Select task:",
        choices=list(TASKS.keys()),
        pointer="❯",
        instruction="Use ↑/↓ to move, Enter to select",
    ).execute()

    task = TASKS[task_name]

    kwargs: dict[str, object] = {}
    params = inspect.signature(task).parameters

    for param, (message, default, parse) in _PROMPTS.items():
        if param in params:
            raw = inquirer.text(message=message, default=default).execute()
            kwargs[param] = parse(raw)

    if "description" in params:
        description = inquirer.text(
            message="Description (optional):",
            default="",
        ).execute()
        kwargs["description"] = description.strip() or None

    result = asyncio.run(task(**kwargs))  # type: ignore
    if result is not None:
        typer.echo(result)


@indexer_app.command("create")
def create(
    name: str = typer.Option(..., help="Indexer name."),
    owner: str = typer.Option(..., help="Owner identifier."),
    start_block: int = typer.Option(0, help="First block is start_block + 1."),
    description: str | None = typer.Option(None, help="Free-form description."),
    batch_size: int | None = typer.Option(None, help="Blocks per chunk (defaults to BATCH_SIZE)."),
    log_source: LogSource | None = typer.Option(None, help="receipts or range."),
    contract: list[str] = typer.Option([], help="Contract address filter for the range log source. Repeatable."),
) -> None:
    indexer = asyncio.run(
        create_indexer_task(
            name=name,
            owner=owner,
            start_block=start_block,
            description=description,
            batch_size=batch_size,
            log_source=log_source,
            contract_addresses=contract,
        )
    )
    typer.echo(f"Created indexer {indexer.id} ({indexer.name}), status={indexer.status.value}")


@indexer_app.command("start")
def start(indexer_id: int = typer.Argument(..., help="Indexer ID.")) -> None:
    job = asyncio.run(run_indexer_task(indexer_id=indexer_id))
    typer.echo(f"Job {job.id}: {job.status.value} {job.result or job.error or ''}")
    if job.error:
        raise typer.Exit(code=1)


@indexer_app.command("status")
def status(indexer_id: int = typer.Argument(..., help="Indexer ID.")) -> None:
    report = asyncio.run(indexer_status_task(indexer_id=indexer_id))
    indexer = report.indexer
    typer.echo(f"Indexer {indexer.id} ({indexer.name}) owner={indexer.owner} status={indexer.status.value}")
    typer.echo(f"  last run:   {indexer.last_run or '-'}")
    typer.echo(f"  checkpoint: {report.checkpoint}")
    typer.echo(f"  head block: {report.head_block if report.head_block is not None else '-'}")
    typer.echo(f"  lag:        {report.lag if report.lag is not None else '-'}")
    typer.echo(f"  error rate: {report.error_rate:.1f}%")
    for key, value in sorted(report.configs.items()):
        typer.echo(f"  config {key} = {value}")
    for job in report.jobs:
        typer.echo(f"  job {job.id}: {job.status.value} created={job.created_at} {job.error or job.result or ''}")


@indexer_app.command("health")
def health() -> None:
    report, metrics = asyncio.run(health_task())
    typer.echo(f"Status: {report.status.value}")
    for check in report.checks:
        typer.echo(f"  {check.name}: {'pass' if check.passed else 'fail'} {check.message or ''}")
    if metrics is not None:
        typer.echo(
            f"Indexers: {metrics.total_indexers} total, {metrics.active_indexers} active, "
            f"{metrics.error_indexers} errored"
        )
        typer.echo(
            f"Stored: {metrics.total_blocks} blocks, {metrics.total_transactions} transactions, "
            f"{metrics.total_events} events"
        )
    if report.status is HealthState.UNHEALTHY:
        raise typer.Exit(code=1)


@indexer_app.command("activate")
def activate(indexer_id: int = typer.Argument(..., help="Indexer ID.")) -> None:
    asyncio.run(set_indexer_status_task(indexer_id=indexer_id, status=IndexerStatus.ACTIVE))


@indexer_app.command("deactivate")
def deactivate(indexer_id: int = typer.Argument(..., help="Indexer ID.")) -> None:
    asyncio.run(set_indexer_status_task(indexer_id=indexer_id, status=IndexerStatus.INACTIVE))


@scheduler_app.command("run")
def scheduler_run(
    interval: float | None = typer.Option(None, help="Seconds between ticks (defaults to SCHEDULER_INTERVAL)."),
) -> None:
    try:
        asyncio.run(scheduler_task(interval=interval))
    except KeyboardInterrupt:
        typer.echo("Scheduler stopped")


@db_app.command("init")
def db_init() -> None:
    asyncio.run(init_db_task())


if __name__ == "__main__":
    LOGO = r"""
      --- Chain Indexer CLI ---
    """
    typer.echo(LOGO)
    app()
