"""
Dynabatch CLI - dynamic batching from the command line.

Usage:
    dynabatch status        Show the effective configuration
    dynabatch validate      Validate configuration and imports
    dynabatch plan          Replay an arrival pattern through the batch policy
    dynabatch simulate      Drive a workload through the scheduler and a simulated backend
    dynabatch info          Show version and available backends
"""

import dataclasses
import json
import threading
import time
from concurrent.futures import wait
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..backends.simulated import SimulatedBackend
from ..batching.policy import BatchPolicy, plan_batches
from ..batching.scheduler import BatchingScheduler
from ..config import DynabatchConfig, SchedulerConfig, get_config, set_config
from ..errors import BackendError, ConfigurationError, DynabatchError, QueueFullError
from ..logging import setup_logging, with_correlation_id

console = Console()
cli = typer.Typer(
    name="dynabatch",
    help="Dynamic batching scheduler for model inference.",
    no_args_is_help=True,
)


@cli.callback()
def main(
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c", help="YAML configuration file"
    ),
):
    """Load configuration before running a command."""
    if config_file is None:
        return

    try:
        set_config(DynabatchConfig.from_yaml(config_file))
    except (ConfigurationError, TypeError, ValueError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=1)

    setup_logging()


@cli.command()
def status():
    """Show the effective scheduler, backend and logging configuration."""
    config = get_config()

    sched_table = Table(show_header=False, box=box.SIMPLE)
    sched_table.add_column("Setting", style="bold")
    sched_table.add_column("Value")

    sched_table.add_row("Max batch size", str(config.scheduler.max_batch_size))
    sched_table.add_row("Preferred batch size", str(config.scheduler.preferred_batch_size))
    sched_table.add_row("Max queue delay (ms)", str(config.scheduler.max_queue_delay_ms))
    sched_table.add_row("Backlog limit", str(config.scheduler.backlog_limit))
    sched_table.add_row("Max in-flight batches", str(config.scheduler.max_inflight_batches))
    sched_table.add_row("Backend timeout (s)", str(config.scheduler.backend_timeout_s))

    console.print(Panel(sched_table, title="Scheduler Configuration", border_style="cyan"))

    backend_table = Table(show_header=False, box=box.SIMPLE)
    backend_table.add_column("Setting", style="bold")
    backend_table.add_column("Value")

    backend_table.add_row("Kind", config.backend.kind)
    if config.backend.kind == "http":
        backend_table.add_row("URL", config.backend.url or "[red]not set[/red]")
    else:
        backend_table.add_row("Latency (ms)", str(config.backend.latency_ms))
        backend_table.add_row("Per-item latency (ms)", str(config.backend.per_item_ms))
        backend_table.add_row("Failure rate", str(config.backend.failure_rate))
        backend_table.add_row("Seed", str(config.backend.seed))

    console.print(Panel(backend_table, title="Backend Configuration", border_style="blue"))

    log_table = Table(show_header=False, box=box.SIMPLE)
    log_table.add_column("Setting", style="bold")
    log_table.add_column("Value")

    log_table.add_row("Log level", config.logging.log_level)
    log_table.add_row("Log format", config.logging.log_format)
    log_table.add_row("Metrics", _bool_badge(config.logging.enable_metrics))

    console.print(Panel(log_table, title="Logging Configuration", border_style="green"))


@cli.command()
def validate():
    """Validate configuration and imports."""
    config = get_config()

    console.print("[bold]Running validation checks...[/bold]\n")
    errors = []

    config_errors = config.validate()
    if config_errors:
        for err in config_errors:
            errors.append(f"Config: {err}")
            console.print(f"  [red]FAIL[/red] {err}")
    else:
        console.print("  [green]PASS[/green] Configuration is valid")

    import_checks = [
        ("dynabatch.types", "Core types"),
        ("dynabatch.batching", "Batching"),
        ("dynabatch.backends", "Backends"),
        ("dynabatch.metrics", "Metrics"),
    ]

    for module_path, label in import_checks:
        try:
            __import__(module_path)
            console.print(f"  [green]PASS[/green] {label} imports OK")
        except ImportError as e:
            errors.append(f"Import {module_path}: {e}")
            console.print(f"  [red]FAIL[/red] {label}: {e}")

    console.print()
    if errors:
        console.print(f"[red]Validation failed with {len(errors)} error(s).[/red]")
        raise typer.Exit(code=1)
    else:
        console.print("[green]All validation checks passed.[/green]")


@cli.command()
def plan(
    count: int = typer.Option(10, "--count", "-n", help="Number of requests"),
    interval_ms: float = typer.Option(0.0, "--interval-ms", help="Gap between arrivals"),
    max_batch: Optional[int] = typer.Option(None, "--max-batch", help="max_batch_size"),
    preferred: Optional[int] = typer.Option(None, "--preferred", help="preferred_batch_size"),
    delay_ms: Optional[float] = typer.Option(None, "--delay-ms", help="max_queue_delay_ms"),
    output_json: bool = typer.Option(False, "--json", help="Output plan as JSON"),
):
    """Replay an evenly spaced arrival pattern through the batch policy."""
    try:
        scheduler_config = _scheduler_config(max_batch, preferred, delay_ms)
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    policy = BatchPolicy.from_config(scheduler_config)
    arrivals = [i * interval_ms / 1000.0 for i in range(count)]
    sizes = plan_batches(policy, arrivals)

    if output_json:
        # Plain echo: rich would wrap long lines
        typer.echo(
            json.dumps(
                {
                    "requests": count,
                    "interval_ms": interval_ms,
                    "max_batch_size": policy.max_batch_size,
                    "preferred_batch_size": policy.preferred_batch_size,
                    "max_queue_delay_ms": scheduler_config.max_queue_delay_ms,
                    "batch_sizes": sizes,
                }
            )
        )
        return

    console.print(
        Panel(
            f"Requests: {count}\n"
            f"Interval: {interval_ms} ms\n"
            f"Policy: {policy}\n"
            f"Batches: {len(sizes)}",
            title="Batch Plan",
            border_style="yellow",
        )
    )

    table = Table(title="Planned Batches", box=box.ROUNDED, min_width=32)
    table.add_column("#", style="dim")
    table.add_column("Size", style="bold")
    for i, size in enumerate(sizes):
        table.add_row(str(i + 1), str(size))
    console.print(table)


@cli.command()
def simulate(
    requests: int = typer.Option(100, "--requests", "-n", help="Requests to submit"),
    producers: int = typer.Option(1, "--producers", "-p", help="Concurrent producer threads"),
    interval_ms: float = typer.Option(0.0, "--interval-ms", help="Gap between a producer's submits"),
    max_batch: Optional[int] = typer.Option(None, "--max-batch", help="max_batch_size"),
    preferred: Optional[int] = typer.Option(None, "--preferred", help="preferred_batch_size"),
    delay_ms: Optional[float] = typer.Option(None, "--delay-ms", help="max_queue_delay_ms"),
    backlog: Optional[int] = typer.Option(None, "--backlog", help="backlog_limit"),
    inflight: Optional[int] = typer.Option(None, "--inflight", help="max_inflight_batches"),
    latency_ms: Optional[float] = typer.Option(None, "--latency-ms", help="Backend latency per call"),
    failure_rate: Optional[float] = typer.Option(None, "--failure-rate", help="Backend crash probability"),
    seed: Optional[int] = typer.Option(None, "--seed", help="Failure injection seed"),
    export: Optional[str] = typer.Option(None, "--export", help="Write a metrics snapshot to this JSON file"),
    output_json: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Drive a workload through the scheduler and a simulated backend."""
    config = get_config()

    if requests < 1 or producers < 1:
        console.print("[red]Error:[/red] --requests and --producers must be at least 1")
        raise typer.Exit(code=1)

    try:
        scheduler_config = _scheduler_config(
            max_batch, preferred, delay_ms, backlog_limit=backlog, max_inflight_batches=inflight
        )
        backend = SimulatedBackend.with_failure_rate(
            failure_rate if failure_rate is not None else config.backend.failure_rate,
            seed=seed if seed is not None else config.backend.seed,
            latency_ms=latency_ms if latency_ms is not None else config.backend.latency_ms,
            per_item_ms=config.backend.per_item_ms,
        )
    except ValueError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)

    futures = []
    rejected = 0
    lock = threading.Lock()

    @with_correlation_id()
    def produce(index: int, count: int):
        nonlocal rejected
        for i in range(count):
            try:
                future = scheduler.submit({"producer": index, "seq": i})
            except QueueFullError:
                with lock:
                    rejected += 1
            else:
                with lock:
                    futures.append(future)
            if interval_ms > 0:
                time.sleep(interval_ms / 1000.0)

    shares = [requests // producers + (1 if i < requests % producers else 0) for i in range(producers)]

    start = time.perf_counter()
    try:
        with BatchingScheduler(backend, config=scheduler_config) as scheduler:
            threads = [
                threading.Thread(target=produce, args=(i, share), name=f"producer-{i}")
                for i, share in enumerate(shares)
            ]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
            wait(futures)
    except DynabatchError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    elapsed = time.perf_counter() - start

    completed = sum(1 for f in futures if f.exception() is None)
    failed = sum(1 for f in futures if isinstance(f.exception(), BackendError))
    stats = scheduler.get_stats()
    batch_sizes = [int(s) for s in scheduler.metrics.collector.get_histogram("batch.size")]

    if export:
        scheduler.metrics.collector.export_metrics(export)

    summary = {
        "requests": requests,
        "accepted": len(futures),
        "rejected": rejected,
        "completed": completed,
        "failed": failed,
        "batches": stats["total_batches"],
        "batch_sizes": batch_sizes,
        "batch_triggers": stats["batch_triggers"],
        "elapsed_seconds": round(elapsed, 4),
    }

    if output_json:
        typer.echo(json.dumps(summary))
        return

    table = Table(title="Simulation Results", box=box.ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")

    table.add_row("Requests", str(requests))
    table.add_row("Accepted", str(len(futures)))
    table.add_row("Rejected (backlog full)", str(rejected))
    table.add_row("Completed", str(completed))
    table.add_row("Failed (backend)", str(failed))
    table.add_row("Batches", str(stats["total_batches"]))
    for trigger, count in stats["batch_triggers"].items():
        table.add_row(f"  closed by {trigger}", str(count))
    table.add_row("Elapsed (s)", f"{elapsed:.3f}")

    latency = stats["metrics"]["summaries"].get("request.latency_ms")
    if latency:
        table.add_row("Latency p50 (ms)", f"{latency['median']:.2f}")
        table.add_row("Latency p99 (ms)", f"{latency['p99']:.2f}")

    console.print(table)
    console.print(f"\n[dim]Batch sizes: {batch_sizes}[/dim]")


@cli.command()
def info():
    """Show version and available backends."""
    console.print(
        Panel(
            f"dynabatch v{__version__}\nDynamic batching for model inference",
            title="Dynabatch",
            border_style="magenta",
        )
    )

    table = Table(title="Available Components", box=box.ROUNDED)
    table.add_column("Component", style="bold")
    table.add_column("Status")
    table.add_column("Details")

    table.add_row("Batching Scheduler", "[green]available[/green]", "Preferred size / max delay triggers")
    table.add_row("Simulated Backend", "[green]available[/green]", "Seeded latency and failure injection")

    try:
        import httpx

        table.add_row("HTTP Backend", "[green]available[/green]", f"httpx {httpx.__version__}")
    except ImportError:
        table.add_row("HTTP Backend", "[yellow]not installed[/yellow]", "pip install httpx")

    console.print(table)


def _scheduler_config(
    max_batch: Optional[int],
    preferred: Optional[int],
    delay_ms: Optional[float],
    **overrides,
) -> SchedulerConfig:
    """Apply command-line overrides to the configured scheduler settings."""
    base = get_config().scheduler
    changes = {
        "max_batch_size": max_batch,
        "preferred_batch_size": preferred,
        "max_queue_delay_ms": delay_ms,
        **overrides,
    }
    changes = {k: v for k, v in changes.items() if v is not None}

    # Shrinking max_batch_size alone should not trip the preferred <= max check
    if "max_batch_size" in changes and "preferred_batch_size" not in changes:
        changes["preferred_batch_size"] = min(base.preferred_batch_size, changes["max_batch_size"])

    return dataclasses.replace(base, **changes)


def _bool_badge(value: bool) -> str:
    """Return a colored badge for a boolean value."""
    if value:
        return "[green]enabled[/green]"
    return "[red]disabled[/red]"


if __name__ == "__main__":
    cli()
