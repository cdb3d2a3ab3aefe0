from __future__ import annotations

import argparse
import logging
import shlex
import signal
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import AppConfig, load_config
from .gantt import build_rich_gantt
from .importance import GROUP_NAMES, resource_group_for
from .logging_config import configure_logging
from .metrics import compute_system_metrics, summarize_records
from .models import InvalidInputError, StrategyKind, Task, parse_strategy_kind
from .monitor import ProcessMonitor, parse_priority_request
from .simulator import Simulator
from .system import CgroupEnforcer, DryRunEnforcer, PsutilProbe
from .workload_io import load_workload

logger = logging.getLogger(__name__)

HELP_TEXT = """\
Available commands:
  create <name> <burst_time> <nice_value> [scheduler_type] [class] [policy]
    Creates a new task with specified parameters
    scheduler_type: linux (default) or android
    class: For Linux - fg (foreground), bg (background), daemon, empty
           For Android - fg (foreground), vis (visible), svc (service),
                         bg (background), cache (cached)
    policy: fifo, rr (round robin), ts (time sharing), idle, deadline

  run_linux          Runs the Linux simulation until all tasks complete
  run_android        Runs the Android simulation until all tasks complete
  step [n]           Advances the current simulation by n milliseconds (default: 10)
  ts                 Lists all tasks (similar to ps command)
  use <linux|android>
                     Switches to the specified scheduler type
  status             Shows current state of all queues and running tasks
  stats              Shows performance statistics
  help               Displays this help message
  exit, quit         Exits the simulator"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="os-scheduler",
        description="Linux vs Android scheduling simulator and live process importance monitor.",
    )
    parser.add_argument("--config", "-c", default=None, help="Path to a JSON configuration file.")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING).")
    parser.add_argument(
        "--records",
        default=None,
        help="Append one JSON line per completed task to this file.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Replay a workload file on one scheduler.")
    run_parser.add_argument("--workload", "-w", required=True, help="Path to JSON or CSV workload file.")
    run_parser.add_argument(
        "--scheduler",
        "-s",
        default="linux",
        help="Scheduler to use (linux, android). Default: linux.",
    )
    run_parser.add_argument(
        "--step",
        action="store_true",
        help="Replay the schedule as a time-stepped trace in the terminal.",
    )
    run_parser.add_argument(
        "--step-delay",
        type=float,
        default=0.05,
        help="Seconds to wait between trace lines when --step is used (default: 0.05).",
    )

    compare_parser = subparsers.add_parser(
        "compare",
        help="Run both schedulers on the same workload and compare average metrics.",
    )
    compare_parser.add_argument("--workload", "-w", required=True, help="Path to JSON or CSV workload file.")

    subparsers.add_parser("shell", help="Interactive command loop (create, step, status, ...).")

    monitor_parser = subparsers.add_parser(
        "monitor",
        help="Monitor live processes and reclassify them by importance.",
    )
    monitor_parser.add_argument(
        "--launch",
        nargs=argparse.REMAINDER,
        default=None,
        metavar="GROUP CMD",
        help="Launch CMD in GROUP (foreground or background) instead of attaching to existing processes.",
    )
    monitor_parser.add_argument("--once", action="store_true", help="Run a single monitoring cycle and exit.")
    monitor_parser.add_argument(
        "--apply",
        action="store_true",
        help="Really write cgroup and OOM settings (default is a dry run).",
    )
    monitor_parser.add_argument(
        "--request",
        action="append",
        default=[],
        metavar="PID=VALUE",
        help="Request a priority override in [-20, 20] for a tracked PID (repeatable).",
    )
    monitor_parser.add_argument(
        "--request-file",
        default=None,
        help="File polled every cycle for 'PID VALUE' priority requests.",
    )

    return parser


def _task_table(tasks: List[Task], title: str) -> Table:
    table = Table(title=title, box=box.SIMPLE_HEAVY)
    for header in ["ID", "Name", "Class", "Policy", "Nice", "Prio", "Burst", "Remain", "Arrive", "State"]:
        justify = "left" if header in {"Name", "Class", "Policy", "State"} else "right"
        table.add_column(header, justify=justify)

    for t in tasks:
        if t.is_completed:
            state = "Completed"
        elif t.is_running:
            state = "[green]Running[/green]"
        else:
            state = "Waiting"
        table.add_row(
            str(t.task_id),
            t.name,
            t.task_class.label,
            t.policy.value,
            str(t.nice),
            str(t.priority),
            str(t.burst_time),
            str(t.remaining_time),
            str(t.arrival_time),
            state,
        )
    return table


def _print_status(sim: Simulator, console: Console) -> None:
    snap = sim.snapshot()
    console.print(f"[bold]{snap.name} scheduler[/bold] at t={snap.now}ms")
    if snap.running is not None:
        r = snap.running
        console.print(
            f"Running: [green]{r.name}[/green] (id {r.task_id}, remaining {r.remaining_time}ms, "
            f"slice {r.time_in_slice}/{r.time_slice}ms)"
        )
    else:
        console.print("Running: [dim]idle[/dim]")
    for queue_name, tasks in snap.queues.items():
        names = ", ".join(f"{t.name}({t.priority})" for t in tasks) or "-"
        console.print(f"  [yellow]{queue_name:<10}[/yellow] {names}")


def _print_stats(sim: Simulator, console: Console, kind: Optional[StrategyKind] = None) -> None:
    records = sim.stats(kind)
    table = Table(title="Per-task metrics", box=box.SIMPLE_HEAVY)
    headers = ["ID", "Name", "Class", "Arrive", "Start", "Complete", "Wait", "Response", "Turnaround", "Preempt"]
    for h in headers:
        table.add_column(h, justify="left" if h in {"Name", "Class"} else "right")
    for r in records:
        table.add_row(
            str(r.task_id),
            r.name,
            r.task_class,
            str(r.arrival_time),
            str(r.start_time),
            str(r.completion_time),
            str(r.wait_time),
            str(r.response_time),
            str(r.turnaround_time),
            str(r.preemption_count),
        )
    console.print(table)

    if not records:
        return
    summary = summarize_records(records)
    system = compute_system_metrics(records, sim.strategy(kind).timeline)
    sys_table = Table(title="System metrics", box=box.SIMPLE_HEAVY)
    sys_table.add_column("Metric")
    sys_table.add_column("Value", justify="right")
    sys_table.add_row("Avg waiting", f"{summary['avg_waiting']:.2f}")
    sys_table.add_row("Avg turnaround", f"{summary['avg_turnaround']:.2f}")
    sys_table.add_row("Avg response", f"{summary['avg_response']:.2f}")
    sys_table.add_row("Preemptions", str(summary["preemptions"]))
    sys_table.add_row("Throughput (tasks/s)", f"{system.throughput * 1000:.3f}")
    sys_table.add_row("CPU utilization", f"{system.cpu_utilization*100:.1f}%")
    sys_table.add_row("Starvation count", str(system.starvation_count))
    console.print(sys_table)


def _print_result(sim: Simulator, kind: StrategyKind, console: Console) -> None:
    console.print(f"[bold]Scheduler:[/bold] {sim.strategy(kind).name}")
    console.print()
    panel, time_marks = build_rich_gantt(sim.strategy(kind).timeline, unit=sim.config.tick_ms)
    console.print(panel)
    if time_marks:
        console.print(time_marks)
    console.print()
    _print_stats(sim, console, kind)


def _animate(sim: Simulator, kind: StrategyKind, delay: float, console: Console) -> None:
    timeline = sim.strategy(kind).timeline
    if not timeline:
        console.print("[red]No execution to animate.[/red]")
        return
    console.print("[dim]Press Ctrl+C to skip the trace.[/dim]")
    for sl in timeline:
        console.print(f"t={sl.start_time:>6}..{sl.end_time:<6} [green]{sl.name}[/green]")
        time.sleep(delay)


def _create_from_args(sim: Simulator, args: List[str]) -> int:
    if len(args) < 3:
        raise InvalidInputError("usage: create <name> <burst_time> <nice_value> [scheduler_type] [class] [policy]")
    name = args[0]
    try:
        burst = int(args[1])
        nice = int(args[2])
    except ValueError:
        raise InvalidInputError("burst_time and nice_value must be integers") from None
    kind = parse_strategy_kind(args[3]) if len(args) > 3 else StrategyKind.LINUX
    task_class = args[4] if len(args) > 4 else "fg"
    policy = args[5] if len(args) > 5 else "ts"
    return sim.create_task(name, burst, nice=nice, policy=policy, task_class=task_class, strategy_kind=kind)


def execute_command(sim: Simulator, line: str, console: Console) -> bool:
    """
    Run one shell command. Returns False when the shell should exit.
    """
    try:
        parts = shlex.split(line)
    except ValueError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        return True
    if not parts:
        return True
    command, args = parts[0].lower(), parts[1:]

    try:
        if command in {"exit", "quit"}:
            console.print("Exiting simulator.")
            return False
        if command == "help":
            console.print(HELP_TEXT, markup=False, highlight=False)
        elif command == "create":
            task_id = _create_from_args(sim, args)
            task = sim.task(task_id)
            console.print(
                f"Created task [bold]{task.name}[/bold] (id {task_id}, priority {task.priority}, "
                f"class {task.task_class.label})"
            )
        elif command in {"run_linux", "run_android"}:
            kind = StrategyKind.LINUX if command == "run_linux" else StrategyKind.ANDROID
            sim.select_strategy(kind)
            sim.run_to_completion(kind)
            _print_result(sim, kind, console)
        elif command == "step":
            try:
                amount = int(args[0]) if args else 10
            except ValueError:
                raise InvalidInputError(f"step expects an integer number of ms (got '{args[0]}')") from None
            now = sim.advance(None, amount)
            console.print(f"Advanced {sim.strategy().name} to t={now}ms")
        elif command == "ts":
            console.print(_task_table(sim.tasks(), f"{sim.strategy().name} tasks"))
        elif command == "use":
            if not args:
                raise InvalidInputError("usage: use <linux|android>")
            kind = sim.select_strategy(args[0])
            console.print(f"Switched to {sim.strategy(kind).name} scheduler")
        elif command == "status":
            _print_status(sim, console)
        elif command == "stats":
            _print_stats(sim, console)
        else:
            console.print(f"[red]Unknown command '{command}'. Type 'help' for available commands.[/red]")
    except InvalidInputError as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
    return True


def run_shell(sim: Simulator, console: Console, read_line: Callable[[str], str] = input) -> None:
    console.print("[bold cyan]OS Scheduler Simulator[/bold cyan] - comparing Linux and Android scheduling")
    console.print("Type 'help' for available commands")
    while True:
        try:
            line = read_line("scheduler> ")
        except EOFError:
            return
        if not execute_command(sim, line, console):
            return


def _run_monitor(args: argparse.Namespace, config: AppConfig, console: Console) -> int:
    mon_cfg = config.monitor
    if args.request_file:
        mon_cfg.request_path = args.request_file
    requests = [parse_priority_request(text) for text in args.request]
    probe = PsutilProbe(low_memory_percent=mon_cfg.low_memory_percent)
    apply = args.apply or not mon_cfg.dry_run
    sink = CgroupEnforcer(mon_cfg.cgroup_root) if apply else DryRunEnforcer()
    monitor = ProcessMonitor(probe, sink, mon_cfg, config.scoring)

    sink.setup_groups(resource_group_for(cls, mon_cfg.cgroup_root) for cls in GROUP_NAMES)

    if args.launch:
        group, argv = args.launch[0], args.launch[1:]
        if monitor.launch(argv, group) is None:
            console.print(f"[red]Could not launch {' '.join(argv)}[/red]")
            return 1
    else:
        monitor.attach_existing()
    for pid, value in requests:
        monitor.request_priority(pid, value)

    cancel = threading.Event()

    def _shutdown(signum, frame) -> None:
        logger.info("Shutdown signal received, cleaning up...")
        cancel.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)
    if hasattr(signal, "SIGUSR1"):
        signal.signal(signal.SIGUSR1, lambda signum, frame: monitor.dump())

    if args.once:
        try:
            monitor.run_cycle()
            monitor.dump()
        finally:
            monitor.cleanup()
        return 0

    console.print("Process monitor running - press Ctrl+C to exit")
    monitor.run(cancel)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    console = Console()
    configure_logging(args.log_level)

    try:
        config = load_config(args.config)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Invalid configuration: {escape(str(exc))}[/red]")
        return 2
    if args.records:
        config.simulator.records_path = args.records

    try:
        if args.command == "run":
            kind = parse_strategy_kind(args.scheduler)
            entries = load_workload(Path(args.workload))
            sim = Simulator(config.simulator)
            sim.run_workload(entries, kind)
            if args.step:
                try:
                    _animate(sim, kind, args.step_delay, console)
                except KeyboardInterrupt:
                    console.print("[yellow]Trace skipped.[/yellow]")
            _print_result(sim, kind, console)
            return 0

        if args.command == "compare":
            entries = load_workload(Path(args.workload))
            summary_table = Table(title="Scheduler comparison", box=box.SIMPLE_HEAVY)
            summary_table.add_column("Scheduler")
            summary_table.add_column("Avg waiting", justify="right")
            summary_table.add_column("Avg turnaround", justify="right")
            summary_table.add_column("Avg response", justify="right")
            summary_table.add_column("Preemptions", justify="right")

            for kind in StrategyKind:
                sim = Simulator(config.simulator)
                summary = summarize_records(sim.run_workload(entries, kind))
                summary_table.add_row(
                    sim.strategy(kind).name,
                    f"{summary['avg_waiting']:.2f}",
                    f"{summary['avg_turnaround']:.2f}",
                    f"{summary['avg_response']:.2f}",
                    str(summary["preemptions"]),
                )
            console.print(summary_table)
            return 0

        if args.command == "shell":
            run_shell(Simulator(config.simulator), console)
            return 0

        if args.command == "monitor":
            return _run_monitor(args, config, console)
    except (InvalidInputError, OSError) as exc:
        console.print(f"[red]Error: {escape(str(exc))}[/red]")
        return 2

    parser.error(f"Unknown command: {args.command}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
