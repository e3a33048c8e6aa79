"""
Downzer - Main Entry Point

Called as `downzer <args>` or `python3 -m downzer <args>`.

Entry modes:
1. Foreground run (default): become the daemon and run the task, or
   submit to an already running daemon and follow the task to its end
2. Background run (--add): hand the task to a running daemon, spawning a
   detached one first if needed
3. Control commands: list, status, pause, resume, stop, shutdown
4. Daemon (internal): serve the control socket until idle
"""

import argparse
import asyncio
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .core.config import Config, Delay, ModeConfig, DEFAULT_MAX_CONCURRENT, DEFAULT_TIMEOUT
from .core.engine import Engine
from .core.exceptions import ConfigurationError, DownzerError
from .core.generator import (
    CombinationSpace,
    CombinationSpec,
    build_wordlists,
    parse_exclusions,
    parse_range,
)
from .core.logging import logger, setup_console, setup_logging, verbosity_to_level
from .core.models import Task, TaskStatus
from .core.task_manager import TaskManager
from .control import ControlClient, ControlServer, wait_for_daemon
from .db import MongoDB, init_store
from .modes import available_modes, parse_mode_kind, resolve_mode


SUBCOMMANDS = ("list", "status", "pause", "resume", "stop", "shutdown", "daemon")

# How often a foreground invocation polls a task it submitted to another daemon
FOLLOW_POLL_INTERVAL = 0.5

DAEMON_START_TIMEOUT = 10.0


# =============================================================================
# Terminal Output
# =============================================================================

class Colors:
    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    CYAN = "\033[0;36m"
    NC = "\033[0m"


def print_info(msg: str):
    print(f"{Colors.GREEN}[INFO]{Colors.NC} {msg}")


def print_warn(msg: str):
    print(f"{Colors.YELLOW}[WARN]{Colors.NC} {msg}")


def print_error(msg: str):
    print(f"{Colors.RED}[ERROR]{Colors.NC} {msg}")


def print_step(msg: str):
    print(f"{Colors.CYAN}[STEP]{Colors.NC} {msg}")


STATUS_COLORS = {
    "queued": Colors.BLUE,
    "running": Colors.GREEN,
    "paused": Colors.YELLOW,
    "completed": Colors.CYAN,
    "failed": Colors.RED,
    "stopped": Colors.RED,
}


def print_task_table(tasks: List[dict]):
    """Snapshot rows: id, status, progress, mode, template."""
    if not tasks:
        print_info("No tasks")
        return

    print(f"{'ID':>5}  {'STATUS':<10} {'PROGRESS':>17}  {'MODE':<11} TEMPLATE")
    for t in tasks:
        status = t.get("status", "")
        color = STATUS_COLORS.get(status, "")
        label = status.capitalize().ljust(10)
        progress = f"{t.get('progress', 0)}/{t.get('total', 0)}"
        print(
            f"{t.get('task_id', ''):>5}  {color}{label}{Colors.NC} {progress:>17}  "
            f"{t.get('mode', ''):<11} {t.get('template', '')}"
        )


def print_summary(task: Task):
    """Final report of a task."""
    print("")
    label = task.status.label
    if task.status == TaskStatus.FAILED:
        print_error(f"Task {task.task_id} {label}: {task.error_msg or 'unknown error'}")
    elif task.status == TaskStatus.STOPPED:
        print_warn(f"Task {task.task_id} {label} at {task.progress}/{task.total}")
    else:
        print_info(f"Task {task.task_id} {label}")

    result = task.result
    if result is None:
        return
    print_info(
        f"Total: {result.total} | Successful: {result.successful} | "
        f"Failed: {result.failed} | Skipped: {result.skipped}"
    )
    print_info(f"Elapsed: {result.elapsed:.2f}s | Throughput: {result.throughput:.2f}/s")
    if result.detail:
        print_info(result.detail)


def exit_code_for(task: Optional[Task]) -> int:
    if task is None or task.status == TaskStatus.FAILED:
        return 1
    return 0


# =============================================================================
# Argument Parsing
# =============================================================================

def parse_run_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse arguments of a task run"""
    parser = argparse.ArgumentParser(
        prog="downzer",
        description="Downzer - multi-mode network fuzzer and downloader",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "placeholders: FUZZR (range), FUZZW1..FUZZWn (wordlists)\n"
            f"control: downzer {{{','.join(SUBCOMMANDS)}}} ...\n"
            "example: downzer 'https://x/FUZZW1/FUZZR.pdf' -r 1-100 -w dirs.txt -c pdf"
        ),
    )
    parser.add_argument("url", help="Target template")

    # Combinations
    parser.add_argument("-r", "--range", type=str, help="Numeric range for FUZZR (start-end)")
    parser.add_argument(
        "-w", "--wordlist", nargs="+", action="extend", default=[],
        help="Wordlists for FUZZW1..n: files or comma lists, '+' joins adjacent lists",
    )
    parser.add_argument("-e", "--exclude", type=str, help="Words to exclude (comma/space separated)")
    parser.add_argument("--parallel", action="store_true", help="Advance all lists in lockstep")
    parser.add_argument("--random", action="store_true", help="Shuffle the combination order")

    # Mode
    parser.add_argument(
        "-m", "--mode", type=str, default="download",
        help=f"Execution mode ({', '.join(available_modes())}; aliases web, port, mail)",
    )
    parser.add_argument("--method", type=str, default="GET", help="HTTP method (webrequest)")
    body = parser.add_mutually_exclusive_group()
    body.add_argument("--data", type=str, help="Request body (webrequest)")
    body.add_argument("--data-file", type=str, help="Read the request body from a file (webrequest)")
    parser.add_argument("--download-body", action="store_true", help="Save response bodies (webrequest)")
    parser.add_argument("-c", "--content-types", type=str, help="Accepted content types, comma separated (download)")
    parser.add_argument("--user-agent", type=str, help="User-Agent header")

    # Scheduling
    parser.add_argument("-d", "--delay", type=str, help="Delay: <ms> after each request, or <sec>x<N> after every N")
    parser.add_argument("--max-concurrent", type=int, default=DEFAULT_MAX_CONCURRENT, help="Max in-flight operations")
    parser.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Per-request timeout in seconds")
    parser.add_argument("--proxy", type=str, help="Proxy URL")

    # Output
    parser.add_argument("-o", "--outdir", type=str, default=".", help="Output directory")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity (-v, -vv, -vvv)")
    parser.add_argument("-q", "--quiet", action="store_true", help="Only warnings and errors")
    parser.add_argument("--log", action="store_true", help="Write log files")
    parser.add_argument("--log-dir", type=str, help="Log directory (implies --log)")

    # Background
    parser.add_argument("--add", action="store_true", help="Run in the background daemon")
    parser.add_argument("--queue", action="store_true", help="With --add: wait for the run slot instead of running concurrently")

    return parser.parse_args(argv)


def parse_control_args(argv: Sequence[str]) -> argparse.Namespace:
    """Parse a control subcommand"""
    parser = argparse.ArgumentParser(prog="downzer", description="Downzer task control")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("list", help="List tasks")
    p.add_argument("--active", action="store_true", help="Hide finished tasks")

    p = sub.add_parser("status", help="Show one task")
    p.add_argument("id", type=int)

    for name, help_text in (("pause", "Pause tasks"), ("resume", "Resume paused tasks"), ("stop", "Stop tasks")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("ids", nargs="+", help="Task ids (space or comma separated)")

    sub.add_parser("shutdown", help="Interrupt all tasks and stop the daemon")

    p = sub.add_parser("daemon", help=argparse.SUPPRESS)
    p.add_argument("--log-dir", type=str)
    p.add_argument("-v", "--verbose", action="count", default=0)

    return parser.parse_args(argv)


def parse_task_ids(values: Sequence[str]) -> List[int]:
    """
    Raises:
        ConfigurationError: a value is not an integer id
    """
    ids = []
    for value in values:
        for part in value.replace(",", " ").split():
            try:
                ids.append(int(part))
            except ValueError:
                raise ConfigurationError(f"Invalid task id: {part}")
    return ids


def build_task_inputs(args: argparse.Namespace) -> Tuple[str, ModeConfig, CombinationSpec]:
    """
    Translate run flags into a validated (template, ModeConfig, CombinationSpec).

    Nothing touches the network here.

    Raises:
        ConfigurationError: invalid flags or template/combination mismatch
        ModeError: unknown or unimplemented mode
    """
    template = args.url

    kind = parse_mode_kind(args.mode)
    resolve_mode(kind.value)

    content_types = ()
    if args.content_types:
        content_types = tuple(ct.strip() for ct in args.content_types.split(",") if ct.strip())

    mode_config = ModeConfig(
        mode=kind.value,
        method=args.method.upper(),
        data=args.data,
        data_file=args.data_file,
        download_body=args.download_body,
        content_types=content_types,
        user_agent=args.user_agent,
        proxy=args.proxy,
        timeout=args.timeout,
        max_concurrent=args.max_concurrent,
        delay=Delay.parse(args.delay),
        verbose=args.verbose,
        quiet=args.quiet,
        outdir=str(Path(args.outdir).resolve()),
    )
    errors = mode_config.validate()
    if errors:
        raise ConfigurationError("; ".join(errors))

    spec = CombinationSpec(
        range=parse_range(args.range) if args.range else None,
        wordlists=tuple(tuple(w) for w in build_wordlists(args.wordlist)),
        exclude=parse_exclusions(args.exclude),
        parallel=args.parallel,
        shuffle=args.random,
    )
    # Placeholder check
    CombinationSpace.from_spec(spec, template)

    return template, mode_config, spec


# =============================================================================
# Daemon
# =============================================================================

async def run_daemon(
    config: Config,
    submission: Tuple[str, ModeConfig, CombinationSpec] = None,
) -> Optional[Task]:
    """
    Run a daemon until it is idle for config.daemon_linger seconds or shut down.

    Args:
        config: Daemon configuration
        submission: Task to submit as soon as the daemon is up

    Returns:
        Final record of the submitted task, if any

    Raises:
        DaemonAlreadyRunningError: another daemon owns the socket
    """
    store = init_store(url=config.mongodb_url, db_name=config.mongodb_db)
    engine = Engine(config, store)
    manager = TaskManager(store, engine)
    manager.startup()

    server = ControlServer(manager, config.socket_path)
    await server.start()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, server.request_shutdown)

    task = None
    try:
        if submission is not None:
            template, mode_config, spec = submission
            task = manager.submit(template, mode_config, spec, concurrent=False)
        await server.serve(exit_when_idle=True, linger=config.daemon_linger)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)

    if task is not None:
        return store.find_by_id(task.task_id)
    return None


def spawn_daemon(config: Config) -> subprocess.Popen:
    """Start a detached background daemon sharing this invocation's config."""
    cmd = [sys.executable, "-m", "downzer", "daemon"]
    if config.log_dir:
        cmd += ["--log-dir", config.log_dir]

    env = dict(os.environ)
    env["DOWNZER_SOCKET"] = config.socket_path
    env["MONGODB_URL"] = config.mongodb_url
    env["DOWNZER_DB"] = config.mongodb_db

    logger.debug(f"[CLI] Spawning daemon: {' '.join(cmd)}")
    return subprocess.Popen(
        cmd,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        env=env,
    )


def follow_task(client: ControlClient, task_id: int, quiet: bool = False) -> Task:
    """Poll a task on another daemon until it reaches a terminal state."""
    last_progress = -1
    try:
        while True:
            task = Task.from_dict(client.status(task_id))
            if task.status.is_terminal:
                return task
            if not quiet and task.progress != last_progress:
                print_info(f"Task {task_id} {task.status.label}: {task.progress}/{task.total}")
                last_progress = task.progress
            time.sleep(FOLLOW_POLL_INTERVAL)
    except KeyboardInterrupt:
        print_warn(f"Interrupted, stopping task {task_id}")
        client.stop([task_id])
        return Task.from_dict(client.status(task_id))


# =============================================================================
# Entry modes
# =============================================================================

def submit_background(
    client: ControlClient,
    config: Config,
    template: str,
    mode_config: ModeConfig,
    spec: CombinationSpec,
    queue: bool = False,
) -> int:
    """Hand a task to the running daemon, spawning a detached one if none answers."""
    if not client.ping():
        print_step("Starting background daemon...")
        spawn_daemon(config)
        client.close()
        client = wait_for_daemon(config.socket_path, timeout=DAEMON_START_TIMEOUT)

    try:
        reply = client.submit(template, mode_config.to_dict(), spec.to_dict(), concurrent=not queue)
    finally:
        client.close()
    print_info(f"Task {reply['task_id']} {reply['status']}")
    return 0


def run_task(args: argparse.Namespace) -> int:
    """Foreground or background task run"""
    config = Config.load()
    if args.log_dir:
        config.log_dir = args.log_dir
    elif args.log and not config.log_dir:
        config.log_dir = str(Path.cwd() / "logs")

    level = verbosity_to_level(args.verbose, args.quiet)
    setup_console(level)

    try:
        template, mode_config, spec = build_task_inputs(args)
    except DownzerError as e:
        print_error(str(e))
        return 1

    client = ControlClient(config.socket_path)
    try:
        if args.add:
            return submit_background(client, config, template, mode_config, spec, queue=args.queue)

        if client.ping():
            reply = client.submit(template, mode_config.to_dict(), spec.to_dict(), concurrent=False)
            print_info(f"Submitted to running daemon as task {reply['task_id']} ({reply['status']})")
            task = follow_task(client, reply["task_id"], quiet=args.quiet)
            print_summary(task)
            return exit_code_for(task)
    except DownzerError as e:
        print_error(str(e))
        return 1
    finally:
        client.close()

    if config.log_dir:
        log_dir = setup_logging(
            Path(config.log_dir),
            console_level=level,
            metadata={
                "Template": template,
                "Mode": mode_config.mode,
                "Max Concurrent": mode_config.max_concurrent,
                "Timeout": f"{mode_config.timeout}s",
                "Output": mode_config.outdir,
            },
        )
        print_info(f"Logs: {log_dir}")

    try:
        task = asyncio.run(run_daemon(config, (template, mode_config, spec)))
    except DownzerError as e:
        print_error(str(e))
        return 1
    except Exception as e:
        print_error(f"Failed to start: {e}")
        return 1
    finally:
        MongoDB.close()

    if task is not None:
        print_summary(task)
    return exit_code_for(task)


def run_control(args: argparse.Namespace) -> int:
    """Control subcommands against a running daemon"""
    config = Config.load()

    if args.command == "daemon":
        if args.log_dir:
            config.log_dir = args.log_dir
        level = "DEBUG" if args.verbose else "INFO"
        if config.log_dir:
            setup_logging(Path(config.log_dir), console_level=level)
        else:
            setup_console(level)
        try:
            asyncio.run(run_daemon(config))
        except DownzerError as e:
            logger.error(f"[Daemon] {e}")
            return 1
        except Exception as e:
            logger.exception(f"[Daemon] Failed to start: {e}")
            return 1
        finally:
            MongoDB.close()
        return 0

    setup_console("WARNING")
    try:
        with ControlClient(config.socket_path) as client:
            if args.command == "list":
                print_task_table(client.list_tasks(include_finished=not args.active))
                return 0

            if args.command == "status":
                task = Task.from_dict(client.status(args.id))
                print_task_table([{
                    "task_id": task.task_id,
                    "status": task.status.value,
                    "progress": task.progress,
                    "total": task.total,
                    "mode": task.mode,
                    "template": task.template,
                }])
                if task.result:
                    print_summary(task)
                return 0

            if args.command == "shutdown":
                if client.shutdown():
                    print_info("Daemon shutting down")
                    return 0
                print_error("Daemon did not accept shutdown")
                return 1

            ids = parse_task_ids(args.ids)
            action = getattr(client, args.command)
            response = action(ids)
            if response.ok:
                print_info(f"{args.command.capitalize()}: {', '.join(str(i) for i in ids)}")
                return 0
            print_error(response.error)
            return 1

    except DownzerError as e:
        print_error(str(e))
        return 1


# =============================================================================
# Main Entry Point
# =============================================================================

def main(argv: Sequence[str] = None) -> int:
    """Main entry point - routes to a task run or a control command"""
    argv = list(sys.argv[1:] if argv is None else argv)

    if argv and argv[0] in SUBCOMMANDS:
        return run_control(parse_control_args(argv))
    return run_task(parse_run_args(argv))


if __name__ == "__main__":
    sys.exit(main())
