"""Command-line interface for Resumable-Deployer."""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.table import Table

from .config import AppConfig, apply_env_overrides, load_config
from .errors import ConfigurationError, DeploymentError
from .orchestrator import RunReport, StepOutcome, parse_step_list
from .utils.logging import get_logger
from .workflow import DeploymentRequest, DeploymentWorkflow, WorkflowResult

console = Console()

EXIT_OK = 0
EXIT_RUN_FAILED = 1
EXIT_CONFIG_ERROR = 2

_OUTCOME_STYLE = {
    StepOutcome.APPLIED: "green",
    StepOutcome.REUSED: "cyan",
    StepOutcome.SKIPPED: "yellow",
    StepOutcome.FAILED: "bold red",
}


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="resumable-deployer",
        description="Run a resumable, ledger-backed provisioning pipeline.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )
    parser.add_argument(
        "--ledger",
        type=str,
        default=None,
        help="Ledger file (overrides deployment.ledger_path).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    deploy_parser = subparsers.add_parser("deploy", help="Run or resume the pipeline")
    deploy_parser.add_argument("--pipeline", "-p", help="Pipeline definition (JSON)")
    deploy_parser.add_argument("--network", help="Target network name")
    deploy_parser.add_argument("--operator", help="Operator identity used for the run")
    deploy_parser.add_argument(
        "--skip", default=None,
        help="Step indices to skip, e.g. '1,3,5-7'",
    )
    deploy_parser.add_argument(
        "--only", default=None,
        help="Only run these step indices (all others are skipped)",
    )
    deploy_parser.add_argument(
        "--resume", action="store_true",
        help="Require an existing ledger (fail instead of starting fresh)",
    )
    deploy_parser.add_argument(
        "--no-verify", action="store_true",
        help="Do not run post-deployment checks",
    )

    # status 子命令 - 查看账本
    subparsers.add_parser("status", help="Show the ledger entries and skip markers")

    clear_parser = subparsers.add_parser("clear", help="Forget a ledger entry so its step runs again")
    clear_parser.add_argument("resource_key")

    seed_parser = subparsers.add_parser("seed", help="Record an externally known result")
    seed_parser.add_argument("resource_key")
    seed_parser.add_argument("identifier")
    seed_parser.add_argument(
        "--meta", action="append", default=[], metavar="KEY=VALUE",
        help="Metadata to store with the entry (repeatable)",
    )

    mark_parser = subparsers.add_parser("mark-skip", help="Persist skip markers in the ledger")
    mark_parser.add_argument("steps", help="Step indices, e.g. '2,4-5'")
    mark_parser.add_argument("--remove", action="store_true", help="Remove the markers instead")

    # logs 子命令 - 查看运行日志
    logs_parser = subparsers.add_parser("logs", help="View deployment run logs")
    logs_parser.add_argument(
        "--list", "-l", action="store_true", dest="list_logs",
        help="List all available logs"
    )
    logs_parser.add_argument(
        "--latest", action="store_true",
        help="Show the latest run log"
    )
    logs_parser.add_argument(
        "--file", "-f", type=str,
        help="Show a specific log file"
    )

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        if args.config:
            raise ConfigurationError(f"Config file not found: {args.config}")
        config = apply_env_overrides(AppConfig())

    if args.ledger:
        config.deployment.ledger_path = args.ledger
    if getattr(args, "pipeline", None):
        config.deployment.pipeline_path = args.pipeline
    if getattr(args, "network", None):
        config.deployment.network = args.network
    if getattr(args, "operator", None):
        config.deployment.operator = args.operator
    return CLIContext(config=config)


def render_report(report: RunReport) -> None:
    table = Table(title="Run Report")
    table.add_column("#", justify="right")
    table.add_column("Step")
    table.add_column("Outcome")
    table.add_column("Identifier / Error", overflow="fold")

    for entry in report.steps:
        style = _OUTCOME_STYLE[entry.outcome]
        detail = entry.identifier or ""
        if entry.outcome is StepOutcome.FAILED:
            detail = f"{entry.error_kind}: {entry.error}"
        table.add_row(
            str(entry.index),
            entry.step_name,
            f"[{style}]{entry.outcome.name}[/{style}]",
            detail,
        )
    console.print(table)

    if report.succeeded:
        console.print("[green]✅ Deployment completed[/green]")
    else:
        console.print(f"[bold red]❌ Deployment failed:[/bold red] {report.error}")


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    request = DeploymentRequest(
        skip_steps=parse_step_list(args.skip),
        only_steps=parse_step_list(args.only) if args.only else None,
        resume=args.resume,
        verify=False if args.no_verify else None,
    )
    workflow = DeploymentWorkflow(config=context.config)
    result: WorkflowResult = workflow.run_deploy(request)
    render_report(result.report)

    if result.verification is not None:
        verification = result.verification
        console.print(
            f"🔍 Checks passed: {verification.passed}, failed: {verification.failed}"
        )
    if result.journal_path:
        console.print(f"📄 Log: {result.journal_path}")
    if result.succeeded:
        return EXIT_OK
    # 例如缺少 invoker endpoint：只有在真正需要执行步骤时才会发现
    if isinstance(result.report.error, ConfigurationError):
        return EXIT_CONFIG_ERROR
    return EXIT_RUN_FAILED


def handle_status_command(context: CLIContext) -> int:
    workflow = DeploymentWorkflow(config=context.config)
    if not workflow.store.exists():
        console.print(f"📁 No ledger at {workflow.store.path}. Run a deployment first.")
        return EXIT_OK
    ledger = workflow.load_ledger()

    table = Table(title=f"Ledger: {workflow.store.path}")
    table.add_column("Resource")
    table.add_column("Identifier", overflow="fold")
    table.add_column("Applied")
    table.add_column("Metadata", overflow="fold")
    for key in sorted(ledger.keys()):
        result = ledger.get(key)
        meta = ", ".join(f"{k}={v}" for k, v in sorted(result.metadata.items()))
        table.add_row(key, result.identifier or "-", "✅" if result.applied else "❌", meta)
    console.print(table)
    console.print(f"🌐 Network:    {ledger.network or 'N/A'}")
    console.print(f"⏭️  Skip marks: {sorted(ledger.skipped) or 'none'}")
    return EXIT_OK


def handle_logs_command(args: argparse.Namespace, context: CLIContext) -> int:
    """Handle the logs subcommand."""
    log_dir = Path(context.config.deployment.log_dir)

    if not log_dir.exists():
        print("📁 No run logs found. Run a deployment first.")
        return EXIT_OK

    log_files = sorted(log_dir.glob("deploy_*.json"), key=lambda p: p.stat().st_mtime, reverse=True)
    if not log_files:
        print("📁 No deployment logs found.")
        return EXIT_OK

    if args.list_logs:
        print(f"📁 Run logs in: {log_dir}\n")
        print(f"{'#':<4} {'Status':<12} {'Network':<20} {'Time':<20} {'File'}")
        print("-" * 90)
        for i, log_file in enumerate(log_files, 1):
            try:
                with open(log_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError):
                print(f"{i:<4} ❓ {'error':<10} {'?':<20} {'?':<20} {log_file.name}")
                continue
            status = data.get("status", "unknown")
            network = data.get("network") or "-"
            start_time = (data.get("start_time") or "")[:19].replace("T", " ")
            status_emoji = {"success": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")
            print(f"{i:<4} {status_emoji} {status:<10} {network:<20} {start_time:<20} {log_file.name}")
        return EXIT_OK

    if args.file:
        target_file = Path(args.file)
        if not target_file.exists():
            target_file = log_dir / args.file
        if not target_file.exists():
            print(f"❌ Log file not found: {args.file}")
            return EXIT_RUN_FAILED
    elif args.latest:
        target_file = log_files[0]
    else:
        # 未指定时显示最近一次运行的摘要
        print(f"📁 {len(log_files)} run log(s) in {log_dir}; showing the latest.")
        print("   Use --list to see all, --file NAME to pick one.")
        target_file = log_files[0]

    show_log_file(target_file)
    return EXIT_OK


def show_log_file(log_file: Path) -> None:
    """Display a run log file."""
    with open(log_file, "r", encoding="utf-8") as f:
        data = json.load(f)

    status = data.get("status", "unknown")
    status_emoji = {"success": "✅", "failed": "❌", "running": "🔄"}.get(status, "❓")

    print(f"\n{'='*60}")
    print(f"📄 Run Log: {log_file.name}")
    print(f"{'='*60}")
    print(f"🌐 Network:   {data.get('network') or 'N/A'}")
    print(f"👤 Operator:  {data.get('operator') or 'N/A'}")
    print(f"⏰ Started:   {data.get('start_time', 'N/A')}")
    print(f"⏱️  Ended:     {data.get('end_time', 'N/A')}")
    print(f"{status_emoji} Status:    {status}")
    print(f"{'='*60}\n")

    icons = {"applied": "✅", "reused": "♻️", "skipped": "⏭️", "failed": "❌"}
    for step in data.get("steps", []):
        outcome = step.get("outcome", "?")
        print(f"[{step.get('index', '?')}] {icons.get(outcome, '•')} {outcome.upper()} {step.get('step_name', '')}")
        if step.get("identifier"):
            print(f"    🔑 {step['identifier']}")
        if step.get("error"):
            print(f"    ⚠️ {step.get('error_kind')}: {step['error']}")

    verification = data.get("verification")
    if verification:
        print(f"\n🔍 Checks passed: {verification.get('passed')}, failed: {verification.get('failed')}")
    if data.get("error"):
        print(f"\n❌ {data['error']}")
    print(f"\n{'='*60}\n")


def _parse_meta(pairs: list[str]) -> dict:
    meta = {}
    for pair in pairs:
        if "=" not in pair:
            raise ConfigurationError(f"Metadata must be KEY=VALUE, got '{pair}'")
        key, value = pair.split("=", 1)
        meta[key.strip()] = value.strip()
    return meta


def dispatch_command(args: argparse.Namespace) -> int:
    context = _build_context(args)

    if args.command == "deploy":
        return handle_deploy_command(args, context)

    if args.command == "status":
        return handle_status_command(context)

    if args.command == "logs":
        return handle_logs_command(args, context)

    workflow = DeploymentWorkflow(config=context.config)

    if args.command == "clear":
        if workflow.clear_entry(args.resource_key):
            console.print(f"🧹 Cleared '{args.resource_key}'; its step will run again.")
        else:
            console.print(f"ℹ️  '{args.resource_key}' is not in the ledger.")
        return EXIT_OK

    if args.command == "seed":
        changed = workflow.seed_entry(args.resource_key, args.identifier, _parse_meta(args.meta))
        console.print(
            f"🌱 Seeded '{args.resource_key}' = {args.identifier}" if changed
            else f"ℹ️  '{args.resource_key}' already holds {args.identifier}"
        )
        return EXIT_OK

    if args.command == "mark-skip":
        marks = workflow.set_skip_markers(parse_step_list(args.steps), enabled=not args.remove)
        console.print(f"⏭️  Skip markers: {marks or 'none'}")
        return EXIT_OK

    raise ValueError(f"Unsupported command: {args.command}")


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    get_logger(__name__, verbose=args.verbose)
    try:
        return dispatch_command(args)
    except ConfigurationError as exc:
        console.print(f"[bold red]Configuration error:[/bold red] {exc}")
        return EXIT_CONFIG_ERROR
    except DeploymentError as exc:
        console.print(f"[bold red]{exc.kind}:[/bold red] {exc}")
        return EXIT_RUN_FAILED
