"""
Command-line interface for Daygent.

Provides commands for:
- Inspecting workspace usage and alerts
- Setting monthly limits
- Generating usage reports
- Encrypting API keys for storage
"""

import argparse
import json
import sys
from contextlib import contextmanager
from typing import Iterator

from daygent.config import get_settings
from daygent.crypto import EncryptionError, encrypt_api_key, get_encryption_secret
from daygent.errors import ProxyError
from daygent.storage import SQLiteStorage
from daygent.usage_monitor import REPORT_GROUPS, UsageMonitor


@contextmanager
def _monitor(args) -> Iterator[UsageMonitor]:
    storage = SQLiteStorage(args.db or get_settings().db_path)
    try:
        yield UsageMonitor(storage)
    finally:
        storage.close()


def cmd_usage(args):
    """Show month-to-date usage for one or all workspaces."""
    with _monitor(args) as monitor:
        if args.workspace:
            usage = monitor.get_workspace_usage(args.workspace, args.month)
            if args.json:
                print(json.dumps(usage.to_dict(), indent=2))
                return
            print("\n" + "=" * 60)
            print(f"WORKSPACE USAGE: {args.workspace}")
            print("=" * 60)
            print(f"Month: {usage.month_year}")
            print(f"Total Cost: ${usage.total_cost:.4f}")
            if usage.limit_enabled:
                print(f"Limit: ${usage.limit:.2f} ({usage.percentage_used:.1f}% used)")
                if usage.is_over_limit:
                    print("\nMonthly usage limit exceeded.")
            else:
                print("Limit: disabled")
            print("=" * 60)
            return

        summary = monitor.get_all_workspaces_usage(args.month)
        if args.json:
            print(json.dumps({
                "workspaces": [
                    {"id": w["id"], "name": w["name"], "usage": w["usage"].to_dict()}
                    for w in summary["workspaces"]
                ],
                "totalUsage": summary["total_usage"],
            }, indent=2))
            return

        print("\n" + "=" * 60)
        print("ALL WORKSPACES")
        print("=" * 60)
        for w in summary["workspaces"]:
            usage = w["usage"]
            limit = f"${usage.limit:.2f}" if usage.limit_enabled else "no limit"
            print(f"  {w['name'] or w['id']:<30} ${usage.total_cost:>10.4f}  {limit}")
        print("-" * 60)
        print(f"  {'Total':<30} ${summary['total_usage']:>10.4f}")
        print("=" * 60)


def cmd_alerts(args):
    """Show the usage alert for a workspace."""
    with _monitor(args) as monitor:
        alert = monitor.check_usage_alerts(args.workspace)
    if args.json:
        print(json.dumps(alert.to_dict(), indent=2))
        return
    if alert.should_alert:
        print(f"[{alert.percentage:.0f}%] {alert.message}")
    else:
        print(f"No alert ({alert.percentage:.1f}% of limit used)")


def cmd_set_limit(args):
    """Set a workspace's monthly limit."""
    with _monitor(args) as monitor:
        workspace = monitor.update_workspace_limit(
            args.workspace, args.limit, enabled=not args.disable
        )
    state = "enabled" if workspace.usage_limit_enabled else "disabled"
    print(f"Workspace {workspace.id}: limit ${workspace.usage_limit_monthly:.2f} ({state})")


def cmd_report(args):
    """Generate a usage report for a workspace."""
    with _monitor(args) as monitor:
        report = monitor.get_usage_report(args.workspace, args.group_by, args.month)
    if args.json:
        print(json.dumps(report.to_dict(), indent=2))
        return

    print("\n" + "=" * 60)
    print(f"USAGE REPORT: {report.workspace_id} ({report.month_year}) by {report.group_by}")
    print("=" * 60)
    for key, cost in report.breakdown.items():
        print(f"  {key:<35} {report.requests[key]:>6} req  ${cost:.4f}")
    print("-" * 60)
    print(f"Total: ${report.total_cost:.4f} over {report.total_requests} requests")
    print(f"Average: ${report.average_cost_per_request:.6f} per request")
    print("=" * 60)


def cmd_encrypt_key(args):
    """Encrypt an API key for storage."""
    secret = get_encryption_secret(args.secret)
    print(encrypt_api_key(args.api_key, secret))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Daygent: LLM proxy usage CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Month-to-date usage for every workspace
  daygent usage

  # Usage for one workspace, as JSON
  daygent usage --workspace ws_123 --json

  # Cap a workspace at $25/month
  daygent set-limit ws_123 25

  # Cost by model for March 2025
  daygent report ws_123 --group-by model --month 2025-03

  # Encrypt an API key (reads API_KEY_ENCRYPTION_SECRET)
  daygent encrypt-key sk-...
""",
    )
    parser.add_argument("--db", help="Path to the SQLite database (default: DAYGENT_DB_PATH)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    usage_parser = subparsers.add_parser("usage", help="Show month-to-date usage")
    usage_parser.add_argument("--workspace", "-w", help="Workspace id (all workspaces if omitted)")
    usage_parser.add_argument("--month", "-m", help="Month as YYYY-MM (default: current)")
    usage_parser.add_argument("--json", action="store_true", help="Print JSON")

    alerts_parser = subparsers.add_parser("alerts", help="Show usage alert for a workspace")
    alerts_parser.add_argument("workspace", help="Workspace id")
    alerts_parser.add_argument("--json", action="store_true", help="Print JSON")

    limit_parser = subparsers.add_parser("set-limit", help="Set a workspace's monthly limit")
    limit_parser.add_argument("workspace", help="Workspace id")
    limit_parser.add_argument("limit", type=float, help="Monthly limit in USD")
    limit_parser.add_argument("--disable", action="store_true",
                              help="Store the limit but do not enforce it")

    report_parser = subparsers.add_parser("report", help="Usage report for a workspace")
    report_parser.add_argument("workspace", help="Workspace id")
    report_parser.add_argument("--group-by", "-g", default="endpoint", choices=REPORT_GROUPS)
    report_parser.add_argument("--month", "-m", help="Month as YYYY-MM (default: current)")
    report_parser.add_argument("--json", action="store_true", help="Print JSON")

    key_parser = subparsers.add_parser("encrypt-key", help="Encrypt an API key for storage")
    key_parser.add_argument("api_key", help="Plaintext API key")
    key_parser.add_argument("--secret", help="Encryption secret (default: API_KEY_ENCRYPTION_SECRET)")

    return parser


def main(argv=None):
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "usage": cmd_usage,
        "alerts": cmd_alerts,
        "set-limit": cmd_set_limit,
        "report": cmd_report,
        "encrypt-key": cmd_encrypt_key,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        sys.exit(1)

    try:
        handler(args)
    except (ProxyError, EncryptionError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
