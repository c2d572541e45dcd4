# main.py
"""
CLI entrypoint for the Zero Trust scanner.

- Supports two modes:
  * dummy: read the resource inventory from a JSON file (offline testing)
  * azure: run against a live Azure subscription with a service principal
- Produces HTML, JSON, and CSV reports and prints a colorful summary table.
"""

import argparse
import logging
import os
import sys

from config import DEFAULT_REPORT_DIR, ConfigurationError, load_scan_config
from models import ScanContext
from scanner.inventory import JsonInventoryProvider
from scanner.orchestrator import run_azure_scan, run_scan
from utils import load_json_file, print_summary_and_report_path

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("zt_scanner")


def run_dummy(file_path: str, environment: str, report_dir: str = DEFAULT_REPORT_DIR, workers: int = 1):
    """
    Run the scanner in dummy mode using a local JSON inventory.
    No Azure access is required in this mode.
    """
    logger.info("Running in dummy mode using file: %s", file_path)
    data = load_json_file(file_path)
    inventory = JsonInventoryProvider(data)
    context = ScanContext(
        subscription_id=inventory.subscription_id or "dummy-subscription",
        environment=environment,
        inventory=inventory,
        config=load_scan_config(),
    )
    outcome = run_scan(
        context,
        subscription_name=data.get("subscriptionName"),
        max_workers=workers,
        report_dir=report_dir,
    )
    print_summary_and_report_path(outcome)
    return outcome


def run_azure(subscription_id: str, client_id: str, client_secret: str, environment: str,
              tenant_id: str = None, report_dir: str = DEFAULT_REPORT_DIR, workers: int = 1):
    """
    Run the scanner against a live Azure subscription.

    Credential model:
    - Service principal (client id / secret) in the tenant given by --tenant-id or AZURE_TENANT_ID.
    """
    logger.info("Running in live Azure mode (subscription=%s, env=%s)", subscription_id, environment)
    outcome = run_azure_scan(
        subscription_id,
        client_id,
        client_secret,
        environment,
        tenant_id=tenant_id,
        report_dir=report_dir,
        max_workers=workers,
    )
    print_summary_and_report_path(outcome)
    return outcome


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Zero Trust assessment scanner for Azure subscriptions."
    )
    p.add_argument(
        "--mode",
        choices=["dummy", "azure"],
        required=True,
        help="Run mode: dummy (JSON) or azure (live)",
    )
    p.add_argument(
        "--file",
        help="Path to dummy JSON inventory (required for dummy mode)",
    )
    p.add_argument(
        "--env",
        default=os.environ.get("ENV"),
        help="Environment tag selecting expected DNS IPs and peer VNets (default: $ENV)",
    )
    p.add_argument(
        "--subscription-id",
        default=os.environ.get("AZURE_SUBSCRIPTION_ID"),
        help="Subscription to scan (default: $AZURE_SUBSCRIPTION_ID)",
    )
    p.add_argument(
        "--client-id",
        default=os.environ.get("AZURE_CLIENT_ID"),
        help="Service principal client id (default: $AZURE_CLIENT_ID)",
    )
    p.add_argument(
        "--client-secret",
        default=os.environ.get("AZURE_CLIENT_SECRET"),
        help="Service principal secret (default: $AZURE_CLIENT_SECRET)",
    )
    p.add_argument(
        "--tenant-id",
        default=os.environ.get("AZURE_TENANT_ID"),
        help="Azure AD tenant id (default: $AZURE_TENANT_ID)",
    )
    p.add_argument(
        "--report-dir",
        default=DEFAULT_REPORT_DIR,
        help="Directory to save reports (default: reports)",
    )
    p.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Controls to run concurrently (default: 1, sequential)",
    )
    return p.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    try:
        if args.mode == "dummy":
            if not args.file:
                raise SystemExit("dummy mode requires --file path to JSON")
            if not args.env:
                raise ConfigurationError("Missing required scan input: environment")
            return run_dummy(args.file, args.env, report_dir=args.report_dir, workers=args.workers)
        return run_azure(
            args.subscription_id,
            args.client_id,
            args.client_secret,
            args.env,
            tenant_id=args.tenant_id,
            report_dir=args.report_dir,
            workers=args.workers,
        )
    except ConfigurationError as e:
        raise SystemExit(f"Configuration error: {e}") from e


def cli(argv=None) -> int:
    """Console-script entry point: run the scan and report success as exit status 0."""
    main(argv)
    return 0


if __name__ == "__main__":
    sys.exit(cli())
