# scanner/orchestrator.py
"""
Control orchestration and result aggregation.

- run_controls executes controls in their configured order and turns a raising control
  into an ERROR result, so the remaining controls still run.
- summarize derives pass/fail totals from the ordered results.
- run_scan / run_azure_scan are the "run scan" entry points: precondition checks, timing,
  aggregation and report rendering.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Union

from azure.core.exceptions import AzureError
from azure.identity import ClientSecretCredential
from azure.mgmt.resource import SubscriptionClient

from config import DEFAULT_REPORT_DIR, ConfigurationError, ScanConfig, load_scan_config
from models import ControlResult, ScanContext, ScanOutcome, ScanSummary
from scanner.azure_data import (
    check_cmk_encryption,
    check_disk_security,
    check_sql_auditing,
    check_storage_account_security,
)
from scanner.azure_network import check_public_ips, check_subnets_nsg, check_vnet_dns, check_vnet_peering
from scanner.azure_paas import check_diagnostics, check_paas_private_access
from scanner.inventory import AzureInventoryProvider
from utils import save_report

logger = logging.getLogger(__name__)

Control = Callable[[ScanContext], ControlResult]

# Report layout follows this order
DEFAULT_CONTROLS: Sequence[Control] = (
    check_public_ips,
    check_paas_private_access,
    check_diagnostics,
    check_storage_account_security,
    check_disk_security,
    check_vnet_dns,
    check_sql_auditing,
    check_vnet_peering,
    check_subnets_nsg,
    check_cmk_encryption,
)


def control_name(control: Control) -> str:
    return getattr(control, "__name__", None) or repr(control)


def _run_control(control: Control, context: ScanContext) -> ControlResult:
    name = control_name(control)
    logger.info("Running control %s", name)
    try:
        result = control(context)
    except Exception as e:
        logger.warning("Control %s failed: %s", name, e)
        return ControlResult.errored(name, str(e))
    logger.info("Control %s finished: %s (%d violation(s))", name, result.status, len(result.violating_resources))
    return result


def run_controls(context: ScanContext, controls: Optional[Sequence[Control]] = None,
                 max_workers: int = 1) -> List[ControlResult]:
    """
    Run every control and return their results in control order.

    With max_workers > 1 controls run concurrently; each result is written into the slot of
    its control so completion order never changes the output order.
    """
    controls = list(DEFAULT_CONTROLS if controls is None else controls)
    if max_workers <= 1 or len(controls) <= 1:
        return [_run_control(c, context) for c in controls]

    slots: List[Optional[ControlResult]] = [None] * len(controls)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(_run_control, c, context): idx for idx, c in enumerate(controls)}
        for future, idx in futures.items():
            slots[idx] = future.result()
    return [r for r in slots if r is not None]


def summarize(results: Union[Sequence[ControlResult], ControlResult]) -> ScanSummary:
    """
    total = number of results (a single result counts as one), passed = PASS results,
    failed = everything else (FAIL and ERROR).
    """
    if isinstance(results, ControlResult):
        results = [results]
    total = len(results)
    passed = sum(1 for r in results if r.passed)
    return ScanSummary(total=total, passed=passed, failed=total - passed)


def validate_scan_request(subscription_id: Optional[str], client_id: Optional[str],
                          client_secret: Optional[str], environment: Optional[str],
                          tenant_id: Optional[str]) -> None:
    """Fail fast, before any control runs, when mandatory scan input is missing."""
    fields = {
        "subscriptionId": subscription_id,
        "clientId": client_id,
        "clientSecret": client_secret,
        "environment": environment,
        "tenantId": tenant_id,
    }
    missing = [k for k, v in fields.items() if not v or not str(v).strip()]
    if missing:
        raise ConfigurationError(f"Missing required scan input: {', '.join(missing)}")


def fetch_subscription_name(credential, subscription_id: str) -> str:
    """Display name of the subscription, or its id when it cannot be read."""
    try:
        sub = SubscriptionClient(credential).subscriptions.get(subscription_id)
        return sub.display_name or subscription_id
    except AzureError as e:
        logger.warning("Could not fetch subscription name, using subscription id: %s", e)
        return subscription_id


def run_scan(context: ScanContext, subscription_name: Optional[str] = None,
             controls: Optional[Sequence[Control]] = None, max_workers: int = 1,
             report_dir: Optional[str] = DEFAULT_REPORT_DIR) -> ScanOutcome:
    """
    Run all controls against context, summarize, and render reports into report_dir
    (pass report_dir=None to skip rendering).
    """
    if not context.environment or not str(context.environment).strip():
        raise ConfigurationError("Missing required scan input: environment")
    subscription_name = subscription_name or context.subscription_id

    started = time.monotonic()
    results = run_controls(context, controls, max_workers=max_workers)
    duration = time.monotonic() - started
    summary = summarize(results)
    logger.info("Scan of %s finished in %.2fs: %d passed, %d failed",
                subscription_name, duration, summary.passed, summary.failed)

    report_paths = {}
    if report_dir:
        report_paths = save_report(
            results,
            summary,
            subscription_name=subscription_name,
            subscription_id=context.subscription_id,
            environment=context.environment,
            duration_seconds=duration,
            out_dir=report_dir,
        )

    return ScanOutcome(
        results=results,
        summary=summary,
        subscription_id=context.subscription_id,
        subscription_name=subscription_name,
        environment=context.environment,
        duration_seconds=duration,
        report_paths=report_paths,
    )


def run_azure_scan(subscription_id: str, client_id: str, client_secret: str, environment: str,
                   tenant_id: Optional[str] = None, config: Optional[ScanConfig] = None,
                   report_dir: Optional[str] = DEFAULT_REPORT_DIR, max_workers: int = 1) -> ScanOutcome:
    """
    Live scan of one subscription with a service principal.
    tenant_id falls back to AZURE_TENANT_ID; config falls back to load_scan_config().
    """
    tenant_id = tenant_id or os.environ.get("AZURE_TENANT_ID")
    validate_scan_request(subscription_id, client_id, client_secret, environment, tenant_id)

    credential = ClientSecretCredential(tenant_id, client_id, client_secret)
    context = ScanContext(
        subscription_id=subscription_id,
        environment=environment,
        inventory=AzureInventoryProvider(credential, subscription_id),
        config=config or load_scan_config(),
        credential=credential,
    )
    return run_scan(
        context,
        subscription_name=fetch_subscription_name(credential, subscription_id),
        max_workers=max_workers,
        report_dir=report_dir,
    )
