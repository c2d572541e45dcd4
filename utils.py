# utils.py
"""
Utility helpers: JSON loading, resource id parsing, report generation, and console output.

- Uses Rich for colorful, wrapped tables in the terminal.
- Saves HTML, JSON, and CSV reports named after the subscription and scan time.
"""

import csv
import html
import json
import os
import re
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Any, Dict, List, Optional, Sequence

from rich.console import Console
from rich.table import Table
from rich.text import Text

from models import STATUS_ERROR, STATUS_PASS, ControlResult, ScanOutcome, ScanSummary

_console = Console()

_RG_PATTERN = re.compile(r"resourceGroups/([^/]*)/", re.IGNORECASE)


def load_json_file(path: str) -> dict:
    """
    Load JSON from a file and return a Python dict.
    """
    if not os.path.exists(path):
        raise FileNotFoundError(f"Input JSON file not found: {path}.")
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            return json.load(fh)
    except JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e.msg} (line {e.lineno} column {e.colno})") from e


def extract_resource_group(resource_id: Optional[str]) -> Optional[str]:
    """
    Return the resource group segment of an ARM resource id, or None if absent.
    """
    if not resource_id:
        return None
    match = _RG_PATTERN.search(resource_id)
    return match.group(1) if match else None


def ensure_reports_dir(path: str = "reports") -> str:
    os.makedirs(path, exist_ok=True)
    return path


def sanitize_name(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name or "")


def report_basename(subscription_name: str, when: Optional[datetime] = None) -> str:
    """
    "<sanitized subscription name>-<timestamp>" with ':' and '.' removed from the timestamp.
    """
    when = when or datetime.now(timezone.utc)
    stamp = re.sub(r"[:.]", "-", when.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z")
    return f"{sanitize_name(subscription_name)}-{stamp}"


def table_columns(rows: Sequence[Dict[str, Any]]) -> List[str]:
    """Union of row keys in first-seen order, so heterogeneous rows share one header."""
    columns: List[str] = []
    for row in rows:
        for key in row:
            if key not in columns:
                columns.append(key)
    return columns


def _row_failed(row: Dict[str, Any]) -> bool:
    marker = str(row.get("remark", row.get("reason", ""))).lower()
    return "not comply" in marker or "error" in marker or "fail" in marker


def render_resource_table(rows: Sequence[Dict[str, Any]], violating: bool = False) -> str:
    if not rows:
        return "<p>No resources found.</p>"
    columns = table_columns(rows)
    out = [f"<table class='{'violating-table' if violating else 'scanned-table'}'><thead><tr>"]
    out.extend(f"<th>{html.escape(c)}</th>" for c in columns)
    out.append("</tr></thead><tbody>")
    for row in rows:
        css = "fail" if violating or _row_failed(row) else "pass"
        cells = "".join(f"<td>{html.escape(_cell(row.get(c, '')))}</td>" for c in columns)
        out.append(f"<tr class='{css}'>{cells}</tr>")
    out.append("</tbody></table>")
    return "".join(out)


def _cell(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value)
    return str(value)


_STYLE = (
    "body{font-family:'Segoe UI',Arial,sans-serif;margin:2em;background:#f8fafc;color:#222}"
    "h1{color:#2d6ca2;text-align:center}h2{color:#1a4d80}h3{margin-top:2em}"
    ".pass{color:#1b883a;font-weight:bold}.fail,.error,.control-error{color:#c0392b;font-weight:bold}"
    "table{border-collapse:collapse;width:100%;margin:1em 0;background:#fff}"
    "th,td{border:1px solid #d0d7de;padding:8px 12px;text-align:left}th{background:#eaf1fb}"
    "tr.pass{background:#eafbe7}tr.fail{background:#fdeaea}"
    ".violating-table td{color:#c0392b}details{margin-bottom:1em}summary{cursor:pointer;font-weight:bold}"
    ".summary-section{background:#f4f8fb;border-radius:8px;padding:1em 2em;margin:0 auto 2em auto;max-width:600px}"
    ".chart-container{width:350px;margin:0 auto 2em auto}"
)


def render_html_report(results: Sequence[ControlResult], summary: ScanSummary, report_name: str,
                       subscription_name: str, subscription_id: str, environment: str,
                       duration_seconds: float, generated_at: datetime) -> str:
    esc = html.escape
    rows: List[str] = []
    rows.append("<!doctype html>")
    rows.append(f"<html><head><meta charset='utf-8'><title>ZT Assessment Report - {esc(report_name)}</title>")
    rows.append("<script src='https://cdn.jsdelivr.net/npm/chart.js'></script>")
    rows.append(f"<style>{_STYLE}</style>")
    rows.append("</head><body>")
    rows.append("<h1 class='report-title'>ZT Assessment Report</h1>")
    rows.append("<div class='summary-section'>")
    rows.append(f"<p><strong>Report Name:</strong> {esc(report_name)}.html</p>")
    rows.append(f"<p><strong>Subscription:</strong> {esc(subscription_name)}</p>")
    rows.append(f"<p><strong>Subscription ID:</strong> {esc(subscription_id)}</p>")
    rows.append(f"<p><strong>Environment:</strong> {esc(environment)}</p>")
    rows.append(f"<p><strong>Timestamp:</strong> {generated_at.isoformat()}</p>")
    rows.append(f"<p><strong>Scan Duration:</strong> {duration_seconds:.2f} seconds</p>")
    rows.append(f"<p><strong>Controls Scanned:</strong> <span id='controls-total'>{summary.total}</span></p>")
    rows.append(
        f"<p><strong>Passed:</strong> <span class='pass' id='controls-passed'>{summary.passed}</span> "
        f"<strong>Failed:</strong> <span class='fail' id='controls-failed'>{summary.failed}</span></p>"
    )
    rows.append("<div class='chart-container'><canvas id='summaryChart'></canvas></div>")
    rows.append("</div>")
    rows.append("<h2>Assessment Summary</h2>")
    for result in results:
        data = result.to_dict()
        status_css = result.status.lower()
        rows.append("<section class='control'>")
        rows.append(f"<h3>{esc(result.policy)}</h3>")
        rows.append(f"<p><strong>Status:</strong> <span class='{status_css}'>{esc(result.status)}</span></p>")
        rows.append(f"<p><strong>Reason:</strong> {esc(result.reason)}</p>")
        if result.status == STATUS_ERROR and result.error:
            rows.append(f"<p class='control-error'><strong>Error:</strong> {esc(result.error)}</p>")
        rows.append("<details><summary>Scanned Resources</summary>")
        rows.append(render_resource_table(data["scannedResources"]))
        rows.append("</details>")
        rows.append("<details><summary>Violating Resources</summary>")
        rows.append(render_resource_table(data["violatingResources"], violating=True))
        rows.append("</details>")
        rows.append("</section>")
    rows.append(
        "<script>new Chart(document.getElementById('summaryChart').getContext('2d'),"
        "{type:'pie',data:{labels:['Passed','Failed'],datasets:[{data:["
        f"{summary.passed},{summary.failed}"
        "],backgroundColor:['#1b883a','#c0392b'],borderWidth:1}]},"
        "options:{responsive:true,plugins:{legend:{position:'bottom'}}}});</script>"
    )
    rows.append("</body></html>")
    return "\n".join(rows)


def save_report(results: Sequence[ControlResult], summary: ScanSummary, subscription_name: str,
                subscription_id: str, environment: str = "", duration_seconds: float = 0.0,
                out_dir: str = "reports", when: Optional[datetime] = None) -> Dict[str, str]:
    """
    Save HTML, JSON, and CSV reports and return their paths.
    """
    out_dir = ensure_reports_dir(out_dir)
    when = when or datetime.now(timezone.utc)
    base = report_basename(subscription_name, when)
    html_path = os.path.join(out_dir, f"{base}.html")
    json_path = os.path.join(out_dir, f"{base}.json")
    csv_path = os.path.join(out_dir, f"{base}.csv")

    # HTML
    with open(html_path, "w", encoding="utf-8") as fh:
        fh.write(render_html_report(results, summary, base, subscription_name, subscription_id,
                                    environment, duration_seconds, when))

    # JSON
    report = {
        "scan_time": when.replace(microsecond=0).isoformat(),
        "subscription": {"id": subscription_id, "name": subscription_name},
        "environment": environment,
        "duration_seconds": round(duration_seconds, 2),
        "summary": summary.to_dict(),
        "results": [r.to_dict() for r in results],
    }
    with open(json_path, "w", encoding="utf-8") as fh:
        json.dump(report, fh, indent=2)

    # CSV: one row per violation
    fieldnames = ["policy", "status", "resourceType", "name", "resourceGroup", "reason"]
    with open(csv_path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=fieldnames)
        writer.writeheader()
        for r in results:
            for v in r.violating_resources:
                writer.writerow({
                    "policy": r.policy,
                    "status": r.status,
                    "resourceType": v.resource_type,
                    "name": v.name,
                    "resourceGroup": v.resource_group or "",
                    "reason": v.reason,
                })

    return {"html": html_path, "json": json_path, "csv": csv_path}


# --- Console printing with color/wrapping ---

def _rich_status_text(status: str) -> Text:
    """
    Return a Rich Text object styled by control status.
    """
    if status == STATUS_PASS:
        return Text(status, style="green")
    if status == STATUS_ERROR:
        return Text(status, style="bold yellow")
    return Text(status, style="bold red")


def print_summary_and_report_path(outcome: ScanOutcome, console: Optional[Console] = None):
    """
    Print scan totals, a colorful per-control table and the saved report paths.
    """
    console = console or _console
    summary = outcome.summary
    console.print("\nScan summary:")
    console.print(f"- Subscription: {outcome.subscription_name} ({outcome.subscription_id})")
    console.print(f"- Controls: {summary.total}  Passed: {summary.passed}  Failed: {summary.failed}")
    console.print(f"- Duration: {outcome.duration_seconds:.2f}s")
    if outcome.results:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Control", style="cyan", overflow="fold")
        table.add_column("Status", justify="center")
        table.add_column("Violations", justify="right")
        table.add_column("Reason", overflow="fold")
        for r in outcome.results:
            table.add_row(r.policy, _rich_status_text(r.status), str(len(r.violating_resources)), r.reason)
        console.print(table)
    if outcome.report_paths:
        console.print("\nSaved reports:")
        console.print(f"- HTML: {outcome.report_paths.get('html')}")
        console.print(f"- JSON: {outcome.report_paths.get('json')}")
        console.print(f"- CSV:  {outcome.report_paths.get('csv')}\n")
