# irsaguard/utils.py
"""
Utility helpers: JSON loading, report generation, and console output.

- Formats a Report as plain text, a JSON document, or a Rich table.
- Optionally saves JSON, CSV, and HTML report files.
- Maps a Report to the process exit code.
"""

import csv
import html
import json
import os
from datetime import datetime, timezone
from json import JSONDecodeError
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table
from rich.text import Text

from irsaguard.exceptions import PreconditionError
from irsaguard.models import Report, TestResult

EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_PRECONDITION = 2

RESULT_FIELDS = ["scenario_id", "kind", "expected", "actual", "passed", "detail"]


def load_json_file(path: str) -> dict:
    """
    Load JSON from a file and return a Python dict.
    """
    if not os.path.exists(path):
        raise PreconditionError(f"Input JSON file not found: {path}.")
    try:
        with open(path, "r", encoding="utf-8-sig") as fh:
            data = json.load(fh)
    except JSONDecodeError as e:
        raise PreconditionError(f"Invalid JSON in {path}: {e.msg} (line {e.lineno} column {e.colno})") from e
    if not isinstance(data, dict):
        raise PreconditionError(f"Expected a JSON object in {path}")
    return data


def ensure_reports_dir(path: str = "reports") -> str:
    os.makedirs(path, exist_ok=True)
    return path


def exit_code_for(report: Report) -> int:
    return EXIT_OK if report.ok else EXIT_FAILURES


def result_to_dict(result: TestResult) -> Dict[str, Any]:
    return {
        "scenario_id": result.scenario_id,
        "kind": result.kind.value,
        "expected": result.expected.value if result.expected else None,
        "actual": result.actual.value if result.actual else None,
        "passed": result.passed,
        "detail": result.detail,
    }


def report_to_dict(report: Report) -> Dict[str, Any]:
    return {
        "seed": report.seed,
        "iterations": report.iterations,
        "min_iterations": report.min_iterations,
        "cancelled": report.cancelled,
        "state": report.state.value,
        "summary": {
            "total": report.total,
            "passed": report.passed,
            "failed": report.failed,
            "pass_rate": report.pass_rate,
            "scenarios": report.scenario_count,
        },
        "results": [result_to_dict(r) for r in report.results],
    }


def report_to_json(report: Report) -> str:
    return json.dumps(report_to_dict(report), indent=2)


def results_to_table_rows(results: List[TestResult]) -> List[List[str]]:
    rows: List[List[str]] = []
    for r in results:
        rows.append([
            r.scenario_id,
            r.kind.value,
            r.expected.value if r.expected else "-",
            r.actual.value if r.actual else "-",
            "PASS" if r.passed else "FAIL",
            r.detail,
        ])
    return rows


def format_text_report(report: Report) -> str:
    """Plain-text summary: counts, pass rate and every failure with its reason."""
    lines = [
        "Property test summary",
        f"  Seed:       {report.seed}",
        f"  Iterations: {report.iterations} (minimum {report.min_iterations})",
        f"  Passed:     {report.passed}",
        f"  Failed:     {report.failed}",
        f"  Total:      {report.total}",
        f"  Pass rate:  {report.pass_rate:.1f}%",
        f"  State:      {report.state.value}",
    ]
    if report.failures:
        lines.append("")
        lines.append("Failures:")
        for r in report.failures:
            lines.append(f"  FAIL {r.scenario_id} [{r.kind.value}]: {r.detail}")
    lines.append("")
    lines.append("All property tests passed." if report.ok else "Some property tests failed.")
    return "\n".join(lines)


def save_report(report: Report, mode: str, extra: Optional[dict] = None, out_dir: str = "reports") -> Dict[str, str]:
    """
    Save JSON, CSV, and HTML reports and return their paths.
    """
    out_dir = ensure_reports_dir(out_dir)
    now = datetime.now(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")
    document = {"run_time": now, "mode": mode}
    document.update(report_to_dict(report))
    if extra:
        document["extra"] = extra

    base_ts = now.replace(":", "-")
    json_path = os.path.join(out_dir, f"irsaguard-{base_ts}-{mode}.json")
    csv_path = os.path.join(out_dir, f"irsaguard-{base_ts}-{mode}.csv")
    html_path = os.path.join(out_dir, f"irsaguard-{base_ts}-{mode}.html")

    # JSON
    with open(json_path, "w", encoding="utf-8") as fh:
        json.dump(document, fh, indent=2)

    # CSV
    with open(csv_path, "w", encoding="utf-8", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=RESULT_FIELDS)
        writer.writeheader()
        for row in document["results"]:
            writer.writerow({k: row.get(k, "") for k in RESULT_FIELDS})

    # HTML
    summary = document["summary"]
    html_rows: List[str] = []
    html_rows.append("<!doctype html>")
    html_rows.append("<html><head><meta charset='utf-8'><title>IRSA Property Report</title>")
    html_rows.append("<style>body{font-family:Arial,Helvetica,sans-serif;margin:20px}table{border-collapse:collapse;width:100%}th,td{border:1px solid #ddd;padding:8px}th{background:#f2f2f2;text-align:left}tr.fail{background:#fdecea}pre{white-space:pre-wrap;word-wrap:break-word}</style>")
    html_rows.append("</head><body>")
    html_rows.append(f"<h2>IRSA Property Report - {now} - mode: {html.escape(mode)}</h2>")
    html_rows.append(f"<p>Passed: {summary['passed']} Failed: {summary['failed']} "
                     f"Total: {summary['total']} Pass rate: {summary['pass_rate']}%</p>")
    if extra:
        html_rows.append("<div><strong>Metadata:</strong><ul>")
        for k, v in extra.items():
            html_rows.append(f"<li>{html.escape(str(k))}: {html.escape(str(v))}</li>")
        html_rows.append("</ul></div>")
    html_rows.append("<table><thead><tr><th>Scenario</th><th>Kind</th><th>Expected</th><th>Actual</th><th>Result</th><th>Detail</th></tr></thead><tbody>")
    for r in results_to_table_rows(list(report.results)):
        css = " class='fail'" if r[4] == "FAIL" else ""
        cells = "".join(f"<td>{html.escape(c)}</td>" for c in r[:5])
        html_rows.append(f"<tr{css}>{cells}<td><pre>{html.escape(r[5])}</pre></td></tr>")
    html_rows.append("</tbody></table></body></html>")
    with open(html_path, "w", encoding="utf-8") as fh:
        fh.write("\n".join(html_rows))

    return {"json": json_path, "csv": csv_path, "html": html_path}

# --- Console printing with color/wrapping ---

def _rich_result_text(status: str) -> Text:
    """
    Return a Rich Text object styled by result.
    """
    if status == "FAIL":
        return Text(status, style="bold red")
    return Text(status, style="green")


def print_summary(report: Report, report_paths: Optional[Dict[str, str]] = None,
                  print_full_table: bool = False, console: Optional[Console] = None) -> None:
    """
    Print a compact summary and a colorful table of results.

    Failing results are always listed; passing ones only with print_full_table.
    """
    console = console or Console()
    console.print("\n[bold]Property test summary:[/bold]")
    console.print(f"- Passed: [green]{report.passed}[/green]")
    console.print(f"- Failed: [red]{report.failed}[/red]")
    console.print(f"- Total:  {report.total}")
    console.print(f"- Pass rate: {report.pass_rate:.1f}%")

    shown = list(report.results) if print_full_table else list(report.failures)
    if shown:
        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("Scenario", style="cyan", overflow="fold")
        table.add_column("Kind", style="magenta")
        table.add_column("Expected")
        table.add_column("Actual")
        table.add_column("Result", justify="right")
        table.add_column("Detail", overflow="fold")
        for r in results_to_table_rows(shown):
            table.add_row(Text(r[0]), r[1], r[2], r[3], _rich_result_text(r[4]), Text(r[5]))
        console.print(table)

    if report.ok:
        console.print("\n[green]All property tests passed.[/green]")
    else:
        console.print("\n[red]Some property tests failed.[/red]")

    if report_paths:
        console.print("\nSaved reports:")
        console.print(f"- JSON: {report_paths.get('json')}")
        console.print(f"- CSV:  {report_paths.get('csv')}")
        console.print(f"- HTML: {report_paths.get('html')}\n")
