"""CLI command: policyscan scan <source> — scan a directory or GitHub repository."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from policyscan.errors import PolicyScanError
from policyscan.rules.loader import FileRuleSource
from policyscan.scanner.engine import ScanOptions, ScanOrchestrator
from policyscan.scanner.models import ScanResult, Severity, Violation

console = Console(stderr=True)

_SEVERITY_COLORS = {
    Severity.INFO: "blue",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}

_SEVERITY_ORDER = {
    Severity.ERROR: 0,
    Severity.WARNING: 1,
    Severity.INFO: 2,
}


@click.command()
@click.argument("source")
@click.option("--branch", "-b", default=None, help="Branch to scan (GitHub only).")
@click.option(
    "--auth",
    default=None,
    help="GitHub token for private repositories (overrides GITHUB_TOKEN).",
)
@click.option("--max-files", type=int, default=None, help="Maximum files to fetch.")
@click.option("--max-dirs", type=int, default=None, help="Maximum directories to list.")
@click.option(
    "--max-file-size",
    type=int,
    default=None,
    help="Skip files larger than this many bytes.",
)
@click.option(
    "--exclude",
    "-e",
    multiple=True,
    help="Path substrings to exclude (added to the defaults).",
)
@click.option("--platform", default=None, help="Only apply rules for this platform.")
@click.option(
    "--severity",
    type=click.Choice(["error", "warning", "info"]),
    default=None,
    help="Minimum severity to report.",
)
@click.option(
    "--rules",
    "rule_paths",
    multiple=True,
    type=click.Path(exists=True),
    help="Extra rule YAML file or directory.",
)
@click.option(
    "--no-sdk-analysis",
    is_flag=True,
    help="Skip library/endpoint signature detection.",
)
@click.option(
    "--min-api-version",
    type=float,
    default=None,
    help="Graph API versions below this are reported as deprecated.",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["console", "json"]),
    default="console",
    help="Output format.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default=None,
    help="Write the JSON report to this file.",
)
@click.pass_context
def scan(
    ctx: click.Context,
    source: str,
    branch: str | None,
    auth: str | None,
    max_files: int | None,
    max_dirs: int | None,
    max_file_size: int | None,
    exclude: tuple[str, ...],
    platform: str | None,
    severity: str | None,
    rule_paths: tuple[str, ...],
    no_sdk_analysis: bool,
    min_api_version: float | None,
    output_format: str,
    output: str | None,
) -> None:
    """Scan source code for platform policy violations."""
    config = ctx.obj["config"]
    if auth:
        config.github_token = auth
    quiet = output_format == "json" and output is None

    def progress(message: str) -> None:
        if not quiet:
            console.print(f"[dim]{message}[/dim]")

    options = ScanOptions(
        branch=branch,
        max_files=max_files,
        max_dirs=max_dirs,
        max_file_size=max_file_size,
        exclude_patterns=exclude,
        platform=platform,
        min_severity=Severity(severity) if severity else None,
        include_sdk_analysis=not no_sdk_analysis,
        min_api_version=min_api_version,
    )

    try:
        rules = FileRuleSource([*config.rule_dirs, *rule_paths]).load_rules()
        orchestrator = ScanOrchestrator(rules=rules, progress=progress, config=config)
        if not quiet:
            console.print(f"[bold]policyscan[/bold] scanning [cyan]{source}[/cyan]\n")
        result = orchestrator.scan(source, options)
    except PolicyScanError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)

    if output_format == "json" or output:
        report = json.dumps(result_to_dict(result), indent=2)
        if output:
            Path(output).write_text(report + "\n", encoding="utf-8")
            console.print(f"Report written to [cyan]{output}[/cyan]")
        else:
            click.echo(report)

    if output_format == "console":
        _print_violations(result)
        _print_summary(result)

    if result.summary.errors > 0:
        if output_format == "console":
            console.print(f"\n[red]{result.summary.errors} error-level violation(s)[/red]")
        sys.exit(1)


def result_to_dict(result: ScanResult) -> dict:
    """JSON-ready view of a scan result."""
    data = {
        "source": {
            "kind": result.source.kind,
            "path": result.source.path,
            "url": result.source.url,
            "owner": result.source.owner,
            "repo": result.source.repo,
            "branch": result.source.branch,
        },
        "violations": [_violation_to_dict(v) for v in result.violations],
        "summary": {
            "errors": result.summary.errors,
            "warnings": result.summary.warnings,
            "info": result.summary.info,
        },
        "files_scanned": result.files_scanned,
        "files_discovered": result.files_discovered,
        "files_skipped": result.files_skipped,
        "duration_ms": result.duration_ms,
        "truncated": result.truncated,
        "timestamp": result.timestamp,
    }
    if result.structure is not None:
        s = result.structure
        data["structure"] = {
            "kind": s.kind,
            "framework": s.framework,
            "summary": s.summary,
            "entry_points": list(s.entry_points),
        }
    if result.sdk_analysis is not None:
        sdk = result.sdk_analysis
        data["sdk_analysis"] = {
            "official": sorted({m.package for m in sdk.official}),
            "wrappers": sorted({m.package for m in sdk.wrappers}),
            "direct_api": len(sdk.direct_api),
            "violations": len(sdk.violations),
        }
    return data


def _violation_to_dict(v: Violation) -> dict:
    return {
        "rule_code": v.rule_code,
        "rule_name": v.rule_name,
        "severity": v.severity.value,
        "platform": v.platform,
        "file": v.file,
        "line": v.line,
        "column": v.column,
        "message": v.message,
        "code_snippet": v.code_snippet,
        "recommendation": v.recommendation,
        "doc_urls": list(v.doc_urls),
    }


def _print_violations(result: ScanResult) -> None:
    if not result.violations:
        console.print("[green]No violations.[/green]")
        return

    violations = sorted(
        result.violations,
        key=lambda v: (_SEVERITY_ORDER.get(v.severity, 9), v.file, v.line),
    )

    table = Table(title="Violations", show_lines=False)
    table.add_column("Severity", style="bold", width=8)
    table.add_column("Rule")
    table.add_column("File", style="cyan")
    table.add_column("Line", justify="right")
    table.add_column("Snippet", max_width=50)

    for v in violations:
        color = _SEVERITY_COLORS.get(v.severity, "white")
        table.add_row(
            f"[{color}]{v.severity.value}[/{color}]",
            v.rule_code,
            v.file,
            str(v.line),
            v.code_snippet[:50],
        )

    console.print(table)


def _print_summary(result: ScanResult) -> None:
    s = result.summary
    console.print(
        f"\nScanned {result.files_scanned} files "
        f"({result.files_skipped} skipped) "
        f"in {result.duration_ms / 1000:.2f}s"
    )
    if result.structure is not None and result.files_scanned:
        console.print(f"Codebase: {result.structure.summary}")
    console.print(
        f"Total violations: {len(result.violations)} "
        f"([red]{s.errors} errors[/red], "
        f"[yellow]{s.warnings} warnings[/yellow], "
        f"[blue]{s.info} info[/blue])"
    )
    if result.truncated:
        console.print(
            "[yellow]Scan limits reached; some files were not scanned.[/yellow]"
        )
