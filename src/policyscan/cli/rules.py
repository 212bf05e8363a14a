"""CLI commands: policyscan rules — list, inspect and export violation rules."""

from __future__ import annotations

import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from policyscan.config import ScannerConfig
from policyscan.errors import RuleLoadError
from policyscan.rules.loader import FileRuleSource, export_rules, rule_stats
from policyscan.rules.models import RuleFilter, ViolationRule
from policyscan.scanner.models import Severity

console = Console(stderr=True)

_SEVERITY_COLORS = {
    Severity.INFO: "blue",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}

_rule_paths_option = click.option(
    "--rules",
    "rule_paths",
    multiple=True,
    type=click.Path(exists=True),
    help="Extra rule YAML file or directory.",
)


def _load(
    config: ScannerConfig, rule_paths: tuple[str, ...], rule_filter: RuleFilter
) -> list[ViolationRule]:
    try:
        return FileRuleSource([*config.rule_dirs, *rule_paths]).load_rules(rule_filter)
    except RuleLoadError as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(2)


@click.group(invoke_without_command=True)
@click.pass_context
def rules(ctx: click.Context) -> None:
    """List, inspect and export violation rules. Lists them by default."""
    if ctx.invoked_subcommand is None:
        ctx.invoke(list_rules)


@rules.command("list")
@click.option("--platform", "-p", default=None, help="Only show rules for this platform.")
@click.option(
    "--severity",
    "-s",
    type=click.Choice(["error", "warning", "info"]),
    default=None,
    help="Minimum severity to show.",
)
@click.option("--category", "-c", default=None, help="Only show rules in this category.")
@click.option("--disabled", is_flag=True, help="Show only disabled rules.")
@_rule_paths_option
@click.pass_context
def list_rules(
    ctx: click.Context,
    platform: str | None,
    severity: str | None,
    category: str | None,
    disabled: bool,
    rule_paths: tuple[str, ...],
) -> None:
    """List bundled and user-supplied violation rules."""
    rule_filter = RuleFilter(
        platform=platform,
        min_severity=Severity(severity) if severity else None,
        category=category,
        enabled=not disabled,
    )
    loaded = _load(ctx.obj["config"], rule_paths, rule_filter)

    if not loaded:
        console.print("[yellow]No rules match.[/yellow]")
        return

    table = Table(title="Rules", show_lines=False)
    table.add_column("Code", style="bold")
    table.add_column("Platform", style="cyan")
    table.add_column("Severity")
    table.add_column("Category")
    table.add_column("Name")

    for rule in loaded:
        color = _SEVERITY_COLORS.get(rule.severity, "white")
        table.add_row(
            rule.code,
            rule.platform,
            f"[{color}]{rule.severity.value}[/{color}]",
            rule.category,
            rule.name,
        )
    console.print(table)

    stats = rule_stats(loaded)
    by_platform = ", ".join(f"{k}: {v}" for k, v in sorted(stats["by_platform"].items()))
    by_severity = ", ".join(f"{k}: {v}" for k, v in sorted(stats["by_severity"].items()))
    console.print(f"\nTotal rules: {stats['total']}")
    console.print(f"  By platform: {by_platform}")
    console.print(f"  By severity: {by_severity}")


@rules.command("show")
@click.argument("code")
@_rule_paths_option
@click.pass_context
def show_rule(ctx: click.Context, code: str, rule_paths: tuple[str, ...]) -> None:
    """Show the details of one rule."""
    code = code.upper()
    loaded = _load(ctx.obj["config"], rule_paths, RuleFilter(enabled=None))
    rule = next((r for r in loaded if r.code == code), None)
    if rule is None:
        console.print(f"[red]Error:[/red] Rule not found: {code}")
        sys.exit(1)

    color = _SEVERITY_COLORS.get(rule.severity, "white")
    console.print(f"\n[bold]{rule.name}[/bold]")
    console.print(f"Code:      {rule.code}")
    console.print(f"Platform:  {rule.platform}")
    console.print(f"Severity:  [{color}]{rule.severity.value}[/{color}]")
    console.print(f"Category:  {rule.category or '-'}")
    console.print(f"Enabled:   {'yes' if rule.enabled else 'no'}")

    if rule.description:
        console.print(f"\nDescription:\n  {rule.description}")
    if rule.recommendation:
        console.print(f"\nRecommendation:\n  {rule.recommendation}")
    if rule.fix_example:
        console.print("\nExample fix:")
        console.print(rule.fix_example, markup=False, highlight=False)
    if rule.doc_urls:
        console.print("\nDocumentation:")
        for url in rule.doc_urls:
            console.print(f"  {url}")

    console.print("\nDetection:")
    console.print(f"  Type:    {rule.detection_type.value}")
    console.print(f"  Pattern: {rule.pattern}", markup=False, highlight=False)
    if rule.file_types:
        console.print(f"  Files:   {', '.join(rule.file_types)}")


@rules.command("export")
@click.argument("file", type=click.Path(dir_okay=False))
@click.option("--platform", "-p", default=None, help="Only export rules for this platform.")
@click.option("--category", "-c", default=None, help="Only export rules in this category.")
@_rule_paths_option
@click.pass_context
def export_rules_cmd(
    ctx: click.Context,
    file: str,
    platform: str | None,
    category: str | None,
    rule_paths: tuple[str, ...],
) -> None:
    """Write the selected rules to a YAML rule file."""
    rule_filter = RuleFilter(platform=platform, category=category, enabled=None)
    loaded = _load(ctx.obj["config"], rule_paths, rule_filter)

    Path(file).write_text(export_rules(loaded, name=Path(file).stem), encoding="utf-8")
    console.print(f"Exported {len(loaded)} rules to [cyan]{file}[/cyan]")
