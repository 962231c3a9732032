"""QueryTorque Profile CLI.

Command-line interface for query profile diagnosis.

Commands:
    qt-profile analyze <profile.txt>              Diagnose a profile, show findings and root causes
    qt-profile analyze <profile.txt> --json       Same, as JSON
    qt-profile parse <profile.txt>                Show the reconstructed operator tree
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from qt_profile import __version__
from qt_profile.analyzer import Severity
from qt_profile.diagnose import DiagnosisResult, ProfileDiagnoser
from qt_profile.errors import ProfileParseError
from qt_profile.models import OperatorTree
from qt_profile.parser import parse_profile
from qt_profile.parser.values import format_bytes, format_duration_ms

console = Console()
logger = logging.getLogger(__name__)

SEVERITY_COLORS = {
    Severity.CRITICAL: "red",
    Severity.WARNING: "yellow",
    Severity.INFO: "blue",
}


def read_text_file(file_path: str) -> str:
    """Read a profile or SQL file."""
    path = Path(file_path)
    if not path.exists():
        raise click.ClickException(f"File not found: {file_path}")
    return path.read_text(encoding="utf-8")


def configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)


def display_diagnosis(result: DiagnosisResult, verbose: bool = False) -> None:
    """Display a diagnosis with rich formatting."""
    score = result.performance_score
    score_color = "green" if score >= 80 else "yellow" if score >= 60 else "red"
    summary = result.summary()
    total = summary["total_time_ms"]
    console.print(Panel(
        f"Score: [bold {score_color}]{score:.0f}/100[/bold {score_color}]\n"
        f"Query: {summary['query_id'] or '-'} | Type: {summary['query_type']} | "
        f"Complexity: {summary['complexity']}\n"
        f"Total time: {format_duration_ms(total) if total is not None else '-'} | "
        f"Thresholds: {result.thresholds.source} (baseline {result.baseline_source.value})",
        title="Profile Diagnosis",
        border_style=score_color,
    ))

    if not result.diagnostics:
        console.print("[green]No issues detected.[/green]")
        return

    table = Table(title="Findings", show_header=True, header_style="bold")
    table.add_column("Severity", style="bold", width=10)
    table.add_column("Rule", width=7)
    table.add_column("Operator", width=32)
    table.add_column("Message", width=60)

    for diagnostic in result.diagnostics:
        color = SEVERITY_COLORS[diagnostic.severity]
        table.add_row(
            f"[{color}]{diagnostic.severity.label.upper()}[/{color}]",
            diagnostic.rule_id,
            diagnostic.node_path,
            diagnostic.message,
        )
    console.print(table)

    analysis = result.root_cause_analysis
    console.print(f"\n[bold]Root cause:[/bold] {analysis.summary}")
    for cause in analysis.root_causes:
        console.print(
            f"  [bold]{cause.id}[/bold] {cause.description} "
            f"[dim](impact {cause.impact_percentage:.0f}%, confidence {cause.confidence:.2f})[/dim]"
        )
        if verbose:
            for symptom in cause.symptoms:
                console.print(f"    [dim]-> {symptom.rule_id} on {symptom.node_path}[/dim]")
            for suggestion in cause.suggestions:
                console.print(f"    [green]* {suggestion}[/green]")

    if verbose and analysis.causal_chains:
        console.print("\n[bold]Causal chains:[/bold]")
        for chain in analysis.causal_chains:
            console.print(f"  {' -> '.join(chain.chain)} [dim](confidence {chain.confidence:.2f})[/dim]")


def build_tree_view(tree: OperatorTree) -> Tree:
    """Render the operator tree, following exchange links across fragments."""

    def label(node_id: int) -> str:
        node = tree.nodes[node_id]
        text = (
            f"[bold]{node.name}[/bold] (plan_node_id={node.id}) "
            f"[dim]fragment {node.fragment_id}[/dim] "
            f"{format_duration_ms(node.common.operator_time_ms)} ({node.time_percentage:.1f}%) "
            f"rows={node.common.pull_rows:,.0f}"
        )
        if node.common.peak_memory_bytes:
            text += f" mem={format_bytes(node.common.peak_memory_bytes)}"
        if node.is_hotspot:
            text = f"[red]{text}[/red]"
        return text

    root = Tree(label(tree.root_id))

    def add_children(branch: Tree, node_id: int, seen: set) -> None:
        for child_id in tree.inputs_of(node_id):
            if child_id in seen or child_id not in tree.nodes:
                continue
            seen.add(child_id)
            add_children(branch.add(label(child_id)), child_id, seen)

    add_children(root, tree.root_id, {tree.root_id})
    return root


@click.group()
@click.version_option(version=__version__, prog_name="qt-profile")
def cli():
    """QueryTorque Profile - Query Profile Diagnosis CLI."""
    pass


@cli.command()
@click.argument("profile_file", type=click.Path(exists=True))
@click.option("--sql", "sql_file", type=click.Path(exists=True), help="SQL file (defaults to the profile's statement)")
@click.option("--backends", default=None, type=int, help="Number of backends (inferred from the profile if omitted)")
@click.option("--storage", default="local", help="Storage backend (local, hdfs, s3, oss, cos, gcs)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@click.option("--verbose", "-v", is_flag=True, help="Show symptoms, suggestions and causal chains")
def analyze(
    profile_file: str,
    sql_file: Optional[str],
    backends: Optional[int],
    storage: str,
    output_json: bool,
    verbose: bool,
):
    """Diagnose a query profile.

    Parses the profile, evaluates the diagnostic rules against default
    thresholds and prints the findings with their root causes.

    Exits with status 1 when a critical finding is present.

    Examples:
        qt-profile analyze profile.txt
        qt-profile analyze profile.txt --backends 12 --storage s3
        qt-profile analyze profile.txt --json
    """
    configure_logging(verbose)
    try:
        raw_text = read_text_file(profile_file)
        sql = read_text_file(sql_file) if sql_file else None
    except click.ClickException as e:
        console.print(f"[red]Error: {e.message}[/red]")
        sys.exit(1)

    diagnoser = ProfileDiagnoser()
    try:
        overrides = {"storage": storage}
        if backends is not None:
            overrides["backend_num"] = backends
        cluster = parse_profile(raw_text).cluster_info(**overrides)
        result = diagnoser.diagnose(raw_text, cluster, sql=sql, storage=storage)
    except ProfileParseError as e:
        console.print(f"[red]Could not parse profile: {e}[/red]")
        sys.exit(2)

    if output_json:
        output = result.to_dict()
        output["file"] = profile_file
        console.print_json(json.dumps(output))
    else:
        console.print(f"\n[bold]Analyzing:[/bold] {profile_file}")
        console.print(f"[dim]Storage: {storage} | Backends: {cluster.backend_num}[/dim]\n")
        display_diagnosis(result, verbose=verbose)

    if any(d.severity is Severity.CRITICAL for d in result.diagnostics):
        sys.exit(1)


@cli.command()
@click.argument("profile_file", type=click.Path(exists=True))
def parse(profile_file: str):
    """Show the operator tree reconstructed from a profile.

    Examples:
        qt-profile parse profile.txt
    """
    configure_logging(False)
    try:
        document = parse_profile(read_text_file(profile_file))
    except ProfileParseError as e:
        console.print(f"[red]Could not parse profile: {e}[/red]")
        sys.exit(2)

    summary = document.summary
    console.print(Panel(
        f"Query: {summary.query_id or '-'} | State: {summary.query_state or '-'}\n"
        f"Fragments: {len(document.fragments)} | Operators: {len(document.tree)} | "
        f"Exchange links: {len(document.tree.exchange_links)}",
        title="Profile",
    ))
    console.print(build_tree_view(document.tree))


def main():
    cli()


if __name__ == "__main__":
    main()
