"""
Rich UI components for the resolution CLI.

Tables for pass summaries, pending reviews and algorithm comparisons.
"""

from typing import Dict, List, Optional, Tuple

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..decision_resolver import PassResult
from ..report import FusionReport, stringify_scores


class UIComponents:
    """Collection of Rich UI components for the CLI."""

    def __init__(self, console: Optional[Console] = None):
        """Initialize UI components."""
        self.console = console or Console()

    def create_summary_panel(self, result: PassResult) -> Panel:
        """Create the pass summary panel."""
        report = result.report
        content = f"""[bold]Accounts:[/bold] {report.total_accounts}
[green]Auto-linked:[/green] {report.auto_linked}
[yellow]Pending review:[/yellow] {report.potential_duplicates}
[cyan]New identities:[/cyan] {report.new_identities}
[blue]Decisions applied:[/blue] {report.decisions_applied}
[red]Errors:[/red] {len(result.errors)}
[dim]Completed in {result.processing_time:.2f}s[/dim]"""

        return Panel(content, title="Resolution Pass", border_style="cyan", padding=(1, 2))

    def create_review_table(self, report: FusionReport) -> Table:
        """Create a table of accounts waiting for review."""
        table = Table(
            title="Potential Duplicates",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold magenta",
        )
        table.add_column("Account", style="cyan")
        table.add_column("Source", style="dim")
        table.add_column("Candidate", style="green")
        table.add_column("Class", justify="center")
        table.add_column("Scores")

        for account in report.accounts:
            if not account.matches:
                table.add_row(account.account_name, account.source, "-", "-", "no candidates")
                continue
            for index, match in enumerate(account.matches):
                classification = match.classification.value if match.classification else "-"
                style = "green" if classification == "matching" else "yellow"
                table.add_row(
                    account.account_name if index == 0 else "",
                    account.source if index == 0 else "",
                    f"{match.name} ({match.id})",
                    f"[{style}]{classification}[/{style}]",
                    stringify_scores(match.scores),
                )
        return table

    def create_fused_table(self, result: PassResult) -> Table:
        """Create a table of the fused accounts to persist."""
        table = Table(title="Fused Accounts", box=box.SIMPLE_HEAD)
        table.add_column("ID", style="cyan")
        table.add_column("Kind")
        table.add_column("Identity")
        table.add_column("Accounts", justify="right")
        table.add_column("Statuses")

        for fused in result.fused_accounts:
            table.add_row(
                fused.fused_id,
                fused.kind.value,
                fused.identity_link or "-",
                str(len(fused.account_refs)),
                ", ".join(sorted(flag.value for flag in fused.statuses)),
            )
        return table

    def create_score_table(self, value_a: str, value_b: str, scores: List[Tuple[str, int, str]]) -> Table:
        """Create a table comparing every algorithm on one pair of values."""
        table = Table(title=f"'{value_a}' vs '{value_b}'", box=box.ROUNDED)
        table.add_column("Algorithm", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Comment", style="dim")

        for algorithm, score, comment in scores:
            color = "green" if score >= 80 else "yellow" if score >= 50 else "red"
            table.add_row(algorithm, f"[{color}]{score}[/{color}]", comment or "")
        return table

    def show_pass_result(self, result: PassResult) -> None:
        self.console.print(self.create_summary_panel(result))
        if result.report and result.report.accounts:
            self.console.print(self.create_review_table(result.report))
        if result.fused_accounts:
            self.console.print(self.create_fused_table(result))
        for error in result.errors:
            self.console.print(f"[red]✗[/red] {error.message}")

    def show_error_stats(self, stats: Dict[str, int]) -> None:
        if stats:
            self.console.print(f"[dim]Errors by type: {stats}[/dim]")
