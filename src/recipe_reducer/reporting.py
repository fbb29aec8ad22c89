"""
Reporting and output formatting for reduction results.

Provides console output using the Rich library.
"""

from typing import Any, Dict, List, Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from .closure import Closure
from .dependency import Recipe
from .dependency_graph import DependencyGraph
from .reducer import ReductionResult

# Pruned lists longer than this are cut short in console output
MAX_LISTED = 25


class ReductionReporter:
    """Formats and displays reduction results."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_reduction_results(
        self, result: ReductionResult, input_path: str, output_path: str
    ) -> None:
        """
        Print reduction results in a user-friendly format.

        Args:
            result: The reduction result to display
            input_path: Path of the recipe that was read
            output_path: Path the reduced recipe was written to
        """
        self.console.print()
        self._print_header(input_path, output_path)
        self._print_summary(result)

        if result.members_pruned:
            self._print_list(
                "✂️  Pruned members", result.members_pruned, "yellow"
            )
        if result.packages_pruned:
            self._print_list(
                "✂️  Pruned packages",
                [str(package_id) for package_id in result.packages_pruned],
                "yellow",
            )

        self._print_footer(result)

    def _print_header(self, input_path: str, output_path: str) -> None:
        header_text = f"📦 {input_path}"
        if output_path != input_path:
            header_text += f" → {output_path}"
        self.console.print(
            Panel(
                header_text,
                title="[bold blue]Recipe Reducer[/bold blue]",
                border_style="blue",
            )
        )

    def _print_summary(self, result: ReductionResult) -> None:
        """Print kept and pruned counts for members and packages."""
        table = Table(title="📊 Reduction Summary", box=box.ROUNDED, title_style="bold cyan")
        table.add_column("Kind", style="bold")
        table.add_column("Kept", justify="center")
        table.add_column("Pruned", justify="center")
        table.add_column("Total", justify="center")

        table.add_row(
            "Workspace members",
            f"[green]{len(result.members_kept)}[/green]",
            f"[yellow]{len(result.members_pruned)}[/yellow]",
            str(result.total_members),
        )
        if result.recipe.lock_file is not None:
            table.add_row(
                "Lock entries",
                f"[green]{len(result.packages_kept)}[/green]",
                f"[yellow]{len(result.packages_pruned)}[/yellow]",
                str(result.total_packages),
            )

        self.console.print(table)
        self.console.print()

    def _print_list(self, title: str, items: List[str], color: str) -> None:
        self.console.print(f"[bold {color}]{title}:[/bold {color}]")
        for item in items[:MAX_LISTED]:
            self.console.print(f"   • {item}", style=color)
        if len(items) > MAX_LISTED:
            self.console.print(f"   ... and {len(items) - MAX_LISTED} more", style="dim")
        self.console.print()

    def _print_footer(self, result: ReductionResult) -> None:
        roots = ", ".join(result.closure.roots)
        if result.changed:
            self.console.print(f"✅ Reduced to the closure of {roots}", style="green")
        else:
            self.console.print(
                f"✅ Nothing to prune: the recipe already is the closure of {roots}",
                style="green",
            )
        self.console.print(f"[dim]Reduction completed in {result.duration_ms}ms[/dim]")

    def print_inspection(
        self,
        recipe: Recipe,
        workspace_graph: DependencyGraph[str],
        closure: Closure,
    ) -> None:
        """Print the member graph with the members a reduction would keep."""
        self.console.print()
        tree = Tree("[bold blue]🗂️  Workspace[/bold blue]")

        for name in sorted(recipe.members):
            member = recipe.members[name]
            kept = name in closure.retained_members
            marker = "[green]keep[/green]" if kept else "[yellow]prune[/yellow]"
            label = f"[bold]{name}[/bold] [dim]{member.relative_path}[/dim] {marker}"
            if name in closure.roots:
                label += " [cyan](root)[/cyan]"
            branch = tree.add(label)
            for dependee in sorted(workspace_graph.successors(name)):
                branch.add(f"→ {dependee}")

        self.console.print(tree)
        self.console.print()

        if recipe.lock_file is None:
            self.console.print("ℹ️  Recipe has no lock file", style="yellow")
            return

        total = len(recipe.lock_file.entries)
        self.console.print(
            f"🔒 Lock entries kept: [green]{len(closure.retained_packages)}[/green]"
            f" of {total}"
        )


def result_summary(
    result: ReductionResult, input_path: str, output_path: str
) -> Dict[str, Any]:
    """Machine-readable summary of a reduction."""
    return {
        "input_path": input_path,
        "output_path": output_path,
        "roots": list(result.closure.roots),
        "duration_ms": result.duration_ms,
        "changed": result.changed,
        "members": {
            "total": result.total_members,
            "kept": result.members_kept,
            "pruned": result.members_pruned,
        },
        "packages": {
            "total": result.total_packages,
            "kept": len(result.packages_kept),
            "pruned": [str(package_id) for package_id in result.packages_pruned],
        },
    }
