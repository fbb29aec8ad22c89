import json
import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click
from rich.console import Console
from rich.panel import Panel

from .cli_config import (
    build_config,
    create_sample_config,
    get_config,
    load_config,
    load_config_file,
    reset_config,
    validate_config_values,
)
from .error_handling import ErrorContext, ErrorLevel, ReduceError, get_error_handler
from .parsers import load_recipe
from .reducer import get_recipe_reducer
from .reporting import ReductionReporter, result_summary
from .structured_logging import configure_logging

__version__ = "1.0.0"

console = Console()


def _print_warning(context: ErrorContext) -> None:
    if context.level == ErrorLevel.WARNING:
        console.print(f"⚠️  {context.message}", style="yellow")


@contextmanager
def _error_reports(verbose: bool, output_format: str) -> Iterator[None]:
    """
    Route error handler reports while a command runs.

    Failures reach the user through the command's own output, so the
    handler's stderr log is silenced. With --verbose on the console,
    warnings are echoed instead.
    """
    handler = get_error_handler()
    previous_level = handler.log_level
    handler.set_log_level(logging.CRITICAL + 1)
    echo = verbose and output_format == "console"
    if echo:
        handler.register_callback(_print_warning)
    try:
        yield
    finally:
        handler.set_log_level(previous_level)
        if echo:
            handler.unregister_callback(_print_warning)


def _fail(error: Exception, output_format: str) -> None:
    """Turn a reduction failure into exit code 1."""
    if output_format == "json" and isinstance(error, ReduceError):
        print(json.dumps({"error": error.to_dict()}, indent=2, ensure_ascii=False))
        sys.exit(1)
    raise click.ClickException(str(error))


@click.group(invoke_without_command=True)
@click.option("--version", is_flag=True, help="Show version information")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file (default: .recipe-reducer.json/.yaml in the working directory)",
)
@click.pass_context
def cli(ctx, version, config_path):
    """
    📦 Recipe Reducer: cargo-chef recipe pruning

    Cuts a cargo-chef recipe.json down to what one workspace member needs,
    so that changes to unrelated members keep the cached dependency layer.
    """
    if version:
        console.print(f"recipe-reducer version {__version__}", style="bold blue")
        ctx.exit()

    if config_path:
        reset_config()
        load_config(Path(config_path))

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, readable=True, dir_okay=False))
@click.option(
    "--output",
    "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    help="Where to write the reduced recipe (default: overwrite INPUT_PATH)",
)
@click.option(
    "--member",
    "-m",
    help="Member, binary or member directory to reduce to "
    "(default: inferred from [workspace].members)",
)
@click.option(
    "--strict",
    is_flag=True,
    help="Fail when an optional dependency is missing from the lock file",
)
@click.option("--indent", type=click.IntRange(min=0), help="Indent the output JSON")
@click.option(
    "--summary/--no-summary",
    default=None,
    help="Print a summary of what was kept and pruned",
)
@click.option(
    "--output-format",
    type=click.Choice(["console", "json"], case_sensitive=False),
    help="Summary format (default from config or console)",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-critical output")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose output and structured INFO logs",
)
def reduce(
    input_path: str,
    output_path: Optional[str],
    member: Optional[str],
    strict: bool,
    indent: Optional[int],
    summary: Optional[bool],
    output_format: Optional[str],
    quiet: bool,
    verbose: bool,
) -> None:
    """
    Reduce a recipe.json to the closure of one workspace member.

    Examples:

      recipe-reducer reduce recipe.json

      recipe-reducer reduce recipe.json --member api -o api-recipe.json

      recipe-reducer reduce recipe.json --output-format json --quiet
    """
    config = get_config()
    configure_logging("INFO" if verbose else config.logging.log_level)

    final_format = (output_format or config.output.output_format).lower()
    final_summary = summary if summary is not None else config.output.summary
    final_output = output_path or input_path

    reducer = get_recipe_reducer(
        root_member=member,
        strict=True if strict else None,
        indent=indent,
    )

    if verbose and not quiet and final_format == "console":
        console.print(f"📁 Reducing {input_path}", style="blue")

    try:
        with _error_reports(verbose, final_format):
            result = reducer.reduce_file(input_path, final_output)
    except ReduceError as e:
        _fail(e, final_format)
        return
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Reduction failed: {str(e)}")

    if final_format == "json":
        if final_summary:
            print(
                json.dumps(
                    result_summary(result, input_path, final_output),
                    indent=2,
                    ensure_ascii=False,
                )
            )
    elif final_summary and not quiet:
        ReductionReporter(console).print_reduction_results(
            result, input_path, final_output
        )


@cli.command()
@click.argument("input_path", type=click.Path(exists=True, readable=True, dir_okay=False))
@click.option("--member", "-m", help="Member, binary or member directory to inspect")
@click.option("--strict", is_flag=True, help="Fail on missing optional dependencies")
@click.option("--verbose", "-v", is_flag=True, help="Show warnings found while resolving")
def inspect(input_path: str, member: Optional[str], strict: bool, verbose: bool) -> None:
    """Show the member graph and what a reduction would keep, without writing."""
    configure_logging(get_config().logging.log_level)
    reducer = get_recipe_reducer(root_member=member, strict=True if strict else None)

    try:
        with _error_reports(verbose, "console"):
            recipe = load_recipe(input_path)
            workspace_graph, closure = reducer.compute_closure(recipe)
    except ValueError as e:
        raise click.ClickException(str(e))

    ReductionReporter(console).print_inspection(recipe, workspace_graph, closure)


@cli.command()
def info():
    """Show how reduction works and usage examples."""
    info_text = """
[bold blue]📋 Input:[/bold blue]

• [green]recipe.json[/green] - written by [cyan]cargo chef prepare[/cyan]

[bold blue]✂️  What is kept:[/bold blue]

• The root [green]Cargo.toml[/green] and the workspace root package
• The selected member and every member it depends on, including
  dev-, build- and target-specific dependencies
• Lock entries reachable from the kept members
• Everything else in the recipe, unchanged

[bold blue]🎯 Selecting the member:[/bold blue]

• [yellow]--member[/yellow] accepts a package name, a [[bin]] name or a directory
• Without it, the members listed in [workspace].members are used
  (as narrowed by [cyan]cargo chef prepare --bin[/cyan])

[bold blue]📄 Configuration Files:[/bold blue]

• [green].recipe-reducer.json[/green] / [green].recipe-reducer.yaml[/green] - Project-level config

[bold blue]💡 Usage Examples:[/bold blue]

  # Reduce in place
  recipe-reducer reduce recipe.json

  # Reduce to one binary into a new file
  recipe-reducer reduce recipe.json --member api -o api-recipe.json

  # Preview without writing
  recipe-reducer inspect recipe.json --member api

  # Generate sample config
  recipe-reducer config init
"""
    console.print(
        Panel(
            info_text,
            title="[bold]Recipe Reducer Information[/bold]",
            border_style="blue",
        )
    )


@cli.group()
def config():
    """Configuration management commands."""
    pass


@config.command("init")
@click.option(
    "--path",
    type=click.Path(),
    default=".recipe-reducer.json",
    help="Path where to create the config file",
    show_default=True,
)
@click.option("--force", is_flag=True, help="Overwrite existing config file")
def config_init(path: str, force: bool):
    """Create a sample configuration file."""
    config_path = Path(path)

    if config_path.exists() and not force:
        console.print(f"⚠️  Config file already exists at {config_path}", style="yellow")
        console.print("Use --force to overwrite", style="dim")
        return

    try:
        with open(config_path, "w", encoding="utf-8") as f:
            f.write(create_sample_config())
    except OSError as e:
        raise click.ClickException(f"Failed to create config file: {e}")

    console.print(f"✅ Created configuration file at {config_path}", style="green")
    console.print("Edit this file to customize your settings", style="dim")


@config.command("show")
def config_show():
    """Show current configuration settings."""
    current_config = get_config()

    console.print(Panel("[bold blue]🔧 Configuration[/bold blue]", border_style="blue"))

    console.print("\n[bold cyan]✂️  Reduce Settings:[/bold cyan]")
    console.print(f"  Root Member: {current_config.reduce.root_member or '(inferred)'}")
    console.print(f"  Strict: {current_config.reduce.strict}")

    console.print("\n[bold cyan]📄 Output Settings:[/bold cyan]")
    console.print(f"  Indent: {current_config.output.indent}")
    console.print(f"  Summary: {current_config.output.summary}")
    console.print(f"  Output Format: {current_config.output.output_format}")

    console.print("\n[bold cyan]🔒 Security Settings:[/bold cyan]")
    console.print(f"  Max File Size: {current_config.security.max_file_size_mb} MB")
    console.print(
        f"  Allowed Extensions: {', '.join(current_config.security.allowed_file_extensions)}"
    )

    console.print("\n[bold cyan]📝 Logging Settings:[/bold cyan]")
    console.print(f"  Log Level: {current_config.logging.log_level}")


@config.command("validate")
@click.argument("config_file", type=click.Path(exists=True))
def config_validate(config_file: str):
    """Validate a configuration file."""
    config_data = load_config_file(Path(config_file))

    if config_data is None:
        raise click.ClickException(f"Could not load config from {config_file}")

    errors = validate_config_values(build_config(config_data))
    if errors:
        console.print("❌ Configuration validation failed:", style="red")
        for error in errors:
            console.print(f"  • {error}", style="red")
        sys.exit(1)

    console.print(f"✅ Configuration file {config_file} is valid", style="green")


if __name__ == "__main__":
    cli()
