"""StrataDB CLI - Main entry point."""

import logging
from typing import Annotated

import typer
from rich.logging import RichHandler

import stratadb
from stratadb.cli.context import CLIContext, get_database_url, get_schema_path
from stratadb.cli.output import log_console

app = typer.Typer(
    name="stratadb",
    help="StrataDB CLI - Declare entities, migrate the database, and query it",
    no_args_is_help=True,
)


def configure_logging(verbosity: int) -> None:
    """Route library logs to stderr: warnings by default, -v for info, -vv for debug."""
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=log_console, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="STRATADB_URL",
            help="Database URL (PostgreSQL or SQLite)",
        ),
    ] = None,
    schema: Annotated[
        str | None,
        typer.Option(
            "--schema",
            "-s",
            envvar="STRATADB_SCHEMA",
            help="Schema file (default: ./schema.strata when present)",
        ),
    ] = None,
    echo: Annotated[
        bool,
        typer.Option("--echo", "-e", help="Echo SQL statements to console"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", "-j", help="Output as JSON (machine-readable)"),
    ] = False,
    verbose: Annotated[
        int,
        typer.Option("--verbose", "-v", count=True, help="Log migration steps (-vv for SQL)"),
    ] = 0,
) -> None:
    """Resolve global options into the context shared by all commands."""
    configure_logging(verbose)
    ctx.obj = CLIContext(
        database_url=get_database_url(database),
        schema_path=get_schema_path(schema),
        echo=echo,
        json_output=json_output,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"StrataDB v{stratadb.__version__}")


# Command groups
from stratadb.cli.commands import data, generate, migrate, schema  # noqa: E402

app.add_typer(schema.app, name="schema")
app.add_typer(migrate.app, name="migrate")
app.add_typer(data.app, name="data")

# generate is a single command, not a group
app.command(name="generate")(generate.generate_command)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
