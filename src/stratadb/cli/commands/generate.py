"""Typed client generation command (registered as standalone in main.py)."""

from pathlib import Path
from typing import Annotated

import typer

from stratadb.cli.context import CLIContext
from stratadb.cli.output import OutputFormatter
from stratadb.client import render_typed_client


def generate_command(
    ctx: typer.Context,
    output: Annotated[
        str | None,
        typer.Option("--output", "-o", help="File to write (default: stdout)"),
    ] = None,
) -> None:
    """Generate typed record definitions for the declared schema.

    Examples:

        stratadb generate -o app/records.py
        stratadb --schema schema.strata generate
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        source = render_typed_client(db.schema)
        if output:
            Path(output).write_text(source, encoding="utf-8")
            formatter.print_success(
                f"Typed client written to {output}",
                {"entities": len(db.schema.entities)},
            )
        else:
            typer.echo(source, nl=False)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
