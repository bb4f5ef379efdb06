"""Schema inspection commands."""

from pathlib import Path
from typing import Annotated

import typer

from stratadb.cli.context import CLIContext
from stratadb.cli.output import OutputFormatter
from stratadb.schema import load_schema

# Create schema subcommand group
app = typer.Typer(help="Validate and inspect schemas")


@app.command("validate")
def schema_validate(
    ctx: typer.Context,
    path: Annotated[
        str | None,
        typer.Argument(help="Schema file (default: --schema / ./schema.strata)"),
    ] = None,
) -> None:
    """Validate a schema file without touching the database.

    Examples:

        stratadb schema validate schema.strata
        stratadb schema validate schema.json --json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        schema_path = Path(path) if path else cli_ctx.schema_path
        if schema_path is None:
            raise FileNotFoundError("No schema file given and ./schema.strata does not exist")
        snapshot = load_schema(schema_path)
        formatter.print_success(
            f"Schema is valid: {schema_path}",
            {
                "entities": len(snapshot.entities),
                "relations": len(snapshot.relations),
                "checksum": snapshot.checksum,
            },
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)


@app.command("list")
def schema_list(ctx: typer.Context) -> None:
    """List entities of the declared (or latest applied) schema."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        schema = db.schema

        if cli_ctx.json_output:
            formatter.print_data(schema.entity_names)
        else:
            table_data = [
                {
                    "Name": entity.name,
                    "Table": entity.table_name,
                    "Fields": len(entity.fields),
                    "Relations": len(schema.relation_names(entity.name)),
                }
                for entity in schema.entities
            ]
            formatter.print_table(
                f"Entities ({len(table_data)} total, checksum {schema.checksum[:12]})",
                table_data,
                ["Name", "Table", "Fields", "Relations"],
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("describe")
def schema_describe(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Entity name")],
) -> None:
    """Show detailed entity information."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        entity_info = db.describe_entity(entity_name)
        formatter.print_entity_info(entity_info)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
