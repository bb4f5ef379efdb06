"""Data CRUD commands."""

from typing import Annotated

import typer

from stratadb.cli.context import CLIContext
from stratadb.cli.output import OutputFormatter
from stratadb.cli.parsing import parse_include, parse_json_object, read_json_file

# Create data subcommand group
app = typer.Typer(help="Manage entity data (CRUD operations)")


@app.command("create")
def data_create(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Entity name")],
    data_json: Annotated[
        str | None,
        typer.Argument(help="Record data as JSON string"),
    ] = None,
    from_file: Annotated[
        str | None,
        typer.Option("--from-file", "-f", help="Load data from JSON file"),
    ] = None,
) -> None:
    """Create a record.

    Examples:

        stratadb data create User '{"email": "ada@example.com"}'
        stratadb data create Post --from-file post.json
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        if from_file:
            data = read_json_file(from_file)
        elif data_json:
            data = parse_json_object(data_json, "data")
        else:
            raise ValueError("Provide record data as JSON or with --from-file")

        db = cli_ctx.get_db()
        record = db.entity(entity_name).create(data)
        if cli_ctx.json_output:
            formatter.print_data(record)
        else:
            formatter.print_success(f"Record created in {entity_name}")
            formatter.print_data(record)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("find")
def data_find(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Entity name")],
    where: Annotated[
        str | None,
        typer.Option("--where", "-w", help='Filter as JSON (e.g., \'{"age": {"gte": 18}}\')'),
    ] = None,
    include: Annotated[
        list[str] | None,
        typer.Option("--include", "-i", help="Relation to include (repeatable, dotted to nest)"),
    ] = None,
    order_by: Annotated[
        list[str] | None,
        typer.Option("--order-by", "-o", help="Sort field, '-' prefix for descending"),
    ] = None,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Maximum records")] = None,
    offset: Annotated[int | None, typer.Option("--offset", help="Records to skip")] = None,
) -> None:
    """Read records, optionally with related records.

    Examples:

        stratadb data find User
        stratadb data find User --where '{"email": "ada@example.com"}' --include posts
        stratadb data find Post --order-by -id --limit 10
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        filters = parse_json_object(where, "--where") if where else None
        db = cli_ctx.get_db()
        records = db.entity(entity_name).read(
            filters,
            include=parse_include(include),
            order_by=order_by,
            limit=limit,
            offset=offset,
        )
        formatter.print_data(records)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("update")
def data_update(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Entity name")],
    where_json: Annotated[str, typer.Argument(help="Filter matching one record, as JSON")],
    data_json: Annotated[str, typer.Argument(help="Update data as JSON string")],
) -> None:
    """Update one record.

    Examples:

        stratadb data update User '{"id": 1}' '{"name": "Ada"}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        where = parse_json_object(where_json, "where")
        data = parse_json_object(data_json, "data")
        db = cli_ctx.get_db()
        record = db.entity(entity_name).update(where, data)
        if cli_ctx.json_output:
            formatter.print_data(record)
        else:
            formatter.print_success("Record updated")
            formatter.print_data(record)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("delete")
def data_delete(
    ctx: typer.Context,
    entity_name: Annotated[str, typer.Argument(help="Entity name")],
    where_json: Annotated[str, typer.Argument(help="Filter matching one record, as JSON")],
) -> None:
    """Delete one record.

    Records still referenced through a restricting relation are not deleted.

    Examples:

        stratadb data delete Post '{"id": 1}'
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        where = parse_json_object(where_json, "where")
        db = cli_ctx.get_db()
        record = db.entity(entity_name).delete(where)
        formatter.print_success(f"Record deleted from {entity_name}", {"record": record})
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
