"""Migration commands."""

from typing import Annotated

import typer

from stratadb.cli.context import CLIContext
from stratadb.cli.output import OutputFormatter
from stratadb.migrations import DDLGenerator, destructive_changes, diff
from stratadb.schema import load_schema

# Create migrate subcommand group
app = typer.Typer(help="Plan, apply and verify schema migrations")


@app.command("plan")
def migrate_plan(
    ctx: typer.Context,
    show_sql: Annotated[
        bool,
        typer.Option("--sql/--no-sql", help="Show the DDL statements"),
    ] = True,
    dialect: Annotated[
        str | None,
        typer.Option(
            "--dialect",
            help="Render for a dialect from an empty store, without connecting "
            "(postgresql, sqlite)",
        ),
    ] = None,
) -> None:
    """Preview the migration to the declared schema.

    Examples:

        stratadb migrate plan
        stratadb --schema schema.strata migrate plan --dialect postgresql
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        if dialect:
            if cli_ctx.schema_path is None:
                raise FileNotFoundError("--dialect needs a schema file (--schema)")
            target = load_schema(cli_ctx.schema_path)
            operations = diff(None, target)
            plan = {
                "from_version": 0,
                "up_to_date": False,
                "operations": [op.describe() for op in operations],
                "statements": DDLGenerator.for_dialect(dialect, None, target).plan(operations),
                "warnings": [str(w) for w in destructive_changes(operations)],
            }
        else:
            plan = cli_ctx.get_db().plan().to_dict()
        formatter.print_plan(plan, show_sql=show_sql)
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("apply")
def migrate_apply(
    ctx: typer.Context,
    name: Annotated[
        str | None,
        typer.Option("--name", "-n", help="Migration name (default: version and checksum)"),
    ] = None,
    accept_data_loss: Annotated[
        bool,
        typer.Option("--accept-data-loss", help="Apply changes flagged as destructive"),
    ] = False,
) -> None:
    """Migrate the database to the declared schema.

    Re-applying a migration name that is already recorded does nothing.

    Examples:

        stratadb migrate apply --name 0001_init
        stratadb migrate apply --accept-data-loss
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        record = db.migrate(name, allow_destructive=accept_data_loss)
        if record is None:
            formatter.print_success("Schema is up to date")
        else:
            formatter.print_success(
                f"Migration applied: {record.name}",
                {
                    "version": record.version,
                    "operations": len(record.operations),
                    "statements": record.statement_count,
                },
            )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("status")
def migrate_status(ctx: typer.Context) -> None:
    """List applied migrations."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        formatter.print_history(db.history())
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()


@app.command("verify")
def migrate_verify(
    ctx: typer.Context,
    check_store: Annotated[
        bool,
        typer.Option("--check-store/--ledger-only", help="Compare the live tables too"),
    ] = True,
) -> None:
    """Check the migration ledger and that the tables match it."""
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        db = cli_ctx.get_db()
        records = db.migrator.verify(check_store=check_store)
        formatter.print_success(
            "Migration ledger is consistent",
            {"migrations": len(records), "latest": records[-1].name if records else None},
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        cli_ctx.close()
