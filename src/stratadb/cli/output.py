"""Output formatting for CLI commands."""

import json
from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.pretty import pprint
from rich.syntax import Syntax
from rich.table import Table

from stratadb.core.types import EntityInfo, MigrationRecord
from stratadb.exceptions import StrataDBError

console = Console()
# Logs go to stderr so --json output on stdout stays parseable
log_console = Console(stderr=True)


class OutputFormatter:
    """Formats output for terminal or JSON mode."""

    def __init__(self, json_mode: bool = False) -> None:
        """Initialize formatter.

        Args:
            json_mode: If True, output JSON instead of Rich formatting
        """
        self.json_mode = json_mode

    def print_table(
        self,
        title: str,
        data: list[dict[str, Any]],
        columns: list[str],
    ) -> None:
        """Print data as Rich table or JSON array.

        Args:
            title: Table title
            data: List of row dictionaries
            columns: Column names to display
        """
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            table = Table(title=title, show_header=True, header_style="bold magenta")
            for col in columns:
                table.add_column(col)
            for row in data:
                table.add_row(*[str(row.get(col, "")) for col in columns])
            console.print(table)

    def print_entity_info(self, entity: EntityInfo) -> None:
        """Print entity information with fields and relations.

        Args:
            entity: Entity information to display
        """
        if self.json_mode:
            print(json.dumps(entity.model_dump(), default=str, indent=2))
            return

        console.print(f"\n[bold]Entity:[/bold] {entity.name}")
        console.print(f"Table: {entity.table_name}")

        console.print(f"\n[bold]Fields ({len(entity.fields)}):[/bold]")
        fields_table = Table(show_header=True, header_style="bold cyan")
        fields_table.add_column("Name")
        fields_table.add_column("Type")
        fields_table.add_column("Nullable")
        fields_table.add_column("Identity")
        fields_table.add_column("Unique")
        fields_table.add_column("Indexed")
        fields_table.add_column("Default")
        for field in entity.fields:
            fields_table.add_row(
                field.name,
                field.type,
                "✓" if field.nullable else "",
                "✓" if field.identity else "",
                "✓" if field.unique else "",
                "✓" if field.indexed else "",
                field.default or "",
            )
        console.print(fields_table)

        if entity.relations:
            console.print(f"\n[bold]Relations ({len(entity.relations)}):[/bold]")
            rel_table = Table(show_header=True, header_style="bold cyan")
            rel_table.add_column("Name")
            rel_table.add_column("Field")
            rel_table.add_column("References")
            rel_table.add_column("Kind")
            rel_table.add_column("On Delete")
            for rel in entity.relations:
                rel_table.add_row(
                    rel.name,
                    f"{rel.entity}.{rel.field}",
                    f"{rel.target}.{rel.references}",
                    rel.kind,
                    rel.on_delete,
                )
            console.print(rel_table)

    def print_plan(self, plan: dict[str, Any], show_sql: bool = True) -> None:
        """Print a migration plan.

        Args:
            plan: ``MigrationPlan.to_dict()`` output
            show_sql: Whether to include the rendered statements
        """
        if self.json_mode:
            print(json.dumps(plan, default=str, indent=2))
            return

        if plan["up_to_date"]:
            console.print("✓ Schema is up to date", style="green")
            return

        operations = plan["operations"]
        console.print(f"\n[bold]Operations ({len(operations)}):[/bold]")
        for description in operations:
            console.print(f"  • {description}")
        if not operations:
            console.print("  (none: logical change only)", style="dim")

        if plan["warnings"]:
            console.print(f"\n[bold yellow]Destructive changes ({len(plan['warnings'])}):[/bold yellow]")
            for warning in plan["warnings"]:
                console.print(f"  ! {warning}", style="yellow")

        if show_sql and plan["statements"]:
            console.print("\n[bold]SQL:[/bold]")
            sql = ";\n".join(plan["statements"]) + ";"
            console.print(Syntax(sql, "sql", word_wrap=True))

    def print_history(self, records: list[MigrationRecord]) -> None:
        """Print applied migrations, oldest first."""
        rows = [
            {
                "version": r.version,
                "name": r.name,
                "checksum": r.checksum[:12],
                "statements": r.statement_count,
                "applied_at": r.applied_at.isoformat(timespec="seconds"),
            }
            for r in records
        ]
        if self.json_mode:
            print(json.dumps([r.model_dump() for r in records], default=str, indent=2))
        else:
            self.print_table(
                "Applied Migrations",
                rows,
                ["version", "name", "checksum", "statements", "applied_at"],
            )

    def print_success(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Print success message.

        Args:
            message: Success message
            details: Optional details to display
        """
        if self.json_mode:
            output = {"success": True, "message": message}
            if details:
                output.update(details)
            print(json.dumps(output, default=str, indent=2))
        else:
            console.print(f"✓ {message}", style="green")
            if details:
                for key, value in details.items():
                    console.print(f"  {key}: {value}", style="dim")

    def print_error(self, error: Exception) -> None:
        """Print error message.

        Args:
            error: Exception to display
        """
        if self.json_mode:
            if isinstance(error, StrataDBError):
                print(json.dumps(error.to_dict(), default=str, indent=2))
            else:
                print(json.dumps({"error": str(error)}, indent=2))
        else:
            error_text = str(error)
            # For StrataDBError, include context if available
            if isinstance(error, StrataDBError) and error.context:
                context_str = "\n".join(f"{k}: {v}" for k, v in error.context.items())
                error_text = f"{error_text}\n\n{context_str}"

            panel = Panel(
                error_text,
                title="[red]Error[/red]",
                border_style="red",
            )
            console.print(panel)

    def print_data(self, data: Any) -> None:
        """Print generic data (dict, list, etc.).

        Args:
            data: Data to print
        """
        if self.json_mode:
            print(json.dumps(data, default=str, indent=2))
        else:
            pprint(data, expand_all=True)
