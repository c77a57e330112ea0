"""
Presentación en consola (Rich) de planes, resultados, drift, outputs y estado.
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from forja.core.graph.builder import DependencyGraph
from forja.core.infra.contracts import ResourceSchema
from forja.core.project.detector import DriftReport
from forja.core.project.executor import ApplyResult
from forja.core.project.outputs import SENSITIVE_PLACEHOLDER, OutputValue
from forja.core.project.planner import Action, ChangeSet
from forja.core.runtime.state import AppliedState


ACTION_STYLES = {
    Action.CREATE: "[green]+ create[/green]",
    Action.UPDATE: "[yellow]~ update[/yellow]",
    Action.REPLACE: "[magenta]± replace[/magenta]",
    Action.DESTROY: "[red]- destroy[/red]",
    Action.NOOP: "[dim]  no-op[/dim]",
}

SEVERITY_STYLES = {
    "error": "[red]ERROR[/red]",
    "warning": "[yellow]WARNING[/yellow]",
    "info": "[blue]INFO[/blue]",
}


def render_plan(console: Console, changeset: ChangeSet, show_noop: bool = False) -> None:
    """Tabla del ChangeSet en orden de ejecución + resumen."""
    for warning in changeset.warnings:
        console.print(f"[yellow]⚠️ Drift: {warning}[/yellow]")

    entries = changeset.entries if show_noop else changeset.changes
    if not entries:
        console.print("[green]✅ Sin cambios. La infraestructura coincide con la declaración.[/green]")
        return

    table = Table(title="Plan de ejecución", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Acción")
    table.add_column("Recurso", style="cyan")
    table.add_column("Motivo", style="white")
    for i, entry in enumerate(entries, 1):
        resource = str(entry.node)
        if entry.deposed_id:
            resource += f" [dim](depuesto {entry.deposed_id})[/dim]"
        reason = entry.reason
        if entry.destructive:
            reason += " [red]⚠ pérdida de datos[/red]"
        if entry.action is Action.REPLACE and entry.create_before_destroy:
            reason += " [dim](crear antes de borrar)[/dim]"
        table.add_row(str(i), ACTION_STYLES[entry.action], resource, reason)
    console.print(table)

    counts = changeset.summary()
    console.print(
        f"[bold]Plan:[/bold] {counts['create']} crear, {counts['update']} actualizar, "
        f"{counts['replace']} reemplazar, {counts['destroy']} destruir"
    )


def render_result(console: Console, result: ApplyResult) -> None:
    if result.ok:
        console.print(Panel.fit(
            f"[bold green]✔ Apply completado[/bold green]\n[dim]{len(result.applied)} operaciones[/dim]",
            border_style="green",
        ))
        return
    lines = ["[bold red]✘ Apply detenido[/bold red]"]
    if result.failed is not None:
        lines.append(f"[bold]Nodo:[/bold] {result.failed}")
    lines += [
        f"[bold]Causa:[/bold] {result.error}",
        f"[bold]Confirmados:[/bold] {len(result.applied)}",
    ]
    if result.skipped:
        lines.append(f"[bold]Sin iniciar:[/bold] {', '.join(str(e.node) for e in result.skipped)}")
    lines.append("[dim]Vuelve a ejecutar plan/apply: lo confirmado no se repite.[/dim]")
    console.print(Panel.fit("\n".join(lines), border_style="red"))


def render_drift(console: Console, report: DriftReport) -> None:
    """Muestra drift en formato legible"""
    for error in report.errors:
        console.print(f"[yellow]⚠️ Sin lectura: {error}[/yellow]")
    if not report.diffs:
        console.print("[green]✅ No se detectó drift. Estado aplicado y real coinciden.[/green]")
        return

    # Agrupar por nodo
    by_node: Dict[str, list] = {}
    for diff in report.diffs:
        by_node.setdefault(str(diff.resource_id), []).append(diff)

    for node, node_diffs in by_node.items():
        table = Table(title=f"Drift detectado: {node}", show_header=True, header_style="bold")
        table.add_column("Campo", style="cyan")
        table.add_column("Aplicado", style="green")
        table.add_column("Real", style="yellow")
        table.add_column("Severidad", style="red")
        for diff in node_diffs:
            actual = "(no existe)" if diff.field == "id" and diff.actual is None else str(diff.actual)
            table.add_row(diff.field, str(diff.desired), actual, SEVERITY_STYLES.get(diff.severity, diff.severity))
        console.print(table)
        console.print()


def render_outputs(console: Console, values: List[OutputValue], show_sensitive: bool = False) -> None:
    if not values:
        return
    table = Table(title="Outputs", show_header=True, header_style="bold cyan")
    table.add_column("Nombre", style="cyan")
    table.add_column("Valor", style="green")
    table.add_column("Descripción", style="dim")
    for value in values:
        shown = value.display(show_sensitive)
        if not isinstance(shown, str):
            shown = json.dumps(shown)
        table.add_row(value.name, shown, value.description or "")
    console.print(table)


def mask_attributes(attributes: Dict[str, Any], schema: Optional[ResourceSchema], show_sensitive: bool) -> Dict[str, Any]:
    if show_sensitive or schema is None:
        return dict(attributes)
    return {k: (SENSITIVE_PLACEHOLDER if k in schema.sensitive else v) for k, v in attributes.items()}


def render_state_list(console: Console, states: Iterable[AppliedState]) -> None:
    states = list(states)
    if not states:
        console.print("[yellow]⚠️ El estado está vacío[/yellow]")
        return
    table = Table(title="Estado aplicado", show_header=True, header_style="bold cyan")
    table.add_column("Recurso", style="cyan")
    table.add_column("Provider", style="green")
    table.add_column("Id remoto", style="white")
    table.add_column("Gen.", justify="right")
    table.add_column("Depuestos", style="yellow")
    for state in states:
        table.add_row(
            str(state.id), state.provider, state.resource_id,
            str(state.generation), ", ".join(state.deposed),
        )
    console.print(table)


def render_graph(console: Console, graph: DependencyGraph) -> None:
    table = Table(title="Orden de aplicación", show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Recurso", style="cyan")
    table.add_column("Depende de", style="white")
    for i, node_id in enumerate(graph.order, 1):
        deps = sorted(str(d) for d in graph.dependencies(node_id))
        table.add_row(str(i), str(node_id), ", ".join(deps) or "[dim]-[/dim]")
    console.print(table)
