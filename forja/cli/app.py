"""
Aplicación CLI de forja.

Solo compone comandos; la lógica vive en core y providers.
Los errores tipados del core se muestran aquí y terminan con código 1.
"""

import json
import signal
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel

from forja import __version__
from forja.core.errors import ConfigError, DestructiveChangeError, ForjaError, ValidationError
from forja.core.graph.builder import DependencyGraph
from forja.core.infra.contracts import CancelToken
from forja.core.infra.registry import ProviderRegistry
from forja.core.project.detector import detect_drift
from forja.core.project.executor import Executor
from forja.core.project.loader import Stack, StackLoader
from forja.core.project.outputs import evaluate_outputs
from forja.core.project.planner import ChangeSet, Planner
from forja.core.project.validator import validate_stack
from forja.core.runtime.resolver import state_path
from forja.core.runtime.settings import EngineSettings
from forja.core.runtime.state import StateStore
from forja.core.values import NodeId
from forja.cli.render import (
    mask_attributes,
    render_drift,
    render_graph,
    render_outputs,
    render_plan,
    render_result,
    render_state_list,
)
from forja.providers import SCHEMAS, build_registry


app = typer.Typer(
    name="forja",
    help="forja - Reconciliación de infraestructura declarativa (plan/apply sobre un grafo de recursos)",
    add_completion=False,
    no_args_is_help=True,
)
state_app = typer.Typer(help="Inspección del estado aplicado", no_args_is_help=True)
app.add_typer(state_app, name="state")

console = Console()

DEFAULT_STACK = Path("stacks/inference")

StackArg = typer.Argument(DEFAULT_STACK, help="Directorio del stack (*.yaml)")
VarOpt = typer.Option(None, "--var", help="Valor de variable nombre=valor (repetible)")
VarFileOpt = typer.Option(None, "--var-file", help="Archivo YAML de valores (por defecto forja.vars.yaml)")
StateOpt = typer.Option(None, "--state", help="Documento de estado (por defecto .forja/<stack>.state.json)")
MockOpt = typer.Option(False, "--mock", help="Usa providers simulados en memoria (estado aparte)")


@app.callback()
def main_callback():
    """Carga .env del directorio actual antes de cualquier comando."""
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)


@dataclass
class Session:
    stack_dir: Path
    store: StateStore
    registry: ProviderRegistry
    settings: EngineSettings
    stack: Optional[Stack] = None
    graph: Optional[DependencyGraph] = None


@contextmanager
def _errors() -> Iterator[None]:
    """Convierte errores del core en mensaje + código de salida 1."""
    try:
        yield
    except DestructiveChangeError as e:
        console.print(f"[red]✘ {e}[/red]")
        console.print("[dim]Usa --allow-destructive para confirmar cambios con pérdida de datos.[/dim]")
        raise typer.Exit(code=1)
    except ForjaError as e:
        console.print(f"[red]✘ {e}[/red]")
        raise typer.Exit(code=1)


def parse_vars(pairs: Optional[List[str]]) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for pair in pairs or []:
        name, sep, value = pair.partition("=")
        if not sep or not name.strip():
            raise ConfigError(f"--var inválido: '{pair}' (esperado nombre=valor)")
        values[name.strip()] = value
    return values


def _open(
    stack_dir: Path,
    state: Optional[Path],
    mock: bool,
    var: Optional[List[str]] = None,
    var_file: Optional[Path] = None,
    load: bool = True,
    settings: Optional[EngineSettings] = None,
) -> Session:
    """Estado + registro de providers (+ stack y grafo si load=True)."""
    settings = settings or EngineSettings.from_env()
    path = state or state_path(stack_dir, mock=mock, root=settings.state_dir)
    store = StateStore(path)
    registry = build_registry(mock=mock, console=None, applied=store.snapshot() if mock else ())
    session = Session(stack_dir=stack_dir, store=store, registry=registry, settings=settings)
    if mock:
        console.print("[yellow]🎭 Modo MOCK activado[/yellow]")
    if load:
        session.stack = StackLoader(stack_dir, console=console).load(
            var_values=parse_vars(var), var_file=var_file,
        )
        session.graph = DependencyGraph(session.stack.nodes)
        errors = validate_stack(session.stack, registry)
        if errors:
            raise ValidationError("Stack inválido:\n  - " + "\n  - ".join(errors))
    return session


def _plan(session: Session, refresh: bool) -> ChangeSet:
    drift = None
    if refresh and len(session.store):
        console.print("[dim]Refrescando estado contra los providers...[/dim]")
        drift = detect_drift(
            session.store, session.registry,
            timeout=session.settings.operation_timeout, console=console,
        )
    return Planner(session.store, session.registry).plan(session.stack.nodes, session.graph, drift)


def _execute(session: Session, changeset: ChangeSet, auto_approve: bool, allow_destructive: bool) -> None:
    """Confirma, ejecuta y reporta; Ctrl+C cancela como un fallo."""
    destructive = changeset.destructive_entries
    if destructive and not allow_destructive:
        names = ", ".join(f"{e.node} ({e.action.value})" for e in destructive)
        raise DestructiveChangeError(f"Cambios con pérdida de datos sin confirmar: {names}", nodes=[e.node for e in destructive])
    if not auto_approve and not typer.confirm("¿Aplicar estos cambios?", default=False):
        console.print("[yellow]Cancelado: no se aplicó nada[/yellow]")
        raise typer.Exit(code=1)

    cancel = CancelToken()

    def _interrupt(signum, frame):
        console.print("\n[yellow]⚠️ Cancelando: se espera a las operaciones en curso...[/yellow]")
        cancel.cancel()

    previous = signal.signal(signal.SIGINT, _interrupt)
    try:
        executor = Executor(
            session.store, session.registry,
            nodes=session.stack.nodes if session.stack else (),
            settings=session.settings, console=console, cancel=cancel,
        )
        result = executor.apply(changeset, allow_destructive=allow_destructive)
    finally:
        signal.signal(signal.SIGINT, previous)

    render_result(console, result)
    if not result.ok:
        raise typer.Exit(code=1)


@app.command()
def validate(
    stack_dir: Path = StackArg,
    var: Optional[List[str]] = VarOpt,
    var_file: Optional[Path] = VarFileOpt,
    mock: bool = MockOpt,
):
    """Valida documentos, variables, referencias y tipos sin tocar el estado"""
    with _errors():
        settings = EngineSettings.from_env()
        stack = StackLoader(stack_dir, console=console).load(var_values=parse_vars(var), var_file=var_file)
        DependencyGraph(stack.nodes)
        registry = build_registry(mock=mock)
        errors = validate_stack(stack, registry)
        if errors:
            for error in errors:
                console.print(f"[red]✘ {error}[/red]")
            raise typer.Exit(code=1)
        console.print(f"[green]✔ Stack válido ({len(stack.nodes)} recursos, paralelismo {settings.parallelism})[/green]")


@app.command()
def plan(
    stack_dir: Path = StackArg,
    var: Optional[List[str]] = VarOpt,
    var_file: Optional[Path] = VarFileOpt,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
    refresh: bool = typer.Option(False, "--refresh", help="Detecta drift antes de planificar"),
    show_noop: bool = typer.Option(False, "--show-noop", help="Incluye los recursos sin cambios"),
):
    """Calcula y muestra el ChangeSet sin aplicar nada"""
    with _errors():
        session = _open(stack_dir, state, mock, var, var_file)
        changeset = _plan(session, refresh)
        render_plan(console, changeset, show_noop=show_noop)


@app.command()
def apply(
    stack_dir: Path = StackArg,
    var: Optional[List[str]] = VarOpt,
    var_file: Optional[Path] = VarFileOpt,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
    auto_approve: bool = typer.Option(False, "--auto-approve", "-y", help="No pide confirmación"),
    allow_destructive: bool = typer.Option(False, "--allow-destructive", help="Confirma Replace/Destroy con pérdida de datos"),
    parallelism: Optional[int] = typer.Option(None, "--parallelism", "-p", help="Operaciones simultáneas (FORJA_PARALLELISM)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout por operación en segundos (FORJA_TIMEOUT)"),
    refresh: bool = typer.Option(False, "--refresh", help="Detecta drift antes de planificar"),
    show_sensitive: bool = typer.Option(False, "--show-sensitive", help="Muestra outputs sensibles"),
):
    """Planifica y aplica los cambios"""
    with _errors():
        settings = EngineSettings.from_env(parallelism=parallelism, operation_timeout=timeout)
        session = _open(stack_dir, state, mock, var, var_file, settings=settings)
        changeset = _plan(session, refresh)
        render_plan(console, changeset)
        if changeset.has_changes:
            _execute(session, changeset, auto_approve, allow_destructive)
        render_outputs(console, evaluate_outputs(session.stack.outputs, session.store), show_sensitive)


@app.command()
def destroy(
    stack_dir: Path = StackArg,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
    auto_approve: bool = typer.Option(False, "--auto-approve", "-y", help="No pide confirmación"),
    allow_destructive: bool = typer.Option(False, "--allow-destructive", help="Confirma la destrucción de recursos con datos"),
    parallelism: Optional[int] = typer.Option(None, "--parallelism", "-p", help="Operaciones simultáneas"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Timeout por operación en segundos"),
):
    """Destruye todo lo registrado en el estado (dependientes primero)"""
    with _errors():
        settings = EngineSettings.from_env(parallelism=parallelism, operation_timeout=timeout)
        session = _open(stack_dir, state, mock, load=False, settings=settings)
        changeset = Planner(session.store, session.registry).plan_destroy()
        render_plan(console, changeset)
        if changeset.has_changes:
            _execute(session, changeset, auto_approve, allow_destructive)


@app.command()
def refresh(
    stack_dir: Path = StackArg,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
):
    """Compara el estado aplicado con el estado real (no escribe estado)"""
    with _errors():
        session = _open(stack_dir, state, mock, load=False)
        report = detect_drift(
            session.store, session.registry,
            timeout=session.settings.operation_timeout, console=console,
        )
        render_drift(console, report)


@app.command()
def output(
    name: Optional[str] = typer.Argument(None, help="Output concreto (imprime solo el valor)"),
    stack_dir: Path = typer.Option(DEFAULT_STACK, "--stack", help="Directorio del stack"),
    var: Optional[List[str]] = VarOpt,
    var_file: Optional[Path] = VarFileOpt,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
    show_sensitive: bool = typer.Option(False, "--show-sensitive", help="Muestra valores sensibles"),
    as_json: bool = typer.Option(False, "--json", help="Salida JSON"),
):
    """Muestra los outputs evaluados contra el estado aplicado"""
    with _errors():
        session = _open(stack_dir, state, mock, var, var_file)
        values = evaluate_outputs(session.stack.outputs, session.store)
        if name is not None:
            match = next((v for v in values if v.name == name), None)
            if match is None:
                raise ConfigError(f"Output no declarado: '{name}'")
            shown = match.display(show_sensitive)
            typer.echo(shown if isinstance(shown, str) else json.dumps(shown))
            return
        if as_json:
            typer.echo(json.dumps({v.name: v.display(show_sensitive) for v in values}, indent=2))
            return
        render_outputs(console, values, show_sensitive)


@app.command()
def graph(
    stack_dir: Path = StackArg,
    var: Optional[List[str]] = VarOpt,
    var_file: Optional[Path] = VarFileOpt,
    dot: bool = typer.Option(False, "--dot", help="Salida en formato Graphviz DOT"),
):
    """Muestra el grafo de dependencias y el orden de aplicación"""
    with _errors():
        stack = StackLoader(stack_dir).load(var_values=parse_vars(var), var_file=var_file)
        dependency_graph = DependencyGraph(stack.nodes)
        if dot:
            typer.echo(dependency_graph.to_dot())
            return
        render_graph(console, dependency_graph)


@state_app.command("list")
def state_list(
    stack_dir: Path = StackArg,
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
):
    """Lista los recursos registrados en el estado"""
    with _errors():
        settings = EngineSettings.from_env()
        store = StateStore(state or state_path(stack_dir, mock=mock, root=settings.state_dir))
        render_state_list(console, store.snapshot())


@state_app.command("show")
def state_show(
    node: str = typer.Argument(..., help="Recurso tipo.nombre"),
    stack_dir: Path = typer.Option(DEFAULT_STACK, "--stack", help="Directorio del stack"),
    state: Optional[Path] = StateOpt,
    mock: bool = MockOpt,
    show_sensitive: bool = typer.Option(False, "--show-sensitive", help="Muestra atributos sensibles"),
):
    """Muestra los atributos aplicados de un recurso"""
    with _errors():
        settings = EngineSettings.from_env()
        store = StateStore(state or state_path(stack_dir, mock=mock, root=settings.state_dir))
        node_id = NodeId.parse(node)
        applied = store.get(node_id)
        if applied is None:
            raise ConfigError(f"{node_id} no está en el estado")
        schema = SCHEMAS.get(node_id.type)
        document = {
            "provider": applied.provider,
            "generation": applied.generation,
            "dependencies": [str(d) for d in applied.dependencies],
            "deposed": applied.deposed,
            "attributes": mask_attributes(applied.attributes, schema, show_sensitive),
        }
        console.print(Panel.fit(f"[bold cyan]{node_id}[/bold cyan]", border_style="cyan"))
        console.print_json(json.dumps(document, default=str))


@app.command()
def version():
    """Muestra la versión de forja"""
    with _errors():
        settings = EngineSettings.from_env()
    console.print(Panel.fit(
        "[bold cyan]forja[/bold cyan]\n"
        "[dim]Motor de reconciliación de infraestructura declarativa[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}\n"
        f"[bold]Paralelismo:[/bold] {settings.parallelism}\n"
        f"[bold]Timeout por operación:[/bold] {settings.operation_timeout:g}s",
        border_style="cyan",
    ))


def main():
    app()
