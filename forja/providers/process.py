"""
Ejecución de CLIs externos (gcloud, kubectl, helm) con timeout y cancelación.

El proceso se sondea en intervalos cortos: si el contexto se cancela o vence
su timeout, el proceso se mata y se lanza OperationCancelled / ProviderTimeoutError.
"""

import json
import subprocess
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from rich.console import Console

from forja.core.errors import OperationCancelled, ProviderError, ProviderTimeoutError
from forja.core.infra.contracts import OperationContext


POLL_SECONDS = 0.5


@dataclass
class CommandResult:
    args: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _kill(proc: subprocess.Popen) -> None:
    proc.kill()
    proc.communicate()


def run_command(
    args: Sequence[str],
    ctx: Optional[OperationContext] = None,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    check: bool = True,
    console: Optional[Console] = None,
) -> CommandResult:
    """
    Ejecuta un comando y espera su fin respetando el contexto.

    Args:
        args: Comando y argumentos
        ctx: Contexto de la operación (timeout/cancelación); sin ctx espera sin límite
        input_text: Texto enviado por stdin
        env: Entorno completo del proceso (por defecto el heredado)
        check: Si True, un código de salida != 0 lanza ProviderError
        console: Console de Rich para mostrar el comando (modo verbose)

    Returns:
        CommandResult con stdout/stderr
    """
    args = [str(a) for a in args]
    node = ctx.node if ctx else None
    if console:
        console.print(f"[dim]$ {' '.join(args)}[/dim]")

    try:
        proc = subprocess.Popen(
            args,
            stdin=subprocess.PIPE if input_text is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=dict(env) if env is not None else None,
        )
    except FileNotFoundError as e:
        raise ProviderError(f"Comando {args[0]} no encontrado. Instala {args[0]}", node=node, cause=e)

    pending_input = input_text
    while True:
        step = POLL_SECONDS
        if ctx and ctx.remaining is not None:
            step = max(0.01, min(step, ctx.remaining))
        try:
            stdout, stderr = proc.communicate(input=pending_input, timeout=step)
            break
        except subprocess.TimeoutExpired:
            # communicate() no admite reenviar stdin tras el primer intento
            pending_input = None
            if ctx and ctx.cancelled:
                _kill(proc)
                raise OperationCancelled(f"{args[0]} cancelado", node=node)
            if ctx and ctx.expired:
                _kill(proc)
                raise ProviderTimeoutError(f"{args[0]} superó {ctx.timeout:g}s", node=node)

    result = CommandResult(args=args, returncode=proc.returncode, stdout=stdout or "", stderr=stderr or "")
    if check and not result.ok:
        detail = result.stderr.strip() or result.stdout.strip() or f"código {result.returncode}"
        raise ProviderError(f"{args[0]} falló: {detail}", node=node)
    return result


def run_json(
    args: Sequence[str],
    ctx: Optional[OperationContext] = None,
    input_text: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    console: Optional[Console] = None,
) -> Any:
    """Ejecuta un comando con salida JSON y la devuelve parseada (None si stdout vacío)."""
    result = run_command(args, ctx=ctx, input_text=input_text, env=env, console=console)
    text = result.stdout.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        node = ctx.node if ctx else None
        raise ProviderError(f"{args[0]} devolvió JSON inválido: {e}", node=node, cause=e)


def is_not_found(error: ProviderError) -> bool:
    """Heurística común de gcloud/kubectl/helm para 'el objeto no existe'."""
    text = str(error).lower()
    return any(marker in text for marker in ("not_found", "not found", "notfound", "was not found", "404"))


def extract(document: Any, path: str) -> Any:
    """Navega un JSON por ruta con puntos (claves o índices); None si falta algo."""
    current = document
    for segment in path.split("."):
        if isinstance(current, dict):
            current = current.get(segment)
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            return None
        if current is None:
            return None
    return current


def pick(document: Mapping[str, Any], paths: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Extrae campos de un documento: {nombre: ruta} o {nombre: (ruta, conversor)}.
    Los campos ausentes se omiten.
    """
    out: Dict[str, Any] = {}
    for name, spec in paths.items():
        path, convert = (spec, None) if isinstance(spec, str) else spec
        value = extract(document, path)
        if value is None:
            continue
        out[name] = convert(value) if convert else value
    return out
