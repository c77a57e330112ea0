"""
Resolución de rutas de estado y proyecto.

- state_root(): directorio de estado de forja (FORJA_STATE_DIR o <proyecto>/.forja).
- project_base(): directorio base del proyecto (donde vive .forja o forja.vars.yaml).
- state_path(): documento de estado de un stack concreto.

El core no escribe en disco aquí; solo expone rutas. Quien escribe es el StateStore.
"""

import os
from pathlib import Path
from typing import Optional


FORJA_DIR_NAME = ".forja"
STATE_SUFFIX = ".state.json"
MOCK_STATE_SUFFIX = ".mock.state.json"


def project_base(start: Optional[Path] = None) -> Optional[Path]:
    """
    Directorio base del proyecto.
    Resolución: FORJA_PROJECT_ROOT → primer ancestro (desde start o cwd) con .forja/; si no, None.
    """
    explicit = os.environ.get("FORJA_PROJECT_ROOT", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()

    origin = Path(start).resolve() if start else Path.cwd().resolve()
    for d in [origin] + list(origin.parents):
        if (d / FORJA_DIR_NAME).is_dir():
            return d
    return None


def state_root(start: Optional[Path] = None) -> Path:
    """
    Directorio raíz del estado.
    FORJA_STATE_DIR si está definido; si no, <project_base>/.forja o ./.forja.
    """
    explicit = os.environ.get("FORJA_STATE_DIR", "").strip()
    if explicit:
        return Path(explicit).expanduser().resolve()
    base = project_base(start) or Path.cwd().resolve()
    return base / FORJA_DIR_NAME


def state_path(stack_dir: Path, mock: bool = False, root: Optional[Path] = None) -> Path:
    """Documento de estado de un stack; el modo mock usa un archivo aparte."""
    suffix = MOCK_STATE_SUFFIX if mock else STATE_SUFFIX
    base = Path(root) if root else state_root(stack_dir)
    return base / f"{Path(stack_dir).resolve().name}{suffix}"
