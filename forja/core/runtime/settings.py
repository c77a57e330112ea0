"""
Configuración del motor (paralelismo, timeouts, directorio de estado).

Se construye desde el entorno (FORJA_*) y la CLI sobrescribe lo que reciba por opciones.
"""

import os
from pathlib import Path
from typing import Mapping, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from forja.core.errors import ConfigError


class EngineSettings(BaseModel):
    parallelism: int = Field(1, ge=1, le=64, description="Operaciones de provider simultáneas (1 = secuencial)")
    operation_timeout: float = Field(1800.0, gt=0, description="Timeout por operación de provider, en segundos")
    poll_interval: float = Field(0.2, gt=0, description="Intervalo de sondeo del executor, en segundos")
    state_dir: Optional[Path] = Field(None, description="Directorio de estado (por defecto .forja)")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "EngineSettings":
        """Lee FORJA_PARALLELISM, FORJA_TIMEOUT y FORJA_STATE_DIR; overrides=None se ignoran."""
        env = os.environ if environ is None else environ
        data = {}
        if env.get("FORJA_PARALLELISM"):
            data["parallelism"] = env["FORJA_PARALLELISM"]
        if env.get("FORJA_TIMEOUT"):
            data["operation_timeout"] = env["FORJA_TIMEOUT"]
        if env.get("FORJA_STATE_DIR"):
            data["state_dir"] = env["FORJA_STATE_DIR"]
        data.update({k: v for k, v in overrides.items() if v is not None})
        try:
            return cls(**data)
        except PydanticValidationError as e:
            raise ConfigError(f"Configuración inválida: {e}")
