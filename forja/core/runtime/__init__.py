"""
Runtime: rutas de estado, configuración del motor y State Store.
"""

from forja.core.runtime.resolver import project_base, state_path, state_root
from forja.core.runtime.settings import EngineSettings
from forja.core.runtime.state import AppliedState, StateDiff, StateStore

__all__ = [
    "state_root",
    "state_path",
    "project_base",
    "EngineSettings",
    "AppliedState",
    "StateDiff",
    "StateStore",
]
