"""Grafo de dependencias y orden topológico."""

from forja.core.graph.builder import DependencyGraph, topological_sort

__all__ = ["DependencyGraph", "topological_sort"]
