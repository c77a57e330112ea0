"""forja - motor de reconciliación declarativa de infraestructura."""

__version__ = "0.3.0"
