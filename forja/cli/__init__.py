"""
CLI de forja (typer). Punto de entrada: forja.cli.app:main
"""
