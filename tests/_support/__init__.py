"""Shared test models, schema and helpers."""


def selects(statements: list[str]) -> list[str]:
    """Only the SELECT statements of a query log."""
    return [s for s in statements if s.lstrip().upper().startswith("SELECT")]
