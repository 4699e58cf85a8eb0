"""
Static checks on KQL text — refusal of management commands before a query
leaves the process, and performance hints attached to results.
"""

from __future__ import annotations

_MANAGEMENT_COMMANDS = (".drop", ".delete", ".clear", ".set-or-replace")

LARGE_RESULT_ROWS = 10_000


def validate_query(kql: str) -> list[str]:
    """Return reasons to refuse the query (empty list when it may run)."""
    if not kql or not kql.strip():
        return ["Query cannot be empty"]

    errors = []
    lowered = kql.lower()
    for command in _MANAGEMENT_COMMANDS:
        if command in lowered:
            errors.append(f"Query contains potentially dangerous operation: {command}")
    return errors


def recommendations(kql: str, row_count: int) -> list[str]:
    hints = []
    if "where" in kql and "| where" not in kql:
        hints.append('Consider using the pipe operator before "where" for better performance')
    if "*" in kql:
        hints.append("Specify explicit columns instead of * for better performance")
    if "ago(" not in kql:
        hints.append("Consider adding a time range filter (e.g., | where timestamp > ago(1d))")
    if row_count > LARGE_RESULT_ROWS:
        hints.append('Large result set. Consider adding "| take 100" or similar limit')
    return hints
