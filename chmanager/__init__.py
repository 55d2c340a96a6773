"""
Ad hoc SQL runner and execution profiler for ClickHouse.

Each operation opens its own session, decodes results without knowing the
schema up front, and reconciles client timing with system.query_log.
"""

__version__ = "0.1.0"

__all__ = [
    "config",
    "errors",
    "deadline",
    "values",
    "cursor",
    "decoder",
    "native_client",
    "http_client",
    "session",
    "stats",
    "client",
    "compare",
    "manager",
    "reporting",
    "cli",
]
