"""Functions the assistant can call during a conversation."""

from taskflow.tools.registry import FunctionRegistry, get_function_registry

__all__ = ["FunctionRegistry", "get_function_registry"]
