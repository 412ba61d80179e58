"""
Operations layer -- transport-agnostic functions over the catalog engine.

- All functions accept ``OperationContext`` as first argument
- All functions return ``OperationResult[T]`` (never raise)
- Every call records one usage event
- Mutations are refused unless ``enable_mutation`` is set

Usage::

    from instruction_spine.ops import OperationContext, build_services
    from instruction_spine.ops.instructions import add_instruction

    ctx = OperationContext(services=build_services(settings))
    result = await add_instruction(ctx, {"id": "x1", "title": "X", "body": "hello", "priority": 5})
    assert result.success
"""

from instruction_spine.ops.context import CatalogServices, OperationContext, build_services
from instruction_spine.ops.dispatch import dispatch
from instruction_spine.ops.result import OperationError, OperationResult

__all__ = [
    "CatalogServices",
    "OperationContext",
    "OperationError",
    "OperationResult",
    "build_services",
    "dispatch",
]
