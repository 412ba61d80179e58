"""
instruction-spine - governed catalog of versioned instruction documents.

The package is layered the same way every spine is:

- instruction_spine.core: errors, logging, settings, hashing, transports
- instruction_spine.catalog: persistence, classification, integrity
- instruction_spine.usage: rotating usage buckets
- instruction_spine.ops: transport-agnostic operations (OperationResult)
- instruction_spine.mcp / instruction_spine.cli: outer surfaces
"""

__version__ = "1.0.0"
