"""
Natural-language workflow generation and execution service.

- Provider orchestration with failover, admission control, caching and retry
- Workflow generation from plain-language descriptions
- Sequential step execution with conditions, loops and per-step error policy
"""

__version__ = "0.1.0"
