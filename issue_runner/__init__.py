"""
Issue Runner - drive a coding agent through tracked work-item operations.

Allocates a working folder per operation, assembles the agent's instructions,
supervises the agent process, parses its output into reports, and publishes
validated results back to the issue tracker.
"""

__version__ = "0.4.0"
__all__ = ["__version__"]
