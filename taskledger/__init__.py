"""
taskledger: event-sourced task, sprint and project tracking

Every change is an immutable, per-aggregate ordered fact; current state is a
projection rebuilt from the fact log. Includes reconciliation against GitHub
Issues.
"""

__version__ = "0.1.0"
__all__ = [
    "__version__",
]
