"""
OS scheduler package.

Simulates a Linux-like dynamic-priority scheduler next to an Android-like
strict-class scheduler, and runs a live importance monitor that reclassifies
real processes into resource groups.
"""

__all__ = ["cli"]
