"""
Command line interface for synthesizing, validating and deploying the stacks.
"""

from .__main__ import cli

__all__ = ["cli"]
