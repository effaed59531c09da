"""
Stacks: configuration groups deployed as separate CloudFormation stacks.
"""

from .base import Stack
from .compute import BackendStack, FrontendStack
from .network import NetworkStack
from .static_assets import StaticAssetsStack

__all__ = [
    "Stack",
    "NetworkStack",
    "FrontendStack",
    "BackendStack",
    "StaticAssetsStack",
]
