"""
Infrastructure constructs (L2) for building cloud resources.
"""

from .compute import ServiceConstruct
from .distribution import DistributionConstruct
from .network import NetworkConstruct, NetworkHandles, allocate_subnet_cidrs
from .storage import StorageConstruct

__all__ = [
    "NetworkConstruct",
    "NetworkHandles",
    "allocate_subnet_cidrs",
    "ServiceConstruct",
    "StorageConstruct",
    "DistributionConstruct",
]
