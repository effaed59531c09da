"""
Network stack: VPC, subnet tiers, routing and security groups.
"""

from typing import TYPE_CHECKING, Any

from ..constructs.network import NetworkConstruct, NetworkHandles
from .base import Stack

if TYPE_CHECKING:
    from ..app import App


class NetworkStack(Stack):
    """Root stack. Exports the VPC, subnet IDs per tier and security group IDs."""

    description = "VPC, subnet tiers and security group chain"

    def __init__(self, app: "App", stack_id: str = "network"):
        super().__init__(app, stack_id)

        backend = self.config.backend
        backend_listener_port = (
            None
            if backend.get("load_balancer", "none") == "none"
            else backend.get("listener_port", 80)
        )

        self.network = NetworkConstruct(
            self.template,
            self.config.network,
            self.config.environment,
            frontend_port=self.config.frontend["container_port"],
            backend_port=backend["container_port"],
            backend_listener_port=backend_listener_port,
        )

    def import_handles(self, consumer: Stack) -> NetworkHandles:
        """Build network handles for a consuming stack from this stack's exports."""
        return ImportedNetworkHandles(self, consumer)


class ImportedNetworkHandles(NetworkHandles):
    """
    Network handles backed by the network stack's exports.

    Each export is imported the first time the consumer asks for it, so the
    consumer only records imports (and the dependency on the network stack)
    for values its template actually references.
    """

    def __init__(self, network: NetworkStack, consumer: Stack):
        super().__init__(vpc_id=None, public_tier=network.network.public_tier)
        self.producer = network
        self.consumer = consumer
        self.tiers = list(network.network.subnets)
        self.roles = list(network.network.security_groups)

    def vpc(self) -> Any:
        if self.vpc_id is None:
            self.vpc_id = self.consumer.import_output(self.producer, "VpcId")
        return self.vpc_id

    def subnets(self, tier: str) -> Any:
        if tier not in self.tiers:
            raise KeyError(f"Unknown subnet tier: {tier}")
        if tier not in self.subnet_ids:
            self.subnet_ids[tier] = self.consumer.import_list(
                self.producer, f"{tier}SubnetIds"
            )
        return self.subnet_ids[tier]

    def security_group(self, role: str) -> Any:
        if role not in self.roles:
            raise KeyError(f"Unknown security group: {role}")
        if role not in self.security_group_ids:
            self.security_group_ids[role] = self.consumer.import_output(
                self.producer, NetworkConstruct.security_group_output_name(role)
            )
        return self.security_group_ids[role]
