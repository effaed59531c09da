"""
Network constructs for VPC, subnet tiers, routing and the security group chain.
"""

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from troposphere import (
    Export,
    GetAtt,
    GetAZs,
    Join,
    Output,
    Ref,
    Select,
    Sub,
    Tags,
    Template,
    ec2,
)

logger = logging.getLogger(__name__)

ANY_IPV4 = "0.0.0.0/0"

# Placeholder rule that removes the implicit allow-all egress of a new group
DISALLOW_ALL_EGRESS = {
    "CidrIp": "255.255.255.255/32",
    "IpProtocol": "icmp",
    "FromPort": 252,
    "ToPort": 86,
    "Description": "Disallow all traffic",
}


@dataclass
class NetworkHandles:
    """References to network resources, usable from any stack."""

    vpc_id: Any
    subnet_ids: Dict[str, Any] = field(default_factory=dict)
    security_group_ids: Dict[str, Any] = field(default_factory=dict)
    public_tier: str = "Public"

    def vpc(self) -> Any:
        return self.vpc_id

    def subnets(self, tier: str) -> Any:
        if tier not in self.subnet_ids:
            raise KeyError(f"Unknown subnet tier: {tier}")
        return self.subnet_ids[tier]

    def security_group(self, role: str) -> Any:
        if role not in self.security_group_ids:
            raise KeyError(f"Unknown security group: {role}")
        return self.security_group_ids[role]


def allocate_subnet_cidrs(
    vpc_cidr: str, tiers: List[Dict[str, Any]], az_count: int
) -> Dict[str, List[str]]:
    """
    Carve subnet blocks out of the VPC block.

    Tiers are allocated in declaration order, one subnet per AZ each, every
    block aligned to its own mask.

    Args:
        vpc_cidr: VPC CIDR block (e.g. "10.0.0.0/16")
        tiers: Tier configs with "name" and "cidr_mask"
        az_count: Number of availability zones

    Returns:
        Mapping of tier name to its subnet CIDRs, one per AZ

    Raises:
        ValueError: If a mask is wider than the VPC or the tiers do not fit
    """
    vpc = ipaddress.ip_network(vpc_cidr)
    cursor = int(vpc.network_address)
    allocation: Dict[str, List[str]] = {}

    for tier in tiers:
        mask = tier["cidr_mask"]
        if mask < vpc.prefixlen:
            raise ValueError(
                f"Subnet tier {tier['name']} mask /{mask} is larger than VPC {vpc_cidr}"
            )
        block_size = 2 ** (vpc.max_prefixlen - mask)
        cidrs = []
        for _ in range(az_count):
            cursor = -(-cursor // block_size) * block_size
            subnet = ipaddress.ip_network(f"{ipaddress.ip_address(cursor)}/{mask}")
            if not subnet.subnet_of(vpc):
                raise ValueError(
                    f"Subnet tier {tier['name']} does not fit in VPC {vpc_cidr} "
                    f"({len(tiers)} tiers x {az_count} AZs)"
                )
            cidrs.append(str(subnet))
            cursor = int(subnet.broadcast_address) + 1
        allocation[tier["name"]] = cidrs

    return allocation


class NetworkConstruct:
    """
    L2 Construct for network infrastructure.
    Creates a VPC with named subnet tiers across multiple AZs and the
    security group chain internet -> ALB -> frontend -> backend.
    """

    def __init__(
        self,
        template: Template,
        config: Dict[str, Any],
        environment: str,
        frontend_port: int = 80,
        backend_port: int = 8080,
        backend_listener_port: Optional[int] = 80,
    ):
        """
        Initialize network construct.

        Args:
            template: CloudFormation template to add resources to
            config: Network configuration section
            environment: Deployment environment (dev/staging/prod)
            frontend_port: Port the frontend container listens on
            backend_port: Port the backend container listens on
            backend_listener_port: Listener port of the internal backend
                load balancer, or None when the backend has no load balancer
        """
        self.template = template
        self.config = config
        self.environment = environment
        self.frontend_port = frontend_port
        self.backend_port = backend_port
        self.backend_listener_port = backend_listener_port
        self.resources: Dict[str, Any] = {}
        self.security_groups: Dict[str, ec2.SecurityGroup] = {}
        self.rules: List[Union[ec2.SecurityGroupIngress, ec2.SecurityGroupEgress]] = []

        self._create_vpc()
        self._create_subnets()
        self._create_internet_gateway()
        self._create_nat_gateways()
        self._create_route_tables()
        self._create_security_groups()
        self._create_outputs()

    def _create_vpc(self) -> None:
        """Create VPC with DNS enabled."""
        self.vpc = self.template.add_resource(
            ec2.VPC(
                "VPC",
                CidrBlock=self.config.get("cidr", "10.0.0.0/16"),
                EnableDnsHostnames=self.config.get("enable_dns_hostnames", True),
                EnableDnsSupport=self.config.get("enable_dns", True),
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-vpc"),
                    Environment=self.environment,
                ),
            )
        )
        self.resources["vpc"] = self.vpc

    def _create_subnets(self) -> None:
        """Create one subnet per AZ for every configured tier."""
        self.az_count = self.config.get("max_azs", 2)
        self.tiers = self.config.get("subnets", [])
        allocation = allocate_subnet_cidrs(
            self.config.get("cidr", "10.0.0.0/16"), self.tiers, self.az_count
        )

        self.subnets: Dict[str, List[ec2.Subnet]] = {}
        for tier in self.tiers:
            name = tier["name"]
            is_public = tier["type"] == "public"
            tier_subnets = []
            for idx, cidr in enumerate(allocation[name]):
                subnet = self.template.add_resource(
                    ec2.Subnet(
                        f"{name}Subnet{idx+1}",
                        VpcId=Ref(self.vpc),
                        CidrBlock=cidr,
                        AvailabilityZone=Select(idx, GetAZs("")),
                        MapPublicIpOnLaunch=is_public,
                        Tags=Tags(
                            Name=Sub(f"${{AWS::StackName}}-{name.lower()}-{idx+1}"),
                            Tier=name,
                            Type=tier["type"],
                            Environment=self.environment,
                        ),
                    )
                )
                tier_subnets.append(subnet)
            self.subnets[name] = tier_subnets
            logger.debug(f"Subnet tier {name}: {allocation[name]}")

        self.public_tier = next(t["name"] for t in self.tiers if t["type"] == "public")
        self.resources["subnets"] = self.subnets

    def _create_internet_gateway(self) -> None:
        """Create and attach internet gateway."""
        self.igw = self.template.add_resource(
            ec2.InternetGateway(
                "InternetGateway",
                Tags=Tags(Name=Sub("${AWS::StackName}-igw"), Environment=self.environment),
            )
        )

        self.igw_attachment = self.template.add_resource(
            ec2.VPCGatewayAttachment(
                "VPCGatewayAttachment",
                VpcId=Ref(self.vpc),
                InternetGatewayId=Ref(self.igw),
            )
        )

    def _create_nat_gateways(self) -> None:
        """Create NAT gateways in the public tier for private egress."""
        self.nat_gateways: List[ec2.NatGateway] = []
        self.elastic_ips: List[ec2.EIP] = []

        has_private = any(t["type"] == "private" for t in self.tiers)
        num_nats = min(self.config.get("nat_gateways", self.az_count), self.az_count)
        if not has_private or num_nats == 0:
            return

        public_subnets = self.subnets[self.public_tier]
        for idx in range(num_nats):
            eip = self.template.add_resource(
                ec2.EIP(
                    f"NATGatewayEIP{idx+1}",
                    Domain="vpc",
                    DependsOn=self.igw_attachment.title,
                    Tags=Tags(
                        Name=Sub(f"${{AWS::StackName}}-nat-eip-{idx+1}"),
                        Environment=self.environment,
                    ),
                )
            )
            self.elastic_ips.append(eip)

            nat = self.template.add_resource(
                ec2.NatGateway(
                    f"NATGateway{idx+1}",
                    AllocationId=GetAtt(eip, "AllocationId"),
                    SubnetId=Ref(public_subnets[idx]),
                    Tags=Tags(
                        Name=Sub(f"${{AWS::StackName}}-nat-{idx+1}"),
                        Environment=self.environment,
                    ),
                )
            )
            self.nat_gateways.append(nat)

    def _create_route_tables(self) -> None:
        """Create route tables: public to the IGW, private to a NAT in the same AZ."""
        self.public_route_table = self.template.add_resource(
            ec2.RouteTable(
                "PublicRouteTable",
                VpcId=Ref(self.vpc),
                Tags=Tags(
                    Name=Sub("${AWS::StackName}-public-rt"),
                    Type="public",
                    Environment=self.environment,
                ),
            )
        )

        self.template.add_resource(
            ec2.Route(
                "PublicRoute",
                DependsOn=self.igw_attachment.title,
                RouteTableId=Ref(self.public_route_table),
                DestinationCidrBlock=ANY_IPV4,
                GatewayId=Ref(self.igw),
            )
        )

        self.private_route_tables: List[ec2.RouteTable] = []
        for tier in self.tiers:
            name = tier["name"]
            for idx, subnet in enumerate(self.subnets[name]):
                if tier["type"] == "public":
                    route_table = self.public_route_table
                else:
                    route_table = self._create_private_route_table(name, idx)

                self.template.add_resource(
                    ec2.SubnetRouteTableAssociation(
                        f"{name}Subnet{idx+1}RouteTableAssociation",
                        SubnetId=Ref(subnet),
                        RouteTableId=Ref(route_table),
                    )
                )

    def _create_private_route_table(self, tier_name: str, idx: int) -> ec2.RouteTable:
        route_table = self.template.add_resource(
            ec2.RouteTable(
                f"{tier_name}RouteTable{idx+1}",
                VpcId=Ref(self.vpc),
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{tier_name.lower()}-rt-{idx+1}"),
                    Type="private",
                    Environment=self.environment,
                ),
            )
        )
        self.private_route_tables.append(route_table)

        if self.nat_gateways:
            nat = self.nat_gateways[idx % len(self.nat_gateways)]
            self.template.add_resource(
                ec2.Route(
                    f"{tier_name}Route{idx+1}",
                    RouteTableId=Ref(route_table),
                    DestinationCidrBlock=ANY_IPV4,
                    NatGatewayId=Ref(nat),
                )
            )
        return route_table

    def _new_security_group(self, role: str, title: str, description: str) -> ec2.SecurityGroup:
        group = self.template.add_resource(
            ec2.SecurityGroup(
                title,
                GroupDescription=description,
                VpcId=Ref(self.vpc),
                SecurityGroupEgress=[ec2.SecurityGroupRule(**DISALLOW_ALL_EGRESS)],
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{role.replace('_', '-')}-sg"),
                    Environment=self.environment,
                ),
            )
        )
        self.security_groups[role] = group
        return group

    def _rule_title(
        self, group: ec2.SecurityGroup, direction: str, protocol: str, port: int, peer
    ) -> str:
        peer_name = "Anywhere" if peer == ANY_IPV4 else (
            peer.title if isinstance(peer, ec2.SecurityGroup) else
            "".join(ch for ch in str(peer) if ch.isalnum())
        )
        return f"{group.title}{direction}{protocol.title()}{port}{peer_name}"

    def add_ingress_rule(
        self,
        group: ec2.SecurityGroup,
        peer: Union[str, ec2.SecurityGroup],
        port: int,
        description: str,
        protocol: str = "tcp",
    ) -> ec2.SecurityGroupIngress:
        """Allow inbound traffic on one port from a CIDR or another group."""
        props: Dict[str, Any] = {
            "GroupId": GetAtt(group, "GroupId"),
            "IpProtocol": protocol,
            "FromPort": port,
            "ToPort": port,
            "Description": description,
        }
        if isinstance(peer, ec2.SecurityGroup):
            props["SourceSecurityGroupId"] = GetAtt(peer, "GroupId")
        else:
            props["CidrIp"] = peer

        rule = self.template.add_resource(
            ec2.SecurityGroupIngress(
                self._rule_title(group, "Ingress", protocol, port, peer), **props
            )
        )
        self.rules.append(rule)
        return rule

    def add_egress_rule(
        self,
        group: ec2.SecurityGroup,
        peer: Union[str, ec2.SecurityGroup],
        port: int,
        description: str,
        protocol: str = "tcp",
    ) -> ec2.SecurityGroupEgress:
        """Allow outbound traffic on one port to a CIDR or another group."""
        props: Dict[str, Any] = {
            "GroupId": GetAtt(group, "GroupId"),
            "IpProtocol": protocol,
            "FromPort": port,
            "ToPort": port,
            "Description": description,
        }
        if isinstance(peer, ec2.SecurityGroup):
            props["DestinationSecurityGroupId"] = GetAtt(peer, "GroupId")
        else:
            props["CidrIp"] = peer

        rule = self.template.add_resource(
            ec2.SecurityGroupEgress(
                self._rule_title(group, "Egress", protocol, port, peer), **props
            )
        )
        self.rules.append(rule)
        return rule

    def _allow_baseline_egress(self, group: ec2.SecurityGroup) -> None:
        """HTTPS for image pulls and AWS APIs, DNS for name resolution."""
        self.add_egress_rule(group, ANY_IPV4, 443, "Allow HTTPS outbound")
        self.add_egress_rule(group, ANY_IPV4, 53, "Allow DNS TCP")
        self.add_egress_rule(group, ANY_IPV4, 53, "Allow DNS UDP", protocol="udp")

    def _create_security_groups(self) -> None:
        """Create the security group chain with explicit, port-scoped rules."""
        alb_sg = self._new_security_group(
            "alb", "AlbSecurityGroup", "Security group for the public ALB"
        )
        frontend_sg = self._new_security_group(
            "frontend", "FrontendSecurityGroup", "Security group for frontend ECS service"
        )
        backend_sg = self._new_security_group(
            "backend", "BackendSecurityGroup", "Security group for backend ECS service"
        )

        self.add_ingress_rule(alb_sg, ANY_IPV4, 80, "Allow HTTP from Internet")
        self.add_ingress_rule(alb_sg, ANY_IPV4, 443, "Allow HTTPS from Internet")
        self.add_egress_rule(
            alb_sg, frontend_sg, self.frontend_port, "Allow ALB to Frontend ECS"
        )
        self.add_ingress_rule(
            frontend_sg, alb_sg, self.frontend_port, "Allow traffic from ALB"
        )

        if self.backend_listener_port is not None:
            backend_alb_sg = self._new_security_group(
                "backend_alb",
                "BackendAlbSecurityGroup",
                "Security group for the internal backend ALB",
            )
            self.add_egress_rule(
                frontend_sg,
                backend_alb_sg,
                self.backend_listener_port,
                "Allow Frontend to Backend ALB",
            )
            self.add_ingress_rule(
                backend_alb_sg,
                frontend_sg,
                self.backend_listener_port,
                "Allow HTTP from frontend ECS tasks only",
            )
            self.add_egress_rule(
                backend_alb_sg, backend_sg, self.backend_port, "Allow Backend ALB to Backend ECS"
            )
            self.add_ingress_rule(
                backend_sg, backend_alb_sg, self.backend_port, "Allow traffic from backend ALB"
            )
        else:
            self.add_egress_rule(
                frontend_sg, backend_sg, self.backend_port, "Allow Frontend to Backend API"
            )
            self.add_ingress_rule(
                backend_sg, frontend_sg, self.backend_port, "Allow FE to BE"
            )

        self._allow_baseline_egress(frontend_sg)
        self._allow_baseline_egress(backend_sg)

        self.resources["security_groups"] = self.security_groups

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs."""
        outputs = [
            ("VpcId", Ref(self.vpc), "VPC ID"),
            ("VpcCidr", GetAtt(self.vpc, "CidrBlock"), "VPC CIDR block"),
        ]
        for tier in self.tiers:
            name = tier["name"]
            outputs.append(
                (
                    f"{name}SubnetIds",
                    Join(",", [Ref(s) for s in self.subnets[name]]),
                    f"{name} subnet IDs",
                )
            )
        for role, group in self.security_groups.items():
            outputs.append(
                (
                    self.security_group_output_name(role),
                    GetAtt(group, "GroupId"),
                    f"{group.GroupDescription} ID",
                )
            )

        for name, value, description in outputs:
            self.template.add_output(
                Output(
                    name,
                    Value=value,
                    Description=description,
                    Export=Export(Sub(f"${{AWS::StackName}}-{name}")),
                )
            )

    @staticmethod
    def security_group_output_name(role: str) -> str:
        return "".join(part.title() for part in role.split("_")) + "SecurityGroupId"

    def get_subnet_ids(self, tier: str) -> List[Ref]:
        """Get subnet IDs of a tier."""
        return [Ref(subnet) for subnet in self.subnets[tier]]

    def get_security_group_id(self, role: str) -> GetAtt:
        """Get a security group ID by role."""
        return GetAtt(self.security_groups[role], "GroupId")

    def get_handles(self) -> NetworkHandles:
        """Get handles for consumers in the same template."""
        return NetworkHandles(
            vpc_id=Ref(self.vpc),
            subnet_ids={tier: self.get_subnet_ids(tier) for tier in self.subnets},
            security_group_ids={
                role: self.get_security_group_id(role) for role in self.security_groups
            },
            public_tier=self.public_tier,
        )
