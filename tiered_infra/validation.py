"""
Static checks over the synthesized stacks.

Every check takes an App, inspects the rendered templates and returns a list
of error messages. An empty list means the check passed.
"""

import ipaddress
import json
import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .app import App, build_app
from .constructs.distribution import (
    CLOUDFRONT_SERVICE_PRINCIPAL,
    HTTPS_VIEWER_POLICIES,
    READ_ONLY_METHOD_SETS,
)
from .constructs.network import ANY_IPV4

logger = logging.getLogger(__name__)

# (protocol, port) pairs allowed to egress to any IPv4 address
OPEN_EGRESS = {("tcp", 443), ("tcp", 53), ("udp", 53)}
# Ports the internet may reach on the public load balancer
OPEN_INGRESS = {("tcp", 80), ("tcp", 443)}

PEER_KEYS = (
    "CidrIp",
    "CidrIpv6",
    "SourceSecurityGroupId",
    "DestinationSecurityGroupId",
    "SourcePrefixListId",
    "DestinationPrefixListId",
)

PUBLIC_ACCESS_BLOCK_FLAGS = (
    "BlockPublicAcls",
    "BlockPublicPolicy",
    "IgnorePublicAcls",
    "RestrictPublicBuckets",
)


def _resources(template: Dict[str, Any], resource_type: str) -> Iterator[Tuple[str, Dict]]:
    for logical_id, resource in template.get("Resources", {}).items():
        if resource.get("Type") == resource_type:
            yield logical_id, resource.get("Properties", {})


def _security_group_rules(template: Dict[str, Any]) -> Iterator[Tuple[str, str, Dict]]:
    """Yield (location, direction, rule) for standalone and inline rules."""
    for logical_id, props in _resources(template, "AWS::EC2::SecurityGroupIngress"):
        yield logical_id, "ingress", props
    for logical_id, props in _resources(template, "AWS::EC2::SecurityGroupEgress"):
        yield logical_id, "egress", props
    for logical_id, props in _resources(template, "AWS::EC2::SecurityGroup"):
        for idx, rule in enumerate(props.get("SecurityGroupIngress", [])):
            yield f"{logical_id}.SecurityGroupIngress[{idx}]", "ingress", rule
        for idx, rule in enumerate(props.get("SecurityGroupEgress", [])):
            yield f"{logical_id}.SecurityGroupEgress[{idx}]", "egress", rule


def _find_imports(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == "Fn::ImportValue" and isinstance(value, str):
                yield value
            else:
                yield from _find_imports(value)
    elif isinstance(node, list):
        for item in node:
            yield from _find_imports(item)


def _resolve_export_name(export: Any, stack_name: str) -> Optional[str]:
    name = export.get("Name") if isinstance(export, dict) else None
    if isinstance(name, dict) and "Fn::Sub" in name and isinstance(name["Fn::Sub"], str):
        return name["Fn::Sub"].replace("${AWS::StackName}", stack_name)
    if isinstance(name, str):
        return name
    return None


def check_security_group_rules(app: App) -> List[str]:
    """Every rule names a protocol, a port range and a peer; open CIDRs stay narrow."""
    errors: List[str] = []
    for stack in app.stacks.values():
        template = stack.to_dict()
        for location, direction, rule in _security_group_rules(template):
            where = f"{stack.stack_name}/{location}"
            protocol = str(rule.get("IpProtocol", "")).lower()

            if protocol in ("", "-1", "all"):
                errors.append(f"{where}: rule allows all protocols")
                continue
            if "FromPort" not in rule or "ToPort" not in rule:
                errors.append(f"{where}: rule has no port range")
                continue
            if protocol in ("tcp", "udp") and (rule["FromPort"], rule["ToPort"]) == (0, 65535):
                errors.append(f"{where}: rule opens every port")
            if not any(key in rule for key in PEER_KEYS):
                errors.append(f"{where}: rule has no peer")
                continue

            if rule.get("CidrIp") != ANY_IPV4:
                continue

            allowed = OPEN_EGRESS if direction == "egress" else OPEN_INGRESS
            if rule["FromPort"] != rule["ToPort"] or (protocol, rule["FromPort"]) not in allowed:
                errors.append(
                    f"{where}: {direction} to {ANY_IPV4} on {protocol}/"
                    f"{rule['FromPort']}-{rule['ToPort']} is not permitted"
                )
    return errors


def check_subnet_allocation(app: App) -> List[str]:
    """Subnets fit inside their VPC and never overlap."""
    errors: List[str] = []
    for stack in app.stacks.values():
        template = stack.to_dict()
        vpcs = {
            logical_id: ipaddress.ip_network(props["CidrBlock"])
            for logical_id, props in _resources(template, "AWS::EC2::VPC")
        }
        subnets = []
        for logical_id, props in _resources(template, "AWS::EC2::Subnet"):
            block = ipaddress.ip_network(props["CidrBlock"])
            vpc_id = props.get("VpcId", {}).get("Ref")
            vpc = vpcs.get(vpc_id)
            if vpc is None:
                errors.append(f"{stack.stack_name}/{logical_id}: VPC {vpc_id} not found")
            elif not block.subnet_of(vpc):
                errors.append(
                    f"{stack.stack_name}/{logical_id}: {block} is outside VPC {vpc}"
                )
            subnets.append((logical_id, block))

        for idx, (name_a, block_a) in enumerate(subnets):
            for name_b, block_b in subnets[idx + 1:]:
                if block_a.overlaps(block_b):
                    errors.append(
                        f"{stack.stack_name}: {name_a} ({block_a}) overlaps "
                        f"{name_b} ({block_b})"
                    )
    return errors


def check_health_checks(app: App) -> List[str]:
    """Target group health checks target the port the container listens on."""
    errors: List[str] = []
    for stack in app.stacks.values():
        template = stack.to_dict()
        target_groups = dict(
            _resources(template, "AWS::ElasticLoadBalancingV2::TargetGroup")
        )
        for service_id, props in _resources(template, "AWS::ECS::Service"):
            for mapping in props.get("LoadBalancers", []):
                target_group_id = mapping.get("TargetGroupArn", {}).get("Ref")
                target_group = target_groups.get(target_group_id)
                where = f"{stack.stack_name}/{service_id}"
                if target_group is None:
                    errors.append(f"{where}: target group {target_group_id} not found")
                    continue
                container_port = mapping["ContainerPort"]
                health_port = target_group.get("HealthCheckPort", "traffic-port")
                if health_port == "traffic-port":
                    health_port = target_group.get("Port")
                if str(health_port) != str(container_port):
                    errors.append(
                        f"{where}: health check port {health_port} does not match "
                        f"container port {container_port}"
                    )
    return errors


def check_stack_dependencies(app: App) -> List[str]:
    """A stack importing another stack's export depends on that stack."""
    exports: Dict[str, Any] = {}
    for stack in app.stacks.values():
        for output in stack.to_dict().get("Outputs", {}).values():
            name = _resolve_export_name(output.get("Export"), stack.stack_name)
            if name:
                exports[name] = stack

    errors: List[str] = []
    for stack in app.stacks.values():
        for export in sorted(set(_find_imports(stack.to_dict()))):
            producer = exports.get(export)
            if producer is None:
                errors.append(f"{stack.stack_name}: imports unknown export {export}")
            elif producer is stack:
                errors.append(f"{stack.stack_name}: imports its own export {export}")
            elif producer not in stack.dependencies:
                errors.append(
                    f"{stack.stack_name}: imports {export} without depending on "
                    f"{producer.stack_name}"
                )

    try:
        app.deployment_order()
    except ValueError as e:
        errors.append(str(e))
    return errors


def _check_bucket_policy(where: str, statements: List[Dict[str, Any]]) -> List[str]:
    errors: List[str] = []
    for statement in statements:
        if statement.get("Effect") != "Allow":
            continue
        sid = statement.get("Sid", "<no sid>")
        if statement.get("Principal") != {"Service": CLOUDFRONT_SERVICE_PRINCIPAL}:
            errors.append(f"{where}: statement {sid} grants a principal other than CloudFront")
        if statement.get("Action") not in ("s3:GetObject", ["s3:GetObject"]):
            errors.append(f"{where}: statement {sid} grants more than s3:GetObject")
        condition = statement.get("Condition", {}).get("StringEquals", {})
        if "AWS:SourceArn" not in condition:
            errors.append(f"{where}: statement {sid} is not scoped to the distribution")
    return errors


def check_static_assets(app: App) -> List[str]:
    """Asset buckets stay private and readable only through their distribution."""
    errors: List[str] = []
    for stack in app.stacks.values():
        template = stack.to_dict()
        for logical_id, props in _resources(template, "AWS::S3::Bucket"):
            block = props.get("PublicAccessBlockConfiguration", {})
            missing = [flag for flag in PUBLIC_ACCESS_BLOCK_FLAGS if block.get(flag) is not True]
            if missing:
                errors.append(
                    f"{stack.stack_name}/{logical_id}: public access block flags "
                    f"not enabled: {missing}"
                )

        for logical_id, props in _resources(template, "AWS::S3::BucketPolicy"):
            statements = props.get("PolicyDocument", {}).get("Statement", [])
            errors.extend(_check_bucket_policy(f"{stack.stack_name}/{logical_id}", statements))

        for logical_id, props in _resources(template, "AWS::CloudFront::Distribution"):
            where = f"{stack.stack_name}/{logical_id}"
            config = props.get("DistributionConfig", {})
            behavior = config.get("DefaultCacheBehavior", {})
            if behavior.get("ViewerProtocolPolicy") not in HTTPS_VIEWER_POLICIES:
                errors.append(f"{where}: viewer protocol policy does not enforce HTTPS")
            if behavior.get("AllowedMethods") not in [list(m) for m in READ_ONLY_METHOD_SETS]:
                errors.append(f"{where}: allowed methods are not read-only")
            for origin in config.get("Origins", []):
                if "S3OriginConfig" in origin and not origin.get("OriginAccessControlId"):
                    errors.append(
                        f"{where}: origin {origin.get('Id')} has no origin access control"
                    )
    return errors


def check_deterministic_synthesis(app: App) -> List[str]:
    """Synthesizing the same configuration twice yields identical templates."""
    rebuilt = build_app(app.config)
    errors: List[str] = []

    if list(rebuilt.stacks) != list(app.stacks):
        errors.append(
            f"Stack set differs between runs: {list(app.stacks)} != {list(rebuilt.stacks)}"
        )
        return errors

    for name, stack in app.stacks.items():
        first = json.dumps(stack.to_dict(), sort_keys=True)
        second = json.dumps(rebuilt.stacks[name].to_dict(), sort_keys=True)
        if first != second:
            errors.append(f"{name}: template differs between synthesis runs")
    return errors


CHECKS: Dict[str, Callable[[App], List[str]]] = {
    "security_group_rules": check_security_group_rules,
    "subnet_allocation": check_subnet_allocation,
    "health_checks": check_health_checks,
    "stack_dependencies": check_stack_dependencies,
    "static_assets": check_static_assets,
    "deterministic_synthesis": check_deterministic_synthesis,
}


def validate_app(app: App) -> Dict[str, List[str]]:
    """
    Run every check.

    Returns:
        Mapping of check name to its errors
    """
    results: Dict[str, List[str]] = {}
    for name, check in CHECKS.items():
        errors = check(app)
        if errors:
            logger.warning(f"Check {name} failed with {len(errors)} error(s)")
        else:
            logger.debug(f"Check {name} passed")
        results[name] = errors
    return results
