"""
Compute constructs for ECS Fargate services behind Application Load Balancers.
"""

import logging
from typing import Any, Dict, List, Optional

from troposphere import (
    Export,
    GetAtt,
    Join,
    Output,
    Ref,
    Sub,
    Tags,
    Template,
    ecr,
    ecs,
    iam,
    logs,
)
from troposphere import elasticloadbalancingv2 as elb

from ..naming import get_load_balancer_name, get_resource_name
from .network import NetworkHandles

logger = logging.getLogger(__name__)

TASK_EXECUTION_POLICY_ARN = (
    "arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy"
)


class ServiceConstruct:
    """
    L2 Construct for one container tier.
    Creates an ECS cluster, a single-container Fargate task definition with
    its execution role and log group, an optional ECR repository, an optional
    ALB with listener and target group, and the ECS service.
    """

    def __init__(
        self,
        template: Template,
        config: Dict[str, Any],
        environment: str,
        name: str,
        project: str,
        network: NetworkHandles,
        extra_environment: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize service construct.

        Args:
            template: CloudFormation template to add resources to
            config: Service configuration section (frontend/backend)
            environment: Deployment environment (dev/staging/prod)
            name: Tier name used as logical ID prefix ("Frontend", "Backend")
            project: Project name for physical resource names
            network: VPC, subnet and security group handles
            extra_environment: Container environment values resolved at deploy
                time (e.g. another stack's load balancer URL)
        """
        self.template = template
        self.config = config
        self.environment = environment
        self.name = name
        self.slug = name.lower()
        self.project = project
        self.network = network
        self.extra_environment = extra_environment or {}
        self.resources: Dict[str, Any] = {}

        self.container_port = config["container_port"]
        health_port = config.get("health_check_port", self.container_port)
        if health_port != self.container_port:
            raise ValueError(
                f"{name} health check port {health_port} does not match "
                f"container port {self.container_port}"
            )

        self.repository = None
        self.load_balancer = None
        self.listener = None
        self.target_group = None

        self._create_repository()
        self._create_cluster()
        self._create_log_group()
        self._create_execution_role()
        self._create_task_definition()
        self._create_load_balancer()
        self._create_service()
        self._create_outputs()

    def _physical_name(self, resource: str) -> str:
        return get_resource_name(self.project, self.environment, f"{self.slug}-{resource}")

    def _create_repository(self) -> None:
        """Create a private ECR repository when the image is not public."""
        if self.config.get("registry", "public") != "private":
            self.image = self.config["image"]
            return

        repository_name = self.config.get(
            "repository_name",
            f"{self.project}/{self.environment}/{self.slug}",
        )
        self.repository = self.template.add_resource(
            ecr.Repository(
                f"{self.name}Repository",
                RepositoryName=repository_name,
                ImageScanningConfiguration=ecr.ImageScanningConfiguration(
                    ScanOnPush=True
                ),
                ImageTagMutability="MUTABLE",
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-repository"),
                    Environment=self.environment,
                ),
            )
        )
        self.image = Join(
            ":",
            [
                self.get_repository_uri(),
                self.config.get("image_tag", "latest"),
            ],
        )
        self.resources["repository"] = self.repository

    def _create_cluster(self) -> None:
        self.cluster = self.template.add_resource(
            ecs.Cluster(
                f"{self.name}Cluster",
                ClusterName=self._physical_name("cluster"),
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-cluster"),
                    Environment=self.environment,
                ),
            )
        )
        self.resources["cluster"] = self.cluster

    def _create_log_group(self) -> None:
        """Create CloudWatch log group for the container."""
        self.log_group = self.template.add_resource(
            logs.LogGroup(
                f"{self.name}LogGroup",
                LogGroupName=f"/ecs/{self._physical_name('service')}",
                RetentionInDays=self.config.get("log_retention_days", 30),
            )
        )
        self.resources["log_group"] = self.log_group

    def _create_execution_role(self) -> None:
        """Create the task execution role used to pull images and ship logs."""
        self.execution_role = self.template.add_resource(
            iam.Role(
                f"{self.name}TaskExecutionRole",
                AssumeRolePolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": [
                        {
                            "Effect": "Allow",
                            "Principal": {"Service": ["ecs-tasks.amazonaws.com"]},
                            "Action": ["sts:AssumeRole"],
                        }
                    ],
                },
                ManagedPolicyArns=[TASK_EXECUTION_POLICY_ARN],
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-execution-role"),
                    Environment=self.environment,
                ),
            )
        )
        self.resources["execution_role"] = self.execution_role

    def _container_environment(self) -> List[ecs.Environment]:
        variables: Dict[str, Any] = dict(self.config.get("environment_variables", {}))
        variables.update(self.extra_environment)
        variables["ENVIRONMENT"] = self.environment
        return [
            ecs.Environment(Name=key, Value=variables[key]) for key in sorted(variables)
        ]

    def _create_task_definition(self) -> None:
        """Create a Fargate task definition with exactly one container."""
        self.container_name = f"{self.name}Container"
        container = ecs.ContainerDefinition(
            Name=self.container_name,
            Image=self.image,
            Essential=True,
            PortMappings=[
                ecs.PortMapping(ContainerPort=self.container_port, Protocol="tcp")
            ],
            Environment=self._container_environment(),
            LogConfiguration=ecs.LogConfiguration(
                LogDriver="awslogs",
                Options={
                    "awslogs-group": Ref(self.log_group),
                    "awslogs-region": Ref("AWS::Region"),
                    "awslogs-stream-prefix": self.slug,
                },
            ),
        )

        self.task_definition = self.template.add_resource(
            ecs.TaskDefinition(
                f"{self.name}TaskDefinition",
                Family=self._physical_name("task"),
                Cpu=str(self.config.get("cpu", 256)),
                Memory=str(self.config.get("memory_mib", 512)),
                NetworkMode="awsvpc",
                RequiresCompatibilities=["FARGATE"],
                ExecutionRoleArn=GetAtt(self.execution_role, "Arn"),
                ContainerDefinitions=[container],
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-task"),
                    Environment=self.environment,
                ),
            )
        )
        self.resources["task_definition"] = self.task_definition

    def _create_load_balancer(self) -> None:
        """Create the ALB, its target group and HTTP listener."""
        scheme = self.config.get("load_balancer", "none")
        if scheme == "none":
            return

        if scheme == "public":
            subnets = self.network.subnets(self.network.public_tier)
            security_group = self.network.security_group("alb")
        else:
            subnets = self.network.subnets(self.config["subnet_tier"])
            security_group = self.network.security_group("backend_alb")

        self.load_balancer = self.template.add_resource(
            elb.LoadBalancer(
                f"{self.name}LoadBalancer",
                Name=get_load_balancer_name(self.project, self.environment, f"{self.slug}-alb"),
                Type="application",
                Scheme="internet-facing" if scheme == "public" else "internal",
                Subnets=subnets,
                SecurityGroups=[security_group],
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-alb"),
                    Environment=self.environment,
                ),
            )
        )

        self.target_group = self.template.add_resource(
            elb.TargetGroup(
                f"{self.name}TargetGroup",
                Port=self.container_port,
                Protocol="HTTP",
                TargetType="ip",
                VpcId=self.network.vpc(),
                HealthCheckEnabled=True,
                HealthCheckPath=self.config.get("health_check_path", "/"),
                HealthCheckPort=str(self.container_port),
                HealthCheckProtocol="HTTP",
                Matcher=elb.Matcher(HttpCode="200"),
                Tags=Tags(
                    Name=Sub(f"${{AWS::StackName}}-{self.slug}-tg"),
                    Environment=self.environment,
                ),
            )
        )

        self.listener = self.template.add_resource(
            elb.Listener(
                f"{self.name}Listener",
                LoadBalancerArn=Ref(self.load_balancer),
                Port=self.config.get("listener_port", 80),
                Protocol="HTTP",
                DefaultActions=[
                    elb.Action(Type="forward", TargetGroupArn=Ref(self.target_group))
                ],
            )
        )

        self.resources["load_balancer"] = self.load_balancer
        self.resources["target_group"] = self.target_group
        self.resources["listener"] = self.listener

    def _create_service(self) -> None:
        """Create the Fargate service with a fixed replica count."""
        service_props: Dict[str, Any] = {
            "ServiceName": self._physical_name("service"),
            "Cluster": Ref(self.cluster),
            "LaunchType": "FARGATE",
            "DesiredCount": self.config.get("desired_count", 1),
            "TaskDefinition": Ref(self.task_definition),
            "NetworkConfiguration": ecs.NetworkConfiguration(
                AwsvpcConfiguration=ecs.AwsvpcConfiguration(
                    AssignPublicIp="DISABLED",
                    Subnets=self.network.subnets(self.config["subnet_tier"]),
                    SecurityGroups=[self.network.security_group(self.slug)],
                )
            ),
            "Tags": Tags(
                Name=Sub(f"${{AWS::StackName}}-{self.slug}-service"),
                Environment=self.environment,
            ),
        }

        if self.target_group is not None:
            service_props["LoadBalancers"] = [
                ecs.LoadBalancer(
                    ContainerName=self.container_name,
                    ContainerPort=self.container_port,
                    TargetGroupArn=Ref(self.target_group),
                )
            ]
            service_props["HealthCheckGracePeriodSeconds"] = 60
            service_props["DependsOn"] = [self.listener.title]

        self.service = self.template.add_resource(
            ecs.Service(f"{self.name}Service", **service_props)
        )
        self.resources["service"] = self.service

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs for operators and other stacks."""
        outputs = {
            f"{self.name}ServiceName": {
                "value": GetAtt(self.service, "Name"),
                "description": f"{self.name} ECS service name",
            },
            f"{self.name}ClusterName": {
                "value": Ref(self.cluster),
                "description": f"{self.name} ECS cluster name",
            },
        }

        if self.load_balancer is not None:
            outputs[f"{self.name}LoadBalancerDNS"] = {
                "value": self.get_load_balancer_dns_name(),
                "description": f"{self.name} Application Load Balancer DNS Name",
            }
            outputs[f"{self.name}URL"] = {
                "value": self.get_url(),
                "description": f"{self.name} Application URL",
            }

        if self.repository is not None:
            outputs[f"{self.name}RepositoryUri"] = {
                "value": self.get_repository_uri(),
                "description": f"{self.name} ECR repository URI",
            }

        for name, props in outputs.items():
            self.template.add_output(
                Output(
                    name,
                    Value=props["value"],
                    Description=props["description"],
                    Export=Export(Sub(f"${{AWS::StackName}}-{name}")),
                )
            )

    def get_url(self) -> Join:
        """Get the HTTP URL of the service's load balancer."""
        if self.load_balancer is None:
            raise ValueError(f"{self.name} has no load balancer")
        port = self.config.get("listener_port", 80)
        suffix = "" if port == 80 else f":{port}"
        return Join("", ["http://", self.get_load_balancer_dns_name(), suffix])

    def get_load_balancer_dns_name(self) -> GetAtt:
        if self.load_balancer is None:
            raise ValueError(f"{self.name} has no load balancer")
        return GetAtt(self.load_balancer, "DNSName")

    def get_repository_uri(self) -> Optional[GetAtt]:
        if self.repository is None:
            return None
        return GetAtt(self.repository, "RepositoryUri")
