"""
Apply and destroy synthesized stacks through CloudFormation.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError, WaiterError

from .app import App
from .stacks import Stack

logger = logging.getLogger(__name__)

CAPABILITIES = ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
WAITER_CONFIG = {"Delay": 30, "MaxAttempts": 120}
FAILED_RESOURCE_STATUSES = ("CREATE_FAILED", "UPDATE_FAILED", "DELETE_FAILED")
NO_UPDATES_MESSAGE = "No updates are to be performed"


class AccountMismatchError(RuntimeError):
    """Raised when the credentials in use belong to another AWS account."""


class DeploymentStatus(Enum):
    """Status of a deployment operation."""

    SUCCESS = "success"
    NO_CHANGES = "no_changes"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class DeploymentResult:
    """Result of applying or deleting one stack."""

    stack_name: str
    status: DeploymentStatus
    message: str = ""
    duration: float = 0.0
    outputs: Dict[str, str] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status in (DeploymentStatus.SUCCESS, DeploymentStatus.NO_CHANGES)


class StackDeployer:
    """Create, update and delete the stacks of an App in dependency order."""

    def __init__(
        self,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        waiter_config: Optional[Dict[str, int]] = None,
    ):
        """
        Initialize stack deployer.

        Args:
            region: AWS region
            profile: AWS profile to use
            waiter_config: Override of the CloudFormation waiter polling
        """
        self.region = region
        self.profile = profile
        self.waiter_config = waiter_config or WAITER_CONFIG

        session_args = {"region_name": self.region}
        if profile:
            session_args["profile_name"] = profile

        self._session = boto3.Session(**session_args)
        self.cloudformation = self._session.client("cloudformation")
        self.sts = self._session.client("sts")

    def get_account_id(self) -> str:
        """Get the AWS account ID of the credentials in use."""
        return str(self.sts.get_caller_identity()["Account"])

    def verify_account(self, expected: str) -> None:
        """Refuse to touch stacks unless the credentials belong to ``expected``."""
        actual = self.get_account_id()
        if actual != expected:
            raise AccountMismatchError(
                f"Credentials belong to account {actual}, configuration targets {expected}"
            )

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        """Get current stack status, or None when the stack does not exist."""
        try:
            response = self.cloudformation.describe_stacks(StackName=stack_name)
            if response["Stacks"]:
                return str(response["Stacks"][0]["StackStatus"])
        except ClientError as e:
            if "does not exist" in str(e):
                return None
            raise
        return None

    def get_stack_outputs(self, stack_name: str) -> Dict[str, str]:
        """Get outputs from a CloudFormation stack."""
        try:
            response = self.cloudformation.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                return {}
            raise
        outputs = {}
        for stack in response["Stacks"][:1]:
            for output in stack.get("Outputs", []):
                outputs[output["OutputKey"]] = output["OutputValue"]
        return outputs

    def get_failed_events(self, stack_name: str) -> List[str]:
        """Describe the resource events that failed, most recent first."""
        try:
            response = self.cloudformation.describe_stack_events(StackName=stack_name)
        except ClientError as e:
            logger.warning(f"Could not read events of {stack_name}: {e}")
            return []

        return [
            f"{event['LogicalResourceId']} ({event['ResourceType']}): "
            f"{event['ResourceStatus']} - {event.get('ResourceStatusReason', 'No reason provided')}"
            for event in response["StackEvents"]
            if event["ResourceStatus"] in FAILED_RESOURCE_STATUSES
        ]

    def _wait(self, waiter_name: str, stack_name: str) -> None:
        waiter = self.cloudformation.get_waiter(waiter_name)
        waiter.wait(StackName=stack_name, WaiterConfig=self.waiter_config)

    def deploy_stack(self, stack: Stack) -> DeploymentResult:
        """Create the stack, or update it when it already exists."""
        start = time.time()
        stack_name = stack.stack_name
        params: Dict[str, Any] = {
            "StackName": stack_name,
            "TemplateBody": stack.to_json(),
            "Capabilities": CAPABILITIES,
            "Tags": [{"Key": k, "Value": v} for k, v in sorted(stack.tags.items())],
        }

        status = self.get_stack_status(stack_name)

        try:
            if status == "ROLLBACK_COMPLETE":
                # A stack that failed its first creation can only be deleted
                logger.warning(f"{stack_name} is in ROLLBACK_COMPLETE, deleting before create")
                self.cloudformation.delete_stack(StackName=stack_name)
                self._wait("stack_delete_complete", stack_name)
                status = None

            if status is None:
                logger.info(f"Creating stack {stack_name}")
                self.cloudformation.create_stack(**params)
                self._wait("stack_create_complete", stack_name)
            else:
                logger.info(f"Updating stack {stack_name} (currently {status})")
                try:
                    self.cloudformation.update_stack(**params)
                except ClientError as e:
                    if NO_UPDATES_MESSAGE in str(e):
                        logger.info(f"No changes for {stack_name}")
                        return DeploymentResult(
                            stack_name,
                            DeploymentStatus.NO_CHANGES,
                            message="No updates are to be performed",
                            duration=time.time() - start,
                            outputs=self.get_stack_outputs(stack_name),
                        )
                    raise
                self._wait("stack_update_complete", stack_name)
        except (ClientError, WaiterError) as e:
            logger.error(f"Deployment of {stack_name} failed: {e}")
            return DeploymentResult(
                stack_name,
                DeploymentStatus.FAILED,
                message=str(e),
                duration=time.time() - start,
                errors=self.get_failed_events(stack_name),
            )

        logger.info(f"Stack {stack_name} deployed")
        return DeploymentResult(
            stack_name,
            DeploymentStatus.SUCCESS,
            message=f"Stack {stack_name} deployed",
            duration=time.time() - start,
            outputs=self.get_stack_outputs(stack_name),
        )

    def delete_stack(self, stack: Stack) -> DeploymentResult:
        """Delete the stack if it exists."""
        start = time.time()
        stack_name = stack.stack_name

        if self.get_stack_status(stack_name) is None:
            logger.info(f"Stack {stack_name} does not exist")
            return DeploymentResult(
                stack_name, DeploymentStatus.SKIPPED, message="Stack does not exist"
            )

        try:
            logger.info(f"Deleting stack {stack_name}")
            self.cloudformation.delete_stack(StackName=stack_name)
            self._wait("stack_delete_complete", stack_name)
        except (ClientError, WaiterError) as e:
            logger.error(f"Deletion of {stack_name} failed: {e}")
            return DeploymentResult(
                stack_name,
                DeploymentStatus.FAILED,
                message=str(e),
                duration=time.time() - start,
                errors=self.get_failed_events(stack_name),
            )

        return DeploymentResult(
            stack_name,
            DeploymentStatus.SUCCESS,
            message=f"Stack {stack_name} deleted",
            duration=time.time() - start,
        )

    def deploy_app(self, app: App) -> List[DeploymentResult]:
        """Apply every stack in deployment order, stopping at the first failure."""
        self.verify_account(app.config.account)
        results = []
        for stack in app.deployment_order():
            result = self.deploy_stack(stack)
            results.append(result)
            if not result.success:
                logger.error(f"Stopping after failed stack {stack.stack_name}")
                break
        return results

    def destroy_app(self, app: App) -> List[DeploymentResult]:
        """Delete every stack in reverse deployment order, stopping at the first failure."""
        self.verify_account(app.config.account)
        results = []
        for stack in app.destroy_order():
            result = self.delete_stack(stack)
            results.append(result)
            if result.status == DeploymentStatus.FAILED:
                logger.error(f"Stopping after failed deletion of {stack.stack_name}")
                break
        return results

    def get_app_status(self, app: App) -> Dict[str, Optional[str]]:
        return {
            stack.stack_name: self.get_stack_status(stack.stack_name)
            for stack in app.deployment_order()
        }
