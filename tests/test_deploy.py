"""
Tests for applying and destroying stacks through CloudFormation.
"""

from unittest.mock import Mock, call, patch

import pytest
from botocore.exceptions import ClientError, WaiterError
from moto import mock_aws

from tiered_infra.app import build_app
from tiered_infra.config import AppConfig
from tiered_infra.deploy import AccountMismatchError, DeploymentStatus, StackDeployer


def _not_found() -> ClientError:
    return ClientError(
        {"Error": {"Code": "ValidationError", "Message": "Stack with id x does not exist"}},
        "DescribeStacks",
    )


def _stack(status: str, outputs=None):
    return {"Stacks": [{"StackStatus": status, "Outputs": outputs or []}]}


class TestStackDeployer:
    """Test CloudFormation stack operations."""

    def create_deployer(self) -> StackDeployer:
        """Create a test deployer with a mocked CloudFormation client."""
        with patch("boto3.Session"):
            deployer = StackDeployer(region="ap-northeast-1")
        deployer.cloudformation = Mock()
        deployer.sts = Mock()
        deployer.sts.get_caller_identity.return_value = {"Account": "423014875142"}
        return deployer

    def setup_method(self):
        self.app = build_app(AppConfig())
        self.network = self.app.get_stack("network")

    def test_get_stack_status_exists(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("CREATE_COMPLETE")

        assert deployer.get_stack_status("test-stack") == "CREATE_COMPLETE"
        deployer.cloudformation.describe_stacks.assert_called_once_with(
            StackName="test-stack"
        )

    def test_get_stack_status_not_exists(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.side_effect = _not_found()

        assert deployer.get_stack_status("test-stack") is None

    def test_get_stack_status_other_error_raises(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.side_effect = ClientError(
            {"Error": {"Code": "AccessDenied", "Message": "Access denied"}},
            "DescribeStacks",
        )

        with pytest.raises(ClientError):
            deployer.get_stack_status("test-stack")

    def test_create_new_stack(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.side_effect = [
            _not_found(),
            _stack("CREATE_COMPLETE", [{"OutputKey": "VpcId", "OutputValue": "vpc-123"}]),
        ]

        result = deployer.deploy_stack(self.network)

        assert result.status == DeploymentStatus.SUCCESS
        assert result.success
        assert result.outputs == {"VpcId": "vpc-123"}
        kwargs = deployer.cloudformation.create_stack.call_args.kwargs
        assert kwargs["StackName"] == "tiered-app-dev-network"
        assert kwargs["Capabilities"] == ["CAPABILITY_IAM", "CAPABILITY_NAMED_IAM"]
        assert {"Key": "Project", "Value": "tiered-app"} in kwargs["Tags"]
        deployer.cloudformation.get_waiter.assert_called_once_with("stack_create_complete")

    def test_update_existing_stack(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("CREATE_COMPLETE")

        result = deployer.deploy_stack(self.network)

        assert result.status == DeploymentStatus.SUCCESS
        deployer.cloudformation.update_stack.assert_called_once()
        deployer.cloudformation.create_stack.assert_not_called()
        deployer.cloudformation.get_waiter.assert_called_once_with("stack_update_complete")

    def test_update_without_changes(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("UPDATE_COMPLETE")
        deployer.cloudformation.update_stack.side_effect = ClientError(
            {"Error": {"Code": "ValidationError", "Message": "No updates are to be performed."}},
            "UpdateStack",
        )

        result = deployer.deploy_stack(self.network)

        assert result.status == DeploymentStatus.NO_CHANGES
        assert result.success
        deployer.cloudformation.get_waiter.assert_not_called()

    def test_rollback_complete_is_recreated(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("ROLLBACK_COMPLETE")

        result = deployer.deploy_stack(self.network)

        assert result.success
        deployer.cloudformation.delete_stack.assert_called_once_with(
            StackName="tiered-app-dev-network"
        )
        deployer.cloudformation.create_stack.assert_called_once()
        assert deployer.cloudformation.get_waiter.call_args_list == [
            call("stack_delete_complete"),
            call("stack_create_complete"),
        ]

    def test_failed_create_reports_events(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.side_effect = _not_found()
        deployer.cloudformation.get_waiter.return_value.wait.side_effect = WaiterError(
            name="StackCreateComplete",
            reason="Waiter encountered a terminal failure state",
            last_response={},
        )
        deployer.cloudformation.describe_stack_events.return_value = {
            "StackEvents": [
                {
                    "LogicalResourceId": "NATGateway1",
                    "ResourceType": "AWS::EC2::NatGateway",
                    "ResourceStatus": "CREATE_FAILED",
                    "ResourceStatusReason": "Address limit exceeded",
                },
                {
                    "LogicalResourceId": "VPC",
                    "ResourceType": "AWS::EC2::VPC",
                    "ResourceStatus": "CREATE_COMPLETE",
                },
            ]
        }

        result = deployer.deploy_stack(self.network)

        assert result.status == DeploymentStatus.FAILED
        assert not result.success
        assert result.errors == [
            "NATGateway1 (AWS::EC2::NatGateway): CREATE_FAILED - Address limit exceeded"
        ]

    def test_deploy_app_in_order(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("UPDATE_COMPLETE")

        results = deployer.deploy_app(self.app)

        assert [r.stack_name for r in results] == [
            "tiered-app-dev-network",
            "tiered-app-dev-frontend",
            "tiered-app-dev-backend",
            "tiered-app-dev-static-assets",
        ]

    def test_deploy_app_stops_at_first_failure(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("UPDATE_COMPLETE")
        deployer.cloudformation.update_stack.side_effect = ClientError(
            {"Error": {"Code": "ValidationError", "Message": "Template format error"}},
            "UpdateStack",
        )
        deployer.cloudformation.describe_stack_events.return_value = {"StackEvents": []}

        results = deployer.deploy_app(self.app)

        assert len(results) == 1
        assert results[0].stack_name == "tiered-app-dev-network"
        assert results[0].status == DeploymentStatus.FAILED

    def test_deploy_app_refuses_other_account(self) -> None:
        deployer = self.create_deployer()
        deployer.sts.get_caller_identity.return_value = {"Account": "999999999999"}

        with pytest.raises(AccountMismatchError, match="999999999999"):
            deployer.deploy_app(self.app)
        deployer.cloudformation.create_stack.assert_not_called()
        deployer.cloudformation.update_stack.assert_not_called()

    def test_destroy_app_refuses_other_account(self) -> None:
        deployer = self.create_deployer()
        deployer.sts.get_caller_identity.return_value = {"Account": "999999999999"}

        with pytest.raises(AccountMismatchError):
            deployer.destroy_app(self.app)
        deployer.cloudformation.delete_stack.assert_not_called()

    def test_destroy_app_in_reverse_order(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.return_value = _stack("CREATE_COMPLETE")

        results = deployer.destroy_app(self.app)

        deleted = [c.kwargs["StackName"] for c in deployer.cloudformation.delete_stack.call_args_list]
        assert deleted == [r.stack_name for r in results]
        assert deleted[-1] == "tiered-app-dev-network"

    def test_delete_missing_stack_skipped(self) -> None:
        deployer = self.create_deployer()
        deployer.cloudformation.describe_stacks.side_effect = _not_found()

        result = deployer.delete_stack(self.network)

        assert result.status == DeploymentStatus.SKIPPED
        deployer.cloudformation.delete_stack.assert_not_called()


class TestStackDeployerWithMoto:
    """Test against the moto CloudFormation backend."""

    @mock_aws
    def test_status_of_missing_stack(self) -> None:
        deployer = StackDeployer(region="ap-northeast-1")

        assert deployer.get_stack_status("tiered-app-dev-network") is None
        assert deployer.get_stack_outputs("tiered-app-dev-network") == {}

    @mock_aws
    def test_app_status_before_deploy(self) -> None:
        deployer = StackDeployer(region="ap-northeast-1")

        status = deployer.get_app_status(build_app(AppConfig()))
        assert list(status.values()) == [None, None, None, None]

    @mock_aws
    def test_account_of_credentials(self) -> None:
        deployer = StackDeployer(region="ap-northeast-1")
        account_id = deployer.get_account_id()

        deployer.verify_account(account_id)
        with pytest.raises(AccountMismatchError):
            deployer.verify_account("000000000000")
