"""
Tests for stacks and cross-stack references.
"""

import pytest

from tiered_infra.app import App, build_app
from tiered_infra.config import AppConfig
from tiered_infra.stacks import (
    BackendStack,
    FrontendStack,
    NetworkStack,
    Stack,
    StaticAssetsStack,
)


class TestStack:
    """Test the Stack base class."""

    def setup_method(self):
        self.app = App(AppConfig())

    def test_naming(self) -> None:
        stack = Stack(self.app, "network")

        assert stack.stack_name == "tiered-app-dev-network"
        assert stack.export_name("VpcId") == "tiered-app-dev-network-VpcId"
        assert self.app.get_stack("network") is stack

    def test_tags(self) -> None:
        app = App(AppConfig(tags={"Team": "web"}))
        stack = Stack(app, "network")

        assert stack.tags == {"Project": "tiered-app", "Environment": "dev", "Team": "web"}

    def test_self_dependency_rejected(self) -> None:
        stack = Stack(self.app, "network")

        with pytest.raises(ValueError, match="cannot depend on itself"):
            stack.add_dependency(stack)

    def test_dependency_added_once(self) -> None:
        first = Stack(self.app, "first")
        second = Stack(self.app, "second")

        second.add_dependency(first)
        second.add_dependency(first)
        assert second.dependencies == [first]

    def test_import_unknown_output(self) -> None:
        network = NetworkStack(self.app)
        consumer = Stack(self.app, "consumer")

        with pytest.raises(KeyError, match="no output named"):
            consumer.import_output(network, "DatabaseUrl")
        assert consumer.dependencies == []

    def test_import_records_dependency(self) -> None:
        network = NetworkStack(self.app)
        consumer = Stack(self.app, "consumer")

        value = consumer.import_output(network, "VpcId")

        assert value.to_dict() == {"Fn::ImportValue": "tiered-app-dev-network-VpcId"}
        assert consumer.dependencies == [network]
        assert consumer.imports == {
            "tiered-app-dev-network-VpcId": "tiered-app-dev-network"
        }

    def test_import_list(self) -> None:
        network = NetworkStack(self.app)
        consumer = Stack(self.app, "consumer")

        value = consumer.import_list(network, "PublicSubnetIds")
        assert value.to_dict() == {
            "Fn::Split": [
                ",",
                {"Fn::ImportValue": "tiered-app-dev-network-PublicSubnetIds"},
            ]
        }


class TestApplicationStacks:
    """Test the four application stacks."""

    def setup_method(self):
        self.config = AppConfig()
        self.app = build_app(self.config)

    def test_stack_types(self) -> None:
        assert isinstance(self.app.get_stack("network"), NetworkStack)
        assert isinstance(self.app.get_stack("frontend"), FrontendStack)
        assert isinstance(self.app.get_stack("backend"), BackendStack)
        assert isinstance(self.app.get_stack("static-assets"), StaticAssetsStack)

    def test_network_stack_is_root(self) -> None:
        network = self.app.get_stack("network")
        template = network.to_dict()

        assert network.dependencies == []
        assert "Fn::ImportValue" not in network.to_json()
        assert template["Description"].startswith("VPC, subnet tiers")

    def test_compute_stacks_import_network(self) -> None:
        network = self.app.get_stack("network")
        for stack_id in ("frontend", "backend"):
            stack = self.app.get_stack(stack_id)
            assert stack.dependencies == [network]
            assert "AWS::EC2::VPC" not in stack.to_json()

    def test_imports_only_referenced_exports(self) -> None:
        frontend = self.app.get_stack("frontend")
        backend = self.app.get_stack("backend")

        assert sorted(frontend.imports) == [
            "tiered-app-dev-network-AlbSecurityGroupId",
            "tiered-app-dev-network-FrontendSecurityGroupId",
            "tiered-app-dev-network-PrivateFESubnetIds",
            "tiered-app-dev-network-PublicSubnetIds",
            "tiered-app-dev-network-VpcId",
        ]
        assert sorted(backend.imports) == [
            "tiered-app-dev-network-BackendAlbSecurityGroupId",
            "tiered-app-dev-network-BackendSecurityGroupId",
            "tiered-app-dev-network-PrivateBESubnetIds",
            "tiered-app-dev-network-VpcId",
        ]
        for stack in (frontend, backend):
            rendered = stack.to_json()
            for export in stack.imports:
                assert export in rendered

    def test_backend_without_load_balancer_skips_vpc_import(self) -> None:
        app = build_app(AppConfig.from_dict({"backend": {"load_balancer": "none"}}))
        backend = app.get_stack("backend")

        assert sorted(backend.imports) == [
            "tiered-app-dev-network-BackendSecurityGroupId",
            "tiered-app-dev-network-PrivateBESubnetIds",
        ]
        assert backend.dependencies == [app.get_stack("network")]

    def test_imported_handles_reject_unknown_names(self) -> None:
        network = self.app.get_stack("network")
        consumer = Stack(self.app, "consumer")
        handles = network.import_handles(consumer)

        with pytest.raises(KeyError, match="Unknown subnet tier"):
            handles.subnets("Isolated")
        with pytest.raises(KeyError, match="Unknown security group"):
            handles.security_group("database")
        assert consumer.imports == {}
        assert consumer.dependencies == []

    def test_backend_uses_imported_subnets(self) -> None:
        backend = self.app.get_stack("backend")
        service = backend.to_dict()["Resources"]["BackendService"]["Properties"]
        network = service["NetworkConfiguration"]["AwsvpcConfiguration"]

        assert network["Subnets"] == {
            "Fn::Split": [
                ",",
                {"Fn::ImportValue": "tiered-app-dev-network-PrivateBESubnetIds"},
            ]
        }
        assert network["SecurityGroups"] == [
            {"Fn::ImportValue": "tiered-app-dev-network-BackendSecurityGroupId"}
        ]

    def test_frontend_without_backend_url(self) -> None:
        frontend = self.app.get_stack("frontend")

        assert "BACKEND_URL" not in frontend.to_json()

    def test_static_assets_stack_is_independent(self) -> None:
        stack = self.app.get_stack("static-assets")
        props = stack.to_dict()["Resources"]["StaticAssetsBucket"]["Properties"]

        assert stack.dependencies == []
        assert props["BucketName"] == "static-assets-dev-423014875142-ap-northeast-1"


class TestBackendFirstOrdering:
    """Frontend consumes the backend URL."""

    def setup_method(self):
        self.config = AppConfig(frontend_needs_backend_url=True)
        self.app = build_app(self.config)

    def test_declaration_order(self) -> None:
        assert [s.stack_id for s in self.app.stacks.values()] == [
            "network",
            "backend",
            "frontend",
            "static-assets",
        ]

    def test_frontend_depends_on_backend(self) -> None:
        frontend = self.app.get_stack("frontend")
        backend = self.app.get_stack("backend")

        assert backend in frontend.dependencies
        assert frontend not in backend.dependencies

    def test_backend_url_injected(self) -> None:
        frontend = self.app.get_stack("frontend")
        container = frontend.to_dict()["Resources"]["FrontendTaskDefinition"][
            "Properties"
        ]["ContainerDefinitions"][0]

        env = {e["Name"]: e["Value"] for e in container["Environment"]}
        assert env["BACKEND_URL"] == {
            "Fn::ImportValue": "tiered-app-dev-backend-BackendURL"
        }
