"""
Tests for the App registry, deployment ordering and synthesis.
"""

import json

import pytest

from tiered_infra.app import App, build_app
from tiered_infra.config import AppConfig
from tiered_infra.stacks import Stack


class TestDeploymentOrder:
    """Test ordering of stacks by their dependency edges."""

    def setup_method(self):
        self.app = App(AppConfig())

    def test_declaration_order_without_edges(self) -> None:
        stacks = [Stack(self.app, name) for name in ("a", "b", "c")]

        assert self.app.deployment_order() == stacks
        assert self.app.destroy_order() == list(reversed(stacks))

    def test_producers_first(self) -> None:
        consumer = Stack(self.app, "consumer")
        producer = Stack(self.app, "producer")
        consumer.add_dependency(producer)

        assert self.app.deployment_order() == [producer, consumer]
        assert self.app.destroy_order() == [consumer, producer]

    def test_cycle_raises(self) -> None:
        a = Stack(self.app, "a")
        b = Stack(self.app, "b")
        a.add_dependency(b)
        b.add_dependency(a)

        with pytest.raises(ValueError, match="Dependency cycle"):
            self.app.deployment_order()

    def test_unregistered_dependency_raises(self) -> None:
        other = Stack(App(AppConfig()), "elsewhere")
        stack = Stack(self.app, "local")
        stack.add_dependency(other)

        with pytest.raises(ValueError, match="unregistered"):
            self.app.deployment_order()

    def test_duplicate_stack_name(self) -> None:
        Stack(self.app, "network")

        with pytest.raises(ValueError, match="Duplicate stack name"):
            Stack(self.app, "network")

    def test_get_unknown_stack(self) -> None:
        with pytest.raises(KeyError):
            self.app.get_stack("database")


class TestBuildApp:
    """Test the application wiring."""

    def test_default_order(self) -> None:
        app = build_app(AppConfig())

        assert [s.stack_id for s in app.deployment_order()] == [
            "network",
            "frontend",
            "backend",
            "static-assets",
        ]

    def test_backend_first_order(self) -> None:
        app = build_app(AppConfig(frontend_needs_backend_url=True))
        order = [s.stack_id for s in app.deployment_order()]

        assert order.index("network") < order.index("backend") < order.index("frontend")
        assert app.destroy_order()[0].stack_id in ("frontend", "static-assets")

    def test_network_destroyed_after_consumers(self) -> None:
        app = build_app(AppConfig())
        order = [s.stack_id for s in app.destroy_order()]

        assert order.index("network") > order.index("frontend")
        assert order.index("network") > order.index("backend")


class TestSynth:
    """Test writing templates and the manifest."""

    def test_writes_templates_and_manifest(self, tmp_path) -> None:
        app = build_app(AppConfig(account="111122223333", region="us-west-2"))

        manifest_path = app.synth(tmp_path / "out")

        manifest = json.loads(manifest_path.read_text())
        assert manifest["account"] == "111122223333"
        assert manifest["region"] == "us-west-2"
        assert [s["name"] for s in manifest["stacks"]] == [
            "tiered-app-dev-network",
            "tiered-app-dev-frontend",
            "tiered-app-dev-backend",
            "tiered-app-dev-static-assets",
        ]
        frontend = manifest["stacks"][1]
        assert frontend["dependencies"] == ["tiered-app-dev-network"]

        for stack in manifest["stacks"]:
            template = json.loads((tmp_path / "out" / stack["template"]).read_text())
            assert template["AWSTemplateFormatVersion"] == "2010-09-09"
            assert template["Resources"]

    def test_synthesis_is_repeatable(self, tmp_path) -> None:
        build_app(AppConfig()).synth(tmp_path / "first")
        build_app(AppConfig()).synth(tmp_path / "second")

        for path in sorted((tmp_path / "first").iterdir()):
            assert path.read_text() == (tmp_path / "second" / path.name).read_text()
