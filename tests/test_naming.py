"""
Tests for the 3-letter naming convention.
"""

import pytest

from tiered_infra.naming import (
    NamingConvention,
    get_load_balancer_name,
    get_resource_name,
)


class TestNamingConvention:
    """Test NamingConvention class."""

    def test_project_code_from_short_name(self) -> None:
        assert NamingConvention.get_project_code("tiered-app") == "tie"

    def test_project_code_from_initials(self) -> None:
        assert NamingConvention.get_project_code("static-asset-store") == "sas"

    def test_project_code_too_short(self) -> None:
        with pytest.raises(ValueError, match="Cannot derive"):
            NamingConvention.get_project_code("ab")

    def test_environment_codes(self) -> None:
        assert NamingConvention.get_environment_code("dev") == "dev"
        assert NamingConvention.get_environment_code("production") == "prd"
        assert NamingConvention.get_environment_code("Staging") == "stg"
        assert NamingConvention.get_environment_code("test") == "tes"

    def test_unknown_short_environment(self) -> None:
        with pytest.raises(ValueError, match="Unknown environment"):
            NamingConvention.get_environment_code("qa")

    def test_format_resource_name(self) -> None:
        name = NamingConvention.format_resource_name("tiered-app", "prod", "frontend-cluster")
        assert name == "tie-prd-frontend-cluster"

    def test_format_resource_name_with_codes(self) -> None:
        assert NamingConvention.format_resource_name("tie", "dev", "x") == "tie-dev-x"

    def test_invalid_resource_name(self) -> None:
        with pytest.raises(ValueError, match="Invalid resource name"):
            NamingConvention.format_resource_name("tiered-app", "dev", "Frontend_Cluster")

    def test_max_length_enforced(self) -> None:
        with pytest.raises(ValueError, match="exceeds 32 characters"):
            get_load_balancer_name("tiered-app", "dev", "a-very-long-load-balancer-name")


def test_convenience_functions() -> None:
    assert get_resource_name("tiered-app", "dev", "backend-service") == "tie-dev-backend-service"
    assert get_load_balancer_name("tiered-app", "dev", "frontend-alb") == "tie-dev-frontend-alb"
