"""
Naming convention utilities for 3-letter project and environment codes.

Physical names (clusters, services, load balancers, repositories) follow the
pattern ``[PROJ]-[ENV]-[resource-name]``.
"""

import re
from typing import Dict, Optional


class NamingConvention:
    """Manages 3-letter naming convention for projects and environments."""

    # Environment code mappings
    ENVIRONMENT_CODES: Dict[str, str] = {
        "development": "dev",
        "dev": "dev",
        "staging": "stg",
        "stage": "stg",
        "production": "prd",
        "prod": "prd",
    }

    # ALB and target group names are limited to 32 characters
    LOAD_BALANCER_NAME_MAX_LENGTH = 32

    RESOURCE_NAME_PATTERN = re.compile(r"^[a-z0-9-]+$")

    @classmethod
    def get_project_code(cls, project_name: str) -> str:
        """
        Get 3-letter project code from project name.

        The code is the first letter of each hyphenated word when the name has
        three or more words, otherwise the first three letters.

        Args:
            project_name: Full project name (e.g., "tiered-app")

        Returns:
            3-letter project code (e.g., "tie")

        Raises:
            ValueError: If no 3-letter code can be derived
        """
        words = [w for w in project_name.lower().split("-") if w]
        if len(words) >= 3:
            return "".join(w[0] for w in words[:3])
        fallback = "".join(words)[:3]
        if len(fallback) == 3:
            return fallback
        raise ValueError(f"Cannot derive a project code from: {project_name}")

    @classmethod
    def get_environment_code(cls, environment: str) -> str:
        """
        Get 3-letter environment code from environment name.

        Raises:
            ValueError: If environment name is too short to abbreviate
        """
        env_lower = environment.lower()
        code = cls.ENVIRONMENT_CODES.get(env_lower)
        if not code:
            fallback = env_lower[:3]
            if len(fallback) == 3:
                return fallback
            raise ValueError(f"Unknown environment: {environment}")
        return code

    @classmethod
    def format_resource_name(
        cls,
        project: str,
        environment: str,
        resource_name: str,
        max_length: Optional[int] = None,
    ) -> str:
        """
        Format a resource name following the 3-letter convention.

        Args:
            project: Project name or code
            environment: Environment name or code
            resource_name: The specific resource name
            max_length: Optional limit imposed by the AWS resource type

        Returns:
            Formatted resource name (e.g., "tie-dev-frontend-alb")

        Raises:
            ValueError: If inputs are invalid or the name is too long
        """
        project_code = cls.get_project_code(project) if len(project) > 3 else project
        env_code = (
            cls.get_environment_code(environment) if len(environment) > 3 else environment
        )

        if not cls.RESOURCE_NAME_PATTERN.match(resource_name):
            raise ValueError(
                f"Invalid resource name: {resource_name}. "
                "Must contain only lowercase letters, numbers, and hyphens."
            )

        name = f"{project_code}-{env_code}-{resource_name}"
        if max_length is not None and len(name) > max_length:
            raise ValueError(
                f"Resource name {name} exceeds {max_length} characters"
            )
        return name


def get_resource_name(project: str, environment: str, resource: str) -> str:
    """Convenience function to format a resource name."""
    return NamingConvention.format_resource_name(project, environment, resource)


def get_load_balancer_name(project: str, environment: str, resource: str) -> str:
    """Format a load balancer name, enforcing the ALB length limit."""
    return NamingConvention.format_resource_name(
        project,
        environment,
        resource,
        max_length=NamingConvention.LOAD_BALANCER_NAME_MAX_LENGTH,
    )
