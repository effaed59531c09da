"""
Frontend and backend container stacks.
"""

from typing import TYPE_CHECKING, Any, Dict, Optional

from ..constructs.compute import ServiceConstruct
from .base import Stack
from .network import NetworkStack

if TYPE_CHECKING:
    from ..app import App


class BackendStack(Stack):
    """Backend API service behind an internal load balancer."""

    description = "Backend ECS service and internal load balancer"

    def __init__(self, app: "App", network: NetworkStack, stack_id: str = "backend"):
        super().__init__(app, stack_id)

        self.service = ServiceConstruct(
            self.template,
            self.config.backend,
            self.config.environment,
            name="Backend",
            project=self.config.project,
            network=network.import_handles(self),
        )


class FrontendStack(Stack):
    """
    Public frontend service behind an internet-facing load balancer.

    When a backend stack is given, the frontend container receives the
    backend URL as ``BACKEND_URL`` and the frontend stack depends on the
    backend stack.
    """

    description = "Frontend ECS service and public load balancer"

    def __init__(
        self,
        app: "App",
        network: NetworkStack,
        backend: Optional[BackendStack] = None,
        stack_id: str = "frontend",
    ):
        super().__init__(app, stack_id)

        extra_environment: Dict[str, Any] = {}
        if backend is not None:
            extra_environment["BACKEND_URL"] = self.import_output(backend, "BackendURL")

        self.service = ServiceConstruct(
            self.template,
            self.config.frontend,
            self.config.environment,
            name="Frontend",
            project=self.config.project,
            network=network.import_handles(self),
            extra_environment=extra_environment,
        )
