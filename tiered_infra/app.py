"""
Application: the ordered registry of stacks, their deployment order and synthesis.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import AppConfig
from .stacks import BackendStack, FrontendStack, NetworkStack, Stack, StaticAssetsStack

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


class App:
    """Holds every stack of one deployment in declaration order."""

    def __init__(self, config: AppConfig):
        self.config = config
        self.stacks: Dict[str, Stack] = {}

    def add_stack(self, stack: Stack) -> Stack:
        if stack.stack_name in self.stacks:
            raise ValueError(f"Duplicate stack name: {stack.stack_name}")
        self.stacks[stack.stack_name] = stack
        logger.debug(f"Registered stack {stack.stack_name}")
        return stack

    def get_stack(self, name: str) -> Stack:
        """Get a stack by stack name or stack id."""
        if name in self.stacks:
            return self.stacks[name]
        for stack in self.stacks.values():
            if stack.stack_id == name:
                return stack
        raise KeyError(f"Unknown stack: {name}")

    def deployment_order(self) -> List[Stack]:
        """
        Stacks in the order they must be applied.

        Producers always precede their consumers. Stacks with no ordering
        constraint between them keep their declaration order.

        Raises:
            ValueError: On a dependency cycle or a dependency on a stack that
                is not registered in this app
        """
        stacks = list(self.stacks.values())
        for stack in stacks:
            for dependency in stack.dependencies:
                if self.stacks.get(dependency.stack_name) is not dependency:
                    raise ValueError(
                        f"Stack {stack.stack_name} depends on unregistered stack "
                        f"{dependency.stack_name}"
                    )

        ordered: List[Stack] = []
        placed = set()
        while len(ordered) < len(stacks):
            ready = next(
                (
                    s
                    for s in stacks
                    if s.stack_name not in placed
                    and all(d.stack_name in placed for d in s.dependencies)
                ),
                None,
            )
            if ready is None:
                remaining = [s.stack_name for s in stacks if s.stack_name not in placed]
                raise ValueError(f"Dependency cycle between stacks: {remaining}")
            ordered.append(ready)
            placed.add(ready.stack_name)

        return ordered

    def destroy_order(self) -> List[Stack]:
        """Consumers before producers."""
        return list(reversed(self.deployment_order()))

    def manifest(self) -> Dict[str, Any]:
        return {
            "project": self.config.project,
            "environment": self.config.environment,
            "account": self.config.account,
            "region": self.config.region,
            "stacks": [
                {
                    "id": stack.stack_id,
                    "name": stack.stack_name,
                    "template": f"{stack.stack_name}.template.json",
                    "dependencies": [d.stack_name for d in stack.dependencies],
                    "imports": dict(sorted(stack.imports.items())),
                    "tags": stack.tags,
                }
                for stack in self.deployment_order()
            ],
        }

    def synth(self, outdir: Union[str, Path]) -> Path:
        """
        Write one template per stack plus a manifest.

        Returns:
            Path of the written manifest
        """
        outdir = Path(outdir)
        outdir.mkdir(parents=True, exist_ok=True)

        for stack in self.deployment_order():
            path = outdir / f"{stack.stack_name}.template.json"
            path.write_text(stack.to_json() + "\n")
            logger.info(f"Synthesized {stack.stack_name} -> {path}")

        manifest_path = outdir / MANIFEST_FILE
        manifest_path.write_text(json.dumps(self.manifest(), indent=2) + "\n")
        return manifest_path


def build_app(config: AppConfig, app: Optional[App] = None) -> App:
    """
    Declare the four stacks of the tiered application.

    With ``frontend_needs_backend_url`` the backend is declared first and the
    frontend imports its URL; otherwise both compute stacks depend only on
    the network.
    """
    app = app or App(config)
    network = NetworkStack(app)

    if config.frontend_needs_backend_url:
        backend = BackendStack(app, network)
        FrontendStack(app, network, backend=backend)
    else:
        FrontendStack(app, network)
        BackendStack(app, network)

    StaticAssetsStack(app)

    logger.info(
        f"Declared {len(app.stacks)} stacks for {config.project} "
        f"({config.environment}, {config.account}/{config.region})"
    )
    return app
