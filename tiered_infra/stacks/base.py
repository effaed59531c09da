"""
Base class for a named, independently deployable CloudFormation stack.
"""

import logging
from typing import TYPE_CHECKING, Any, Dict, List

from troposphere import ImportValue, Split, Template

if TYPE_CHECKING:
    from ..app import App

logger = logging.getLogger(__name__)


class Stack:
    """
    One configuration group submitted to CloudFormation as a unit.

    A stack owns a troposphere Template. Values produced by another stack are
    read through ``import_output``, which records an explicit dependency edge
    on the producer so it is always applied first.
    """

    description = ""

    def __init__(self, app: "App", stack_id: str):
        self.app = app
        self.config = app.config
        self.stack_id = stack_id
        self.stack_name = self.config.get_stack_name(stack_id)
        self.dependencies: List["Stack"] = []
        self.imports: Dict[str, str] = {}

        self.template = Template()
        self.template.set_version("2010-09-09")
        self.template.set_description(
            f"{self.description} ({self.config.project} {self.config.environment})"
        )

        app.add_stack(self)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.stack_name}>"

    @property
    def tags(self) -> Dict[str, str]:
        """Stack-level tags, propagated by CloudFormation to supported resources."""
        return {
            "Project": self.config.project,
            "Environment": self.config.environment,
            **self.config.tags,
        }

    def add_dependency(self, other: "Stack") -> None:
        """Declare that ``other`` must be applied before this stack."""
        if other is self:
            raise ValueError(f"Stack {self.stack_name} cannot depend on itself")
        if other not in self.dependencies:
            logger.debug(f"{self.stack_name} depends on {other.stack_name}")
            self.dependencies.append(other)

    def export_name(self, output_name: str) -> str:
        """Export name of one of this stack's outputs."""
        return f"{self.stack_name}-{output_name}"

    def import_output(self, producer: "Stack", output_name: str) -> ImportValue:
        """
        Reference another stack's exported output.

        Raises:
            KeyError: If the producer has no such output
        """
        if output_name not in producer.template.outputs:
            raise KeyError(
                f"Stack {producer.stack_name} has no output named {output_name}"
            )
        self.add_dependency(producer)
        export = producer.export_name(output_name)
        self.imports[export] = producer.stack_name
        return ImportValue(export)

    def import_list(self, producer: "Stack", output_name: str) -> Split:
        """Reference a comma-joined list output of another stack."""
        return Split(",", self.import_output(producer, output_name))

    def to_dict(self) -> Dict[str, Any]:
        return self.template.to_dict()

    def to_json(self) -> str:
        return self.template.to_json()
