"""
Static asset stack: private S3 bucket behind a CloudFront distribution.
"""

from typing import TYPE_CHECKING

from ..constructs.distribution import DistributionConstruct
from ..constructs.storage import StorageConstruct
from .base import Stack

if TYPE_CHECKING:
    from ..app import App


class StaticAssetsStack(Stack):
    """Independent of the other stacks; needs only the account/region context."""

    description = "Static asset bucket and CloudFront distribution"

    def __init__(self, app: "App", stack_id: str = "static-assets"):
        super().__init__(app, stack_id)

        self.storage = StorageConstruct(
            self.template,
            self.config.static_assets,
            self.config.environment,
            bucket_name=self.config.get_bucket_name(),
        )
        self.distribution = DistributionConstruct(
            self.template,
            self.config.static_assets,
            self.config.environment,
            storage=self.storage,
        )
