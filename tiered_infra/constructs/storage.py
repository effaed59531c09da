"""
Storage constructs for the static asset bucket.
"""

from typing import Any, Dict, List, Optional

from troposphere import Export, GetAtt, Output, Ref, Sub, Tags, Template, s3


class StorageConstruct:
    """
    L2 Construct for static asset storage.
    Creates a private, encrypted S3 bucket with every public-access-block
    flag enabled. Read access is granted by the distribution construct.
    """

    def __init__(
        self,
        template: Template,
        config: Dict[str, Any],
        environment: str,
        bucket_name: Optional[str] = None,
    ):
        """
        Initialize storage construct.

        Args:
            template: CloudFormation template to add resources to
            config: Static asset configuration section
            environment: Deployment environment (dev/staging/prod)
            bucket_name: Physical bucket name, generated by CloudFormation if None
        """
        if not config.get("block_public_access", True):
            raise ValueError("Public access block cannot be disabled on the asset bucket")

        self.template = template
        self.config = config
        self.environment = environment
        self.bucket_name = bucket_name
        self.resources: Dict[str, Any] = {}

        self._create_bucket()
        self._create_outputs()

    def _create_bucket(self) -> None:
        """Create the static asset bucket."""
        bucket = s3.Bucket(
            "StaticAssetsBucket",
            PublicAccessBlockConfiguration=s3.PublicAccessBlockConfiguration(
                BlockPublicAcls=True,
                BlockPublicPolicy=True,
                IgnorePublicAcls=True,
                RestrictPublicBuckets=True,
            ),
            BucketEncryption=s3.BucketEncryption(
                ServerSideEncryptionConfiguration=[
                    s3.ServerSideEncryptionRule(
                        ServerSideEncryptionByDefault=s3.ServerSideEncryptionByDefault(
                            SSEAlgorithm="AES256"
                        )
                    )
                ]
            ),
            OwnershipControls=s3.OwnershipControls(
                Rules=[s3.OwnershipControlsRule(ObjectOwnership="BucketOwnerEnforced")]
            ),
            LifecycleConfiguration=s3.LifecycleConfiguration(
                Rules=[
                    s3.LifecycleRule(
                        Id="DeleteIncompleteMultipartUploads",
                        Status="Enabled",
                        AbortIncompleteMultipartUpload=s3.AbortIncompleteMultipartUpload(
                            DaysAfterInitiation=7
                        ),
                    )
                ]
            ),
            Tags=Tags(
                Name=Sub("${AWS::StackName}-static-assets"),
                Environment=self.environment,
            ),
        )

        if self.bucket_name:
            bucket.BucketName = self.bucket_name

        if self.config.get("versioning", False):
            bucket.VersioningConfiguration = s3.VersioningConfiguration(Status="Enabled")

        self.bucket = self.template.add_resource(bucket)
        self.resources["bucket"] = self.bucket

    def get_policy_statements(self) -> List[Dict[str, Any]]:
        """Bucket-level statements that apply regardless of the reader."""
        statements: List[Dict[str, Any]] = []
        if self.config.get("enforce_ssl", True):
            statements.append(
                {
                    "Sid": "DenyInsecureTransport",
                    "Effect": "Deny",
                    "Principal": {"AWS": "*"},
                    "Action": "s3:*",
                    "Resource": [
                        self.get_bucket_arn(),
                        Sub("${Arn}/*", Arn=self.get_bucket_arn()),
                    ],
                    "Condition": {"Bool": {"aws:SecureTransport": "false"}},
                }
            )
        return statements

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs."""
        outputs = [
            ("StaticAssetsBucketName", self.get_bucket_name(), "S3 bucket name for static assets"),
            ("StaticAssetsBucketArn", self.get_bucket_arn(), "S3 bucket ARN for static assets"),
        ]
        for name, value, description in outputs:
            self.template.add_output(
                Output(
                    name,
                    Value=value,
                    Description=description,
                    Export=Export(Sub(f"${{AWS::StackName}}-{name}")),
                )
            )

    def get_bucket_name(self) -> Ref:
        """Get reference to the bucket name."""
        return Ref(self.bucket)

    def get_bucket_arn(self) -> GetAtt:
        """Get reference to the bucket ARN."""
        return GetAtt(self.bucket, "Arn")
