"""
L2 Distribution Construct for static asset delivery.
Provides a CloudFront distribution reading a private S3 bucket through an
origin access control.
"""

from typing import Any, Dict, List

from troposphere import Export, GetAtt, Join, Output, Ref, Sub, Tags, Template, cloudfront, s3

from .storage import StorageConstruct

READ_ONLY_METHOD_SETS = (
    ["GET", "HEAD"],
    ["GET", "HEAD", "OPTIONS"],
)
HTTPS_VIEWER_POLICIES = ("redirect-to-https", "https-only")

# Managed cache policy "CachingOptimized"
CACHING_OPTIMIZED_POLICY_ID = "658327ea-f89d-4fab-a63d-7e88639e58f6"

CLOUDFRONT_SERVICE_PRINCIPAL = "cloudfront.amazonaws.com"


class DistributionConstruct:
    """
    L2 Construct for content distribution infrastructure.
    Creates the origin access control, the CloudFront distribution and the
    bucket policy that makes the distribution the bucket's only reader.
    """

    def __init__(
        self,
        template: Template,
        config: Dict[str, Any],
        environment: str,
        storage: StorageConstruct,
    ):
        """
        Initialize distribution construct.

        Args:
            template: CloudFormation template to add resources to
            config: Static asset configuration section
            environment: Deployment environment (dev/staging/prod)
            storage: Storage construct owning the origin bucket
        """
        self.template = template
        self.config = config
        self.environment = environment
        self.storage = storage
        self.resources: Dict[str, Any] = {}

        self.allowed_methods = self._validate_allowed_methods()
        self.viewer_protocol_policy = self._validate_viewer_protocol_policy()

        self._create_origin_access_control()
        self._create_cloudfront_distribution()
        self._create_bucket_policy()
        self._create_outputs()

    def _validate_allowed_methods(self) -> List[str]:
        requested = {
            m.upper() for m in self.config.get("allowed_methods", ["GET", "HEAD", "OPTIONS"])
        }
        for method_set in READ_ONLY_METHOD_SETS:
            if requested == set(method_set):
                return list(method_set)
        raise ValueError(
            f"Distribution allowed methods must be read-only, got {sorted(requested)}"
        )

    def _validate_viewer_protocol_policy(self) -> str:
        policy = self.config.get("viewer_protocol_policy", "redirect-to-https")
        if policy not in HTTPS_VIEWER_POLICIES:
            raise ValueError(
                f"Viewer protocol policy must enforce HTTPS, got {policy}"
            )
        return policy

    def _create_origin_access_control(self) -> None:
        """Create the origin access control used to sign requests to S3."""
        self.oac = self.template.add_resource(
            cloudfront.OriginAccessControl(
                "OriginAccessControl",
                OriginAccessControlConfig=cloudfront.OriginAccessControlConfig(
                    Name=Sub("${AWS::StackName}-oac"),
                    Description="Origin access control for static assets",
                    OriginAccessControlOriginType="s3",
                    SigningBehavior="always",
                    SigningProtocol="sigv4",
                ),
            )
        )
        self.resources["origin_access_control"] = self.oac

    def _create_cloudfront_distribution(self) -> None:
        """Create the CloudFront distribution."""
        origin = cloudfront.Origin(
            Id="S3Origin",
            DomainName=GetAtt(self.storage.bucket, "RegionalDomainName"),
            OriginAccessControlId=GetAtt(self.oac, "Id"),
            S3OriginConfig=cloudfront.S3OriginConfig(OriginAccessIdentity=""),
        )

        default_cache_behavior = cloudfront.DefaultCacheBehavior(
            TargetOriginId="S3Origin",
            ViewerProtocolPolicy=self.viewer_protocol_policy,
            AllowedMethods=self.allowed_methods,
            CachedMethods=["GET", "HEAD"],
            Compress=True,
            CachePolicyId=CACHING_OPTIMIZED_POLICY_ID,
        )

        distribution_config = cloudfront.DistributionConfig(
            Enabled=True,
            Comment=self.config.get("comment", "CloudFront Distribution for Static Assets"),
            Origins=[origin],
            DefaultCacheBehavior=default_cache_behavior,
            PriceClass=self.config.get("price_class", "PriceClass_100"),
            HttpVersion="http2",
            ViewerCertificate=cloudfront.ViewerCertificate(
                CloudFrontDefaultCertificate=True
            ),
        )

        if self.config.get("default_root_object"):
            distribution_config.DefaultRootObject = self.config["default_root_object"]

        self.distribution = self.template.add_resource(
            cloudfront.Distribution(
                "CloudFrontDistribution",
                DistributionConfig=distribution_config,
                Tags=Tags(
                    Name=Sub("${AWS::StackName}-distribution"),
                    Environment=self.environment,
                ),
            )
        )
        self.resources["distribution"] = self.distribution

    def _create_bucket_policy(self) -> None:
        """Grant object reads to this distribution only."""
        read_statement = {
            "Sid": "AllowCloudFrontServicePrincipalReadOnly",
            "Effect": "Allow",
            "Principal": {"Service": CLOUDFRONT_SERVICE_PRINCIPAL},
            "Action": "s3:GetObject",
            "Resource": Sub("${Arn}/*", Arn=self.storage.get_bucket_arn()),
            "Condition": {
                "StringEquals": {
                    "AWS:SourceArn": Sub(
                        "arn:aws:cloudfront::${AWS::AccountId}:distribution/${Distribution}",
                        Distribution=self.get_distribution_id(),
                    )
                }
            },
        }

        self.bucket_policy = self.template.add_resource(
            s3.BucketPolicy(
                "StaticAssetsBucketPolicy",
                Bucket=self.storage.get_bucket_name(),
                PolicyDocument={
                    "Version": "2012-10-17",
                    "Statement": self.storage.get_policy_statements() + [read_statement],
                },
            )
        )
        self.resources["bucket_policy"] = self.bucket_policy

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs."""
        outputs = {
            "CloudFrontDistributionId": {
                "value": self.get_distribution_id(),
                "description": "CloudFront distribution ID",
            },
            "CloudFrontDistributionDomainName": {
                "value": self.get_distribution_domain_name(),
                "description": "CloudFront distribution domain name",
            },
            "DistributionURL": {
                "value": self.get_distribution_url(),
                "description": "CloudFront distribution URL",
            },
        }

        for name, output_config in outputs.items():
            self.template.add_output(
                Output(
                    name,
                    Value=output_config["value"],
                    Description=output_config["description"],
                    Export=Export(Sub(f"${{AWS::StackName}}-{name}")),
                )
            )

    def get_distribution_id(self) -> Ref:
        """Get reference to CloudFront distribution ID"""
        return Ref(self.distribution)

    def get_distribution_domain_name(self) -> GetAtt:
        """Get reference to CloudFront distribution domain name"""
        return GetAtt(self.distribution, "DomainName")

    def get_distribution_url(self) -> Join:
        """Get CloudFront distribution URL"""
        return Join("", ["https://", self.get_distribution_domain_name()])
