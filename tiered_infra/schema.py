"""JSON schema for the merged application configuration."""

_SERVICE_SCHEMA = {
    "type": "object",
    "required": [
        "image",
        "registry",
        "container_port",
        "cpu",
        "memory_mib",
        "desired_count",
        "health_check_path",
        "load_balancer",
        "subnet_tier",
    ],
    "properties": {
        "image": {"type": "string", "minLength": 1},
        "registry": {"enum": ["public", "private"]},
        "image_tag": {"type": "string", "minLength": 1},
        "repository_name": {"type": "string", "pattern": "^[a-z0-9][a-z0-9._/-]*$"},
        "container_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "health_check_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "cpu": {"enum": [256, 512, 1024, 2048, 4096]},
        "memory_mib": {"type": "integer", "minimum": 512},
        "desired_count": {"type": "integer", "minimum": 0},
        "health_check_path": {"type": "string", "pattern": "^/"},
        "load_balancer": {"enum": ["public", "internal", "none"]},
        "listener_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "subnet_tier": {"type": "string"},
        "log_retention_days": {"type": "integer"},
        "environment_variables": {
            "type": "object",
            "additionalProperties": {"type": "string"},
        },
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["project", "environment", "account", "region", "network"],
    "properties": {
        "project": {"type": "string", "pattern": "^[a-z][a-z0-9-]*$"},
        "environment": {"type": "string", "pattern": "^[a-z][a-z0-9-]*$"},
        "account": {"type": "string", "pattern": "^[0-9]{12}$"},
        "region": {"type": "string", "pattern": "^[a-z]{2}(-[a-z]+)+-[0-9]$"},
        "stack_name_pattern": {"type": "string"},
        "frontend_needs_backend_url": {"type": "boolean"},
        "tags": {"type": "object", "additionalProperties": {"type": "string"}},
        "network": {
            "type": "object",
            "required": ["cidr", "max_azs", "subnets"],
            "properties": {
                "cidr": {
                    "type": "string",
                    "pattern": r"^\d{1,3}(\.\d{1,3}){3}/\d{1,2}$",
                },
                "max_azs": {"type": "integer", "minimum": 1, "maximum": 6},
                "nat_gateways": {"type": "integer", "minimum": 0},
                "enable_dns": {"type": "boolean"},
                "enable_dns_hostnames": {"type": "boolean"},
                "subnets": {
                    "type": "array",
                    "minItems": 1,
                    "items": {
                        "type": "object",
                        "required": ["name", "type", "cidr_mask"],
                        "properties": {
                            "name": {"type": "string", "pattern": "^[A-Za-z][A-Za-z0-9]*$"},
                            "type": {"enum": ["public", "private"]},
                            "cidr_mask": {"type": "integer", "minimum": 16, "maximum": 28},
                        },
                        "additionalProperties": False,
                    },
                },
            },
            "additionalProperties": False,
        },
        "frontend": _SERVICE_SCHEMA,
        "backend": _SERVICE_SCHEMA,
        "static_assets": {
            "type": "object",
            "properties": {
                "bucket_name_pattern": {"type": ["string", "null"]},
                "enforce_ssl": {"type": "boolean"},
                "versioning": {"type": "boolean"},
                "block_public_access": {"type": "boolean"},
                "comment": {"type": "string"},
                "viewer_protocol_policy": {"enum": ["redirect-to-https", "https-only"]},
                "allowed_methods": {
                    "type": "array",
                    "items": {"type": "string"},
                    "minItems": 2,
                },
                "price_class": {
                    "enum": ["PriceClass_100", "PriceClass_200", "PriceClass_All"]
                },
                "default_root_object": {"type": "string"},
            },
            "additionalProperties": False,
        },
    },
}
