#!/usr/bin/env python3
"""
Resource Mapper

Maps the physical resources of a stack to Terraform resource types and
writes the empty placeholder blocks ``terraform import`` needs.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .schema import AwsSchema
from .stack_reader import NESTED_STACK_TYPE, CloudFormationResource

logger = logging.getLogger(__name__)

# Resources with no Terraform counterpart of their own; their configuration
# is folded into the resource they attach to.
MERGED_RESOURCES = frozenset({
    "AWS::IAM::Policy",
    "AWS::EC2::SecurityGroupIngress",
    "AWS::EC2::SecurityGroupEgress",
})

# Resources that cannot be imported
UNSUPPORTED_RESOURCES = frozenset({
    "AWS::ApiGateway::Deployment",
    "AWS::CloudFormation::CustomResource",
    "AWS::CloudFormation::Macro",
    "AWS::CloudFormation::WaitCondition",
    "AWS::CloudFormation::WaitConditionHandle",
    "AWS::CDK::Metadata",
})

CUSTOM_RESOURCE_PREFIX = "Custom::"


@dataclass
class ResourceMapping:
    """A stack resource chosen for import"""
    resource: CloudFormationResource
    terraform_type: str
    module_prefix: str = ""
    is_imported: bool = False
    depends_on: List[str] = field(default_factory=list)

    @property
    def logical_id(self) -> str:
        return self.resource.logical_id

    @property
    def physical_id(self) -> str:
        return self.resource.physical_id

    @property
    def aws_type(self) -> str:
        return self.resource.resource_type

    @property
    def aws_address(self) -> str:
        return self.resource.aws_address

    @property
    def local_address(self) -> str:
        """Address within the resource's own module"""
        return f"{self.terraform_type}.{self.logical_id}"

    @property
    def address(self) -> str:
        """Address from the root module"""
        return f"{self.module_prefix}{self.local_address}"


@dataclass
class MappingResult:
    """Outcome of mapping one stack's resources"""
    mappings: List[ResourceMapping] = field(default_factory=list)
    nested_stacks: List[CloudFormationResource] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


class ResourceMapper:
    """
    Chooses which stack resources to import and as what

    Args:
        schema: Provider schema registry
        export_nested_stacks: Export nested stacks as child modules instead of
            reporting them as unsupported
    """

    def __init__(self, schema: AwsSchema, export_nested_stacks: bool = False):
        self.schema = schema
        self.export_nested_stacks = export_nested_stacks

    def is_supported(self, aws_type: str) -> bool:
        if aws_type in UNSUPPORTED_RESOURCES or aws_type.startswith(CUSTOM_RESOURCE_PREFIX):
            return False
        if aws_type == NESTED_STACK_TYPE:
            return self.export_nested_stacks
        return True

    def map_resources(self,
                      resources: List[CloudFormationResource],
                      module_directory: Optional[Path] = None,
                      module_prefix: str = "") -> MappingResult:
        """
        Map a stack's resources

        Args:
            resources: Paired template and physical resources
            module_directory: Directory whose ``main.tf`` receives the placeholders;
                nothing is written when None
            module_prefix: Address prefix of the module, e.g. ``module.network.``

        Returns:
            MappingResult with mappings, nested stacks to export and warnings
        """
        result = MappingResult()

        for resource in resources:
            aws_type = resource.resource_type

            if aws_type in MERGED_RESOURCES:
                logger.debug(f"{resource.aws_address}: merged into its owning resource")
                continue

            if aws_type == NESTED_STACK_TYPE and self.export_nested_stacks:
                result.nested_stacks.append(resource)
                continue

            if not self.is_supported(aws_type):
                self._warn(result, f"Resource \"{resource.logical_id}\" ({aws_type}): Not supported for import.")
                continue

            terraform_type = self.schema.get_terraform_type(aws_type)
            if terraform_type is None or terraform_type not in self.schema:
                self._warn(
                    result, f"Resource \"{resource.logical_id}\" ({aws_type}): No corresponding terraform resource."
                )
                continue

            result.mappings.append(ResourceMapping(resource, terraform_type, module_prefix))

        if module_directory is not None:
            self.write_placeholders(result.mappings, module_directory)

        logger.info(
            f"Mapped {len(result.mappings)} of {len(resources)} resources"
            f"{f', {len(result.nested_stacks)} nested stacks' if result.nested_stacks else ''}"
        )
        return result

    @staticmethod
    def write_placeholders(mappings: List[ResourceMapping], module_directory: Path):
        """Append an empty resource block per mapping to ``main.tf``"""
        if not mappings:
            return
        module_directory.mkdir(parents=True, exist_ok=True)
        with open(module_directory / "main.tf", "a", encoding="utf-8") as f:
            for mapping in mappings:
                f.write(f"resource \"{mapping.terraform_type}\" \"{mapping.logical_id}\" {{}}\n\n")

    @staticmethod
    def _warn(result: MappingResult, message: str):
        logger.warning(message)
        result.warnings.append(message)
