#!/usr/bin/env python3
"""
Import ID Strategies

Most resources import by their physical id. Types whose import id has to be
synthesized from the template and related resources register an importer
here, keyed by Terraform type.
"""

import logging
from typing import Callable, Dict, List, Optional, Type

from .template import Template, TemplateResource

logger = logging.getLogger(__name__)


class ResourceImporter:
    """
    Computes the import id of one resource

    Args:
        resource: Template resource being imported
        physical_id: Physical id reported by CloudFormation
        template: The module's template, bound to the deployed stack
        warnings: List that receives warnings
    """

    def __init__(self, resource: TemplateResource, physical_id: str, template: Template, warnings: List[str]):
        self.resource = resource
        self.physical_id = physical_id
        self.template = template
        self.warnings = warnings

    def get_import_id(self) -> Optional[str]:
        """Import id, or None to skip the resource"""
        raise NotImplementedError

    def property_value(self, name: str) -> Optional[str]:
        """Evaluated value of a template property"""
        value = self.resource.get_property_value(name)
        if value is None:
            return None
        value = self.template.evaluate(value)
        return None if value is None else str(value)

    def warn(self, message: str):
        warning = f"Resource \"{self.resource.logical_id}\" ({self.resource.type}): {message}"
        logger.warning(warning)
        self.warnings.append(warning)


_IMPORTERS: Dict[str, Type[ResourceImporter]] = {}


def importer(terraform_type: str) -> Callable[[Type[ResourceImporter]], Type[ResourceImporter]]:
    """Class decorator registering an importer for a Terraform type"""
    def register(cls: Type[ResourceImporter]) -> Type[ResourceImporter]:
        _IMPORTERS[terraform_type] = cls
        return cls
    return register


def get_importer(terraform_type: str) -> Optional[Type[ResourceImporter]]:
    return _IMPORTERS.get(terraform_type)


def registered_types() -> List[str]:
    return sorted(_IMPORTERS)


@importer("aws_route53_record")
class Route53RecordImporter(ResourceImporter):
    """``ZONEID_NAME_TYPE``, optionally suffixed ``_SETIDENTIFIER``"""

    def get_import_id(self) -> Optional[str]:
        zone_id = self.property_value("HostedZoneId")
        if zone_id is None and self.resource.get_property_value("HostedZoneName") is not None:
            self.warn("Records identified by HostedZoneName cannot be imported; set HostedZoneId.")
            return None

        name = self.property_value("Name")
        record_type = self.property_value("Type")
        if not (zone_id and name and record_type):
            self.warn("Cannot determine hosted zone, name and type for import.")
            return None

        import_id = f"{zone_id}_{name.rstrip('.')}_{record_type}"
        set_identifier = self.property_value("SetIdentifier")
        if set_identifier:
            import_id += f"_{set_identifier}"
        return import_id


@importer("aws_lambda_permission")
class LambdaPermissionImporter(ResourceImporter):
    """``FUNCTION/STATEMENT``; the physical id is the statement id"""

    def get_import_id(self) -> Optional[str]:
        function_name = self.property_value("FunctionName")
        if not function_name:
            self.warn("Cannot determine function name for import.")
            return None

        # Accept a function ARN as well as a name
        if function_name.startswith("arn:"):
            function_name = function_name.split(":")[6]

        statement_id = self.physical_id.split("|")[-1]
        return f"{function_name}/{statement_id}"


@importer("aws_route")
class RouteImporter(ResourceImporter):
    """``ROUTETABLE_DESTINATION``"""

    def get_import_id(self) -> Optional[str]:
        route_table_id = self.property_value("RouteTableId")
        destination = (
            self.property_value("DestinationCidrBlock")
            or self.property_value("DestinationIpv6CidrBlock")
            or self.property_value("DestinationPrefixListId")
        )
        if not (route_table_id and destination):
            self.warn("Cannot determine route table and destination for import.")
            return None
        return f"{route_table_id}_{destination}"


@importer("aws_route_table_association")
class RouteTableAssociationImporter(ResourceImporter):
    """``SUBNET/ROUTETABLE``"""

    def get_import_id(self) -> Optional[str]:
        route_table_id = self.property_value("RouteTableId")
        subnet_id = self.property_value("SubnetId") or self.property_value("GatewayId")
        if not (route_table_id and subnet_id):
            self.warn("Cannot determine subnet and route table for import.")
            return None
        return f"{subnet_id}/{route_table_id}"


@importer("aws_network_acl_rule")
class NetworkAclRuleImporter(ResourceImporter):
    """``ACL:NUMBER:PROTOCOL:EGRESS``"""

    def get_import_id(self) -> Optional[str]:
        acl_id = self.property_value("NetworkAclId")
        rule_number = self.property_value("RuleNumber")
        protocol = self.property_value("Protocol")
        if not (acl_id and rule_number and protocol):
            self.warn("Cannot determine network ACL, rule number and protocol for import.")
            return None
        egress = (self.property_value("Egress") or "false").lower()
        return f"{acl_id}:{rule_number}:{protocol}:{egress}"


@importer("aws_api_gateway_resource")
class ApiGatewayResourceImporter(ResourceImporter):
    """``API/ID``"""

    def get_import_id(self) -> Optional[str]:
        rest_api_id = self.property_value("RestApiId")
        if not rest_api_id:
            self.warn("Cannot determine REST API id for import.")
            return None
        return f"{rest_api_id}/{self.physical_id}"
