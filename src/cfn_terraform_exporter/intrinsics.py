#!/usr/bin/env python3
"""
Intrinsic Function Resolver

Converts CloudFormation intrinsic functions into Terraform reference
expressions. When no static expression exists the resolver returns None and
the caller keeps the literal value captured from the deployed stack.
"""

import ipaddress
import logging
import re
from typing import Any, Dict, List, Optional

from .exceptions import IntrinsicResolutionError, TemplateEvaluationError
from .references import (
    DataSourceReference,
    DirectReference,
    FunctionReference,
    IndirectReference,
    InputVariableReference,
    InterpolationReference,
    MapReference,
    ModuleReference,
    Reference,
)
from .schema import AwsSchema
from .template import (
    Base64,
    Cidr,
    FindInMap,
    GetAtt,
    GetAZs,
    If,
    Intrinsic,
    Join,
    Ref,
    Select,
    Split,
    Sub,
    Template,
)

logger = logging.getLogger(__name__)

# Pseudo parameter -> (data source type, data source name, attribute)
PSEUDO_PARAMETERS = {
    "AWS::Region": ("aws_region", "current", "name"),
    "AWS::AccountId": ("aws_caller_identity", "current", "account_id"),
    "AWS::Partition": ("aws_partition", "current", "partition"),
    "AWS::URLSuffix": ("aws_partition", "current", "dns_suffix"),
}

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")


def camel_to_snake(name: str) -> str:
    """``PrivateDnsName`` -> ``private_dns_name``, ``DNSName`` -> ``dns_name``"""
    name = name.replace(".", "_")
    name = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", name)
    name = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    return name.lower()


class _Unresolved(Exception):
    """A nested argument has no static expression"""


class IntrinsicResolver:
    """
    Resolves intrinsics found in one module's template

    Args:
        template: The module's parsed template, bound to the deployed stack
        schema: Provider schema registry, for attribute name maps
        resource_addresses: Logical id -> Terraform address of every imported resource
        module_names: Logical id -> module name of every exported nested stack
    """

    def __init__(self,
                 template: Template,
                 schema: AwsSchema,
                 resource_addresses: Dict[str, str],
                 module_names: Optional[Dict[str, str]] = None):
        self.template = template
        self.schema = schema
        self.resource_addresses = resource_addresses
        self.module_names = module_names or {}
        self.data_sources: Dict[str, DataSourceReference] = {}

    def resolve(self, intrinsic: Intrinsic, index: int = -1) -> Optional[Reference]:
        """
        Resolve an intrinsic to a reference

        Args:
            intrinsic: The intrinsic node
            index: Subscript to apply to the result, -1 for none

        Returns:
            The reference, or None when the literal value has to stay

        Raises:
            IntrinsicResolutionError: The intrinsic can never be expressed, e.g.
                a FindInMap key computed by a function other than Ref
        """
        handler = getattr(self, f"_resolve_{type(intrinsic).__name__.lower()}", None)
        if handler is None:
            logger.debug(f"No Terraform expression for {intrinsic.tag_name}")
            return None

        try:
            reference = handler(intrinsic, index)
        except (_Unresolved, TemplateEvaluationError) as e:
            logger.debug(f"Cannot resolve {intrinsic!r}: {str(e)}")
            return None

        if isinstance(reference, DataSourceReference):
            self.data_sources[reference.block_address] = reference
        return reference

    def _argument(self, value: Any) -> Any:
        if isinstance(value, Intrinsic):
            reference = self.resolve(value)
            if reference is None:
                raise _Unresolved(repr(value))
            return reference
        if isinstance(value, list):
            return [self._argument(v) for v in value]
        return value

    def _argument_or_literal(self, value: Any) -> Any:
        """Like _argument, falling back to the evaluated literal"""
        if isinstance(value, list):
            return [self._argument_or_literal(v) for v in value]
        try:
            return self._argument(value)
        except _Unresolved:
            return self.template.evaluate(value)

    def _resolve_ref(self, intrinsic: Ref, index: int) -> Optional[Reference]:
        name = intrinsic.reference

        if name in PSEUDO_PARAMETERS:
            return DataSourceReference(*PSEUDO_PARAMETERS[name])

        if name.startswith("AWS::"):
            return None

        parameter = self.template.parameters.get(name)
        if parameter is not None:
            if parameter.is_ssm_parameter:
                return DataSourceReference("aws_ssm_parameter", name, "value", is_parameter=True)
            return InputVariableReference(name, index)

        if name in self.resource_addresses:
            return DirectReference(self.resource_addresses[name])

        if name in self.module_names:
            return None

        logger.debug(f"Ref to \"{name}\" which was not imported")
        return None

    def _resolve_getatt(self, intrinsic: GetAtt, index: int) -> Optional[Reference]:
        attribute = intrinsic.resolved_attribute_name(self.template)
        subscript = f"[{index}]" if index >= 0 else ""

        if intrinsic.logical_name in self.module_names and attribute.startswith("Outputs."):
            output = attribute.split(".", 1)[1]
            return ModuleReference(f"{self.module_names[intrinsic.logical_name]}.{output}", index)

        address = self.resource_addresses.get(intrinsic.logical_name)
        if address is None:
            return None

        terraform_type = address.split(".")[-2]
        traits = self.schema.get_traits(terraform_type)
        terraform_attribute = traits.attribute_map.get(attribute) or camel_to_snake(attribute)
        return IndirectReference(f"{address}.{terraform_attribute}{subscript}")

    def _resolve_findinmap(self, intrinsic: FindInMap, index: int) -> Optional[Reference]:
        path = "local.mappings"
        for key in (intrinsic.map_name, intrinsic.top_level_key, intrinsic.second_level_key):
            if isinstance(key, Ref):
                reference = self.resolve(key)
                if reference is None:
                    raise IntrinsicResolutionError(f"Fn::FindInMap: cannot resolve key {key!r}")
                path += f"[{reference.reference_expression}]"
            elif isinstance(key, Intrinsic):
                raise IntrinsicResolutionError(
                    f"Fn::FindInMap: {key.tag_name} cannot be used as a map key in Terraform locals"
                )
            else:
                key = str(key)
                path += f".{key}" if _IDENTIFIER.match(key) else f"[\"{key}\"]"
        return MapReference(path, index)

    def _resolve_getazs(self, intrinsic: GetAZs, index: int) -> Optional[Reference]:
        attribute = f"names[{index}]" if index >= 0 else "names"
        return DataSourceReference("aws_availability_zones", "available", attribute)

    def _resolve_select(self, intrinsic: Select, index: int) -> Optional[Reference]:
        selected = intrinsic.resolved_index(self.template)

        if isinstance(intrinsic.items, Intrinsic):
            reference = self.resolve(intrinsic.items, selected)
            if isinstance(reference, DataSourceReference) and reference.is_parameter:
                # StringList parameters hold one comma separated string
                return FunctionReference("split", [",", reference], selected)
            if isinstance(reference, DirectReference):
                return FunctionReference("element", [reference, selected])
            return reference

        if isinstance(intrinsic.items, list) and selected < len(intrinsic.items):
            item = intrinsic.items[selected]
            if isinstance(item, Intrinsic):
                return self.resolve(item, index)

        return None

    def _resolve_join(self, intrinsic: Join, index: int) -> Optional[Reference]:
        items = self._argument_or_literal(intrinsic.items) if isinstance(intrinsic.items, list) \
            else self._argument(intrinsic.items)
        if isinstance(items, list) and not any(isinstance(i, Reference) for i in items):
            # Only literals: the captured value says it all
            return None
        if isinstance(items, Reference):
            items = [items]
        return FunctionReference("join", [intrinsic.separator, items], index)

    def _resolve_split(self, intrinsic: Split, index: int) -> Optional[Reference]:
        source = self._argument(intrinsic.source)
        if not isinstance(source, Reference):
            return None
        return FunctionReference("split", [intrinsic.delimiter, source], index)

    def _resolve_base64(self, intrinsic: Base64, index: int) -> Optional[Reference]:
        value = self._argument(intrinsic.value)
        if not isinstance(value, Reference):
            return None
        return FunctionReference("base64encode", [value])

    def _resolve_cidr(self, intrinsic: Cidr, index: int) -> Optional[Reference]:
        block = self._argument(intrinsic.ip_block)
        if not isinstance(block, Reference):
            return None

        network = ipaddress.ip_network(str(self.template.evaluate(intrinsic.ip_block)), strict=False)
        count = int(self.template.evaluate(intrinsic.count))
        bits = int(self.template.evaluate(intrinsic.cidr_bits))
        new_bits = network.max_prefixlen - bits - network.prefixlen

        if index >= 0:
            return FunctionReference("cidrsubnet", [block, new_bits, index])
        return FunctionReference("cidrsubnets", [block] + [new_bits] * count)

    def _resolve_if(self, intrinsic: If, index: int) -> Optional[Reference]:
        chosen = intrinsic.value_if_true if self.template.evaluate_condition(intrinsic.condition_name) \
            else intrinsic.value_if_false
        if isinstance(chosen, Intrinsic):
            return self.resolve(chosen, index)
        return None

    def _resolve_sub(self, intrinsic: Sub, index: int) -> Optional[Reference]:
        parts: List[str] = []
        has_reference = False
        position = 0

        for match in Sub._PLACEHOLDER.finditer(intrinsic.expression):
            parts.append(_escape_literal(intrinsic.expression[position:match.start()]))
            position = match.end()
            name = match.group(1)

            if name.startswith("!"):
                parts.append("$${" + _escape_literal(name[1:]) + "}")
                continue

            if name in intrinsic.substitutions:
                value = self._argument_or_literal(intrinsic.substitutions[name])
            elif "." in name:
                value = self._argument_or_literal(GetAtt(*name.split(".", 1)))
            else:
                value = self._argument_or_literal(Ref(name))

            if isinstance(value, Reference):
                has_reference = True
                parts.append("${" + value.reference_expression + "}")
            else:
                parts.append(_escape_literal(str(value)))

        parts.append(_escape_literal(intrinsic.expression[position:]))

        if not has_reference:
            return None
        return InterpolationReference("".join(parts))


def _escape_literal(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace("\"", "\\\"")
        .replace("\n", "\\n")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
