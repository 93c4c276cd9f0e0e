#!/usr/bin/env python3
"""
Dependency Resolver

Rewrites the literal values captured in the imported state into references,
guided by the intrinsic functions in the template properties of each
resource. Unresolvable intrinsics leave the literal in place.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .exceptions import IntrinsicResolutionError, TemplateEvaluationError
from .intrinsics import IntrinsicResolver, camel_to_snake
from .mapper import ResourceMapping
from .references import Reference
from .schema import AwsSchema, ResourceTraits
from .state import StateFile
from .template import GetAtt, Intrinsic, Ref, Template

logger = logging.getLogger(__name__)


@dataclass
class DependencyResolutionResult:
    references: int = 0
    warnings: List[str] = field(default_factory=list)


class DependencyResolver:
    """
    Replaces literals with references for one module

    Args:
        template: The module's template, bound to the deployed stack
        schema: Provider schema registry
        state: State file holding the imported resources
        mappings: The module's resource mappings
        module_names: Logical id -> module name of exported nested stacks
    """

    def __init__(self,
                 template: Template,
                 schema: AwsSchema,
                 state: StateFile,
                 mappings: List[ResourceMapping],
                 module_names: Optional[Dict[str, str]] = None):
        self.template = template
        self.schema = schema
        self.state = state
        self.mappings = [m for m in mappings if m.is_imported]
        self.resolver = IntrinsicResolver(
            template, schema, {m.logical_id: m.local_address for m in self.mappings}, module_names
        )

    def resolve(self) -> DependencyResolutionResult:
        result = DependencyResolutionResult()

        for mapping in self.mappings:
            state_resource = self.state.find_resource(mapping.address)
            if state_resource is None or not state_resource.instances:
                self._warn(result, mapping, "Not found in state after import.")
                continue

            traits = self.schema.get_traits(mapping.terraform_type)
            attributes = state_resource.attributes
            properties = mapping.resource.template_resource.properties

            for name, value in properties.items():
                self._resolve_property(result, mapping, traits, attributes, name, value)

            mapping.depends_on = [
                self.resolver.resource_addresses[d]
                for d in mapping.resource.depends_on
                if d in self.resolver.resource_addresses
            ]

        logger.info(f"Replaced {result.references} literal values with references")
        return result

    def _resolve_property(self, result: DependencyResolutionResult, mapping: ResourceMapping,
                          traits: ResourceTraits, attributes: Dict[str, Any], name: str, value: Any):
        attribute = traits.property_map.get(name) or camel_to_snake(name)

        if isinstance(value, Intrinsic):
            reference = self._resolve_intrinsic(result, mapping, name, value)
            if reference is None:
                return
            if attribute in attributes:
                current = attributes[attribute]
                attributes[attribute] = [reference] if isinstance(current, list) and not self._is_list(value) \
                    else reference
                result.references += 1
                return
            location = self._find_by_value(attributes, value)
            if location is None:
                logger.debug(f"{mapping.aws_address}: no state attribute holds the value of {name}")
                return
            container, key = location
            container[key] = reference
            result.references += 1
            return

        if name == "Tags" and isinstance(value, list) and isinstance(attributes.get(attribute), dict):
            tags = attributes[attribute]
            for tag in value:
                if isinstance(tag, dict) and isinstance(tag.get("Value"), Intrinsic) and tag.get("Key") in tags:
                    reference = self._resolve_intrinsic(result, mapping, f"Tags.{tag['Key']}", tag["Value"])
                    if reference is not None:
                        tags[tag["Key"]] = reference
                        result.references += 1
            return

        current = attributes.get(attribute)

        if isinstance(value, dict):
            if isinstance(current, list) and len(current) == 1 and isinstance(current[0], dict):
                current = current[0]
            if isinstance(current, dict):
                for nested_name, nested_value in value.items():
                    self._resolve_property(result, mapping, traits, current, nested_name, nested_value)
            return

        if isinstance(value, list) and isinstance(current, list) and len(value) == len(current):
            for index, item in enumerate(value):
                if isinstance(item, Intrinsic):
                    reference = self._resolve_intrinsic(result, mapping, f"{name}.{index}", item)
                    if reference is not None:
                        current[index] = reference
                        result.references += 1
                elif isinstance(item, dict) and isinstance(current[index], dict):
                    for nested_name, nested_value in item.items():
                        self._resolve_property(result, mapping, traits, current[index], nested_name, nested_value)

    def _resolve_intrinsic(self, result: DependencyResolutionResult, mapping: ResourceMapping,
                           name: str, value: Intrinsic) -> Optional[Reference]:
        try:
            reference = self.resolver.resolve(value)
        except IntrinsicResolutionError as e:
            self._warn(result, mapping, f"Property {name}: {str(e)}")
            return None

        if reference is None and self._refers_to_resource(value):
            self._warn(result, mapping, f"Property {name}: Cannot resolve {value!r}; using the literal value.")
        return reference

    def _refers_to_resource(self, value: Intrinsic) -> bool:
        if isinstance(value, Ref):
            return value.reference in self.template.resources
        if isinstance(value, GetAtt):
            return value.logical_name in self.template.resources
        return False

    def _is_list(self, value: Intrinsic) -> bool:
        try:
            return isinstance(self.template.evaluate(value), list)
        except TemplateEvaluationError:
            return False

    def _find_by_value(self, attributes: Dict[str, Any], value: Intrinsic) -> Optional[Tuple[Any, Any]]:
        try:
            literal = self.template.evaluate(value)
        except TemplateEvaluationError:
            return None
        if literal is None or isinstance(literal, (list, dict)) or literal == "":
            return None
        return _search(attributes, str(literal))

    @staticmethod
    def _warn(result: DependencyResolutionResult, mapping: ResourceMapping, message: str):
        warning = f"Resource \"{mapping.logical_id}\" ({mapping.aws_type}): {message}"
        logger.warning(warning)
        result.warnings.append(warning)


# Attributes that echo the resource itself rather than its configuration
_SEARCH_EXCLUDED = ("id", "arn", "tags_all")


def _search(container: Any, literal: str) -> Optional[Tuple[Any, Any]]:
    """First (container, key) whose value equals ``literal``"""
    items = container.items() if isinstance(container, dict) else enumerate(container)
    for key, item in items:
        if key in _SEARCH_EXCLUDED:
            continue
        if isinstance(item, (dict, list)):
            found = _search(item, literal)
            if found is not None:
                return found
        elif not isinstance(item, (bool, Reference)) and item is not None and str(item) == literal:
            return container, key
    return None
