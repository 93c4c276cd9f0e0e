#!/usr/bin/env python3
"""
CloudFormation Template Model

This module parses JSON and YAML CloudFormation templates, including the YAML
short-form intrinsic tags, into a template object whose property values carry
intrinsic function nodes. Intrinsics can be evaluated to the literal values the
deployed stack produced, and the template exposes the resource dependency
graph implied by Ref and GetAtt.
"""

import base64
import ipaddress
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

import yaml

from .exceptions import TemplateEvaluationError

logger = logging.getLogger(__name__)


class DependencyType:
    """Kinds of edge in the resource dependency graph"""
    DIRECT = "direct"
    ATTRIBUTE = "attribute"
    EXPLICIT = "explicit"


class Intrinsic:
    """Base class for intrinsic function nodes"""

    tag_name = ""

    def children(self) -> List[Any]:
        """Arguments of this node, for tree walks"""
        return []

    def evaluate(self, template: "Template") -> Any:
        """Evaluate to a literal, memoized per node by the template"""
        return template.evaluate(self)

    def _evaluate(self, template: "Template") -> Any:
        raise TemplateEvaluationError(f"{self.tag_name} cannot be evaluated")

    def walk(self) -> Iterator["Intrinsic"]:
        """Yield this node and every nested intrinsic"""
        yield self
        for child in self.children():
            yield from iter_intrinsics(child)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({', '.join(repr(c) for c in self.children())})"


class Ref(Intrinsic):
    tag_name = "Ref"

    def __init__(self, reference: str):
        self.reference = reference

    def children(self) -> List[Any]:
        return [self.reference]

    def _evaluate(self, template: "Template") -> Any:
        return template.evaluate_ref(self.reference)


class GetAtt(Intrinsic):
    tag_name = "Fn::GetAtt"

    def __init__(self, logical_name: str, attribute_name: Union[str, Intrinsic]):
        self.logical_name = logical_name
        self.attribute_name = attribute_name

    def children(self) -> List[Any]:
        return [self.logical_name, self.attribute_name]

    def resolved_attribute_name(self, template: "Template") -> str:
        if isinstance(self.attribute_name, Intrinsic):
            return str(self.attribute_name.evaluate(template))
        return self.attribute_name

    def _evaluate(self, template: "Template") -> Any:
        return template.get_attribute_value(self.logical_name, self.resolved_attribute_name(template))


class Join(Intrinsic):
    tag_name = "Fn::Join"

    def __init__(self, separator: str, items: Union[List[Any], Intrinsic]):
        self.separator = separator
        self.items = items

    def children(self) -> List[Any]:
        return [self.separator, self.items]

    def _evaluate(self, template: "Template") -> Any:
        items = template.evaluate(self.items)
        if not isinstance(items, list):
            raise TemplateEvaluationError("Fn::Join requires a list")
        return self.separator.join(_scalar_text(template.evaluate(i)) for i in items)


class Sub(Intrinsic):
    tag_name = "Fn::Sub"

    _PLACEHOLDER = re.compile(r"\$\{([^}]+)\}")

    def __init__(self, expression: str, substitutions: Optional[Dict[str, Any]] = None):
        self.expression = expression
        self.substitutions = substitutions or {}

    def children(self) -> List[Any]:
        return [self.expression, self.substitutions]

    @property
    def implicit_references(self) -> List[Intrinsic]:
        """Ref and GetAtt nodes implied by ``${...}`` placeholders not covered by substitutions"""
        references = []
        for name in self._PLACEHOLDER.findall(self.expression):
            if name.startswith("!") or name in self.substitutions:
                continue
            if "." in name:
                logical, attribute = name.split(".", 1)
                references.append(GetAtt(logical, attribute))
            else:
                references.append(Ref(name))
        return references

    def walk(self) -> Iterator[Intrinsic]:
        yield from super().walk()
        for reference in self.implicit_references:
            yield reference

    def _evaluate(self, template: "Template") -> Any:
        def replace(match):
            name = match.group(1)
            if name.startswith("!"):
                return "${" + name[1:] + "}"
            if name in self.substitutions:
                return _scalar_text(template.evaluate(self.substitutions[name]))
            if "." in name:
                logical, attribute = name.split(".", 1)
                return _scalar_text(template.get_attribute_value(logical, attribute))
            return _scalar_text(template.evaluate_ref(name))

        return self._PLACEHOLDER.sub(replace, self.expression)


class Select(Intrinsic):
    tag_name = "Fn::Select"

    def __init__(self, index: Any, items: Union[List[Any], Intrinsic]):
        self.index = index
        self.items = items

    def children(self) -> List[Any]:
        return [self.index, self.items]

    def resolved_index(self, template: "Template") -> int:
        return int(template.evaluate(self.index))

    def _evaluate(self, template: "Template") -> Any:
        items = template.evaluate(self.items)
        index = self.resolved_index(template)
        if not isinstance(items, list) or index >= len(items):
            raise TemplateEvaluationError(f"Fn::Select index {index} out of range")
        return template.evaluate(items[index])


class Split(Intrinsic):
    tag_name = "Fn::Split"

    def __init__(self, delimiter: str, source: Any):
        self.delimiter = delimiter
        self.source = source

    def children(self) -> List[Any]:
        return [self.delimiter, self.source]

    def _evaluate(self, template: "Template") -> Any:
        return _scalar_text(template.evaluate(self.source)).split(self.delimiter)


class FindInMap(Intrinsic):
    tag_name = "Fn::FindInMap"

    def __init__(self, map_name: Any, top_level_key: Any, second_level_key: Any):
        self.map_name = map_name
        self.top_level_key = top_level_key
        self.second_level_key = second_level_key

    def children(self) -> List[Any]:
        return [self.map_name, self.top_level_key, self.second_level_key]

    def _evaluate(self, template: "Template") -> Any:
        keys = [_scalar_text(template.evaluate(k)) for k in self.children()]
        try:
            return template.mappings[keys[0]][keys[1]][keys[2]]
        except (KeyError, TypeError):
            raise TemplateEvaluationError(f"Fn::FindInMap: no entry for {'.'.join(keys)}")


class GetAZs(Intrinsic):
    tag_name = "Fn::GetAZs"

    def __init__(self, region: Any = ""):
        self.region = region

    def children(self) -> List[Any]:
        return [self.region]

    def _evaluate(self, template: "Template") -> Any:
        if template.availability_zones is None:
            raise TemplateEvaluationError("Availability zones are not known")
        return list(template.availability_zones)


class Base64(Intrinsic):
    tag_name = "Fn::Base64"

    def __init__(self, value: Any):
        self.value = value

    def children(self) -> List[Any]:
        return [self.value]

    def _evaluate(self, template: "Template") -> Any:
        text = _scalar_text(template.evaluate(self.value))
        return base64.b64encode(text.encode("utf-8")).decode("ascii")


class Cidr(Intrinsic):
    tag_name = "Fn::Cidr"

    def __init__(self, ip_block: Any, count: Any, cidr_bits: Any):
        self.ip_block = ip_block
        self.count = count
        self.cidr_bits = cidr_bits

    def children(self) -> List[Any]:
        return [self.ip_block, self.count, self.cidr_bits]

    def _evaluate(self, template: "Template") -> Any:
        network = ipaddress.ip_network(_scalar_text(template.evaluate(self.ip_block)), strict=False)
        count = int(template.evaluate(self.count))
        bits = int(template.evaluate(self.cidr_bits))
        subnets = network.subnets(new_prefix=network.max_prefixlen - bits)
        return [str(s) for _, s in zip(range(count), subnets)]


class If(Intrinsic):
    tag_name = "Fn::If"

    def __init__(self, condition_name: str, value_if_true: Any, value_if_false: Any):
        self.condition_name = condition_name
        self.value_if_true = value_if_true
        self.value_if_false = value_if_false

    def children(self) -> List[Any]:
        return [self.condition_name, self.value_if_true, self.value_if_false]

    def _evaluate(self, template: "Template") -> Any:
        if template.evaluate_condition(self.condition_name):
            return template.evaluate(self.value_if_true)
        return template.evaluate(self.value_if_false)


class ImportValue(Intrinsic):
    tag_name = "Fn::ImportValue"

    def __init__(self, export_name: Any):
        self.export_name = export_name

    def children(self) -> List[Any]:
        return [self.export_name]

    def _evaluate(self, template: "Template") -> Any:
        name = _scalar_text(template.evaluate(self.export_name))
        if name not in template.stack_exports:
            raise TemplateEvaluationError(f"Export \"{name}\" not found")
        return template.stack_exports[name]


class Equals(Intrinsic):
    tag_name = "Fn::Equals"

    def __init__(self, left: Any, right: Any):
        self.left = left
        self.right = right

    def children(self) -> List[Any]:
        return [self.left, self.right]

    def _evaluate(self, template: "Template") -> Any:
        return _scalar_text(template.evaluate(self.left)) == _scalar_text(template.evaluate(self.right))


class And(Intrinsic):
    tag_name = "Fn::And"

    def __init__(self, conditions: List[Any]):
        self.conditions = conditions

    def children(self) -> List[Any]:
        return list(self.conditions)

    def _evaluate(self, template: "Template") -> Any:
        return all(template.evaluate(c) for c in self.conditions)


class Or(And):
    tag_name = "Fn::Or"

    def _evaluate(self, template: "Template") -> Any:
        return any(template.evaluate(c) for c in self.conditions)


class Not(Intrinsic):
    tag_name = "Fn::Not"

    def __init__(self, condition: Any):
        self.condition = condition

    def children(self) -> List[Any]:
        return [self.condition]

    def _evaluate(self, template: "Template") -> Any:
        return not template.evaluate(self.condition)


class Condition(Intrinsic):
    tag_name = "Condition"

    def __init__(self, condition_name: str):
        self.condition_name = condition_name

    def children(self) -> List[Any]:
        return [self.condition_name]

    def _evaluate(self, template: "Template") -> Any:
        return template.evaluate_condition(self.condition_name)


def _first(arg):
    return arg[0] if isinstance(arg, list) else arg


def _parse_get_att(arg):
    if isinstance(arg, str):
        arg = arg.split(".", 1)
    return GetAtt(arg[0], parse_value(arg[1]))


def _parse_sub(arg):
    if isinstance(arg, list):
        return Sub(arg[0], {k: parse_value(v) for k, v in (arg[1] if len(arg) > 1 else {}).items()})
    return Sub(arg)


_INTRINSIC_PARSERS: Dict[str, Callable[[Any], Intrinsic]] = {
    "Ref": lambda a: Ref(a),
    "Fn::GetAtt": _parse_get_att,
    "Fn::Join": lambda a: Join(a[0], parse_value(a[1])),
    "Fn::Sub": _parse_sub,
    "Fn::Select": lambda a: Select(parse_value(a[0]), parse_value(a[1])),
    "Fn::Split": lambda a: Split(a[0], parse_value(a[1])),
    "Fn::FindInMap": lambda a: FindInMap(*[parse_value(x) for x in a]),
    "Fn::GetAZs": lambda a: GetAZs(parse_value(a)),
    "Fn::Base64": lambda a: Base64(parse_value(a)),
    "Fn::Cidr": lambda a: Cidr(*[parse_value(x) for x in a]),
    "Fn::If": lambda a: If(a[0], parse_value(a[1]), parse_value(a[2])),
    "Fn::ImportValue": lambda a: ImportValue(parse_value(a)),
    "Fn::Equals": lambda a: Equals(parse_value(a[0]), parse_value(a[1])),
    "Fn::And": lambda a: And([parse_value(x) for x in a]),
    "Fn::Or": lambda a: Or([parse_value(x) for x in a]),
    "Fn::Not": lambda a: Not(parse_value(_first(a))),
    "Condition": lambda a: Condition(a),
}

_SHORT_FORM_TAGS = {
    "!Ref": "Ref",
    "!GetAtt": "Fn::GetAtt",
    "!Join": "Fn::Join",
    "!Sub": "Fn::Sub",
    "!Select": "Fn::Select",
    "!Split": "Fn::Split",
    "!FindInMap": "Fn::FindInMap",
    "!GetAZs": "Fn::GetAZs",
    "!Base64": "Fn::Base64",
    "!Cidr": "Fn::Cidr",
    "!If": "Fn::If",
    "!ImportValue": "Fn::ImportValue",
    "!Equals": "Fn::Equals",
    "!And": "Fn::And",
    "!Or": "Fn::Or",
    "!Not": "Fn::Not",
    "!Condition": "Condition",
}


class TemplateLoader(yaml.SafeLoader):
    """YAML loader that understands CloudFormation short-form intrinsics"""


def _short_form_constructor(long_name: str):
    def construct(loader, node):
        if isinstance(node, yaml.ScalarNode):
            value = loader.construct_scalar(node)
        elif isinstance(node, yaml.SequenceNode):
            value = loader.construct_sequence(node, deep=True)
        else:
            value = loader.construct_mapping(node, deep=True)
        return {long_name: value}
    return construct


for _tag, _long_name in _SHORT_FORM_TAGS.items():
    TemplateLoader.add_constructor(_tag, _short_form_constructor(_long_name))


def parse_value(value: Any) -> Any:
    """Convert long-form intrinsic dictionaries in a value tree into intrinsic nodes"""
    if isinstance(value, dict):
        if len(value) == 1:
            key, arg = next(iter(value.items()))
            parser = _INTRINSIC_PARSERS.get(key)
            if parser is not None:
                return parser(arg)
        return {k: parse_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [parse_value(v) for v in value]
    return value


def iter_intrinsics(value: Any) -> Iterator[Intrinsic]:
    """Yield every intrinsic node in a value tree, outermost first"""
    if isinstance(value, Intrinsic):
        yield from value.walk()
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_intrinsics(v)
    elif isinstance(value, list):
        for v in value:
            yield from iter_intrinsics(v)


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


@dataclass
class TemplateParameter:
    """A template parameter and, once bound to a stack, its current value"""
    name: str
    type: str = "String"
    default: Any = None
    description: Optional[str] = None
    allowed_values: List[Any] = field(default_factory=list)
    no_echo: bool = False
    current_value: Any = None

    @property
    def is_ssm_parameter(self) -> bool:
        return self.type.startswith("AWS::SSM::Parameter::Value<")

    @property
    def is_list(self) -> bool:
        return self.type == "CommaDelimitedList" or self.type.startswith("List<") or (
            self.is_ssm_parameter and "List<" in self.type
        )

    @property
    def value(self) -> Any:
        value = self.current_value if self.current_value is not None else self.default
        if self.is_list and isinstance(value, str):
            return [v.strip() for v in value.split(",")] if value else []
        return value


@dataclass
class TemplateResource:
    """A resource declared in the template"""
    logical_id: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)
    depends_on: List[str] = field(default_factory=list)
    condition: Optional[str] = None

    def get_property_value(self, path: str) -> Any:
        """Get a property by dotted path, e.g. ``Code.ZipFile``"""
        value: Any = self.properties
        for segment in path.split("."):
            if isinstance(value, dict):
                value = value.get(segment)
            elif isinstance(value, list) and segment.isdigit() and int(segment) < len(value):
                value = value[int(segment)]
            else:
                return None
        return value


@dataclass
class TemplateOutput:
    name: str
    value: Any
    description: Optional[str] = None
    export_name: Any = None


@dataclass
class DependencyEdge:
    """``target`` refers to ``source`` through ``reference_type``"""
    source: str
    target: str
    reference_type: str
    attribute: Optional[str] = None


class Template:
    """
    Parsed CloudFormation template

    Evaluation needs the template bound to its deployed stack: current
    parameter values, physical resource ids, pseudo parameters and, where
    known, resource attribute values.
    """

    PSEUDO_PREFIX = "AWS::"

    def __init__(self,
                 description: Optional[str] = None,
                 parameters: Optional[Dict[str, TemplateParameter]] = None,
                 mappings: Optional[Dict[str, Any]] = None,
                 conditions: Optional[Dict[str, Any]] = None,
                 resources: Optional[Dict[str, TemplateResource]] = None,
                 outputs: Optional[Dict[str, TemplateOutput]] = None):
        self.description = description
        self.parameters = parameters or {}
        self.mappings = mappings or {}
        self.conditions = conditions or {}
        self.resources = resources or {}
        self.outputs = outputs or {}

        self.pseudo_parameters: Dict[str, Any] = {}
        self.physical_ids: Dict[str, str] = {}
        self.stack_exports: Dict[str, Any] = {}
        self.availability_zones: Optional[List[str]] = None
        self.attribute_resolver: Optional[Callable[[str, str], Any]] = None
        self._cache: Dict[int, Tuple[Intrinsic, Any]] = {}

    @classmethod
    def parse(cls, body: Union[str, Dict[str, Any]]) -> "Template":
        """
        Parse a template body

        Args:
            body: JSON or YAML text, or an already decoded dictionary

        Returns:
            Template object
        """
        if isinstance(body, str):
            try:
                data = json.loads(body)
            except ValueError:
                data = yaml.load(body, Loader=TemplateLoader)
        else:
            data = body

        if not isinstance(data, dict) or "Resources" not in data:
            raise ValueError("Template has no Resources section")

        parameters = {}
        for name, definition in (data.get("Parameters") or {}).items():
            parameters[name] = TemplateParameter(
                name=name,
                type=definition.get("Type", "String"),
                default=definition.get("Default"),
                description=definition.get("Description"),
                allowed_values=list(definition.get("AllowedValues") or []),
                no_echo=str(definition.get("NoEcho", "false")).lower() == "true",
            )

        resources = {}
        for logical_id, definition in data["Resources"].items():
            depends_on = definition.get("DependsOn") or []
            resources[logical_id] = TemplateResource(
                logical_id=logical_id,
                type=definition["Type"],
                properties=parse_value(definition.get("Properties") or {}),
                depends_on=[depends_on] if isinstance(depends_on, str) else list(depends_on),
                condition=definition.get("Condition"),
            )

        outputs = {}
        for name, definition in (data.get("Outputs") or {}).items():
            export = definition.get("Export") or {}
            outputs[name] = TemplateOutput(
                name=name,
                value=parse_value(definition.get("Value")),
                description=definition.get("Description"),
                export_name=parse_value(export.get("Name")),
            )

        return cls(
            description=data.get("Description"),
            parameters=parameters,
            mappings=data.get("Mappings") or {},
            conditions={k: parse_value(v) for k, v in (data.get("Conditions") or {}).items()},
            resources=resources,
            outputs=outputs,
        )

    def bind_stack(self,
                   physical_ids: Optional[Dict[str, str]] = None,
                   parameter_values: Optional[Dict[str, Any]] = None,
                   pseudo_parameters: Optional[Dict[str, Any]] = None,
                   stack_exports: Optional[Dict[str, Any]] = None,
                   availability_zones: Optional[List[str]] = None):
        """Attach values from the deployed stack so intrinsics can be evaluated"""
        if physical_ids is not None:
            self.physical_ids = dict(physical_ids)
        if parameter_values:
            for name, value in parameter_values.items():
                if name in self.parameters:
                    self.parameters[name].current_value = value
        if pseudo_parameters is not None:
            self.pseudo_parameters = dict(pseudo_parameters)
        if stack_exports is not None:
            self.stack_exports = dict(stack_exports)
        if availability_zones is not None:
            self.availability_zones = list(availability_zones)
        self._cache.clear()

    def evaluate(self, value: Any) -> Any:
        """Evaluate a value tree, memoizing the result of each intrinsic node"""
        if isinstance(value, Intrinsic):
            # entries hold the node itself so its id cannot be reused
            cached = self._cache.get(id(value))
            if cached is None or cached[0] is not value:
                cached = (value, value._evaluate(self))
                self._cache[id(value)] = cached
            return cached[1]
        if isinstance(value, list):
            return [self.evaluate(v) for v in value]
        if isinstance(value, dict):
            return {k: self.evaluate(v) for k, v in value.items()}
        return value

    def evaluate_ref(self, name: str) -> Any:
        if name.startswith(self.PSEUDO_PREFIX):
            if name == "AWS::NoValue":
                return None
            if name in self.pseudo_parameters:
                return self.pseudo_parameters[name]
            raise TemplateEvaluationError(f"Pseudo parameter \"{name}\" has no value")

        if name in self.parameters:
            return self.parameters[name].value

        if name in self.resources:
            if name not in self.physical_ids:
                raise TemplateEvaluationError(f"Resource \"{name}\" has no physical id")
            return self.physical_ids[name]

        raise TemplateEvaluationError(f"Reference \"{name}\" cannot be resolved")

    def get_attribute_value(self, logical_id: str, attribute: str) -> Any:
        if self.attribute_resolver is not None:
            value = self.attribute_resolver(logical_id, attribute)
            if value is not None:
                return value
        raise TemplateEvaluationError(f"Value of {logical_id}.{attribute} is not known")

    def evaluate_condition(self, name: str) -> bool:
        if name not in self.conditions:
            raise TemplateEvaluationError(f"Condition \"{name}\" not found")
        return bool(self.evaluate(self.conditions[name]))

    def dependency_edges(self) -> List[DependencyEdge]:
        """All resource to resource references, explicit DependsOn included"""
        edges = []
        for resource in self.resources.values():
            for intrinsic in iter_intrinsics(resource.properties):
                if isinstance(intrinsic, Ref) and intrinsic.reference in self.resources:
                    edges.append(DependencyEdge(intrinsic.reference, resource.logical_id, DependencyType.DIRECT))
                elif isinstance(intrinsic, GetAtt) and intrinsic.logical_name in self.resources:
                    attribute = intrinsic.attribute_name if isinstance(intrinsic.attribute_name, str) else None
                    edges.append(DependencyEdge(
                        intrinsic.logical_name, resource.logical_id, DependencyType.ATTRIBUTE, attribute
                    ))
            for dependency in resource.depends_on:
                edges.append(DependencyEdge(dependency, resource.logical_id, DependencyType.EXPLICIT))
        return edges

    def dependencies_of(self, logical_id: str, reference_type: Optional[str] = None) -> List[DependencyEdge]:
        """Edges whose target is ``logical_id``"""
        return [
            e for e in self.dependency_edges()
            if e.target == logical_id and (reference_type is None or e.reference_type == reference_type)
        ]
