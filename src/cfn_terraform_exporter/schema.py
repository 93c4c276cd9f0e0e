#!/usr/bin/env python3
"""
Terraform AWS Provider Schema

This module loads the bundled provider schema, the AWS to Terraform resource
type map and the per-resource traits, and exposes them as an immutable
registry. Resource schemas answer attribute lookups by path for the event
queue, the preprocessor and the HCL emitter.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Union

import yaml

from .exceptions import (
    AttributeNotFoundError,
    AttributePathOrderError,
    ResourceSchemaNotFoundError,
    SchemaLoadError,
)

logger = logging.getLogger(__name__)

SCHEMA_FILE = "terraform-aws-schema.json"
TYPE_MAP_FILE = "terraform-resource-map.json"
TRAITS_FILE = "resource-traits.yaml"


class SchemaValueType(Enum):
    """Value types as reported by the provider schema dump"""
    INVALID = "TypeInvalid"
    BOOL = "TypeBool"
    INT = "TypeInt"
    FLOAT = "TypeFloat"
    STRING = "TypeString"
    LIST = "TypeList"
    MAP = "TypeMap"
    SET = "TypeSet"
    OBJECT = "TypeObject"


class SchemaConfigMode(Enum):
    """How a nested attribute is written in configuration"""
    AUTO = 0
    ATTR = 1
    BLOCK = 2


_CONFIG_MODE_NAMES = {
    "SchemaConfigModeAuto": SchemaConfigMode.AUTO,
    "SchemaConfigModeAttr": SchemaConfigMode.ATTR,
    "SchemaConfigModeBlock": SchemaConfigMode.BLOCK,
}


class AttributePath:
    """
    Dotted path into a schema and value tree

    Segments may be quoted to carry literal dots, e.g. ``tags['kubernetes.io/role']``.
    The segments ``*``, ``#`` and integers denote elements of a list or set.
    """

    INDEX_WILDCARDS = ("*", "#")
    _INDEXER = re.compile(r"\[(\d+)\]")
    _PLAIN_SEGMENT = re.compile(r"^[A-Za-z0-9_\-]+$")

    def __init__(self, path: str):
        self.path = self._INDEXER.sub(r".\1", path)

    def __str__(self) -> str:
        return self.path

    def __repr__(self) -> str:
        return f"AttributePath('{self.path}')"

    def __eq__(self, other) -> bool:
        if isinstance(other, AttributePath):
            return self.path == other.path
        if isinstance(other, str):
            return self.path == AttributePath(other).path
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.path)

    @property
    def segments(self) -> List[str]:
        return self.split(self.path)

    @property
    def normalized(self) -> str:
        """
        Path with every list index written as ``0``

        This is the notation the provider uses in ``ConflictsWith`` declarations,
        so paths of different list elements compare equal.
        """
        return ".".join("0" if self.is_index(s) else s for s in self.segments)

    @staticmethod
    def is_index(segment: str) -> bool:
        return segment in AttributePath.INDEX_WILDCARDS or segment.isdigit()

    @staticmethod
    def split(path: str) -> List[str]:
        """
        Split a path into its segments

        Args:
            path: Attribute path, e.g. ``key1.0.key2`` or ``key1['multi.part.key']``

        Returns:
            List of segments with quoting removed
        """
        if "[" not in path:
            return path.split(".")

        tokens = []
        current = []
        position = 0

        while position < len(path):
            ch = path[position]
            if ch == "[":
                if current:
                    tokens.append("".join(current))
                    current = []
                # Quoted keys end at the first "']" and may contain quotes and dots
                quoted = path.startswith("['", position)
                end = path.find("']" if quoted else "]", position + 2 if quoted else position + 1)
                if end < 0:
                    raise ValueError(f"Unbalanced brackets in attribute path \"{path}\"")
                tokens.append(path[position + 2:end] if quoted else path[position + 1:end])
                position = end + (2 if quoted else 1)
                continue
            if ch == ".":
                if current:
                    tokens.append("".join(current))
                    current = []
            else:
                current.append(ch)
            position += 1

        if current:
            tokens.append("".join(current))

        return tokens

    @classmethod
    def join(cls, parent: str, segment: Union[str, int]) -> str:
        """Append a segment, quoting it when it is not a plain name"""
        segment = str(segment)
        if cls._PLAIN_SEGMENT.match(segment):
            return f"{parent}.{segment}" if parent else segment
        return f"{parent}['{segment}']"


@dataclass(frozen=True, eq=False)
class ValueSchema:
    """Schema of one attribute, or of the elements of a collection attribute"""
    type: SchemaValueType = SchemaValueType.STRING
    required: bool = False
    optional: bool = False
    computed: bool = False
    sensitive: bool = False
    conflicts_with: Tuple[str, ...] = ()
    required_with: Tuple[str, ...] = ()
    exactly_one_of: Tuple[str, ...] = ()
    at_least_one_of: Tuple[str, ...] = ()
    min_items: int = 0
    max_items: int = 0
    default: Any = None
    elem: Optional[Union["ResourceSchema", "ValueSchema"]] = None
    config_mode: SchemaConfigMode = SchemaConfigMode.AUTO

    @property
    def has_default(self) -> bool:
        return self.default is not None

    @property
    def is_scalar(self) -> bool:
        return self.type in (
            SchemaValueType.BOOL, SchemaValueType.INT, SchemaValueType.FLOAT, SchemaValueType.STRING
        )

    def is_block(self) -> bool:
        """
        Whether the attribute is written as a nested ``name { ... }`` block

        Returns:
            False for read-only attributes, otherwise True when the element is a
            nested resource under automatic mode or when block mode is forced
        """
        if self.computed and not self.optional:
            return False

        if self.config_mode == SchemaConfigMode.AUTO:
            return isinstance(self.elem, ResourceSchema)

        return self.config_mode == SchemaConfigMode.BLOCK

    def is_list_or_set(self) -> bool:
        return self.type in (SchemaValueType.LIST, SchemaValueType.SET)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValueSchema":
        elem = data.get("Elem")
        if isinstance(elem, dict):
            elem = ResourceSchema.from_dict("", elem) if "Schema" in elem else cls.from_dict(elem)
        elif elem is not None:
            elem = None

        config_mode = data.get("ConfigMode", 0)
        if isinstance(config_mode, str):
            config_mode = _CONFIG_MODE_NAMES.get(config_mode, SchemaConfigMode.AUTO)
        else:
            config_mode = SchemaConfigMode(config_mode)

        try:
            value_type = SchemaValueType(data.get("Type", "TypeString"))
        except ValueError:
            raise SchemaLoadError(f"Unknown schema value type \"{data.get('Type')}\"")

        return cls(
            type=value_type,
            required=bool(data.get("Required", False)),
            optional=bool(data.get("Optional", False)),
            computed=bool(data.get("Computed", False)),
            sensitive=bool(data.get("Sensitive", False)),
            conflicts_with=tuple(data.get("ConflictsWith") or ()),
            required_with=tuple(data.get("RequiredWith") or ()),
            exactly_one_of=tuple(data.get("ExactlyOneOf") or ()),
            at_least_one_of=tuple(data.get("AtLeastOneOf") or ()),
            min_items=int(data.get("MinItems", 0)),
            max_items=int(data.get("MaxItems", 0)),
            default=data.get("Default"),
            elem=elem,
            config_mode=config_mode,
        )


# Schema used for map values and attributes missing an element declaration
STRING_VALUE = ValueSchema(type=SchemaValueType.STRING)


@dataclass(frozen=True)
class ResourceTraits:
    """Per-resource knowledge that the provider schema does not carry"""
    resource_type: str
    attribute_map: Mapping[str, str] = field(default_factory=dict)
    property_map: Mapping[str, str] = field(default_factory=dict)
    conflicting_arguments: Tuple[Tuple[str, ...], ...] = ()

    def merged_with(self, other: "ResourceTraits") -> "ResourceTraits":
        """Combine with more specific traits; entries in ``other`` win"""
        return ResourceTraits(
            resource_type=other.resource_type,
            attribute_map=MappingProxyType({**self.attribute_map, **other.attribute_map}),
            property_map=MappingProxyType({**self.property_map, **other.property_map}),
            conflicting_arguments=self.conflicting_arguments + other.conflicting_arguments,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceTraits":
        return cls(
            resource_type=data["resource_type"],
            attribute_map=MappingProxyType(dict(data.get("attribute_map") or {})),
            property_map=MappingProxyType(dict(data.get("property_map") or {})),
            conflicting_arguments=tuple(tuple(group) for group in data.get("conflicting_arguments") or ()),
        )


@dataclass(frozen=True, eq=False)
class ResourceSchema:
    """Schema of a resource type, or of the elements of a nested block"""
    resource_type: str
    attributes: Mapping[str, ValueSchema]
    traits: Optional[ResourceTraits] = None

    def get_attribute_by_path(self, path: str) -> ValueSchema:
        """
        Find the schema of an attribute

        Args:
            path: Attribute path; list elements are addressed with ``*``, ``#`` or an index

        Returns:
            The attribute's value schema

        Raises:
            ValueError: The path is empty or starts or ends with a wildcard
            AttributePathOrderError: A list index is misplaced or missing
            AttributeNotFoundError: An attribute along the path does not exist
        """
        if not path or path.startswith("*") or path.endswith("*"):
            raise ValueError(f"Invalid attribute path \"{path}\"")

        normalized_path = AttributePath(path).path
        resource: Optional[ResourceSchema] = self
        value: Optional[ValueSchema] = None
        expect_index = False
        walked = []

        for segment in AttributePath.split(normalized_path):
            walked.append(segment)

            if AttributePath.is_index(segment):
                if not expect_index:
                    raise AttributePathOrderError(".".join(walked), path)

                expect_index = False
                if isinstance(value.elem, ResourceSchema):
                    resource = value.elem
                else:
                    value = value.elem or STRING_VALUE
                    resource = None
                continue

            if expect_index:
                raise AttributePathOrderError(".".join(walked), path)

            if resource is None:
                if value is not None and value.type == SchemaValueType.MAP:
                    # Arbitrary map key
                    value = value.elem if isinstance(value.elem, ValueSchema) else STRING_VALUE
                    continue
                raise AttributeNotFoundError(path, self.resource_type)

            value = resource.attributes.get(segment)
            if value is None:
                raise AttributeNotFoundError(path, self.resource_type)

            resource = value.elem if isinstance(value.elem, ResourceSchema) else None
            expect_index = value.is_list_or_set()

        return value

    def iter_attributes(self, prefix: str = "") -> Iterator[Tuple[str, ValueSchema]]:
        """Yield every attribute path in the schema, nested blocks included"""
        for name, value in self.attributes.items():
            path = f"{prefix}.{name}" if prefix else name
            yield path, value
            if isinstance(value.elem, ResourceSchema):
                nested = f"{path}.0" if value.is_list_or_set() else path
                yield from value.elem.iter_attributes(nested)

    @classmethod
    def from_dict(cls, resource_type: str, data: Dict[str, Any],
                  traits: Optional[ResourceTraits] = None) -> "ResourceSchema":
        attributes = {
            name: ValueSchema.from_dict(value)
            for name, value in (data.get("Schema") or {}).items()
        }
        return cls(resource_type=resource_type, attributes=MappingProxyType(attributes), traits=traits)


@dataclass(frozen=True)
class ResourceTypeMapping:
    """One entry of the AWS to Terraform resource type map"""
    aws: str
    terraform: str


class AwsSchema:
    """
    Immutable registry of Terraform AWS provider resource schemas

    Built once at start-up and passed to every component that needs schema
    information. Lookups accept either CloudFormation (``AWS::EC2::Instance``)
    or Terraform (``aws_instance``) type names.
    """

    def __init__(self,
                 schemas: Dict[str, ResourceSchema],
                 type_mappings: List[ResourceTypeMapping],
                 traits: Optional[Dict[str, ResourceTraits]] = None):
        self._schemas = MappingProxyType(dict(schemas))
        self._type_mappings = tuple(type_mappings)
        self._aws_to_terraform = MappingProxyType({m.aws: m.terraform for m in type_mappings})
        self._terraform_to_aws = MappingProxyType({m.terraform: m.aws for m in type_mappings})
        self._traits = MappingProxyType(dict(traits or {}))

    @classmethod
    def load(cls,
             schema_file: Optional[str] = None,
             type_map_file: Optional[str] = None,
             traits_file: Optional[str] = None) -> "AwsSchema":
        """
        Load the registry from the packaged data files, or from explicit paths

        Raises:
            SchemaLoadError: A data file is missing or malformed
        """
        try:
            schema_data = json.loads(_read_data_file(SCHEMA_FILE, schema_file))
            mapping_data = json.loads(_read_data_file(TYPE_MAP_FILE, type_map_file))
            traits_data = yaml.safe_load(_read_data_file(TRAITS_FILE, traits_file)) or []
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise SchemaLoadError(f"Malformed schema data file: {str(e)}") from e

        try:
            traits = {}
            for group in traits_data:
                for entry in group.get("resources") or []:
                    item = ResourceTraits.from_dict(entry)
                    traits[item.resource_type] = item

            common = traits.get("all", ResourceTraits("all"))
            schemas = {
                name: ResourceSchema.from_dict(
                    name, data, common.merged_with(traits.get(name, ResourceTraits(name)))
                )
                for name, data in schema_data.items()
            }
            type_mappings = [ResourceTypeMapping(aws=m["AWS"], terraform=m["TF"]) for m in mapping_data]
        except (KeyError, TypeError, AttributeError) as e:
            raise SchemaLoadError(f"Malformed schema data: {str(e)}") from e

        logger.debug(f"Loaded {len(schemas)} resource schemas and {len(type_mappings)} type mappings")
        return cls(schemas, type_mappings, traits)

    @property
    def resource_types(self) -> List[str]:
        return sorted(self._schemas.keys())

    @property
    def type_mappings(self) -> Tuple[ResourceTypeMapping, ...]:
        return self._type_mappings

    def __contains__(self, resource_type: str) -> bool:
        if resource_type.startswith("AWS::"):
            return resource_type in self._aws_to_terraform
        return resource_type in self._schemas

    def get_terraform_type(self, aws_type: str) -> Optional[str]:
        return self._aws_to_terraform.get(aws_type)

    def get_aws_type(self, terraform_type: str) -> Optional[str]:
        return self._terraform_to_aws.get(terraform_type)

    def get_traits(self, terraform_type: str) -> ResourceTraits:
        common = self._traits.get("all", ResourceTraits("all"))
        specific = self._traits.get(terraform_type)
        return common.merged_with(specific) if specific else common

    def get_resource_schema(self, resource_type: str) -> ResourceSchema:
        """
        Get the schema of a resource type

        Args:
            resource_type: CloudFormation or Terraform resource type name

        Raises:
            ResourceSchemaNotFoundError: The type is not mapped or has no schema
        """
        if resource_type.startswith("AWS::"):
            terraform_type = self._aws_to_terraform.get(resource_type)
            if terraform_type is None:
                raise ResourceSchemaNotFoundError(
                    resource_type,
                    f"Resource \"{resource_type}\": No corresponding Terraform resource found. "
                    f"If this is incorrect, please raise an issue."
                )
            return self.get_resource_schema(terraform_type)

        schema = self._schemas.get(resource_type)
        if schema is None:
            raise ResourceSchemaNotFoundError(resource_type, f"Resource \"{resource_type}\" not found.")

        return schema


def _read_data_file(name: str, override: Optional[str] = None) -> str:
    try:
        if override:
            return Path(override).expanduser().read_text(encoding="utf-8")
        return resources.files(__package__).joinpath("data").joinpath(name).read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaLoadError(f"Cannot read schema data file \"{override or name}\": {str(e)}") from e
