#!/usr/bin/env python3
"""
Terraform References

Symbolic Terraform expressions that replace literal values captured from the
live stack. A reference is a value type stored directly in the in-memory state;
``to_json`` / ``Reference.from_json`` give it a JSON encoding that can never be
mistaken for a literal string.
"""

import logging
from typing import Any, Dict, List, Optional, Type

logger = logging.getLogger(__name__)

REFERENCE_MARKER = "__reference__"


class Reference:
    """
    Base class for all references

    Args:
        object_address: Address of the referenced object
        index: Optional subscript appended to the expression, -1 for none
    """

    _registry: Dict[str, Type["Reference"]] = {}

    def __init__(self, object_address: str, index: int = -1):
        self.object_address = object_address
        self.index = index

    def __init_subclass__(cls, **kwargs):
        super().__init_subclass__(**kwargs)
        Reference._registry[cls.__name__] = cls

    @property
    def reference_expression(self) -> str:
        raise NotImplementedError

    def _subscript(self) -> str:
        return f"[{self.index}]" if self.index >= 0 else ""

    def _json_fields(self) -> Dict[str, Any]:
        fields = {"object_address": self.object_address}
        if self.index >= 0:
            fields["index"] = self.index
        return fields

    def to_json(self) -> Dict[str, Any]:
        """Encode as a JSON-embeddable object"""
        return {REFERENCE_MARKER: {"type": type(self).__name__, **self._json_fields()}}

    @staticmethod
    def is_encoded(value: Any) -> bool:
        return isinstance(value, dict) and len(value) == 1 and REFERENCE_MARKER in value

    @staticmethod
    def from_json(value: Dict[str, Any]) -> "Reference":
        """
        Decode an object produced by ``to_json``

        Raises:
            ValueError: The object is not an encoded reference
        """
        if not Reference.is_encoded(value):
            raise ValueError(f"{value!r} is not an encoded reference")

        fields = dict(value[REFERENCE_MARKER])
        type_name = fields.pop("type", None)
        reference_type = Reference._registry.get(type_name)
        if reference_type is None:
            raise ValueError(f"\"{type_name}\" is not a valid reference type")

        return reference_type(**fields)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Reference):
            return NotImplemented
        return type(self) is type(other) and self.reference_expression == other.reference_expression

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.reference_expression))

    def __str__(self) -> str:
        return self.reference_expression

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.reference_expression!r})"


class DirectReference(Reference):
    """Reference to another resource's id: ``aws_vpc.MyVPC.id``"""

    def __init__(self, object_address: str):
        super().__init__(object_address)

    @property
    def reference_expression(self) -> str:
        return f"{self.object_address}.id"


class IndirectReference(Reference):
    """Reference to an attribute of another resource: ``aws_iam_role.Role.arn``"""

    def __init__(self, object_address: str):
        super().__init__(object_address)

    @property
    def reference_expression(self) -> str:
        return self.object_address


class InputVariableReference(Reference):
    """Reference to an input variable: ``var.InstanceType``"""

    @property
    def reference_expression(self) -> str:
        return f"var.{self.object_address}{self._subscript()}"


class DataSourceReference(Reference):
    """
    Reference to a data source attribute: ``data.aws_region.current.name``

    Args:
        block_type: Data source type, e.g. ``aws_region``
        block_name: Data source name, e.g. ``current``
        attribute: Attribute of the data source
        is_parameter: Whether the data source stands in for a stack parameter
    """

    def __init__(self, block_type: str, block_name: str, attribute: str, is_parameter: bool = False):
        super().__init__(f"{block_type}.{block_name}.{attribute}")
        self.block_type = block_type
        self.block_name = block_name
        self.attribute = attribute
        self.is_parameter = is_parameter

    @property
    def block_address(self) -> str:
        return f"{self.block_type}.{self.block_name}"

    @property
    def reference_expression(self) -> str:
        return f"data.{self.object_address}"

    def _json_fields(self) -> Dict[str, Any]:
        return {
            "block_type": self.block_type,
            "block_name": self.block_name,
            "attribute": self.attribute,
            "is_parameter": self.is_parameter,
        }


class MapReference(Reference):
    """Lookup into the locals map generated from template mappings"""

    @property
    def reference_expression(self) -> str:
        return f"{self.object_address}{self._subscript()}"


class ModuleReference(Reference):
    """Reference to an output of a child module: ``module.network.VpcId``"""

    @property
    def reference_expression(self) -> str:
        return f"module.{self.object_address}{self._subscript()}"


class InterpolationReference(Reference):
    """An interpolated string such as ``"${var.Env}-bucket"``"""

    def __init__(self, object_address: str):
        super().__init__(object_address)

    @property
    def reference_expression(self) -> str:
        return f"\"{self.object_address}\""


class FunctionReference(Reference):
    """
    Call of a Terraform built-in function: ``join("-", [var.a, "b"])``

    Args:
        object_address: Function name
        arguments: Literal arguments, lists, or nested references
        index: Optional subscript applied to the result
    """

    def __init__(self, object_address: str, arguments: Optional[List[Any]] = None, index: int = -1):
        super().__init__(object_address, index)
        self.arguments = [decode_references(a) for a in (arguments or [])]

    @property
    def function_name(self) -> str:
        return self.object_address

    @property
    def reference_expression(self) -> str:
        return f"{self.function_name}({format_arguments(self.arguments)}){self._subscript()}"

    def _json_fields(self) -> Dict[str, Any]:
        fields = super()._json_fields()
        fields["arguments"] = encode_references(self.arguments)
        return fields


def format_argument(value: Any) -> str:
    """Render one function argument as HCL"""
    if isinstance(value, Reference):
        return value.reference_expression
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return "null"
    if isinstance(value, (list, tuple)):
        if len(value) == 1 and isinstance(value[0], Reference):
            # A single reference may already be a list expression
            return value[0].reference_expression
        return f"[{format_arguments(value)}]"
    text = str(value).replace("\\", "\\\\").replace("\"", "\\\"")
    return f"\"{text}\""


def format_arguments(arguments) -> str:
    return ", ".join(format_argument(a) for a in arguments)


def encode_references(value: Any) -> Any:
    """Replace every reference in a JSON-like tree with its encoded form"""
    if isinstance(value, Reference):
        return value.to_json()
    if isinstance(value, dict):
        return {k: encode_references(v) for k, v in value.items()}
    if isinstance(value, list):
        return [encode_references(v) for v in value]
    return value


def decode_references(value: Any) -> Any:
    """Replace every encoded reference in a JSON-like tree with a reference object"""
    if Reference.is_encoded(value):
        return Reference.from_json(value)
    if isinstance(value, dict):
        return {k: decode_references(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_references(v) for v in value]
    return value
