#!/usr/bin/env python3
"""
HCL Events

The tagged event stream produced by walking one resource's state against its
schema. Events are compared by identity so that a particular key can be found
and removed from a queue even when another key has the same name.
"""

from dataclasses import dataclass
from typing import Any, Optional

from .schema import ValueSchema


@dataclass(eq=False)
class HclEvent:
    """Base class of all events"""

    # +1 for events that open a nesting level, -1 for those that close one
    nesting_increase = 0

    @property
    def is_start(self) -> bool:
        return self.nesting_increase > 0

    @property
    def is_end(self) -> bool:
        return self.nesting_increase < 0


@dataclass(eq=False)
class ResourceStart(HclEvent):
    resource_type: str
    resource_name: str

    nesting_increase = 1

    def __repr__(self) -> str:
        return f"ResourceStart({self.resource_type}.{self.resource_name})"


@dataclass(eq=False)
class ResourceEnd(HclEvent):
    nesting_increase = -1

    def __repr__(self) -> str:
        return "ResourceEnd()"


@dataclass(eq=False)
class MappingStart(HclEvent):
    nesting_increase = 1

    def __repr__(self) -> str:
        return "MappingStart()"


@dataclass(eq=False)
class MappingEnd(HclEvent):
    nesting_increase = -1

    def __repr__(self) -> str:
        return "MappingEnd()"


@dataclass(eq=False)
class SequenceStart(HclEvent):
    nesting_increase = 1

    def __repr__(self) -> str:
        return "SequenceStart()"


@dataclass(eq=False)
class SequenceEnd(HclEvent):
    nesting_increase = -1

    def __repr__(self) -> str:
        return "SequenceEnd()"


@dataclass(eq=False)
class MappingKey(HclEvent):
    """
    An attribute name, followed in the stream by exactly one value subtree

    Args:
        name: Attribute name or map key
        path: Full attribute path from the resource root, e.g. ``ebs_block_device.0.volume_id``
        schema: Schema of the attribute's value
    """
    name: str
    path: str
    schema: Optional[ValueSchema] = None

    def __repr__(self) -> str:
        return f"MappingKey({self.path})"


@dataclass(eq=False)
class ScalarValue(HclEvent):
    """A literal value or a ``Reference``"""
    value: Any = None

    @property
    def is_empty(self) -> bool:
        return self.value is None or self.value == ""

    def __repr__(self) -> str:
        return f"ScalarValue({self.value!r})"
