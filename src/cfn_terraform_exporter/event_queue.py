#!/usr/bin/env python3
"""
HCL Event Queue

Builds the event stream for one resource by walking its state attributes
together with the resource schema, and provides the queue operations the
preprocessor and the emitter work with.
"""

import logging
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from .events import (
    HclEvent,
    MappingEnd,
    MappingKey,
    MappingStart,
    ResourceEnd,
    ResourceStart,
    ScalarValue,
    SequenceEnd,
    SequenceStart,
)
from .schema import STRING_VALUE, AttributePath, ResourceSchema, ValueSchema

logger = logging.getLogger(__name__)


def _covers(ancestor: str, path: str) -> bool:
    """True when ``ancestor`` is ``path`` or encloses it at a segment boundary"""
    return path == ancestor or path.startswith(ancestor + ".")


def _same_elements(first: str, second: str) -> bool:
    """False when the paths run through different elements of the same list"""
    for a, b in zip(AttributePath(first).segments, AttributePath(second).segments):
        if AttributePath.is_index(a) and AttributePath.is_index(b):
            if a != b:
                return False
        elif a != b:
            return True
    return True


class EventQueue:
    """
    Ordered, well nested stream of HCL events for a single resource

    Args:
        events: Initial events
        schema: Resource schema the events were built from; supplies the
            conflict declarations used by ``get_conflicting_attributes``
    """

    def __init__(self, events: Optional[Iterable[HclEvent]] = None, schema: Optional[ResourceSchema] = None):
        self._events: List[HclEvent] = list(events or [])
        self.schema = schema
        self._conflict_pairs: Optional[Set[Tuple[str, str]]] = None

    @classmethod
    def from_resource(cls,
                      resource_type: str,
                      resource_name: str,
                      attributes: Dict[str, Any],
                      schema: ResourceSchema) -> "EventQueue":
        """
        Build the event stream of one resource

        Args:
            resource_type: Terraform resource type
            resource_name: Terraform resource name
            attributes: Attribute values from the state file
            schema: Schema of the resource type

        Returns:
            Queue beginning with ResourceStart and ending with ResourceEnd
        """
        events: List[HclEvent] = [ResourceStart(resource_type, resource_name)]
        cls._walk_mapping(events, attributes, schema, "")
        events.append(ResourceEnd())
        return cls(events, schema)

    @classmethod
    def _walk_mapping(cls, events: List[HclEvent], attributes: Dict[str, Any], schema: ResourceSchema, prefix: str):
        for name, value in attributes.items():
            value_schema = schema.attributes.get(name)
            if value_schema is None:
                logger.debug(f"Skipping \"{AttributePath.join(prefix, name)}\": not in schema for {schema.resource_type}")
                continue
            path = AttributePath.join(prefix, name)
            events.append(MappingKey(name, path, value_schema))
            cls._walk_value(events, value, value_schema, path)

    @classmethod
    def _walk_value(cls, events: List[HclEvent], value: Any, schema: ValueSchema, path: str):
        elem = schema.elem

        if isinstance(value, list):
            events.append(SequenceStart())
            for index, item in enumerate(value):
                item_path = f"{path}.{index}"
                if isinstance(elem, ResourceSchema) and isinstance(item, dict):
                    events.append(MappingStart())
                    cls._walk_mapping(events, item, elem, item_path)
                    events.append(MappingEnd())
                else:
                    cls._walk_value(events, item, elem if isinstance(elem, ValueSchema) else STRING_VALUE, item_path)
            events.append(SequenceEnd())

        elif isinstance(value, dict):
            events.append(MappingStart())
            if isinstance(elem, ResourceSchema):
                cls._walk_mapping(events, value, elem, path)
            else:
                entry_schema = elem if isinstance(elem, ValueSchema) else STRING_VALUE
                for key, item in value.items():
                    key_path = AttributePath.join(path, key)
                    events.append(MappingKey(key, key_path, entry_schema))
                    cls._walk_value(events, item, entry_schema, key_path)
            events.append(MappingEnd())

        else:
            events.append(ScalarValue(value))

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[HclEvent]:
        return iter(list(self._events))

    @property
    def events(self) -> List[HclEvent]:
        return list(self._events)

    @property
    def keys(self) -> List[MappingKey]:
        """All mapping keys, in document order"""
        return [e for e in self._events if isinstance(e, MappingKey)]

    def enqueue(self, event: HclEvent):
        self._events.append(event)

    def dequeue(self) -> HclEvent:
        if not self._events:
            raise IndexError("dequeue from an empty event queue")
        return self._events.pop(0)

    def peek(self) -> Optional[HclEvent]:
        return self._events[0] if self._events else None

    def find(self, event: HclEvent) -> int:
        """Index of the given event instance, or -1"""
        for index, candidate in enumerate(self._events):
            if candidate is event:
                return index
        return -1

    def find_key_by_path(self, path: str) -> Optional[MappingKey]:
        target = AttributePath(path)
        for key in self.keys:
            if AttributePath(key.path) == target:
                return key
        return None

    def _subtree_end(self, start: int) -> int:
        """Index just past the value subtree that begins at ``start``"""
        depth = 0
        index = start
        while index < len(self._events):
            event = self._events[index]
            if isinstance(event, MappingKey):
                index += 1
                continue
            depth += event.nesting_increase
            index += 1
            if depth <= 0:
                return index
        raise ValueError("Event queue ended inside a value")

    def value_events(self, key: MappingKey) -> List[HclEvent]:
        """Events making up the value of ``key``"""
        index = self.find(key)
        if index < 0:
            raise ValueError(f"Key {key!r} is not in the queue")
        return self._events[index + 1:self._subtree_end(index + 1)]

    def consume_key(self, key: MappingKey) -> int:
        """
        Remove a key and its entire value subtree

        Args:
            key: The key to remove

        Returns:
            Number of events removed, the key included
        """
        index = self.find(key)
        if index < 0:
            raise ValueError(f"Key {key!r} is not in the queue")
        end = self._subtree_end(index + 1)
        del self._events[index:end]
        return end - index

    def consume_until(self, predicate: Callable[[HclEvent], bool]) -> List[HclEvent]:
        """Dequeue events up to, not including, the first that satisfies ``predicate``"""
        consumed = []
        while self._events and not predicate(self._events[0]):
            consumed.append(self._events.pop(0))
        return consumed

    def peek_until(self, predicate: Callable[[HclEvent], bool]) -> List[HclEvent]:
        """Like ``consume_until`` but leaves the queue unchanged"""
        peeked = []
        for event in self._events:
            if predicate(event):
                break
            peeked.append(event)
        return peeked

    def contains(self, event: HclEvent) -> bool:
        return self.find(event) >= 0

    def is_well_nested(self) -> bool:
        """Every start has a matching end, and every key is followed by a value"""
        stack: List[HclEvent] = []
        expect_value = False

        for event in self._events:
            if isinstance(event, MappingKey):
                if expect_value or not stack or not isinstance(stack[-1], (MappingStart, ResourceStart)):
                    return False
                expect_value = True
                continue

            if event.is_end:
                if expect_value or not stack or not _closes(stack[-1], event):
                    return False
                stack.pop()
            else:
                if event.is_start:
                    stack.append(event)
                expect_value = False

        return not stack and not expect_value

    def _declared_conflicts(self) -> Set[Tuple[str, str]]:
        if self._conflict_pairs is not None:
            return self._conflict_pairs

        pairs: Set[Tuple[str, str]] = set()

        def add(first: str, second: str):
            first = AttributePath(first).normalized
            second = AttributePath(second).normalized
            pairs.add((first, second))
            pairs.add((second, first))

        if self.schema is not None:
            for path, value_schema in self.schema.iter_attributes():
                for other in value_schema.conflicts_with:
                    add(path, other)
            if self.schema.traits is not None:
                for group in self.schema.traits.conflicting_arguments:
                    for first in group:
                        for second in group:
                            if first != second:
                                add(first, second)
        else:
            for key in self.keys:
                if key.schema is not None:
                    for other in key.schema.conflicts_with:
                        add(key.path, other)

        self._conflict_pairs = pairs
        return pairs

    def get_conflicting_attributes(self, key: MappingKey) -> List[MappingKey]:
        """
        Keys in the queue that must not be set together with ``key``

        A conflict declared on a block applies to every attribute nested in
        it, so the relation is symmetric: if B conflicts with A then A
        conflicts with B. Keys inside different elements of a list never
        conflict with each other.
        """
        own_path = AttributePath(key.path).normalized
        pairs = self._declared_conflicts()
        targets = [b for a, b in pairs if _covers(a, own_path)]

        conflicting = []
        for other in self.keys:
            if other is key:
                continue
            other_path = AttributePath(other.path).normalized
            if _covers(own_path, other_path) or _covers(other_path, own_path):
                continue
            if any(_covers(b, other_path) for b in targets) and _same_elements(key.path, other.path):
                conflicting.append(other)
        return conflicting


def _closes(start: HclEvent, end: HclEvent) -> bool:
    return (
        (isinstance(start, ResourceStart) and isinstance(end, ResourceEnd))
        or (isinstance(start, MappingStart) and isinstance(end, MappingEnd))
        or (isinstance(start, SequenceStart) and isinstance(end, SequenceEnd))
    )
