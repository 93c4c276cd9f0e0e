#!/usr/bin/env python3
"""
Event Queue Preprocessor

Schema driven rules that strip attributes which are not legal or not useful
as configuration: read-only outputs, empty optional values and members of
mutually exclusive attribute groups.
"""

import logging
from typing import List, Optional, Tuple

from .event_queue import EventQueue
from .events import MappingKey, ScalarValue
from .exceptions import ConflictResolutionError
from .schema import AttributePath, SchemaValueType

logger = logging.getLogger(__name__)


class EventQueuePreprocessor:
    """
    Applies the removal rules to one resource's event queue

    Each rule returns the paths it removed. Warnings for conditions that do
    not stop generation are collected in ``warnings``.
    """

    def __init__(self, queue: EventQueue):
        self.queue = queue
        self.warnings: List[str] = []

    def process(self) -> List[str]:
        """
        Run every rule in order

        Returns:
            Paths of all removed attributes
        """
        removed = []
        removed.extend(self.remove_empty_optional_attributes())
        removed.extend(self.remove_computed_attributes())
        removed.extend(self.resolve_conflicts())
        self.check_exactly_one_of()
        return removed

    def _live_keys(self) -> List[MappingKey]:
        return self.queue.keys

    def _remove(self, key: MappingKey, removed: List[str]):
        count = self.queue.consume_key(key)
        removed.append(key.path)
        logger.debug(f"Removed \"{key.path}\" ({count} events)")
        self._check_nesting()

    def _check_nesting(self):
        if not self.queue.is_well_nested():
            raise RuntimeError("Event queue is no longer well nested")

    def is_empty(self, key: MappingKey) -> bool:
        """
        Whether the key's captured value carries no configuration

        None and empty strings are empty, and so is ``false`` for a bool
        attribute that declares no default. Numeric zero is a value. A
        collection or block is empty when nothing inside it has a value.
        """
        value_events = self.queue.value_events(key)

        if len(value_events) == 1 and isinstance(value_events[0], ScalarValue):
            scalar = value_events[0]
            if scalar.is_empty:
                return True
            schema = key.schema
            if (schema is not None and schema.type == SchemaValueType.BOOL
                    and scalar.value is False and not schema.has_default):
                return True
            return False

        return not any(isinstance(e, ScalarValue) and not e.is_empty for e in value_events)

    def remove_computed_attributes(self) -> List[str]:
        """Remove read-only attributes (computed and not optional) at any depth"""
        removed: List[str] = []
        for key in self._live_keys():
            if not self.queue.contains(key):
                continue
            schema = key.schema
            if schema is not None and schema.computed and not schema.optional:
                self._remove(key, removed)

        # Optional and computed, but always the provider's merge of tags and default_tags
        for key in self._live_keys():
            if key.path == "tags_all" and self.queue.contains(key):
                self._remove(key, removed)
        return removed

    def remove_empty_optional_attributes(self) -> List[str]:
        """Remove optional attributes whose value is empty"""
        removed: List[str] = []
        for key in self._live_keys():
            if not self.queue.contains(key):
                continue
            schema = key.schema
            if schema is None or not schema.optional or schema.required:
                continue
            if self.is_empty(key):
                self._remove(key, removed)
        return removed

    def resolve_conflicts(self) -> List[str]:
        """
        Remove attributes that conflict with an attribute that has a value

        Keys are visited in document order. A required key always stays, then
        the conflicting argument groups of the resource traits decide. Failing
        those an optional+computed key gives way to a plain one, and otherwise
        the first key carrying a value keeps its place.

        Raises:
            ConflictResolutionError: Both attributes of a conflicting pair are required
        """
        removed: List[str] = []
        for key in self._live_keys():
            if not self.queue.contains(key) or self.is_empty(key):
                continue

            for other in self.queue.get_conflicting_attributes(key):
                if not self.queue.contains(other):
                    continue

                if self.is_empty(other):
                    self._remove(other, removed)
                    continue

                loser = self._choose_loser(key, other)
                self.warnings.append(
                    f"Attributes \"{key.path}\" and \"{other.path}\" are mutually exclusive; "
                    f"removed \"{loser.path}\"."
                )
                logger.warning(self.warnings[-1])
                self._remove(loser, removed)
                if loser is key:
                    break

        return removed

    def _choose_loser(self, key: MappingKey, other: MappingKey) -> MappingKey:
        key_required = key.schema is not None and key.schema.required
        other_required = other.schema is not None and other.schema.required

        if key_required and other_required:
            raise ConflictResolutionError(key.path, other.path)
        if key_required:
            return other
        if other_required:
            return key

        preferred = self._preferred_order(key, other)
        if preferred is not None:
            return preferred[1]

        key_derived = key.schema is not None and key.schema.optional and key.schema.computed
        other_derived = other.schema is not None and other.schema.optional and other.schema.computed
        if key_derived and not other_derived:
            return key
        return other

    def _preferred_order(self, key: MappingKey, other: MappingKey) -> Optional[Tuple[MappingKey, MappingKey]]:
        """(winner, loser) from the first traits group naming both keys"""
        traits = self.queue.schema.traits if self.queue.schema is not None else None
        if traits is None:
            return None

        key_path = AttributePath(key.path).normalized
        other_path = AttributePath(other.path).normalized
        for group in traits.conflicting_arguments:
            if key_path in group and other_path in group:
                if group.index(key_path) < group.index(other_path):
                    return key, other
                return other, key
        return None

    def check_exactly_one_of(self) -> List[str]:
        """Record a warning for every exactly-one-of group not satisfied by exactly one value"""
        warnings = []
        seen = set()
        keys = self.queue.keys

        for key in keys:
            if key.schema is None or not key.schema.exactly_one_of:
                continue
            group = tuple(sorted(key.schema.exactly_one_of))
            if group in seen:
                continue
            seen.add(group)

            present = [k.path for k in keys if k.path in group and not self.is_empty(k)]
            if len(present) != 1:
                warnings.append(
                    f"Exactly one of {', '.join(group)} should be set; found {len(present)}."
                )

        for warning in warnings:
            logger.warning(warning)
        self.warnings.extend(warnings)
        return warnings
