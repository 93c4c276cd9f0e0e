#!/usr/bin/env python3
"""
HCL Emitter

Renders a preprocessed event queue as a Terraform resource block. Attributes
whose schema says they are blocks become nested ``name { ... }`` blocks, all
others become ``name = value`` assignments. References are written as bare
expressions, never as quoted strings.
"""

import json
import logging
import re
from typing import Any, Iterable, List, Optional, Union

from .event_queue import EventQueue
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
from .references import Reference

logger = logging.getLogger(__name__)

IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

# Longest list rendered on a single line
INLINE_LIST_WIDTH = 80


def quote_string(value: str) -> str:
    """Quote and escape a string, including template sequences"""
    escaped = (
        value.replace("\\", "\\\\")
        .replace("\"", "\\\"")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
        .replace("${", "$${")
        .replace("%{", "%%{")
    )
    return f"\"{escaped}\""


def format_key(name: str) -> str:
    return name if IDENTIFIER.match(name) else quote_string(name)


def _parse_json_document(value: str) -> Optional[dict]:
    text = value.strip()
    if not text.startswith("{"):
        return None
    try:
        document = json.loads(text)
    except ValueError:
        return None
    return document if isinstance(document, dict) else None


class HclEmitter:
    """
    Serializes event streams to HCL text

    Args:
        indent: Indentation unit
    """

    def __init__(self, indent: str = "  "):
        self.indent = indent
        self._events: List[HclEvent] = []
        self._position = 0

    def emit(self, events: Union[EventQueue, Iterable[HclEvent]], depends_on: Optional[List[str]] = None) -> str:
        """
        Render one resource

        Args:
            events: Event queue or stream starting with ResourceStart
            depends_on: Addresses for an explicit ``depends_on`` argument

        Returns:
            HCL text of the resource block
        """
        self._events = events.events if isinstance(events, EventQueue) else list(events)
        self._position = 0

        start = self._next()
        if not isinstance(start, ResourceStart):
            raise ValueError(f"Expected ResourceStart, got {start!r}")

        lines = [f"resource \"{start.resource_type}\" \"{start.resource_name}\" {{"]
        self._emit_body(lines, 1, ResourceEnd)

        if depends_on:
            lines.append(f"{self.indent}depends_on = [{', '.join(depends_on)}]")

        lines.append("}")
        return "\n".join(lines) + "\n"

    def _next(self) -> HclEvent:
        if self._position >= len(self._events):
            raise ValueError("Unexpected end of event stream")
        event = self._events[self._position]
        self._position += 1
        return event

    def _peek(self) -> Optional[HclEvent]:
        return self._events[self._position] if self._position < len(self._events) else None

    def _emit_body(self, lines: List[str], level: int, end_type: type):
        while True:
            event = self._next()
            if isinstance(event, end_type):
                return
            if not isinstance(event, MappingKey):
                raise ValueError(f"Expected an attribute, got {event!r}")
            self._emit_attribute(lines, level, event)

    def _emit_attribute(self, lines: List[str], level: int, key: MappingKey):
        pad = self.indent * level
        value = self._peek()

        if key.schema is not None and key.schema.is_block() and isinstance(value, (SequenceStart, MappingStart)):
            if isinstance(value, MappingStart):
                self._next()
                lines.append(f"{pad}{key.name} {{")
                self._emit_body(lines, level + 1, MappingEnd)
                lines.append(f"{pad}}}")
                return

            self._next()
            while not isinstance(self._peek(), SequenceEnd):
                element = self._next()
                if not isinstance(element, MappingStart):
                    raise ValueError(f"Block \"{key.path}\" contains a non-block element {element!r}")
                lines.append(f"{pad}{key.name} {{")
                self._emit_body(lines, level + 1, MappingEnd)
                lines.append(f"{pad}}}")
            self._next()
            return

        lines.append(f"{pad}{format_key(key.name)} = {self._render_value(level)}")

    def _render_value(self, level: int) -> str:
        event = self._next()

        if isinstance(event, ScalarValue):
            return self.format_literal(event.value, level)

        if isinstance(event, SequenceStart):
            items = []
            while not isinstance(self._peek(), SequenceEnd):
                items.append(self._render_value(level + 1))
            self._next()
            return self._format_list(items, level)

        if isinstance(event, MappingStart):
            entries = []
            while not isinstance(self._peek(), MappingEnd):
                key = self._next()
                if not isinstance(key, MappingKey):
                    raise ValueError(f"Expected a map key, got {key!r}")
                entries.append(f"{format_key(key.name)} = {self._render_value(level + 1)}")
            self._next()
            return self._format_map(entries, level)

        raise ValueError(f"Expected a value, got {event!r}")

    def _format_list(self, items: List[str], level: int) -> str:
        if not items:
            return "[]"
        inline = f"[{', '.join(items)}]"
        if "\n" not in inline and len(inline) <= INLINE_LIST_WIDTH:
            return inline
        pad = self.indent * (level + 1)
        body = ",\n".join(f"{pad}{item}" for item in items)
        return f"[\n{body}\n{self.indent * level}]"

    def _format_map(self, entries: List[str], level: int) -> str:
        if not entries:
            return "{}"
        pad = self.indent * (level + 1)
        body = "\n".join(f"{pad}{entry}" for entry in entries)
        return f"{{\n{body}\n{self.indent * level}}}"

    def format_literal(self, value: Any, level: int = 0) -> str:
        """
        Render a captured scalar

        JSON object strings, such as policy documents, are rendered through
        ``jsonencode`` so they stay readable.
        """
        if isinstance(value, Reference):
            return value.reference_expression
        if value is None:
            return "null"
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, str):
            document = _parse_json_document(value)
            if document is not None:
                return f"jsonencode({self.render_document(document, level)})"
            return quote_string(value)
        return quote_string(str(value))

    def render_document(self, value: Any, level: int = 0) -> str:
        """Render decoded JSON as an HCL object or tuple, quoting every key"""
        if isinstance(value, dict):
            entries = [f"{quote_string(k)} = {self.render_document(v, level + 1)}" for k, v in value.items()]
            return self._format_map(entries, level)
        if isinstance(value, list):
            return self._format_list([self.render_document(v, level + 1) for v in value], level)
        if isinstance(value, str):
            return quote_string(value)
        return self.format_literal(value, level)


def format_value(value: Any) -> str:
    """Render a plain value on a single line, e.g. for variable defaults"""
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(format_value(v) for v in value) + "]"
    if isinstance(value, dict):
        return "{ " + ", ".join(f"{format_key(str(k))} = {format_value(v)}" for k, v in value.items()) + " }"
    return HclEmitter().format_literal(value)
