#!/usr/bin/env python3
"""
Exporter Exceptions

Structural failures that abort an export run. Per-resource problems are
collected as warnings and errors on result objects instead of being raised.
"""

from typing import Optional


class ExporterError(Exception):
    """Base class for all errors raised by the exporter"""


class SchemaLoadError(ExporterError):
    """The bundled provider schema, type map or traits could not be read"""


class ResourceSchemaNotFoundError(ExporterError, LookupError):
    """No schema exists for the requested AWS or Terraform resource type"""

    def __init__(self, resource_type: str, message: str):
        super().__init__(message)
        self.resource_type = resource_type


class AttributeNotFoundError(ExporterError, LookupError):
    """An attribute path does not exist in a resource schema"""

    def __init__(self, path: str, resource_type: Optional[str] = None):
        where = f" in resource \"{resource_type}\"" if resource_type else ""
        super().__init__(f"Attribute \"{path}\" not found{where}.")
        self.path = path
        self.resource_type = resource_type


class AttributePathOrderError(ExporterError):
    """A list index appears where the schema has no list, or is missing where it does"""

    def __init__(self, partial_path: str, path: str):
        super().__init__(
            f"Attribute path \"{path}\" is invalid at \"{partial_path}\": "
            f"list indexes must follow, and only follow, a list or set attribute."
        )
        self.partial_path = partial_path
        self.path = path


class ConflictResolutionError(ExporterError):
    """Two attributes that must not be set together both have to be kept"""

    def __init__(self, first: str, second: str):
        super().__init__(
            f"Unable to resolve conflict between \"{first}\" and \"{second}\". Please raise an issue."
        )
        self.first = first
        self.second = second


class TemplateEvaluationError(ExporterError):
    """An intrinsic function cannot be evaluated to a literal value"""


class IntrinsicResolutionError(ExporterError):
    """An intrinsic function cannot be expressed as a Terraform expression"""


class TerraformNotFoundError(ExporterError):
    """The terraform executable could not be located"""


class TerraformRunnerError(ExporterError):
    """terraform exited with a non-zero code where success was required"""

    def __init__(self, command: str, exit_code: int, output=None):
        super().__init__(f"terraform {command} exited with code {exit_code}")
        self.command = command
        self.exit_code = exit_code
        self.output = output or []


class ResourceCountMismatchError(ExporterError):
    """The template and the deployed stack disagree on the resources they contain"""
