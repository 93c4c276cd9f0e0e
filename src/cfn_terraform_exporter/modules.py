#!/usr/bin/env python3
"""
Module Tree

One node per exported stack. The root stack is the root Terraform module;
each exported nested stack becomes a child module under ``modules/<name>``.
Imports run depth first, and after a module is imported every ancestor
rewrites its module blocks so inputs are only passed to modules whose
variables exist.
"""

import logging
import re
import weakref
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from jinja2 import Template

from .emitter import format_value
from .exceptions import TemplateEvaluationError
from .importers import get_importer
from .mapper import ResourceMapper, ResourceMapping
from .runner import Runner, extract_error
from .stack_reader import CloudFormationResource, ReadStackResult, StackReader
from .template import Intrinsic
from .variables import InputVariable

logger = logging.getLogger(__name__)

STACK_ARN = re.compile(r"arn:[\w\-]+:cloudformation:[\w\-]+:\d+:stack/(?P<name>[\w\-]+)")

MODULE_IMPORTS_FILE = "module_imports.tf"
VARIABLES_FILE = "variables.tf"

MODULE_BLOCK_TEMPLATE = """module "{{ name }}" {
  source = "./modules/{{ name }}"
{%- for input_name, expression in inputs %}
  {{ input_name }} = {{ expression }}
{%- endfor %}
}
"""


def stack_name_from_arn(arn: str) -> str:
    """
    Name of a stack given its ARN

    Raises:
        ValueError: The ARN is not a CloudFormation stack ARN
    """
    match = STACK_ARN.match(arn)
    if not match:
        raise ValueError(f"\"{arn}\" is not a valid CloudFormation stack ARN")
    return match.group("name")


@dataclass
class ImportSummary:
    """Outcome of importing one module's resources"""
    total_imports: int = 0
    successful_imports: int = 0
    skipped_imports: int = 0
    failed_imports: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def merge(self, other: "ImportSummary"):
        self.total_imports += other.total_imports
        self.successful_imports += other.successful_imports
        self.skipped_imports += other.skipped_imports
        self.failed_imports += other.failed_imports
        self.warnings.extend(other.warnings)
        self.errors.extend(other.errors)


class ModuleInfo:
    """
    A node of the module tree

    Args:
        name: Module name; ``root`` for the root module
        directory: Directory holding the module's configuration
        stack: The stack this module was exported from
        mappings: Resources of the stack chosen for import
        parent: Enclosing module, referenced weakly
        nested_stack: The ``AWS::CloudFormation::Stack`` resource in the parent
    """

    def __init__(self,
                 name: str,
                 directory: Path,
                 stack: ReadStackResult,
                 mappings: List[ResourceMapping],
                 parent: Optional["ModuleInfo"] = None,
                 nested_stack: Optional[CloudFormationResource] = None):
        self.name = name
        self.directory = Path(directory)
        self.stack = stack
        self.mappings = mappings
        self.nested_stack = nested_stack
        self.children: List[ModuleInfo] = []
        self.is_imported = False
        self.warnings: List[str] = []
        self._parent = weakref.ref(parent) if parent is not None else None

    @property
    def parent(self) -> Optional["ModuleInfo"]:
        return self._parent() if self._parent is not None else None

    @property
    def is_root(self) -> bool:
        return self._parent is None

    @property
    def logical_id(self) -> Optional[str]:
        """Logical id of the nested stack resource in the parent template"""
        return self.nested_stack.logical_id if self.nested_stack else None

    @property
    def module_prefix(self) -> str:
        """Address prefix of this module's resources, e.g. ``module.network.``"""
        names = []
        module = self
        while module is not None and not module.is_root:
            names.insert(0, module.name)
            module = module.parent
        return "".join(f"module.{n}." for n in names)

    def ancestors(self) -> Iterator["ModuleInfo"]:
        module = self.parent
        while module is not None:
            yield module
            module = module.parent

    def walk(self) -> Iterator["ModuleInfo"]:
        """This module and all descendants, parents before children"""
        yield self
        for child in self.children:
            yield from child.walk()

    def add_child(self, child: "ModuleInfo"):
        self.children.append(child)

    @classmethod
    def build(cls,
              stack: ReadStackResult,
              mapper: ResourceMapper,
              stack_reader: StackReader,
              directory: Path,
              name: str = "root",
              parent: Optional["ModuleInfo"] = None,
              nested_stack: Optional[CloudFormationResource] = None) -> "ModuleInfo":
        """
        Map a stack and, recursively, its exported nested stacks

        Placeholder resource blocks are written to each module's ``main.tf``.
        """
        module = cls(name, directory, stack, [], parent, nested_stack)
        result = mapper.map_resources(stack.resources, module.directory, module.module_prefix)
        module.mappings = result.mappings
        module.warnings.extend(result.warnings)

        for resource in result.nested_stacks:
            child_name = stack_name_from_arn(resource.physical_id)
            logger.info(f"Reading nested stack {child_name} ({resource.logical_id})")
            child_stack = stack_reader.read_stack(resource.physical_id)
            child = cls.build(
                child_stack, mapper, stack_reader, module.directory / "modules" / child_name,
                child_name, module, resource
            )
            module.add_child(child)

        return module

    def import_resources(self, runner: Runner) -> ImportSummary:
        """
        Import this module's resources, children first

        Failures are recorded and the loop carries on with the next resource.
        """
        summary = ImportSummary()

        for child in self.children:
            summary.merge(child.import_resources(runner))

        for mapping in self.mappings:
            summary.total_imports += 1
            import_id = self._get_import_id(mapping, summary)
            if import_id is None:
                summary.skipped_imports += 1
                continue

            output: List[str] = []
            logger.info(f"Importing {mapping.aws_address} as {mapping.address}")
            if runner.run("import", False, True, output, "-no-color", mapping.address, import_id):
                mapping.is_imported = True
                summary.successful_imports += 1
            else:
                error = extract_error(output)
                message = f"ERROR: {mapping.aws_address}: {error}" if error \
                    else f"ERROR: Could not import {mapping.aws_address}"
                logger.error(message)
                summary.errors.append(message)
                summary.failed_imports += 1

        self.is_imported = True
        if not self.is_root:
            self.write_variables()
        for ancestor in self.ancestors():
            ancestor.write_module_imports()

        return summary

    def _get_import_id(self, mapping: ResourceMapping, summary: ImportSummary) -> Optional[str]:
        importer_type = get_importer(mapping.terraform_type)
        if importer_type is None:
            return mapping.physical_id

        importer = importer_type(
            mapping.resource.template_resource, mapping.physical_id, self.stack.template, summary.warnings
        )
        try:
            return importer.get_import_id()
        except TemplateEvaluationError as e:
            message = f"Resource \"{mapping.logical_id}\" ({mapping.aws_type}): Cannot compute import id: {str(e)}"
            logger.warning(message)
            summary.warnings.append(message)
            return None

    def input_variables(self) -> List[InputVariable]:
        """Variables for the stack parameters that are not SSM backed"""
        return [
            InputVariable.from_parameter(p)
            for p in self.stack.template.parameters.values()
            if not p.is_ssm_parameter
        ]

    def write_variables(self):
        variables = self.input_variables()
        path = self.directory / VARIABLES_FILE
        if not variables:
            if path.exists():
                path.unlink()
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(v.render() + "\n" for v in variables), encoding="utf-8")

    def module_inputs(self, child: "ModuleInfo", resolver=None) -> List[tuple]:
        """
        Input assignments for a child's module block

        Args:
            child: The child module
            resolver: IntrinsicResolver of this module; without one, inputs are
                the parameter values the nested stack was deployed with

        Returns:
            List of (variable name, HCL expression)
        """
        if not child.is_imported:
            return []

        declared: Dict[str, Any] = {v.name: v for v in child.input_variables()}
        parameters = {}
        if child.nested_stack is not None:
            parameters = child.nested_stack.template_resource.properties.get("Parameters") or {}

        inputs = []
        for name, variable in declared.items():
            value = parameters.get(name)
            expression = None
            if resolver is not None and isinstance(value, Intrinsic):
                reference = resolver.resolve(value)
                if reference is not None:
                    expression = reference.reference_expression
            if expression is None:
                if variable.current_value is None:
                    continue
                expression = format_value(variable.current_value)
            inputs.append((name, expression))
        return inputs

    def render_module_blocks(self, resolver=None) -> str:
        template = Template(MODULE_BLOCK_TEMPLATE)
        return "\n".join(
            template.render(name=child.name, inputs=self.module_inputs(child, resolver)) + "\n"
            for child in self.children
        )

    def write_module_imports(self, resolver=None):
        """Rewrite ``module_imports.tf``; removed when the module has no children"""
        self.save_module_imports(self.render_module_blocks(resolver))

    def save_module_imports(self, content: str):
        path = self.directory / MODULE_IMPORTS_FILE
        if path.exists():
            path.unlink()
        if not self.children:
            return
        self.directory.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        logger.debug(f"Wrote {len(self.children)} module blocks to {path}")
