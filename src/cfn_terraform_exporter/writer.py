#!/usr/bin/env python3
"""
HCL Writer

Writes the final configuration of a module: provider settings, data
sources, locals, resources regenerated from state, outputs, variables and
the values the stack was deployed with.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from jinja2 import Template

from .emitter import HclEmitter, quote_string
from .event_queue import EventQueue
from .exceptions import ConflictResolutionError, IntrinsicResolutionError
from .intrinsics import IntrinsicResolver
from .modules import ModuleInfo
from .preprocessor import EventQueuePreprocessor
from .references import DataSourceReference, Reference
from .schema import AwsSchema
from .state import StateFile
from .template import GetAtt, Ref
from .variables import SsmParameterDataSource

logger = logging.getLogger(__name__)

ARN_PATTERN = re.compile(r"^arn:[\w\-]+:")

PROVIDER_TEMPLATE = """terraform {
  required_providers {
    aws = {
      source  = "hashicorp/aws"
      version = "{{ provider_version }}"
    }
  }
}

provider "aws" {
  region = "{{ region }}"
{%- if default_tags %}

  default_tags {
    tags = {
{%- for key, value in default_tags %}
      {{ key }} = {{ value }}
{%- endfor %}
    }
  }
{%- endif %}
}
"""

DATA_SOURCE_TEMPLATE = """data "{{ block_type }}" "{{ block_name }}" {
{%- for name, value in arguments %}
  {{ name }} = {{ value }}
{%- endfor %}
}
"""

OUTPUT_TEMPLATE = """output "{{ name }}" {
{%- if description %}
  description = {{ description }}
{%- endif %}
  value = {{ value }}
}
"""

LOCALS_TEMPLATE = """locals {
  mappings = {{ mappings }}
}
"""

# Data sources referenced by pseudo parameters and GetAZs take these arguments
_DATA_SOURCE_ARGUMENTS = {
    "aws_availability_zones": [("state", "\"available\"")],
}


@dataclass
class WriteResult:
    """Outcome of writing one module"""
    resources_written: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def iter_references(value: Any) -> Iterator[Reference]:
    """Every reference in a value tree, function arguments included"""
    if isinstance(value, Reference):
        yield value
        for argument in getattr(value, "arguments", []):
            yield from iter_references(argument)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_references(item)
    elif isinstance(value, list):
        for item in value:
            yield from iter_references(item)


class HclWriter:
    """
    Writes module configuration files

    Args:
        schema: Provider schema registry
        provider_version: Version constraint of the AWS provider
        add_default_tag: Add a provider default tag naming the source stack
    """

    def __init__(self, schema: AwsSchema, provider_version: str = ">= 4.0", add_default_tag: bool = False):
        self.schema = schema
        self.provider_version = provider_version
        self.add_default_tag = add_default_tag
        self.emitter = HclEmitter()

    def write_module(self, module: ModuleInfo, state: StateFile, resolver: IntrinsicResolver) -> WriteResult:
        """
        Replace the placeholder configuration of a module with the final one

        Args:
            module: The module to write
            state: State holding the module's imported resources, references included
            resolver: The module's intrinsic resolver, used for outputs and module inputs

        Returns:
            WriteResult with the number of resources and any problems
        """
        result = WriteResult()
        sections = []

        if module.is_root:
            sections.append(self.render_provider(module))

        # Outputs and module inputs register the data sources they refer to
        outputs = self.render_outputs(module, resolver, result)
        module_blocks = module.render_module_blocks(resolver)

        resources = []
        data_sources: Dict[str, DataSourceReference] = dict(resolver.data_sources)
        for mapping in module.mappings:
            if not mapping.is_imported:
                continue
            state_resource = state.find_resource(mapping.address)
            if state_resource is None:
                continue
            for reference in iter_references(state_resource.attributes):
                if isinstance(reference, DataSourceReference):
                    data_sources[reference.block_address] = reference
            resources.append(self.render_resource(
                mapping.terraform_type, mapping.logical_id, state_resource.attributes, mapping.depends_on, result
            ))

        sections.extend(self.render_data_sources(module, data_sources.values()))
        if module.stack.template.mappings:
            sections.append(Template(LOCALS_TEMPLATE).render(
                mappings=self.emitter.render_document(module.stack.template.mappings, 1)
            ))
        sections.extend(resources)
        sections.extend(outputs)

        module.directory.mkdir(parents=True, exist_ok=True)
        (module.directory / "main.tf").write_text("\n".join(s.rstrip("\n") + "\n" for s in sections), encoding="utf-8")
        module.write_variables()
        if module.is_root:
            self.write_tfvars(module)
        module.save_module_imports(module_blocks)

        result.resources_written = len(resources)
        logger.info(f"Wrote {result.resources_written} resources to {module.directory / 'main.tf'}")
        return result

    def render_provider(self, module: ModuleInfo) -> str:
        default_tags = []
        if self.add_default_tag:
            default_tags.append((quote_string("terraform:stack_name"), quote_string(module.stack.stack_name)))
        return Template(PROVIDER_TEMPLATE).render(
            provider_version=self.provider_version,
            region=module.stack.template.pseudo_parameters.get("AWS::Region", ""),
            default_tags=default_tags,
        )

    def render_resource(self, terraform_type: str, name: str, attributes: Dict[str, Any],
                        depends_on: List[str], result: WriteResult) -> str:
        """Run one resource's state through the event queue, preprocessor and emitter"""
        schema = self.schema.get_resource_schema(terraform_type)
        queue = EventQueue.from_resource(terraform_type, name, attributes, schema)
        preprocessor = EventQueuePreprocessor(queue)

        try:
            removed = preprocessor.process()
        except ConflictResolutionError as e:
            message = f"ERROR: {terraform_type}.{name}: {str(e)}"
            logger.error(message)
            result.errors.append(message)
            return f"resource \"{terraform_type}\" \"{name}\" {{}}\n"

        logger.debug(f"{terraform_type}.{name}: removed {len(removed)} attributes")
        result.warnings.extend(f"{terraform_type}.{name}: {w}" for w in preprocessor.warnings)
        return self.emitter.emit(queue, depends_on)

    def render_data_sources(self, module: ModuleInfo, references) -> List[str]:
        rendered = {}
        for reference in references:
            address = reference.block_address
            if address in rendered:
                continue
            if reference.block_type == "aws_ssm_parameter" and reference.is_parameter:
                parameter = module.stack.template.parameters.get(reference.block_name)
                if parameter is not None:
                    rendered[address] = SsmParameterDataSource.from_parameter(parameter).render()
                continue
            rendered[address] = Template(DATA_SOURCE_TEMPLATE).render(
                block_type=reference.block_type,
                block_name=reference.block_name,
                arguments=_DATA_SOURCE_ARGUMENTS.get(reference.block_type, []),
            )
        return [rendered[k] for k in sorted(rendered)]

    def render_outputs(self, module: ModuleInfo, resolver: IntrinsicResolver, result: WriteResult) -> List[str]:
        """Outputs whose value refers to an imported resource"""
        outputs = []
        template = module.stack.template

        for output in template.outputs.values():
            value = output.value
            expression: Optional[str] = None

            if isinstance(value, Ref) and value.reference in resolver.resource_addresses:
                address = resolver.resource_addresses[value.reference]
                literal = module.stack.outputs.get(output.name)
                attribute = "arn" if literal and ARN_PATTERN.match(str(literal)) else "id"
                expression = f"{address}.{attribute}"
            elif isinstance(value, GetAtt):
                try:
                    reference = resolver.resolve(value)
                except IntrinsicResolutionError as e:
                    result.warnings.append(f"Output {output.name}: {str(e)}")
                    reference = None
                if reference is not None:
                    expression = reference.reference_expression

            if expression is None:
                logger.debug(f"Output {output.name} does not refer to an imported resource")
                continue

            outputs.append(Template(OUTPUT_TEMPLATE).render(
                name=output.name,
                description=quote_string(output.description) if output.description else None,
                value=expression,
            ))
        return outputs

    @staticmethod
    def write_tfvars(module: ModuleInfo):
        """``terraform.tfvars`` with the parameter values the stack was deployed with"""
        lines = [line for line in (v.render_tfvars_value() for v in module.input_variables()) if line]
        path = module.directory / "terraform.tfvars"
        if lines:
            path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        elif path.exists():
            path.unlink()


def write_workspace(writer: HclWriter, root: ModuleInfo, state: StateFile,
                    resolvers: Dict[str, IntrinsicResolver]) -> WriteResult:
    """Write every module of the tree, children first"""
    total = WriteResult()
    modules = list(root.walk())
    for module in reversed(modules):
        result = writer.write_module(module, state, resolvers[str(module.directory)])
        total.resources_written += result.resources_written
        total.warnings.extend(result.warnings)
        total.errors.extend(result.errors)
    return total
