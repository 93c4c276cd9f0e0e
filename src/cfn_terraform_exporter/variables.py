#!/usr/bin/env python3
"""
Input Variables

Maps CloudFormation template parameters to Terraform input variables, or to
``aws_ssm_parameter`` data sources for SSM backed parameters.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from jinja2 import Template

from .emitter import format_value, quote_string
from .template import TemplateParameter

logger = logging.getLogger(__name__)

_SCALAR_TYPES = {
    "String": "string",
    "Number": "number",
}

_LIST_TYPES = {
    "List<Number>": "list(number)",
    "CommaDelimitedList": "list(string)",
}

VARIABLE_TEMPLATE = """variable "{{ name }}" {
  type = {{ type }}
{%- if description %}
  description = {{ description }}
{%- endif %}
{%- if default is not none %}
  default = {{ default }}
{%- endif %}
{%- if sensitive %}
  sensitive = true
{%- endif %}
{%- if validation %}

  validation {
    condition     = {{ validation }}
    error_message = {{ error_message }}
  }
{%- endif %}
}
"""

SSM_DATA_TEMPLATE = """data "aws_ssm_parameter" "{{ name }}" {
  name = {{ parameter_name }}
}
"""


def terraform_type(parameter_type: str) -> str:
    """
    Terraform type expression for a CloudFormation parameter type

    AWS-specific types such as ``AWS::EC2::VPC::Id`` are strings and their
    ``List<...>`` forms are lists of strings.
    """
    if parameter_type in _SCALAR_TYPES:
        return _SCALAR_TYPES[parameter_type]
    if parameter_type in _LIST_TYPES:
        return _LIST_TYPES[parameter_type]
    if parameter_type.startswith("List<"):
        return "list(string)"
    return "string"


def _convert(value: Any, type_expression: str) -> Any:
    if value is None:
        return None
    if type_expression.startswith("list("):
        items = value if isinstance(value, list) else [v.strip() for v in str(value).split(",") if v.strip()]
        return [_convert(v, type_expression[5:-1]) for v in items]
    if type_expression == "number":
        text = str(value)
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return float(text)
        except ValueError:
            return text
    return str(value)


@dataclass
class InputVariable:
    """A Terraform input variable derived from a stack parameter"""
    name: str
    type: str = "string"
    description: Optional[str] = None
    default: Any = None
    allowed_values: List[Any] = field(default_factory=list)
    sensitive: bool = False
    current_value: Any = None

    @classmethod
    def from_parameter(cls, parameter: TemplateParameter) -> "InputVariable":
        type_expression = terraform_type(parameter.type)
        element_type = type_expression[5:-1] if type_expression.startswith("list(") else type_expression
        return cls(
            name=parameter.name,
            type=type_expression,
            description=parameter.description,
            default=_convert(parameter.default, type_expression),
            allowed_values=[_convert(v, element_type) for v in parameter.allowed_values],
            sensitive=parameter.no_echo,
            current_value=_convert(parameter.current_value, type_expression),
        )

    @property
    def is_list(self) -> bool:
        return self.type.startswith("list(")

    def validation_condition(self) -> Optional[str]:
        if not self.allowed_values:
            return None
        allowed = format_value(self.allowed_values)
        if self.is_list:
            return f"alltrue([for v in var.{self.name} : contains({allowed}, v)])"
        return f"contains({allowed}, var.{self.name})"

    def render(self) -> str:
        condition = self.validation_condition()
        return Template(VARIABLE_TEMPLATE).render(
            name=self.name,
            type=self.type,
            description=quote_string(self.description) if self.description else None,
            default=None if self.default is None else format_value(self.default),
            sensitive=self.sensitive,
            validation=condition,
            error_message=quote_string(
                f"{self.name} must be one of: {', '.join(str(v) for v in self.allowed_values)}."
            ),
        )

    def render_tfvars_value(self) -> Optional[str]:
        """Assignment for ``terraform.tfvars``, or None when the stack value equals the default"""
        if self.current_value is None or self.current_value == self.default:
            return None
        return f"{self.name} = {format_value(self.current_value)}"


@dataclass
class SsmParameterDataSource:
    """``aws_ssm_parameter`` data source standing in for an SSM backed stack parameter"""
    name: str
    parameter_name: str

    @classmethod
    def from_parameter(cls, parameter: TemplateParameter) -> "SsmParameterDataSource":
        # The parameter value is the name of the SSM parameter, not its content
        parameter_name = parameter.default if parameter.default is not None else parameter.current_value
        return cls(name=parameter.name, parameter_name=str(parameter_name or parameter.name))

    def render(self) -> str:
        return Template(SSM_DATA_TEMPLATE).render(name=self.name, parameter_name=quote_string(self.parameter_name))
