#!/usr/bin/env python3
"""
Command Line Interface for the CloudFormation to Terraform Exporter

This module provides the ``cf2tf-export`` command.
"""

import click
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import yaml
from tabulate import tabulate

from . import __version__
from .config import ConfigManager, DEFAULT_CONFIG_TEMPLATE, LoggingConfig
from .exceptions import ExporterError
from .exporter import Exporter
from .mapper import ResourceMapper
from .schema import AwsSchema
from .stack_reader import CloudFormationResource, StackResource
from .template import Template

logger = logging.getLogger(__name__)


def setup_logging(config: LoggingConfig):
    """Configure the root logger from the logging settings"""
    handlers = []
    if config.console:
        handlers.append(logging.StreamHandler())
    if config.file:
        handlers.append(RotatingFileHandler(
            config.file, maxBytes=config.max_file_size, backupCount=config.backup_count
        ))
    logging.basicConfig(
        level=getattr(logging, config.level),
        format=config.format,
        handlers=handlers or [logging.NullHandler()],
        force=True,
    )


def _load_config(ctx, **cli_args):
    config_manager = ConfigManager()
    cli_args.update(verbose=ctx.obj.get("verbose", False), quiet=ctx.obj.get("quiet", False))
    config = config_manager.load_config(config_file=ctx.obj.get("config_file"), cli_args=cli_args)
    setup_logging(config.logging)
    return config_manager, config


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file path")
@click.option("--verbose", "-v", is_flag=True,
              help="Enable verbose logging")
@click.option("--quiet", "-q", is_flag=True,
              help="Enable quiet mode (warnings and errors only)")
@click.pass_context
def cli(ctx, config, verbose, quiet):
    """
    CloudFormation to Terraform Exporter

    Imports the resources of a deployed CloudFormation stack into Terraform
    state and writes the matching Terraform configuration.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_file"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet


@cli.command()
@click.argument("stack_name", required=False)
@click.option("--region", "-r", help="AWS region of the stack")
@click.option("--profile", "-p", help="AWS profile to use")
@click.option("--role-arn", help="IAM role ARN to assume")
@click.option("--workspace", "-w", "workspace_directory", help="Directory receiving the Terraform workspace")
@click.option("--terraform-path", help="Path to the terraform executable")
@click.option("--nested-stacks/--no-nested-stacks", "export_nested_stacks", default=None,
              help="Export nested stacks as child modules")
@click.option("--default-tag/--no-default-tag", "add_default_tag", default=None,
              help="Tag resources with the source stack name through the provider")
@click.option("--format/--no-format", "format_output", default=None,
              help="Run terraform fmt on the generated configuration")
@click.option("--validate/--no-validate", "validate_output", default=None,
              help="Run terraform validate on the generated configuration")
@click.option("--fix-plan/--no-fix-plan", "fix_plan_errors", default=None,
              help="Run terraform plan and patch the errors it reports")
@click.option("--overwrite", is_flag=True, default=None,
              help="Clear an existing workspace directory")
@click.pass_context
def export(ctx, stack_name, region, profile, role_arn, workspace_directory, terraform_path,
           export_nested_stacks, add_default_tag, format_output, validate_output, fix_plan_errors, overwrite):
    """
    Export a deployed stack to a Terraform workspace
    """
    try:
        _, config = _load_config(
            ctx,
            stack_name=stack_name,
            region=region,
            profile=profile,
            role_arn=role_arn,
            workspace_directory=workspace_directory,
            terraform_path=terraform_path,
            export_nested_stacks=export_nested_stacks,
            add_default_tag=add_default_tag,
            format_output=format_output,
            validate_output=validate_output,
            fix_plan_errors=fix_plan_errors,
            overwrite=overwrite or None,
        )

        click.echo(f"Exporting stack {config.stack.stack_name} to {config.export.workspace_directory}")
        result = Exporter(config).run()

        click.echo("")
        click.echo(tabulate(result.summary_rows(), tablefmt="grid"))
        _echo_messages("Warnings", result.warnings)
        _echo_messages("Errors", result.errors)

        if result.errors:
            click.echo(f"\nExport finished with {len(result.errors)} errors. Check the logs for details.")
        else:
            click.echo("\nExport completed successfully!")
            click.echo(f"   Run 'terraform plan' in {result.workspace_directory} to review the result")

    except (ExporterError, ValueError) as e:
        click.echo(f"Error Export failed: {str(e)}", err=True)
        sys.exit(1)


@cli.command(name="map")
@click.argument("template_file", type=click.Path(exists=True))
@click.option("--nested-stacks", is_flag=True, help="Treat nested stacks as child modules")
@click.pass_context
def map_template(ctx, template_file, nested_stacks):
    """
    Show how the resources of a template file would be mapped
    """
    try:
        _, config = _load_config(ctx)
        schema = AwsSchema.load(config.terraform.schema_file, config.terraform.type_map_file)
        template = Template.parse(Path(template_file).read_text(encoding="utf-8"))

        resources = [
            CloudFormationResource(r, StackResource(r.logical_id, "", r.type))
            for r in template.resources.values()
        ]
        mapper = ResourceMapper(schema, nested_stacks or config.export.export_nested_stacks)
        result = mapper.map_resources(resources)

        mapped = {m.logical_id: m.terraform_type for m in result.mappings}
        nested = {r.logical_id for r in result.nested_stacks}
        rows = []
        for resource in resources:
            if resource.logical_id in mapped:
                target = mapped[resource.logical_id]
            elif resource.logical_id in nested:
                target = "(child module)"
            else:
                target = "-"
            rows.append([resource.logical_id, resource.resource_type, target])

        click.echo(tabulate(rows, headers=["Logical ID", "CloudFormation Type", "Terraform Type"], tablefmt="grid"))
        _echo_messages("Warnings", result.warnings)

    except (ExporterError, ValueError, yaml.YAMLError) as e:
        click.echo(f"Error Mapping failed: {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@click.argument("resource_type")
@click.option("--path", "attribute_path", help="Show only this attribute, e.g. ebs_block_device.0.volume_id")
@click.pass_context
def schema(ctx, resource_type, attribute_path):
    """
    Show the attributes of a resource type

    RESOURCE_TYPE may be a Terraform or a CloudFormation type name.
    """
    try:
        _, config = _load_config(ctx)
        registry = AwsSchema.load(config.terraform.schema_file, config.terraform.type_map_file)
        resource_schema = registry.get_resource_schema(resource_type)

        if attribute_path:
            attributes = [(attribute_path, resource_schema.get_attribute_by_path(attribute_path))]
        else:
            attributes = list(resource_schema.iter_attributes())

        rows = [
            [path, value.type.name, _describe_mode(value), ", ".join(value.conflicts_with)]
            for path, value in attributes
        ]
        click.echo(f"{resource_schema.resource_type}:")
        click.echo(tabulate(rows, headers=["Attribute", "Type", "Mode", "Conflicts With"], tablefmt="grid"))

    except (ExporterError, ValueError) as e:
        click.echo(f"Error {str(e)}", err=True)
        sys.exit(1)


@cli.command()
@click.option("--output-file", "-o", default="cf2tf-export.yaml",
              help="Output configuration file")
@click.option("--format", "config_format", type=click.Choice(["yaml", "json"]),
              default="yaml", help="Configuration file format")
def init_config(output_file, config_format):
    """
    Generate a default configuration file
    """
    if os.path.exists(output_file):
        if not click.confirm(f"Configuration file {output_file} already exists. Overwrite?"):
            click.echo("Configuration file creation cancelled.")
            return

    try:
        with open(output_file, "w") as f:
            if config_format == "yaml":
                f.write(DEFAULT_CONFIG_TEMPLATE)
            else:
                json.dump(yaml.safe_load(DEFAULT_CONFIG_TEMPLATE), f, indent=2)
    except OSError as e:
        click.echo(f"Error Failed to create configuration file: {str(e)}", err=True)
        sys.exit(1)

    click.echo(f"Default configuration file created: {output_file}")
    click.echo("Edit this file to customize settings for your environment.")


@cli.command()
@click.pass_context
def validate_config(ctx):
    """
    Validate configuration file
    """
    try:
        config_manager, _ = _load_config(ctx)
    except ValueError as e:
        click.echo(f"Error Configuration validation failed: {str(e)}", err=True)
        sys.exit(1)

    click.echo("Configuration validation passed!")
    summary = config_manager.get_config_summary()
    click.echo(tabulate([[k, v] for k, v in summary.items()], headers=["Setting", "Value"], tablefmt="grid"))


def _describe_mode(value) -> str:
    if value.required:
        return "required"
    if value.optional and value.computed:
        return "optional, computed"
    if value.computed:
        return "computed"
    return "optional"


def _echo_messages(title: str, messages):
    if not messages:
        return
    click.echo(f"\n{title}:")
    for message in messages:
        click.echo(f"   {message}")


def main():
    """Main entry point for the CLI"""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nOperation cancelled by user.")
        sys.exit(1)


if __name__ == "__main__":
    main()
