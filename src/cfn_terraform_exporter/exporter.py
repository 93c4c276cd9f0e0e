#!/usr/bin/env python3
"""
Export Controller

Coordinates the export of one deployed stack: reading the stack, mapping and
importing its resources, turning captured literals into references and
writing the final Terraform configuration.
"""

import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import ToolConfig
from .dependencies import DependencyResolver
from .exceptions import ExporterError
from .intrinsics import IntrinsicResolver, camel_to_snake
from .mapper import ResourceMapper
from .modules import ModuleInfo
from .plan_fixer import PlanError, PlanFixer, parse_plan_output
from .runner import Runner, TerraformRunner, extract_error
from .schema import AwsSchema
from .stack_reader import Boto3StackReader, StackReader
from .state import StateFile
from .writer import HclWriter, write_workspace

logger = logging.getLogger(__name__)

WORK_DIRECTORY = ".cf2tf"
PULLED_STATE_FILE = "state.pulled.json"
REFERENCE_STATE_FILE = "state.references.json"

# Kept when an existing workspace is overwritten
_PRESERVED_ENTRIES = (".terraform", ".terraform.lock.hcl")


@dataclass
class ExportResult:
    """Outcome of one export run"""
    stack_name: str
    workspace_directory: str
    success: bool = False
    modules_count: int = 0
    total_resources: int = 0
    imported_resources: int = 0
    skipped_imports: int = 0
    failed_imports: int = 0
    references: int = 0
    resources_written: int = 0
    plan_errors: int = 0
    duration_seconds: float = 0.0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def summary_rows(self) -> List[List[Any]]:
        return [
            ["Stack", self.stack_name],
            ["Workspace", self.workspace_directory],
            ["Modules", self.modules_count],
            ["Resources mapped", self.total_resources],
            ["Imported", self.imported_resources],
            ["Skipped", self.skipped_imports],
            ["Failed", self.failed_imports],
            ["References", self.references],
            ["Resources written", self.resources_written],
            ["Plan errors", self.plan_errors],
            ["Warnings", len(self.warnings)],
            ["Errors", len(self.errors)],
        ]


class Exporter:
    """
    Main export controller

    Args:
        config: Tool configuration
        schema: Provider schema registry; loaded from the configured files when None
        stack_reader: Source of stack data; a boto3 reader when None
        runner: Terraform runner; spawns the terraform binary when None
    """

    def __init__(self,
                 config: ToolConfig,
                 schema: Optional[AwsSchema] = None,
                 stack_reader: Optional[StackReader] = None,
                 runner: Optional[Runner] = None):
        self.config = config
        self.workspace = Path(config.export.workspace_directory).expanduser()
        self.schema = schema or AwsSchema.load(config.terraform.schema_file, config.terraform.type_map_file)
        self.stack_reader = stack_reader or Boto3StackReader(
            region=config.stack.region,
            profile=config.stack.profile,
            role_arn=config.stack.role_arn,
        )
        self._runner = runner
        self.mapper = ResourceMapper(self.schema, config.export.export_nested_stacks)
        self.writer = HclWriter(
            self.schema,
            provider_version=config.terraform.aws_provider_version,
            add_default_tag=config.export.add_default_tag,
        )

    @property
    def runner(self) -> Runner:
        if self._runner is None:
            environment = {}
            if isinstance(self.stack_reader, Boto3StackReader):
                environment = self.stack_reader.credential_environment()
            self._runner = TerraformRunner(
                self.workspace,
                terraform_path=self.config.terraform.terraform_path,
                environment=environment,
                timeout=self.config.imports.import_timeout,
            )
        return self._runner

    def run(self, stack_name: Optional[str] = None) -> ExportResult:
        """
        Export a stack into the workspace directory

        Args:
            stack_name: Name or ARN of the stack, defaults to the configured one

        Returns:
            ExportResult with counts, warnings and per-resource errors

        Raises:
            ExporterError: A structural failure aborted the export
        """
        stack_name = stack_name or self.config.stack.stack_name
        if not stack_name:
            raise ExporterError("No stack name given")

        start_time = time.time()
        result = ExportResult(stack_name=stack_name, workspace_directory=str(self.workspace))
        logger.info(f"Exporting stack {stack_name} to {self.workspace}")

        # Phase 1: Read and map
        self._prepare_workspace()
        stack = self.stack_reader.read_stack(stack_name)
        root = ModuleInfo.build(stack, self.mapper, self.stack_reader, self.workspace)
        modules = list(root.walk())
        result.modules_count = len(modules)
        for module in modules:
            result.total_resources += len(module.mappings)
            result.warnings.extend(module.warnings)
            module.write_module_imports()

        # Phase 2: Import
        logger.info("Phase 2: Importing resources")
        output: List[str] = []
        self.runner.run("init", True, True, output, "-no-color", "-input=false")
        summary = root.import_resources(self.runner)
        result.imported_resources = summary.successful_imports
        result.skipped_imports = summary.skipped_imports
        result.failed_imports = summary.failed_imports
        result.warnings.extend(summary.warnings)
        result.errors.extend(summary.errors)

        # Phase 3: References
        logger.info("Phase 3: Resolving references")
        pulled = self._pull_state()
        state = StateFile.from_json(pulled)
        self._bind_attribute_values(root, StateFile.from_json(pulled))

        resolvers: Dict[str, IntrinsicResolver] = {}
        for module in modules:
            resolver = DependencyResolver(
                module.stack.template,
                self.schema,
                state,
                module.mappings,
                {child.logical_id: child.name for child in module.children},
            )
            resolution = resolver.resolve()
            result.references += resolution.references
            result.warnings.extend(resolution.warnings)
            resolvers[str(module.directory)] = resolver.resolver

        work_directory = self.workspace / WORK_DIRECTORY
        work_directory.mkdir(parents=True, exist_ok=True)
        if self.config.imports.create_backup:
            (work_directory / PULLED_STATE_FILE).write_text(pulled, encoding="utf-8")
        state.save(work_directory / REFERENCE_STATE_FILE)

        # Phase 4: Configuration
        logger.info("Phase 4: Writing configuration")
        written = write_workspace(self.writer, root, state, resolvers)
        result.resources_written = written.resources_written
        result.warnings.extend(written.warnings)
        result.errors.extend(written.errors)

        if self.config.terraform.format_output:
            self.runner.run("fmt", False, False, None, "-recursive")
        if self.config.terraform.fix_plan_errors:
            logger.info("Phase 5: Fixing plan errors")
            remaining = self._fix_plan_errors()
            result.plan_errors = len(remaining)
            result.errors.extend(f"ERROR: terraform plan: {e.describe()}" for e in remaining)
        if self.config.terraform.validate_output:
            output = []
            if not self.runner.run("validate", False, True, output, "-no-color"):
                result.errors.append(f"ERROR: terraform validate: {extract_error(output) or 'failed'}")

        result.success = True
        result.duration_seconds = round(time.time() - start_time, 2)
        logger.info(
            f"Exported {result.resources_written} of {result.total_resources} resources "
            f"with {len(result.warnings)} warnings and {len(result.errors)} errors"
        )
        return result

    def _prepare_workspace(self):
        """Create the workspace, clearing an old export when allowed"""
        if self.workspace.exists():
            entries = [p for p in self.workspace.iterdir() if p.name not in _PRESERVED_ENTRIES]
            if entries and not self.config.export.overwrite_existing:
                raise ExporterError(
                    f"Workspace {self.workspace} is not empty; remove it or enable overwrite_existing"
                )
            for entry in entries:
                if entry.is_dir():
                    shutil.rmtree(entry)
                else:
                    entry.unlink()
            logger.debug(f"Cleared {len(entries)} entries from {self.workspace}")
        self.workspace.mkdir(parents=True, exist_ok=True)

    def _fix_plan_errors(self) -> List[PlanError]:
        """
        Run ``terraform plan`` and patch the errors it reports

        Stops when the plan succeeds, when a pass fixes nothing or reports
        the same errors as the pass before, or after ``max_plan_passes`` fix
        passes.

        Returns:
            The errors of the last plan
        """
        fixer = PlanFixer(self.workspace)
        max_passes = self.config.terraform.max_plan_passes
        previous = None
        errors: List[PlanError] = []

        for plan_pass in range(1, max_passes + 2):
            output: List[str] = []
            if self.runner.run("plan", False, False, output, "-json", "-input=false"):
                logger.info(f"Plan pass {plan_pass}: no errors")
                return []

            errors = parse_plan_output(output)
            if not errors:
                message = extract_error(output) or "terraform plan failed"
                return [PlanError(summary=message)]

            signature = [e.signature for e in errors]
            if signature == previous or plan_pass > max_passes:
                break
            previous = signature

            fixed = fixer.fix_all(errors)
            logger.info(f"Plan pass {plan_pass}: fixed {fixed} of {len(errors)} errors")
            if not fixed:
                break

        logger.warning(f"{len(errors)} plan errors could not be fixed automatically")
        return errors

    def _pull_state(self) -> str:
        output: List[str] = []
        self.runner.run("state", True, False, output, "pull")
        return "\n".join(output) or "{}"

    def _bind_attribute_values(self, root: ModuleInfo, state: StateFile):
        """Let each template evaluate Fn::GetAtt from the imported attributes"""
        for module in root.walk():
            addresses = {m.logical_id: m for m in module.mappings if m.is_imported}

            def resolve_attribute(logical_id: str, attribute: str, addresses=addresses):
                mapping = addresses.get(logical_id)
                if mapping is None:
                    return None
                resource = state.find_resource(mapping.address)
                if resource is None:
                    return None
                traits = self.schema.get_traits(mapping.terraform_type)
                name = traits.attribute_map.get(attribute) or camel_to_snake(attribute)
                return resource.attributes.get(name)

            module.stack.template.attribute_resolver = resolve_attribute
