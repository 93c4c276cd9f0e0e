#!/usr/bin/env python3
"""
Exporter Settings

Loads, validates and saves the settings of the exporter. Values come from
defaults, a YAML or JSON file, ``CF2TF_*`` environment variables and command
line arguments, in increasing order of precedence.
"""

import os
import yaml
import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from jsonschema import validate, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_LOCATIONS = [
    "./cf2tf-export.yaml",
    "./cf2tf-export.yml",
    "./cf2tf-export.json",
    "~/.cf2tf/export.yaml",
]


@dataclass
class StackConfig:
    """The stack to export and how to reach it"""
    stack_name: Optional[str] = None
    region: Optional[str] = None
    profile: Optional[str] = None
    role_arn: Optional[str] = None


@dataclass
class TerraformConfig:
    """Terraform binary, provider and schema data"""
    terraform_path: Optional[str] = None
    aws_provider_version: str = ">= 4.0"
    schema_file: Optional[str] = None
    type_map_file: Optional[str] = None
    format_output: bool = True
    validate_output: bool = False
    fix_plan_errors: bool = True
    max_plan_passes: int = 5


@dataclass
class ExportConfig:
    """Workspace layout"""
    workspace_directory: str = "./terraform_export"
    export_nested_stacks: bool = False
    add_default_tag: bool = False
    overwrite_existing: bool = False


@dataclass
class ImportConfig:
    """Terraform import behaviour"""
    create_backup: bool = True
    import_timeout: int = 300  # seconds


@dataclass
class LoggingConfig:
    """Log level, format and destinations"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    console: bool = True
    max_file_size: int = 10485760  # 10MB
    backup_count: int = 5


@dataclass
class ToolConfig:
    """Main configuration of the exporter"""
    stack: StackConfig = field(default_factory=StackConfig)
    terraform: TerraformConfig = field(default_factory=TerraformConfig)
    export: ExportConfig = field(default_factory=ExportConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigManager:
    """Configuration manager of the exporter"""

    # Every section rejects unknown keys
    CONFIG_SCHEMA = {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "stack": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "stack_name": {"type": ["string", "null"]},
                    "region": {"type": ["string", "null"]},
                    "profile": {"type": ["string", "null"]},
                    "role_arn": {"type": ["string", "null"], "pattern": "^arn:"}
                }
            },
            "terraform": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "terraform_path": {"type": ["string", "null"]},
                    "aws_provider_version": {"type": "string"},
                    "schema_file": {"type": ["string", "null"]},
                    "type_map_file": {"type": ["string", "null"]},
                    "format_output": {"type": "boolean"},
                    "validate_output": {"type": "boolean"},
                    "fix_plan_errors": {"type": "boolean"},
                    "max_plan_passes": {"type": "integer", "minimum": 1}
                }
            },
            "export": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "workspace_directory": {"type": "string", "minLength": 1},
                    "export_nested_stacks": {"type": "boolean"},
                    "add_default_tag": {"type": "boolean"},
                    "overwrite_existing": {"type": "boolean"}
                }
            },
            "imports": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "create_backup": {"type": "boolean"},
                    "import_timeout": {"type": "integer", "minimum": 30}
                }
            },
            "logging": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
                    },
                    "format": {"type": "string"},
                    "file": {"type": ["string", "null"]},
                    "console": {"type": "boolean"},
                    "max_file_size": {"type": "integer", "minimum": 1024},
                    "backup_count": {"type": "integer", "minimum": 1}
                }
            }
        }
    }

    # Environment variable -> (section, key, converter)
    ENVIRONMENT_VARIABLES = {
        "CF2TF_STACK_NAME": ("stack", "stack_name", str),
        "CF2TF_REGION": ("stack", "region", str),
        "CF2TF_PROFILE": ("stack", "profile", str),
        "CF2TF_ROLE_ARN": ("stack", "role_arn", str),
        "CF2TF_TERRAFORM_PATH": ("terraform", "terraform_path", str),
        "CF2TF_WORKSPACE_DIR": ("export", "workspace_directory", str),
        "CF2TF_EXPORT_NESTED_STACKS": ("export", "export_nested_stacks", lambda v: v.lower() == "true"),
        "CF2TF_OVERWRITE": ("export", "overwrite_existing", lambda v: v.lower() == "true"),
        "CF2TF_IMPORT_TIMEOUT": ("imports", "import_timeout", int),
        "CF2TF_LOG_LEVEL": ("logging", "level", str.upper),
        "CF2TF_LOG_FILE": ("logging", "file", str),
    }

    # CLI argument -> (section, key)
    CLI_ARGUMENTS = {
        "stack_name": ("stack", "stack_name"),
        "region": ("stack", "region"),
        "profile": ("stack", "profile"),
        "role_arn": ("stack", "role_arn"),
        "terraform_path": ("terraform", "terraform_path"),
        "workspace_directory": ("export", "workspace_directory"),
        "export_nested_stacks": ("export", "export_nested_stacks"),
        "add_default_tag": ("export", "add_default_tag"),
        "overwrite": ("export", "overwrite_existing"),
        "format_output": ("terraform", "format_output"),
        "validate_output": ("terraform", "validate_output"),
        "fix_plan_errors": ("terraform", "fix_plan_errors"),
    }

    def __init__(self):
        self.config = ToolConfig()
        self._config_sources: List[str] = []

    def load_config(self,
                    config_file: Optional[str] = None,
                    cli_args: Optional[Dict[str, Any]] = None,
                    env_vars: bool = True) -> ToolConfig:
        """
        Build the exporter settings

        Later sources override earlier ones: defaults, then the configuration
        file (``config_file`` or the first of DEFAULT_CONFIG_LOCATIONS that
        exists), then ``CF2TF_*`` variables, then command line arguments.

        Args:
            config_file: Explicit YAML or JSON file
            cli_args: Command line values; None entries are ignored
            env_vars: Read ``CF2TF_*`` environment variables

        Returns:
            The merged ToolConfig

        Raises:
            ValueError: A source cannot be parsed or the result is invalid
        """
        self.config = ToolConfig()
        self._config_sources = ["defaults"]

        path = config_file or self._find_config_file()
        if path:
            self._load_from_file(path)
        if env_vars:
            self._load_from_env()
        if cli_args:
            self._apply_cli_args(cli_args)

        self._check(self._config_to_dict())
        logger.info(f"Settings merged from {', '.join(self._config_sources)}")
        return self.config

    @staticmethod
    def _find_config_file() -> Optional[str]:
        for location in DEFAULT_CONFIG_LOCATIONS:
            candidate = os.path.expanduser(location)
            if os.path.isfile(candidate):
                return candidate
        return None

    def _load_from_file(self, config_file: str):
        path = Path(config_file).expanduser()
        if not path.is_file():
            logger.warning(f"Ignoring missing settings file {config_file}")
            return

        loader = _FILE_LOADERS.get(path.suffix.lower())
        if loader is None:
            logger.warning(f"Ignoring settings file {config_file}: expected .yaml, .yml or .json")
            return

        try:
            with open(path, "r", encoding="utf-8") as f:
                values = loader(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Cannot parse configuration file {config_file}: {str(e)}") from e

        if values:
            self._merge_config(values, f"file:{config_file}")

    def _load_from_env(self):
        values: Dict[str, Dict[str, Any]] = {}
        for variable, (section, key, convert) in self.ENVIRONMENT_VARIABLES.items():
            raw = os.getenv(variable)
            if not raw:
                continue
            try:
                values.setdefault(section, {})[key] = convert(raw)
            except ValueError:
                logger.warning(f"Ignoring {variable}: cannot convert \"{raw}\"")

        if values:
            self._merge_config(values, "environment")

    def _apply_cli_args(self, cli_args: Dict[str, Any]):
        values: Dict[str, Dict[str, Any]] = {}
        for argument, (section, key) in self.CLI_ARGUMENTS.items():
            if cli_args.get(argument) is not None:
                values.setdefault(section, {})[key] = cli_args[argument]

        # --verbose wins over --quiet
        if cli_args.get("verbose"):
            values.setdefault("logging", {})["level"] = "DEBUG"
        elif cli_args.get("quiet"):
            values.setdefault("logging", {})["level"] = "WARNING"

        if values:
            self._merge_config(values, "cli_args")

    def _merge_config(self, values: Dict[str, Any], source: str):
        """Overlay one source; unknown keys fail validation before the dataclasses see them"""
        merged = self._config_to_dict()
        _deep_update(merged, values)
        self._check(merged)
        self.config = self._dict_to_config(merged)
        self._config_sources.append(source)
        logger.debug(f"Applied settings from {source}")

    def _check(self, config_dict: Dict[str, Any]):
        try:
            validate(instance=config_dict, schema=self.CONFIG_SCHEMA)
        except ValidationError as e:
            where = ".".join(str(p) for p in e.absolute_path) or "configuration"
            logger.error(f"Invalid setting {where}: {e.message}")
            raise ValueError(f"Invalid configuration: {where}: {e.message}") from e

    def _config_to_dict(self) -> Dict[str, Any]:
        return asdict(self.config)

    @staticmethod
    def _dict_to_config(config_dict: Dict[str, Any]) -> ToolConfig:
        return ToolConfig(
            stack=StackConfig(**config_dict.get("stack", {})),
            terraform=TerraformConfig(**config_dict.get("terraform", {})),
            export=ExportConfig(**config_dict.get("export", {})),
            imports=ImportConfig(**config_dict.get("imports", {})),
            logging=LoggingConfig(**config_dict.get("logging", {}))
        )

    def save_config(self, output_file: str, format: str = "yaml"):
        """
        Write the current settings

        Raises:
            ValueError: ``format`` is neither yaml nor json
        """
        format = format.lower()
        if format not in ("yaml", "json"):
            raise ValueError(f"Unsupported format: {format}")

        settings = self._config_to_dict()
        with open(output_file, "w", encoding="utf-8") as f:
            if format == "json":
                json.dump(settings, f, indent=2)
            else:
                yaml.safe_dump(settings, f, default_flow_style=False, sort_keys=False)

        logger.info(f"Wrote settings to {output_file}")

    def get_config_summary(self) -> Dict[str, Any]:
        return {
            "sources": self._config_sources,
            "stack_name": self.config.stack.stack_name,
            "region": self.config.stack.region,
            "workspace_directory": self.config.export.workspace_directory,
            "export_nested_stacks": self.config.export.export_nested_stacks,
            "logging_level": self.config.logging.level,
        }


def _deep_update(target: Dict[str, Any], updates: Dict[str, Any]):
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_update(target[key], value)
        else:
            target[key] = value


_FILE_LOADERS = {
    ".yaml": yaml.safe_load,
    ".yml": yaml.safe_load,
    ".json": json.load,
}


# Written by `cf2tf-export init-config`
DEFAULT_CONFIG_TEMPLATE = """
# CloudFormation to Terraform Exporter Configuration

stack:
  stack_name: null  # Name or ARN of the stack to export
  region: null  # Defaults to the region of the AWS profile
  profile: null  # AWS profile to use
  role_arn: null  # IAM role to assume

terraform:
  terraform_path: null  # Located on PATH when null
  aws_provider_version: ">= 4.0"
  schema_file: null  # Provider schema JSON, packaged copy when null
  type_map_file: null  # CloudFormation to Terraform type map, packaged copy when null
  format_output: true  # Run terraform fmt on the result
  validate_output: false  # Run terraform validate on the result
  fix_plan_errors: true  # Run terraform plan and patch the errors it reports
  max_plan_passes: 5  # Plan and fix at most this many times

export:
  workspace_directory: "./terraform_export"
  export_nested_stacks: false  # Export nested stacks as child modules
  add_default_tag: false  # Tag resources with the source stack name
  overwrite_existing: false

imports:
  create_backup: true  # Keep the state terraform wrote before references were added
  import_timeout: 300

logging:
  level: INFO  # DEBUG, INFO, WARNING, ERROR, CRITICAL
  format: "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
  file: null  # Log file path (null for no file logging)
  console: true
  max_file_size: 10485760  # 10MB
  backup_count: 5
"""
