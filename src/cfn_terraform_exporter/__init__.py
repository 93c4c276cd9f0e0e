"""
CloudFormation to Terraform Exporter

Imports the resources of a deployed CloudFormation stack into Terraform state
and regenerates Terraform configuration in which cross-resource dependencies
are references rather than literal values.
"""

__version__ = "1.0.0"

from .schema import AwsSchema
from .mapper import ResourceMapper
from .modules import ModuleInfo
from .preprocessor import EventQueuePreprocessor
from .emitter import HclEmitter
from .exporter import Exporter, ExportResult

__all__ = [
    "AwsSchema",
    "ResourceMapper",
    "ModuleInfo",
    "EventQueuePreprocessor",
    "HclEmitter",
    "Exporter",
    "ExportResult",
]
