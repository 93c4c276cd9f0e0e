#!/usr/bin/env python3
"""
Terraform State File

In-memory model of ``terraform.tfstate``. Attribute values are plain JSON
values or ``Reference`` objects; references are written with their tagged
encoding and decoded again on load.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

from .references import decode_references, encode_references

logger = logging.getLogger(__name__)


@dataclass
class StateResourceInstance:
    """One instance of a state resource"""
    attributes: Dict[str, Any] = field(default_factory=dict)
    schema_version: int = 0
    dependencies: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateResourceInstance":
        extra = {k: v for k, v in data.items() if k not in ("attributes", "schema_version", "dependencies")}
        return cls(
            attributes=decode_references(data.get("attributes") or {}),
            schema_version=data.get("schema_version", 0),
            dependencies=list(data.get("dependencies") or []),
            extra=extra,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {"schema_version": self.schema_version, "attributes": encode_references(self.attributes)}
        data.update(self.extra)
        if self.dependencies:
            data["dependencies"] = list(self.dependencies)
        return data


@dataclass
class StateResource:
    """A resource entry in the state file"""
    type: str
    name: str
    mode: str = "managed"
    module: Optional[str] = None
    provider: str = "provider[\"registry.terraform.io/hashicorp/aws\"]"
    instances: List[StateResourceInstance] = field(default_factory=list)

    @property
    def address(self) -> str:
        local_address = f"{self.type}.{self.name}" if self.mode == "managed" else f"data.{self.type}.{self.name}"
        return f"{self.module}.{local_address}" if self.module else local_address

    @property
    def attributes(self) -> Dict[str, Any]:
        """Attributes of the first instance; exported resources never use count or for_each"""
        return self.instances[0].attributes if self.instances else {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StateResource":
        return cls(
            type=data["type"],
            name=data["name"],
            mode=data.get("mode", "managed"),
            module=data.get("module"),
            provider=data.get("provider", cls.provider),
            instances=[StateResourceInstance.from_dict(i) for i in data.get("instances") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {}
        if self.module:
            data["module"] = self.module
        data.update({
            "mode": self.mode,
            "type": self.type,
            "name": self.name,
            "provider": self.provider,
            "instances": [i.to_dict() for i in self.instances],
        })
        return data


class StateFile:
    """
    Terraform state document

    Args:
        data: Decoded JSON of a version 4 state file
    """

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        data = data or {}
        self.version = data.get("version", 4)
        self.terraform_version = data.get("terraform_version")
        self.serial = data.get("serial", 0)
        self.lineage = data.get("lineage")
        self.outputs = data.get("outputs") or {}
        self.resources = [StateResource.from_dict(r) for r in data.get("resources") or []]

    @classmethod
    def from_json(cls, text: str) -> "StateFile":
        return cls(json.loads(text))

    @classmethod
    def load(cls, path: Union[str, Path]) -> "StateFile":
        with open(path, "r", encoding="utf-8") as f:
            return cls(json.load(f))

    def managed_resources(self) -> Iterator[StateResource]:
        return (r for r in self.resources if r.mode == "managed")

    def find_resource(self, address: str) -> Optional[StateResource]:
        for resource in self.resources:
            if resource.address == address:
                return resource
        return None

    def find_by_name(self, resource_type: str, name: str, module: Optional[str] = None) -> Optional[StateResource]:
        for resource in self.resources:
            if resource.type == resource_type and resource.name == name and resource.module == module:
                return resource
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = {"version": self.version}
        if self.terraform_version:
            data["terraform_version"] = self.terraform_version
        data["serial"] = self.serial
        if self.lineage:
            data["lineage"] = self.lineage
        data["outputs"] = self.outputs
        data["resources"] = [r.to_dict() for r in self.resources]
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def save(self, path: Union[str, Path]):
        with open(path, "w", encoding="utf-8") as f:
            f.write(self.to_json())
        logger.debug(f"Wrote state with {len(self.resources)} resources to {path}")
