#!/usr/bin/env python3
"""
Unit tests for the state file model
"""

import unittest
import sys
import os
import json
import tempfile
import shutil
from pathlib import Path

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.references import DirectReference
from cfn_terraform_exporter.state import StateFile

STATE = {
    "version": 4,
    "terraform_version": "1.5.7",
    "serial": 3,
    "lineage": "0d6c1d7e-0000-0000-0000-000000000000",
    "outputs": {},
    "resources": [
        {
            "mode": "managed",
            "type": "aws_vpc",
            "name": "Vpc",
            "provider": "provider[\"registry.terraform.io/hashicorp/aws\"]",
            "instances": [
                {"schema_version": 1, "attributes": {"id": "vpc-0abc", "cidr_block": "10.0.0.0/16"},
                 "sensitive_attributes": []}
            ]
        },
        {
            "module": "module.network",
            "mode": "managed",
            "type": "aws_subnet",
            "name": "Subnet",
            "provider": "provider[\"registry.terraform.io/hashicorp/aws\"]",
            "instances": [
                {"schema_version": 1, "attributes": {"id": "subnet-0def", "vpc_id": "vpc-0abc"}}
            ]
        },
        {
            "mode": "data",
            "type": "aws_region",
            "name": "current",
            "provider": "provider[\"registry.terraform.io/hashicorp/aws\"]",
            "instances": [{"schema_version": 0, "attributes": {"name": "us-east-1"}}]
        }
    ]
}


class TestStateFile(unittest.TestCase):
    """Test reading and writing state"""

    def setUp(self):
        self.state = StateFile.from_json(json.dumps(STATE))
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_addresses(self):
        addresses = [r.address for r in self.state.resources]
        self.assertEqual(addresses, ["aws_vpc.Vpc", "module.network.aws_subnet.Subnet", "data.aws_region.current"])
        self.assertEqual(len(list(self.state.managed_resources())), 2)

    def test_find_resource(self):
        subnet = self.state.find_resource("module.network.aws_subnet.Subnet")
        self.assertEqual(subnet.attributes["vpc_id"], "vpc-0abc")
        self.assertIsNone(self.state.find_resource("aws_subnet.Subnet"))
        self.assertIs(self.state.find_by_name("aws_subnet", "Subnet", "module.network"), subnet)

    def test_unknown_instance_fields_preserved(self):
        data = self.state.to_dict()
        self.assertEqual(data["resources"][0]["instances"][0]["sensitive_attributes"], [])
        self.assertEqual(data["lineage"], STATE["lineage"])
        self.assertEqual(data["resources"][1]["module"], "module.network")

    def test_references_survive_save_and_load(self):
        subnet = self.state.find_resource("module.network.aws_subnet.Subnet")
        subnet.attributes["vpc_id"] = DirectReference("aws_vpc.Vpc")

        path = Path(self.temp_dir) / "terraform.tfstate"
        self.state.save(path)
        raw = json.loads(path.read_text())
        self.assertEqual(
            raw["resources"][1]["instances"][0]["attributes"]["vpc_id"],
            {"__reference__": {"type": "DirectReference", "object_address": "aws_vpc.Vpc"}}
        )

        loaded = StateFile.load(path)
        vpc_id = loaded.find_resource("module.network.aws_subnet.Subnet").attributes["vpc_id"]
        self.assertEqual(vpc_id, DirectReference("aws_vpc.Vpc"))
        self.assertEqual(vpc_id.reference_expression, "aws_vpc.Vpc.id")

    def test_empty_state(self):
        state = StateFile()
        self.assertEqual(state.resources, [])
        self.assertEqual(state.to_dict()["version"], 4)


if __name__ == '__main__':
    unittest.main()
