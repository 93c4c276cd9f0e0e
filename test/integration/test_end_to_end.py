#!/usr/bin/env python3
"""
End-to-end integration tests for the stack exporter
"""

import unittest
import sys
import os
import tempfile
import shutil
import json
from pathlib import Path

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.config import ToolConfig
from cfn_terraform_exporter.exceptions import ExporterError
from cfn_terraform_exporter.exporter import Exporter
from cfn_terraform_exporter.runner import Runner
from cfn_terraform_exporter.schema import AwsSchema
from cfn_terraform_exporter.stack_reader import (
    ReadStackResult,
    StackReader,
    StackResource,
    pair_resources,
    pseudo_parameters_from_arn,
)
from cfn_terraform_exporter.template import Template

FIXTURES = Path(__file__).resolve().parents[1] / "fixtures"
STACK_ARN = "arn:aws:cloudformation:us-east-1:123456789012:stack/demo/11111111-aaaa-bbbb-cccc-000000000000"
PROVIDER = "provider[\"registry.terraform.io/hashicorp/aws\"]"

VPC_ATTRIBUTES = {
    "arn": "arn:aws:ec2:us-east-1:123456789012:vpc/vpc-0abc",
    "assign_generated_ipv6_cidr_block": False,
    "cidr_block": "10.0.0.0/16",
    "default_network_acl_id": "acl-0abc",
    "default_route_table_id": "rtb-0abc",
    "default_security_group_id": "sg-0abc",
    "dhcp_options_id": "dopt-0abc",
    "enable_dns_hostnames": False,
    "enable_dns_support": True,
    "id": "vpc-0abc",
    "instance_tenancy": "default",
    "ipv6_association_id": "",
    "ipv6_cidr_block": "",
    "main_route_table_id": "rtb-0abc",
    "owner_id": "123456789012",
    "tags": {"Name": "dev-vpc"},
    "tags_all": {"Name": "dev-vpc"},
}

SUBNET_ATTRIBUTES = {
    "arn": "arn:aws:ec2:us-east-1:123456789012:subnet/subnet-0def",
    "assign_ipv6_address_on_creation": False,
    "availability_zone": "us-east-1a",
    "availability_zone_id": "use1-az1",
    "cidr_block": "10.0.1.0/24",
    "customer_owned_ipv4_pool": "",
    "id": "subnet-0def",
    "ipv6_cidr_block": "",
    "ipv6_cidr_block_association_id": "",
    "map_customer_owned_ip_on_launch": False,
    "map_public_ip_on_launch": False,
    "outpost_arn": "",
    "owner_id": "123456789012",
    "tags": {},
    "tags_all": {},
    "vpc_id": "vpc-0abc",
}


def imported_state():
    return {
        "version": 4,
        "terraform_version": "1.5.7",
        "serial": 2,
        "lineage": "5e1f2a3b-0000-0000-0000-000000000000",
        "outputs": {},
        "resources": [
            {"mode": "managed", "type": "aws_vpc", "name": "Vpc", "provider": PROVIDER,
             "instances": [{"schema_version": 1, "attributes": dict(VPC_ATTRIBUTES)}]},
            {"mode": "managed", "type": "aws_subnet", "name": "PublicSubnet", "provider": PROVIDER,
             "instances": [{"schema_version": 1, "attributes": dict(SUBNET_ATTRIBUTES)}]},
        ],
    }


class FakeStackReader(StackReader):
    """Serves the sample stack without calling AWS"""

    def read_stack(self, stack_name):
        template = Template.parse((FIXTURES / "sample_stack.yaml").read_text())
        stack_resources = [
            StackResource("Vpc", "vpc-0abc", "AWS::EC2::VPC"),
            StackResource("PublicSubnet", "subnet-0def", "AWS::EC2::Subnet"),
            StackResource("ReadPolicy", "demo-ReadP-1AB2C3", "AWS::IAM::Policy"),
            StackResource("Deployment", "d1e2f3", "AWS::ApiGateway::Deployment"),
        ]
        parameters = {"EnvName": "dev"}
        template.bind_stack(
            physical_ids={r.logical_id: r.physical_id for r in stack_resources},
            parameter_values=parameters,
            pseudo_parameters=pseudo_parameters_from_arn(STACK_ARN, stack_name),
            availability_zones=["us-east-1a", "us-east-1b"],
        )
        return ReadStackResult(
            stack_name=stack_name,
            stack_id=STACK_ARN,
            template=template,
            resources=pair_resources(template, stack_resources),
            parameters=parameters,
            outputs={"VpcId": "vpc-0abc", "SubnetAz": "us-east-1a"},
        )


class FakeRunner(Runner):
    """Answers terraform commands from a prepared state"""

    def __init__(self):
        self.calls = []

    def run(self, command, throw_on_error, echo, output_sink, *args):
        self.calls.append((command,) + args)
        if command == "state" and args == ("pull",) and output_sink is not None:
            output_sink.extend(json.dumps(imported_state(), indent=2).splitlines())
        return True


def plan_diagnostic(summary, detail, line, code, context="resource \"aws_subnet\" \"PublicSubnet\""):
    return json.dumps({
        "@level": "error",
        "@message": f"Error: {summary}",
        "@module": "terraform.ui",
        "diagnostic": {
            "severity": "error",
            "summary": summary,
            "detail": detail,
            "range": {
                "filename": "main.tf",
                "start": {"line": line, "column": 3, "byte": 0},
                "end": {"line": line, "column": 30, "byte": 0},
            },
            "snippet": {"context": context, "code": code, "start_line": line},
        },
        "type": "diagnostic",
    })


class PlanErrorRunner(FakeRunner):
    """Reports a plan error against one line of main.tf until that line is gone"""

    def __init__(self, workspace, line_text, summary="Unsupported argument"):
        super().__init__()
        self.workspace = workspace
        self.line_text = line_text
        self.summary = summary

    def run(self, command, throw_on_error, echo, output_sink, *args):
        super().run(command, throw_on_error, echo, output_sink, *args)
        if command != "plan":
            return True

        lines = (self.workspace / "main.tf").read_text().splitlines()
        if self.line_text not in lines:
            return True
        line = lines.index(self.line_text) + 1
        output_sink.append(json.dumps({"@level": "info", "@message": "Terraform 1.5.7", "type": "version"}))
        output_sink.append(plan_diagnostic(self.summary, "An argument is not expected here.", line, self.line_text))
        return False


class TestEndToEndExport(unittest.TestCase):
    """Export the sample stack into a temporary workspace"""

    @classmethod
    def setUpClass(cls):
        cls.schema = AwsSchema.load()

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.workspace = Path(self.temp_dir) / "workspace"
        self.config = ToolConfig()
        self.config.stack.stack_name = "demo"
        self.config.export.workspace_directory = str(self.workspace)
        self.runner = FakeRunner()
        self.exporter = Exporter(self.config, schema=self.schema, stack_reader=FakeStackReader(), runner=self.runner)

    def tearDown(self):
        shutil.rmtree(self.temp_dir)

    def test_result_counts(self):
        result = self.exporter.run()

        self.assertTrue(result.success)
        self.assertEqual(result.modules_count, 1)
        self.assertEqual(result.total_resources, 2)
        self.assertEqual(result.imported_resources, 2)
        self.assertEqual(result.failed_imports, 0)
        self.assertEqual(result.resources_written, 2)
        self.assertEqual(result.references, 4)
        self.assertEqual(result.errors, [])

    def test_warnings(self):
        result = self.exporter.run()

        self.assertIn(
            "Resource \"Deployment\" (AWS::ApiGateway::Deployment): Not supported for import.", result.warnings
        )
        self.assertIn(
            "aws_subnet.PublicSubnet: Attributes \"availability_zone\" and \"availability_zone_id\" "
            "are mutually exclusive; removed \"availability_zone_id\".",
            result.warnings
        )
        self.assertFalse(any("ReadPolicy" in w for w in result.warnings))

    def test_terraform_commands(self):
        self.exporter.run()

        self.assertEqual(self.runner.calls, [
            ("init", "-no-color", "-input=false"),
            ("import", "-no-color", "aws_vpc.Vpc", "vpc-0abc"),
            ("import", "-no-color", "aws_subnet.PublicSubnet", "subnet-0def"),
            ("state", "pull"),
            ("fmt", "-recursive"),
            ("plan", "-json", "-input=false"),
        ])

    def test_main_configuration(self):
        self.exporter.run()
        main_tf = (self.workspace / "main.tf").read_text()

        self.assertIn("provider \"aws\" {\n  region = \"us-east-1\"\n}", main_tf)
        self.assertIn("data \"aws_availability_zones\" \"available\" {\n  state = \"available\"\n}", main_tf)
        self.assertIn("locals {\n  mappings = {", main_tf)
        self.assertIn("resource \"aws_vpc\" \"Vpc\" {", main_tf)
        self.assertIn("  cidr_block = local.mappings.SubnetConfig.Vpc.Cidr\n", main_tf)
        self.assertIn("    Name = \"${var.EnvName}-vpc\"\n", main_tf)
        self.assertIn("resource \"aws_subnet\" \"PublicSubnet\" {", main_tf)
        self.assertIn("  vpc_id = aws_vpc.Vpc.id\n", main_tf)
        self.assertIn("  availability_zone = data.aws_availability_zones.available.names[0]\n", main_tf)
        self.assertIn("  cidr_block = \"10.0.1.0/24\"\n", main_tf)

        self.assertNotIn("availability_zone_id", main_tf)
        self.assertNotIn("tags_all", main_tf)
        self.assertNotIn("owner_id", main_tf)
        self.assertNotIn("aws_iam_policy", main_tf)
        self.assertNotIn("aws_api_gateway_deployment", main_tf)

    def test_outputs(self):
        self.exporter.run()
        main_tf = (self.workspace / "main.tf").read_text()

        self.assertIn(
            "output \"VpcId\" {\n  description = \"Id of the VPC\"\n  value = aws_vpc.Vpc.id\n}", main_tf
        )
        self.assertIn("output \"SubnetAz\" {\n  value = aws_subnet.PublicSubnet.availability_zone\n}", main_tf)

    def test_variables(self):
        self.exporter.run()

        variables_tf = (self.workspace / "variables.tf").read_text()
        self.assertIn("variable \"EnvName\" {", variables_tf)
        self.assertIn("  default = \"dev\"\n", variables_tf)
        self.assertIn("contains([\"dev\", \"prod\"], var.EnvName)", variables_tf)

        # Deployed with the default value
        self.assertFalse((self.workspace / "terraform.tfvars").exists())
        self.assertFalse((self.workspace / "module_imports.tf").exists())

    def test_working_copies(self):
        self.exporter.run()

        work_directory = self.workspace / ".cf2tf"
        self.assertTrue((work_directory / "state.pulled.json").exists())

        with open(work_directory / "state.references.json") as f:
            saved = json.load(f)
        subnet = [r for r in saved["resources"] if r["type"] == "aws_subnet"][0]
        self.assertEqual(
            subnet["instances"][0]["attributes"]["vpc_id"],
            {"__reference__": {"type": "DirectReference", "object_address": "aws_vpc.Vpc"}}
        )

    def test_existing_workspace_requires_overwrite(self):
        self.exporter.run()

        with self.assertRaises(ExporterError):
            self.exporter.run()

        self.config.export.overwrite_existing = True
        result = self.exporter.run()
        self.assertTrue(result.success)

    def test_plan_errors_are_fixed(self):
        runner = PlanErrorRunner(self.workspace, "  cidr_block = \"10.0.1.0/24\"")
        exporter = Exporter(self.config, schema=self.schema, stack_reader=FakeStackReader(), runner=runner)
        result = exporter.run()

        self.assertEqual([c for c in runner.calls if c[0] == "plan"], [("plan", "-json", "-input=false")] * 2)
        self.assertEqual(result.plan_errors, 0)
        self.assertEqual(result.errors, [])

        main_tf = (self.workspace / "main.tf").read_text()
        self.assertNotIn("10.0.1.0/24", main_tf)
        self.assertIn("  vpc_id = aws_vpc.Vpc.id", main_tf)

    def test_unfixable_plan_error_is_reported(self):
        runner = PlanErrorRunner(self.workspace, "  vpc_id = aws_vpc.Vpc.id", summary="Invalid reference")
        exporter = Exporter(self.config, schema=self.schema, stack_reader=FakeStackReader(), runner=runner)
        result = exporter.run()

        self.assertEqual(len([c for c in runner.calls if c[0] == "plan"]), 1)
        self.assertEqual(result.plan_errors, 1)
        self.assertEqual(len(result.errors), 1)
        self.assertTrue(result.errors[0].startswith("ERROR: terraform plan: Invalid reference (main.tf:"))

    def test_plan_phase_can_be_disabled(self):
        self.config.terraform.fix_plan_errors = False
        self.exporter.run()
        self.assertNotIn("plan", [c[0] for c in self.runner.calls])

    def test_missing_stack_name(self):
        self.config.stack.stack_name = None
        with self.assertRaises(ExporterError):
            self.exporter.run()


if __name__ == '__main__':
    unittest.main()
