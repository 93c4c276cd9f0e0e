#!/usr/bin/env python3
"""
Unit tests for Terraform references
"""

import unittest
import sys
import os
import json

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.references import (
    DataSourceReference,
    DirectReference,
    FunctionReference,
    IndirectReference,
    InputVariableReference,
    InterpolationReference,
    MapReference,
    ModuleReference,
    Reference,
    decode_references,
    encode_references,
)


class TestReferenceExpressions(unittest.TestCase):
    """Test the expression each reference renders to"""

    def test_direct_reference(self):
        self.assertEqual(DirectReference("aws_vpc.Vpc").reference_expression, "aws_vpc.Vpc.id")

    def test_indirect_reference(self):
        reference = IndirectReference("aws_iam_role.Role.arn")
        self.assertEqual(reference.reference_expression, "aws_iam_role.Role.arn")

    def test_input_variable_with_index(self):
        self.assertEqual(InputVariableReference("Subnets").reference_expression, "var.Subnets")
        self.assertEqual(InputVariableReference("Subnets", 1).reference_expression, "var.Subnets[1]")

    def test_data_source_reference(self):
        reference = DataSourceReference("aws_region", "current", "name")
        self.assertEqual(reference.reference_expression, "data.aws_region.current.name")
        self.assertEqual(reference.block_address, "aws_region.current")

    def test_map_and_module_references(self):
        self.assertEqual(MapReference("local.mappings.Env.dev.Size").reference_expression,
                         "local.mappings.Env.dev.Size")
        self.assertEqual(ModuleReference("network.VpcId").reference_expression, "module.network.VpcId")

    def test_interpolation_is_quoted(self):
        self.assertEqual(InterpolationReference("${var.Env}-bucket").reference_expression, '"${var.Env}-bucket"')

    def test_function_reference(self):
        reference = FunctionReference("join", ["-", [InputVariableReference("Env"), "bucket"]])
        self.assertEqual(reference.reference_expression, 'join("-", [var.Env, "bucket"])')

    def test_function_single_reference_argument_is_not_wrapped(self):
        reference = FunctionReference("join", [",", [InputVariableReference("Subnets")]])
        self.assertEqual(reference.reference_expression, 'join(",", var.Subnets)')

    def test_function_with_index(self):
        reference = FunctionReference("split", [",", InputVariableReference("Csv")], 2)
        self.assertEqual(reference.reference_expression, 'split(",", var.Csv)[2]')

    def test_equality(self):
        self.assertEqual(DirectReference("aws_vpc.Vpc"), DirectReference("aws_vpc.Vpc"))
        self.assertNotEqual(DirectReference("aws_vpc.Vpc"), IndirectReference("aws_vpc.Vpc.id"))
        self.assertNotEqual(DirectReference("aws_vpc.Vpc"), "aws_vpc.Vpc.id")


class TestReferenceEncoding(unittest.TestCase):
    """Test the tagged JSON encoding"""

    def test_round_trip_through_json(self):
        attributes = {
            "vpc_id": DirectReference("aws_vpc.Vpc"),
            "availability_zone": DataSourceReference("aws_availability_zones", "available", "names[0]"),
            "user_data_base64": FunctionReference("base64encode", [InterpolationReference("${var.Env}")]),
            "security_groups": [IndirectReference("aws_security_group.Web.id")],
            "tags": {"Name": "literal"},
        }
        text = json.dumps(encode_references(attributes))
        decoded = decode_references(json.loads(text))

        self.assertEqual(decoded, attributes)
        self.assertEqual(decoded["user_data_base64"].reference_expression, 'base64encode("${var.Env}")')

    def test_literal_strings_are_never_decoded(self):
        value = {"vpc_id": "aws_vpc.Vpc.id"}
        self.assertEqual(decode_references(value), value)

    def test_unknown_type_rejected(self):
        with self.assertRaises(ValueError):
            Reference.from_json({"__reference__": {"type": "NoSuchReference", "object_address": "x"}})

    def test_not_encoded_rejected(self):
        with self.assertRaises(ValueError):
            Reference.from_json({"object_address": "x"})


if __name__ == '__main__':
    unittest.main()
