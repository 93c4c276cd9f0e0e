#!/usr/bin/env python3
"""
Unit tests for the provider schema registry
"""

import unittest
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.exceptions import (
    AttributeNotFoundError,
    AttributePathOrderError,
    ResourceSchemaNotFoundError,
)
from cfn_terraform_exporter.schema import (
    AttributePath,
    AwsSchema,
    ResourceSchema,
    SchemaConfigMode,
    SchemaValueType,
    ValueSchema,
)


class TestAttributePath(unittest.TestCase):
    """Test attribute path parsing"""

    def test_bracket_index_becomes_segment(self):
        self.assertEqual(str(AttributePath("ebs_block_device[2].volume_id")), "ebs_block_device.2.volume_id")

    def test_normalized_writes_every_index_as_zero(self):
        path = AttributePath("network_interface.3.device_index")
        self.assertEqual(path.normalized, "network_interface.0.device_index")

    def test_split_quoted_segment(self):
        segments = AttributePath.split("tags['kubernetes.io/role']")
        self.assertEqual(segments, ["tags", "kubernetes.io/role"])

    def test_split_keeps_quotes_inside_quoted_segment(self):
        path = AttributePath.join("tags", "owner's team")
        self.assertEqual(path, "tags['owner's team']")
        self.assertEqual(AttributePath.split(path), ["tags", "owner's team"])
        self.assertEqual(AttributePath.split("a['x'']"), ["a", "x'"])

    def test_split_quoted_segment_between_plain_segments(self):
        self.assertEqual(AttributePath.split("tags['a.b'].c"), ["tags", "a.b", "c"])

    def test_split_unbalanced_bracket_raises(self):
        with self.assertRaises(ValueError):
            AttributePath.split("tags['open")

    def test_join_quotes_non_plain_segments(self):
        self.assertEqual(AttributePath.join("tags", "Name"), "tags.Name")
        self.assertEqual(AttributePath.join("tags", "kubernetes.io/role"), "tags['kubernetes.io/role']")
        self.assertEqual(AttributePath.join("", "ami"), "ami")

    def test_compares_with_strings(self):
        self.assertEqual(AttributePath("a[0].b"), "a.0.b")


class TestValueSchema(unittest.TestCase):
    """Test block detection"""

    def test_nested_resource_is_block(self):
        nested = ResourceSchema.from_dict("", {"Schema": {"name": {"Type": "TypeString", "Optional": True}}})
        value = ValueSchema(type=SchemaValueType.LIST, optional=True, elem=nested)
        self.assertTrue(value.is_block())

    def test_read_only_is_never_block(self):
        nested = ResourceSchema.from_dict("", {"Schema": {}})
        value = ValueSchema(type=SchemaValueType.LIST, computed=True, elem=nested)
        self.assertFalse(value.is_block())

    def test_attribute_mode_overrides_nested_resource(self):
        nested = ResourceSchema.from_dict("", {"Schema": {}})
        value = ValueSchema(
            type=SchemaValueType.LIST, optional=True, elem=nested, config_mode=SchemaConfigMode.ATTR
        )
        self.assertFalse(value.is_block())

    def test_string_map_is_not_block(self):
        value = ValueSchema.from_dict({"Type": "TypeMap", "Optional": True, "Elem": {"Type": "TypeString"}})
        self.assertFalse(value.is_block())


class TestAwsSchema(unittest.TestCase):
    """Test the bundled schema registry"""

    @classmethod
    def setUpClass(cls):
        cls.schema = AwsSchema.load()

    def test_type_mapping(self):
        self.assertEqual(self.schema.get_terraform_type("AWS::EC2::Instance"), "aws_instance")
        self.assertEqual(self.schema.get_aws_type("aws_vpc"), "AWS::EC2::VPC")
        self.assertIsNone(self.schema.get_terraform_type("AWS::Unknown::Thing"))

    def test_contains_accepts_both_naming_schemes(self):
        self.assertIn("aws_instance", self.schema)
        self.assertIn("AWS::EC2::Instance", self.schema)
        self.assertNotIn("aws_does_not_exist", self.schema)

    def test_get_resource_schema_by_aws_type(self):
        resource = self.schema.get_resource_schema("AWS::EC2::Instance")
        self.assertEqual(resource.resource_type, "aws_instance")

    def test_unknown_aws_type_raises(self):
        with self.assertRaises(ResourceSchemaNotFoundError) as context:
            self.schema.get_resource_schema("AWS::Unknown::Thing")
        self.assertIn("No corresponding Terraform resource found", str(context.exception))

    def test_unknown_terraform_type_raises(self):
        with self.assertRaises(ResourceSchemaNotFoundError):
            self.schema.get_resource_schema("aws_does_not_exist")

    def test_nested_attribute_lookup(self):
        resource = self.schema.get_resource_schema("aws_instance")
        value = resource.get_attribute_by_path("ebs_block_device.0.volume_id")
        self.assertTrue(value.computed)
        self.assertFalse(value.optional)

    def test_wildcard_index(self):
        resource = self.schema.get_resource_schema("aws_instance")
        value = resource.get_attribute_by_path("root_block_device.*.tags")
        self.assertEqual(value.conflicts_with, ("volume_tags",))

    def test_arbitrary_map_key(self):
        resource = self.schema.get_resource_schema("aws_instance")
        value = resource.get_attribute_by_path("tags.Name")
        self.assertEqual(value.type, SchemaValueType.STRING)

    def test_missing_index_raises_order_error(self):
        resource = self.schema.get_resource_schema("aws_instance")
        with self.assertRaises(AttributePathOrderError):
            resource.get_attribute_by_path("ebs_block_device.volume_id")

    def test_misplaced_index_raises_order_error(self):
        resource = self.schema.get_resource_schema("aws_instance")
        with self.assertRaises(AttributePathOrderError):
            resource.get_attribute_by_path("ami.0")

    def test_unknown_attribute_raises(self):
        resource = self.schema.get_resource_schema("aws_instance")
        with self.assertRaises(AttributeNotFoundError):
            resource.get_attribute_by_path("does_not_exist")

    def test_invalid_paths_raise_value_error(self):
        resource = self.schema.get_resource_schema("aws_instance")
        for path in ("", "*.volume_id", "ebs_block_device.*"):
            with self.assertRaises(ValueError):
                resource.get_attribute_by_path(path)

    def test_traits_merge_common_entries(self):
        traits = self.schema.get_traits("aws_instance")
        self.assertEqual(traits.property_map["Tags"], "tags")
        self.assertEqual(traits.property_map["SubnetId"], "subnet_id")
        self.assertEqual(traits.attribute_map["Arn"], "arn")

    def test_iter_attributes_includes_nested_blocks(self):
        resource = self.schema.get_resource_schema("aws_instance")
        paths = dict(resource.iter_attributes())
        self.assertIn("root_block_device.0.tags", paths)
        self.assertIn("ebs_block_device.0.volume_id", paths)


if __name__ == '__main__':
    unittest.main()
