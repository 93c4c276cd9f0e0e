#!/usr/bin/env python3
"""
Unit tests for replacing state literals with references
"""

import unittest
import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../../src'))

from cfn_terraform_exporter.dependencies import DependencyResolver, _search
from cfn_terraform_exporter.mapper import ResourceMapping
from cfn_terraform_exporter.references import DirectReference, InterpolationReference
from cfn_terraform_exporter.schema import AwsSchema
from cfn_terraform_exporter.stack_reader import CloudFormationResource, StackResource
from cfn_terraform_exporter.state import StateFile
from cfn_terraform_exporter.template import Template

TEMPLATE = """
Parameters:
  EnvName:
    Type: String
    Default: dev
Mappings:
  Zones:
    dev:
      Primary: us-east-1a
Resources:
  Vpc:
    Type: AWS::EC2::VPC
    Properties:
      CidrBlock: 10.0.0.0/16
      Tags:
        - Key: Name
          Value: !Sub "${EnvName}-vpc"
        - Key: Team
          Value: platform
  Subnet:
    Type: AWS::EC2::Subnet
    Properties:
      VpcId: !Ref Vpc
      CidrBlock: 10.0.1.0/24
      AvailabilityZone: !FindInMap [Zones, !Sub "${EnvName}", Primary]
  LoadBalancerSecurityGroup:
    Type: AWS::EC2::SecurityGroup
    Properties:
      GroupDescription: load balancer
      VpcId: !Ref Vpc
  WebSecurityGroup:
    Type: AWS::EC2::SecurityGroup
    Properties:
      GroupDescription: web
      VpcId: !Ref Vpc
      SecurityGroupIngress:
        - IpProtocol: tcp
          FromPort: 443
          ToPort: 443
          SourceSecurityGroupId: !Ref LoadBalancerSecurityGroup
  Role:
    Type: AWS::IAM::Role
  Function:
    Type: AWS::Lambda::Function
    DependsOn: [WebSecurityGroup, Role]
    Properties:
      Role: !GetAtt Role.Arn
      Environment:
        Variables:
          VPC_ID: !Ref Vpc
      VpcConfig:
        SubnetIds:
          - !Ref Subnet
          - subnet-0shared
        SecurityGroupIds: !Ref WebSecurityGroup
"""

PHYSICAL_IDS = {
    "Vpc": ("vpc-0abc", "AWS::EC2::VPC", "aws_vpc"),
    "Subnet": ("subnet-0def", "AWS::EC2::Subnet", "aws_subnet"),
    "LoadBalancerSecurityGroup": ("sg-0lb", "AWS::EC2::SecurityGroup", "aws_security_group"),
    "WebSecurityGroup": ("sg-0web", "AWS::EC2::SecurityGroup", "aws_security_group"),
    "Function": ("web-handler", "AWS::Lambda::Function", "aws_lambda_function"),
}


def state_resource(terraform_type, name, attributes):
    return {
        "mode": "managed",
        "type": terraform_type,
        "name": name,
        "instances": [{"schema_version": 0, "attributes": attributes}],
    }


def imported_state():
    return StateFile({"version": 4, "resources": [
        state_resource("aws_vpc", "Vpc", {
            "id": "vpc-0abc",
            "cidr_block": "10.0.0.0/16",
            "tags": {"Name": "dev-vpc", "Team": "platform"},
            "tags_all": {"Name": "dev-vpc", "Team": "platform"},
        }),
        state_resource("aws_subnet", "Subnet", {
            "id": "subnet-0def",
            "vpc_id": "vpc-0abc",
            "cidr_block": "10.0.1.0/24",
            "availability_zone": "us-east-1a",
        }),
        state_resource("aws_security_group", "LoadBalancerSecurityGroup", {
            "id": "sg-0lb",
            "description": "load balancer",
            "vpc_id": "vpc-0abc",
        }),
        state_resource("aws_security_group", "WebSecurityGroup", {
            "id": "sg-0web",
            "description": "web",
            "vpc_id": "vpc-0abc",
            "ingress": [{
                "cidr_blocks": [],
                "description": "",
                "from_port": 443,
                "protocol": "tcp",
                "security_groups": ["sg-0lb"],
                "self": False,
                "to_port": 443,
            }],
        }),
        state_resource("aws_lambda_function", "Function", {
            "id": "web-handler",
            "arn": "arn:aws:lambda:us-east-1:123456789012:function:web-handler",
            "role": "arn:aws:iam::123456789012:role/web-handler",
            "environment": [{"variables": {"VPC_ID": "vpc-0abc"}}],
            "vpc_config": [{
                "subnet_ids": ["subnet-0def", "subnet-0shared"],
                "security_group_ids": ["sg-0web"],
                "vpc_id": "vpc-0abc",
            }],
        }),
    ]})


class TestDependencyResolver(unittest.TestCase):
    """Test rewriting the imported state of a small network stack"""

    @classmethod
    def setUpClass(cls):
        cls.schema = AwsSchema.load()

    def setUp(self):
        self.template = Template.parse(TEMPLATE)
        self.template.bind_stack(
            physical_ids={**{k: v[0] for k, v in PHYSICAL_IDS.items()}, "Role": "web-handler"},
            parameter_values={"EnvName": "dev"},
            pseudo_parameters={"AWS::AccountId": "123456789012", "AWS::Region": "us-east-1"},
            availability_zones=["us-east-1a", "us-east-1b"],
        )
        self.mappings = [
            ResourceMapping(
                resource=CloudFormationResource(
                    self.template.resources[logical_id],
                    StackResource(logical_id, physical_id, aws_type),
                ),
                terraform_type=terraform_type,
                is_imported=True,
            )
            for logical_id, (physical_id, aws_type, terraform_type) in PHYSICAL_IDS.items()
        ]
        self.state = imported_state()
        self.result = DependencyResolver(self.template, self.schema, self.state, self.mappings).resolve()

    def attributes(self, address):
        return self.state.find_resource(address).attributes

    def mapping(self, logical_id):
        return next(m for m in self.mappings if m.logical_id == logical_id)

    def test_tag_values_are_resolved(self):
        tags = self.attributes("aws_vpc.Vpc")["tags"]
        self.assertIsInstance(tags["Name"], InterpolationReference)
        self.assertEqual(tags["Name"].reference_expression, '"${var.EnvName}-vpc"')
        self.assertEqual(tags["Team"], "platform")
        self.assertEqual(self.attributes("aws_vpc.Vpc")["tags_all"]["Name"], "dev-vpc")

    def test_top_level_reference(self):
        vpc_id = self.attributes("aws_subnet.Subnet")["vpc_id"]
        self.assertEqual(vpc_id.reference_expression, "aws_vpc.Vpc.id")

    def test_list_of_blocks_is_searched_by_value(self):
        ingress = self.attributes("aws_security_group.WebSecurityGroup")["ingress"][0]
        self.assertIsInstance(ingress["security_groups"][0], DirectReference)
        self.assertEqual(ingress["security_groups"][0].reference_expression,
                         "aws_security_group.LoadBalancerSecurityGroup.id")
        self.assertEqual(ingress["from_port"], 443)

    def test_nested_block_is_descended(self):
        function = self.attributes("aws_lambda_function.Function")
        variables = function["environment"][0]["variables"]
        self.assertEqual(variables["VPC_ID"].reference_expression, "aws_vpc.Vpc.id")

        subnet_ids = function["vpc_config"][0]["subnet_ids"]
        self.assertEqual(subnet_ids[0].reference_expression, "aws_subnet.Subnet.id")
        self.assertEqual(subnet_ids[1], "subnet-0shared")
        self.assertEqual(function["vpc_config"][0]["vpc_id"], "vpc-0abc")

    def test_scalar_reference_into_list_attribute_is_wrapped(self):
        security_group_ids = self.attributes("aws_lambda_function.Function")["vpc_config"][0]["security_group_ids"]
        self.assertEqual(len(security_group_ids), 1)
        self.assertEqual(security_group_ids[0].reference_expression, "aws_security_group.WebSecurityGroup.id")

    def test_resource_not_imported_keeps_literal(self):
        function = self.attributes("aws_lambda_function.Function")
        self.assertEqual(function["role"], "arn:aws:iam::123456789012:role/web-handler")
        self.assertIn(
            "Resource \"Function\" (AWS::Lambda::Function): Property Role: Cannot resolve",
            "\n".join(self.result.warnings),
        )

    def test_unsupported_map_key_warns(self):
        self.assertEqual(self.attributes("aws_subnet.Subnet")["availability_zone"], "us-east-1a")
        warnings = [w for w in self.result.warnings if w.startswith("Resource \"Subnet\"")]
        self.assertEqual(len(warnings), 1)
        self.assertIn("Property AvailabilityZone: Fn::FindInMap", warnings[0])

    def test_reference_count_and_warnings(self):
        self.assertEqual(self.result.references, 8)
        self.assertEqual(len(self.result.warnings), 2)

    def test_depends_on_keeps_imported_resources(self):
        self.assertEqual(self.mapping("Function").depends_on, ["aws_security_group.WebSecurityGroup"])
        self.assertEqual(self.mapping("Vpc").depends_on, [])

    def test_resource_missing_from_state_warns(self):
        state = StateFile({"version": 4, "resources": []})
        result = DependencyResolver(self.template, self.schema, state, self.mappings[:1]).resolve()
        self.assertEqual(result.references, 0)
        self.assertEqual(result.warnings, ["Resource \"Vpc\" (AWS::EC2::VPC): Not found in state after import."])


class TestSearch(unittest.TestCase):
    """Test finding the attribute that holds a literal"""

    def test_resource_echo_attributes_are_skipped(self):
        attributes = {
            "id": "sg-0web",
            "arn": "sg-0web",
            "tags_all": {"Group": "sg-0web"},
            "revoke_rules_on_delete": True,
            "egress": [{"security_groups": ["sg-0other", "sg-0web"]}],
        }
        container, key = _search(attributes, "sg-0web")
        self.assertIs(container, attributes["egress"][0]["security_groups"])
        self.assertEqual(key, 1)

    def test_booleans_and_references_never_match(self):
        attributes = {
            "enabled": True,
            "vpc_id": DirectReference("aws_vpc.Vpc"),
            "name": None,
        }
        self.assertIsNone(_search(attributes, "True"))
        self.assertIsNone(_search(attributes, "aws_vpc.Vpc"))

    def test_numbers_match_their_text(self):
        attributes = {"port": 443}
        self.assertEqual(_search(attributes, "443"), (attributes, "port"))


if __name__ == '__main__':
    unittest.main()
