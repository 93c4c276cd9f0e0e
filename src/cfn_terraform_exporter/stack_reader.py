#!/usr/bin/env python3
"""
CloudFormation Stack Reader

Reads a deployed stack: its template, physical resources, parameter values
and outputs. The exporter only depends on the ``StackReader`` interface; the
boto3 implementation is what the command line tool uses.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import ExporterError, ResourceCountMismatchError
from .template import Template, TemplateResource

logger = logging.getLogger(__name__)

NESTED_STACK_TYPE = "AWS::CloudFormation::Stack"


@dataclass(frozen=True)
class StackResource:
    """A physical resource as reported by CloudFormation"""
    logical_id: str
    physical_id: str
    resource_type: str
    status: Optional[str] = None


@dataclass(frozen=True)
class CloudFormationResource:
    """A template resource paired with its physical resource"""
    template_resource: TemplateResource
    stack_resource: StackResource

    @property
    def logical_id(self) -> str:
        return self.stack_resource.logical_id

    @property
    def physical_id(self) -> str:
        return self.stack_resource.physical_id

    @property
    def resource_type(self) -> str:
        return self.stack_resource.resource_type

    @property
    def depends_on(self) -> List[str]:
        return list(self.template_resource.depends_on)

    @property
    def aws_address(self) -> str:
        return f"{self.logical_id} ({self.resource_type})"


@dataclass
class ReadStackResult:
    """Everything the exporter needs to know about one deployed stack"""
    stack_name: str
    stack_id: str
    template: Template
    resources: List[CloudFormationResource] = field(default_factory=list)
    parameters: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)


def pseudo_parameters_from_arn(stack_id: str, stack_name: str) -> Dict[str, Any]:
    """Pseudo parameter values derivable from a stack ARN"""
    parts = stack_id.split(":")
    partition, region, account = (parts[1], parts[3], parts[4]) if len(parts) > 4 else ("aws", "", "")
    return {
        "AWS::Partition": partition,
        "AWS::Region": region,
        "AWS::AccountId": account,
        "AWS::StackId": stack_id,
        "AWS::StackName": stack_name,
        "AWS::URLSuffix": "amazonaws.com.cn" if partition == "aws-cn" else "amazonaws.com",
    }


def pair_resources(template: Template, stack_resources: List[StackResource]) -> List[CloudFormationResource]:
    """
    Pair live resources with their template declarations

    Raises:
        ResourceCountMismatchError: A live resource is missing from the template
            or a template resource that should exist is not deployed
    """
    live = {r.logical_id: r for r in stack_resources}
    missing = sorted(set(live) - set(template.resources))
    if missing:
        raise ResourceCountMismatchError(
            f"Resources in the stack but not in its template: {', '.join(missing)}"
        )

    undeployed = []
    for logical_id, resource in template.resources.items():
        if logical_id in live:
            continue
        if resource.condition and not template.evaluate_condition(resource.condition):
            continue
        undeployed.append(logical_id)
    if undeployed:
        raise ResourceCountMismatchError(
            f"Template resources not present in the stack: {', '.join(sorted(undeployed))}"
        )

    return [CloudFormationResource(template.resources[r.logical_id], r) for r in stack_resources]


class StackReader:
    """Interface of stack readers"""

    def read_stack(self, stack_name: str) -> ReadStackResult:
        raise NotImplementedError


class Boto3StackReader(StackReader):
    """
    Reads stacks through the CloudFormation API

    Args:
        region: AWS region
        profile: Named profile from the shared credentials file
        role_arn: Role to assume before reading
        session: Pre-built session, overrides the other arguments
    """

    def __init__(self,
                 region: Optional[str] = None,
                 profile: Optional[str] = None,
                 role_arn: Optional[str] = None,
                 session: Optional[boto3.Session] = None):
        self.session = session or self._create_session(region, profile, role_arn)
        self.cloudformation = self.session.client("cloudformation")
        self._exports: Optional[Dict[str, str]] = None
        self._availability_zones: Optional[List[str]] = None

    @staticmethod
    def _create_session(region: Optional[str], profile: Optional[str], role_arn: Optional[str]) -> boto3.Session:
        session = boto3.Session(profile_name=profile, region_name=region) if profile \
            else boto3.Session(region_name=region)
        if not role_arn:
            return session

        credentials = session.client("sts").assume_role(
            RoleArn=role_arn, RoleSessionName="cf2tf-export"
        )["Credentials"]
        return boto3.Session(
            aws_access_key_id=credentials["AccessKeyId"],
            aws_secret_access_key=credentials["SecretAccessKey"],
            aws_session_token=credentials["SessionToken"],
            region_name=session.region_name,
        )

    def credential_environment(self) -> Dict[str, str]:
        """Environment variables that give terraform the same credentials"""
        env = {}
        if self.session.region_name:
            env["AWS_REGION"] = self.session.region_name
            env["AWS_DEFAULT_REGION"] = self.session.region_name
        credentials = self.session.get_credentials()
        if credentials is not None:
            frozen = credentials.get_frozen_credentials()
            env["AWS_ACCESS_KEY_ID"] = frozen.access_key
            env["AWS_SECRET_ACCESS_KEY"] = frozen.secret_key
            if frozen.token:
                env["AWS_SESSION_TOKEN"] = frozen.token
        return env

    def read_stack(self, stack_name: str) -> ReadStackResult:
        """
        Read a stack by name or ARN

        Raises:
            ExporterError: The stack cannot be read
            ResourceCountMismatchError: Template and stack disagree
        """
        try:
            stack = self.cloudformation.describe_stacks(StackName=stack_name)["Stacks"][0]
            template_body = self.cloudformation.get_template(
                StackName=stack_name, TemplateStage="Original"
            )["TemplateBody"]

            stack_resources = []
            paginator = self.cloudformation.get_paginator("list_stack_resources")
            for page in paginator.paginate(StackName=stack_name):
                for summary in page["StackResourceSummaries"]:
                    if summary.get("ResourceStatus", "").startswith("DELETE"):
                        continue
                    stack_resources.append(StackResource(
                        logical_id=summary["LogicalResourceId"],
                        physical_id=summary.get("PhysicalResourceId", ""),
                        resource_type=summary["ResourceType"],
                        status=summary.get("ResourceStatus"),
                    ))
        except ClientError as e:
            raise ExporterError(f"Cannot read stack {stack_name}: {e.response['Error']['Message']}") from e
        except BotoCoreError as e:
            raise ExporterError(f"Cannot read stack {stack_name}: {str(e)}") from e

        parameters = {p["ParameterKey"]: p.get("ParameterValue") for p in stack.get("Parameters", [])}
        outputs = {o["OutputKey"]: o.get("OutputValue") for o in stack.get("Outputs", [])}

        template = Template.parse(template_body)
        template.bind_stack(
            physical_ids={r.logical_id: r.physical_id for r in stack_resources},
            parameter_values=parameters,
            pseudo_parameters=pseudo_parameters_from_arn(stack["StackId"], stack["StackName"]),
            stack_exports=self._get_exports(),
            availability_zones=self._get_availability_zones(),
        )

        logger.info(f"Read stack {stack['StackName']}: {len(stack_resources)} resources")
        return ReadStackResult(
            stack_name=stack["StackName"],
            stack_id=stack["StackId"],
            template=template,
            resources=pair_resources(template, stack_resources),
            parameters=parameters,
            outputs=outputs,
        )

    def _get_exports(self) -> Dict[str, str]:
        if self._exports is None:
            self._exports = {}
            try:
                for page in self.cloudformation.get_paginator("list_exports").paginate():
                    for export in page.get("Exports", []):
                        self._exports[export["Name"]] = export["Value"]
            except ClientError as e:
                logger.warning(f"Could not list stack exports: {str(e)}")
        return self._exports

    def _get_availability_zones(self) -> Optional[List[str]]:
        if self._availability_zones is None:
            try:
                response = self.session.client("ec2").describe_availability_zones()
                self._availability_zones = sorted(z["ZoneName"] for z in response["AvailabilityZones"])
            except ClientError as e:
                logger.warning(f"Could not list availability zones: {str(e)}")
        return self._availability_zones
