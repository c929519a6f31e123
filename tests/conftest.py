"""Pytest configuration and shared fixtures for Nimbus tests.

Provisioning tests run against ``FakeAws``, an in-memory stand-in for the
boto3 clients each resource asks the client factory for. Every fake keeps
just enough state to answer the calls Nimbus makes and records each call so
tests can assert on what reached the provider.
"""

from __future__ import annotations

import functools
import io
import itertools
import json
import os
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
from botocore.exceptions import ClientError

from nimbus.config.backend import BackendProfile
from nimbus.deploy.engine import Nimbus
from nimbus.deploy.state import S3StateBackend, StateManager
from nimbus.lib.polling import PollPolicy
from nimbus.models.project import PollingConfig
from nimbus.resources.base import ResourceContext

ACCOUNT_ID = "123456789012"
REGION = "us-east-1"


def make_client_error(code: str, operation: str = "Operation", status: int = 400) -> ClientError:
    """Build a botocore ClientError carrying a provider error code."""
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised by fake"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def operation(method: Callable[..., Any]) -> Callable[..., Any]:
    """Record a fake API call and raise any failure injected for it."""

    @functools.wraps(method)
    def wrapper(self: FakeService, **kwargs: Any) -> Any:
        self.calls.append((method.__name__, kwargs))
        failure = self.failures.get(method.__name__)
        if failure is not None:
            raise failure
        return method(self, **kwargs)

    return wrapper


class FakeService:
    """Base class for in-memory service fakes."""

    def __init__(self, aws: FakeAws) -> None:
        self.aws = aws
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.failures: dict[str, ClientError] = {}
        self._ids = itertools.count(1)

    def next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def called(self, name: str) -> list[dict[str, Any]]:
        """Keyword arguments of every call to one operation."""
        return [kwargs for op, kwargs in self.calls if op == name]

    def fail(self, name: str, code: str, status: int = 400) -> None:
        """Make every later call to ``name`` raise a provider error."""
        self.failures[name] = make_client_error(code, name, status)

    def arn(self, service: str, resource: str) -> str:
        return f"arn:aws:{service}:{self.aws.region}:{self.aws.account_id}:{resource}"


class FakeS3(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.objects: dict[tuple[str, str], bytes] = {}
        self.buckets: dict[str, dict[str, Any]] = {}

    @operation
    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        if (Bucket, Key) not in self.objects:
            raise make_client_error("NoSuchKey", "GetObject", 404)
        return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}

    @operation
    def put_object(
        self,
        Bucket: str,
        Key: str,
        Body: bytes,
        IfNoneMatch: str | None = None,
        ContentType: str | None = None,
    ) -> dict[str, Any]:
        if IfNoneMatch == "*" and (Bucket, Key) in self.objects:
            raise make_client_error("PreconditionFailed", "PutObject", 412)
        self.objects[(Bucket, Key)] = Body
        return {}

    @operation
    def delete_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.objects.pop((Bucket, Key), None)
        return {}

    @operation
    def head_bucket(self, Bucket: str) -> dict[str, Any]:
        if Bucket not in self.buckets:
            raise make_client_error("404", "HeadBucket", 404)
        return {}

    @operation
    def create_bucket(self, Bucket: str, **kwargs: Any) -> dict[str, Any]:
        self.buckets[Bucket] = dict(kwargs)
        return {"Location": f"/{Bucket}"}

    @operation
    def put_bucket_versioning(self, Bucket: str, VersioningConfiguration: dict[str, str]) -> dict[str, Any]:
        self.buckets[Bucket]["versioning"] = VersioningConfiguration["Status"]
        return {}

    @operation
    def list_objects_v2(self, Bucket: str, ContinuationToken: str | None = None) -> dict[str, Any]:
        if Bucket not in self.buckets:
            raise make_client_error("NoSuchBucket", "ListObjectsV2", 404)
        keys = [key for bucket, key in self.objects if bucket == Bucket]
        return {"Contents": [{"Key": key} for key in keys]}

    @operation
    def delete_bucket(self, Bucket: str) -> dict[str, Any]:
        if Bucket not in self.buckets:
            raise make_client_error("NoSuchBucket", "DeleteBucket", 404)
        del self.buckets[Bucket]
        return {}


class FakeSts(FakeService):
    @operation
    def get_caller_identity(self) -> dict[str, Any]:
        return {"Account": self.aws.account_id}


class FakeIam(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.roles: dict[str, dict[str, Any]] = {}

    def _role(self, name: str) -> dict[str, Any]:
        if name not in self.roles:
            raise make_client_error("NoSuchEntity", "GetRole", 404)
        return self.roles[name]

    @operation
    def get_role(self, RoleName: str) -> dict[str, Any]:
        role = self._role(RoleName)
        return {"Role": {"Arn": role["Arn"], "AssumeRolePolicyDocument": role["trust"]}}

    @operation
    def create_role(self, RoleName: str, AssumeRolePolicyDocument: str, Description: str) -> dict[str, Any]:
        self.roles[RoleName] = {
            "Arn": f"arn:aws:iam::{self.aws.account_id}:role/{RoleName}",
            "trust": json.loads(AssumeRolePolicyDocument),
            "attached": [],
            "inline": {},
        }
        return {"Role": {"Arn": self.roles[RoleName]["Arn"]}}

    @operation
    def attach_role_policy(self, RoleName: str, PolicyArn: str) -> dict[str, Any]:
        self._role(RoleName)["attached"].append(PolicyArn)
        return {}

    @operation
    def put_role_policy(self, RoleName: str, PolicyName: str, PolicyDocument: str) -> dict[str, Any]:
        self._role(RoleName)["inline"][PolicyName] = json.loads(PolicyDocument)
        return {}

    @operation
    def list_attached_role_policies(self, RoleName: str) -> dict[str, Any]:
        attached = self._role(RoleName)["attached"]
        return {"AttachedPolicies": [{"PolicyArn": arn} for arn in attached]}

    @operation
    def detach_role_policy(self, RoleName: str, PolicyArn: str) -> dict[str, Any]:
        self._role(RoleName)["attached"].remove(PolicyArn)
        return {}

    @operation
    def list_role_policies(self, RoleName: str) -> dict[str, Any]:
        return {"PolicyNames": list(self._role(RoleName)["inline"])}

    @operation
    def delete_role_policy(self, RoleName: str, PolicyName: str) -> dict[str, Any]:
        del self._role(RoleName)["inline"][PolicyName]
        return {}

    @operation
    def delete_role(self, RoleName: str) -> dict[str, Any]:
        self._role(RoleName)
        del self.roles[RoleName]
        return {}


class FakeLambda(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.functions: dict[str, dict[str, Any]] = {}
        self.permissions: dict[str, dict[str, dict[str, Any]]] = {}
        self.mappings: list[dict[str, Any]] = []

    def _function(self, name: str) -> dict[str, Any]:
        if name not in self.functions:
            raise make_client_error("ResourceNotFoundException", "GetFunction", 404)
        return self.functions[name]

    @operation
    def get_function(self, FunctionName: str) -> dict[str, Any]:
        return {"Configuration": dict(self._function(FunctionName))}

    @operation
    def get_function_configuration(self, FunctionName: str) -> dict[str, Any]:
        return dict(self._function(FunctionName))

    @operation
    def create_function(self, FunctionName: str, Code: dict[str, bytes], **settings: Any) -> dict[str, Any]:
        self.functions[FunctionName] = {
            **settings,
            "FunctionName": FunctionName,
            "FunctionArn": self.arn("lambda", f"function:{FunctionName}"),
            "State": "Active",
            "LastUpdateStatus": "Successful",
        }
        return dict(self.functions[FunctionName])

    @operation
    def update_function_code(self, FunctionName: str, ZipFile: bytes) -> dict[str, Any]:
        return dict(self._function(FunctionName))

    @operation
    def update_function_configuration(self, FunctionName: str, **settings: Any) -> dict[str, Any]:
        self._function(FunctionName).update(settings)
        return dict(self.functions[FunctionName])

    @operation
    def add_permission(self, FunctionName: str, StatementId: str, **kwargs: Any) -> dict[str, Any]:
        self._function(FunctionName)
        statements = self.permissions.setdefault(FunctionName, {})
        if StatementId in statements:
            raise make_client_error("ResourceConflictException", "AddPermission", 409)
        statements[StatementId] = kwargs
        return {}

    @operation
    def delete_function(self, FunctionName: str) -> dict[str, Any]:
        self._function(FunctionName)
        del self.functions[FunctionName]
        self.permissions.pop(FunctionName, None)
        return {}

    @operation
    def list_event_source_mappings(
        self, EventSourceArn: str | None = None, FunctionName: str | None = None
    ) -> dict[str, Any]:
        found = [
            m
            for m in self.mappings
            if (EventSourceArn is None or m["EventSourceArn"] == EventSourceArn)
            and (FunctionName is None or m["FunctionArn"] == FunctionName)
        ]
        return {"EventSourceMappings": found}

    @operation
    def create_event_source_mapping(
        self, EventSourceArn: str, FunctionName: str, BatchSize: int, Enabled: bool
    ) -> dict[str, Any]:
        mapping = {
            "UUID": self.next_id("uuid-"),
            "EventSourceArn": EventSourceArn,
            "FunctionArn": FunctionName,
            "BatchSize": BatchSize,
        }
        self.mappings.append(mapping)
        return mapping

    @operation
    def delete_event_source_mapping(self, UUID: str) -> dict[str, Any]:
        self.mappings = [m for m in self.mappings if m["UUID"] != UUID]
        return {}


class FakeDynamoDB(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.tables: dict[str, dict[str, Any]] = {}

    @operation
    def describe_table(self, TableName: str) -> dict[str, Any]:
        if TableName not in self.tables:
            raise make_client_error("ResourceNotFoundException", "DescribeTable", 400)
        return {"Table": dict(self.tables[TableName])}

    @operation
    def create_table(self, TableName: str, **params: Any) -> dict[str, Any]:
        self.tables[TableName] = {
            **params,
            "TableName": TableName,
            "TableArn": self.arn("dynamodb", f"table/{TableName}"),
            "TableStatus": "ACTIVE",
        }
        return {"TableDescription": dict(self.tables[TableName])}

    @operation
    def update_continuous_backups(self, TableName: str, PointInTimeRecoverySpecification: dict[str, bool]) -> dict[str, Any]:
        self.tables[TableName]["pitr"] = PointInTimeRecoverySpecification
        return {}

    @operation
    def delete_table(self, TableName: str) -> dict[str, Any]:
        if TableName not in self.tables:
            raise make_client_error("ResourceNotFoundException", "DeleteTable", 400)
        del self.tables[TableName]
        return {}


class FakeApiGateway(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.apis: dict[str, dict[str, Any]] = {}
        self.domains: dict[str, dict[str, Any]] = {}

    def _api(self, api_id: str) -> dict[str, Any]:
        if api_id not in self.apis:
            raise make_client_error("NotFoundException", "GetRestApi", 404)
        return self.apis[api_id]

    def paths(self, api_id: str) -> set[str]:
        """Every resource path of an API."""
        return set(self.apis[api_id]["resources"])

    @operation
    def get_rest_apis(self, limit: int = 25, position: str | None = None) -> dict[str, Any]:
        return {"items": [{"id": i, "name": a["name"]} for i, a in self.apis.items()]}

    @operation
    def create_rest_api(self, name: str, **kwargs: Any) -> dict[str, Any]:
        api_id = self.next_id("api")
        self.apis[api_id] = {
            "name": name,
            "resources": {"/": self.next_id("root")},
            "methods": {},
            "responses": set(),
            "integrations": {},
            "authorizers": {},
            "deployments": [],
            "stages": {},
        }
        return {"id": api_id, "name": name}

    @operation
    def get_authorizers(self, restApiId: str) -> dict[str, Any]:
        authorizers = self._api(restApiId)["authorizers"]
        return {"items": [{"id": v["id"], "name": k} for k, v in authorizers.items()]}

    @operation
    def create_authorizer(self, restApiId: str, name: str, **kwargs: Any) -> dict[str, Any]:
        authorizer = {"id": self.next_id("auth"), **kwargs}
        self._api(restApiId)["authorizers"][name] = authorizer
        return {"id": authorizer["id"]}

    @operation
    def get_resources(self, restApiId: str, limit: int = 25, position: str | None = None) -> dict[str, Any]:
        resources = self._api(restApiId)["resources"]
        return {"items": [{"id": i, "path": p} for p, i in resources.items()]}

    @operation
    def create_resource(self, restApiId: str, parentId: str, pathPart: str) -> dict[str, Any]:
        resources = self._api(restApiId)["resources"]
        parent = next(path for path, rid in resources.items() if rid == parentId)
        path = f"/{pathPart}" if parent == "/" else f"{parent}/{pathPart}"
        resources[path] = self.next_id("res")
        return {"id": resources[path], "path": path}

    @operation
    def get_method(self, restApiId: str, resourceId: str, httpMethod: str) -> dict[str, Any]:
        methods = self._api(restApiId)["methods"]
        if (resourceId, httpMethod) not in methods:
            raise make_client_error("NotFoundException", "GetMethod", 404)
        return methods[(resourceId, httpMethod)]

    @operation
    def put_method(self, restApiId: str, resourceId: str, httpMethod: str, **kwargs: Any) -> dict[str, Any]:
        self._api(restApiId)["methods"][(resourceId, httpMethod)] = kwargs
        return kwargs

    def _put_response(self, kind: str, restApiId: str, resourceId: str, httpMethod: str) -> None:
        responses = self._api(restApiId)["responses"]
        key = (kind, resourceId, httpMethod)
        if key in responses:
            raise make_client_error("ConflictException", kind, 409)
        responses.add(key)

    @operation
    def put_method_response(self, restApiId: str, resourceId: str, httpMethod: str, **kwargs: Any) -> dict[str, Any]:
        self._put_response("method", restApiId, resourceId, httpMethod)
        return {}

    @operation
    def put_integration(self, restApiId: str, resourceId: str, httpMethod: str, **kwargs: Any) -> dict[str, Any]:
        self._api(restApiId)["integrations"][(resourceId, httpMethod)] = kwargs
        return kwargs

    @operation
    def put_integration_response(self, restApiId: str, resourceId: str, httpMethod: str, **kwargs: Any) -> dict[str, Any]:
        self._put_response("integration", restApiId, resourceId, httpMethod)
        return {}

    @operation
    def create_deployment(self, restApiId: str, stageName: str, **kwargs: Any) -> dict[str, Any]:
        api = self._api(restApiId)
        api["deployments"].append(stageName)
        api["stages"].setdefault(stageName, {})
        return {"id": self.next_id("dep")}

    @operation
    def update_stage(self, restApiId: str, stageName: str, patchOperations: list[dict[str, str]]) -> dict[str, Any]:
        stage = self._api(restApiId)["stages"][stageName]
        for op in patchOperations:
            stage[op["path"]] = op["value"]
        return {}

    @operation
    def delete_rest_api(self, restApiId: str) -> dict[str, Any]:
        self._api(restApiId)
        del self.apis[restApiId]
        return {}

    @operation
    def get_domain_names(self) -> dict[str, Any]:
        return {"items": [{"domainName": name} for name in self.domains]}

    @operation
    def get_domain_name(self, domainName: str) -> dict[str, Any]:
        if domainName not in self.domains:
            raise make_client_error("NotFoundException", "GetDomainName", 404)
        domain = self.domains[domainName]
        return {
            "domainName": domainName,
            "regionalDomainName": domain["regionalDomainName"],
            "regionalHostedZoneId": "Z1UJRXOUMOOFQ8",
        }

    @operation
    def create_domain_name(self, domainName: str, regionalCertificateArn: str, **kwargs: Any) -> dict[str, Any]:
        self.domains[domainName] = {
            "certificate": regionalCertificateArn,
            "regionalDomainName": f"d-{domainName.replace('.', '-')}.execute-api.{self.aws.region}.amazonaws.com",
            "mappings": [],
        }
        return {"domainName": domainName}

    @operation
    def get_base_path_mappings(self, domainName: str) -> dict[str, Any]:
        return {"items": list(self.domains[domainName]["mappings"])}

    @operation
    def create_base_path_mapping(self, domainName: str, restApiId: str, stage: str, basePath: str) -> dict[str, Any]:
        mappings = self.domains[domainName]["mappings"]
        if any(m["basePath"] == (basePath or "(none)") for m in mappings):
            raise make_client_error("ConflictException", "CreateBasePathMapping", 409)
        mappings.append({"basePath": basePath or "(none)", "restApiId": restApiId, "stage": stage})
        return {}

    @operation
    def delete_base_path_mapping(self, domainName: str, basePath: str) -> dict[str, Any]:
        domain = self.domains[domainName]
        domain["mappings"] = [m for m in domain["mappings"] if m["basePath"] != basePath]
        return {}


class FakeSqs(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.queues: dict[str, dict[str, Any]] = {}

    def _by_url(self, url: str) -> str:
        return next(name for name, q in self.queues.items() if q["url"] == url)

    @operation
    def get_queue_url(self, QueueName: str) -> dict[str, Any]:
        if QueueName not in self.queues:
            raise make_client_error("AWS.SimpleQueueService.NonExistentQueue", "GetQueueUrl")
        return {"QueueUrl": self.queues[QueueName]["url"]}

    @operation
    def create_queue(self, QueueName: str, Attributes: dict[str, str]) -> dict[str, Any]:
        self.queues[QueueName] = {
            "url": f"https://sqs.{self.aws.region}.amazonaws.com/{self.aws.account_id}/{QueueName}",
            "arn": self.arn("sqs", QueueName),
            "attributes": dict(Attributes),
        }
        return {"QueueUrl": self.queues[QueueName]["url"]}

    @operation
    def get_queue_attributes(self, QueueUrl: str, AttributeNames: list[str]) -> dict[str, Any]:
        return {"Attributes": {"QueueArn": self.queues[self._by_url(QueueUrl)]["arn"]}}

    @operation
    def delete_queue(self, QueueUrl: str) -> dict[str, Any]:
        del self.queues[self._by_url(QueueUrl)]
        return {}


class FakeEvents(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.rules: dict[str, dict[str, Any]] = {}

    def _rule(self, name: str) -> dict[str, Any]:
        if name not in self.rules:
            raise make_client_error("ResourceNotFoundException", "DescribeRule")
        return self.rules[name]

    @operation
    def describe_rule(self, Name: str) -> dict[str, Any]:
        rule = self._rule(Name)
        return {"Name": Name, "Arn": rule["Arn"], "State": rule["State"]}

    @operation
    def put_rule(self, Name: str, ScheduleExpression: str, State: str, **kwargs: Any) -> dict[str, Any]:
        self.rules[Name] = {
            "Arn": self.arn("events", f"rule/{Name}"),
            "ScheduleExpression": ScheduleExpression,
            "State": State,
            "targets": [],
        }
        return {"RuleArn": self.rules[Name]["Arn"]}

    @operation
    def put_targets(self, Rule: str, Targets: list[dict[str, str]]) -> dict[str, Any]:
        self._rule(Rule)["targets"] = list(Targets)
        return {"FailedEntryCount": 0}

    @operation
    def list_targets_by_rule(self, Rule: str) -> dict[str, Any]:
        return {"Targets": list(self._rule(Rule)["targets"])}

    @operation
    def remove_targets(self, Rule: str, Ids: list[str]) -> dict[str, Any]:
        rule = self._rule(Rule)
        rule["targets"] = [t for t in rule["targets"] if t["Id"] not in Ids]
        return {}

    @operation
    def delete_rule(self, Name: str) -> dict[str, Any]:
        self._rule(Name)
        del self.rules[Name]
        return {}


class FakeSecretsManager(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.secrets: dict[str, dict[str, Any]] = {}

    @operation
    def describe_secret(self, SecretId: str) -> dict[str, Any]:
        if SecretId not in self.secrets:
            raise make_client_error("ResourceNotFoundException", "DescribeSecret")
        return {"ARN": self.secrets[SecretId]["ARN"], "Name": SecretId}

    @operation
    def create_secret(self, Name: str, SecretString: str, **kwargs: Any) -> dict[str, Any]:
        self.secrets[Name] = {
            "ARN": self.arn("secretsmanager", f"secret:{Name}-AbCdEf"),
            "SecretString": SecretString,
            **kwargs,
        }
        return {"ARN": self.secrets[Name]["ARN"], "Name": Name}

    @operation
    def delete_secret(self, SecretId: str, ForceDeleteWithoutRecovery: bool) -> dict[str, Any]:
        if SecretId not in self.secrets:
            raise make_client_error("ResourceNotFoundException", "DeleteSecret")
        del self.secrets[SecretId]
        return {}


class FakeSsm(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.parameters: dict[str, dict[str, Any]] = {}

    @operation
    def get_parameter(self, Name: str) -> dict[str, Any]:
        if Name not in self.parameters:
            raise make_client_error("ParameterNotFound", "GetParameter")
        return {"Parameter": {"Name": Name, **self.parameters[Name]}}

    @operation
    def put_parameter(self, Name: str, **kwargs: Any) -> dict[str, Any]:
        self.parameters[Name] = kwargs
        return {"Version": 1}

    @operation
    def delete_parameter(self, Name: str) -> dict[str, Any]:
        if Name not in self.parameters:
            raise make_client_error("ParameterNotFound", "DeleteParameter")
        del self.parameters[Name]
        return {}


class FakeDsql(FakeService):
    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.clusters: dict[str, dict[str, Any]] = {}

    @operation
    def list_clusters(self, nextToken: str | None = None) -> dict[str, Any]:
        return {
            "clusters": [
                {"identifier": c["identifier"], "arn": c["arn"]}
                for c in self.clusters.values()
            ]
        }

    @operation
    def get_cluster(self, identifier: str) -> dict[str, Any]:
        if identifier not in self.clusters:
            raise make_client_error("ResourceNotFoundException", "GetCluster", 404)
        return dict(self.clusters[identifier])

    @operation
    def create_cluster(self, deletionProtectionEnabled: bool, tags: dict[str, str]) -> dict[str, Any]:
        identifier = self.next_id("abcdefghij")
        self.clusters[identifier] = {
            "identifier": identifier,
            "arn": self.arn("dsql", f"cluster/{identifier}"),
            "status": "ACTIVE",
            "tags": dict(tags),
        }
        return {"identifier": identifier, "arn": self.clusters[identifier]["arn"]}

    @operation
    def delete_cluster(self, identifier: str) -> dict[str, Any]:
        if identifier not in self.clusters:
            raise make_client_error("ResourceNotFoundException", "DeleteCluster", 404)
        del self.clusters[identifier]
        return {}


class FakeAcm(FakeService):
    """Certificates stay PENDING_VALIDATION until ``issue()`` is called."""

    def __init__(self, aws: FakeAws) -> None:
        super().__init__(aws)
        self.certificates: dict[str, dict[str, Any]] = {}
        self.publish_records = True

    def issue(self, domain: str, status: str = "ISSUED") -> None:
        for certificate in self.certificates.values():
            if certificate["DomainName"] == domain:
                certificate["Status"] = status

    @operation
    def list_certificates(self, NextToken: str | None = None) -> dict[str, Any]:
        return {
            "CertificateSummaryList": [
                {"CertificateArn": arn, "DomainName": c["DomainName"]}
                for arn, c in self.certificates.items()
            ]
        }

    @operation
    def request_certificate(self, DomainName: str, ValidationMethod: str) -> dict[str, Any]:
        arn = f"arn:aws:acm:us-east-1:{self.aws.account_id}:certificate/{self.next_id('cert-')}"
        self.certificates[arn] = {"DomainName": DomainName, "Status": "PENDING_VALIDATION"}
        return {"CertificateArn": arn}

    @operation
    def describe_certificate(self, CertificateArn: str) -> dict[str, Any]:
        certificate = dict(self.certificates[CertificateArn])
        option: dict[str, Any] = {"DomainName": certificate["DomainName"]}
        if self.publish_records:
            option["ResourceRecord"] = {
                "Name": f"_x1.{certificate['DomainName']}.",
                "Type": "CNAME",
                "Value": "_x2.acm-validations.aws.",
            }
        certificate["DomainValidationOptions"] = [option]
        return {"Certificate": certificate}


class FakeAws:
    """Drop-in replacement for ``ClientFactory`` backed by in-memory fakes."""

    SERVICES: dict[str, type[FakeService]] = {
        "s3": FakeS3,
        "sts": FakeSts,
        "iam": FakeIam,
        "lambda": FakeLambda,
        "dynamodb": FakeDynamoDB,
        "apigateway": FakeApiGateway,
        "sqs": FakeSqs,
        "events": FakeEvents,
        "secretsmanager": FakeSecretsManager,
        "ssm": FakeSsm,
        "dsql": FakeDsql,
        "acm": FakeAcm,
    }

    def __init__(self, account_id: str = ACCOUNT_ID, region: str = REGION) -> None:
        self.account_id = account_id
        self.region = region
        self.requested: list[tuple[str, str | None]] = []
        self._services = {name: cls(self) for name, cls in self.SERVICES.items()}

    def client(self, service: str, region: str | None = None) -> Any:
        self.requested.append((service, region))
        return self._services[service]

    def close(self) -> None:
        pass

    def __getitem__(self, service: str) -> Any:
        return self._services[service]


class StaticBundler:
    """Bundler returning fixed bytes without touching the filesystem."""

    def __init__(self) -> None:
        self.sources: list[Path] = []

    def bundle(self, source: Path) -> bytes:
        self.sources.append(source)
        return b"PK\x05\x06" + b"\x00" * 18


@pytest.fixture
def aws() -> FakeAws:
    """In-memory AWS shared by every client a test asks for."""
    return FakeAws()


@pytest.fixture
def client_error() -> Callable[..., ClientError]:
    """Factory for provider errors: ``client_error(code, operation, status)``."""
    return make_client_error


@pytest.fixture
def fast_polling() -> PollingConfig:
    """Poll policies that never sleep and give up after three attempts."""
    policy = PollPolicy(interval=0, max_attempts=3)
    return PollingConfig(**{name: policy for name in PollingConfig.model_fields})


@pytest.fixture
def context(aws: FakeAws, fast_polling: PollingConfig) -> ResourceContext:
    """Resource context wired to the fake AWS with the account resolved."""
    return ResourceContext(
        clients=aws,  # type: ignore[arg-type]
        region=REGION,
        account_id=ACCOUNT_ID,
        polling=fast_polling,
        sleep=lambda _: None,
    )


@pytest.fixture
def bundler() -> StaticBundler:
    return StaticBundler()


@pytest.fixture
def profile() -> BackendProfile:
    return BackendProfile(bucket="nimbus-state", region=REGION)


@pytest.fixture
def state_manager(aws: FakeAws, profile: BackendProfile) -> StateManager:
    """State manager for project ``shop``, stage ``dev``."""
    backend = S3StateBackend(profile, "shop", aws)  # type: ignore[arg-type]
    return StateManager(
        backend,
        "shop",
        "dev",
        REGION,
        lock_policy=PollPolicy(interval=0, max_attempts=2),
        owner="tester@ci",
    )


@pytest.fixture
def app(
    aws: FakeAws,
    fast_polling: PollingConfig,
    state_manager: StateManager,
    bundler: StaticBundler,
) -> Nimbus:
    """Empty ``shop`` project on stage ``dev`` wired to the fake AWS."""
    return Nimbus(
        "shop",
        stage="dev",
        region=REGION,
        polling=fast_polling,
        clients=aws,  # type: ignore[arg-type]
        state=state_manager,
        bundler=bundler,
        sleep=lambda _: None,
    )


@pytest.fixture
def stored_state(aws: FakeAws, profile: BackendProfile) -> Callable[[], dict[str, Any]]:
    """Read back the raw state document of project ``shop``."""

    def read() -> dict[str, Any]:
        body = aws["s3"].objects.get((profile.bucket, "shop.state.json"))
        return json.loads(body) if body else {}

    return read


@pytest.fixture
def isolated_env() -> Generator[dict[str, str]]:
    """Provide isolated environment variables for testing.

    Yields:
        Dictionary of original environment variables

    Cleanup:
        Restores original environment after test
    """
    original_env = os.environ.copy()
    yield original_env
    os.environ.clear()
    os.environ.update(original_env)
