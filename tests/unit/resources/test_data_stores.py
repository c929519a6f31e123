"""Unit tests for tables, clusters and buckets."""

from __future__ import annotations

import re
from typing import Any

import pytest

from nimbus.lib.errors import DeploymentError, ForceRequiredError
from nimbus.models.state import ResourceKind
from nimbus.resources import KvTable, SqlCluster, StorageBucket
from nimbus.resources.base import ResourceContext
from nimbus.resources.sql import MANAGED_BY
from nimbus.resources.storage import unique_bucket_name


class TestKvTable:
    """Tests for KvTable."""

    def test_create_with_sort_key_and_encryption(self, aws: Any, context: ResourceContext) -> None:
        """Keys are strings and encryption uses the DynamoDB KMS alias."""
        KvTable("dev-users", context, sort_key="created").provision()

        table = aws["dynamodb"].tables["dev-users"]
        assert [k["KeyType"] for k in table["KeySchema"]] == ["HASH", "RANGE"]
        assert table["BillingMode"] == "PAY_PER_REQUEST"
        assert table["SSESpecification"]["KMSMasterKeyId"] == "alias/aws/dynamodb"

    def test_provision_is_idempotent(self, aws: Any, context: ResourceContext) -> None:
        """A second provision finds the table."""
        KvTable("dev-users", context).provision()
        table = KvTable("dev-users", context)

        table.provision()

        assert len(aws["dynamodb"].called("create_table")) == 1
        assert table.identifier() == aws["dynamodb"].tables["dev-users"]["TableArn"]

    def test_point_in_time_recovery(self, aws: Any, context: ResourceContext) -> None:
        """PITR is enabled after creation when requested."""
        KvTable("dev-users", context, point_in_time_recovery=True).provision()

        assert aws["dynamodb"].tables["dev-users"]["pitr"] == {"PointInTimeRecoveryEnabled": True}

    def test_pitr_failure_propagates(self, aws: Any, context: ResourceContext) -> None:
        """Backup configuration errors fail the provision."""
        aws["dynamodb"].fail("update_continuous_backups", "AccessDeniedException")

        with pytest.raises(DeploymentError):
            KvTable("dev-users", context, point_in_time_recovery=True).provision()

    def test_grants_cover_indexes(self, context: ResourceContext) -> None:
        """Grants include the table's indexes."""
        grant = KvTable("dev-users", context).permission_grants()[0]

        assert grant.resource[1].endswith("table/dev-users/index/*")

    def test_destroy_requires_force(self, aws: Any, context: ResourceContext) -> None:
        """Tables are stateful; no call is made without force."""
        table = KvTable("dev-users", context)
        table.provision()

        with pytest.raises(ForceRequiredError):
            table.destroy()

        assert aws["dynamodb"].called("delete_table") == []
        table.destroy(force=True)
        table.destroy(force=True)
        assert "dev-users" not in aws["dynamodb"].tables


class TestSqlCluster:
    """Tests for SqlCluster."""

    def test_create_tags_and_bindings(self, aws: Any, context: ResourceContext) -> None:
        """New clusters are tagged and expose connection bindings."""
        cluster = SqlCluster("dev-catalog", context, schema="catalog")

        cluster.provision()

        stored = aws["dsql"].clusters[cluster.cluster_id]
        assert stored["tags"] == {"Name": "dev-catalog", "ManagedBy": MANAGED_BY}
        env = cluster.environment_bindings()
        assert env["SQL_DEV_CATALOG_ENDPOINT"] == f"{cluster.cluster_id}.dsql.us-east-1.on.aws"
        assert env["SQL_DEV_CATALOG_DB_ROLE"] == "lambda_catalog"
        assert cluster.permission_grants()[0].resource == stored["arn"]

    def test_existing_cluster_found_by_tags(self, aws: Any, context: ResourceContext) -> None:
        """A second provision reuses the tagged cluster."""
        SqlCluster("dev-catalog", context).provision()
        cluster = SqlCluster("dev-catalog", context)

        cluster.provision()

        assert len(aws["dsql"].called("create_cluster")) == 1
        assert cluster.cluster_id in aws["dsql"].clusters

    def test_teardown_without_identifier_looks_up_cluster(self, aws: Any, context: ResourceContext) -> None:
        """Records lacking an identifier are resolved through tags."""
        SqlCluster("dev-catalog", context).provision()

        SqlCluster("dev-catalog", context).destroy(force=True)

        assert aws["dsql"].clusters == {}

    def test_destroy_twice_with_recorded_identifier(self, aws: Any, context: ResourceContext) -> None:
        """A cluster rebuilt from state is deleted once; the second run is a no-op."""
        cluster = SqlCluster("dev-catalog", context)
        cluster.provision()
        rebuilt = SqlCluster.from_record(cluster.to_record(), context)

        rebuilt.destroy(force=True)
        rebuilt.destroy(force=True)

        assert aws["dsql"].clusters == {}
        assert [c["identifier"] for c in aws["dsql"].called("delete_cluster")] == [
            cluster.cluster_id,
            cluster.cluster_id,
        ]

    def test_record_round_trip(self, context: ResourceContext) -> None:
        """Rebuilt clusters keep their identifier and schema."""
        cluster = SqlCluster("dev-catalog", context, schema="catalog")
        cluster.cluster_id = "abc"
        record = cluster.to_record()

        rebuilt = SqlCluster.from_record(record, context)

        assert record.kind is ResourceKind.SQL
        assert rebuilt.cluster_id == "abc"
        assert rebuilt.schema == "catalog"


class TestStorageBucket:
    """Tests for StorageBucket."""

    def test_unique_name_suffix(self) -> None:
        """Generated names end with a timestamp."""
        assert re.fullmatch(r"dev-assets-\d{8}-\d{6}", unique_bucket_name("dev-assets"))

    def test_create_outside_us_east_1(self, aws: Any, context: ResourceContext) -> None:
        """Other regions need a location constraint."""
        context.region = "eu-west-1"
        bucket = StorageBucket("dev-assets", context, versioning=True, bucket_name="dev-assets-x")

        bucket.provision()

        stored = aws["s3"].buckets["dev-assets-x"]
        assert stored["CreateBucketConfiguration"] == {"LocationConstraint": "eu-west-1"}
        assert stored["versioning"] == "Enabled"

    def test_bindings_use_base_name(self, context: ResourceContext) -> None:
        """Binding keys do not carry the timestamp suffix."""
        bucket = StorageBucket("dev-assets", context, bucket_name="dev-assets-20240101-101010")

        assert bucket.environment_bindings() == {
            "STORAGE_DEV_ASSETS": "dev-assets-20240101-101010",
            "STORAGE_DEV_ASSETS_ARN": "arn:aws:s3:::dev-assets-20240101-101010",
        }

    def test_destroy_empties_bucket(self, aws: Any, context: ResourceContext) -> None:
        """Objects are deleted before the bucket."""
        bucket = StorageBucket("dev-assets", context, bucket_name="dev-assets-x")
        bucket.provision()
        aws["s3"].objects[("dev-assets-x", "a.txt")] = b"a"

        bucket.destroy(force=True)

        assert "dev-assets-x" not in aws["s3"].buckets
        assert ("dev-assets-x", "a.txt") not in aws["s3"].objects

    def test_provision_is_idempotent(self, aws: Any, context: ResourceContext) -> None:
        """A second provision finds the bucket by its recorded name."""
        StorageBucket("dev-assets", context, bucket_name="dev-assets-x").provision()

        StorageBucket("dev-assets", context, bucket_name="dev-assets-x").provision()

        assert len(aws["s3"].called("create_bucket")) == 1
        assert list(aws["s3"].buckets) == ["dev-assets-x"]

    def test_destroy_twice(self, aws: Any, context: ResourceContext) -> None:
        """Destroying a bucket that is already gone succeeds."""
        bucket = StorageBucket("dev-assets", context, bucket_name="dev-assets-x")
        bucket.provision()

        bucket.destroy(force=True)
        bucket.destroy(force=True)

        assert aws["s3"].buckets == {}
        assert len(aws["s3"].called("delete_bucket")) == 1

    def test_from_record_restores_bucket_name(self, context: ResourceContext) -> None:
        """The suffixed name comes back from the record."""
        record = StorageBucket("dev-assets", context, bucket_name="dev-assets-x").to_record()

        assert StorageBucket.from_record(record, context).bucket_name == "dev-assets-x"
