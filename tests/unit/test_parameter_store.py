"""Unit tests for the parameter store handle."""
import pytest
from botocore.exceptions import ClientError
from unittest.mock import MagicMock

from infra_reconcile.state.parameter_store import ParameterStore, backend_parameter, project_parameter


def test_parameter_names():
    assert backend_parameter("dev", "state_bucket") == "/terraform/dev/state_bucket"
    assert project_parameter("neo4j-demos", "dev", "domain-name") == "/neo4j-demos/dev/domain-name"


def test_get_missing_returns_none(session):
    store = ParameterStore(session.client("ssm"))

    assert store.get("/neo4j-demos/dev/nothing") is None
    assert not store.exists("/neo4j-demos/dev/nothing")


def test_put_overwrites(session):
    store = ParameterStore(session.client("ssm"))

    store.put("/neo4j-demos/dev/app-replicas", "1")
    store.put("/neo4j-demos/dev/app-replicas", "3")

    assert store.get("/neo4j-demos/dev/app-replicas") == "3"


def test_put_secure_string(session):
    ssm = session.client("ssm")
    store = ParameterStore(ssm)

    store.put("/neo4j-demos/dev/neo4j-password", "s3cret", secure=True)

    parameter = ssm.get_parameter(Name="/neo4j-demos/dev/neo4j-password", WithDecryption=True)["Parameter"]
    assert parameter["Type"] == "SecureString"
    assert store.get("/neo4j-demos/dev/neo4j-password", decrypt=True) == "s3cret"


def test_get_propagates_other_errors():
    client = MagicMock()
    client.get_parameter.side_effect = ClientError(
        {"Error": {"Code": "AccessDeniedException", "Message": "denied"}}, "GetParameter"
    )

    with pytest.raises(ClientError):
        ParameterStore(client).get("/terraform/dev/state_bucket")
