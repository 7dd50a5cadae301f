"""
Tests for Entitlements service endpoints.
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from service_entitlements.app.main import create_app
from shared.config import get_config
from shared.test_helpers import (
    NFT_ADDRESS, TOKEN_ADDRESS, MockRpcNetwork, MockRpcNode, TestDataFactory, TestEnvironment,
)


@pytest.fixture
def nodes():
    return {TestEnvironment.PRIMARY_RPC: MockRpcNode(), TestEnvironment.FALLBACK_RPC: MockRpcNode()}


@pytest.fixture
def wallet():
    return TestDataFactory.create_wallet(5)


@pytest.fixture
def files(tmp_path, wallet):
    policies = tmp_path / "policies.json"
    policies.write_text(json.dumps(TestDataFactory.create_policy_document()))
    allowlists = tmp_path / "allowlists.json"
    allowlists.write_text(json.dumps({"allowlists": {"vip": [wallet.address]}}))
    return {"policies_file": str(policies), "allowlists_file": str(allowlists)}


@pytest.fixture
def client(nodes, files):
    config = get_config("entitlements", 8011, **TestEnvironment.get_mock_config(), **files)
    http_client = httpx.AsyncClient(transport=MockRpcNetwork(nodes).transport())
    with TestClient(create_app(config, http_client=http_client)) as test_client:
        yield test_client


def test_root_endpoint(client):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["service"] == "entitlements"


def test_health_reports_chains_and_policies(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["dependencies"] == {"chains": "1", "policies": "2"}


def test_list_policies(client):
    response = client.get("/entitlements/policies")
    assert response.json() == {"policies": ["holders", "members"]}


def test_evaluate_granted(client, nodes, wallet):
    nodes[TestEnvironment.PRIMARY_RPC].set_balance(TOKEN_ADDRESS, wallet.address, 10 ** 18)

    response = client.post("/entitlements/evaluate", json={"policy": "holders", "address": wallet.address})

    assert response.status_code == 200
    data = response.json()
    assert data["granted"] is True
    assert data["address"] == wallet.lower
    assert data["outcomes"][0]["type"] == "erc20_min_balance"


def test_evaluate_denied(client, wallet):
    response = client.post("/entitlements/evaluate", json={"policy": "holders", "address": wallet.lower})

    assert response.status_code == 200
    assert response.json()["granted"] is False


def test_evaluate_allowlisted_member(client, nodes, wallet):
    nodes[TestEnvironment.PRIMARY_RPC].set_owner(NFT_ADDRESS, 7, "0x" + "9" * 40)

    response = client.post("/entitlements/evaluate", json={"policy": "members", "address": wallet.lower, "chainId": 1})

    assert response.json()["granted"] is True


def test_evaluate_unknown_policy(client, wallet):
    response = client.post("/entitlements/evaluate", json={"policy": "nope", "address": wallet.lower})

    assert response.status_code == 404
    assert response.json()["code"] == "POLICY_NOT_FOUND"


def test_evaluate_invalid_address(client):
    response = client.post("/entitlements/evaluate", json={"policy": "holders", "address": "0x12"})

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid address", "code": "INVALID_ADDRESS"}


def test_evaluate_rpc_unavailable(client, nodes, wallet):
    for node in nodes.values():
        node.down = True

    response = client.post("/entitlements/evaluate", json={"policy": "holders", "address": wallet.lower})

    assert response.status_code == 503
    assert response.json() == {"error": "Policy evaluation unavailable", "code": "POLICY_UNAVAILABLE"}
    assert "rpc.test" not in response.text


def test_reload_policies(client, files):
    with open(files["policies_file"], "w", encoding="utf-8") as f:
        json.dump({"policies": [{"name": "solo", "rules": [{"type": "has_scope", "scope": "auth"}]}]}, f)

    response = client.post("/entitlements/policies/reload")

    assert response.json() == {"reloaded": 1}
    assert client.get("/entitlements/policies").json() == {"policies": ["solo"]}


def test_reload_with_broken_file_keeps_policies(client, files):
    with open(files["policies_file"], "w", encoding="utf-8") as f:
        f.write("{broken")

    response = client.post("/entitlements/policies/reload")

    assert response.status_code == 500
    assert response.json()["code"] == "POLICY_CONFIG_ERROR"
    assert client.get("/entitlements/policies").json() == {"policies": ["holders", "members"]}


def test_stats(client, wallet):
    client.post("/entitlements/evaluate", json={"policy": "holders", "address": wallet.lower})

    data = client.get("/entitlements/stats").json()

    assert data["engine"]["evaluations"] == 1
    assert data["cache"]["misses"] == 1
    assert "chain-1-primary" in data["circuit_breakers"]
