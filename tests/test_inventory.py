# tests/test_inventory.py
"""
Inventory providers: the dummy JSON provider, and the live ARM provider with mocked SDK client and HTTP session.
"""

import threading
from types import SimpleNamespace
from unittest import mock

import pytest
import requests
from azure.core.exceptions import HttpResponseError

from config import ARM_ENDPOINT, ARM_SCOPE
from scanner.inventory import (
    AzureInventoryProvider,
    InventoryError,
    JsonInventoryProvider,
    resource_type_from_id,
)
from factories import SUB, arm_id, resource

VNET = "Microsoft.Network/virtualNetworks"
VNET_ID = arm_id(VNET, "vnet-1")


def test_resource_type_from_id():
    assert resource_type_from_id(VNET_ID) == VNET
    assert resource_type_from_id(f"{VNET_ID}/subnets") == "Microsoft.Network/virtualNetworks/subnets"
    site = arm_id("Microsoft.Web/sites", "app")
    assert resource_type_from_id(f"{site}/config/web") == "Microsoft.Web/sites/config"
    diag = f"{site}/providers/Microsoft.Insights/diagnosticSettings"
    assert resource_type_from_id(diag) == "Microsoft.Insights/diagnosticSettings"
    assert resource_type_from_id("/subscriptions/x") == ""


def test_json_provider_filters_by_type_case_insensitively():
    provider = JsonInventoryProvider({"resources": [
        resource(VNET, "vnet-1"),
        resource("Microsoft.Compute/disks", "disk-1"),
    ]})
    assert [r["name"] for r in provider.list_resources("microsoft.network/VIRTUALNETWORKS")] == ["vnet-1"]
    assert len(list(provider.list_resources())) == 2


def test_json_provider_prefers_details_and_returns_copies():
    vnet = resource(VNET, "vnet-1", dhcpOptions={"dnsServers": []})
    provider = JsonInventoryProvider({
        "resources": [vnet],
        "details": {VNET_ID.upper(): {"id": VNET_ID, "properties": {"dhcpOptions": {"dnsServers": ["10.0.0.4"]}}}},
    })
    detail = provider.get_resource(VNET_ID)
    assert detail["properties"]["dhcpOptions"]["dnsServers"] == ["10.0.0.4"]
    detail["properties"]["dhcpOptions"]["dnsServers"].append("mutated")
    assert provider.get_resource(VNET_ID)["properties"]["dhcpOptions"]["dnsServers"] == ["10.0.0.4"]

    with pytest.raises(InventoryError):
        provider.get_resource(arm_id(VNET, "missing"))


def test_json_provider_failures_raise_lazily():
    provider = JsonInventoryProvider({"resources": [], "failures": {VNET: "boom"}})
    listing = provider.list_resources(VNET)
    with pytest.raises(InventoryError, match="boom"):
        list(listing)


def test_json_provider_get_properties_matches_group_and_name():
    disk = resource("Microsoft.Compute/disks", "disk-1", rg="rg-a", publicNetworkAccess="Enabled")
    provider = JsonInventoryProvider({"subscriptionId": SUB, "resources": [disk]})
    found = provider.get_properties("Microsoft.Compute/disks", "RG-A", "disk-1")
    assert found["properties"]["publicNetworkAccess"] == "Enabled"
    with pytest.raises(InventoryError):
        provider.get_properties("Microsoft.Compute/disks", "rg-b", "disk-1")


def _response(payload=None, error=None):
    resp = mock.MagicMock()
    resp.json.return_value = payload or {}
    if error is not None:
        resp.raise_for_status.side_effect = error
    return resp


def _provider(session=None, resource_client=None):
    credential = mock.MagicMock()
    credential.get_token.return_value = SimpleNamespace(token="tok")
    return AzureInventoryProvider(
        credential,
        SUB,
        session=session or mock.MagicMock(),
        resource_client=resource_client or mock.MagicMock(),
    ), credential


def test_azure_list_resources_filters_by_type():
    item = mock.MagicMock()
    item.serialize.return_value = {"id": "/x", "name": "disk-1", "type": "Microsoft.Compute/disks"}
    client = mock.MagicMock()
    client.resources.list.return_value = [item]
    provider, _ = _provider(resource_client=client)

    assert list(provider.list_resources("Microsoft.Compute/disks")) == [item.serialize.return_value]
    client.resources.list.assert_called_once_with(filter="resourceType eq 'Microsoft.Compute/disks'")
    item.serialize.assert_called_once_with(keep_readonly=True)


def test_azure_list_resources_wraps_sdk_errors():
    client = mock.MagicMock()
    client.resources.list.side_effect = HttpResponseError(message="forbidden")
    provider, _ = _provider(resource_client=client)
    with pytest.raises(InventoryError, match="forbidden"):
        list(provider.list_resources(VNET))


def test_azure_list_children_follows_next_link():
    next_link = f"{ARM_ENDPOINT}{VNET_ID}/subnets?api-version=2023-09-01&$skiptoken=abc"
    session = mock.MagicMock()
    session.get.side_effect = [
        _response({"value": [{"name": "a"}], "nextLink": next_link}),
        _response({"value": [{"name": "b"}]}),
    ]
    provider, credential = _provider(session=session)

    assert [s["name"] for s in provider.list_children(VNET_ID, "subnets")] == ["a", "b"]
    first, second = session.get.call_args_list
    assert first.args[0] == f"{ARM_ENDPOINT}{VNET_ID}/subnets"
    assert first.kwargs["params"] == {"api-version": "2023-09-01"}
    assert first.kwargs["headers"] == {"Authorization": "Bearer tok"}
    assert second.args[0] == next_link
    assert second.kwargs["params"] is None
    credential.get_token.assert_called_with(ARM_SCOPE)


def test_azure_http_errors_become_inventory_errors():
    session = mock.MagicMock()
    session.get.return_value = _response(error=requests.HTTPError("404 Client Error"))
    provider, _ = _provider(session=session)
    with pytest.raises(InventoryError, match="404"):
        provider.get_resource(VNET_ID)


def test_azure_diagnostic_settings_path():
    session = mock.MagicMock()
    session.get.return_value = _response({"value": [{"name": "to-law"}]})
    provider, _ = _provider(session=session)

    assert provider.list_diagnostic_settings(VNET_ID) == [{"name": "to-law"}]
    call = session.get.call_args
    assert call.args[0] == f"{ARM_ENDPOINT}{VNET_ID}/providers/Microsoft.Insights/diagnosticSettings"
    assert call.kwargs["params"] == {"api-version": "2021-05-01-preview"}


def test_azure_unknown_type_resolves_stable_api_version_once():
    client = mock.MagicMock()
    client.providers.get.return_value = SimpleNamespace(resource_types=[
        SimpleNamespace(resource_type="widgets", api_versions=["2024-01-01-preview", "2023-05-01"]),
    ])
    session = mock.MagicMock()
    session.get.return_value = _response({"id": "w"})
    provider, _ = _provider(session=session, resource_client=client)
    widget = arm_id("Contoso.Things/widgets", "w1")

    provider.get_resource(widget)
    provider.get_resource(widget)

    assert session.get.call_args.kwargs["params"] == {"api-version": "2023-05-01"}
    client.providers.get.assert_called_once_with("contoso.things")


def test_azure_provider_uses_one_session_per_thread():
    provider = AzureInventoryProvider(mock.MagicMock(), SUB, resource_client=mock.MagicMock())
    main_session = provider._thread_session()
    assert provider._thread_session() is main_session

    seen = []
    worker = threading.Thread(target=lambda: seen.append(provider._thread_session()))
    worker.start()
    worker.join()
    assert isinstance(seen[0], requests.Session)
    assert seen[0] is not main_session


def test_azure_api_version_lookup_is_shared_across_threads():
    client = mock.MagicMock()
    client.providers.get.return_value = SimpleNamespace(resource_types=[
        SimpleNamespace(resource_type="widgets", api_versions=["2023-05-01"]),
    ])
    session = mock.MagicMock()
    session.get.return_value = _response({"id": "w"})
    provider, _ = _provider(session=session, resource_client=client)
    widget = arm_id("Contoso.Things/widgets", "w1")

    workers = [threading.Thread(target=provider.get_resource, args=(widget,)) for _ in range(4)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()

    client.providers.get.assert_called_once_with("contoso.things")
