# tests/test_network_controls.py
"""
Network controls against the dummy inventory: public IPs, VNet DNS, peering and subnet NSGs.
"""

import pytest

from config import ScanConfig
from models import COMPLY, ERROR_DURING_CHECK, NOT_COMPLY, STATUS_FAIL, STATUS_PASS
from scanner.azure_network import (
    PUBLIC_IP_TYPE,
    SUBNET_TYPE,
    VNET_TYPE,
    check_public_ips,
    check_subnets_nsg,
    check_vnet_dns,
    check_vnet_peering,
    missing_dns_servers,
    missing_peers,
)
from factories import arm_id, context_for, resource

HUB_ID = arm_id(VNET_TYPE, "vnet-hub", rg="rg-hub")


def test_public_ip_with_address_is_violation():
    data = {"resources": [
        resource(PUBLIC_IP_TYPE, "pip-web", rg="rg-net", ipAddress="20.1.1.1"),
        resource(PUBLIC_IP_TYPE, "pip-unassigned", rg="rg-net"),
    ]}
    result = check_public_ips(context_for(data))

    assert result.status == STATUS_FAIL
    assert [s.name for s in result.scanned_resources] == ["pip-web", "pip-unassigned"]
    assert result.scanned_resources[0].remark == NOT_COMPLY
    assert result.scanned_resources[1].remark == COMPLY
    assert len(result.violating_resources) == 1
    v = result.violating_resources[0]
    assert v.resource_group == "rg-net"
    assert "20.1.1.1" in v.reason
    assert result.reason == "1 public IP(s) detected."


def test_no_public_ips_passes_with_empty_lists():
    result = check_public_ips(context_for({"resources": []}))
    assert result.status == STATUS_PASS
    assert result.scanned_resources == ()
    assert result.violating_resources == ()
    assert result.reason == "No public IP addresses found in the subscription."


def test_public_ip_control_does_not_leak_between_runs():
    ctx = context_for({"resources": [resource(PUBLIC_IP_TYPE, "pip-1", ipAddress="1.2.3.4")]})
    first = check_public_ips(ctx)
    second = check_public_ips(ctx)
    assert len(first.scanned_resources) == len(second.scanned_resources) == 1
    assert len(second.violating_resources) == 1


def test_vnet_missing_expected_dns_ip():
    config = ScanConfig(expected_dns={"dev": ("10.0.0.4", "10.0.0.5")})
    data = {"resources": [resource(VNET_TYPE, "vnet-app", dhcpOptions={"dnsServers": ["10.0.0.4"]})]}
    result = check_vnet_dns(context_for(data, config=config))

    assert result.status == STATUS_FAIL
    assert result.policy == "Ensure VNETs use correct DNS IPs [dev]"
    assert "Missing expected DNS IP(s): 10.0.0.5" in result.violating_resources[0].reason
    scanned = result.scanned_resources[0]
    assert scanned.remark.startswith(NOT_COMPLY)
    assert "10.0.0.5" in scanned.remark
    assert scanned.attributes["dnsServers"] == "10.0.0.4"


def test_vnet_dns_superset_complies_and_env_is_case_insensitive():
    config = ScanConfig(expected_dns={"dev": ("10.0.0.4",)})
    data = {"resources": [resource(VNET_TYPE, "vnet-app", dhcpOptions={"dnsServers": ["10.0.0.4", "10.0.0.9"]})]}
    result = check_vnet_dns(context_for(data, environment="DEV", config=config))
    assert result.status == STATUS_PASS
    assert result.scanned_resources[0].remark == COMPLY
    assert "10.0.0.4" in result.reason


def test_vnet_dns_requires_environment():
    with pytest.raises(ValueError):
        check_vnet_dns(context_for({"resources": []}, environment=""))


def test_missing_dns_servers_keeps_expected_order():
    assert missing_dns_servers(["10.0.0.5"], ["10.0.0.4", "10.0.0.5", "10.0.0.6"]) == ["10.0.0.4", "10.0.0.6"]
    assert missing_dns_servers([], []) == []


def test_vnet_peering_missing_required_peer():
    config = ScanConfig(expected_peers={"dev": (HUB_ID,)})
    spoke_a = resource(VNET_TYPE, "vnet-a")
    spoke_b = resource(VNET_TYPE, "vnet-b")
    data = {
        "resources": [spoke_a, spoke_b],
        "children": {
            f"{spoke_a['id']}/virtualNetworkPeerings": [
                {"name": "to-hub", "properties": {"remoteVirtualNetwork": {"id": HUB_ID.upper()}}},
            ],
        },
    }
    result = check_vnet_peering(context_for(data, config=config))

    assert result.status == STATUS_FAIL
    assert [s.remark for s in result.scanned_resources] == [COMPLY, NOT_COMPLY]
    assert len(result.violating_resources) == 1
    assert result.violating_resources[0].name == "vnet-b"
    assert result.violating_resources[0].reason == f"Missing peering with: {HUB_ID}"


def test_vnet_peering_error_is_isolated_to_one_vnet():
    config = ScanConfig(expected_peers={"dev": (HUB_ID,)})
    spoke_a = resource(VNET_TYPE, "vnet-a")
    spoke_b = resource(VNET_TYPE, "vnet-b")
    data = {
        "resources": [spoke_a, spoke_b],
        "children": {
            f"{spoke_b['id']}/virtualNetworkPeerings": [
                {"properties": {"remoteVirtualNetwork": {"id": HUB_ID}}},
            ],
        },
        "failures": {f"{spoke_a['id']}/virtualNetworkPeerings": "peering API timeout"},
    }
    result = check_vnet_peering(context_for(data, config=config))

    assert [s.remark for s in result.scanned_resources] == [ERROR_DURING_CHECK, COMPLY]
    assert len(result.violating_resources) == 1
    assert result.violating_resources[0].reason == "Error: peering API timeout"


def test_missing_peers_ignores_case():
    assert missing_peers(["/A/B"], ["/a/b", "/c"]) == ["/c"]


def test_subnets_without_nsg_are_flagged():
    vnet = resource(VNET_TYPE, "vnet-app", rg="rg-net")
    nsg_id = arm_id("Microsoft.Network/networkSecurityGroups", "nsg-app", rg="rg-net")
    data = {
        "resources": [vnet],
        "children": {
            f"{vnet['id']}/subnets": [
                {"name": "app", "type": SUBNET_TYPE, "properties": {"networkSecurityGroup": {"id": nsg_id}}},
                {"name": "data", "type": SUBNET_TYPE, "properties": {"networkSecurityGroup": {"id": "   "}}},
                {"name": "mgmt", "type": SUBNET_TYPE, "properties": {}},
            ],
        },
    }
    result = check_subnets_nsg(context_for(data))

    assert result.status == STATUS_FAIL
    assert len(result.scanned_resources) == 3
    assert [v.name for v in result.violating_resources] == ["data", "mgmt"]
    assert all(v.reason == "No NSG associated" for v in result.violating_resources)
    assert result.violating_resources[0].resource_group == "rg-net"
    assert result.scanned_resources[0].attributes["nsg"] == nsg_id
    assert result.reason == "2 subnet(s) are missing NSG association."


def test_subnet_listing_failure_does_not_stop_other_vnets():
    broken = resource(VNET_TYPE, "vnet-broken")
    healthy = resource(VNET_TYPE, "vnet-ok")
    data = {
        "resources": [broken, healthy],
        "children": {
            f"{healthy['id']}/subnets": [
                {"name": "app", "properties": {"networkSecurityGroup": {"id": "/nsg/1"}}},
            ],
        },
        "failures": {f"{broken['id']}/subnets": "forbidden"},
    }
    result = check_subnets_nsg(context_for(data))

    assert [s.name for s in result.scanned_resources] == ["vnet-broken", "app"]
    assert result.scanned_resources[0].remark == ERROR_DURING_CHECK
    assert len(result.violating_resources) == 1
    assert result.violating_resources[0].reason == "Error: forbidden"
