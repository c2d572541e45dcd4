# scanner/azure_network.py
"""
Network controls.

- check_public_ips: no public IP address may hold an address
- check_vnet_dns: every VNet uses the environment's DNS servers
- check_vnet_peering: every VNet is peered with the environment's required remote VNets
- check_subnets_nsg: every subnet has an NSG associated
Each control returns one ControlResult; a failing resource never stops the others.
"""

from typing import Iterable, List

from models import ControlResult, ScanContext, ScannedResource, ViolatingResource
from scanner.base import prop, remark, resource_error
from utils import extract_resource_group

PUBLIC_IP_TYPE = "Microsoft.Network/publicIPAddresses"
VNET_TYPE = "Microsoft.Network/virtualNetworks"
SUBNET_TYPE = "Microsoft.Network/virtualNetworks/subnets"

# --- Pure rule helpers -----------------------------------------------------

def missing_dns_servers(actual: Iterable[str], expected: Iterable[str]) -> List[str]:
    """Expected DNS IPs absent from the VNet's configuration, in expected order."""
    actual_set = {ip.strip() for ip in actual or []}
    return [ip for ip in expected if ip not in actual_set]


def missing_peers(peered_ids: Iterable[str], required_ids: Iterable[str]) -> List[str]:
    """Required remote VNet ids with no peering. ARM ids compare case-insensitively."""
    peered = {pid.lower() for pid in peered_ids if pid}
    return [rid for rid in required_ids if rid.lower() not in peered]


def nsg_is_associated(subnet: dict) -> bool:
    nsg_id = prop(subnet, "networkSecurityGroup", "id", default="")
    return bool(str(nsg_id).strip())

# --- Controls ---------------------------------------------------------------

def check_public_ips(context: ScanContext) -> ControlResult:
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for ip in context.inventory.list_resources(PUBLIC_IP_TYPE):
        try:
            address = prop(context.inventory.get_resource(ip["id"]), "ipAddress")
            scanned.append(ScannedResource(
                resource_type=ip.get("type", PUBLIC_IP_TYPE),
                name=ip["name"],
                attributes={"ipAddress": address or "None"},
                remark=remark(not address),
            ))
            if address:
                violations.append(ViolatingResource(
                    resource_type=ip.get("type", PUBLIC_IP_TYPE),
                    name=ip["name"],
                    resource_id=ip.get("id"),
                    resource_group=extract_resource_group(ip.get("id")),
                    attributes={"ipAddress": address},
                    reason=f"Public IP address {address} is assigned",
                ))
        except Exception as e:
            s, v = resource_error(ip, e, PUBLIC_IP_TYPE)
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        "Ensure no Public IP exists",
        scanned,
        violations,
        pass_reason="No public IP addresses found in the subscription.",
        fail_reason="{count} public IP(s) detected.",
    )


def check_vnet_dns(context: ScanContext) -> ControlResult:
    """
    Every VNet's DHCP DNS servers must include all IPs expected for the scan environment.
    """
    env = context.environment
    if not env:
        raise ValueError("Environment is required to determine DNS IPs")
    expected = context.config.expected_dns_for(env)

    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for vnet in context.inventory.list_resources(VNET_TYPE):
        try:
            detail = context.inventory.get_resource(vnet["id"])
            actual = prop(detail, "dhcpOptions", "dnsServers", default=[]) or []
            missing = missing_dns_servers(actual, expected)
            scanned.append(ScannedResource(
                resource_type="Virtual Network",
                name=vnet["name"],
                attributes={"location": vnet.get("location", ""), "dnsServers": ", ".join(actual) or "None"},
                remark=remark(not missing, f"Missing DNS IPs: {', '.join(missing)}"),
            ))
            if missing:
                violations.append(ViolatingResource(
                    resource_type="Virtual Network",
                    name=vnet["name"],
                    resource_id=vnet.get("id"),
                    resource_group=extract_resource_group(vnet.get("id")),
                    attributes={"location": vnet.get("location", "")},
                    reason=f"Missing expected DNS IP(s): {', '.join(missing)}",
                ))
        except Exception as e:
            s, v = resource_error(vnet, e, "Virtual Network")
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        f"Ensure VNETs use correct DNS IPs [{env}]",
        scanned,
        violations,
        pass_reason=f"All VNETs use configured DNS IPs ({', '.join(expected)})",
        fail_reason="{count} VNET(s) missing expected DNS IPs",
    )


def check_vnet_peering(context: ScanContext) -> ControlResult:
    env = context.environment
    required = context.config.expected_peers_for(env)

    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for vnet in context.inventory.list_resources(VNET_TYPE):
        try:
            peered_ids = [
                prop(p, "remoteVirtualNetwork", "id")
                for p in context.inventory.list_children(vnet["id"], "virtualNetworkPeerings")
            ]
            peered_ids = [pid for pid in peered_ids if pid]
            missing = missing_peers(peered_ids, required)
            scanned.append(ScannedResource(
                resource_type=vnet.get("type", VNET_TYPE),
                name=vnet["name"],
                attributes={"peeredWith": ", ".join(peered_ids) or "None"},
                remark=remark(not missing),
            ))
            if missing:
                violations.append(ViolatingResource(
                    resource_type="VNet",
                    name=vnet["name"],
                    resource_id=vnet.get("id"),
                    resource_group=extract_resource_group(vnet.get("id")),
                    reason=f"Missing peering with: {', '.join(missing)}",
                ))
        except Exception as e:
            s, v = resource_error(vnet, e, "VNet")
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        f"All VNets must be peered with required remote VNets [{env}]",
        scanned,
        violations,
        pass_reason="All VNets are correctly peered.",
        fail_reason="{count} VNet(s) are missing required peering.",
    )


def check_subnets_nsg(context: ScanContext) -> ControlResult:
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for vnet in context.inventory.list_resources(VNET_TYPE):
        rg = extract_resource_group(vnet.get("id"))
        try:
            subnets = list(context.inventory.list_children(vnet["id"], "subnets"))
        except Exception as e:
            s, v = resource_error(vnet, e, "VNet")
            scanned.append(s)
            violations.append(v)
            continue

        for subnet in subnets:
            associated = nsg_is_associated(subnet)
            scanned.append(ScannedResource(
                resource_type=subnet.get("type", SUBNET_TYPE),
                name=subnet.get("name", ""),
                attributes={
                    "vnet": vnet["name"],
                    "nsg": prop(subnet, "networkSecurityGroup", "id", default="") or "None",
                },
                remark=remark(associated),
            ))
            if not associated:
                violations.append(ViolatingResource(
                    resource_type="Subnet",
                    name=subnet.get("name", ""),
                    resource_id=subnet.get("id"),
                    resource_group=rg,
                    attributes={"vnet": vnet["name"]},
                    reason="No NSG associated",
                ))

    return ControlResult.from_findings(
        "All Subnets must have NSG associated",
        scanned,
        violations,
        pass_reason="All subnets are correctly associated with NSGs.",
        fail_reason="{count} subnet(s) are missing NSG association.",
    )
