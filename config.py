"""
Central configuration and tunable constants.

- Azure credentials and the environment tag can be overridden by CLI args or environment variables.
- Per-control allow-lists and per-environment expectations are collected into a ScanConfig.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple


class ConfigurationError(Exception):
    """Raised when mandatory scan input is missing, before any control runs."""


DEFAULT_REPORT_DIR = "reports"

# Azure Resource Manager
ARM_ENDPOINT = "https://management.azure.com"
ARM_SCOPE = "https://management.azure.com/.default"
ARM_REQUEST_TIMEOUT = 30

# Keys are lower-cased resource types, including child types.
ARM_API_VERSIONS: Dict[str, str] = {
    "microsoft.network/publicipaddresses": "2023-09-01",
    "microsoft.network/virtualnetworks": "2023-09-01",
    "microsoft.network/virtualnetworks/subnets": "2023-09-01",
    "microsoft.network/virtualnetworks/virtualnetworkpeerings": "2023-09-01",
    "microsoft.web/sites": "2022-03-01",
    "microsoft.web/sites/config": "2022-03-01",
    "microsoft.web/sites/privateendpointconnections": "2022-03-01",
    "microsoft.storage/storageaccounts": "2023-01-01",
    "microsoft.storage/storageaccounts/blobservices/containers": "2023-01-01",
    "microsoft.sql/servers": "2021-11-01",
    "microsoft.sql/servers/privateendpointconnections": "2021-11-01",
    "microsoft.sql/servers/auditingsettings": "2021-11-01",
    "microsoft.keyvault/vaults": "2023-07-01",
    "microsoft.synapse/workspaces": "2021-06-01",
    "microsoft.documentdb/databaseaccounts": "2023-04-15",
    "microsoft.appconfiguration/configurationstores": "2023-03-01",
    "microsoft.containerregistry/registries": "2023-07-01",
    "microsoft.operationalinsights/workspaces": "2022-10-01",
    "microsoft.compute/disks": "2023-04-02",
    "microsoft.machinelearningservices/workspaces": "2023-04-01",
    "microsoft.cognitiveservices/accounts": "2023-05-01",
    "microsoft.dbforpostgresql/servers": "2017-12-01",
    "microsoft.dbformysql/servers": "2017-12-01",
    "microsoft.dbformariadb/servers": "2018-06-01",
    "microsoft.insights/diagnosticsettings": "2021-05-01-preview",
}

# Used when DIAG_SUPPORTED_TYPES is not set
DEFAULT_DIAG_SUPPORTED_TYPES: Tuple[str, ...] = (
    "Microsoft.Storage/storageAccounts",
    "Microsoft.KeyVault/vaults",
    "Microsoft.Sql/servers",
    "Microsoft.Web/sites",
    "Microsoft.Network/networkSecurityGroups",
    "Microsoft.Network/applicationGateways",
    "Microsoft.Network/azureFirewalls",
    "Microsoft.ContainerRegistry/registries",
    "Microsoft.DocumentDB/databaseAccounts",
)

# Used when CMK_SUPPORTED_TYPES is not set; must match the kinds implemented by check_cmk_encryption
DEFAULT_CMK_SUPPORTED_TYPES: Tuple[str, ...] = (
    "Microsoft.Storage/storageAccounts",
    "Microsoft.Compute/disks",
    "Microsoft.DocumentDB/databaseAccounts",
    "Microsoft.AppConfiguration/configurationStores",
    "Microsoft.ContainerRegistry/registries",
    "Microsoft.MachineLearningServices/workspaces",
    "Microsoft.CognitiveServices/accounts",
    "Microsoft.DBforPostgreSQL/servers",
    "Microsoft.DBforMySQL/servers",
    "Microsoft.DBforMariaDB/servers",
)


def split_csv(value: Optional[str]) -> Tuple[str, ...]:
    """Split a comma separated setting, dropping blanks and surrounding whitespace."""
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class ScanConfig:
    """
    Settings consumed by the controls.

    Fields:
    - supported_types: control name -> resource types that control may inspect
    - expected_dns: environment (lower-case) -> DNS IPs every VNet must use
    - expected_peers: environment (lower-case) -> remote VNet ids every VNet must peer with
    """
    supported_types: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    expected_dns: Dict[str, Tuple[str, ...]] = field(default_factory=dict)
    expected_peers: Dict[str, Tuple[str, ...]] = field(default_factory=dict)

    def supported_types_for(self, control_name: str, default: Tuple[str, ...] = ()) -> Tuple[str, ...]:
        return self.supported_types.get(control_name, default)

    def expected_dns_for(self, environment: str) -> Tuple[str, ...]:
        return self.expected_dns.get((environment or "").lower(), ())

    def expected_peers_for(self, environment: str) -> Tuple[str, ...]:
        return self.expected_peers.get((environment or "").lower(), ())


def load_scan_config(environ: Optional[Mapping[str, str]] = None) -> ScanConfig:
    """
    Build a ScanConfig from environment variables.

    - DIAG_SUPPORTED_TYPES / CMK_SUPPORTED_TYPES (MMK_SUPPORTED_TYPES accepted as an alias)
    - DNS_IPS_<ENV> for each environment
    - <ENV>_REMOTE_VNET_IDS for each environment
    """
    environ = os.environ if environ is None else environ

    diag_types = split_csv(environ.get("DIAG_SUPPORTED_TYPES")) or DEFAULT_DIAG_SUPPORTED_TYPES
    cmk_types = (
        split_csv(environ.get("CMK_SUPPORTED_TYPES"))
        or split_csv(environ.get("MMK_SUPPORTED_TYPES"))
        or DEFAULT_CMK_SUPPORTED_TYPES
    )

    expected_dns: Dict[str, Tuple[str, ...]] = {}
    expected_peers: Dict[str, Tuple[str, ...]] = {}
    for key, value in environ.items():
        upper = key.upper()
        if upper.startswith("DNS_IPS_") and len(upper) > len("DNS_IPS_"):
            expected_dns[upper[len("DNS_IPS_"):].lower()] = split_csv(value)
        elif upper.endswith("_REMOTE_VNET_IDS") and len(upper) > len("_REMOTE_VNET_IDS"):
            expected_peers[upper[:-len("_REMOTE_VNET_IDS")].lower()] = split_csv(value)

    return ScanConfig(
        supported_types={
            "check_diagnostics": diag_types,
            "check_cmk_encryption": cmk_types,
        },
        expected_dns=expected_dns,
        expected_peers=expected_peers,
    )
