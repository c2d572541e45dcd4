# scanner/azure_paas.py
"""
PaaS exposure and logging controls.

- check_paas_private_access: nine PaaS kinds must have public access disabled and a private endpoint
- check_diagnostics: every supported resource must ship diagnostic settings
Each PaaS kind is enumerated independently; one unreachable kind is recorded and the rest still run.
"""

from dataclasses import dataclass
from typing import Callable, List, Tuple

from config import DEFAULT_DIAG_SUPPORTED_TYPES
from models import ControlResult, ScanContext, ScannedResource, ViolatingResource
from scanner.base import kind_error, prop, remark, resource_error
from scanner.inventory import InventoryProvider
from utils import extract_resource_group

# Log Analytics has no private endpoint list; these modes keep it off the public network.
# Disabled closes public ingestion and query outright, so it counts as closed alongside a
# network security perimeter rather than being flagged.
LOG_ANALYTICS_CLOSED_MODES = ("Disabled", "SecuredByPerimeter")

DIAG_MULTI_SERVICE_TYPES = ("microsoft.storage/storageaccounts", "microsoft.datalakestore/accounts")
DIAG_SUB_SERVICES = (
    "blobServices/default",
    "fileServices/default",
    "queueServices/default",
    "tableServices/default",
)

# --- Pure rule helpers -----------------------------------------------------

def violates_private_access(access: str, private_endpoint_count: int) -> bool:
    """
    Public access must be explicitly Disabled AND at least one private endpoint must exist.
    """
    return access != "Disabled" or private_endpoint_count == 0


def log_analytics_exposed(ingestion: str, query: str) -> bool:
    return ingestion not in LOG_ANALYTICS_CLOSED_MODES or query not in LOG_ANALYTICS_CLOSED_MODES

# --- Access readers: return (publicNetworkAccess, private endpoint count) ---

def _inline_access(inventory: InventoryProvider, resource: dict) -> Tuple[str, int]:
    detail = inventory.get_resource(resource["id"])
    access = prop(detail, "publicNetworkAccess") or "Unknown"
    endpoints = prop(detail, "privateEndpointConnections", default=[]) or []
    return access, len(endpoints)


def _web_app_access(inventory: InventoryProvider, resource: dict) -> Tuple[str, int]:
    site_config = inventory.get_resource(f"{resource['id']}/config/web")
    access = prop(site_config, "publicNetworkAccess") or "Unknown"
    endpoints = list(inventory.list_children(resource["id"], "privateEndpointConnections"))
    return access, len(endpoints)


def _sql_server_access(inventory: InventoryProvider, resource: dict) -> Tuple[str, int]:
    detail = inventory.get_resource(resource["id"])
    access = prop(detail, "publicNetworkAccess") or "Unknown"
    endpoints = list(inventory.list_children(resource["id"], "privateEndpointConnections"))
    return access, len(endpoints)


@dataclass(frozen=True)
class PaasKind:
    label: str
    resource_type: str
    read_access: Callable[[InventoryProvider, dict], Tuple[str, int]]


PAAS_KINDS: Tuple[PaasKind, ...] = (
    PaasKind("Web App", "Microsoft.Web/sites", _web_app_access),
    PaasKind("Storage Account", "Microsoft.Storage/storageAccounts", _inline_access),
    PaasKind("SQL Server", "Microsoft.Sql/servers", _sql_server_access),
    PaasKind("Key Vault", "Microsoft.KeyVault/vaults", _inline_access),
    PaasKind("Synapse Workspace", "Microsoft.Synapse/workspaces", _inline_access),
    PaasKind("Cosmos DB", "Microsoft.DocumentDB/databaseAccounts", _inline_access),
    PaasKind("App Config", "Microsoft.AppConfiguration/configurationStores", _inline_access),
    PaasKind("ACR", "Microsoft.ContainerRegistry/registries", _inline_access),
)
LOG_ANALYTICS_TYPE = "Microsoft.OperationalInsights/workspaces"
LOG_ANALYTICS_LABEL = "Log Analytics Workspace"

# --- Controls ---------------------------------------------------------------

def _scan_paas_kind(context: ScanContext, kind: PaasKind,
                    scanned: List[ScannedResource], violations: List[ViolatingResource]) -> None:
    for res in context.inventory.list_resources(kind.resource_type):
        try:
            access, pe_count = kind.read_access(context.inventory, res)
            bad = violates_private_access(access, pe_count)
            scanned.append(ScannedResource(
                resource_type=res.get("type", kind.resource_type),
                name=res["name"],
                attributes={"publicNetworkAccess": access, "privateEndpoints": str(pe_count)},
                remark=remark(not bad),
            ))
            if bad:
                violations.append(ViolatingResource(
                    resource_type=kind.label,
                    name=res["name"],
                    resource_id=res.get("id"),
                    resource_group=extract_resource_group(res.get("id")),
                    reason=f"Public access: {access}, Private Endpoints: {pe_count}",
                ))
        except Exception as e:
            s, v = resource_error(res, e, kind.label)
            scanned.append(s)
            violations.append(v)


def _scan_log_analytics(context: ScanContext,
                        scanned: List[ScannedResource], violations: List[ViolatingResource]) -> None:
    for ws in context.inventory.list_resources(LOG_ANALYTICS_TYPE):
        try:
            detail = context.inventory.get_resource(ws["id"])
            ingestion = prop(detail, "publicNetworkAccessForIngestion") or "Unknown"
            query = prop(detail, "publicNetworkAccessForQuery") or "Unknown"
            bad = log_analytics_exposed(ingestion, query)
            scanned.append(ScannedResource(
                resource_type=ws.get("type", LOG_ANALYTICS_TYPE),
                name=ws["name"],
                attributes={"ingestion": ingestion, "query": query},
                remark=remark(not bad),
            ))
            if bad:
                violations.append(ViolatingResource(
                    resource_type=LOG_ANALYTICS_LABEL,
                    name=ws["name"],
                    resource_id=ws.get("id"),
                    resource_group=extract_resource_group(ws.get("id")),
                    reason=f"Ingestion: {ingestion}, Query: {query}",
                ))
        except Exception as e:
            s, v = resource_error(ws, e, LOG_ANALYTICS_LABEL)
            scanned.append(s)
            violations.append(v)


def check_paas_private_access(context: ScanContext) -> ControlResult:
    """
    Every PaaS resource must have public network access Disabled and a private endpoint wired up.

    Kinds are scanned one after another; an enumeration failure for a kind is recorded as a
    single "All" violation for that kind.
    """
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for kind in PAAS_KINDS:
        try:
            _scan_paas_kind(context, kind, scanned, violations)
        except Exception as e:
            violations.append(kind_error(kind.label, e))

    try:
        _scan_log_analytics(context, scanned, violations)
    except Exception as e:
        violations.append(kind_error(LOG_ANALYTICS_LABEL, e))

    return ControlResult.from_findings(
        "All PaaS services must have Private Endpoint & Public Access disabled",
        scanned,
        violations,
        pass_reason="All PaaS services comply with Zero Trust rules.",
        fail_reason="{count} PaaS resource(s) violate Zero Trust policies.",
    )


def has_diagnostics(inventory: InventoryProvider, resource: dict) -> bool:
    """
    Multi-service accounts comply when any one sub-service has a diagnostic setting;
    everything else is checked on the resource itself.
    """
    if resource.get("type", "").lower() in DIAG_MULTI_SERVICE_TYPES:
        return any(
            inventory.list_diagnostic_settings(f"{resource['id']}/{service}")
            for service in DIAG_SUB_SERVICES
        )
    return bool(inventory.list_diagnostic_settings(resource["id"]))


def check_diagnostics(context: ScanContext) -> ControlResult:
    supported = {
        t.lower() for t in context.config.supported_types_for("check_diagnostics", DEFAULT_DIAG_SUPPORTED_TYPES)
    }
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for res in context.inventory.list_resources():
        if res.get("type", "").lower() not in supported:
            continue
        try:
            ok = has_diagnostics(context.inventory, res)
            scanned.append(ScannedResource(resource_type=res["type"], name=res["name"], remark=remark(ok)))
            if not ok:
                violations.append(ViolatingResource(
                    resource_type=res["type"],
                    name=res["name"],
                    resource_id=res.get("id"),
                    resource_group=extract_resource_group(res.get("id")),
                    reason="Missing diagnostic settings",
                ))
        except Exception as e:
            s, v = resource_error(res, e)
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        "Diagnostics Settings Check for Azure Resources",
        scanned,
        violations,
        pass_reason="All resources have diagnostic settings",
        fail_reason="{count} resource(s) missing diagnostics",
    )
