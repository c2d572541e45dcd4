# scanner/azure_data.py
"""
Data protection controls.

- check_storage_account_security: no shared-key access, no public blob containers
- check_disk_security: managed disks are not publicly reachable and are encrypted at rest
- check_sql_auditing: SQL servers have blob auditing enabled
- check_cmk_encryption: supported resource kinds are encrypted with customer-managed keys
A resource failing two rules contributes two violations, one per rule.
"""

from dataclasses import dataclass
from typing import Callable, Iterable, List, Tuple

from config import DEFAULT_CMK_SUPPORTED_TYPES
from models import ControlResult, ScanContext, ScannedResource, ViolatingResource
from scanner.base import kind_error, prop, remark, resource_error
from utils import extract_resource_group

STORAGE_TYPE = "Microsoft.Storage/storageAccounts"
DISK_TYPE = "Microsoft.Compute/disks"
SQL_SERVER_TYPE = "Microsoft.Sql/servers"

DISK_AT_REST_ENCRYPTION_TYPES = (
    "EncryptionAtRestWithPlatformKey",
    "EncryptionAtRestWithCustomerKey",
    "EncryptionAtRestWithPlatformAndCustomerKeys",
)
DISK_CUSTOMER_KEY_TYPES = (
    "EncryptionAtRestWithCustomerKey",
    "EncryptionAtRestWithPlatformAndCustomerKeys",
)

# --- Pure rule helpers -----------------------------------------------------

def shared_key_access_enabled(account: dict) -> bool:
    """allowSharedKeyAccess defaults to true when unset."""
    return prop(account, "allowSharedKeyAccess") is not False


def public_container_names(containers: Iterable[dict]) -> List[str]:
    names = []
    for c in containers:
        access = prop(c, "publicAccess") or "None"
        if access != "None":
            names.append(c.get("name", ""))
    return names


def disk_public_access(disk: dict) -> str:
    """Managed disks default to no public network access."""
    return prop(disk, "publicNetworkAccess") or "Disabled"


def disk_encrypted_at_rest(disk: dict) -> bool:
    return prop(disk, "encryption", "type") in DISK_AT_REST_ENCRYPTION_TYPES

# --- Controls ---------------------------------------------------------------

def check_storage_account_security(context: ScanContext) -> ControlResult:
    """
    Checks all storage accounts for:
    1. Access key based access is disabled (allowSharedKeyAccess is false).
    2. No blob container is publicly accessible.
    """
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for res in context.inventory.list_resources(STORAGE_TYPE):
        rid = res.get("id")
        rg = extract_resource_group(rid)
        name = res.get("name", "")
        try:
            account = context.inventory.get_properties(STORAGE_TYPE, rg, name)
            shared_key = shared_key_access_enabled(account)
            public = public_container_names(
                context.inventory.list_children(rid, "blobServices/default/containers")
            )

            scanned.append(ScannedResource(
                resource_type=res.get("type", STORAGE_TYPE),
                name=name,
                attributes={
                    "allowSharedKeyAccess": "Enabled" if shared_key else "Disabled",
                    "publicContainers": ", ".join(public) if public else "None",
                },
                remark=remark(not shared_key and not public),
            ))
            if shared_key:
                violations.append(ViolatingResource(
                    resource_type=res.get("type", STORAGE_TYPE), name=name, resource_id=rid, resource_group=rg,
                    reason="Access key-based access (allowSharedKeyAccess) is enabled",
                ))
            if public:
                violations.append(ViolatingResource(
                    resource_type=res.get("type", STORAGE_TYPE), name=name, resource_id=rid, resource_group=rg,
                    reason=f"Public blob containers: {', '.join(public)}",
                ))
        except Exception as e:
            s, v = resource_error(res, e, STORAGE_TYPE)
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        "Storage Account Security (No public blobs, no access key-based access)",
        scanned,
        violations,
        pass_reason="All storage accounts comply with security requirements",
        fail_reason="{count} violation(s) found",
    )


def check_disk_security(context: ScanContext) -> ControlResult:
    """
    Checks all managed disks for:
    1. Public network access is disabled.
    2. Encryption at rest is configured (platform key, customer key, or both).
    """
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for res in context.inventory.list_resources(DISK_TYPE):
        rid = res.get("id")
        rg = extract_resource_group(rid)
        name = res.get("name", "")
        try:
            disk = context.inventory.get_properties(DISK_TYPE, rg, name)
            access = disk_public_access(disk)
            encryption_type = prop(disk, "encryption", "type") or "None"
            encrypted = disk_encrypted_at_rest(disk)

            scanned.append(ScannedResource(
                resource_type=res.get("type", DISK_TYPE),
                name=name,
                attributes={"publicNetworkAccess": access, "encryptionType": encryption_type},
                remark=remark(access == "Disabled" and encrypted),
            ))
            if access != "Disabled":
                violations.append(ViolatingResource(
                    resource_type=res.get("type", DISK_TYPE), name=name, resource_id=rid, resource_group=rg,
                    reason="Public network access is not disabled",
                ))
            if not encrypted:
                violations.append(ViolatingResource(
                    resource_type=res.get("type", DISK_TYPE), name=name, resource_id=rid, resource_group=rg,
                    reason=f"Encryption at rest is not enabled (encryption type: {encryption_type})",
                ))
        except Exception as e:
            s, v = resource_error(res, e, DISK_TYPE)
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        "Disk Security (No public access, encryption at rest enabled)",
        scanned,
        violations,
        pass_reason="All disks comply with security requirements",
        fail_reason="{count} violation(s) found",
    )


def check_sql_auditing(context: ScanContext) -> ControlResult:
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for server in context.inventory.list_resources(SQL_SERVER_TYPE):
        rid = server.get("id")
        try:
            policy = context.inventory.get_resource(f"{rid}/auditingSettings/default")
            state = prop(policy, "state") or "Unknown"
            enabled = state == "Enabled"
            scanned.append(ScannedResource(
                resource_type=server.get("type", SQL_SERVER_TYPE),
                name=server["name"],
                attributes={"auditingState": state},
                remark=remark(enabled),
            ))
            if not enabled:
                violations.append(ViolatingResource(
                    resource_type="SQL Server",
                    name=server["name"],
                    resource_id=rid,
                    resource_group=extract_resource_group(rid),
                    reason="SQL auditing is not enabled",
                ))
        except Exception as e:
            s, v = resource_error(server, e, "SQL Server")
            scanned.append(s)
            violations.append(v)

    return ControlResult.from_findings(
        "Ensure SQL Servers have auditing enabled",
        scanned,
        violations,
        pass_reason="All SQL Servers have auditing enabled.",
        fail_reason="{count} SQL Server(s) auditing is disabled.",
    )

# --- Customer-managed keys ---------------------------------------------------

def _storage_uses_cmk(res: dict) -> bool:
    return (prop(res, "encryption", "keySource") or "").lower() == "microsoft.keyvault"


def _disk_uses_cmk(res: dict) -> bool:
    return prop(res, "encryption", "type") in DISK_CUSTOMER_KEY_TYPES


def _cosmos_uses_cmk(res: dict) -> bool:
    return bool(prop(res, "keyVaultKeyUri"))


def _key_identifier_set(res: dict) -> bool:
    return bool(prop(res, "encryption", "keyVaultProperties", "keyIdentifier"))


def _cognitive_uses_cmk(res: dict) -> bool:
    return (prop(res, "encryption", "keySource") or "").lower() == "microsoft.keyvault"


def _single_server_uses_cmk(res: dict) -> bool:
    return bool(prop(res, "keyId")) or prop(res, "byokEnforcement") == "Enabled"


@dataclass(frozen=True)
class CmkKind:
    resource_type: str
    uses_cmk: Callable[[dict], bool]


CMK_KINDS: Tuple[CmkKind, ...] = (
    CmkKind("Microsoft.Storage/storageAccounts", _storage_uses_cmk),
    CmkKind("Microsoft.Compute/disks", _disk_uses_cmk),
    CmkKind("Microsoft.DocumentDB/databaseAccounts", _cosmos_uses_cmk),
    CmkKind("Microsoft.AppConfiguration/configurationStores", _key_identifier_set),
    CmkKind("Microsoft.ContainerRegistry/registries", _key_identifier_set),
    CmkKind("Microsoft.MachineLearningServices/workspaces", _key_identifier_set),
    CmkKind("Microsoft.CognitiveServices/accounts", _cognitive_uses_cmk),
    CmkKind("Microsoft.DBforPostgreSQL/servers", _single_server_uses_cmk),
    CmkKind("Microsoft.DBforMySQL/servers", _single_server_uses_cmk),
    CmkKind("Microsoft.DBforMariaDB/servers", _single_server_uses_cmk),
)


def _scan_cmk_kind(context: ScanContext, kind: CmkKind,
                   scanned: List[ScannedResource], violations: List[ViolatingResource]) -> None:
    for res in context.inventory.list_resources(kind.resource_type):
        try:
            detail = context.inventory.get_resource(res["id"])
            ok = kind.uses_cmk(detail)
            scanned.append(ScannedResource(resource_type=kind.resource_type, name=res["name"], remark=remark(ok)))
            if not ok:
                violations.append(ViolatingResource(
                    resource_type=kind.resource_type,
                    name=res["name"],
                    resource_id=res.get("id"),
                    resource_group=extract_resource_group(res.get("id")),
                    reason="Customer-managed key encryption is not enabled",
                ))
        except Exception as e:
            s, v = resource_error(res, e, kind.resource_type)
            scanned.append(s)
            violations.append(v)


def check_cmk_encryption(context: ScanContext) -> ControlResult:
    """
    Only kinds that are both implemented here and listed in the configured allow-list are scanned;
    anything else is skipped without a finding.
    """
    allowed = {
        t.lower() for t in context.config.supported_types_for("check_cmk_encryption", DEFAULT_CMK_SUPPORTED_TYPES)
    }
    scanned: List[ScannedResource] = []
    violations: List[ViolatingResource] = []

    for kind in CMK_KINDS:
        if kind.resource_type.lower() not in allowed:
            continue
        try:
            _scan_cmk_kind(context, kind, scanned, violations)
        except Exception as e:
            violations.append(kind_error(kind.resource_type, e))

    return ControlResult.from_findings(
        "Data encryption with customer-managed keys (CMK)",
        scanned,
        violations,
        pass_reason="All CMK-supported resources are encrypted with customer-managed keys",
        fail_reason="{count} resource(s) do not use customer-managed keys",
    )
