"""
Data models used by the scanner.

- Keep simple, serializable dataclasses for scan input, evidence rows and control results.
- Attribute schemas vary per control, so evidence rows carry an ordered mapping that
  the report flattens into table columns.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import ScanConfig

STATUS_PASS = "PASS"
STATUS_FAIL = "FAIL"
STATUS_ERROR = "ERROR"

COMPLY = "Comply with Zero Trust"
NOT_COMPLY = "Not Comply with Zero Trust"
ERROR_DURING_CHECK = "Error during check"


@dataclass(frozen=True)
class ScanContext:
    """
    Read-only input shared by every control of one scan.

    Fields:
    - subscription_id: the inspected subscription
    - environment: environment tag selecting expected DNS IPs and peer VNets
    - inventory: InventoryProvider the controls enumerate resources through
    - config: ScanConfig with allow-lists and per-environment expectations
    - credential: optional token provider (anything with get_token(scope))
    """
    subscription_id: str
    environment: str
    inventory: Any
    config: ScanConfig = field(default_factory=ScanConfig)
    credential: Any = None


@dataclass(frozen=True)
class ScannedResource:
    """
    One row of audit evidence. Every inspected resource gets exactly one.
    """
    resource_type: str
    name: str
    remark: str
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, str]:
        row = {"resourceType": self.resource_type, "name": self.name}
        row.update(self.attributes)
        row["remark"] = self.remark
        return row


@dataclass(frozen=True)
class ViolatingResource:
    """
    One violated sub-rule. A resource failing two rules appears twice.
    """
    resource_type: str
    name: str
    reason: str
    resource_id: Optional[str] = None
    resource_group: Optional[str] = None
    attributes: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, str]:
        row = {"resourceType": self.resource_type, "name": self.name}
        if self.resource_id is not None:
            row["id"] = self.resource_id
        if self.resource_group is not None:
            row["resourceGroup"] = self.resource_group
        row.update(self.attributes)
        row["reason"] = self.reason
        return row


@dataclass(frozen=True)
class ControlResult:
    """
    Uniform output of a control.

    status is FAIL exactly when violating_resources is non-empty; ERROR is reserved
    for a control that could not run to completion.
    """
    policy: str
    status: str
    reason: str
    scanned_resources: Tuple[ScannedResource, ...] = ()
    violating_resources: Tuple[ViolatingResource, ...] = ()
    error: Optional[str] = None

    @classmethod
    def from_findings(cls, policy: str, scanned: Sequence[ScannedResource],
                      violations: Sequence[ViolatingResource],
                      pass_reason: str, fail_reason: str) -> "ControlResult":
        """
        Derive status and reason from the collected rows.
        fail_reason may contain "{count}", replaced by the number of violations.
        """
        if violations:
            status = STATUS_FAIL
            reason = fail_reason.format(count=len(violations))
        else:
            status = STATUS_PASS
            reason = pass_reason
        return cls(
            policy=policy,
            status=status,
            reason=reason,
            scanned_resources=tuple(scanned),
            violating_resources=tuple(violations),
        )

    @classmethod
    def errored(cls, policy: str, message: str) -> "ControlResult":
        return cls(policy=policy, status=STATUS_ERROR, reason=f"Control failed: {message}", error=message)

    @property
    def passed(self) -> bool:
        return self.status == STATUS_PASS

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "policy": self.policy,
            "status": self.status,
            "reason": self.reason,
            "scannedResources": [r.to_dict() for r in self.scanned_resources],
            "violatingResources": [v.to_dict() for v in self.violating_resources],
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class ScanSummary:
    total: int
    passed: int
    failed: int

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "passed": self.passed, "failed": self.failed}


@dataclass
class ScanOutcome:
    """
    Everything a scan hands back to its caller: ordered results, summary and report paths.
    """
    results: List[ControlResult]
    summary: ScanSummary
    subscription_id: str
    subscription_name: str
    environment: str
    duration_seconds: float
    report_paths: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": "ZT Assessment Completed",
            "subscriptionId": self.subscription_id,
            "subscriptionName": self.subscription_name,
            "environment": self.environment,
            "durationSeconds": self.duration_seconds,
            "reportPath": self.report_paths.get("html"),
            "summary": self.summary.to_dict(),
            "results": [r.to_dict() for r in self.results],
        }
