# scanner/base.py
"""
Shared pieces for controls: remarks, error rows and property access.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from models import COMPLY, ERROR_DURING_CHECK, NOT_COMPLY, ScannedResource, ViolatingResource
from utils import extract_resource_group

logger = logging.getLogger(__name__)


def remark(compliant: bool, detail: Optional[str] = None) -> str:
    if compliant:
        return COMPLY
    return f"{NOT_COMPLY} - {detail}" if detail else NOT_COMPLY


def prop(resource: Dict[str, Any], *path: str, default: Any = None) -> Any:
    """
    Walk resource["properties"][path...]; return default when any step is missing or null.
    """
    node: Any = resource.get("properties") or {}
    for step in path:
        if not isinstance(node, dict):
            return default
        node = node.get(step)
        if node is None:
            return default
    return node


def resource_error(resource: Dict[str, Any], err: Exception,
                   resource_type: Optional[str] = None) -> Tuple[ScannedResource, ViolatingResource]:
    """
    Rows recorded when inspecting one resource raised: an error remark plus a violation
    carrying the error text. The control keeps going with the next resource.
    """
    rtype = resource_type or resource.get("type", "")
    name = resource.get("name", "")
    rid = resource.get("id")
    logger.warning("Check failed for %s %s: %s", rtype, name, err)
    scanned = ScannedResource(resource_type=rtype, name=name, remark=ERROR_DURING_CHECK)
    violation = ViolatingResource(
        resource_type=rtype,
        name=name,
        resource_id=rid,
        resource_group=extract_resource_group(rid) if rid else None,
        reason=f"Error: {err}",
    )
    return scanned, violation


def kind_error(kind: str, err: Exception) -> ViolatingResource:
    """Synthetic violation recorded when a whole resource kind could not be enumerated."""
    logger.warning("Enumeration of %s failed: %s", kind, err)
    return ViolatingResource(resource_type=kind, name="All", resource_group="Unknown", reason=f"Error: {err}")
