# tests/factories.py
"""
Builders for ARM-shaped resources and scan contexts backed by the dummy JSON inventory.
"""

from config import ScanConfig
from models import ScanContext
from scanner.inventory import JsonInventoryProvider

SUB = "00000000-0000-0000-0000-000000000001"


def arm_id(resource_type, name, rg="rg-app"):
    return f"/subscriptions/{SUB}/resourceGroups/{rg}/providers/{resource_type}/{name}"


def resource(resource_type, name, rg="rg-app", **properties):
    return {
        "id": arm_id(resource_type, name, rg),
        "name": name,
        "type": resource_type,
        "location": "westeurope",
        "properties": properties,
    }


def context_for(data=None, environment="dev", config=None):
    data = dict(data or {})
    data.setdefault("subscriptionId", SUB)
    return ScanContext(
        subscription_id=SUB,
        environment=environment,
        inventory=JsonInventoryProvider(data),
        config=config or ScanConfig(),
    )
