# scanner/inventory.py
"""
Resource inventory access.

- InventoryProvider is the contract controls enumerate and read resources through.
- AzureInventoryProvider talks to Azure Resource Manager: listing goes through the
  azure-mgmt-resource SDK, property and child reads go through ARM REST with a bearer token.
- JsonInventoryProvider serves a JSON-like dict for dummy mode and tests.
- Every provider call may raise InventoryError; callers isolate it per resource.
"""

import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Optional

import requests
from azure.core.exceptions import AzureError
from azure.mgmt.resource import ResourceManagementClient

from config import ARM_API_VERSIONS, ARM_ENDPOINT, ARM_REQUEST_TIMEOUT, ARM_SCOPE
from utils import extract_resource_group

DIAGNOSTIC_SETTINGS_PATH = "providers/Microsoft.Insights/diagnosticSettings"


class InventoryError(Exception):
    """A provider call failed (API error, missing resource, unreadable data)."""


def resource_type_from_id(resource_id: str) -> str:
    """
    Return the resource type encoded in an ARM id or collection path, e.g.
    ".../providers/Microsoft.Network/virtualNetworks/vnet1/subnets" -> "Microsoft.Network/virtualNetworks/subnets".
    """
    marker = "/providers/"
    idx = resource_id.lower().rfind(marker)
    if idx < 0:
        return ""
    parts = [p for p in resource_id[idx + len(marker):].split("/") if p]
    if not parts:
        return ""
    return "/".join([parts[0]] + parts[1::2])


class InventoryProvider(ABC):
    """
    Read-only view of a subscription's resources.

    Resources are plain dicts in ARM JSON shape: id, name, type, location, properties.
    """
    subscription_id: str = ""

    @abstractmethod
    def list_resources(self, resource_type: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """Lazily yield resources, optionally only those of one type."""

    @abstractmethod
    def get_resource(self, resource_id: str) -> Dict[str, Any]:
        """Return the full resource (or singleton child such as config/web) by id."""

    @abstractmethod
    def list_children(self, resource_id: str, child_path: str) -> Iterator[Dict[str, Any]]:
        """Lazily yield child resources under resource_id, e.g. child_path="subnets"."""

    @abstractmethod
    def list_diagnostic_settings(self, resource_id: str) -> List[Dict[str, Any]]:
        """Return the diagnostic settings attached to resource_id (possibly empty)."""

    def get_properties(self, resource_type: str, resource_group: str, name: str) -> Dict[str, Any]:
        resource_id = (
            f"/subscriptions/{self.subscription_id}/resourceGroups/{resource_group}"
            f"/providers/{resource_type}/{name}"
        )
        return self.get_resource(resource_id)


# --- Live Azure provider ---------------------------------------------------

class AzureInventoryProvider(InventoryProvider):
    """
    Live provider backed by Azure Resource Manager.
    credential must expose get_token(scope) (e.g. azure.identity.ClientSecretCredential).
    """

    def __init__(self, credential, subscription_id: str, session: Optional[requests.Session] = None,
                 resource_client=None, api_versions: Optional[Dict[str, str]] = None,
                 timeout: int = ARM_REQUEST_TIMEOUT):
        self.credential = credential
        self.subscription_id = subscription_id
        self._resource_client = resource_client or ResourceManagementClient(credential, subscription_id)
        # An injected session is used as is; otherwise each worker thread gets its own
        self._session = session
        self._local = threading.local()
        self._versions_lock = threading.Lock()
        self._api_versions = dict(ARM_API_VERSIONS)
        for key, value in (api_versions or {}).items():
            self._api_versions[key.lower()] = value
        self._timeout = timeout

    def list_resources(self, resource_type: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        flt = f"resourceType eq '{resource_type}'" if resource_type else None
        try:
            for res in self._resource_client.resources.list(filter=flt):
                yield res.serialize(keep_readonly=True)
        except AzureError as e:
            raise InventoryError(f"Listing {resource_type or 'resources'} failed: {e}") from e

    def get_resource(self, resource_id: str) -> Dict[str, Any]:
        return self._request(ARM_ENDPOINT + resource_id, {"api-version": self._api_version(resource_id)})

    def list_children(self, resource_id: str, child_path: str) -> Iterator[Dict[str, Any]]:
        return self._list(f"{resource_id}/{child_path}")

    def list_diagnostic_settings(self, resource_id: str) -> List[Dict[str, Any]]:
        return list(self._list(f"{resource_id}/{DIAGNOSTIC_SETTINGS_PATH}"))

    def _list(self, path: str) -> Iterator[Dict[str, Any]]:
        """Follow nextLink until the collection is exhausted."""
        url = ARM_ENDPOINT + path
        params = {"api-version": self._api_version(path)}
        while url:
            page = self._request(url, params)
            for item in page.get("value", []) or []:
                yield item
            url = page.get("nextLink")
            # nextLink already carries api-version and the skip token
            params = None

    def _thread_session(self) -> requests.Session:
        if self._session is not None:
            return self._session
        session = getattr(self._local, "session", None)
        if session is None:
            session = self._local.session = requests.Session()
        return session

    def _request(self, url: str, params: Optional[Dict[str, str]]) -> Dict[str, Any]:
        try:
            token = self.credential.get_token(ARM_SCOPE).token
        except AzureError as e:
            raise InventoryError(f"Token acquisition failed: {e}") from e
        try:
            resp = self._thread_session().get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                params=params,
                timeout=self._timeout,
            )
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise InventoryError(f"GET {url} failed: {e}") from e

    def _api_version(self, path: str) -> str:
        rtype = resource_type_from_id(path).lower()
        with self._versions_lock:
            version = self._api_versions.get(rtype)
            if not version:
                version = self._resolve_api_version(rtype)
                self._api_versions[rtype] = version
        return version

    def _resolve_api_version(self, rtype: str) -> str:
        """Ask the resource provider registration for a usable API version, preferring stable ones."""
        namespace, _, type_name = rtype.partition("/")
        if not type_name:
            raise InventoryError(f"Cannot determine resource type for API version lookup: {rtype!r}")
        try:
            provider = self._resource_client.providers.get(namespace)
        except AzureError as e:
            raise InventoryError(f"Provider lookup for {namespace} failed: {e}") from e
        for rt in provider.resource_types or []:
            if (rt.resource_type or "").lower() != type_name:
                continue
            versions = list(rt.api_versions or [])
            stable = [v for v in versions if "preview" not in v.lower()]
            if stable or versions:
                return (stable or versions)[0]
        raise InventoryError(f"No API version registered for {rtype}")


# --- Dummy provider ----------------------------------------------------------

def _key(value: str) -> str:
    return (value or "").lower().rstrip("/")


class JsonInventoryProvider(InventoryProvider):
    """
    Dummy-mode provider: serves resources from a JSON-like dict (offline testing).
    Expected shape:
    {
      "subscriptionId": "...",
      "resources": [ {"id": "...", "name": "...", "type": "...", "properties": {...}}, ... ],
      "details": { "<resource id>": {...full resource or singleton child...} },
      "children": { "<resource id>/<child path>": [ {...}, ... ] },
      "diagnosticSettings": { "<resource id>": [ {...}, ... ] },
      "failures": { "<resource type, resource id or child path>": "error message" }
    }
    Ids are matched case-insensitively. A "failures" entry makes the matching call raise InventoryError.
    """

    def __init__(self, data: Dict[str, Any]):
        self.subscription_id = data.get("subscriptionId", "")
        self._resources: List[Dict[str, Any]] = list(data.get("resources", []) or [])
        self._details = {_key(k): v for k, v in (data.get("details") or {}).items()}
        self._children = {_key(k): v for k, v in (data.get("children") or {}).items()}
        self._diagnostics = {_key(k): v for k, v in (data.get("diagnosticSettings") or {}).items()}
        self._failures = {_key(k): v for k, v in (data.get("failures") or {}).items()}

    def _fail_if(self, *keys: str) -> None:
        for k in keys:
            message = self._failures.get(_key(k))
            if message:
                raise InventoryError(message)

    def list_resources(self, resource_type: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        self._fail_if(resource_type or "*")
        for res in self._resources:
            if resource_type and _key(res.get("type", "")) != _key(resource_type):
                continue
            yield copy.deepcopy(res)

    def get_resource(self, resource_id: str) -> Dict[str, Any]:
        self._fail_if(resource_id)
        key = _key(resource_id)
        if key in self._details:
            return copy.deepcopy(self._details[key])
        for res in self._resources:
            if _key(res.get("id", "")) == key:
                return copy.deepcopy(res)
        raise InventoryError(f"Resource not found: {resource_id}")

    def get_properties(self, resource_type: str, resource_group: str, name: str) -> Dict[str, Any]:
        for res in self._resources:
            rid = res.get("id", "")
            if (_key(res.get("type", "")) == _key(resource_type)
                    and _key(res.get("name", "")) == _key(name)
                    and _key(extract_resource_group(rid) or "") == _key(resource_group)):
                return self.get_resource(rid)
        raise InventoryError(f"Resource not found: {resource_type} {resource_group}/{name}")

    def list_children(self, resource_id: str, child_path: str) -> Iterator[Dict[str, Any]]:
        path = f"{resource_id}/{child_path}"
        self._fail_if(path)
        for child in self._children.get(_key(path), []) or []:
            yield copy.deepcopy(child)

    def list_diagnostic_settings(self, resource_id: str) -> List[Dict[str, Any]]:
        self._fail_if(resource_id, f"{resource_id}/{DIAGNOSTIC_SETTINGS_PATH}")
        return copy.deepcopy(list(self._diagnostics.get(_key(resource_id), []) or []))
