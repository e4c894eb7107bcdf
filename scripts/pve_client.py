#!/usr/bin/env python3
"""
Proxmox VE API Client
Purpose: Read VM status and apply memory changes through the Proxmox REST API
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import urllib3

try:
    import requests
except ImportError:
    print("ERROR: requests module not found. Install with: uv sync")
    sys.exit(1)

from pve_secrets import ProxmoxConfig


class ProxmoxAPIError(Exception):
    """Raised when a status read cannot be completed"""


@dataclass(frozen=True)
class VMStatus:
    """Current status of one VM, sizes in MB"""

    vmid: int
    name: str
    mem_mb: int
    maxmem_mb: int
    disk_mb: int


@dataclass(frozen=True)
class MemoryUpdateResult:
    success: bool
    body: str


def _kib_to_mb(value: Any) -> int:
    """Convert a KiB field to MB, truncating; anything non-numeric is 0"""
    if isinstance(value, bool):
        return 0
    try:
        return int(value) // 1024
    except (TypeError, ValueError):
        return 0


class ProxmoxClient:
    """Client for the qemu endpoints of a single Proxmox VE node"""

    def __init__(self, config: ProxmoxConfig):
        """
        Initialize the Proxmox client

        Args:
            config (ProxmoxConfig): Host, node and API token settings
        """
        self.config = config
        self.base_url = f"{config.host}/api2/json/nodes/{config.node}/qemu"

        if not config.verify_ssl:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

        self.session = requests.Session()
        self.session.verify = config.verify_ssl
        self.session.headers.update({
            "Authorization": f"PVEAPIToken={config.token_id}={config.token_secret}",
            "Accept": "application/json",
        })

    def close(self) -> None:
        self.session.close()

    def _status_url(self, vmid: int) -> str:
        return f"{self.base_url}/{vmid}/status/current"

    def _config_url(self, vmid: int) -> str:
        return f"{self.base_url}/{vmid}/config"

    def get_vm_status(self, vmid: int) -> VMStatus:
        """
        Fetch and parse the current status of a VM in a single request

        Missing fields default to 0 or an empty name. Transport failures,
        non-2xx responses and non-JSON bodies raise ProxmoxAPIError.
        """
        url = self._status_url(vmid)
        try:
            response = self.session.get(url, timeout=self.config.timeout)
        except requests.exceptions.RequestException as e:
            raise ProxmoxAPIError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise ProxmoxAPIError(
                f"HTTP {response.status_code} from {url}: {response.text.strip()}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProxmoxAPIError(f"Invalid JSON from {url}: {e}") from e

        data: Dict[str, Any] = {}
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            data = payload["data"]

        name = data.get("name")
        return VMStatus(
            vmid=vmid,
            name=name if isinstance(name, str) else "",
            mem_mb=_kib_to_mb(data.get("mem")),
            maxmem_mb=_kib_to_mb(data.get("maxmem")),
            disk_mb=_kib_to_mb(data.get("disk")),
        )

    def get_memory_info(self, vmid: int) -> Tuple[int, int]:
        """Current and total memory of a VM in MB"""
        status = self.get_vm_status(vmid)
        return status.mem_mb, status.maxmem_mb

    def get_current_storage_mb(self, vmid: int) -> int:
        return self.get_vm_status(vmid).disk_mb

    def get_display_name(self, vmid: int) -> str:
        return self.get_vm_status(vmid).name

    def set_memory_mb(self, vmid: int, memory_mb: int) -> MemoryUpdateResult:
        """
        Set the memory allocation of a VM

        The write is successful when the response is 2xx and its body carries
        no "errors" marker. Transport failures are returned as unsuccessful
        results.
        """
        try:
            response = self.session.post(
                self._config_url(vmid),
                data={"memory": memory_mb},
                timeout=self.config.timeout,
            )
        except requests.exceptions.RequestException as e:
            return MemoryUpdateResult(success=False, body=str(e))

        body = response.text
        if not response.ok:
            return MemoryUpdateResult(success=False, body=f"HTTP {response.status_code}: {body}")
        return MemoryUpdateResult(success='"errors"' not in body, body=body)
