"""Shared fixtures for the Proxmox resource check tests."""

from pathlib import Path

import pytest

from pve_secrets import OPTIONAL_KEYS, REQUIRED_KEYS


@pytest.fixture(autouse=True)
def clean_proxmox_env(monkeypatch):
    """Keep PROXMOX_* variables from the developer shell out of the tests."""
    for key in REQUIRED_KEYS + OPTIONAL_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def env_file(tmp_path) -> Path:
    path = tmp_path / "test.env"
    path.write_text(
        "PROXMOX_HOST=https://pve.test:8006/\n"
        "PROXMOX_NODE=pve1\n"
        "PROXMOX_TOKEN_ID=root@pam!checker\n"
        "PROXMOX_TOKEN_SECRET=s3cret\n"
    )
    return path
