#!/usr/bin/env python3
"""
Check Proxmox Config Status
Purpose: Display current connection settings and where each one comes from
"""

import argparse
import sys
from pathlib import Path
from typing import List, Optional

# Add scripts directory to path
sys.path.insert(0, str(Path(__file__).parent))

from pve_secrets import ConfigError, SecretsManager

DEFAULT_ENV_FILE = Path(__file__).resolve().parent / "default.env"


def main(argv: Optional[List[str]] = None) -> int:
    """
    Print which PROXMOX_* settings are set and their sources.

    The token secret is masked. Returns 1 when a required setting is missing
    or the env file cannot be read, 0 otherwise.
    """
    parser = argparse.ArgumentParser(description="Show Proxmox config status")
    parser.add_argument(
        "-e",
        dest="env_file",
        metavar="ENV_FILE",
        help="Path to environment file (default: default.env in script directory)",
    )
    args = parser.parse_args(argv)

    env_file = Path(args.env_file) if args.env_file else None
    secrets_mgr = SecretsManager(DEFAULT_ENV_FILE, env_file)

    print("\n" + "=" * 60)
    print("Proxmox Config Status")
    print("=" * 60 + "\n")

    try:
        print(secrets_mgr.get_secrets_info())
        secrets_mgr.load_config()
    except ConfigError as e:
        print(f"\nERROR: {e}")
        return 1

    print("\n" + "=" * 60)
    print("\n✓ Configuration is complete\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
