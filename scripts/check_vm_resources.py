#!/usr/bin/env python3
"""
Proxmox VM Resource Check
Purpose: Compare per-VM memory and storage usage against CSV thresholds and
raise (or optionally trim) allocated memory through the Proxmox VE API.

Usage:
    check_vm_resources.py [-c CSV_FILE] [-e ENV_FILE] [-o] [--log FILE]

CSV format (one VM per line, '#' starts a comment):
    vmid,memory_threshold_percent,storage_threshold_percent
    101,80,90

Examples:
    # Check the VMs listed in item.csv next to this script
    check_vm_resources.py

    # Use another CSV and env file
    check_vm_resources.py -c mydata.csv -e myenv.env

    # Also shrink memory by 10% (rounded up to 128 MB) on VMs under threshold
    check_vm_resources.py -o
"""

import argparse
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

# Add scripts directory to path for sibling imports
sys.path.insert(0, str(Path(__file__).parent))

from pve_client import ProxmoxAPIError, ProxmoxClient, VMStatus
from pve_secrets import load_config_with_secrets

SCRIPT_DIR = Path(__file__).resolve().parent
DEFAULT_CSV_FILE = SCRIPT_DIR / "item.csv"
DEFAULT_ENV_FILE = SCRIPT_DIR / "default.env"

MEMORY_STEP_MB = 128
NUMERIC_FIELD = re.compile(r"^[0-9]+$")

LABEL_INCREASED = "Memory increased"
LABEL_OPTIMIZED = "Memory optimized"


# Color output
class Colors:
    RED = "\033[0;31m"
    GREEN = "\033[0;32m"
    YELLOW = "\033[1;33m"
    BLUE = "\033[0;34m"
    NC = "\033[0m"  # No Color


_log_file: Optional[str] = None


def set_log_file(path: Optional[str]) -> None:
    global _log_file
    _log_file = path


def log(message: str):
    """Write message to log file if logging is enabled"""
    if _log_file:
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        try:
            with open(_log_file, "a", encoding="utf-8") as f:
                f.write(f"[{timestamp}] {message}\n")
        except OSError:
            pass  # Log write failures never stop a run


def print_message(color: str, message: str):
    """Print colored message and log it"""
    print(f"{color}{message}{Colors.NC}")
    log(message)


def print_plain(message: str):
    print(message)
    log(message)


@dataclass(frozen=True)
class ThresholdRecord:
    vmid: int
    memory_threshold: int
    storage_threshold: int


@dataclass(frozen=True)
class ThresholdRow:
    """One counted CSV line; record is None when the line is malformed"""

    line_no: int
    raw: str
    record: Optional[ThresholdRecord]


@dataclass
class RunCounters:
    total_items: int = 0
    healthy_items: int = 0
    memory_exceeded: int = 0
    storage_exceeded: int = 0
    api_errors: int = 0

    def __add__(self, other: "RunCounters") -> "RunCounters":
        return RunCounters(
            total_items=self.total_items + other.total_items,
            healthy_items=self.healthy_items + other.healthy_items,
            memory_exceeded=self.memory_exceeded + other.memory_exceeded,
            storage_exceeded=self.storage_exceeded + other.storage_exceeded,
            api_errors=self.api_errors + other.api_errors,
        )

    def summary_lines(self) -> List[str]:
        lines = [
            "Summary:",
            f"- Total items checked: {self.total_items}",
            f"- Healthy items: {self.healthy_items}",
            f"- Items exceeding memory threshold: {self.memory_exceeded}",
            f"- Items exceeding storage threshold: {self.storage_exceeded}",
        ]
        if self.api_errors:
            lines.append(f"- Items with API errors: {self.api_errors}")
        return lines


def iter_threshold_rows(csv_path: Path) -> Iterator[ThresholdRow]:
    """
    Yield the counted rows of a threshold CSV in file order.

    Each line is split on commas; quotes carry no meaning. Blank lines and
    lines whose first field is empty or starts with '#' are not yielded. A
    line with anything other than three all-digit fields is yielded with
    record=None. Undecodable bytes are replaced, so they end up in a comment
    or a malformed row.
    """
    with open(csv_path, "r", newline="", encoding="utf-8", errors="replace") as f:
        for line_no, line in enumerate(f, start=1):
            raw = line.rstrip("\r\n")
            fields = raw.split(",")
            if not fields[0] or fields[0].startswith("#"):
                continue

            if len(fields) != 3 or not all(NUMERIC_FIELD.match(field) for field in fields):
                yield ThresholdRow(line_no, raw, None)
                continue

            vmid, memory_threshold, storage_threshold = (int(field) for field in fields)
            yield ThresholdRow(line_no, raw, ThresholdRecord(vmid, memory_threshold, storage_threshold))


def memory_usage_percent(mem_mb: int, maxmem_mb: int) -> int:
    if maxmem_mb > 0:
        return mem_mb * 100 // maxmem_mb
    return 0


def storage_usage_percent(disk_mb: int) -> int:
    """Usage against a total taken to equal the current usage: 100 or 0"""
    total_mb = disk_mb
    if total_mb > 0:
        return disk_mb * 100 // total_mb
    return 0


def optimized_memory_mb(mem_mb: int) -> int:
    """90% of current usage rounded up, then rounded up to a 128 MB step"""
    raw_mb = (mem_mb * 9 + 9) // 10
    return (raw_mb + MEMORY_STEP_MB - 1) // MEMORY_STEP_MB * MEMORY_STEP_MB


def format_vm_line(status: VMStatus, mem_percent: int, storage_percent: int, label: str) -> str:
    return (
        f"- VM {status.name}#{status.vmid}; Memory usage: {mem_percent}% ; "
        f"Storage usage: {storage_percent}% ; {label}"
    )


class VMResourceChecker:
    """Check VM usage against thresholds and adjust memory allocation."""

    def __init__(self, client: ProxmoxClient, optimize: bool = False):
        self.client = client
        self.optimize = optimize

    def _apply_memory(self, vmid: int, memory_mb: int, done: str, doing: str) -> None:
        result = self.client.set_memory_mb(vmid, memory_mb)
        if result.success:
            print_message(Colors.GREEN, f"✓ Successfully {done} memory for VM {vmid} to {memory_mb}MB")
        else:
            print_message(Colors.RED, f"✗ Error {doing} memory for VM {vmid}")
            print_plain(result.body)

    def check_record(self, record: ThresholdRecord) -> RunCounters:
        """Decide, act and report for one VM; returns this record's counts"""
        counters = RunCounters(total_items=1)

        try:
            status = self.client.get_vm_status(record.vmid)
        except ProxmoxAPIError as e:
            print_message(Colors.RED, f"⛔ Failed to query VM {record.vmid}: {e}")
            counters.api_errors += 1
            return counters

        mem_percent = memory_usage_percent(status.mem_mb, status.maxmem_mb)
        storage_percent = storage_usage_percent(status.disk_mb)

        label = ""
        if mem_percent > record.memory_threshold:
            counters.memory_exceeded += 1
            # Raised value is the current usage itself
            new_mem = status.mem_mb
            label = LABEL_INCREASED
            print_message(
                Colors.YELLOW,
                f"Memory usage exceeds threshold. Setting VM {record.vmid} memory to {new_mem}MB via API.",
            )
            self._apply_memory(record.vmid, new_mem, "updated", "updating")
        elif self.optimize and mem_percent < record.memory_threshold:
            new_mem = optimized_memory_mb(status.mem_mb)
            label = LABEL_OPTIMIZED
            print_message(
                Colors.BLUE,
                f"Optimizing memory for VM {record.vmid}: decreasing to {new_mem}MB via API.",
            )
            self._apply_memory(record.vmid, new_mem, "optimized", "optimizing")

        if storage_percent > record.storage_threshold:
            counters.storage_exceeded += 1
            print_message(
                Colors.YELLOW,
                f"🔔 ALERT: Storage consumption ({storage_percent}%) exceeds threshold "
                f"({record.storage_threshold}%) for VM {record.vmid}",
            )

        if mem_percent <= record.memory_threshold and storage_percent <= record.storage_threshold:
            counters.healthy_items += 1

        print_plain(format_vm_line(status, mem_percent, storage_percent, label))
        return counters

    def run(self, csv_path: Path) -> RunCounters:
        """Process every row of the CSV in order and print the summary"""
        totals = RunCounters()

        for row in iter_threshold_rows(csv_path):
            if row.record is None:
                print_message(
                    Colors.RED,
                    f"⛔ Invalid entry in CSV (line {row.line_no}: '{row.raw}') – "
                    "vmid and thresholds must be numeric. Skipping.",
                )
                totals = totals + RunCounters(total_items=1)
                continue
            totals = totals + self.check_record(row.record)

        print_plain("")
        for line in totals.summary_lines():
            print_plain(line)
        return totals


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the VM resource check CLI."""
    parser = argparse.ArgumentParser(
        description="Check Proxmox VM memory and storage usage against CSV thresholds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "-c",
        dest="csv_file",
        metavar="CSV_FILE",
        default=str(DEFAULT_CSV_FILE),
        help="Path to CSV file (default: item.csv in script directory)",
    )
    parser.add_argument(
        "-e",
        dest="env_file",
        metavar="ENV_FILE",
        help="Path to environment file (default: default.env in script directory)",
    )
    parser.add_argument(
        "-o",
        dest="optimize",
        action="store_true",
        help="Optimize memory: if usage is below threshold, decrease memory by 10%% "
             "(rounded up to nearest 128 MB)",
    )
    parser.add_argument(
        "--log",
        metavar="FILE",
        help="Append timestamped output to FILE",
    )
    args = parser.parse_args(argv)

    set_log_file(args.log)

    env_file = Path(args.env_file) if args.env_file else None
    config = load_config_with_secrets(DEFAULT_ENV_FILE, env_file)

    csv_path = Path(args.csv_file)
    if not csv_path.is_file():
        print_message(Colors.RED, f"ERROR: CSV file '{csv_path}' not found.")
        return 1

    client = ProxmoxClient(config)
    try:
        VMResourceChecker(client, optimize=args.optimize).run(csv_path)
    except OSError as e:
        print_message(Colors.RED, f"ERROR: Failed to read CSV file '{csv_path}': {e}")
        return 1
    except KeyboardInterrupt:
        print("\n\nOperation cancelled by user")
        return 130
    finally:
        client.close()

    return 0


if __name__ == "__main__":
    sys.exit(main())
