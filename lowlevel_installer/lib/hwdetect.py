from __future__ import annotations

import logging
import platform
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# Block devices that are never installation targets.
_IGNORED_BLOCK_PREFIXES = ("loop", "ram", "zram", "sr", "fd", "md", "dm-")

_SECURE_BOOT_VAR = "SecureBoot-8be4df61-93ca-11d2-aa0d-00e098032b8c"


def normalize_arch(machine: str) -> str:
    m = machine.lower()
    return {
        "x86_64": "amd64",
        "amd64": "amd64",
        "aarch64": "arm64",
        "arm64": "arm64",
    }.get(m, m)


def _read_text(path: Path) -> Optional[str]:
    try:
        txt = path.read_text(encoding="utf-8", errors="ignore").strip()
        return txt or None
    except OSError:
        return None


def detect_boot_type(sys_root: Path = Path("/sys")) -> str:
    """Boot mode of the *currently running* environment: 'efi' or 'bios'."""

    if (sys_root / "firmware/efi").exists():
        return "efi"
    return "bios"


def detect_secure_boot(sys_root: Path = Path("/sys")) -> Optional[bool]:
    var = sys_root / "firmware/efi/efivars" / _SECURE_BOOT_VAR
    try:
        data = var.read_bytes()
    except OSError:
        return None
    # 4 bytes of attributes, then the one-byte value
    return len(data) >= 5 and data[4] == 1


def detect_disks(sys_root: Path = Path("/sys")) -> List[Dict[str, Any]]:
    disks: List[Dict[str, Any]] = []
    block = sys_root / "block"
    if not block.exists():
        return disks

    for index, dev in enumerate(sorted(block.iterdir(), key=lambda p: p.name)):
        if dev.name.startswith(_IGNORED_BLOCK_PREFIXES):
            continue
        sectors = _read_text(dev / "size")
        if not sectors or not sectors.isdigit() or int(sectors) == 0:
            continue
        bsize = _read_text(dev / "queue/logical_block_size")
        disks.append(
            {
                "path": f"/dev/{dev.name}",
                "index": str(index),
                # Linux reports block device sizes in 512-byte sectors regardless of the hardware.
                "size": round(int(sectors) * 512 / 1024**3, 3),
                "model": _read_text(dev / "device/model"),
                "block_size": int(bsize) if bsize and bsize.isdigit() else None,
            }
        )
    return disks


def detect_interfaces(sys_root: Path = Path("/sys")) -> Dict[str, Dict[str, Any]]:
    interfaces: Dict[str, Dict[str, Any]] = {}
    net = sys_root / "class/net"
    if not net.exists():
        return interfaces

    for nic in sorted(net.iterdir(), key=lambda p: p.name):
        if nic.name == "lo" or not (nic / "device").exists():
            continue
        operstate = (_read_text(nic / "operstate") or "unknown").upper()
        index = _read_text(nic / "ifindex")
        interfaces[nic.name] = {
            "name": nic.name,
            "index": int(index) if index and index.isdigit() else 0,
            "mac": _read_text(nic / "address") or "",
            "state": operstate if operstate in {"UP", "DOWN"} else "UNKNOWN",
            "addresses": [],
        }
    return interfaces


def detect_memory_mib(proc_root: Path = Path("/proc")) -> int:
    text = _read_text(proc_root / "meminfo") or ""
    for line in text.splitlines():
        if line.startswith("MemTotal:"):
            return int(line.split()[1]) // 1024
    return 0


def detect_hvm_support(proc_root: Path = Path("/proc")) -> bool:
    text = _read_text(proc_root / "cpuinfo") or ""
    for line in text.splitlines():
        if line.startswith(("flags", "Features")):
            flags = set(line.split(":", 1)[-1].split())
            if flags & {"vmx", "svm"}:
                return True
    return False


def detect_runtime(sys_root: Path = Path("/sys"), proc_root: Path = Path("/proc")) -> Dict[str, Any]:
    """Collect the runtime environment facts the installer UI and steps consume."""

    hw: Dict[str, Any] = {
        "arch": normalize_arch(platform.machine()),
        "boot_type": detect_boot_type(sys_root),
        "secure_boot": detect_secure_boot(sys_root),
        "country": None,
        "disks": detect_disks(sys_root),
        "network": {
            "hostname": None,
            "dns": {"domain": None, "dns": []},
            "routes": None,
            "interfaces": detect_interfaces(sys_root),
        },
        "total_memory": detect_memory_mib(proc_root),
        "hvm_supported": detect_hvm_support(proc_root),
        "virtualization": _read_text(sys_root / "class/dmi/id/product_name"),
    }

    logger.info(
        "Runtime: arch=%s boot_type=%s disks=%d nics=%d",
        hw["arch"],
        hw["boot_type"],
        len(hw["disks"]),
        len(hw["network"]["interfaces"]),
    )
    return hw
