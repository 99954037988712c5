from __future__ import annotations

import copy
import ipaddress
import re
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping

from .errors import ValidationError
from .snapshot import EnvironmentSnapshot

REQUIRED_FIELDS = ("disk", "filesystem", "locale")

MIN_DISK_SIZE_GIB = 2.0

_HOST_LABEL = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?$")
_TIMEZONE = re.compile(r"^(UTC|[A-Za-z_]+(/[A-Za-z0-9_+\-]+)+)$")


def _number(field: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field} must be a number", field=field)
    return float(value)


def _check_disk(value: Any, snap: EnvironmentSnapshot) -> str:
    if not isinstance(value, str) or snap.disk(value) is None:
        known = ", ".join(str(d.get("path")) for d in snap.run_env.get("disks") or [])
        raise ValidationError(f"Unknown disk {value!r} (available: {known})", field="disk")
    return value


def _check_filesystem(value: Any, snap: EnvironmentSnapshot) -> str:
    supported = list(snap.product_config.get("disk_setups") or [])
    if not isinstance(value, str) or value not in supported:
        raise ValidationError(
            f"Unsupported filesystem {value!r} (supported: {', '.join(supported)})", field="filesystem"
        )
    return value


def _check_locale(value: Any, snap: EnvironmentSnapshot) -> str:
    if not isinstance(value, str) or snap.locale(value) is None:
        raise ValidationError(f"Unknown locale {value!r}", field="locale")
    return value


def _check_keyboard(value: Any, snap: EnvironmentSnapshot) -> str:
    layouts = {kb for loc in snap.locales for kb in loc.get("keyboards") or []}
    if not isinstance(value, str) or value not in layouts:
        raise ValidationError(f"Unknown keyboard layout {value!r}", field="keyboard")
    return value


def _check_timezone(value: Any, snap: EnvironmentSnapshot) -> str:
    if not isinstance(value, str) or not _TIMEZONE.match(value):
        raise ValidationError(f"Invalid timezone {value!r}", field="timezone")
    return value


def check_fqdn(value: Any) -> str:
    if not isinstance(value, str) or len(value) > 253:
        raise ValidationError(f"Invalid hostname {value!r}", field="hostname")
    labels = value.rstrip(".").split(".")
    if len(labels) < 2:
        raise ValidationError(f"Hostname {value!r} must be a fully qualified domain name", field="hostname")
    if not all(_HOST_LABEL.match(label) for label in labels):
        raise ValidationError(f"Invalid hostname {value!r}", field="hostname")
    if labels[-1].isdigit():
        raise ValidationError(f"Hostname {value!r} must not end in a numeric label", field="hostname")
    return value


def _check_hostname(value: Any, snap: EnvironmentSnapshot) -> str:
    return check_fqdn(value)


def _check_network(value: Any, snap: EnvironmentSnapshot) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError("network must be an object", field="network")

    mode = value.get("mode", "dhcp")
    static_keys = ("interface", "cidr", "gateway", "dns")

    if mode == "dhcp":
        extra = [k for k in static_keys if value.get(k) is not None]
        if extra:
            raise ValidationError(f"Fields not supported for dhcp network: {', '.join(extra)}", field="network")
        return {"mode": "dhcp"}

    if mode != "static":
        raise ValidationError(f"network.mode must be 'dhcp' or 'static', got {mode!r}", field="network")

    missing = [k for k in static_keys if value.get(k) is None]
    if missing:
        raise ValidationError(f"Static network requires: {', '.join(missing)}", field="network")

    bad_types = [k for k in static_keys if not isinstance(value[k], str)]
    if bad_types:
        raise ValidationError(f"Static network fields must be strings: {', '.join(bad_types)}", field="network")

    if value["interface"] not in snap.interfaces:
        raise ValidationError(f"Unknown network interface {value['interface']!r}", field="network")

    try:
        cidr = ipaddress.ip_interface(value["cidr"])
        gateway = ipaddress.ip_address(value["gateway"])
        dns = ipaddress.ip_address(value["dns"])
    except ValueError as e:
        raise ValidationError(f"Invalid network address: {e}", field="network") from e

    if "/" not in str(value["cidr"]):
        raise ValidationError("network.cidr must include a prefix length", field="network")
    if gateway.version != cidr.version:
        raise ValidationError("network.gateway must be in the same address family as cidr", field="network")

    return {
        "mode": "static",
        "interface": value["interface"],
        "cidr": str(cidr),
        "gateway": str(gateway),
        "dns": str(dns),
    }


def _check_hdsize(value: Any, snap: EnvironmentSnapshot) -> float:
    size = _number("hdsize", value)
    if size <= 0:
        raise ValidationError("hdsize must be greater than zero", field="hdsize")
    return size


def _check_swapsize(value: Any, snap: EnvironmentSnapshot) -> float:
    size = _number("swapsize", value)
    if size < 0:
        raise ValidationError("swapsize must not be negative", field="swapsize")
    return size


VALIDATORS: Dict[str, Callable[[Any, EnvironmentSnapshot], Any]] = {
    "disk": _check_disk,
    "filesystem": _check_filesystem,
    "locale": _check_locale,
    "keyboard": _check_keyboard,
    "timezone": _check_timezone,
    "hostname": _check_hostname,
    "network": _check_network,
    "hdsize": _check_hdsize,
    "swapsize": _check_swapsize,
}


def _check_sizes(candidate: Mapping[str, Any], snap: EnvironmentSnapshot) -> None:
    disk = snap.disk(candidate["disk"]) if candidate.get("disk") else None
    disk_size = float(disk.get("size") or 0) if disk else None

    hdsize = candidate.get("hdsize")
    usable = hdsize if hdsize is not None else disk_size

    if disk_size is not None and disk_size < MIN_DISK_SIZE_GIB:
        raise ValidationError(
            f"Disk {candidate['disk']} is too small ({disk_size} GiB, need {MIN_DISK_SIZE_GIB} GiB)",
            field="disk",
        )
    if hdsize is not None and disk_size is not None and hdsize > disk_size:
        raise ValidationError(f"hdsize {hdsize} exceeds disk size {disk_size} GiB", field="hdsize")

    swapsize = candidate.get("swapsize")
    if swapsize is not None and usable is not None and swapsize >= usable:
        raise ValidationError(f"swapsize {swapsize} must be smaller than {usable} GiB", field="swapsize")


def apply_fields(
    current: Mapping[str, Any],
    fields: Mapping[str, Any],
    snap: EnvironmentSnapshot,
) -> Dict[str, Any]:
    """Validate a configure request and return the resulting config.

    The request is applied as a whole: if any field is rejected, the
    ValidationError propagates and `current` is left as it was.
    """

    if not fields:
        raise ValidationError("configure requires at least one field")

    candidate = dict(current)
    for name, value in fields.items():
        validator = VALIDATORS.get(name)
        if validator is None:
            raise ValidationError(f"Unknown configuration field {name!r}", field=name)
        if value is None:
            if name in REQUIRED_FIELDS:
                raise ValidationError(f"Required field {name!r} cannot be cleared", field=name)
            candidate.pop(name, None)
            continue
        candidate[name] = validator(value, snap)

    _check_sizes(candidate, snap)
    return candidate


def missing_required(config: Mapping[str, Any]) -> List[str]:
    return [name for name in REQUIRED_FIELDS if config.get(name) is None]


def freeze(value: Any) -> Any:
    """Deep read-only copy: mappings become mappingproxies, lists become tuples."""

    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return copy.deepcopy(value)


def thaw(value: Any) -> Any:
    """Plain JSON-able copy of a (possibly frozen) config."""

    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value
