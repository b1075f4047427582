"""Device fingerprinting for hardware-bound licenses.

:func:`device_fingerprint` derives a stable identifier for the current
host.  Issue and verify never call it: binding a license is done by putting
the fingerprint in ``LicenseEntity.hardware_id`` at issue time, and
enforcing it is up to the application after verification, typically::

    license, status = verify_license(token, public_key)
    if status is LicenseStatus.VALID and not hardware_matches(license):
        ...  # issued for another machine
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import platform
import subprocess
import uuid
from pathlib import Path

from sealedlicense.document import LicenseEntity

logger = logging.getLogger(__name__)

_MACHINE_ID_FILES = (
    Path("/etc/machine-id"),
    Path("/var/lib/dbus/machine-id"),
)


def _read_machine_guid() -> str | None:
    """Return the Windows ``MachineGuid`` registry value, if any."""
    if platform.system().lower() != "windows":
        return None
    try:
        output = subprocess.check_output(
            ["reg", "query", r"HKLM\SOFTWARE\Microsoft\Cryptography", "/v", "MachineGuid"],
            stderr=subprocess.STDOUT,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.debug("MachineGuid lookup failed: %s", exc)
        return None
    for line in output.splitlines():
        if "MachineGuid" in line:
            return line.split()[-1].strip()
    return None


def _read_machine_id() -> str | None:
    """Return the systemd/dbus machine id on Linux hosts."""
    for path in _MACHINE_ID_FILES:
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _platform_components() -> list[str]:
    components = [
        platform.node(),
        platform.machine(),
        platform.processor(),
        platform.system(),
    ]
    node = uuid.getnode()
    # getnode() falls back to a random number with the multicast bit set.
    if not (node >> 40) & 1:
        components.append(f"{node:012x}")
    return [component for component in components if component]


def device_fingerprint() -> str:
    """Return a SHA-256 hex digest identifying this machine.

    The OS machine id (``/etc/machine-id`` or the Windows ``MachineGuid``)
    is used on its own when present, so renaming the host or swapping a
    network card keeps existing bindings.  Hosts without one fall back to
    the hostname, architecture, OS and primary MAC address.
    """
    machine_id = _read_machine_id() or _read_machine_guid()
    if machine_id:
        # Hashed under an application prefix, never exposed raw (machine-id(5)).
        source = f"sealedlicense:{machine_id}"
    else:
        logger.debug("No machine id available, fingerprinting platform facts")
        source = "|".join(_platform_components())
    return hashlib.sha256(source.encode("utf-8")).hexdigest()


def hardware_matches(entity: LicenseEntity, device_id: str | None = None) -> bool:
    """Whether *entity* may be used on the device identified by *device_id*.

    Unbound licenses match every device.  *device_id* defaults to
    :func:`device_fingerprint`.
    """
    if entity.hardware_id is None:
        return True
    current = device_id if device_id is not None else device_fingerprint()
    return hmac.compare_digest(entity.hardware_id.encode("utf-8"), current.encode("utf-8"))
