"""Output formatting for the sealedlicense CLI.

Every command can print either a JSON envelope (machine-parseable) or a
short human-readable summary.
"""

from __future__ import annotations

import json
from typing import Any

import click

from sealedlicense.signing import LicenseStatus, VerificationResult

_STATUS_COLOURS: dict[LicenseStatus, str] = {
    LicenseStatus.VALID: "green",
    LicenseStatus.EXPIRED: "yellow",
    LicenseStatus.INVALID: "red",
    LicenseStatus.CRACKED: "red",
    LicenseStatus.UNDEFINED: "white",
}


def format_response(
    status: str,
    data: dict[str, Any] | None = None,
    error: dict[str, Any] | None = None,
    json_mode: bool = False,
) -> str:
    """Build a generic response envelope.

    :param status: ``"success"`` or ``"error"``.
    :param data: Payload dict (used when *status* is ``"success"``).
    :param error: Error detail dict with keys ``code`` and ``message``.
    :param json_mode: Return a JSON string instead of plain text.
    """
    if json_mode:
        envelope: dict[str, Any] = {
            "status": status,
            "data": data,
            "error": error,
        }
        return json.dumps(envelope, indent=2, sort_keys=False)

    if status == "error" and error:
        code = error.get("code", "UNKNOWN")
        message = error.get("message", "An unknown error occurred.")
        return click.style(f"Error [{code}]: ", fg="red", bold=True) + message

    if data:
        return "\n".join(f"{key}: {value}" for key, value in data.items())

    return f"Status: {status}"


def format_verification(
    result: VerificationResult,
    *,
    hardware_ok: bool | None = None,
    json_mode: bool = False,
) -> str:
    """Render the outcome of ``verify``.

    *hardware_ok* is ``None`` when the device check was not requested.
    """
    data: dict[str, Any] = {"license_status": result.status.value}
    if hardware_ok is not None:
        data["hardware_match"] = hardware_ok
    if result.license is not None:
        data["license"] = result.license.to_dict()

    if json_mode:
        return format_response("success", data=data, json_mode=True)

    colour = _STATUS_COLOURS.get(result.status, "white")
    lines = [click.style(f"License {result.status.value.upper()}", fg=colour, bold=True)]
    if result.license is not None:
        entity = result.license
        lines.append(f"  Expires:  {entity.expiry_date.isoformat()}")
        if entity.hardware_id is not None:
            lines.append(f"  Device:   {entity.hardware_id}")
        for name, value in sorted(entity.fields.items()):
            lines.append(f"  {name}: {value}")
    if hardware_ok is False:
        lines.append(click.style("  Issued for a different device", fg="red"))
    return "\n".join(lines)
