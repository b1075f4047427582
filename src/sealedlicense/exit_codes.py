"""Exit codes for the sealedlicense CLI.

Scripts that gate an installation on ``sealedlicense verify`` can branch
on the exit code without parsing output.
"""

from __future__ import annotations

from sealedlicense.signing import LicenseStatus

# Success (and a VALID license)
SUCCESS = 0

# Signature checks out but the license has expired
EXPIRED = 1

# Signature missing, duplicated or not matching the key
INVALID = 2

# Not a well-formed license at all
CRACKED = 3

# Valid license issued for another device
HARDWARE_MISMATCH = 4

# Usage, configuration, key or signing error
OTHER_ERROR = 5


STATUS_CODE_MAP: dict[LicenseStatus, int] = {
    LicenseStatus.VALID: SUCCESS,
    LicenseStatus.EXPIRED: EXPIRED,
    LicenseStatus.INVALID: INVALID,
    LicenseStatus.CRACKED: CRACKED,
}

ERROR_CODE_MAP: dict[str, int] = {
    "HARDWARE_MISMATCH": HARDWARE_MISMATCH,
    "KEY_ERROR": OTHER_ERROR,
    "SIGNING_ERROR": OTHER_ERROR,
    "VALIDATION_ERROR": OTHER_ERROR,
    "FILE_ERROR": OTHER_ERROR,
}


def exit_code_for_status(status: LicenseStatus) -> int:
    """Map a verification status to a CLI exit code."""
    return STATUS_CODE_MAP.get(status, OTHER_ERROR)


def exit_code_for(error_code: str) -> int:
    """Map an error code string to a CLI exit code."""
    return ERROR_CODE_MAP.get(error_code, OTHER_ERROR)
