"""sealedlicense - issue and verify signed, offline license tokens.

Usage:
    sealedlicense keygen --private-out KEY --public-out PUB [--algorithm rsa|ecdsa|ed25519]
    sealedlicense issue --expires YYYY-MM-DD [--field k=v]... [--hardware-id ID | --bind-device] [--output FILE] [--json]
    sealedlicense verify [TOKEN] [--file FILE] [--check-device] [--json]
    sealedlicense fingerprint [--json]
    sealedlicense init [--private-key KEY] [--public-key PUB]
"""

from __future__ import annotations

import sys
from datetime import date
from pathlib import Path

import click

from sealedlicense.config import get_default_config_path, init_config, load_config, validate_config
from sealedlicense.document import LicenseEntity
from sealedlicense.errors import KeyLoadError, SigningError
from sealedlicense.exit_codes import HARDWARE_MISMATCH, SUCCESS, exit_code_for, exit_code_for_status
from sealedlicense.hardware import device_fingerprint, hardware_matches
from sealedlicense.keys import (
    KEY_ALGORITHMS,
    generate_key_pair,
    load_private_key_file,
    load_public_key_file,
    write_key_pair,
)
from sealedlicense.log_config import configure_logging
from sealedlicense.output import format_response, format_verification
from sealedlicense.signing import LicenseStatus, issue_license, verify_license

# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _emit(output: str, exit_code: int = SUCCESS) -> None:
    """Print output and exit with the given code."""
    click.echo(output)
    sys.exit(exit_code)


def _emit_error(
    code: str,
    message: str,
    json_mode: bool,
    exit_code: int | None = None,
) -> None:
    """Emit a structured error and exit."""
    if exit_code is None:
        exit_code = exit_code_for(code)
    output = format_response(
        "error",
        error={"code": code, "message": message},
        json_mode=json_mode,
    )
    click.echo(output)
    sys.exit(exit_code)


def _resolve_config(ctx: click.Context, command: str, json_mode: bool, **overrides: object) -> dict[str, object]:
    """Load config with CLI overrides applied, exiting on validation errors."""
    config = load_config(ctx.obj.get("config_path"), **overrides)
    valid, err = validate_config(config, command)
    if not valid:
        _emit_error("VALIDATION_ERROR", f"Configuration error: {err}", json_mode)
    return config


def _parse_fields(pairs: tuple[str, ...], json_mode: bool) -> dict[str, str]:
    fields: dict[str, str] = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        name = name.strip()
        if not sep or not name:
            _emit_error("VALIDATION_ERROR", f"--field expects NAME=VALUE, got {pair!r}", json_mode)
        if name in fields:
            _emit_error("VALIDATION_ERROR", f"Field {name!r} given more than once", json_mode)
        fields[name] = value
    return fields


def _read_token(token: str | None, token_file: str | None, json_mode: bool) -> str:
    if token and token_file:
        _emit_error("VALIDATION_ERROR", "Pass either TOKEN or --file, not both", json_mode)
    if token_file == "-":
        return sys.stdin.read()
    if token_file:
        try:
            return Path(token_file).expanduser().read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            _emit_error("FILE_ERROR", f"Could not read {token_file}: {exc}", json_mode)
    if token is None:
        _emit_error("VALIDATION_ERROR", "A license token (argument or --file) is required", json_mode)
    return token or ""


# ------------------------------------------------------------------
# CLI group
# ------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "config_path",
    envvar="SEALEDLICENSE_CONFIG",
    type=click.Path(dir_okay=False),
    default=None,
    help="Config file (default: ~/.sealedlicense/config.yaml).",
)
@click.version_option(package_name="sealedlicense")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None) -> None:
    """Issue and verify signed, offline license tokens."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    config = load_config(config_path)
    configure_logging(
        str(config["log_dir"]) if config["log_dir"] else None,
        level=str(config["log_level"]),
    )


# ------------------------------------------------------------------
# keygen
# ------------------------------------------------------------------


@cli.command()
@click.option("--algorithm", type=click.Choice(KEY_ALGORITHMS), default="rsa", show_default=True)
@click.option("--private-out", required=True, type=click.Path(dir_okay=False), help="Private key PEM to write.")
@click.option("--public-out", required=True, type=click.Path(dir_okay=False), help="Public key PEM to write.")
@click.option("--password", envvar="SEALEDLICENSE_KEY_PASSWORD", default=None, help="Encrypt the private key.")
@click.option("--force", is_flag=True, default=False, help="Overwrite existing key files.")
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
def keygen(
    algorithm: str,
    private_out: str,
    public_out: str,
    password: str | None,
    force: bool,
    json_mode: bool,
) -> None:
    """Generate a signing key pair."""
    for target in (private_out, public_out):
        if Path(target).expanduser().exists() and not force:
            _emit_error("FILE_ERROR", f"{target} already exists (use --force to overwrite)", json_mode)

    pair = generate_key_pair(algorithm, password=password)
    try:
        write_key_pair(pair, private_out, public_out)
    except OSError as exc:
        _emit_error("FILE_ERROR", f"Could not write key files: {exc}", json_mode)

    _emit(
        format_response(
            "success",
            data={
                "algorithm": algorithm,
                "private_key": private_out,
                "public_key": public_out,
                "encrypted": bool(password),
            },
            json_mode=json_mode,
        )
    )


# ------------------------------------------------------------------
# issue
# ------------------------------------------------------------------


@cli.command()
@click.option("--expires", required=True, help="Last valid day, YYYY-MM-DD.")
@click.option("--field", "field_pairs", multiple=True, help="Extra NAME=VALUE field (repeatable).")
@click.option("--hardware-id", default=None, help="Bind to this device fingerprint.")
@click.option("--bind-device", is_flag=True, default=False, help="Bind to the current machine.")
@click.option("--private-key", type=click.Path(dir_okay=False), default=None, help="Signing key file.")
@click.option("--password", envvar="SEALEDLICENSE_KEY_PASSWORD", default=None, help="Signing key password.")
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="Also write the token here.")
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def issue(
    ctx: click.Context,
    expires: str,
    field_pairs: tuple[str, ...],
    hardware_id: str | None,
    bind_device: bool,
    private_key: str | None,
    password: str | None,
    output: str | None,
    json_mode: bool,
) -> None:
    """Issue a signed license token."""
    try:
        expiry_date = date.fromisoformat(expires)
    except ValueError:
        _emit_error("VALIDATION_ERROR", f"--expires must be YYYY-MM-DD, got {expires!r}", json_mode)
    if hardware_id is not None and bind_device:
        _emit_error("VALIDATION_ERROR", "Use either --hardware-id or --bind-device", json_mode)
    if bind_device:
        hardware_id = device_fingerprint()

    fields = _parse_fields(field_pairs, json_mode)
    config = _resolve_config(ctx, "issue", json_mode, private_key=private_key)

    try:
        key = load_private_key_file(str(config["private_key"]), password)
    except KeyLoadError as exc:
        _emit_error("KEY_ERROR", str(exc), json_mode)

    entity = LicenseEntity(expiry_date=expiry_date, hardware_id=hardware_id, fields=fields)
    try:
        token = issue_license(entity, key)
    except SigningError as exc:
        _emit_error("SIGNING_ERROR", str(exc), json_mode)

    if output:
        try:
            out_path = Path(output).expanduser()
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(token + "\n", encoding="utf-8")
        except OSError as exc:
            _emit_error("FILE_ERROR", f"Could not write {output}: {exc}", json_mode)

    if json_mode:
        _emit(format_response("success", data={"token": token, "license": entity.to_dict()}, json_mode=True))
    _emit(token)


# ------------------------------------------------------------------
# verify
# ------------------------------------------------------------------


@cli.command()
@click.argument("token", required=False)
@click.option("--file", "token_file", type=click.Path(dir_okay=False, allow_dash=True), default=None,
              help="Read the token from a file ('-' for stdin).")
@click.option("--public-key", type=click.Path(dir_okay=False), default=None,
              help="Public key or certificate file.")
@click.option("--check-device", is_flag=True, default=False,
              help="Fail if the license is bound to another machine.")
@click.option("--device-id", default=None, help="Fingerprint to check against (default: this machine).")
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
@click.pass_context
def verify(
    ctx: click.Context,
    token: str | None,
    token_file: str | None,
    public_key: str | None,
    check_device: bool,
    device_id: str | None,
    json_mode: bool,
) -> None:
    """Verify a license token and report its status."""
    raw = _read_token(token, token_file, json_mode)
    config = _resolve_config(ctx, "verify", json_mode, public_key=public_key)

    try:
        key = load_public_key_file(str(config["public_key"]))
    except KeyLoadError as exc:
        _emit_error("KEY_ERROR", str(exc), json_mode)

    result = verify_license(raw, key)

    hardware_ok: bool | None = None
    if (check_device or device_id is not None) and result.license is not None:
        hardware_ok = hardware_matches(result.license, device_id)

    exit_code = exit_code_for_status(result.status)
    if hardware_ok is False and result.status is LicenseStatus.VALID:
        exit_code = HARDWARE_MISMATCH
    _emit(format_verification(result, hardware_ok=hardware_ok, json_mode=json_mode), exit_code)


# ------------------------------------------------------------------
# fingerprint
# ------------------------------------------------------------------


@cli.command()
@click.option("--json", "json_mode", is_flag=True, default=False, help="Output as JSON.")
def fingerprint(json_mode: bool) -> None:
    """Print this machine's device fingerprint."""
    device_id = device_fingerprint()
    if json_mode:
        _emit(format_response("success", data={"hardware_id": device_id}, json_mode=True))
    _emit(device_id)


# ------------------------------------------------------------------
# init
# ------------------------------------------------------------------


@cli.command()
@click.option("--private-key", type=click.Path(dir_okay=False), default=None, help="Default signing key.")
@click.option("--public-key", type=click.Path(dir_okay=False), default=None, help="Default verification key.")
@click.option("--force", is_flag=True, default=False, help="Overwrite an existing config file.")
@click.pass_context
def init(ctx: click.Context, private_key: str | None, public_key: str | None, force: bool) -> None:
    """Write a starter config file."""
    path = Path(ctx.obj.get("config_path") or get_default_config_path())
    if path.exists() and not force:
        _emit_error("FILE_ERROR", f"{path} already exists (use --force to overwrite)", False)
    written = init_config(path, private_key=private_key, public_key=public_key)
    _emit(f"Config written to {written}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
