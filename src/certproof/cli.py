"""
Command-line interface for certproof.

Usage:
    certproof issue 42 --meta name=Alice --out proof.png
    certproof verify qr.json
    echo '{"v":1,...}' | certproof verify -
    certproof status 42
    certproof upload metadata.json
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from certproof.issuer import DEFAULT_METADATA, CertificateIssuer
from certproof.ledger import (
    DEFAULT_RPC_URL,
    CertificateLedger,
    LedgerError,
    LedgerStatus,
)
from certproof.metadata_store import DEFAULT_IPFS_URL, MetadataStore, MetadataStoreError
from certproof.payload import PayloadError, coerce_token_id
from certproof.qr import WireFormatError, decode
from certproof.signing import AttestationSigner, IssuerKey, KeyConfigurationError
from certproof.verifier import CrossChecker, CrossCheckResult, SignatureVerifier


console = Console()

EXIT_OK = 0
EXIT_SIGNATURE_INVALID = 1
EXIT_ERROR = 2
EXIT_REVOKED = 3
EXIT_LEDGER_UNKNOWN = 4

VALIDITY_CHOICES = {"ledger": None, "valid": True, "invalid": False}


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def fail(message: str, json_output: bool) -> NoReturn:
    """Print an error and exit with the error status."""
    if json_output:
        console.print_json(data={"error": message})
    else:
        console.print(f"[red]Error:[/] {message}")
    sys.exit(EXIT_ERROR)


def ledger_status_text(status: LedgerStatus | None) -> str:
    if status is None:
        return "[dim]Not checked[/]"
    if status == LedgerStatus.VALID:
        return "[green]Valid[/]"
    if status == LedgerStatus.INVALID:
        return "[red]Invalid[/]"
    return "[yellow]Unknown[/]"


def format_result(result: CrossCheckResult) -> None:
    """Format and print a cross-check result."""
    sig = result.signature
    if sig.valid:
        signature_text = "[bold green]VALID[/]"
        panel_style = "green" if result.ledger_valid_now is not False else "yellow"
    else:
        signature_text = "[bold red]INVALID[/]"
        panel_style = "red"

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")

    table.add_row("Token ID", str(result.token_id))
    table.add_row("Signature", signature_text)
    table.add_row("Expected Issuer", sig.expected_address)
    if sig.recovered_address:
        table.add_row("Recovered Issuer", sig.recovered_address)
    if sig.error:
        table.add_row("Signature Error", f"[red]{sig.error}[/]")

    table.add_row("Attested Valid", "Yes" if result.payload.valid else "No")
    table.add_row("Attested At", str(result.payload.timestamp))
    table.add_row(
        "Ledger Status Now",
        ledger_status_text(result.ledger.status if result.ledger else None),
    )

    for key, value in result.payload.metadata.items():
        table.add_row(key, str(value))

    console.print(Panel(table, title="Attestation Check", border_style=panel_style))

    if result.warnings:
        console.print("\n[bold yellow]Warnings:[/]")
        for warning in result.warnings:
            console.print(f"  [yellow]![/] {warning}")


def result_to_dict(result: CrossCheckResult) -> dict[str, Any]:
    return {
        "tokenId": result.token_id,
        "signatureValid": result.signature_valid,
        "ledgerValidNow": result.ledger_valid_now,
        "signature": {
            "valid": result.signature.valid,
            "recoveredAddress": result.signature.recovered_address,
            "expectedAddress": result.signature.expected_address,
            "messageHash": result.signature.message_hash,
            "error": result.signature.error,
        },
        "ledger": {
            "status": result.ledger.status.value,
            "message": result.ledger.message,
        } if result.ledger else None,
        "payload": result.payload.to_dict(),
        "warnings": result.warnings,
    }


def exit_code(result: CrossCheckResult) -> int:
    """Map a cross-check result to the process exit status."""
    if not result.signature_valid:
        return EXIT_SIGNATURE_INVALID
    if result.ledger is None:
        return EXIT_OK
    if result.ledger.status == LedgerStatus.INVALID:
        return EXIT_REVOKED
    if result.ledger.status == LedgerStatus.UNKNOWN:
        return EXIT_LEDGER_UNKNOWN
    return EXIT_OK


def load_qr_data(source: str) -> str:
    """Load scanned QR text from a file, stdin, or the argument itself.

    Args:
        source: File path, "-" for stdin, or literal JSON text.

    Returns:
        The QR text.

    Raises:
        OSError: If the file cannot be read.
    """
    if source == "-":
        return sys.stdin.read()

    if source.lstrip().startswith("{"):
        return source

    return Path(source).read_text(encoding="utf-8")


def parse_metadata(items: tuple[str, ...]) -> dict[str, str]:
    """Parse repeated ``key=value`` options."""
    metadata: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {item!r}", param_hint="--meta")
        metadata[key] = value
    return metadata


def make_ledger(
    contract: str | None,
    rpc_url: str,
    timeout: float,
    verify_ssl: bool = True,
) -> CertificateLedger | None:
    """Create the ledger client, or None when no contract is configured."""
    if not contract:
        return None
    try:
        return CertificateLedger(contract, rpc_url=rpc_url, timeout=timeout, verify_ssl=verify_ssl)
    except ValueError as e:
        raise click.BadParameter(f"Invalid contract address: {e}", param_hint="--contract") from e


key_option = click.option(
    "--key",
    envvar="UNIVERSITY_PRIVATE_KEY",
    help="Issuer private key (hex)",
)
rpc_option = click.option(
    "--rpc-url",
    envvar="RPC_URL",
    default=DEFAULT_RPC_URL,
    show_default=True,
    help="Ethereum JSON-RPC endpoint",
)
contract_option = click.option(
    "--contract",
    envvar="CERT_CONTRACT_ADDRESS",
    help="Certificate contract address",
)
timeout_option = click.option(
    "--timeout",
    type=float,
    default=30.0,
    help="HTTP request timeout in seconds",
)
json_option = click.option(
    "--json-output",
    is_flag=True,
    help="Output result as JSON",
)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.version_option(package_name="certproof")
def main(verbose: bool) -> None:
    """Issue and verify signed certificate attestations carried in QR codes."""
    configure_logging(verbose)


@main.command()
@click.argument("token_id")
@click.option("--meta", "meta", multiple=True, help="Metadata field as key=value (repeatable)")
@click.option(
    "--validity",
    type=click.Choice(list(VALIDITY_CHOICES)),
    default="ledger",
    show_default=True,
    help="Read validity from the ledger or attest the given value",
)
@click.option("--out", type=click.Path(dir_okay=False, path_type=Path), help="Write the QR image as PNG")
@click.option(
    "--with-defaults",
    is_flag=True,
    help="Fill in default name and institution metadata when not given",
)
@key_option
@rpc_option
@contract_option
@timeout_option
@json_option
def issue(
    token_id: str,
    meta: tuple[str, ...],
    validity: str,
    out: Path | None,
    with_defaults: bool,
    key: str | None,
    rpc_url: str,
    contract: str | None,
    timeout: float,
    json_output: bool,
) -> None:
    """Issue a signed QR attestation for TOKEN_ID.

    Examples:

        certproof issue 42 --meta name=Alice --meta institution=University

        certproof issue 42 --validity invalid --out revoked.png
    """
    metadata = parse_metadata(meta)

    try:
        signer = AttestationSigner(IssuerKey.from_hex(key))
    except KeyConfigurationError as e:
        fail(str(e), json_output)

    issuer = CertificateIssuer(
        signer,
        ledger=make_ledger(contract, rpc_url, timeout),
        default_metadata=DEFAULT_METADATA if with_defaults else None,
    )

    try:
        issued = issuer.issue(token_id, metadata, valid=VALIDITY_CHOICES[validity])
    except PayloadError as e:
        fail(f"Invalid input: {e}", json_output)
    except LedgerError as e:
        fail(f"Cannot read certificate validity: {e}", json_output)

    if out is not None:
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_bytes(issued.qr.png_bytes())

    attestation = issued.attestation
    if json_output:
        console.print_json(data={
            "qrData": issued.qr.record.to_dict(),
            "qrText": issued.qr.text,
            "payload": attestation.payload.to_dict(),
            "signature": attestation.signature,
            "messageHash": attestation.message_hash,
            "image": str(out) if out else None,
        })
        return

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row("Token ID", str(attestation.payload.token_id))
    table.add_row("Attested Valid", "Yes" if attestation.payload.valid else "No")
    table.add_row("Issuer", attestation.payload.issuer)
    table.add_row("Timestamp", str(attestation.payload.timestamp))
    table.add_row("Message Hash", attestation.message_hash)
    if out:
        table.add_row("QR Image", str(out))
    console.print(Panel(table, title="Signed Attestation", border_style="green"))
    console.print(issued.qr.text, markup=False, highlight=False, soft_wrap=True)


@main.command()
@click.argument("source", required=True)
@click.option("--issuer", envvar="CERTPROOF_ISSUER", help="Expected issuer address")
@key_option
@rpc_option
@contract_option
@click.option("--no-ledger", is_flag=True, help="Skip the live ledger check")
@click.option("--no-ssl-verify", is_flag=True, help="Disable SSL certificate verification")
@timeout_option
@json_option
def verify(
    source: str,
    issuer: str | None,
    key: str | None,
    rpc_url: str,
    contract: str | None,
    no_ledger: bool,
    no_ssl_verify: bool,
    timeout: float,
    json_output: bool,
) -> None:
    """Verify scanned QR data.

    SOURCE can be a file containing the QR text, "-" to read from stdin,
    or the QR JSON itself.

    Exit status: 0 genuine and valid now, 1 signature invalid, 3 genuine
    but no longer valid on the ledger, 4 genuine but ledger status unknown,
    2 on input errors.
    """
    if not issuer:
        if not key:
            fail("No expected issuer: pass --issuer or configure the issuer key", json_output)
        try:
            issuer = IssuerKey.from_hex(key).address
        except KeyConfigurationError as e:
            fail(str(e), json_output)

    try:
        record = decode(load_qr_data(source))
    except OSError as e:
        fail(f"Cannot read {source}: {e}", json_output)
    except WireFormatError as e:
        fail(f"Invalid QR data: {e}", json_output)

    ledger = None
    if not no_ledger:
        ledger = make_ledger(contract, rpc_url, timeout, verify_ssl=not no_ssl_verify)

    result = CrossChecker(SignatureVerifier(issuer), ledger=ledger).check(record)
    if ledger is None and not no_ledger:
        result.warnings.append("No certificate contract configured; ledger check skipped")

    if json_output:
        console.print_json(data=result_to_dict(result))
    else:
        format_result(result)

    sys.exit(exit_code(result))


@main.command()
@click.argument("token_id")
@rpc_option
@contract_option
@timeout_option
@json_option
def status(
    token_id: str,
    rpc_url: str,
    contract: str | None,
    timeout: float,
    json_output: bool,
) -> None:
    """Query the live ledger status of TOKEN_ID."""
    try:
        token = coerce_token_id(token_id)
    except PayloadError as e:
        fail(str(e), json_output)

    ledger = make_ledger(contract, rpc_url, timeout)
    if ledger is None:
        fail("No certificate contract configured (--contract or CERT_CONTRACT_ADDRESS)", json_output)

    result = ledger.check(token)
    if json_output:
        console.print_json(data={
            "tokenId": result.token_id,
            "status": result.status.value,
            "message": result.message,
        })
    else:
        console.print(f"Token {result.token_id}: {ledger_status_text(result.status)}")
        console.print(f"[dim]{result.message}[/]")

    if result.status == LedgerStatus.VALID:
        sys.exit(EXIT_OK)
    if result.status == LedgerStatus.INVALID:
        sys.exit(EXIT_REVOKED)
    sys.exit(EXIT_LEDGER_UNKNOWN)


@main.command()
@click.argument("source", required=True)
@click.option(
    "--ipfs-url",
    envvar="IPFS_URL",
    default=DEFAULT_IPFS_URL,
    show_default=True,
    help="IPFS HTTP API endpoint",
)
@timeout_option
@json_option
def upload(source: str, ipfs_url: str, timeout: float, json_output: bool) -> None:
    """Store certificate metadata JSON from SOURCE (file or "-")."""
    try:
        text = sys.stdin.read() if source == "-" else Path(source).read_text(encoding="utf-8")
        data = json.loads(text)
    except OSError as e:
        fail(f"Cannot read {source}: {e}", json_output)
    except json.JSONDecodeError as e:
        fail(f"Invalid JSON: {e}", json_output)

    try:
        stored = MetadataStore(ipfs_url, timeout=timeout).upload(data)
    except MetadataStoreError as e:
        fail(str(e), json_output)

    if json_output:
        console.print_json(data={"cid": stored.cid, "uri": stored.uri, "size": stored.size})
    else:
        console.print(f"[green]Stored[/] {stored.uri}")


if __name__ == "__main__":
    main()
