"""Tests for the certproof command-line interface."""

import json

import pytest
import respx
from click.testing import CliRunner
from httpx import Response

from certproof.cli import main

from conftest import CONTRACT_ADDRESS, ISSUER_ADDRESS, ISSUER_PRIVATE_KEY, RPC_URL


TRUE_WORD = "0x" + "0" * 63 + "1"
FALSE_WORD = "0x" + "0" * 64
CID = "QmYwAPJzv5CZsnA625s3Xf2nemtYgPpHdWEz79ojWnPbdG"


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def env():
    """Environment with no ambient configuration."""
    return {
        "UNIVERSITY_PRIVATE_KEY": None,
        "CERTPROOF_ISSUER": None,
        "RPC_URL": None,
        "CERT_CONTRACT_ADDRESS": None,
        "IPFS_URL": None,
    }


@pytest.fixture
def qr_text(issuer):
    return issuer.issue(42, {"name": "Alice"}).qr.text


def rpc_result(result):
    return Response(200, json={"jsonrpc": "2.0", "id": 1, "result": result})


class TestIssueCommand:
    """Tests for `certproof issue`."""

    def test_issue_json(self, runner, env, tmp_path):
        out = tmp_path / "proof.png"
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY

        result = runner.invoke(
            main,
            ["issue", "42", "--validity", "valid", "--meta", "name=Alice", "--out", str(out), "--json-output"],
            env=env,
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["qrData"]["t"] == 42
        assert data["qrData"]["iss"] == ISSUER_ADDRESS
        assert data["qrData"]["name"] == "Alice"
        assert data["payload"]["valid"] is True
        assert data["signature"] == data["qrData"]["s"]
        assert out.read_bytes().startswith(b"\x89PNG")

    @respx.mock
    def test_issue_reads_ledger(self, runner, env):
        respx.post(RPC_URL).mock(return_value=rpc_result(FALSE_WORD))
        env.update(UNIVERSITY_PRIVATE_KEY=ISSUER_PRIVATE_KEY, CERT_CONTRACT_ADDRESS=CONTRACT_ADDRESS)

        result = runner.invoke(main, ["issue", "42", "--json-output"], env=env)

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["payload"]["valid"] is False

    def test_issue_without_key(self, runner, env):
        result = runner.invoke(main, ["issue", "42", "--validity", "valid"], env=env)

        assert result.exit_code == 2
        assert "not configured" in result.output

    def test_issue_without_ledger(self, runner, env):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(main, ["issue", "42"], env=env)

        assert result.exit_code == 2
        assert "No ledger" in result.output

    def test_issue_reserved_metadata(self, runner, env):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(
            main, ["issue", "42", "--validity", "valid", "--meta", "issuer=forged"], env=env
        )

        assert result.exit_code == 2
        assert "reserved" in result.output

    def test_issue_with_defaults(self, runner, env):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(
            main, ["issue", "42", "--validity", "valid", "--with-defaults", "--json-output"], env=env
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["qrData"]["name"] == "Certificate"
        assert data["qrData"]["institution"] == "University"

    def test_issue_unencodable_metadata(self, runner, env):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(
            main, ["issue", "42", "--validity", "valid", "--meta", "name=\udcff"], env=env
        )

        assert result.exit_code == 2
        assert "UTF-8" in result.output

    def test_issue_bad_meta_syntax(self, runner, env):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(main, ["issue", "42", "--validity", "valid", "--meta", "oops"], env=env)
        assert result.exit_code == 2


class TestVerifyCommand:
    """Tests for `certproof verify`."""

    def test_verify_file_no_ledger(self, runner, env, qr_text, tmp_path):
        path = tmp_path / "qr.json"
        path.write_text(qr_text)

        result = runner.invoke(
            main, ["verify", str(path), "--issuer", ISSUER_ADDRESS, "--no-ledger"], env=env
        )

        assert result.exit_code == 0, result.output
        assert "VALID" in result.output

    def test_verify_literal_json(self, runner, env, qr_text):
        env["CERTPROOF_ISSUER"] = ISSUER_ADDRESS
        result = runner.invoke(main, ["verify", qr_text, "--no-ledger", "--json-output"], env=env)

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["signatureValid"] is True
        assert data["ledgerValidNow"] is None
        assert data["payload"]["name"] == "Alice"

    def test_verify_stdin(self, runner, env, qr_text):
        result = runner.invoke(
            main, ["verify", "-", "--issuer", ISSUER_ADDRESS, "--no-ledger"], input=qr_text, env=env
        )
        assert result.exit_code == 0, result.output

    def test_issuer_derived_from_key(self, runner, env, qr_text):
        env["UNIVERSITY_PRIVATE_KEY"] = ISSUER_PRIVATE_KEY
        result = runner.invoke(main, ["verify", qr_text, "--no-ledger"], env=env)
        assert result.exit_code == 0, result.output

    @respx.mock
    def test_verify_ledger_valid(self, runner, env, qr_text):
        respx.post(RPC_URL).mock(return_value=rpc_result(TRUE_WORD))
        env.update(CERTPROOF_ISSUER=ISSUER_ADDRESS, CERT_CONTRACT_ADDRESS=CONTRACT_ADDRESS)

        result = runner.invoke(main, ["verify", qr_text, "--json-output"], env=env)

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["signatureValid"] is True
        assert data["ledgerValidNow"] is True

    @respx.mock
    def test_verify_revoked_after_signing(self, runner, env, qr_text):
        respx.post(RPC_URL).mock(return_value=rpc_result(FALSE_WORD))
        env.update(CERTPROOF_ISSUER=ISSUER_ADDRESS, CERT_CONTRACT_ADDRESS=CONTRACT_ADDRESS)

        result = runner.invoke(main, ["verify", qr_text, "--json-output"], env=env)

        assert result.exit_code == 3
        data = json.loads(result.stdout)
        assert data["signatureValid"] is True
        assert data["ledgerValidNow"] is False
        assert data["ledger"]["status"] == "invalid"

    @respx.mock
    def test_verify_ledger_unreachable(self, runner, env, qr_text):
        respx.post(RPC_URL).mock(return_value=Response(502))
        env.update(CERTPROOF_ISSUER=ISSUER_ADDRESS, CERT_CONTRACT_ADDRESS=CONTRACT_ADDRESS)

        result = runner.invoke(main, ["verify", qr_text], env=env)

        assert result.exit_code == 4
        assert "Unknown" in result.output

    def test_verify_bad_rpc_url_is_unknown(self, runner, env, qr_text):
        env.update(
            CERTPROOF_ISSUER=ISSUER_ADDRESS,
            CERT_CONTRACT_ADDRESS=CONTRACT_ADDRESS,
            RPC_URL="http://[::1",
        )

        result = runner.invoke(main, ["verify", qr_text], env=env)

        assert result.exit_code == 4
        assert "Unknown" in result.output

    def test_verify_tampered(self, runner, env, qr_text):
        data = json.loads(qr_text)
        data["name"] = "Mallory"

        result = runner.invoke(
            main,
            ["verify", json.dumps(data), "--issuer", ISSUER_ADDRESS, "--no-ledger", "--json-output"],
            env=env,
        )

        assert result.exit_code == 1
        assert json.loads(result.stdout)["signatureValid"] is False

    def test_verify_wrong_issuer(self, runner, env, qr_text):
        other = "0x0000000000000000000000000000000000000001"
        result = runner.invoke(main, ["verify", qr_text, "--issuer", other, "--no-ledger"], env=env)
        assert result.exit_code == 1

    def test_verify_malformed(self, runner, env):
        result = runner.invoke(
            main, ["verify", '{"t": 42}', "--issuer", ISSUER_ADDRESS, "--no-ledger"], env=env
        )

        assert result.exit_code == 2
        assert "Invalid QR data" in result.output

    def test_verify_missing_file(self, runner, env, tmp_path):
        result = runner.invoke(
            main, ["verify", str(tmp_path / "missing.json"), "--issuer", ISSUER_ADDRESS], env=env
        )
        assert result.exit_code == 2

    def test_verify_without_issuer(self, runner, env, qr_text):
        result = runner.invoke(main, ["verify", qr_text, "--no-ledger"], env=env)

        assert result.exit_code == 2
        assert "No expected issuer" in result.output

    def test_verify_no_contract_warns(self, runner, env, qr_text):
        result = runner.invoke(main, ["verify", qr_text, "--issuer", ISSUER_ADDRESS], env=env)

        assert result.exit_code == 0, result.output
        assert "ledger check skipped" in result.output


class TestStatusCommand:
    """Tests for `certproof status`."""

    @respx.mock
    def test_status_valid(self, runner, env):
        respx.post(RPC_URL).mock(return_value=rpc_result(TRUE_WORD))
        env["CERT_CONTRACT_ADDRESS"] = CONTRACT_ADDRESS

        result = runner.invoke(main, ["status", "42", "--json-output"], env=env)

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout) == {
            "tokenId": 42,
            "status": "valid",
            "message": "Certificate 42 is valid on the ledger",
        }

    @respx.mock
    def test_status_invalid(self, runner, env):
        respx.post(RPC_URL).mock(return_value=rpc_result(FALSE_WORD))
        env["CERT_CONTRACT_ADDRESS"] = CONTRACT_ADDRESS

        result = runner.invoke(main, ["status", "42"], env=env)
        assert result.exit_code == 3

    def test_status_without_contract(self, runner, env):
        result = runner.invoke(main, ["status", "42"], env=env)
        assert result.exit_code == 2

    def test_status_bad_token(self, runner, env):
        env["CERT_CONTRACT_ADDRESS"] = CONTRACT_ADDRESS
        result = runner.invoke(main, ["status", "abc"], env=env)
        assert result.exit_code == 2


class TestUploadCommand:
    """Tests for `certproof upload`."""

    @respx.mock
    def test_upload(self, runner, env, tmp_path):
        respx.post("http://localhost:5001/api/v0/add").mock(
            return_value=Response(200, json={"Name": "metadata.json", "Hash": CID, "Size": "16"})
        )
        path = tmp_path / "meta.json"
        path.write_text('{"name": "Alice"}')

        result = runner.invoke(main, ["upload", str(path), "--json-output"], env=env)

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["uri"] == f"ipfs://{CID}"

    def test_upload_invalid_json(self, runner, env, tmp_path):
        path = tmp_path / "meta.json"
        path.write_text("not json")

        result = runner.invoke(main, ["upload", str(path)], env=env)
        assert result.exit_code == 2
