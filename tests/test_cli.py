"""Tests for Covenant CLI — proves CLI dispatches correctly."""

import json

import pytest

from covenant.cli import build_parser, main

from conftest import NOTICE_FIELDS, split_fields


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_sign_command(self) -> None:
        args = build_parser().parse_args([
            "sign", "--id", "att_1_a", "--seed", "11" * 32, "--role", "property",
        ])
        assert args.command == "sign"
        assert args.name == "Anonymous"

    def test_create_requires_fields(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["create", "--action", "public-notice"])

    def test_fact_parsing(self) -> None:
        args = build_parser().parse_args(["commit-proof", "--fact", "0.8:5:benzene"])
        value, threshold, label = args.fact[0]
        assert str(value) == "0.8" and threshold == 5 and label == "benzene"

    def test_bad_fact_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["commit-proof", "--fact", "0.8:benzene"])


class TestCLIExecution:
    def _run(self, capsys, tmp_path, *argv: str) -> tuple[int, object]:
        code = main(["--data", str(tmp_path), *argv])
        out = capsys.readouterr().out
        try:
            return code, json.loads(out)
        except json.JSONDecodeError:
            return code, out

    def test_no_command_prints_help(self) -> None:
        assert main([]) == 0

    def test_status_runs(self, capsys, tmp_path) -> None:
        code, status = self._run(capsys, tmp_path, "status")
        assert code == 0
        assert status["attestations"]["total"] == 0

    def test_templates_runs(self, capsys, tmp_path) -> None:
        code, data = self._run(capsys, tmp_path, "templates")
        assert code == 0
        assert len(data["templates"]) == 5

    def test_create_sign_verify_audit(self, capsys, tmp_path, ana) -> None:
        fields = json.dumps(split_fields([(ana, 100)]))
        code, created = self._run(capsys, tmp_path, "create", "--action", "publishing-split", "--fields", fields)
        assert code == 0
        aid = created["id"]

        code, signed = self._run(
            capsys, tmp_path, "sign", "--id", aid, "--seed", ana.seed_hex,
            "--role", "property", "--name", "Ana",
        )
        assert code == 0 and signed["finalized"]

        code, report = self._run(capsys, tmp_path, "verify", "--id", aid)
        assert code == 0 and report["all_valid"]

        code, trail = self._run(capsys, tmp_path, "audit", "--id", aid)
        assert code == 0 and trail["chain_valid"]

        code, text = self._run(capsys, tmp_path, "export", "--id", aid, "--text")
        assert code == 0 and "Publishing Split Agreement" in text

        code, listing = self._run(capsys, tmp_path, "list")
        assert [a["id"] for a in listing["attestations"]] == [aid]

    def test_sign_with_wrong_role_fails(self, capsys, tmp_path, ana) -> None:
        fields = json.dumps(split_fields([(ana, 100)]))
        _, created = self._run(capsys, tmp_path, "create", "--action", "publishing-split", "--fields", fields)
        code = main([
            "--data", str(tmp_path), "sign", "--id", created["id"],
            "--seed", ana.seed_hex, "--role", "financial",
        ])
        assert code == 1
        assert "requires key role" in capsys.readouterr().err

    def test_create_from_file(self, capsys, tmp_path) -> None:
        path = tmp_path / "notice.json"
        path.write_text(json.dumps(NOTICE_FIELDS), encoding="utf-8")
        code, created = self._run(
            capsys, tmp_path, "create", "--action", "public-notice", "--fields-file", str(path)
        )
        assert code == 0 and created["finalized"]

    def test_commit_proof_batch(self, capsys, tmp_path) -> None:
        code, data = self._run(
            capsys, tmp_path, "commit-proof", "--fact", "0.8:5.0:benzene", "--fact", "12:10:toluene"
        )
        assert code == 0
        assert data["verified"] is True
        assert data["batch"]["overall_compliant"] is False

    def test_publish_pending_without_ledger(self, tmp_path, monkeypatch) -> None:
        monkeypatch.delenv("COVENANT_LEDGER_RPC_URL", raising=False)
        monkeypatch.delenv("COVENANT_LEDGER_PRIVATE_KEY", raising=False)
        assert main(["--data", str(tmp_path), "publish-pending"]) == 1
