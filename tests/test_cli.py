"""
Tests for the docgov command line
"""

import json

import pytest

from docgov_core.cli import EXIT_FAILURE, EXIT_OK, EXIT_WARNINGS, main
from docgov_core.config import DocGovConfig, save_config
from docgov_core.hosts import JsonDocumentHost
from docgov_core.version import __version__


@pytest.fixture
def config_file(temp_dir, monkeypatch):
    monkeypatch.chdir(temp_dir)
    path = temp_dir / "docgov.yaml"
    save_config(DocGovConfig(), path)
    return path


def bindings(path):
    data = json.loads(path.read_text(encoding="utf-8"))
    return {n["id"]: n["binding"] for n in data["nodes"]}


class TestAuditCommand:
    """Tests for `docgov audit`."""

    def test_audit_to_json(self, sample_document, config_file, temp_dir, capsys):
        """Test auditing a document and writing the result as JSON."""
        output = temp_dir / "audit.json"

        code = main(["-c", str(config_file), "audit", str(sample_document), "-o", str(output)])

        assert code == EXIT_OK
        data = json.loads(output.read_text(encoding="utf-8"))
        usage = {d["id"]: d["usage_count"] for d in data["definitions"]}
        assert usage == {"h1-old": 31, "h1": 0, "brand": 1}
        assert "Heading/H1 (old)" in capsys.readouterr().out

    def test_audit_scoped_root(self, sample_document, config_file, temp_dir):
        """Test auditing only the nodes under one root."""
        output = temp_dir / "audit.json"

        main(["-c", str(config_file), "audit", str(sample_document), "--root", "frame-1", "-o", str(output)])

        assert json.loads(output.read_text(encoding="utf-8"))["total_nodes"] == 31

    def test_audit_missing_document(self, config_file, temp_dir):
        """Test a missing document file fails with exit code 1."""
        assert main(["-c", str(config_file), "audit", str(temp_dir / "missing.json")]) == EXIT_FAILURE

    def test_audit_unknown_root(self, sample_document, config_file, temp_dir, capsys):
        """Test an unknown scan root fails cleanly with retry guidance."""
        output = temp_dir / "audit.json"

        code = main(["-c", str(config_file), "audit", str(sample_document), "--root", "nope", "-o", str(output)])

        assert code == EXIT_FAILURE
        assert not output.exists()
        out = capsys.readouterr().out
        assert "Audit failed (persistent)" in out
        assert "retry the audit" in out

    def test_audit_writes_event_log(self, sample_document, config_file, temp_dir):
        """Test the audit is recorded in the event log."""
        main(["-c", str(config_file), "audit", str(sample_document)])

        events = (temp_dir / ".docgov" / "logs" / "events.jsonl").read_text(encoding="utf-8")
        assert "audit_completed" in events


class TestReplaceCommand:
    """Tests for `docgov replace`."""

    def test_replace_from_audit(self, sample_document, config_file, temp_dir, capsys):
        """Test replacing every node found by the audit and saving the document."""
        code = main(["-c", str(config_file), "replace", str(sample_document), "-s", "h1-old", "-t", "h1"])

        # The locked node is skipped, so the run ends with warnings
        assert code == EXIT_WARNINGS
        after = bindings(sample_document)
        assert after["n0"] == "h1"
        assert after["n29"] == "h1"
        assert after["n-locked"] == "h1-old"
        assert after["n-brand"] == "brand"
        assert len(list((temp_dir / ".docgov" / "checkpoints").glob("*.json"))) == 1
        assert "n-locked" in capsys.readouterr().out

    def test_replace_explicit_nodes(self, sample_document, config_file):
        """Test replacing only the listed nodes."""
        code = main([
            "-c", str(config_file), "replace", str(sample_document),
            "-s", "h1-old", "-t", "h1", "-n", "n0", "n1",
        ])

        assert code == EXIT_OK
        after = bindings(sample_document)
        assert after["n0"] == "h1"
        assert after["n2"] == "h1-old"

    def test_replace_same_definition(self, sample_document, config_file, temp_dir):
        """Test identical source and target are rejected without a checkpoint."""
        code = main(["-c", str(config_file), "replace", str(sample_document), "-s", "h1", "-t", "h1", "-n", "n0"])

        assert code == EXIT_FAILURE
        assert not (temp_dir / ".docgov" / "checkpoints").exists()

    def test_replace_kind_mismatch(self, sample_document, config_file):
        """Test replacing a token with a style is rejected."""
        code = main(["-c", str(config_file), "replace", str(sample_document), "-s", "brand", "-t", "h1"])

        assert code == EXIT_FAILURE
        assert JsonDocumentHost(sample_document).binding_of("n-brand") == "brand"


class TestConfigCommand:
    """Tests for `docgov config`."""

    def test_init(self, temp_dir, monkeypatch):
        """Test writing a default configuration file once."""
        monkeypatch.chdir(temp_dir)
        path = temp_dir / "new.yaml"

        assert main(["config", "--init", str(path)]) == EXIT_OK
        assert path.exists()
        assert main(["config", "--init", str(path)]) == EXIT_FAILURE

    def test_show(self, config_file, capsys):
        """Test showing the active configuration."""
        assert main(["-c", str(config_file), "config"]) == EXIT_OK
        assert "checkpoint_label: Bulk replace" in capsys.readouterr().out

    def test_no_command(self, capsys):
        """Test running without a command prints usage."""
        assert main([]) == EXIT_OK
        assert "usage" in capsys.readouterr().out.lower()

    def test_version(self, capsys):
        """Test the version option."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert capsys.readouterr().out.strip() == f"docgov {__version__}"
