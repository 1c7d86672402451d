"""Tests for devserve/certificates.py - development certificate provider."""

import logging
import shutil
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from devserve.certificates import (
    CertificateError,
    DevCertificate,
    ensure_certificate,
    generate_dev_certificate,
    trust_certificate,
    CERT_FILE,
    KEY_FILE,
)


@pytest.fixture
def existing_cert_dir(tmp_path):
    cert_dir = tmp_path / "tls"
    cert_dir.mkdir()
    (cert_dir / CERT_FILE).write_bytes(b"CERT")
    (cert_dir / KEY_FILE).write_bytes(b"KEY")
    return cert_dir


class TestDevCertificate:
    """Tests for DevCertificate."""

    def test_empty(self):
        assert not DevCertificate().complete

    def test_complete(self):
        assert DevCertificate(certificate=b"c", key=b"k").complete


class TestEnsureCertificate:
    """Tests for ensure_certificate()."""

    def test_returns_existing(self, existing_cert_dir):
        """Existing files are returned without generating anything."""
        with patch("devserve.certificates.generate_dev_certificate") as mock_generate:
            cert = ensure_certificate(False, cert_dir=existing_cert_dir)

        assert cert == DevCertificate(certificate=b"CERT", key=b"KEY")
        mock_generate.assert_not_called()

    def test_no_create(self, tmp_path):
        """Without may_create nothing is generated."""
        with patch("devserve.certificates.generate_dev_certificate") as mock_generate:
            cert = ensure_certificate(False, cert_dir=tmp_path / "tls")

        assert cert == DevCertificate()
        mock_generate.assert_not_called()
        assert not (tmp_path / "tls").exists()

    def test_creates_and_trusts(self, tmp_path):
        cert_dir = tmp_path / "tls"

        def fake_generate(directory):
            directory.mkdir(parents=True)
            (directory / CERT_FILE).write_bytes(b"NEWCERT")
            (directory / KEY_FILE).write_bytes(b"NEWKEY")
            return directory / CERT_FILE, directory / KEY_FILE

        with patch("devserve.certificates.generate_dev_certificate", side_effect=fake_generate), \
                patch("devserve.certificates.trust_certificate") as mock_trust:
            cert = ensure_certificate(True, cert_dir=cert_dir)

        assert cert == DevCertificate(certificate=b"NEWCERT", key=b"NEWKEY")
        mock_trust.assert_called_once_with(cert_dir / CERT_FILE)

    def test_trust_failure_still_returns_certificate(self, tmp_path, caplog):
        cert_dir = tmp_path / "tls"

        def fake_generate(directory):
            directory.mkdir(parents=True)
            (directory / CERT_FILE).write_bytes(b"C")
            (directory / KEY_FILE).write_bytes(b"K")
            return directory / CERT_FILE, directory / KEY_FILE

        with patch("devserve.certificates.generate_dev_certificate", side_effect=fake_generate), \
                patch("devserve.certificates.trust_certificate",
                      side_effect=CertificateError("certutil missing")):
            with caplog.at_level(logging.WARNING):
                cert = ensure_certificate(True, cert_dir=cert_dir)

        assert cert.complete
        assert "Could not trust development certificate" in caplog.text

    def test_generation_failure(self, tmp_path, caplog):
        with patch("devserve.certificates.generate_dev_certificate",
                   side_effect=CertificateError("openssl failed")):
            with caplog.at_level(logging.ERROR):
                cert = ensure_certificate(True, cert_dir=tmp_path / "tls")

        assert cert == DevCertificate()
        assert "Failed to generate development certificate" in caplog.text


class TestGenerateDevCertificate:
    """Tests for generate_dev_certificate()."""

    def test_generates_files(self, tmp_path):
        if shutil.which("openssl") is None:
            pytest.skip("requires the openssl binary")

        cert_path, key_path = generate_dev_certificate(tmp_path / "tls", days=1)

        assert cert_path.exists()
        assert key_path.exists()
        assert key_path.stat().st_mode & 0o777 == 0o600
        assert cert_path.stat().st_mode & 0o777 == 0o644

        text = subprocess.run(
            ["openssl", "x509", "-in", str(cert_path), "-noout", "-text"],
            capture_output=True, text=True, check=True,
        ).stdout
        assert "DNS:localhost" in text
        assert "127.0.0.1" in text

    def test_openssl_missing(self, tmp_path):
        with patch("subprocess.run", side_effect=FileNotFoundError("openssl")):
            with pytest.raises(CertificateError) as exc_info:
                generate_dev_certificate(tmp_path / "tls")
        assert "openssl not found" in str(exc_info.value)

    def test_openssl_failure(self, tmp_path):
        error = subprocess.CalledProcessError(1, ["openssl"], stderr=b"bad config")
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(CertificateError) as exc_info:
                generate_dev_certificate(tmp_path / "tls")
        assert "bad config" in str(exc_info.value)


class TestTrustCertificate:
    """Tests for trust_certificate()."""

    @pytest.mark.parametrize("platform,tool", [
        ("darwin", "security"),
        ("win32", "certutil"),
        ("linux", "certutil"),
    ])
    def test_platform_command(self, platform, tool):
        with patch("devserve.certificates.sys.platform", platform), \
                patch("subprocess.run") as mock_run:
            trust_certificate(Path("/tmp/dev.crt"))

        cmd = mock_run.call_args[0][0]
        assert cmd[0] == tool
        assert cmd[-1] == "/tmp/dev.crt"

    def test_tool_missing(self):
        with patch("subprocess.run", side_effect=FileNotFoundError("certutil")):
            with pytest.raises(CertificateError) as exc_info:
                trust_certificate(Path("/tmp/dev.crt"))
        assert "Trust store tool not found" in str(exc_info.value)

    def test_tool_failure(self):
        error = subprocess.CalledProcessError(255, ["certutil"], stderr="denied")
        with patch("subprocess.run", side_effect=error):
            with pytest.raises(CertificateError) as exc_info:
                trust_certificate(Path("/tmp/dev.crt"))
        assert "denied" in str(exc_info.value)
