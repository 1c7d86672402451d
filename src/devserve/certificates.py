"""Development certificate provider.

Generates a self-signed localhost certificate and registers it in the
OS trust store so browsers accept it without warnings.
"""

import logging
import os
import subprocess
import sys
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CERT_DIR = Path.home() / ".devserve" / "tls"
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 2048
CERT_FILE = "dev.crt"
KEY_FILE = "dev.key"
FRIENDLY_NAME = "devserve Development Certificate"


class CertificateError(Exception):
    """Dev certificate generation or trust failure."""


@dataclass(frozen=True)
class DevCertificate:
    """Result of ensure_certificate(); fields are None when unavailable."""
    certificate: Optional[bytes] = None
    key: Optional[bytes] = None

    @property
    def complete(self) -> bool:
        return bool(self.certificate and self.key)


def generate_dev_certificate(
    cert_dir: Path,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
) -> tuple[Path, Path]:
    """Generate a self-signed certificate for localhost.

    Creates a certificate with:
    - CN = localhost
    - SAN = DNS:localhost, IP:127.0.0.1

    Args:
        cert_dir: Directory to store certificate files
        days: Certificate validity in days
        key_size: RSA key size in bits

    Returns:
        (cert_path, key_path)

    Raises:
        CertificateError: If openssl is missing or fails
    """
    cert_dir.mkdir(parents=True, exist_ok=True)
    cert_path = cert_dir / CERT_FILE
    key_path = cert_dir / KEY_FILE

    logger.info("Generating development certificate in %s", cert_dir)

    with tempfile.NamedTemporaryFile(mode="w", suffix=".cnf", delete=False) as f:
        f.write(f"""
[req]
default_bits = {key_size}
prompt = no
default_md = sha256
distinguished_name = dn
x509_extensions = v3_ext

[dn]
CN = localhost
O = {FRIENDLY_NAME}

[v3_ext]
basicConstraints = CA:FALSE
keyUsage = digitalSignature, keyEncipherment
extendedKeyUsage = serverAuth
subjectAltName = DNS:localhost,IP:127.0.0.1
""")
        config_path = f.name

    try:
        subprocess.run(
            [
                "openssl", "req",
                "-x509",
                "-nodes",
                "-newkey", f"rsa:{key_size}",
                "-keyout", str(key_path),
                "-out", str(cert_path),
                "-days", str(days),
                "-config", config_path,
            ],
            check=True,
            capture_output=True,
        )
        os.chmod(key_path, 0o600)
        os.chmod(cert_path, 0o644)
    except FileNotFoundError as e:
        raise CertificateError(f"openssl not found: {e}") from e
    except subprocess.CalledProcessError as e:
        raise CertificateError(f"openssl failed: {e.stderr.decode(errors='replace').strip()}") from e
    finally:
        Path(config_path).unlink(missing_ok=True)

    return cert_path, key_path


def _trust_command(cert_path: Path) -> list[str]:
    if sys.platform == "darwin":
        keychain = Path.home() / "Library" / "Keychains" / "login.keychain-db"
        return ["security", "add-trusted-cert", "-r", "trustRoot", "-k", str(keychain), str(cert_path)]
    if sys.platform == "win32":
        return ["certutil", "-user", "-addstore", "root", str(cert_path)]
    nssdb = Path.home() / ".pki" / "nssdb"
    return ["certutil", "-d", f"sql:{nssdb}", "-A", "-t", "C,,", "-n", FRIENDLY_NAME, "-i", str(cert_path)]


def trust_certificate(cert_path: Path) -> None:
    """Register a certificate in the current user's trust store.

    Raises:
        CertificateError: If the platform tool is missing or fails
    """
    cmd = _trust_command(cert_path)
    logger.info("Trusting development certificate (you may be prompted): %s", cert_path)
    try:
        subprocess.run(cmd, check=True, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise CertificateError(f"Trust store tool not found: {cmd[0]}") from e
    except subprocess.CalledProcessError as e:
        raise CertificateError(f"{cmd[0]} failed: {(e.stderr or '').strip()}") from e


def ensure_certificate(may_create: bool, cert_dir: Optional[Path] = None) -> DevCertificate:
    """Return the development certificate, creating and trusting it if allowed.

    Args:
        may_create: Generate (and trust) a certificate when none exists
        cert_dir: Certificate directory (default: ~/.devserve/tls)

    Returns:
        DevCertificate; both fields are None if no certificate is available
    """
    cert_dir = cert_dir or DEFAULT_CERT_DIR
    cert_path = cert_dir / CERT_FILE
    key_path = cert_dir / KEY_FILE

    if cert_path.exists() and key_path.exists():
        logger.debug("Using existing development certificate: %s", cert_path)
        return DevCertificate(certificate=cert_path.read_bytes(), key=key_path.read_bytes())

    if not may_create:
        logger.debug("No development certificate in %s and creation not allowed", cert_dir)
        return DevCertificate()

    try:
        cert_path, key_path = generate_dev_certificate(cert_dir)
    except (CertificateError, OSError) as e:
        logger.error("Failed to generate development certificate: %s", e)
        return DevCertificate()

    try:
        trust_certificate(cert_path)
    except CertificateError as e:
        logger.warning("Could not trust development certificate automatically: %s", e)
        logger.warning("Import %s into your browser or OS trust store manually.", cert_path)

    return DevCertificate(certificate=cert_path.read_bytes(), key=key_path.read_bytes())
