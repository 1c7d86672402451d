"""TLS material resolution for the dev servers.

CertificateStore decides which key/certificate pair to serve, in order:

1. pfx_path - a PFX/PKCS#12 bundle
2. key_path + cert_path - a PEM key and certificate
3. neither - the development certificate provider

The branches are exclusive: a missing PFX does not fall through to the
key/cert pair or the dev certificate. Failures are logged and yield None;
the HTTPS servers still start, without valid credentials.
"""

import logging
import ssl
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from devserve.certificates import DevCertificate, ensure_certificate
from devserve.config import ServeConfig

logger = logging.getLogger(__name__)

CertificateProvider = Callable[[bool], DevCertificate]

NO_CERTIFICATE_WARNING = (
    "When serving in HTTPS mode, a PFX cert path or a cert path and a key path must be "
    "provided, or a dev certificate must be generated and trusted. If a SSL certificate "
    "isn't provided, a default, self-signed certificate will be used. Expect browser "
    "security warnings."
)


@dataclass(frozen=True)
class TLSMaterial:
    """Resolved TLS credentials: either a PFX blob or a PEM cert/key pair."""
    pfx: Optional[bytes] = None
    certificate: Optional[bytes] = None
    key: Optional[bytes] = None

    def __post_init__(self):
        has_pair = self.certificate is not None and self.key is not None
        if (self.pfx is not None) == has_pair:
            raise ValueError("TLSMaterial needs exactly one of pfx or certificate+key")

    @property
    def is_pfx(self) -> bool:
        return self.pfx is not None


class CertificateStore:
    """Resolves one TLS identity from configuration."""

    def __init__(
        self,
        provider: Optional[CertificateProvider] = None,
        log: Optional[logging.Logger] = None,
    ):
        """Initialize store.

        Args:
            provider: Dev certificate provider, called as provider(may_create)
            log: Logger for resolution messages (default: module logger)
        """
        self.provider = provider or ensure_certificate
        self.log = log or logger

    def resolve(self, config: ServeConfig) -> Optional[TLSMaterial]:
        """Resolve TLS material for config.

        Returns:
            TLSMaterial, or None if HTTPS is off or resolution failed
        """
        if not config.https:
            return None

        if config.pfx_path:
            return self._load_pfx(config.pfx_path)

        if config.key_path and config.cert_path:
            return self._load_pair(config.key_path, config.cert_path)

        return self._load_dev_certificate(config.try_create_dev_certificate)

    def _load_pfx(self, pfx_path: Path) -> Optional[TLSMaterial]:
        self.log.debug("Trying PFX path: %s", pfx_path)
        if not pfx_path.exists():
            self.log.error('PFX file not found at path "%s"', pfx_path)
            return None
        try:
            material = TLSMaterial(pfx=pfx_path.read_bytes())
        except OSError as e:
            self.log.error("Error loading PFX file: %s", e)
            return None
        self.log.debug("Loaded PFX certificate.")
        return material

    def _load_pair(self, key_path: Path, cert_path: Path) -> Optional[TLSMaterial]:
        self.log.debug('Trying key path "%s" and cert path "%s".', key_path, cert_path)
        key_exists = key_path.exists()
        cert_exists = cert_path.exists()

        if not key_exists:
            self.log.error('Key file not found at path "%s"', key_path)
        if not cert_exists:
            self.log.error('Cert file not found at path "%s"', cert_path)
        if not (key_exists and cert_exists):
            return None

        try:
            return TLSMaterial(certificate=cert_path.read_bytes(), key=key_path.read_bytes())
        except OSError as e:
            self.log.error("Error loading key or cert file: %s", e)
            return None

    def _load_dev_certificate(self, may_create: bool) -> Optional[TLSMaterial]:
        try:
            dev_cert = self.provider(may_create)
        except Exception as e:
            self.log.error("Development certificate provider failed: %s", e)
            dev_cert = DevCertificate()

        if dev_cert.certificate and dev_cert.key:
            return TLSMaterial(certificate=dev_cert.certificate, key=dev_cert.key)

        self.log.warning(NO_CERTIFICATE_WARNING)
        return None


def pfx_to_pem(pfx: bytes) -> bytes:
    """Convert an unencrypted PFX bundle to combined PEM (key + certs).

    Raises:
        subprocess.CalledProcessError: If openssl cannot read the bundle
    """
    result = subprocess.run(
        ["openssl", "pkcs12", "-nodes", "-passin", "pass:"],
        input=pfx,
        capture_output=True,
        check=True,
    )
    return result.stdout


def get_cert_fingerprint(certificate: bytes) -> str:
    """Get SHA256 fingerprint of a PEM certificate.

    Returns:
        SHA256 fingerprint as hex string with colons (e.g., "AB:CD:EF:...")

    Raises:
        subprocess.CalledProcessError: If openssl command fails
    """
    result = subprocess.run(
        ["openssl", "x509", "-noout", "-fingerprint", "-sha256"],
        input=certificate,
        capture_output=True,
        check=True,
    )
    # Output format: "sha256 Fingerprint=AB:CD:EF:..."
    output = result.stdout.decode().strip()
    if "=" in output:
        return output.split("=", 1)[1]
    return output


def _load_pem(context: ssl.SSLContext, certificate: bytes, key: Optional[bytes]) -> None:
    # load_cert_chain only reads files; the directory is private (0700)
    with tempfile.TemporaryDirectory(prefix="devserve-tls-") as tmp:
        cert_file = Path(tmp) / "cert.pem"
        cert_file.write_bytes(certificate)
        key_file = None
        if key is not None:
            key_file = Path(tmp) / "key.pem"
            key_file.write_bytes(key)
        context.load_cert_chain(certfile=str(cert_file), keyfile=str(key_file) if key_file else None)


def build_ssl_context(material: Optional[TLSMaterial], log: Optional[logging.Logger] = None) -> ssl.SSLContext:
    """Build the server-side SSL context shared by both servers.

    With no (or unloadable) material the context carries no certificate and
    every handshake fails; this is the degraded HTTPS mode.
    """
    log = log or logger
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    if material is None:
        log.warning("No TLS material resolved; HTTPS connections will fail to handshake")
        return context

    try:
        if material.is_pfx:
            _load_pem(context, pfx_to_pem(material.pfx), None)
        else:
            _load_pem(context, material.certificate, material.key)
    except subprocess.CalledProcessError as e:
        log.error("Error converting PFX file: %s", e.stderr.decode(errors="replace").strip())
    except (ssl.SSLError, OSError) as e:
        log.error("Error loading TLS material: %s", e)
    return context
