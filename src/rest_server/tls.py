"""TLS for the repository server.

Certificates come from configured files, or from a self-signed pair
created with openssl in the certificate directory. An existing pair in
that directory is reused so clients that pinned its fingerprint keep
working across restarts.
"""

import logging
import os
import socket
import ssl
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_CERT_DIR = Path.home() / ".config" / "rest-server" / "tls"
DEFAULT_CERT_DAYS = 365
DEFAULT_KEY_SIZE = 4096

CERT_FILE = "server.crt"
KEY_FILE = "server.key"

_REQUEST_CONFIG = """\
[req]
prompt = no
default_md = sha256
distinguished_name = subject
x509_extensions = server_ext

[subject]
CN = {common_name}

[server_ext]
basicConstraints = CA:FALSE
keyUsage = digitalSignature, keyEncipherment
extendedKeyUsage = serverAuth
subjectAltName = {alt_names}
"""


@dataclass(frozen=True)
class TLSConfig:
    """Certificate and key in use, plus the certificate's SHA-256 fingerprint."""

    cert_path: Path
    key_path: Path
    fingerprint: str

    @classmethod
    def from_paths(cls, cert_path: Path, key_path: Path) -> "TLSConfig":
        """Load an existing certificate/key pair.

        Raises:
            FileNotFoundError: If either file is missing
            subprocess.CalledProcessError: If openssl cannot read the certificate
        """
        cert_path, key_path = Path(cert_path).resolve(), Path(key_path).resolve()
        for label, path in (("Certificate", cert_path), ("Key", key_path)):
            if not path.exists():
                raise FileNotFoundError(f"{label} not found: {path}")
        return cls(cert_path, key_path, get_cert_fingerprint(cert_path))

    def ssl_context(self) -> ssl.SSLContext:
        """Server-side context; raises ssl.SSLError on a mismatched key."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(certfile=str(self.cert_path), keyfile=str(self.key_path))
        return context


def _openssl(*args: str) -> str:
    result = subprocess.run(["openssl", *args], capture_output=True, text=True, check=True)
    return result.stdout


def get_cert_fingerprint(cert_path: Path) -> str:
    """Return the SHA-256 fingerprint of a PEM certificate as colon-separated hex.

    Raises:
        subprocess.CalledProcessError: If the file is not a certificate
    """
    # openssl prints "sha256 Fingerprint=AB:CD:..."
    output = _openssl("x509", "-in", str(cert_path), "-noout", "-fingerprint", "-sha256")
    return output.strip().rpartition("=")[2]


def get_hostname() -> str:
    return socket.gethostname()


def get_primary_ip() -> Optional[str]:
    """Address of the interface holding the default route, or None."""
    try:
        # Connecting a UDP socket only selects a route; nothing is sent
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        sock.settimeout(0)
        sock.connect(("8.8.8.8", 80))
        address: str = sock.getsockname()[0]
        sock.close()
        return address
    except OSError:
        return None


def subject_alt_names(hostname: str) -> list[str]:
    """SAN entries for a server certificate: hostname, loopback, primary IP."""
    names = [f"DNS:{hostname}", "DNS:localhost", "IP:127.0.0.1"]
    address = get_primary_ip()
    if address and address != "127.0.0.1":
        names.append(f"IP:{address}")
    return names


def generate_self_signed_cert(
    cert_dir: Optional[Path] = None,
    hostname: Optional[str] = None,
    days: int = DEFAULT_CERT_DAYS,
    key_size: int = DEFAULT_KEY_SIZE,
    force: bool = False,
) -> TLSConfig:
    """Create (or reuse) a self-signed server certificate.

    Args:
        cert_dir: Where server.crt and server.key live (default: ~/.config/rest-server/tls)
        hostname: Certificate CN (default: system hostname)
        days: Validity period
        key_size: RSA key size in bits
        force: Replace an existing pair

    Returns:
        TLSConfig for the pair in cert_dir

    Raises:
        subprocess.CalledProcessError: If openssl fails
        OSError: If cert_dir cannot be written
    """
    cert_dir = Path(cert_dir or DEFAULT_CERT_DIR)
    cert_path = cert_dir / CERT_FILE
    key_path = cert_dir / KEY_FILE

    if not force and cert_path.exists() and key_path.exists():
        logger.info("Reusing certificate %s", cert_path)
        return TLSConfig.from_paths(cert_path, key_path)

    cert_dir.mkdir(parents=True, exist_ok=True)
    hostname = hostname or get_hostname()
    logger.info("Generating self-signed certificate for %s in %s", hostname, cert_dir)

    request_config = _REQUEST_CONFIG.format(
        common_name=hostname,
        alt_names=",".join(subject_alt_names(hostname)),
    )
    with tempfile.NamedTemporaryFile("w", suffix=".cnf", dir=cert_dir, delete=False) as f:
        f.write(request_config)
    try:
        _openssl(
            "req", "-x509", "-nodes",
            "-newkey", f"rsa:{key_size}",
            "-keyout", str(key_path),
            "-out", str(cert_path),
            "-days", str(days),
            "-config", f.name,
        )
    finally:
        os.unlink(f.name)

    os.chmod(key_path, 0o600)
    os.chmod(cert_path, 0o644)

    tls = TLSConfig.from_paths(cert_path, key_path)
    logger.info("Certificate fingerprint (SHA256): %s", tls.fingerprint)
    return tls
