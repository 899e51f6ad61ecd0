"""
Node TLS Identity

A node generates its own self-signed certificate on first start. The
operator copies the printed PEM into the panel, which then trusts exactly
that certificate for this node.
"""

import ipaddress
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

logger = logging.getLogger(__name__)

CERT_LIFETIME = timedelta(days=3650)


@dataclass
class NodeIdentity:
    key_path: Path
    cert_path: Path
    created: bool

    @property
    def certificate_pem(self) -> str:
        return self.cert_path.read_text()


def _subject_alt_name(common_name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(common_name))
    except ValueError:
        return x509.DNSName(common_name)


def generate_certificate(common_name: str):
    """Create a key and a self-signed certificate usable as its own CA."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    now = datetime.now(tz=timezone.utc)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    public_key = private_key.public_key()

    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=1))
        .not_valid_after(now + CERT_LIFETIME)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=True,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
        .add_extension(x509.SubjectAlternativeName([_subject_alt_name(common_name)]), critical=False)
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key), critical=False)
    ).sign(private_key=private_key, algorithm=hashes.SHA256())

    key_pem = private_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    return key_pem, cert_pem


def ensure_identity(keys_dir: Path, common_name: str) -> NodeIdentity:
    """Load the node certificate, generating it on first start."""
    keys_dir = Path(keys_dir)
    keys_dir.mkdir(parents=True, exist_ok=True)
    key_path = keys_dir / 'node.key'
    cert_path = keys_dir / 'node.cert'

    if key_path.exists() and cert_path.exists():
        return NodeIdentity(key_path=key_path, cert_path=cert_path, created=False)

    key_pem, cert_pem = generate_certificate(common_name)
    key_path.write_bytes(key_pem)
    key_path.chmod(0o600)
    cert_path.write_bytes(cert_pem)

    logger.info(f"Generated node certificate for {common_name}")
    return NodeIdentity(key_path=key_path, cert_path=cert_path, created=True)
