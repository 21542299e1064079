from __future__ import annotations

import datetime
import ipaddress
import os
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from auth.errors import CertificateError

LOCALHOST_NAMES = ("localhost",)
LOCALHOST_IPS = ("127.0.0.1", "::1")
CERT_VALIDITY = datetime.timedelta(days=1)


@dataclass(frozen=True)
class SelfSignedCertificate:
    cert_pem: bytes
    key_pem: bytes = field(repr=False)

    def write(self, directory: str | Path) -> tuple[Path, Path]:
        """Write cert and key to ``directory``; the key file is owner-only."""
        directory = Path(directory)
        cert_path = directory / "cert.pem"
        key_path = directory / "key.pem"
        cert_path.write_bytes(self.cert_pem)

        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as handle:
            handle.write(self.key_pem)
        return cert_path, key_path


def generate_localhost_certificate(
    dns_names: tuple[str, ...] = LOCALHOST_NAMES,
    ip_addresses: tuple[str, ...] = LOCALHOST_IPS,
    validity: datetime.timedelta = CERT_VALIDITY,
) -> SelfSignedCertificate:
    try:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, dns_names[0])])
        alt_names: list[x509.GeneralName] = [x509.DNSName(dns) for dns in dns_names]
        alt_names.extend(x509.IPAddress(ipaddress.ip_address(ip)) for ip in ip_addresses)

        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(minutes=5))
            .not_valid_after(now + validity)
            .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError, IndexError) as error:
        raise CertificateError(str(error)) from error

    return SelfSignedCertificate(
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        ),
    )
