"""Let's Encrypt certificates for the relay's built-in TLS listener.

The certificate is obtained (or renewed) once at startup with an HTTP-01
challenge answered on ``http_port``, cached under ``cache_dir/<domain>``
and handed to uvicorn as plain PEM files.
"""

from __future__ import annotations

import datetime
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import josepy as jose
from acme import challenges, client, crypto_util, errors, messages, standalone
from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from auth.errors import CertificateError

from .constants import APP_NAME, APP_VERSION, LOGGER

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"
DEFAULT_ACME_DIR = "/var/lib/threadgate/acme"
DEFAULT_ACME_HTTP_PORT = 80
RENEW_BEFORE = datetime.timedelta(days=30)
ISSUE_TIMEOUT_SECONDS = 180
_RSA_KEY_BITS = 2048


@dataclass(frozen=True)
class AcmeSettings:
    domain: str
    email: str
    cache_dir: str = DEFAULT_ACME_DIR
    staging: bool = False
    http_port: int = DEFAULT_ACME_HTTP_PORT

    @property
    def directory_url(self) -> str:
        if self.staging:
            return LETSENCRYPT_STAGING_DIRECTORY_URL
        return LETSENCRYPT_DIRECTORY_URL


Issuer = Callable[[AcmeSettings, bytes], bytes]


def ensure_certificate(
    settings: AcmeSettings,
    *,
    issue: Issuer | None = None,
    now: datetime.datetime | None = None,
) -> tuple[Path, Path]:
    """Return ``(fullchain_path, key_path)``, issuing a new certificate when needed."""
    issue = issue or issue_certificate
    now = now or datetime.datetime.now(datetime.timezone.utc)
    domain_dir = Path(settings.cache_dir) / settings.domain
    cert_path = domain_dir / "fullchain.pem"
    key_path = domain_dir / "privkey.pem"

    remaining = _remaining_validity(cert_path, now)
    if remaining is not None and remaining > RENEW_BEFORE and key_path.exists():
        LOGGER.info(
            "Using cached certificate for %s (%s days left)", settings.domain, remaining.days
        )
        return cert_path, key_path

    LOGGER.info("Requesting certificate for %s from %s", settings.domain, settings.directory_url)
    domain_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    key_pem = _generate_key_pem()
    fullchain_pem = issue(settings, key_pem)

    _write_private(key_path, key_pem)
    cert_path.write_bytes(fullchain_pem)
    LOGGER.info("Stored certificate for %s in %s", settings.domain, domain_dir)
    return cert_path, key_path


def issue_certificate(settings: AcmeSettings, key_pem: bytes) -> bytes:
    """Run the ACME order for ``settings.domain`` and return the full chain PEM."""
    account_key = jose.JWKRSA(key=_load_account_key(Path(settings.cache_dir)))
    net = client.ClientNetwork(account_key, user_agent=f"{APP_NAME}/{APP_VERSION}")
    try:
        directory = client.ClientV2.get_directory(settings.directory_url, net)
        acme_client = client.ClientV2(directory, net=net)
        _register(acme_client, settings.email)

        order = acme_client.new_order(crypto_util.make_csr(key_pem, [settings.domain]))
        challenge = _http01_challenge(order)
        response, validation = challenge.response_and_validation(net.key)
        resource = standalone.HTTP01RequestHandler.HTTP01Resource(
            chall=challenge.chall, response=response, validation=validation
        )

        servers = standalone.HTTP01DualNetworkedServers(("", settings.http_port), {resource})
        servers.serve_forever()
        try:
            acme_client.answer_challenge(challenge, response)
            deadline = datetime.datetime.now() + datetime.timedelta(seconds=ISSUE_TIMEOUT_SECONDS)
            order = acme_client.poll_and_finalize(order, deadline)
        finally:
            servers.shutdown_and_server_close()
    except errors.Error as error:
        raise CertificateError(f"ACME issuance for {settings.domain} failed: {error}") from error
    except OSError as error:
        raise CertificateError(
            f"ACME issuance for {settings.domain} failed "
            f"(HTTP-01 port {settings.http_port}): {error}"
        ) from error

    return order.fullchain_pem.encode()


def _register(acme_client: client.ClientV2, email: str) -> None:
    registration = messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
    try:
        acme_client.new_account(registration)
    except errors.ConflictError as error:
        LOGGER.debug("Reusing ACME account %s", error.location)
        acme_client.query_registration(
            messages.RegistrationResource(uri=error.location, body=messages.Registration())
        )


def _http01_challenge(order: messages.OrderResource) -> messages.ChallengeBody:
    for authorization in order.authorizations:
        for challenge in authorization.body.challenges:
            if isinstance(challenge.chall, challenges.HTTP01):
                return challenge
    raise CertificateError("The ACME server offered no HTTP-01 challenge.")


def _remaining_validity(
    cert_path: Path, now: datetime.datetime
) -> datetime.timedelta | None:
    if not cert_path.exists():
        return None
    try:
        cert = x509.load_pem_x509_certificate(cert_path.read_bytes())
    except ValueError:
        LOGGER.warning("Ignoring unreadable cached certificate %s", cert_path)
        return None
    return cert.not_valid_after_utc - now


def _load_account_key(cache_dir: Path) -> rsa.RSAPrivateKey:
    path = cache_dir / "account.pem"
    if path.exists():
        key = serialization.load_pem_private_key(path.read_bytes(), password=None)
        if not isinstance(key, rsa.RSAPrivateKey):
            raise CertificateError(f"{path} does not hold an RSA account key.")
        return key

    cache_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    key = rsa.generate_private_key(public_exponent=65537, key_size=_RSA_KEY_BITS)
    _write_private(path, _pem(key))
    return key


def _generate_key_pem() -> bytes:
    return _pem(rsa.generate_private_key(public_exponent=65537, key_size=_RSA_KEY_BITS))


def _pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def _write_private(path: Path, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)
