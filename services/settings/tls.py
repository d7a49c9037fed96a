"""TLS keypair parsing and self-signed certificate generation."""

from __future__ import annotations

import ipaddress
import logging
import ssl
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from services.settings.errors import CertificateError
from services.settings.keys import SERVER_CERTIFICATE_KEY, SERVER_PRIVATE_KEY_KEY
from services.settings.models import TLSCertificate

LOGGER = logging.getLogger(__name__)

_KEY_PAIR_LABEL = f"{SERVER_CERTIFICATE_KEY}/{SERVER_PRIVATE_KEY_KEY}"
DEFAULT_RSA_KEY_SIZE = 2048
DEFAULT_VALIDITY = timedelta(days=365)


def load_certificate(cert_pem: bytes) -> x509.Certificate:
    """Return the leaf certificate of a PEM bundle."""

    try:
        certificates = x509.load_pem_x509_certificates(cert_pem)
    except ValueError as exc:
        raise CertificateError(_KEY_PAIR_LABEL, f"invalid certificate: {exc}") from exc
    if not certificates:
        raise CertificateError(_KEY_PAIR_LABEL, "no certificate found")
    return certificates[0]


def _public_key_der(key: Any) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def parse_key_pair(cert_pem: bytes, key_pem: bytes) -> TLSCertificate:
    """Validate that ``key_pem`` is the private key for ``cert_pem``."""

    certificate = load_certificate(cert_pem)
    try:
        private_key = serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as exc:
        raise CertificateError(_KEY_PAIR_LABEL, f"invalid private key: {exc}") from exc
    if _public_key_der(certificate.public_key()) != _public_key_der(private_key.public_key()):
        raise CertificateError(_KEY_PAIR_LABEL, "private key does not match public key")
    return TLSCertificate(cert_pem=cert_pem, key_pem=key_pem)


def _subject_alternative_names(hosts: Iterable[str]) -> x509.SubjectAlternativeName:
    names: list[x509.GeneralName] = []
    for host in hosts:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            names.append(x509.DNSName(host))
    return x509.SubjectAlternativeName(names)


def generate_self_signed(
    hosts: Iterable[str],
    *,
    organization: str,
    is_ca: bool = True,
    validity: timedelta = DEFAULT_VALIDITY,
    now: Optional[datetime] = None,
) -> TLSCertificate:
    """Issue a self-signed certificate covering ``hosts``."""

    hosts = list(hosts)
    if not hosts:
        raise ValueError("at least one host is required")
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=DEFAULT_RSA_KEY_SIZE)
    not_before = (now or datetime.now(timezone.utc)).replace(microsecond=0)
    subject = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization)])
    key_usage = x509.KeyUsage(
        digital_signature=True,
        content_commitment=False,
        key_encipherment=True,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=is_ca,
        crl_sign=False,
        encipher_only=False,
        decipher_only=False,
    )
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + validity)
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(key_usage, critical=True)
        .add_extension(
            x509.ExtendedKeyUsage([x509.oid.ExtendedKeyUsageOID.SERVER_AUTH]), critical=False
        )
        .add_extension(_subject_alternative_names(hosts), critical=False)
    )
    certificate = builder.sign(private_key, hashes.SHA256())
    cert_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    LOGGER.debug("Generated self-signed certificate for %s", ", ".join(hosts))
    return TLSCertificate(cert_pem=cert_pem, key_pem=key_pem)


def client_context(certificate: Optional[TLSCertificate]) -> Optional[ssl.SSLContext]:
    """Return a client context trusting ``certificate``, or ``None`` without TLS."""

    if certificate is None:
        return None
    try:
        return ssl.create_default_context(cadata=certificate.cert_pem.decode("ascii"))
    except (ssl.SSLError, UnicodeDecodeError) as exc:
        raise CertificateError(_KEY_PAIR_LABEL, f"unusable certificate: {exc}") from exc


__all__ = ["client_context", "generate_self_signed", "load_certificate", "parse_key_pair"]
