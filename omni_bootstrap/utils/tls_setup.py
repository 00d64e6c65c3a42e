"""
TLS certificate provisioning for the Omni container.

Checks the certificate pair in the certificate directory, and when it is
missing or about to expire obtains a new one: from Let's Encrypt through
certbot's Cloudflare DNS-01 plugin when certificate generation is enabled, or
as a self-signed RSA certificate otherwise (and whenever issuance fails).

Files:
    <CERTS_DIR>/tls.crt  certificate chain, mode 644
    <CERTS_DIR>/tls.key  private key, mode 600

Environment Variables (resolved through omni_bootstrap.config.Config):
    ENABLE_CERT_GENERATION: Try Let's Encrypt before falling back (default: false)
    CLOUDFLARE_API_TOKEN: Token for the DNS-01 challenge
    CLOUDFLARE_ZONE_ID: Zone holding DOMAIN_NAME
    LETSENCRYPT_EMAIL: ACME account contact
    LETSENCRYPT_STAGING: Use the staging ACME endpoint (default: false)
"""

import logging
import os
import tempfile
from datetime import datetime, timezone, timedelta
from typing import List, Optional

from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from omni_bootstrap.errors import CertificateProvisioningFailed, ExternalToolError
from omni_bootstrap.utils.cloudflare_client import (
    CloudflareAPIError,
    CloudflareClient,
    CloudflareCredentialsRejected,
)
from omni_bootstrap.utils.external_tools import run_tool

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security_events')

EXPIRY_LOOKAHEAD = timedelta(hours=24)
SELF_SIGNED_KEY_SIZE = 2048
SELF_SIGNED_VALIDITY_DAYS = 365

CERT_MODE = 0o644
KEY_MODE = 0o600


class CertificateIssuanceError(Exception):
    """Let's Encrypt issuance failed in a way that permits the self-signed fallback."""
    pass


def check_certificate(cert_path, key_path, lookahead=EXPIRY_LOOKAHEAD, now=None):
    """
    Check whether the certificate pair on disk is usable.

    Args:
        cert_path: PEM certificate (chain) path.
        key_path: PEM private key path.
        lookahead: Minimum remaining validity required.
        now: Reference time, defaults to the current UTC time.

    Returns:
        bool: True if both files exist, the certificate parses, and it stays
              valid for at least ``lookahead``.
    """
    if not os.path.isfile(cert_path) or not os.path.isfile(key_path):
        logger.warning("Certificate files not found")
        return False

    try:
        with open(cert_path, 'rb') as f:
            cert = x509.load_pem_x509_certificate(f.read())
    except (OSError, ValueError) as e:
        logger.warning("Certificate at %s is unreadable: %s", cert_path, e)
        return False

    if now is None:
        now = datetime.now(timezone.utc)

    if cert.not_valid_after_utc <= now + lookahead:
        logger.warning(
            "Certificate expires within %s (not after %s)",
            lookahead, cert.not_valid_after_utc.isoformat(),
        )
        return False

    logger.info("Valid SSL certificate found (expires %s)", cert.not_valid_after_utc.isoformat())
    return True


def _stage_file(directory, data, mode):
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.tmp-')
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, 'wb') as f:
            f.write(data)
    except BaseException:
        os.unlink(tmp_path)
        raise
    return tmp_path


def install_credentials(cert_pem, key_pem, cert_path, key_path):
    """
    Atomically install a certificate and key with 644/600 permissions.

    Both files are staged next to their targets first. The certificate is
    renamed into place before the key; if the key rename fails the previous
    certificate is put back (or the new one removed when there was none), so
    a failure never leaves a mismatched pair behind.
    """
    cert_dir = os.path.dirname(cert_path)
    os.makedirs(cert_dir, exist_ok=True)
    os.makedirs(os.path.dirname(key_path), exist_ok=True)

    staged: List[str] = []
    try:
        staged_key = _stage_file(os.path.dirname(key_path), key_pem, KEY_MODE)
        staged.append(staged_key)
        staged_cert = _stage_file(cert_dir, cert_pem, CERT_MODE)
        staged.append(staged_cert)

        previous_cert = None
        if os.path.isfile(cert_path):
            with open(cert_path, 'rb') as f:
                previous_cert = _stage_file(cert_dir, f.read(), CERT_MODE)
            staged.append(previous_cert)

        os.replace(staged_cert, cert_path)
        try:
            os.replace(staged_key, key_path)
        except OSError:
            if previous_cert:
                os.replace(previous_cert, cert_path)
            else:
                os.unlink(cert_path)
            raise
    finally:
        for path in staged:
            if os.path.exists(path):
                os.unlink(path)


def generate_self_signed_cert(cert_path, key_path, cn):
    """
    Generate a self-signed RSA 2048 certificate valid for 365 days.

    Args:
        cert_path: Filesystem path to write the PEM-encoded certificate.
        key_path: Filesystem path to write the PEM-encoded private key.
        cn: Common name, the Omni domain name. Also used as the only DNS SAN.

    Returns:
        tuple: (cert_path, key_path) of the generated files.

    Security Considerations:
        - The generated key is unencrypted (Omni reads it directly).
        - This certificate is NOT suitable for production use.
    """
    logger.warning(
        "Generating self-signed TLS certificate (CN=%s) -- replace with a valid certificate for production",
        cn
    )

    private_key = rsa.generate_private_key(public_exponent=65537, key_size=SELF_SIGNED_KEY_SIZE)

    subject = issuer = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, cn),
    ])

    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=SELF_SIGNED_VALIDITY_DAYS))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(cn)]),
            critical=False,
        )
        .add_extension(
            x509.BasicConstraints(ca=False, path_length=None),
            critical=True,
        )
        .sign(private_key, hashes.SHA256())
    )

    install_credentials(
        cert.public_bytes(serialization.Encoding.PEM),
        private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        ),
        cert_path,
        key_path,
    )

    security_logger.warning("Self-signed certificate installed", extra={
        'event_type': 'certificate_issued',
        'issuer': 'self-signed',
        'common_name': cn,
        'production_ready': False,
    })
    logger.info("Self-signed TLS certificate written to %s and %s", cert_path, key_path)
    return (cert_path, key_path)


def write_cloudflare_credentials(api_token, directory=None):
    """Write the certbot-dns-cloudflare INI file with mode 600 and return its path."""
    fd, path = tempfile.mkstemp(dir=directory, prefix='cloudflare-', suffix='.ini')
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(f"dns_cloudflare_api_token = {api_token}\n")
    return path


def build_certbot_command(settings, domain, credentials_path):
    cmd = ['certbot', 'certonly']
    if settings.staging:
        cmd.append('--staging')
    cmd += [
        '--dns-cloudflare',
        '--dns-cloudflare-credentials', credentials_path,
        '--dns-cloudflare-propagation-seconds', str(settings.propagation_seconds),
        '--non-interactive',
        '--agree-tos',
        '--email', settings.letsencrypt_email,
        '--domain', domain,
        '--domain', f'*.{domain}',
        '--quiet',
    ]
    return cmd


def _verify_cloudflare_credentials(settings):
    client = CloudflareClient(settings.cloudflare_api_token)
    try:
        client.verify_token()
        client.verify_zone(settings.cloudflare_zone_id)
    except CloudflareCredentialsRejected as e:
        raise CertificateProvisioningFailed("Certificate authority credentials rejected", [str(e)])
    except CloudflareAPIError as e:
        logger.warning("Could not verify Cloudflare credentials, continuing with certbot: %s", e)


def issue_letsencrypt_certificate(config, timeout: Optional[int] = None):
    """
    Obtain a certificate for DOMAIN_NAME and *.DOMAIN_NAME from Let's Encrypt.

    Raises:
        CertificateIssuanceError: Issuance failed; the caller may fall back.
        CertificateProvisioningFailed: Cloudflare rejected the credentials.
    """
    settings = config.certificates
    domain = config.domain_name

    missing = [
        name for name, value in (
            ('CLOUDFLARE_API_TOKEN', settings.cloudflare_api_token),
            ('CLOUDFLARE_ZONE_ID', settings.cloudflare_zone_id),
            ('LETSENCRYPT_EMAIL', settings.letsencrypt_email),
        ) if not value
    ]
    if missing:
        raise CertificateIssuanceError(f"Let's Encrypt settings not set: {', '.join(missing)}")

    if settings.verify_token:
        _verify_cloudflare_credentials(settings)

    if settings.staging:
        logger.info("Using Let's Encrypt STAGING server (for testing)")
    else:
        logger.info("Using Let's Encrypt PRODUCTION server")
    logger.info("Requesting certificate from Let's Encrypt for domain: %s", domain)

    try:
        credentials_path = write_cloudflare_credentials(settings.cloudflare_api_token)
    except OSError as e:
        raise CertificateIssuanceError(f"Cannot write Cloudflare credentials file: {e}")
    try:
        run_tool(
            build_certbot_command(settings, domain, credentials_path),
            timeout=timeout or config.tool_timeout,
        )
    except ExternalToolError as e:
        raise CertificateIssuanceError(str(e))
    finally:
        os.unlink(credentials_path)

    live_dir = os.path.join(settings.letsencrypt_live_dir, domain)
    chain_path = os.path.join(live_dir, 'fullchain.pem')
    privkey_path = os.path.join(live_dir, 'privkey.pem')
    if not os.path.isfile(chain_path) or not os.path.isfile(privkey_path):
        raise CertificateIssuanceError(f"Certificate files not found in {live_dir} after certbot run")

    try:
        with open(chain_path, 'rb') as f:
            chain_pem = f.read()
        with open(privkey_path, 'rb') as f:
            key_pem = f.read()
        install_credentials(chain_pem, key_pem, settings.cert_path, settings.key_path)
    except OSError as e:
        raise CertificateIssuanceError(f"Failed to install Let's Encrypt certificate: {e}")

    security_logger.info("Let's Encrypt certificate installed", extra={
        'event_type': 'certificate_issued',
        'issuer': 'letsencrypt-staging' if settings.staging else 'letsencrypt',
        'common_name': domain,
        'production_ready': not settings.staging,
    })
    logger.info("Certificates generated and installed")


def ensure_certificate(config):
    """
    Make sure a usable TLS certificate pair exists.

    Returns:
        bool: True if a new certificate was written, False if the existing
              one was kept.

    Raises:
        CertificateProvisioningFailed: Credentials rejected, or the
            self-signed fallback itself failed.
    """
    settings = config.certificates
    logger.info("Checking SSL certificates...")
    if check_certificate(settings.cert_path, settings.key_path):
        return False

    logger.warning("Valid certificates not found, attempting to generate...")

    if settings.generation_enabled and settings.cloudflare_api_token:
        try:
            issue_letsencrypt_certificate(config)
            return True
        except CertificateIssuanceError as e:
            logger.warning("Let's Encrypt certificate generation failed, using self-signed: %s", e)
    elif not settings.generation_enabled:
        logger.warning("ENABLE_CERT_GENERATION not set, using self-signed certificate")
    else:
        logger.warning("CLOUDFLARE_API_TOKEN not set, using self-signed certificate")

    try:
        generate_self_signed_cert(settings.cert_path, settings.key_path, config.domain_name)
    except (OSError, ValueError) as e:
        raise CertificateProvisioningFailed("Failed to generate self-signed certificate", [str(e)])
    return True
