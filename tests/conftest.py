import os
from datetime import datetime, timezone, timedelta

import pgpy
import pytest
from cryptography import x509
from cryptography.x509.oid import NameOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)


def _armored_private_key():
    """A real unprotected RSA private key export shaped like the one gpg produces."""
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new('Omni', email='omni-etcd@local')
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.EncryptCommunications, KeyFlags.EncryptStorage},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.ZLIB],
    )
    return key


PGP_KEY = _armored_private_key()
ARMORED_KEY = str(PGP_KEY)


@pytest.fixture
def base_env(tmp_path):
    """A complete, valid environment with Auth0 enabled and paths under tmp_path."""
    return {
        'DOMAIN_NAME': 'omni.acme.io',
        'PUBLIC_IP': '203.0.113.10',
        'ACCOUNT_ID': '3f1c2a8e-5b7d-4c19-9a0e-1d2b3c4d5e6f',
        'ADVERTISED_API_URL': 'https://omni.acme.io',
        'SIDEROLINK_API_ADVERTISED_URL': 'https://omni.acme.io:8090',
        'WIREGUARD_ADVERTISED_ADDR': '203.0.113.10:50180',
        'K8S_PROXY_URL': 'https://omni.acme.io:8100',
        'INITIAL_USERS': 'admin@acme.io',
        'AUTH0_ENABLED': 'true',
        'AUTH0_DOMAIN': 'acme.eu.auth0.com',
        'AUTH0_CLIENT_ID': 'Zt8qLmN3vB7xR2pK',
        'CERTS_DIR': str(tmp_path / 'tls'),
        'OMNI_ETCD_DATA_DIR': str(tmp_path / '_out' / 'etcd'),
        'OMNI_STATE_DATA_DIR': str(tmp_path / '_out'),
        'LETSENCRYPT_LIVE_DIR': str(tmp_path / 'letsencrypt' / 'live'),
    }


def make_certificate(cert_path, key_path, cn='omni.acme.io', valid_for=timedelta(days=90)):
    """Write an RSA certificate/key pair expiring ``valid_for`` from now."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, cn)])
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + valid_for)
        .sign(key, hashes.SHA256())
    )
    os.makedirs(os.path.dirname(str(cert_path)), exist_ok=True)
    with open(cert_path, 'wb') as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))
    with open(key_path, 'wb') as f:
        f.write(key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ))
    return cert


def write_executable(path, content='#!/bin/sh\nexit 0\n'):
    os.makedirs(os.path.dirname(str(path)), exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)
    os.chmod(path, 0o755)
    return str(path)
