"""
Credential provisioning stage: data directories, TLS pair and etcd key.
"""

import logging
import os

from omni_bootstrap.errors import CertificateProvisioningFailed, KeyProvisioningFailed
from omni_bootstrap.utils.gpg_setup import ensure_gpg_key
from omni_bootstrap.utils.tls_setup import ensure_certificate

logger = logging.getLogger(__name__)

DATA_DIR_MODE = 0o755


def init_data_dirs(config):
    """Create Omni's etcd and state directories. Returns the number created."""
    logger.info("Initializing data directories...")
    created = 0
    for path in (config.etcd_data_dir, config.state_data_dir):
        if os.path.isdir(path):
            continue
        try:
            os.makedirs(path, mode=DATA_DIR_MODE, exist_ok=True)
            os.chmod(path, DATA_DIR_MODE)
        except OSError as e:
            # Omni creates missing directories itself; only warn
            logger.warning("Could not create data directory %s: %s", path, e)
            continue
        created += 1
    logger.info("Data directories initialized")
    return created


class CredentialProvisioner:
    """
    Ensures the certificate pair and the etcd encryption key exist.

    Idempotent: when valid artifacts are already on disk ``run`` writes
    nothing and returns 0.
    """

    def __init__(self, config):
        self.config = config

    def ensure_certificate(self):
        try:
            return ensure_certificate(self.config)
        except OSError as e:
            raise CertificateProvisioningFailed("Certificate provisioning failed", [str(e)])

    def ensure_encryption_key(self):
        try:
            return ensure_gpg_key(self.config)
        except OSError as e:
            raise KeyProvisioningFailed("Encryption key provisioning failed", [str(e)])

    def run(self):
        """
        Provision everything the Omni process needs on disk.

        Returns:
            int: Number of credential artifacts written (certificate pair
                 counts once, the key export once).

        Raises:
            CertificateProvisioningFailed: No usable certificate could be produced.
            KeyProvisioningFailed: The GPG key could not be generated.
        """
        init_data_dirs(self.config)

        try:
            os.makedirs(self.config.certificates.certs_dir, exist_ok=True)
        except OSError as e:
            raise CertificateProvisioningFailed(
                "Cannot create certificate directory",
                [f'{self.config.certificates.certs_dir}: {e}'],
            )

        written = 0
        if self.ensure_certificate():
            written += 1
        if self.ensure_encryption_key():
            written += 1

        if written:
            logger.info("Provisioned %d credential artifact(s)", written)
        else:
            logger.info("All credentials already present, nothing to provision")
        return written
