"""
GPG key provisioning for Omni's etcd encryption.

Omni encrypts its embedded etcd with a private key read from an ASCII-armored
export (``--private-key-source=file:///etc/omni/tls/omni.asc``). The key is
generated once with ``gpg`` and never rotated by the entrypoint.
"""

import logging
import os
import tempfile

import pgpy
from pgpy.errors import PGPError

from omni_bootstrap.errors import ExternalToolError, KeyProvisioningFailed
from omni_bootstrap.utils.external_tools import run_tool

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security_events')

KEY_IDENTITY_NAME = 'Omni'
KEY_IDENTITY_EMAIL = 'omni-etcd@local'
KEY_LENGTH = 4096

KEY_PARAMETERS = f"""%no-protection
Key-Type: RSA
Key-Length: {KEY_LENGTH}
Name-Real: {KEY_IDENTITY_NAME}
Name-Email: {KEY_IDENTITY_EMAIL}
Expire-Date: 0
%commit
"""


def check_gpg_key(key_path):
    """Return True if the armored key export already exists."""
    if os.path.isfile(key_path):
        logger.info("GPG key found at %s", key_path)
        return True
    logger.warning("GPG key not found at %s", key_path)
    return False


def validate_armored_private_key(armored):
    """
    Parse an armored gpg export and make sure it holds an unprotected private key.

    Raises:
        KeyProvisioningFailed: The export is empty, not parseable, public only
            or passphrase protected.
    """
    if not armored.strip():
        raise KeyProvisioningFailed("Failed to export GPG key", ["gpg export is empty"])
    try:
        key, _ = pgpy.PGPKey.from_blob(armored)
        if not key.fingerprint:
            raise ValueError("no key packet found")
        fingerprint = str(key.fingerprint)
    except (PGPError, ValueError, TypeError, IndexError, KeyError, AttributeError, NotImplementedError) as e:
        raise KeyProvisioningFailed(
            "Failed to export GPG key",
            [f"gpg export is not a valid armored key: {str(e) or type(e).__name__}"],
        )
    if key.is_public:
        raise KeyProvisioningFailed("Failed to export GPG key", [f"gpg export of {fingerprint} contains no private key"])
    if key.is_protected:
        raise KeyProvisioningFailed("Failed to export GPG key", [f"private key {fingerprint} is passphrase protected"])
    return key


def generate_gpg_key(key_path, timeout=300):
    """
    Generate an RSA 4096 non-expiring key and export its private half.

    The key is created in a throwaway GNUPGHOME so the export contains exactly
    one key, no matter what the container's default keyring holds. The export
    is written next to ``key_path`` and renamed into place with mode 600.

    Args:
        key_path: Target path of the armored private key export.
        timeout: Seconds allowed for each gpg invocation.

    Raises:
        KeyProvisioningFailed: Generation or export failed. No file is left
            at ``key_path`` in that case.
    """
    logger.info("Generating GPG key for etcd encryption (this may take a moment)...")

    target_dir = os.path.dirname(key_path) or '.'
    try:
        os.makedirs(target_dir, exist_ok=True)
    except OSError as e:
        raise KeyProvisioningFailed("Cannot create key directory", [f'{target_dir}: {e}'])

    with tempfile.TemporaryDirectory(prefix='omni-gnupg-') as gnupg_home:
        os.chmod(gnupg_home, 0o700)
        env = dict(os.environ, GNUPGHOME=gnupg_home)

        try:
            run_tool(['gpgconf', '--launch', 'gpg-agent'], timeout=timeout, env=env)
        except ExternalToolError as e:
            logger.debug("gpg-agent launch skipped: %s", e)

        try:
            try:
                run_tool(['gpg', '--batch', '--generate-key'], timeout=timeout,
                         input_text=KEY_PARAMETERS, env=env)
            except ExternalToolError as e:
                raise KeyProvisioningFailed("Failed to generate GPG key", [str(e)])

            try:
                result = run_tool(
                    ['gpg', '--batch', '--export-secret-key', '--armor', KEY_IDENTITY_EMAIL],
                    timeout=timeout, env=env,
                )
            except ExternalToolError as e:
                raise KeyProvisioningFailed("Failed to export GPG key", [str(e)])
        finally:
            try:
                run_tool(['gpgconf', '--kill', 'gpg-agent'], timeout=timeout, env=env)
            except ExternalToolError as e:
                logger.debug("gpg-agent shutdown skipped: %s", e)

    armored = result.stdout or ''
    key = validate_armored_private_key(armored)

    fd, tmp_path = tempfile.mkstemp(dir=target_dir, prefix='.tmp-')
    try:
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, 'w') as f:
            f.write(armored)
        os.replace(tmp_path, key_path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise KeyProvisioningFailed("Failed to write GPG key", [f'{key_path}: {e}'])

    security_logger.info("GPG key generated", extra={
        'event_type': 'encryption_key_generated',
        'identity': KEY_IDENTITY_EMAIL,
        'fingerprint': str(key.fingerprint),
        'key_length': KEY_LENGTH,
        'path': key_path,
    })
    logger.info("GPG key generated and exported to %s", key_path)
    return key_path


def ensure_gpg_key(config):
    """
    Make sure the etcd encryption key export exists.

    Returns:
        bool: True if a key was generated, False if one was already present.
    """
    logger.info("Checking GPG key for etcd encryption...")
    if check_gpg_key(config.gpg_key_path):
        return False
    generate_gpg_key(config.gpg_key_path, timeout=config.tool_timeout)
    return True
