import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from omni_bootstrap.errors import MissingConfiguration
from omni_bootstrap.utils.auth_validation import AuthConfig, validate_auth, validate_required
from omni_bootstrap.utils.environment import (
    loadBoolConfigValue,
    loadConfigValueFromFileOrEnvironment,
    normalize_bool,
    strip_uri_scheme,
)

DEFAULT_CERTS_DIR = '/etc/omni/tls'
DEFAULT_LETSENCRYPT_LIVE_DIR = '/etc/letsencrypt/live'
DEFAULT_ETCD_DATA_DIR = '/_out/etcd'
DEFAULT_STATE_DATA_DIR = '/_out'
GPG_KEY_FILENAME = 'omni.asc'


def _load_int(key: str, default: int, environ: Mapping[str, str]) -> int:
    raw = environ.get(key, '').strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise MissingConfiguration("Numeric setting is not a valid integer", [f'{key}={raw!r}'])
    if value <= 0:
        raise MissingConfiguration("Numeric setting must be positive", [f'{key}={raw!r}'])
    return value


@dataclass(frozen=True)
class CertificateSettings:
    """
    TLS certificate provisioning settings.
    """
    # Issue via Let's Encrypt when true and a Cloudflare token is present
    generation_enabled: bool = False

    # Cloudflare DNS-01 challenge credentials
    cloudflare_api_token: str = ''
    cloudflare_zone_id: str = ''
    verify_token: bool = True

    # Let's Encrypt account
    letsencrypt_email: str = ''
    staging: bool = False
    letsencrypt_live_dir: str = DEFAULT_LETSENCRYPT_LIVE_DIR
    propagation_seconds: int = 10

    certs_dir: str = DEFAULT_CERTS_DIR

    @property
    def cert_path(self) -> str:
        return os.path.join(self.certs_dir, 'tls.crt')

    @property
    def key_path(self) -> str:
        return os.path.join(self.certs_dir, 'tls.key')


@dataclass(frozen=True)
class Config:
    """
    Resolved configuration for one container start.

    Built once from the process environment by ``Config.from_environ`` and
    passed explicitly to every startup stage.
    """
    domain_name: str
    public_ip: str
    account_id: str
    advertised_api_url: str
    siderolink_api_advertised_url: str
    wireguard_advertised_addr: str
    k8s_proxy_url: str
    initial_users: str

    auth: AuthConfig
    certificates: CertificateSettings

    # Where the etcd encryption key lives; file:// URIs are accepted
    private_key_source: str = f'file://{DEFAULT_CERTS_DIR}/{GPG_KEY_FILENAME}'

    # Embedded etcd storage path handed to the binary
    etcd_data_dir: str = DEFAULT_ETCD_DATA_DIR
    state_data_dir: str = DEFAULT_STATE_DATA_DIR

    binary_override: str = ''
    fallback_entrypoint: str = ''
    # PATH used for the binary lookups
    search_path: str = ''

    # Upper bound in seconds for certbot/gpg invocations
    tool_timeout: int = 300
    help_probe_timeout: int = 10

    @property
    def gpg_key_path(self) -> str:
        return strip_uri_scheme(self.private_key_source)

    def env_overlay(self) -> Dict[str, str]:
        """Environment variables to set on the launched process."""
        return self.auth.env_overlay()

    @classmethod
    def from_environ(cls, environ: Optional[Mapping[str, str]] = None) -> 'Config':
        """
        Validate the environment and build the resolved configuration.

        Raises:
            MissingConfiguration: Required variables are absent.
            InvalidAuthConfig: An enabled auth provider lacks mandatory fields.
            NoAuthMethodEnabled: No auth provider survives validation.
        """
        if environ is None:
            environ = os.environ

        required = validate_required(environ)
        auth = validate_auth(environ)

        def load(key, default=''):
            try:
                return loadConfigValueFromFileOrEnvironment(key, default, environ).strip()
            except FileNotFoundError as e:
                raise MissingConfiguration("Configuration file reference is invalid", [f'{key}_FILE ({e})'])

        certs_dir = load('CERTS_DIR') or DEFAULT_CERTS_DIR
        certificates = CertificateSettings(
            generation_enabled=normalize_bool(environ.get('ENABLE_CERT_GENERATION')),
            cloudflare_api_token=load('CLOUDFLARE_API_TOKEN'),
            cloudflare_zone_id=load('CLOUDFLARE_ZONE_ID'),
            verify_token=loadBoolConfigValue('CLOUDFLARE_VERIFY_TOKEN', 'true', environ=environ),
            letsencrypt_email=load('LETSENCRYPT_EMAIL'),
            staging=normalize_bool(environ.get('LETSENCRYPT_STAGING')),
            letsencrypt_live_dir=load('LETSENCRYPT_LIVE_DIR') or DEFAULT_LETSENCRYPT_LIVE_DIR,
            propagation_seconds=_load_int('CERTBOT_PROPAGATION_SECONDS', 10, environ),
            certs_dir=certs_dir,
        )

        private_key_source = (
            load('OMNI_PRIVATE_KEY_SOURCE')
            or f'file://{os.path.join(certs_dir, GPG_KEY_FILENAME)}'
        )

        return cls(
            domain_name=required['DOMAIN_NAME'],
            public_ip=required['PUBLIC_IP'],
            account_id=required['ACCOUNT_ID'],
            advertised_api_url=required['ADVERTISED_API_URL'],
            siderolink_api_advertised_url=required['SIDEROLINK_API_ADVERTISED_URL'],
            wireguard_advertised_addr=required['WIREGUARD_ADVERTISED_ADDR'],
            k8s_proxy_url=required['K8S_PROXY_URL'],
            initial_users=required['INITIAL_USERS'],
            auth=auth,
            certificates=certificates,
            private_key_source=private_key_source,
            etcd_data_dir=load('OMNI_ETCD_DATA_DIR') or DEFAULT_ETCD_DATA_DIR,
            state_data_dir=load('OMNI_STATE_DATA_DIR') or DEFAULT_STATE_DATA_DIR,
            binary_override=load('OMNI_BINARY'),
            fallback_entrypoint=load('OMNI_FALLBACK_ENTRYPOINT'),
            search_path=environ.get('PATH', ''),
            tool_timeout=_load_int('EXTERNAL_TOOL_TIMEOUT', 300, environ),
            help_probe_timeout=_load_int('HELP_PROBE_TIMEOUT', 10, environ),
        )
