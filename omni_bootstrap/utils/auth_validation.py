"""
Validation of required settings and authentication provider configuration.

Omni refuses to start without at least one working login method. Three
provider blocks are recognised and may be enabled together:

    Auth0: AUTH0_ENABLED, AUTH0_DOMAIN, AUTH0_CLIENT_ID
    SAML:  SAML_ENABLED, SAML_URL
    OIDC:  OIDC_ENABLED, OIDC_PROVIDER_URL, OIDC_CLIENT_ID,
           OIDC_CLIENT_SECRET, OIDC_LOGOUT_URL (optional)

Values copied verbatim from an ``.env.example`` file (``your-tenant.auth0.com``,
``change-me`` ...) are treated as absent. A provider whose supplied values are
all placeholders is disabled with a warning instead of aborting startup.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Tuple

from omni_bootstrap.errors import InvalidAuthConfig, MissingConfiguration, NoAuthMethodEnabled
from omni_bootstrap.utils.environment import (
    is_placeholder,
    loadConfigValueFromFileOrEnvironment,
    normalize_bool,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security_events')

REQUIRED_VARS = (
    'DOMAIN_NAME',
    'PUBLIC_IP',
    'ACCOUNT_ID',
    'ADVERTISED_API_URL',
    'SIDEROLINK_API_ADVERTISED_URL',
    'WIREGUARD_ADVERTISED_ADDR',
    'K8S_PROXY_URL',
    'INITIAL_USERS',
)

OMNI_ENV_PREFIX = 'OMNI_AUTH_'


@dataclass(frozen=True)
class ProviderSpec:
    """Static description of one authentication provider block."""

    name: str
    env_prefix: str
    mandatory: Tuple[str, ...]
    optional: Tuple[str, ...] = ()

    @property
    def flag_var(self) -> str:
        return f'{self.env_prefix}_ENABLED'

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.mandatory + self.optional

    def var(self, field_name: str) -> str:
        return f'{self.env_prefix}_{field_name}'

    def omni_var(self, field_name: str) -> str:
        return f'{OMNI_ENV_PREFIX}{self.env_prefix}_{field_name}'


PROVIDERS = (
    ProviderSpec('auth0', 'AUTH0', ('DOMAIN', 'CLIENT_ID')),
    ProviderSpec('saml', 'SAML', ('URL',)),
    ProviderSpec('oidc', 'OIDC', ('PROVIDER_URL', 'CLIENT_ID', 'CLIENT_SECRET'), ('LOGOUT_URL',)),
)


@dataclass(frozen=True)
class AuthProvider:
    """Resolved state of one provider after validation."""

    spec: ProviderSpec
    enabled: bool
    values: Dict[str, str] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.spec.name

    def env_overlay(self) -> Dict[str, str]:
        """
        Environment variables describing this provider.

        Both the raw names (``AUTH0_DOMAIN``) and the prefixed names the Omni
        binary reads (``OMNI_AUTH_AUTH0_DOMAIN``) are produced. A disabled
        provider only exports its enabled flag.
        """
        flag = 'true' if self.enabled else 'false'
        overlay = {
            self.spec.flag_var: flag,
            self.spec.omni_var('ENABLED'): flag,
        }
        if self.enabled:
            for field_name, value in self.values.items():
                if value:
                    overlay[self.spec.var(field_name)] = value
                    overlay[self.spec.omni_var(field_name)] = value
        return overlay


@dataclass(frozen=True)
class AuthConfig:
    providers: Tuple[AuthProvider, ...]

    @property
    def enabled_providers(self) -> List[AuthProvider]:
        return [p for p in self.providers if p.enabled]

    def get(self, name: str) -> AuthProvider:
        for provider in self.providers:
            if provider.name == name:
                return provider
        raise KeyError(name)

    def env_overlay(self) -> Dict[str, str]:
        overlay: Dict[str, str] = {}
        for provider in self.providers:
            overlay.update(provider.env_overlay())
        return overlay


def _load(key: str, environ: Mapping[str, str]) -> str:
    try:
        return loadConfigValueFromFileOrEnvironment(key, '', environ).strip()
    except FileNotFoundError as e:
        raise MissingConfiguration("Configuration file reference is invalid", [f'{key}_FILE ({e})'])


def validate_required(environ: Mapping[str, str]) -> Dict[str, str]:
    """
    Check that every required variable is present and non-empty.

    Args:
        environ: Environment mapping to inspect.

    Returns:
        dict: Required variable name -> stripped value.

    Raises:
        MissingConfiguration: Listing every absent variable, not just the first.
    """
    values = {}
    missing = []
    for var in REQUIRED_VARS:
        value = _load(var, environ)
        if not value:
            logger.error("Required environment variable '%s' is not set", var)
            missing.append(var)
        values[var] = value

    if missing:
        raise MissingConfiguration("Required environment variables are not set", missing)

    logger.info("All required environment variables are set")
    return values


def _resolve_flag(spec: ProviderSpec, environ: Mapping[str, str]) -> bool:
    raw = environ.get(spec.flag_var)
    enabled = normalize_bool(raw)
    if raw is not None and raw.strip() and raw.strip() != ('true' if enabled else 'false'):
        logger.warning(
            "Normalized %s=%r to %s", spec.flag_var, raw, 'true' if enabled else 'false'
        )
    return enabled


def _resolve_provider(spec: ProviderSpec, environ: Mapping[str, str], errors: List[str]) -> AuthProvider:
    enabled = _resolve_flag(spec, environ)
    values = {name: _load(spec.var(name), environ) for name in spec.fields}

    if not enabled:
        return AuthProvider(spec, False, values)

    supplied = [name for name in spec.mandatory if values[name]]
    if supplied and all(is_placeholder(values[name]) for name in supplied):
        logger.warning(
            "%s is enabled but only has placeholder values (%s); disabling %s authentication",
            spec.flag_var, ', '.join(spec.var(name) for name in supplied), spec.name,
        )
        security_logger.warning("Authentication provider disabled", extra={
            'event_type': 'auth_provider_disabled',
            'provider': spec.name,
            'reason': 'placeholder_values',
        })
        return AuthProvider(spec, False, values)

    missing = [name for name in spec.mandatory if not values[name] or is_placeholder(values[name])]
    if missing:
        errors.extend(f'{spec.name}: {spec.var(name)}' for name in missing)
        return AuthProvider(spec, False, values)

    for name in spec.optional:
        if is_placeholder(values[name]):
            logger.warning("Ignoring placeholder value for optional setting %s", spec.var(name))
            values[name] = ''

    logger.info("%s authentication enabled", spec.name)
    return AuthProvider(spec, True, values)


def validate_auth(environ: Mapping[str, str]) -> AuthConfig:
    """
    Resolve and validate all authentication provider blocks.

    Raises:
        InvalidAuthConfig: An enabled provider is missing mandatory fields.
        NoAuthMethodEnabled: Nothing remains enabled after placeholder filtering.
    """
    errors: List[str] = []
    providers = tuple(_resolve_provider(spec, environ, errors) for spec in PROVIDERS)

    if errors:
        raise InvalidAuthConfig("Enabled authentication providers are missing mandatory settings", errors)

    auth = AuthConfig(providers)
    if not auth.enabled_providers:
        raise NoAuthMethodEnabled(
            "No authentication method is enabled",
            [spec.flag_var for spec in PROVIDERS],
        )

    logger.info(
        "Authentication providers enabled: %s",
        ', '.join(p.name for p in auth.enabled_providers),
    )
    return auth
