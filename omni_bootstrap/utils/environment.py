import os
import re
from typing import Mapping, Optional

URI_SCHEME_RE = re.compile(r'^[A-Za-z][A-Za-z0-9+.-]*://')

TRUE_STRINGS = ('true', 'yes', 'on', '1')
FALSE_STRINGS = ('false', 'no', 'off', '0')

# Auth provider flags accept a slightly wider vocabulary than infra toggles.
AUTH_TRUE_STRINGS = ('true', '1', 'yes', 'on', 'enabled')

PLACEHOLDER_PATTERNS = (
    'your-',
    'example',
    'placeholder',
    'change-me',
    'changeme',
    'replace',
    'xxx',
)


def loadConfigValueFromFileOrEnvironment(key: str, default_value: str = '',
                                         environ: Optional[Mapping[str, str]] = None) -> str:
    """
    Load configuration values from a file or environment variable.
    This function reads the entire file content and strips leading/trailing whitespace.
    """
    if environ is None:
        environ = os.environ

    VALUE_FILE = environ.get(f'{key}_FILE')
    if VALUE_FILE:
        if not os.path.exists(VALUE_FILE) or not os.path.isfile(VALUE_FILE):
            raise FileNotFoundError(f'{key}_FILE is set but the path does not exist or is not a file.')

        with open(VALUE_FILE, 'r') as file:
            file_content = file.read().strip()

        if file_content:
            return file_content

    return environ.get(key, default_value)


def loadBoolConfigValue(key: str, default: str = 'false', prefer: bool = False,
                        environ: Optional[Mapping[str, str]] = None) -> bool:
    """
    Load a boolean toggle from the environment.

    With ``prefer=False`` only explicit false strings yield False; with
    ``prefer=True`` only explicit true strings yield True. Unknown strings fall
    to the opposite of the preferred value.
    """
    value = loadConfigValueFromFileOrEnvironment(key, default, environ).strip().lower()
    if prefer:
        return value in TRUE_STRINGS
    return value not in FALSE_STRINGS


def normalize_bool(value: Optional[str]) -> bool:
    """Strict flag parsing: true/1/yes/on/enabled, case-insensitive."""
    if value is None:
        return False
    return value.strip().lower() in AUTH_TRUE_STRINGS


def strip_uri_scheme(value: str) -> str:
    """Turn ``file:///etc/omni/tls/omni.asc`` into ``/etc/omni/tls/omni.asc``."""
    return URI_SCHEME_RE.sub('', value.strip(), count=1)


def is_placeholder(value: Optional[str]) -> bool:
    """Return True if value looks like template text rather than a real setting."""
    if not value:
        return False
    lowered = value.lower()
    return any(pattern in lowered for pattern in PLACEHOLDER_PATTERNS)
