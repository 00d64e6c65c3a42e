"""
Launch plan assembly and process replacement for the Omni binary.

Omni is an externally versioned binary and the spelling of its encryption key
flag has changed between releases. Rather than hard-coding one spelling, the
launcher asks the binary for ``--help`` and walks a small compatibility table
in preference order, using the first flag the help text mentions. When none
is mentioned the flag is omitted and the key path is only passed through the
environment, under every variable name Omni has used.

Security Considerations:
    - ``os.execve`` replaces the Python process, so Omni becomes PID 1 and
      receives container signals directly.
    - Arguments are passed as a vector; nothing goes through a shell.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from omni_bootstrap.errors import KeyFileMissingAtLaunch, ProcessLaunchFailed
from omni_bootstrap.utils.environment import strip_uri_scheme
from omni_bootstrap.utils.external_tools import capture_output

logger = logging.getLogger(__name__)

STORAGE_PATH_FLAG = '--etcd-embedded-storage-path'

# Variables the key path is always exported under
KEY_SOURCE_URI_ENV_VARS = ('OMNI_PRIVATE_KEY_SOURCE', 'PRIVATE_KEY_SOURCE')
KEY_PATH_ENV_VARS = ('OMNI_ETCD_ENCRYPTION_KEY',)


def _mentions(flag: str) -> Callable[[str], bool]:
    pattern = re.compile(r'(?<![\w-])' + re.escape(flag) + r'(?![\w-])')
    return lambda help_text: bool(pattern.search(help_text))


@dataclass(frozen=True)
class KeySourceFlag:
    """One row of the key flag compatibility table."""
    flag: str
    # True if the flag expects a file:// URI rather than a bare path
    uri_value: bool
    accepted_by: Callable[[str], bool] = field(compare=False, repr=False)

    def render(self, key_path: str) -> str:
        value = f'file://{key_path}' if self.uri_value else key_path
        return f'{self.flag}={value}'


KEY_SOURCE_FLAGS = (
    KeySourceFlag('--private-key-source', True, _mentions('--private-key-source')),
    KeySourceFlag('--etcd-encryption-key', False, _mentions('--etcd-encryption-key')),
    KeySourceFlag('--encryption-key-file', False, _mentions('--encryption-key-file')),
)


@dataclass(frozen=True)
class LaunchPlan:
    """Everything needed to exec the target: argv plus environment overlay."""
    argv: Tuple[str, ...]
    env_overlay: Dict[str, str] = field(default_factory=dict)

    @property
    def executable(self) -> str:
        return self.argv[0]

    def environment(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        env = dict(os.environ if base is None else base)
        env.update(self.env_overlay)
        return env


def resolve_key_path(private_key_source: str) -> str:
    """
    Strip any URI scheme and check the key export is readable.

    Raises:
        KeyFileMissingAtLaunch: The file is missing or unreadable.
    """
    key_path = strip_uri_scheme(private_key_source)
    if not os.path.isfile(key_path):
        raise KeyFileMissingAtLaunch("Encryption key file not found", [key_path])
    if not os.access(key_path, os.R_OK):
        raise KeyFileMissingAtLaunch("Encryption key file is not readable", [key_path])
    return key_path


def select_key_flag(help_text: str, table: Sequence[KeySourceFlag] = KEY_SOURCE_FLAGS) -> Optional[KeySourceFlag]:
    """Return the first table entry the binary's help output accepts."""
    for entry in table:
        if entry.accepted_by(help_text):
            return entry
    return None


def probe_help(binary: str, timeout: int) -> str:
    """Ask the binary for its option list. Empty string if it cannot be run."""
    logger.info("Probing %s --help for supported flags", binary)
    return capture_output([binary, '--help'], timeout=timeout)


def key_env_overlay(key_path: str) -> Dict[str, str]:
    overlay = {name: f'file://{key_path}' for name in KEY_SOURCE_URI_ENV_VARS}
    overlay.update({name: key_path for name in KEY_PATH_ENV_VARS})
    return overlay


def build_launch_plan(binary: str, config, help_text: Optional[str] = None) -> LaunchPlan:
    """
    Assemble argv and environment for the Omni binary.

    Args:
        binary: Path of the located executable.
        config: Resolved ``omni_bootstrap.config.Config``.
        help_text: Pre-fetched ``--help`` output; probed when None.

    Raises:
        KeyFileMissingAtLaunch: The encryption key export is not usable.
    """
    key_path = resolve_key_path(config.private_key_source)

    argv = [binary, f'{STORAGE_PATH_FLAG}={config.etcd_data_dir}']

    if help_text is None:
        help_text = probe_help(binary, config.help_probe_timeout)
    key_flag = select_key_flag(help_text)
    if key_flag:
        logger.info("Binary accepts %s for the encryption key", key_flag.flag)
        argv.append(key_flag.render(key_path))
    else:
        logger.warning(
            "Binary advertises none of %s; passing the encryption key via environment only",
            ', '.join(entry.flag for entry in KEY_SOURCE_FLAGS),
        )

    overlay = dict(config.env_overlay())
    overlay.update(key_env_overlay(key_path))
    return LaunchPlan(tuple(argv), overlay)


def replace_process(plan: LaunchPlan, base_env: Optional[Mapping[str, str]] = None):
    """
    Replace the current process with the planned command. Does not return.

    Raises:
        ProcessLaunchFailed: ``exec`` itself failed.
    """
    env = plan.environment(base_env)
    logger.info("Starting Omni: %s", ' '.join(plan.argv))
    try:
        os.execve(plan.executable, list(plan.argv), env)
    except OSError as e:
        raise ProcessLaunchFailed("Failed to exec target binary", [f'{plan.executable}: {e}'])


def exec_command(argv: Sequence[str], env_overlay: Mapping[str, str],
                 base_env: Optional[Mapping[str, str]] = None):
    """
    Replace the current process with a user supplied command, resolved on PATH.

    Raises:
        ProcessLaunchFailed: The command could not be exec'd.
    """
    env = dict(os.environ if base_env is None else base_env)
    env.update(env_overlay)
    logger.info("Executing provided command: %s", ' '.join(argv))
    try:
        os.execvpe(argv[0], list(argv), env)
    except OSError as e:
        raise ProcessLaunchFailed("Failed to exec provided command", [f'{argv[0]}: {e}'])
