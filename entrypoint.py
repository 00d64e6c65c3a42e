"""
Container entrypoint for the Omni deployment image.

This script is the Docker ``ENTRYPOINT``. It validates configuration,
provisions the TLS certificate pair and the etcd encryption key, locates the
Omni binary and then execs into it. Arguments given to the container are run
instead of Omni once the pre-flight checks have passed.

The startup sequence works as follows:
    1. Required variables and auth provider settings are validated.
    2. Data directories, ``tls.crt``/``tls.key`` and ``omni.asc`` are created
       if missing or (certificate only) expiring within 24 hours.
    3. Without container arguments the Omni binary is located and its
       ``--help`` output probed for the encryption key flag.
    4. The process is replaced with Omni (or the supplied command).

Environment Variables:
    LOG_LEVEL: Entrypoint log level (default: "INFO").
    LOG_FORMAT: "json" (default) or "text".
    See omni_bootstrap.config for the full list.

Exit Codes:
    10 missing configuration, 11 invalid auth config, 12 no auth method,
    20 certificate provisioning, 21 key provisioning, 30 binary not found,
    31 key file missing at launch, 32 exec failed, 1 unexpected error.

Security Considerations:
    - Uses ``os.execve``/``os.execvpe`` to replace the Python process, ensuring
      proper signal handling and PID 1 behavior in containers.
    - All diagnostics go to stderr.
"""

import os
import sys


def main(argv=None):
    """
    Run the startup sequence and exec into Omni.

    Returns:
        This function does not return on success; it replaces the current
        process. On failure it exits with the failure class's exit code.
    """
    from omni_bootstrap import create_orchestrator
    from omni_bootstrap.utils.logging_config import setup_logging

    setup_logging(os.environ.get('LOG_LEVEL', 'INFO'), os.environ.get('LOG_FORMAT', 'json'))

    if argv is None:
        argv = sys.argv[1:]

    orchestrator = create_orchestrator()
    sys.exit(orchestrator.run(argv))


if __name__ == '__main__':
    main()
