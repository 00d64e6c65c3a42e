import os

__version__ = '1.0.0'


def create_orchestrator(environ=None):
    """
    Creates the startup orchestrator for the Omni container.
    """
    from omni_bootstrap.orchestrator import StartupOrchestrator

    return StartupOrchestrator(environ=os.environ if environ is None else environ)
