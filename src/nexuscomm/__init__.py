"""NexusComm - webhook delivery engine for the NexusComm messaging platform.

Notifies third-party integrations of platform events ("contact created",
"message sent", ...) with HMAC-signed, retried HTTP deliveries, and verifies
signed callbacks coming back from those integrations.

Quick Start:
    >>> from nexuscomm.app import create_app
    >>> app = create_app()
    >>> # uvicorn nexuscomm.app:create_app --factory
"""

__version__ = "0.1.0"
__author__ = "NexusComm"
__license__ = "Apache-2.0"

__all__ = [
    "__author__",
    "__license__",
    "__version__",
]
