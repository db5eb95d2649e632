"""
Dependency management for the relay transport.

This standalone module helps break circular import dependencies.
"""
import logging

logger = logging.getLogger(__name__)


def ensure_grpc_installed():
    """
    Check if grpc is installed.
    Raises ImportError with installation instructions if not found.
    """
    try:
        import grpc
        return True
    except ImportError:
        raise ImportError(
            "The relay transport requires grpcio. "
            "Please install with: pip install ccq-client[relay]"
        )
