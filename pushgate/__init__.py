"""Pushgate: control plane for over-the-air app updates.

Operators release, promote, roll back and gradually roll out update
packages per deployment; client binaries poll for the update that applies
to their binary version. Zip releases are diffed against earlier releases
in the background so clients can download only what changed.
"""

__version__ = "0.1.0"
__description__ = "Over-the-air update release ledger, rollout and update-check service"

from pushgate.core.release_manager import ReleaseManager
from pushgate.cli.app import app as cli

__all__ = ["ReleaseManager", "cli", "__version__"]
