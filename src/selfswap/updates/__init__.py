"""
Directory swap transaction for the selfswap updater.

This package implements the filesystem side of an update:
- Idempotent deletes and rename-or-copy directory moves
- Recovery of the original layout after a refused cutover
- The DirectoryTransaction state machine tying the steps together
"""

from selfswap.updates.operations import (
    copy_tree,
    delete_path,
    discard_partial_files,
    move_directory,
)
from selfswap.updates.rollback import restore_after_failed_cutover
from selfswap.updates.state_machine import (
    DirectoryTransaction,
    TransactionState,
    TransactionStateData,
)

__all__ = [
    # Operations
    "copy_tree",
    "delete_path",
    "discard_partial_files",
    "move_directory",
    # Recovery
    "restore_after_failed_cutover",
    # State machine
    "DirectoryTransaction",
    "TransactionState",
    "TransactionStateData",
]
