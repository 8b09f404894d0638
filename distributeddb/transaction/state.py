"""
Transaction manager state management.

Defines manager states and valid state transitions.
"""

from enum import Enum


class TransactionManagerState(Enum):
    """
    Transaction manager lifecycle states.

    State transitions:
    CREATED → STARTED → COMMITTING → COMMITTED
                      ↘ ABORTED → STARTED (retry)
    STARTED/COMMITTING → ROLLED_BACK
    STARTED/COMMITTING → FAILED
    CREATED/ABORTED → ABORTED/FAILED (begin itself failed)
    """

    CREATED = "CREATED"  # Session held, no attempt begun
    STARTED = "STARTED"  # Attempt in progress
    COMMITTING = "COMMITTING"  # Commit sent
    COMMITTED = "COMMITTED"
    ABORTED = "ABORTED"  # Conflict detected, caller may begin again
    ROLLED_BACK = "ROLLED_BACK"
    FAILED = "FAILED"  # Non-retryable error

    def is_terminal(self) -> bool:
        """Check if state is terminal (done)."""
        return self in (
            TransactionManagerState.COMMITTED,
            TransactionManagerState.ROLLED_BACK,
            TransactionManagerState.FAILED,
        )

    def can_transition_to(self, new_state: 'TransactionManagerState') -> bool:
        """
        Check if transition to new state is valid.

        Args:
            new_state: Target state

        Returns:
            True if transition is valid
        """
        valid_transitions = {
            TransactionManagerState.CREATED: {
                TransactionManagerState.STARTED,
                TransactionManagerState.ABORTED,
                TransactionManagerState.FAILED,
            },
            TransactionManagerState.STARTED: {
                TransactionManagerState.COMMITTING,
                TransactionManagerState.ABORTED,
                TransactionManagerState.ROLLED_BACK,
                TransactionManagerState.FAILED,
            },
            TransactionManagerState.COMMITTING: {
                TransactionManagerState.COMMITTED,
                TransactionManagerState.ABORTED,
                TransactionManagerState.ROLLED_BACK,
                TransactionManagerState.FAILED,
            },
            TransactionManagerState.ABORTED: {
                TransactionManagerState.STARTED,
                TransactionManagerState.FAILED,
            },
            TransactionManagerState.COMMITTED: set(),  # Terminal
            TransactionManagerState.ROLLED_BACK: set(),  # Terminal
            TransactionManagerState.FAILED: set(),  # Terminal
        }

        return new_state in valid_transitions.get(self, set())
