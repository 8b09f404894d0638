"""
Streamed results of a batch write.

Results arrive as the server applies mutation groups, in completion order.
Each result covers one or more groups, identified by their submission
index, and carries its own status: a failed group never fails the stream.
"""

from typing import Callable, Iterator, List, Optional, Set

from distributeddb.errors import InternalError, TransactionStateError
from distributeddb.service.rpc import BatchWriteResponse
from distributeddb.utils.logging import get_logger

logger = get_logger(__name__)


class BatchWriteResultStream:
    """
    Forward-only, single-pass iterator over batch write results.

    The stream releases the session it runs on exactly once: when it is
    exhausted, when the transport fails, or when the caller closes it early.
    A stream dropped unread is closed when garbage collected, but callers
    should close it, for example with a with-statement.
    Results already yielded remain valid if the stream ends with an error;
    unreported_indexes() tells which groups got no result.

    Example:
        with client.batch_write_at_least_once(groups) as results:
            for response in results:
                if not response.ok:
                    print(response.indexes, response.status.code, response.status.message)
    """

    def __init__(
        self,
        responses: Iterator[BatchWriteResponse],
        group_count: int,
        on_close: Callable[[], None],
    ):
        """
        Initialize result stream.

        Args:
            responses: Raw responses from the remote call
            group_count: Number of submitted mutation groups
            on_close: Called once when the stream ends for any reason
        """
        self._responses = responses
        self._group_count = group_count
        self._on_close: Optional[Callable[[], None]] = on_close
        self._iterating = False
        self._closed = False

        self._reported: Set[int] = set()
        self._failed: Set[int] = set()
        self._error: Optional[BaseException] = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> Optional[BaseException]:
        """Transport error that ended the stream early, if any."""
        return self._error

    def __iter__(self) -> Iterator[BatchWriteResponse]:
        if self._iterating or self._closed:
            raise TransactionStateError("Batch write results can only be iterated once")
        self._iterating = True
        return self._generate()

    def _generate(self) -> Iterator[BatchWriteResponse]:
        try:
            for response in self._responses:
                self._check_indexes(response)
                yield response
        except Exception as e:
            self._error = e
            logger.error(
                "Batch write stream ended early",
                reported_groups=len(self._reported),
                group_count=self._group_count,
                error=str(e),
            )
            raise
        finally:
            self.close()

    def _check_indexes(self, response: BatchWriteResponse) -> None:
        if not response.indexes:
            raise InternalError("Batch write result covers no mutation group")

        for index in response.indexes:
            if index < 0 or index >= self._group_count:
                raise InternalError(
                    f"Batch write result for unknown group {index} (submitted {self._group_count})"
                )
            if index in self._reported:
                raise InternalError(f"Batch write group {index} reported twice")

        self._reported.update(response.indexes)

        if not response.ok:
            self._failed.update(response.indexes)
            logger.warning(
                "Mutation groups could not be applied",
                indexes=list(response.indexes),
                code=response.status.code.name,
                message=response.status.message,
            )

    def close(self) -> None:
        """Stop consuming results and release the session."""
        if self._closed:
            return
        self._closed = True

        try:
            close_responses = getattr(self._responses, "close", None)
            if close_responses is not None:
                close_responses()
        finally:
            on_close, self._on_close = self._on_close, None
            if on_close is not None:
                on_close()

    def failed_indexes(self) -> List[int]:
        """Submission indexes of groups reported as failed so far."""
        return sorted(self._failed)

    def applied_indexes(self) -> List[int]:
        """Submission indexes of groups reported as applied so far."""
        return sorted(self._reported - self._failed)

    def unreported_indexes(self) -> List[int]:
        """Submission indexes of groups with no result yet."""
        return [i for i in range(self._group_count) if i not in self._reported]

    def __enter__(self) -> "BatchWriteResultStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __del__(self) -> None:
        # Streams dropped without close still return their session.
        if not getattr(self, "_closed", True):
            self.close()
