from scenereel.exceptions import CANCELLED_MESSAGE, RenderCancelledError


class CancellationToken:
    """Cooperative cancel flag passed through every render phase boundary.

    Setting it never interrupts work already handed to the backend; the
    pipeline notices it at its next progress callback or poll.
    """

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise RenderCancelledError(CANCELLED_MESSAGE)
