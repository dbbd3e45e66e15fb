from typing import Callable, Optional

from sgax_connect.errors import TransferCancelledError


class ProgressMonitor:
    """
    Receives progress notifications during a single transfer.

    Subclass and override what you need; every hook is a no-op by default
    and ``count`` keeps the transfer going. Returning False from ``count``
    cancels the transfer.
    """

    PUT = 0
    GET = 1

    def init(self, op: int, src: str, dest: str, total: int) -> None:
        pass

    def count(self, transferred: int) -> bool:
        return True

    def end(self) -> None:
        pass


NO_PROGRESS = ProgressMonitor()


def as_callback(monitor: Optional[ProgressMonitor], src: str, dest: str) -> Callable[[int, int], None]:
    """
    Adapt a monitor to paramiko's ``callback(transferred, total)`` signature.

    The caller fires ``init`` before the transfer starts; paramiko never calls
    back for an empty file.
    """
    monitor = monitor or NO_PROGRESS

    def callback(transferred: int, total: int) -> None:
        if not monitor.count(transferred):
            raise TransferCancelledError(f"Transfer of {src} to {dest} cancelled at {transferred} bytes")

    return callback
