class ConnectError(Exception):
    """Base class for errors raised by sgax_connect itself"""
    pass


class NotConnectedError(ConnectError):
    """Raised when an operation is attempted on a handle that is not connected"""

    def __init__(self, service: str):
        self.service = service
        super().__init__(f"Not connected to the {service} server")


class TransferCancelledError(ConnectError):
    """Raised when a progress monitor asks to stop a running transfer"""
    pass


class EmailError(ConnectError):
    """Custom exception for failures while composing or sending email"""
    pass


class MailError(ConnectError):
    """Custom exception for failures while reading a mailbox"""
    pass
