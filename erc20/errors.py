class ETLError(Exception):
    """Base class for errors raised by the transfer scanner."""


class ChainUnavailable(ETLError):
    """The chain head height could not be read."""


class BlockFetchError(ETLError):
    """A block could not be fetched from the node."""

    def __init__(self, height, reason=None):
        self.height = height
        message = f'failed to load block {height} from provider'
        if reason is not None:
            message += f': {reason}'
        super().__init__(message)


class BlockEmptyError(ETLError):
    """The node returned no block for a height below its head."""

    def __init__(self, height):
        self.height = height
        super().__init__(f'node returned no block for height {height}')


class ReceiptFetchError(ETLError):
    def __init__(self, transaction_hash, reason=None):
        self.transaction_hash = transaction_hash
        message = f'failed to load receipt of tx {transaction_hash}'
        if reason is not None:
            message += f': {reason}'
        super().__init__(message)


class MalformedLogError(ETLError):
    pass


class DecodeError(ETLError):
    pass


class SinkError(ETLError):
    """A bulk insert was not persisted by the store."""
