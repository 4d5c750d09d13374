import logging
import time

import requests

logger = logging.getLogger(__name__)

# connection resets and timeouts are worth another try, anything else is not
TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
    TimeoutError,
)


def hex_to_int(n):
    if type(n) is int:
        return n
    elif type(n) is str:
        if len(n) > 2 and n[0:2] == '0x':
            return int(n, 0)
        else:
            return int(n, 16)
    elif isinstance(n, (bytes, bytearray)):
        return int.from_bytes(n, 'big')
    raise TypeError(f'cannot convert {type(n).__name__} to int')


def to_hex(value):
    """Render bytes or a hex string as a lowercase 0x-prefixed string."""
    if isinstance(value, (bytes, bytearray)):
        return '0x' + bytes(value).hex()
    if type(value) is str:
        value = value.strip('"').lower()
        if value[0:2] != '0x':
            value = '0x' + value
        return value
    raise TypeError(f'cannot render {type(value).__name__} as hex')


def normalize_address(addr):
    """Lowercase 0x hex form of an address, None stays None.

    Accepts checksummed strings, quoted strings and raw 20 byte values.
    """
    if addr is None:
        return None
    if isinstance(addr, (bytes, bytearray)):
        if len(addr) != 20:
            raise ValueError(f'address must be 20 bytes, got {len(addr)}')
    return to_hex(addr)


def get_hash(block_or_tx):
    if type(block_or_tx) is str:
        return block_or_tx
    elif isinstance(block_or_tx, (bytes, bytearray)):
        return to_hex(block_or_tx)
    else:
        return get_hash(block_or_tx['hash'])


def with_retry(func, *args, retries=3, delay=2, operation='rpc call', transient=TRANSIENT_ERRORS, **kwargs):
    """Call ``func`` and retry transient failures with exponential backoff.

    The last error matching ``transient`` is re-raised once ``retries`` extra attempts are
    used up. Other exceptions propagate on the first failure.
    """
    retry = 0
    while True:
        try:
            return func(*args, **kwargs)
        except transient as e:
            if retry >= retries:
                logger.error(f'{operation} failed after {retry + 1} attempts')
                raise
            wait = delay * 2 ** retry
            logger.warning(f'{operation} failed ({e}), retrying in {wait}s')
            time.sleep(wait)
            retry += 1
