import logging

from erc20.errors import MalformedLogError
from erc20.events import TRANSFER_EVENT_SIGNATURE_HASH
from erc20.helpers import normalize_address, to_hex

logger = logging.getLogger(__name__)


def filter_transactions(transactions, watched):
    """Yield (transaction, to_address) for transactions sent to a watched contract.

    Contract creations have no ``to`` and are skipped.
    """
    for transaction in transactions:
        tx_to = transaction.get('to')
        if tx_to is None:
            continue
        tx_to = normalize_address(tx_to)
        if tx_to in watched:
            yield transaction, tx_to


def match_log(log, contracts):
    topics = log.get('topics') or []
    if len(topics) == 0:
        raise MalformedLogError(f"log {log.get('logIndex')} of {log.get('address')} has no topics")
    if to_hex(topics[0]) != TRANSFER_EVENT_SIGNATURE_HASH:
        return False
    return normalize_address(log['address']) in contracts


def filter_logs(logs, contracts):
    """Keep Transfer logs emitted by one of ``contracts``, in log order."""
    matched = []
    for log in logs:
        try:
            if match_log(log, contracts):
                matched.append(log)
        except MalformedLogError as e:
            logger.warning(f'skipping malformed log: {e}')
    return matched
