import logging
from typing import NamedTuple, Optional

from ethereumetl.domain.receipt_log import EthReceiptLog
from ethereumetl.service.token_transfer_extractor import EthTokenTransferExtractor
from web3 import Web3

from erc20.errors import DecodeError
from erc20.helpers import hex_to_int, normalize_address, to_hex
from erc20.registry import TokenStandard

logger = logging.getLogger(__name__)


class EventParam(NamedTuple):
    name: str
    kind: str
    indexed: bool


TRANSFER_EVENT_NAME = 'Transfer'
TRANSFER_EVENT_INPUTS = (
    EventParam('_from', 'address', True),
    EventParam('_to', 'address', True),
    EventParam('_value', 'uint256', False),
)
TRANSFER_EVENT_SIGNATURE = '{}({})'.format(
    TRANSFER_EVENT_NAME, ','.join(param.kind for param in TRANSFER_EVENT_INPUTS))
# 0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef
TRANSFER_EVENT_SIGNATURE_HASH = to_hex(Web3.keccak(text=TRANSFER_EVENT_SIGNATURE))

# topic-0 plus one topic per indexed input
ERC20_TRANSFER_TOPICS = 1 + sum(1 for param in TRANSFER_EVENT_INPUTS if param.indexed)
ERC20_TRANSFER_DATA_BYTES = 32 * sum(1 for param in TRANSFER_EVENT_INPUTS if not param.indexed)


class TransferRecord(NamedTuple):
    contract: str
    from_address: str
    to_address: str
    value: str
    timestamp: int
    token_address: Optional[str] = None
    transaction_hash: Optional[str] = None
    log_index: Optional[int] = None
    block_number: Optional[int] = None

    @property
    def hash_idx(self):
        return f'{self.transaction_hash}.{self.log_index}'

    def to_dict(self):
        return {
            'contract': self.contract,
            'from': self.from_address,
            'to': self.to_address,
            'value': self.value,
            'timestamp': self.timestamp,
            'token_address': self.token_address,
            'transaction_hash': self.transaction_hash,
            'log_index': self.log_index,
            'block_number': self.block_number,
            'hash_idx': self.hash_idx,
        }


token_transfer_service = EthTokenTransferExtractor()


def to_receipt_log(log):
    """Convert a web3 log entry into ethereum-etl's string based EthReceiptLog."""
    receipt_log = EthReceiptLog()
    receipt_log.address = normalize_address(log['address'])
    receipt_log.topics = [to_hex(topic) for topic in log.get('topics') or []]
    data = log.get('data')
    receipt_log.data = to_hex(data) if data is not None else '0x'
    if log.get('transactionHash') is not None:
        receipt_log.transaction_hash = to_hex(log['transactionHash'])
    if log.get('logIndex') is not None:
        receipt_log.log_index = hex_to_int(log['logIndex'])
    if log.get('blockNumber') is not None:
        receipt_log.block_number = hex_to_int(log['blockNumber'])
    return receipt_log


def decode_erc20_transfer(log, contract, timestamp):
    receipt_log = to_receipt_log(log)

    if len(receipt_log.topics) != ERC20_TRANSFER_TOPICS:
        raise DecodeError(
            f'Transfer log from {receipt_log.address} has {len(receipt_log.topics)} topics, '
            f'expected {ERC20_TRANSFER_TOPICS}')
    data_bytes = (len(receipt_log.data) - 2) // 2
    if data_bytes != ERC20_TRANSFER_DATA_BYTES:
        raise DecodeError(
            f'Transfer log from {receipt_log.address} has {data_bytes} data bytes, '
            f'expected {ERC20_TRANSFER_DATA_BYTES}')

    transfer = token_transfer_service.extract_transfer_from_log(receipt_log)
    if transfer is None:
        raise DecodeError(f'log from {receipt_log.address} is not a Transfer event')
    if type(transfer.value) is not int:
        raise DecodeError(f'Transfer log from {receipt_log.address} has a non numeric value')

    return TransferRecord(
        contract=contract,
        from_address=transfer.from_address,
        to_address=transfer.to_address,
        value=str(transfer.value),
        timestamp=timestamp,
        token_address=transfer.token_address,
        transaction_hash=receipt_log.transaction_hash,
        log_index=receipt_log.log_index,
        block_number=receipt_log.block_number,
    )


DECODERS = {
    TokenStandard.ERC20: decode_erc20_transfer,
}


def decode_transfer(log, transaction_to, block_timestamp, standard=TokenStandard.ERC20):
    """Decode a matched Transfer log into a TransferRecord.

    ``transaction_to`` becomes the record's ``contract``; the log's own
    emitting address is kept in ``token_address``. ``block_timestamp`` is in
    milliseconds.
    """
    decoder = DECODERS.get(standard)
    if decoder is None:
        raise DecodeError(f'no Transfer decoder for {standard.value} contracts')
    return decoder(log, normalize_address(transaction_to), block_timestamp)
