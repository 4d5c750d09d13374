import logging
import time
from enum import Enum

import requests
from web3 import Web3
from web3.exceptions import BlockNotFound, TransactionNotFound

from erc20.batch import DEFAULT_BATCH_SIZE, BatchBuffer, report_progress
from erc20.errors import BlockEmptyError, BlockFetchError, ChainUnavailable, ReceiptFetchError, SinkError
from erc20.events import DECODERS, decode_transfer
from erc20.filters import filter_logs, filter_transactions
from erc20.helpers import get_hash, hex_to_int, with_retry
from erc20.registry import ContractRegistry, TokenStandard
from erc20.store import TRANSFER_LABEL, Neo4jTransferStore

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATIONS = 50
CHECKPOINT_NAME = 'transfers'


class ScanState(Enum):
    SCANNING = 'scanning'
    FLUSHING = 'flushing'
    STOPPED = 'stopped'


class ScanCursor:
    def __init__(self, current_height, stop_height):
        self.current_height = current_height
        self.stop_height = stop_height
        # first height whose transfers have not been flushed yet
        self.batch_height = current_height
        self.state = ScanState.SCANNING

    def __repr__(self):
        return f'ScanCursor({self.current_height}, {self.stop_height}, {self.state.value})'


class ERC20ETL:
    """Scans blocks for Transfer events of the registered tokens and stores them."""

    def __init__(self, config, w3=None, store=None, registry=None):
        self.config = config
        rpc_config = config.get("daemon", {})
        scanner_config = config.get("scanner", {})

        if w3 is None:
            adapter = requests.adapters.HTTPAdapter(
                pool_connections=16, pool_maxsize=16)
            session = requests.Session()
            session.mount('http://', adapter)
            session.mount('https://', adapter)
            w3 = Web3(Web3.HTTPProvider(rpc_config["address"], session=session,
                                        request_kwargs={'timeout': rpc_config.get("timeout", 20)}))
            logger.warning('using web3@' + rpc_config["address"])
        self.w3 = w3

        if store is None:
            store = Neo4jTransferStore(config["neo4j"])
            try:
                store.ensure_db_exists()
            except SinkError:
                store.close()
                raise
            store.ensure_schema(TRANSFER_LABEL)
        self.store = store

        if registry is None:
            registry = ContractRegistry.from_config(config.get("contracts"))
        self.registry = registry

        self.confirmations = scanner_config.get("confirmations", DEFAULT_CONFIRMATIONS)
        self.batch_size = scanner_config.get("batch-size", DEFAULT_BATCH_SIZE)
        self.retries = scanner_config.get("retry", 3)
        self.retry_delay = scanner_config.get("retry-delay", 2)
        self.checkpoint = scanner_config.get("checkpoint", True)
        self.poll_interval = scanner_config.get("poll-interval", 15)

        # one set for both the transaction and the log stage
        self.watched = frozenset().union(
            *(self.registry.addresses(standard) for standard in DECODERS))
        ignored = set(self.registry.addresses()) - self.watched
        if ignored:
            logger.warning(f'ignoring {len(ignored)} contracts without a Transfer decoder')
        if not self.watched:
            logger.warning('no contracts to watch, every block will be empty')

        self.buffer = BatchBuffer(self.store, TRANSFER_LABEL, self.batch_size)
        self.total_transfers = 0
        self.mismatched_contracts = 0
        # first height of the earliest batch the store rejected
        self.unsaved_from = None

    def verify_contracts(self):
        return self.registry.verify(self.w3, TokenStandard.ERC20,
                                    retries=self.retries, delay=self.retry_delay)

    def get_head_height(self):
        try:
            return with_retry(lambda: self.w3.eth.block_number, retries=self.retries,
                              delay=self.retry_delay, operation='block_number')
        except Exception as e:
            raise ChainUnavailable(f'failed to retrieve head block number from chain: {e}') from e

    def current_stop_bound(self):
        """Highest height considered safe from reorgs, may be negative on a young chain."""
        return self.get_head_height() - self.confirmations

    def fetch_block(self, height):
        try:
            block = with_retry(self.w3.eth.get_block, height, full_transactions=True,
                               retries=self.retries, delay=self.retry_delay,
                               operation=f'get_block {height}')
        except BlockNotFound as e:
            raise BlockEmptyError(height) from e
        except Exception as e:
            raise BlockFetchError(height, e) from e
        if block is None:
            raise BlockEmptyError(height)
        return block

    def fetch_receipt(self, transaction_hash):
        try:
            receipt = with_retry(self.w3.eth.get_transaction_receipt, transaction_hash,
                                 retries=self.retries, delay=self.retry_delay,
                                 operation=f'get_transaction_receipt {transaction_hash}')
        except TransactionNotFound as e:
            raise ReceiptFetchError(transaction_hash, 'receipt not found') from e
        except Exception as e:
            raise ReceiptFetchError(transaction_hash, e) from e
        if receipt is None:
            raise ReceiptFetchError(transaction_hash, 'receipt not found')
        return receipt

    def process_block(self, block):
        """Decode the watched transfers of one block into the buffer.

        Returns the number of records pushed.
        """
        timestamp = hex_to_int(block['timestamp']) * 1000
        pushed = 0
        for transaction, tx_to in filter_transactions(block['transactions'], self.watched):
            transaction_hash = get_hash(transaction)
            receipt = self.fetch_receipt(transaction_hash)
            for log in filter_logs(receipt['logs'], self.watched):
                contract = self.registry.get(log['address'])
                record = decode_transfer(log, tx_to, timestamp, contract.standard)
                if record.token_address != tx_to:
                    self.mismatched_contracts += 1
                    logger.warning(
                        f'tx {transaction_hash} calls {tx_to} but the Transfer was emitted by {record.token_address}')
                self.buffer.push(record)
                pushed += 1
        return pushed

    def flush(self, cursor):
        """Flush the buffer; on success record ``cursor`` as the new checkpoint.

        After a failed flush the checkpoint stays below the first height of
        the lost batch for the rest of the process, so a restart re-reads it.
        """
        cursor.state = ScanState.FLUSHING
        self.total_transfers += len(self.buffer)
        first_height = cursor.batch_height
        if self.buffer.records and self.buffer.records[0].block_number is not None:
            first_height = self.buffer.records[0].block_number
        stored = self.buffer.flush()
        cursor.batch_height = cursor.current_height
        if not stored and self.unsaved_from is None:
            self.unsaved_from = first_height
            logger.error(f'transfers from height {first_height} were not stored, '
                         f'holding the checkpoint at {first_height - 1}')
        if stored and self.checkpoint:
            height = cursor.current_height - 1
            if self.unsaved_from is not None:
                height = min(height, self.unsaved_from - 1)
            try:
                self.store.set_checkpoint(CHECKPOINT_NAME, height)
            except SinkError as e:
                logger.error(e)
        cursor.state = ScanState.SCANNING
        return stored

    def start_height(self, start=None):
        if start is not None:
            return start
        start = self.config.get("scanner", {}).get("start")
        if start is not None:
            return start
        if self.checkpoint:
            last = self.store.get_checkpoint(CHECKPOINT_NAME)
            if last is not None:
                logger.warning(f'resuming after checkpoint {last}')
                return last + 1
        return 0

    def scan(self, start=None):
        """Scan from ``start`` up to the moving stop bound, then flush and stop."""
        cursor = ScanCursor(self.start_height(start), self.current_stop_bound())
        logger.warning(f'scanning from {cursor.current_height}, stop bound {cursor.stop_height}')

        stop = cursor.current_height > cursor.stop_height
        while not stop:
            block = self.fetch_block(cursor.current_height)
            self.process_block(block)
            processed = cursor.current_height
            cursor.current_height += 1

            if cursor.current_height > cursor.stop_height:
                # the head may have moved while we were busy
                cursor.stop_height = self.current_stop_bound()
                stop = cursor.current_height > cursor.stop_height

            if self.buffer.should_flush(stopping=stop):
                self.flush(cursor)

            report_progress(processed, self.total_transfers, len(self.buffer))

        cursor.state = ScanState.STOPPED
        logger.warning(f'stopped at {cursor.current_height - 1}, {self.total_transfers} transfers in total')
        return cursor

    def work_flow(self, start=None, follow=False):
        cursor = self.scan(start)
        while follow:
            logger.info(f'waiting {self.poll_interval}s for new blocks')
            time.sleep(self.poll_interval)
            cursor = self.scan(cursor.current_height)
        return cursor
