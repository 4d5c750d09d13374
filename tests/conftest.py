"""
Shared fixtures for the scanner tests.

Provides an in-memory chain (FakeWeb3), an in-memory sink (FakeStore) and
helpers to build blocks, transactions and raw Transfer logs the way a node
returns them.
"""

import pytest
from hexbytes import HexBytes
from web3 import Web3
from web3.datastructures import AttributeDict
from web3.exceptions import BlockNotFound, TransactionNotFound

from erc20.errors import SinkError
from erc20.etl import ERC20ETL
from erc20.events import TRANSFER_EVENT_SIGNATURE_HASH
from erc20.registry import ContractInfo, ContractRegistry, TokenStandard

TOKEN = '0x' + 'aa' * 20
OTHER_TOKEN = '0x' + 'bb' * 20
UNWATCHED = '0x' + 'cc' * 20
ALICE = '0x' + '11' * 20
BOB = '0x' + '22' * 20
MAX_UINT256 = '115792089237316195423570985008687907853269984665640564039457584007913129639935'


def word(address):
    return HexBytes('0x' + address[2:].rjust(64, '0'))


def tx_hash(n):
    return HexBytes('0x' + format(n, '064x'))


def make_transfer_log(address, from_address, to_address, value, transaction_hash=None, log_index=0, block_number=None):
    """Raw ERC20 Transfer log as returned in a web3 receipt."""
    return AttributeDict({
        'address': Web3.toChecksumAddress(address),
        'topics': [HexBytes(TRANSFER_EVENT_SIGNATURE_HASH), word(from_address), word(to_address)],
        'data': HexBytes('0x' + format(int(value), '064x')),
        'transactionHash': transaction_hash,
        'logIndex': log_index,
        'blockNumber': block_number,
    })


def make_transaction(n, to):
    return AttributeDict({
        'hash': tx_hash(n),
        'from': Web3.toChecksumAddress(ALICE),
        'to': Web3.toChecksumAddress(to) if to is not None else None,
    })


def make_block(number, timestamp=1600000000, transactions=()):
    return AttributeDict({
        'number': number,
        'timestamp': timestamp,
        'transactions': list(transactions),
    })


class FakeEth:
    def __init__(self, head=0):
        self.head = head
        self.blocks = {}
        self.receipts = {}
        self.codes = {}
        self.block_requests = []
        self.receipt_requests = []
        self.head_requests = 0

    @property
    def block_number(self):
        self.head_requests += 1
        return self.head

    def get_block(self, height, full_transactions=False):
        assert full_transactions
        self.block_requests.append(height)
        if height > self.head:
            raise BlockNotFound(f'block {height} not found')
        return self.blocks.get(height) or make_block(height)

    def get_transaction_receipt(self, transaction_hash):
        self.receipt_requests.append(transaction_hash)
        key = HexBytes(transaction_hash)
        if key not in self.receipts:
            raise TransactionNotFound(f'receipt {transaction_hash} not found')
        return self.receipts[key]

    def get_code(self, address):
        return self.codes.get(address.lower(), HexBytes('0x'))

    def add_block(self, block, receipts=None):
        self.blocks[block['number']] = block
        for transaction_hash, logs in (receipts or {}).items():
            self.receipts[HexBytes(transaction_hash)] = AttributeDict({
                'transactionHash': transaction_hash,
                'logs': logs,
            })


class FakeWeb3:
    def __init__(self, head=0):
        self.eth = FakeEth(head)


class FakeStore:
    def __init__(self, fail=False):
        self.fail = fail
        self.inserts = []
        self.checkpoints = {}
        self.closed = False

    def insert_many(self, label, records):
        if self.fail:
            raise SinkError('store is down')
        self.inserts.append((label, list(records)))
        return len(records)

    def get_checkpoint(self, name):
        return self.checkpoints.get(name)

    def set_checkpoint(self, name, height):
        self.checkpoints[name] = height

    def close(self):
        self.closed = True

    @property
    def stored(self):
        return [record for _, records in self.inserts for record in records]


@pytest.fixture
def registry():
    return ContractRegistry([
        ContractInfo(TOKEN, 'AAA', 18, TokenStandard.ERC20),
        ContractInfo(OTHER_TOKEN, 'BBB', 0, TokenStandard.ERC20),
        ContractInfo(UNWATCHED, 'NFT', 0, TokenStandard.ERC721),
    ])


@pytest.fixture
def w3():
    return FakeWeb3(head=1000)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def config():
    return {
        "scanner": {
            "confirmations": 50,
            "batch-size": 15000,
            "retry": 0,
            "retry-delay": 0,
            "checkpoint": True,
        },
    }


@pytest.fixture
def etl(config, w3, store, registry):
    return ERC20ETL(config, w3=w3, store=store, registry=registry)
