import logging
from enum import Enum
from typing import Dict, Iterable, List, NamedTuple, Optional

from ethereumetl.service.eth_contract_service import EthContractService
from web3 import Web3

from erc20.helpers import normalize_address, to_hex, with_retry

logger = logging.getLogger(__name__)


class TokenStandard(Enum):
    ERC20 = 'ERC20'
    ERC721 = 'ERC721'


class ContractInfo(NamedTuple):
    address: str
    name: str
    decimals: int
    standard: TokenStandard


# Ronin mainnet tokens, used when the config file has no "contracts" list
DEFAULT_CONTRACTS = [
    ContractInfo('0xc99a6a985ed2cac1ef41640596c5a5f9f4e19ef5', 'WETH', 18, TokenStandard.ERC20),
    ContractInfo('0xed4a9f48a62fb6fdcfb45bb00c9f61d1a436e58c', 'AXS', 18, TokenStandard.ERC20),
    ContractInfo('0xa8754b9fa15fc18bb59458815510e40a12cd2014', 'SLP', 0, TokenStandard.ERC20),
]


class ContractRegistry:
    """Read-only mapping of contract address to ContractInfo."""

    contract_service = EthContractService()

    def __init__(self, contracts: Iterable[ContractInfo]):
        self._contracts: Dict[str, ContractInfo] = {}
        for contract in contracts:
            address = normalize_address(contract.address)
            if address in self._contracts:
                raise ValueError(f'contract {address} registered twice')
            self._contracts[address] = contract._replace(address=address)

    @classmethod
    def from_config(cls, entries: Optional[List[dict]]) -> 'ContractRegistry':
        if not entries:
            logger.warning('no contracts configured, using the built-in Ronin tokens')
            return cls(DEFAULT_CONTRACTS)
        contracts = []
        for entry in entries:
            try:
                standard = TokenStandard(entry.get('standard', 'ERC20').upper())
            except ValueError:
                raise ValueError(
                    f"contract {entry.get('address')} has unknown standard {entry.get('standard')}")
            contracts.append(ContractInfo(
                address=entry['address'],
                name=entry.get('name', ''),
                decimals=int(entry.get('decimals', 18)),
                standard=standard,
            ))
        return cls(contracts)

    def __len__(self):
        return len(self._contracts)

    def __contains__(self, address):
        return normalize_address(address) in self._contracts

    def get(self, address) -> Optional[ContractInfo]:
        return self._contracts.get(normalize_address(address))

    def addresses(self, standard: Optional[TokenStandard] = None) -> frozenset:
        """Addresses of all contracts, or of those with the given standard."""
        return frozenset(
            address for address, contract in self._contracts.items()
            if standard is None or contract.standard is standard)

    def verify(self, w3, standard=TokenStandard.ERC20, retries=3, delay=2):
        """Check the bytecode of every contract of ``standard`` on chain.

        Returns the addresses that do not look like the declared standard.
        Proxy contracts fail this check, so callers only warn about them.
        """
        # contains bug here
        # https://github.com/blockchain-etl/ethereum-etl/issues/194
        mismatched = []
        for address in sorted(self.addresses(standard)):
            bytecode = with_retry(w3.eth.get_code, Web3.toChecksumAddress(address),
                                  retries=retries, delay=delay, operation=f'get_code {address}')
            if isinstance(bytecode, bytes):
                bytecode = to_hex(bytecode)
            function_sighashes = self.contract_service.get_function_sighashes(bytecode)
            if standard is TokenStandard.ERC721:
                ok = self.contract_service.is_erc721_contract(function_sighashes)
            else:
                ok = self.contract_service.is_erc20_contract(function_sighashes)
            if not ok:
                contract = self._contracts[address]
                logger.warning(f'{contract.name} ({address}) does not look like an {standard.value} contract')
                mismatched.append(address)
        return mismatched
