"""ERC-20 call encoding and balance helpers."""

from __future__ import annotations

import functools
from typing import Dict, Tuple

from web3 import Web3
from web3.contract import Contract

from kanz.contracts import load_contract_abi

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
APPROVE_SELECTOR = "0x095ea7b3"


@functools.lru_cache(maxsize=1)
def erc20_abi() -> list:
    return load_contract_abi("erc20.json")


@functools.lru_cache(maxsize=1)
def _encoder() -> Contract:
    return Web3().eth.contract(abi=erc20_abi())


def is_zero_address(address: str) -> bool:
    return address.lower() == ZERO_ADDRESS


def encode_approve(spender: str, amount: int) -> str:
    """Return ``approve(spender, amount)`` call data as a ``0x`` hex string."""
    data = _encoder().encode_abi("approve", args=[Web3.to_checksum_address(spender), int(amount)])
    return data if data.startswith("0x") else f"0x{data}"


_CONTRACT_CACHE: Dict[Tuple[int, str], Contract] = {}


def get_contract(web3: Web3, token_address: str) -> Contract:
    """Return a cached ERC-20 contract bound to ``web3``."""
    checksum_address = Web3.to_checksum_address(token_address)
    key = (id(web3), checksum_address)
    contract = _CONTRACT_CACHE.get(key)
    if contract is None:
        contract = web3.eth.contract(address=checksum_address, abi=erc20_abi())
        _CONTRACT_CACHE[key] = contract
    return contract


def balance_of(web3: Web3, token_address: str, owner: str) -> int:
    """Fetch the ERC-20 balance."""
    contract = get_contract(web3, token_address)
    return contract.functions.balanceOf(Web3.to_checksum_address(owner)).call()


__all__ = [
    "APPROVE_SELECTOR",
    "ZERO_ADDRESS",
    "balance_of",
    "encode_approve",
    "erc20_abi",
    "get_contract",
    "is_zero_address",
]
