"""Protocol rules and the precompiled-contract registry.

The active precompile set depends on which forks are live at the block
being traced, so it is resolved once per execution, after the block number
is known.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable

from . import hexutil

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProtocolRules:
    """Which forks are active at a given block."""

    is_homestead: bool = False
    is_byzantium: bool = False
    is_istanbul: bool = False
    is_berlin: bool = False
    is_cancun: bool = False
    is_prague: bool = False


@dataclass(frozen=True)
class ChainConfig:
    """Fork activation points. ``None`` means the fork never activates.

    Block-numbered forks up to Berlin; Cancun and Prague are activated by
    block timestamp.
    """

    homestead_block: int | None = None
    byzantium_block: int | None = None
    istanbul_block: int | None = None
    berlin_block: int | None = None
    cancun_time: int | None = None
    prague_time: int | None = None

    def rules(self, block_number: int, block_time: int = 0) -> ProtocolRules:
        return ProtocolRules(
            is_homestead=_active(self.homestead_block, block_number),
            is_byzantium=_active(self.byzantium_block, block_number),
            is_istanbul=_active(self.istanbul_block, block_number),
            is_berlin=_active(self.berlin_block, block_number),
            is_cancun=_active(self.cancun_time, block_time),
            is_prague=_active(self.prague_time, block_time),
        )


def _active(activation: int | None, at: int) -> bool:
    return activation is not None and at >= activation


MAINNET_CHAIN_CONFIG = ChainConfig(
    homestead_block=1_150_000,
    byzantium_block=4_370_000,
    istanbul_block=9_069_000,
    berlin_block=12_244_000,
    cancun_time=1_710_338_135,
    prague_time=1_746_612_311,
)

# All forks live from genesis; handy for dev chains and tests.
ALL_FORKS_CHAIN_CONFIG = ChainConfig(
    homestead_block=0,
    byzantium_block=0,
    istanbul_block=0,
    berlin_block=0,
    cancun_time=0,
    prague_time=0,
)


def _address_range(first: int, last: int) -> frozenset[bytes]:
    return frozenset(hexutil.address_from_int(n) for n in range(first, last + 1))


# ecrecover, sha256, ripemd160, identity
PRECOMPILES_HOMESTEAD = _address_range(0x01, 0x04)
# + modexp, bn256 add / scalar mul / pairing
PRECOMPILES_BYZANTIUM = _address_range(0x01, 0x08)
# + blake2f
PRECOMPILES_ISTANBUL = _address_range(0x01, 0x09)
PRECOMPILES_BERLIN = PRECOMPILES_ISTANBUL
# + kzg point evaluation
PRECOMPILES_CANCUN = _address_range(0x01, 0x0A)
# + bls12-381 suite
PRECOMPILES_PRAGUE = _address_range(0x01, 0x11)


def active_precompiles(rules: ProtocolRules) -> frozenset[bytes]:
    """Addresses of the precompiled contracts live under *rules*."""
    if rules.is_prague:
        return PRECOMPILES_PRAGUE
    if rules.is_cancun:
        return PRECOMPILES_CANCUN
    if rules.is_berlin:
        return PRECOMPILES_BERLIN
    if rules.is_istanbul:
        return PRECOMPILES_ISTANBUL
    if rules.is_byzantium:
        return PRECOMPILES_BYZANTIUM
    return PRECOMPILES_HOMESTEAD


class PrecompileResolver(ABC):
    """Strategy for resolving the precompile set of one execution."""

    @abstractmethod
    def resolve(self, block_number: int, block_time: int = 0) -> frozenset[bytes]:
        """Return the addresses to elide for the given block."""
        ...


class ChainRulesResolver(PrecompileResolver):
    """Resolves through a ChainConfig's fork schedule."""

    def __init__(self, chain_config: ChainConfig = MAINNET_CHAIN_CONFIG):
        self._chain_config = chain_config

    def resolve(self, block_number: int, block_time: int = 0) -> frozenset[bytes]:
        rules = self._chain_config.rules(block_number, block_time)
        precompiles = active_precompiles(rules)
        logger.debug(
            "Block %d: %d active precompiles (%s)",
            block_number,
            len(precompiles),
            rules,
        )
        return precompiles


class StaticPrecompileResolver(PrecompileResolver):
    """Always returns the same fixed set, regardless of block."""

    def __init__(self, addresses: Iterable[hexutil.BytesLike] = ()):
        self._addresses = frozenset(hexutil.to_address(a) for a in addresses)

    def resolve(self, block_number: int, block_time: int = 0) -> frozenset[bytes]:
        return self._addresses
