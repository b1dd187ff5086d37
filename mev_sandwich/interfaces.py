"""Interfaces of the external collaborators the pipeline consumes"""

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from mev_sandwich.models import Chain, PendingTransaction, PoolSnapshot, PriceQuote, TokenInfo


class PriceSource(ABC):
    """Multi-source price oracle. Only its price + confidence output is consumed."""

    @abstractmethod
    async def get_price(self, token_address: str, chain: Chain) -> PriceQuote:
        """Return the USD price of a token together with its confidence"""


class ChainClient(ABC):
    """Read access to one chain's state (RPC pooling and failover live behind it)"""

    chain: Chain

    @abstractmethod
    async def get_block_number(self) -> int:
        """Latest block number (slot on Solana)"""

    @abstractmethod
    async def get_gas_price(self) -> int:
        """Network gas price in wei (lamports per compute unit on Solana)"""

    @abstractmethod
    async def get_token(self, address: str) -> Optional[TokenInfo]:
        """Token metadata, or None when the token is unknown"""

    @abstractmethod
    async def get_pool(self, token_a: str, token_b: str, dex: str) -> Optional[PoolSnapshot]:
        """Pool holding the token pair on the given DEX, or None"""

    async def get_base_fee(self) -> int:
        """Next block base fee in wei (EVM only)"""
        raise NotImplementedError

    async def get_nonce(self, address: str) -> int:
        """Pending transaction count of an address (EVM only)"""
        raise NotImplementedError

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt of a mined transaction, None while pending (EVM only)"""
        raise NotImplementedError

    async def get_recent_blockhash(self) -> str:
        """Recent blockhash for transaction construction (Solana only)"""
        raise NotImplementedError

    async def get_recent_tps(self) -> float:
        """Recent transactions-per-second, used as a congestion signal (Solana only)"""
        raise NotImplementedError


class Signer(ABC):
    """Key custody. The pipeline never sees private keys."""

    @abstractmethod
    def address(self, chain: Chain) -> str:
        """Address (public key on Solana) that sends the sandwich legs"""

    @abstractmethod
    async def sign_transaction(self, chain: Chain, transaction: Dict[str, Any]) -> str:
        """Sign an unsigned transaction and return the broadcast-ready encoding

        EVM chains return 0x-prefixed raw hex, Solana returns base64.
        """

    @abstractmethod
    async def sign_message(self, chain: Chain, message: str) -> str:
        """Sign an arbitrary message (relay authentication headers)"""


class PendingTransactionFeed(ABC):
    """Push source of pending transactions across all chains"""

    @abstractmethod
    def stream(self) -> AsyncIterator[PendingTransaction]:
        """Yield pending transactions as they are observed"""
