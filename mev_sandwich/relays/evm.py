"""Front-run / back-run transaction construction for EVM routers"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from web3 import Web3

from mev_sandwich.config import ChainConfig
from mev_sandwich.detectors.decoder import UNISWAP_V2_ROUTER_ABI, UNISWAP_V3_ROUTER_ABI, is_v3_dex
from mev_sandwich.errors import ValidationError
from mev_sandwich.models import Chain, ExecutionParams

GWEI = Decimal(10) ** 9

CHAIN_IDS = {Chain.ETHEREUM: 1, Chain.BSC: 56}


def to_base_units(amount: Decimal, decimals: int) -> int:
    """Convert a human token amount to integer base units (rounded down)"""
    return int(amount * (Decimal(10) ** decimals))


def gwei_to_wei(value: Decimal) -> int:
    return int(value * GWEI)


@dataclass(frozen=True)
class SwapCall:
    """Router call for one sandwich leg"""

    to: str
    data: str
    value: int
    amount_in: int
    min_amount_out: int


class RouterCalldataBuilder:
    """Encodes the sandwich legs against the victim's router"""

    def __init__(self, chain_config: ChainConfig):
        self.chain_config = chain_config
        w3 = Web3()
        self._v2 = w3.eth.contract(abi=UNISWAP_V2_ROUTER_ABI)
        self._v3 = w3.eth.contract(abi=UNISWAP_V3_ROUTER_ABI)

    def router_for(self, params: ExecutionParams) -> str:
        opportunity = params.opportunity
        router = self.chain_config.dex_routers.get(opportunity.dex) or opportunity.victim.to
        if not router:
            raise ValidationError(
                f"no router known for {opportunity.dex}", chain=opportunity.chain.value
            )
        return Web3.to_checksum_address(router)

    def _is_wrapped_native(self, token: str) -> bool:
        return token.lower() == self.chain_config.wrapped_native.lower()

    def front_run(self, params: ExecutionParams, recipient: str) -> SwapCall:
        """Buy token_out ahead of the victim"""
        opportunity = params.opportunity
        amount_in = to_base_units(params.front_run_amount, opportunity.token_in_decimals)
        slippage = params.max_slippage / Decimal(100)
        min_out = to_base_units(
            params.expected_front_run_output * (Decimal(1) - slippage),
            opportunity.token_out_decimals,
        )
        if amount_in <= 0:
            raise ValidationError("front-run amount rounds to zero", chain=opportunity.chain.value)
        native_in = self._is_wrapped_native(opportunity.token_in)
        data = self._encode(
            params,
            token_in=opportunity.token_in,
            token_out=opportunity.token_out,
            amount_in=amount_in,
            min_out=min_out,
            recipient=recipient,
            eth_in=native_in,
            eth_out=False,
        )
        return SwapCall(
            to=self.router_for(params),
            data=data,
            value=amount_in if native_in else 0,
            amount_in=amount_in,
            min_amount_out=min_out,
        )

    def back_run(self, params: ExecutionParams, recipient: str) -> SwapCall:
        """Sell the front-run output after the victim, at least breaking even"""
        opportunity = params.opportunity
        amount_in = to_base_units(params.expected_front_run_output, opportunity.token_out_decimals)
        min_out = to_base_units(params.front_run_amount, opportunity.token_in_decimals)
        native_out = self._is_wrapped_native(opportunity.token_in)
        data = self._encode(
            params,
            token_in=opportunity.token_out,
            token_out=opportunity.token_in,
            amount_in=amount_in,
            min_out=min_out,
            recipient=recipient,
            eth_in=False,
            eth_out=native_out,
        )
        return SwapCall(
            to=self.router_for(params),
            data=data,
            value=0,
            amount_in=amount_in,
            min_amount_out=min_out,
        )

    def _encode(
        self,
        params: ExecutionParams,
        token_in: str,
        token_out: str,
        amount_in: int,
        min_out: int,
        recipient: str,
        eth_in: bool,
        eth_out: bool,
    ) -> str:
        token_in = Web3.to_checksum_address(token_in)
        token_out = Web3.to_checksum_address(token_out)
        recipient = Web3.to_checksum_address(recipient)
        deadline = int(params.deadline)

        if is_v3_dex(params.opportunity.dex):
            fee = params.opportunity.pool.fee_bps * 100
            return self._v3.encode_abi(
                "exactInputSingle",
                args=[(token_in, token_out, fee, recipient, deadline, amount_in, min_out, 0)],
            )

        path = [token_in, token_out]
        if eth_in:
            return self._v2.encode_abi(
                "swapExactETHForTokens", args=[min_out, path, recipient, deadline]
            )
        if eth_out:
            return self._v2.encode_abi(
                "swapExactTokensForETH", args=[amount_in, min_out, path, recipient, deadline]
            )
        return self._v2.encode_abi(
            "swapExactTokensForTokens", args=[amount_in, min_out, path, recipient, deadline]
        )


def build_transaction(
    call: SwapCall,
    chain_id: int,
    sender: str,
    nonce: int,
    gas: int,
    max_fee_per_gas: Optional[int] = None,
    max_priority_fee_per_gas: Optional[int] = None,
    gas_price: Optional[int] = None,
) -> Dict[str, Any]:
    """Unsigned transaction dict: EIP-1559 when fee caps are given, legacy otherwise"""
    tx: Dict[str, Any] = {
        "chainId": chain_id,
        "from": Web3.to_checksum_address(sender),
        "to": call.to,
        "data": call.data,
        "value": call.value,
        "nonce": nonce,
        "gas": gas,
    }
    if gas_price is not None:
        tx["gasPrice"] = gas_price
    else:
        tx["type"] = 2
        tx["maxFeePerGas"] = max_fee_per_gas
        tx["maxPriorityFeePerGas"] = max_priority_fee_per_gas
    return tx


def tx_hash_of(raw_transaction: str) -> str:
    """Hash of a signed raw transaction"""
    return Web3.to_hex(Web3.keccak(hexstr=raw_transaction))
