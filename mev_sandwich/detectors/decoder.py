"""Decoding of victim swap calldata for Uniswap-style routers"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import structlog
from web3 import Web3
from web3.exceptions import Web3Exception

from mev_sandwich.models import DecodedSwap, PendingTransaction

logger = structlog.get_logger()


def _address(name: str) -> Dict[str, str]:
    return {"internalType": "address", "name": name, "type": "address"}


def _uint(name: str, bits: int = 256) -> Dict[str, str]:
    return {"internalType": f"uint{bits}", "name": name, "type": f"uint{bits}"}


_PATH = {"internalType": "address[]", "name": "path", "type": "address[]"}

UNISWAP_V2_ROUTER_ABI: List[Dict[str, Any]] = [
    {
        "name": "swapExactETHForTokens",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [_uint("amountOutMin"), _PATH, _address("to"), _uint("deadline")],
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactTokensForETH",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            _uint("amountIn"),
            _uint("amountOutMin"),
            _PATH,
            _address("to"),
            _uint("deadline"),
        ],
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "swapExactTokensForTokens",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            _uint("amountIn"),
            _uint("amountOutMin"),
            _PATH,
            _address("to"),
            _uint("deadline"),
        ],
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
    },
]

UNISWAP_V3_ROUTER_ABI: List[Dict[str, Any]] = [
    {
        "name": "exactInputSingle",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "internalType": "struct ISwapRouter.ExactInputSingleParams",
                "name": "params",
                "type": "tuple",
                "components": [
                    _address("tokenIn"),
                    _address("tokenOut"),
                    _uint("fee", 24),
                    _address("recipient"),
                    _uint("deadline"),
                    _uint("amountIn"),
                    _uint("amountOutMinimum"),
                    _uint("sqrtPriceLimitX96", 160),
                ],
            }
        ],
        "outputs": [_uint("amountOut")],
    },
    {
        "name": "exactInput",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {
                "internalType": "struct ISwapRouter.ExactInputParams",
                "name": "params",
                "type": "tuple",
                "components": [
                    {"internalType": "bytes", "name": "path", "type": "bytes"},
                    _address("recipient"),
                    _uint("deadline"),
                    _uint("amountIn"),
                    _uint("amountOutMinimum"),
                ],
            }
        ],
        "outputs": [_uint("amountOut")],
    },
]

_V3_STRUCT_FIELDS = {
    "exactInputSingle": (
        "tokenIn",
        "tokenOut",
        "fee",
        "recipient",
        "deadline",
        "amountIn",
        "amountOutMinimum",
        "sqrtPriceLimitX96",
    ),
    "exactInput": ("path", "recipient", "deadline", "amountIn", "amountOutMinimum"),
}


def is_v3_dex(dex: str) -> bool:
    return dex.endswith("-v3")


def decode_v3_path(encoded: bytes) -> Tuple[Tuple[str, ...], Tuple[int, ...]]:
    """
    Split a packed V3 path into token addresses and fee tiers.

    Layout: token (20 bytes) | fee (3 bytes) | token (20 bytes) | ...
    """
    tokens: List[str] = []
    fees: List[int] = []
    offset = 0
    while offset + 20 <= len(encoded):
        tokens.append(Web3.to_checksum_address("0x" + encoded[offset:offset + 20].hex()))
        offset += 20
        if offset + 3 + 20 > len(encoded):
            break
        fees.append(int.from_bytes(encoded[offset:offset + 3], "big"))
        offset += 3
    return tuple(tokens), tuple(fees)


class SwapDecoder:
    """Extracts the swap intent of a pending router call"""

    def __init__(self, wrapped_native: Mapping[str, str]):
        """
        Args:
            wrapped_native: Wrapped native token address per chain value
                (WETH on ethereum, WBNB on bsc)
        """
        self.wrapped_native = dict(wrapped_native)
        w3 = Web3()
        self._v2 = w3.eth.contract(abi=UNISWAP_V2_ROUTER_ABI)
        self._v3 = w3.eth.contract(abi=UNISWAP_V3_ROUTER_ABI)

    def decode(self, tx: PendingTransaction, dex: str) -> Optional[DecodedSwap]:
        """
        Decode a transaction sent to a known router.

        Solana transactions arrive pre-decoded from the feed and are passed through.

        Returns:
            DecodedSwap, or None when the call is not a supported exact-input swap
        """
        if tx.decoded_swap is not None:
            return tx.decoded_swap
        if not tx.data or len(tx.data) < 10:
            return None

        try:
            if is_v3_dex(dex):
                return self._decode_v3(tx, dex)
            return self._decode_v2(tx, dex)
        except (Web3Exception, ValueError, KeyError, TypeError) as e:
            logger.debug(
                "swap_decode_failed",
                tx_hash=tx.tx_hash,
                dex=dex,
                error=str(e),
            )
            return None

    def _decode_v2(self, tx: PendingTransaction, dex: str) -> Optional[DecodedSwap]:
        func, params = self._v2.decode_function_input(tx.data)
        name = func.fn_name
        path = tuple(Web3.to_checksum_address(p) for p in params["path"])
        if len(path) < 2:
            return None
        wrapped = self.wrapped_native.get(tx.chain.value, "")

        if name == "swapExactETHForTokens":
            return DecodedSwap(
                method=name,
                token_in=wrapped or path[0],
                token_out=path[-1],
                amount_in=int(tx.value),
                min_amount_out=int(params["amountOutMin"]),
                path=path,
                deadline=int(params["deadline"]),
                dex=dex,
            )
        if name == "swapExactTokensForETH":
            return DecodedSwap(
                method=name,
                token_in=path[0],
                token_out=wrapped or path[-1],
                amount_in=int(params["amountIn"]),
                min_amount_out=int(params["amountOutMin"]),
                path=path,
                deadline=int(params["deadline"]),
                dex=dex,
            )
        if name == "swapExactTokensForTokens":
            return DecodedSwap(
                method=name,
                token_in=path[0],
                token_out=path[-1],
                amount_in=int(params["amountIn"]),
                min_amount_out=int(params["amountOutMin"]),
                path=path,
                deadline=int(params["deadline"]),
                dex=dex,
            )
        return None

    def _decode_v3(self, tx: PendingTransaction, dex: str) -> Optional[DecodedSwap]:
        func, params = self._v3.decode_function_input(tx.data)
        name = func.fn_name
        struct = self._struct(name, params["params"])

        if name == "exactInputSingle":
            token_in = Web3.to_checksum_address(struct["tokenIn"])
            token_out = Web3.to_checksum_address(struct["tokenOut"])
            return DecodedSwap(
                method=name,
                token_in=token_in,
                token_out=token_out,
                amount_in=int(struct["amountIn"]),
                min_amount_out=int(struct["amountOutMinimum"]),
                path=(token_in, token_out),
                deadline=int(struct["deadline"]),
                fee_tier=int(struct["fee"]),
                dex=dex,
            )
        if name == "exactInput":
            tokens, fees = decode_v3_path(bytes(struct["path"]))
            if len(tokens) < 2:
                return None
            return DecodedSwap(
                method=name,
                token_in=tokens[0],
                token_out=tokens[-1],
                amount_in=int(struct["amountIn"]),
                min_amount_out=int(struct["amountOutMinimum"]),
                path=tokens,
                deadline=int(struct["deadline"]),
                fee_tier=fees[0] if fees else None,
                dex=dex,
            )
        return None

    @staticmethod
    def _struct(name: str, value: Any) -> Mapping[str, Any]:
        # Depending on the web3 release, tuple arguments decode to dicts or plain tuples
        if isinstance(value, Mapping):
            return value
        fields: Sequence[str] = _V3_STRUCT_FIELDS[name]
        return dict(zip(fields, value))
