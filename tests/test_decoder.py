"""Tests for victim calldata decoding"""

import pytest
from web3 import Web3

from mev_sandwich.detectors.decoder import (
    UNISWAP_V2_ROUTER_ABI,
    UNISWAP_V3_ROUTER_ABI,
    SwapDecoder,
    decode_v3_path,
    is_v3_dex,
)
from mev_sandwich.models import Chain, DecodedSwap, PendingTransaction

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
RECIPIENT = "0x000000000000000000000000000000000000dEaD"
V2_ROUTER = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
V3_ROUTER = "0xE592427A0AEce92De3Edee1F18E0157C05861564"


@pytest.fixture
def decoder():
    return SwapDecoder({"ethereum": WETH})


@pytest.fixture
def v2():
    return Web3().eth.contract(abi=UNISWAP_V2_ROUTER_ABI)


@pytest.fixture
def v3():
    return Web3().eth.contract(abi=UNISWAP_V3_ROUTER_ABI)


def make_tx(data: str, value: int = 0, to: str = V2_ROUTER) -> PendingTransaction:
    return PendingTransaction(
        tx_hash="0x" + "ab" * 32,
        chain=Chain.ETHEREUM,
        raw_transaction="0x02f8",
        to=to,
        data=data,
        value=value,
    )


class TestV2Decoding:
    """Test Uniswap V2 router methods"""

    def test_swap_exact_eth_for_tokens(self, decoder, v2):
        """Test ETH input comes from the transaction value"""
        data = v2.encode_abi(
            "swapExactETHForTokens",
            args=[2900 * 10**6, [WETH, USDC], RECIPIENT, 1700000000],
        )

        swap = decoder.decode(make_tx(data, value=10**18), "uniswap-v2")

        assert swap.method == "swapExactETHForTokens"
        assert swap.token_in == WETH
        assert swap.token_out == USDC
        assert swap.amount_in == 10**18
        assert swap.min_amount_out == 2900 * 10**6
        assert swap.deadline == 1700000000

    def test_swap_exact_tokens_for_eth(self, decoder, v2):
        """Test token input with wrapped native output"""
        data = v2.encode_abi(
            "swapExactTokensForETH",
            args=[3000 * 10**6, 10**17, [USDC, WETH], RECIPIENT, 1700000000],
        )

        swap = decoder.decode(make_tx(data), "uniswap-v2")

        assert swap.token_in == USDC
        assert swap.token_out == WETH
        assert swap.amount_in == 3000 * 10**6

    def test_swap_exact_tokens_for_tokens_multihop(self, decoder, v2):
        """Test multi-hop paths use the first and last token"""
        data = v2.encode_abi(
            "swapExactTokensForTokens",
            args=[10**21, 10**8, [DAI, WETH, USDC], RECIPIENT, 1700000000],
        )

        swap = decoder.decode(make_tx(data), "sushiswap")

        assert swap.token_in == DAI
        assert swap.token_out == USDC
        assert swap.path == (DAI, WETH, USDC)
        assert swap.dex == "sushiswap"

    def test_unknown_selector(self, decoder):
        """Test calldata for an unsupported method is ignored"""
        assert decoder.decode(make_tx("0xdeadbeef" + "00" * 64), "uniswap-v2") is None

    def test_empty_calldata(self, decoder):
        """Test plain transfers are ignored"""
        assert decoder.decode(make_tx("0x"), "uniswap-v2") is None


class TestV3Decoding:
    """Test Uniswap V3 router methods"""

    def test_exact_input_single(self, decoder, v3):
        """Test the single-pool struct is unpacked"""
        data = v3.encode_abi(
            "exactInputSingle",
            args=[(WETH, USDC, 500, RECIPIENT, 1700000000, 2 * 10**18, 5900 * 10**6, 0)],
        )

        swap = decoder.decode(make_tx(data, to=V3_ROUTER), "uniswap-v3")

        assert swap.method == "exactInputSingle"
        assert swap.token_in == WETH
        assert swap.token_out == USDC
        assert swap.amount_in == 2 * 10**18
        assert swap.min_amount_out == 5900 * 10**6
        assert swap.fee_tier == 500

    def test_exact_input_path(self, decoder, v3):
        """Test the packed multi-hop path is decoded"""
        path = (
            bytes.fromhex(DAI[2:])
            + (100).to_bytes(3, "big")
            + bytes.fromhex(WETH[2:])
            + (3000).to_bytes(3, "big")
            + bytes.fromhex(USDC[2:])
        )
        data = v3.encode_abi(
            "exactInput",
            args=[(path, RECIPIENT, 1700000000, 10**21, 10**8)],
        )

        swap = decoder.decode(make_tx(data, to=V3_ROUTER), "uniswap-v3")

        assert swap.token_in == DAI
        assert swap.token_out == USDC
        assert swap.path == (DAI, WETH, USDC)
        assert swap.fee_tier == 100


def test_decode_v3_path():
    """Test path splitting into tokens and fee tiers"""
    path = bytes.fromhex(WETH[2:]) + (3000).to_bytes(3, "big") + bytes.fromhex(USDC[2:])

    tokens, fees = decode_v3_path(path)

    assert tokens == (WETH, USDC)
    assert fees == (3000,)


def test_is_v3_dex():
    assert is_v3_dex("uniswap-v3")
    assert is_v3_dex("pancakeswap-v3")
    assert not is_v3_dex("uniswap-v2")


def test_pre_decoded_swap_passes_through(decoder):
    """Test Solana swaps delivered by the feed are used as-is"""
    swap = DecodedSwap(
        method="swap",
        token_in="So11111111111111111111111111111111111111112",
        token_out="EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",
        amount_in=5 * 10**9,
        min_amount_out=490 * 10**6,
    )
    tx = PendingTransaction(
        tx_hash="5xyz",
        chain=Chain.SOLANA,
        raw_transaction="AQID",
        decoded_swap=swap,
    )

    assert decoder.decode(tx, "raydium") is swap
