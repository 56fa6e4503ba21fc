"""
Unit tests for the reference ERC20 token and the custody adapter.
"""

import pytest

from reward_escrow.contracts.erc20 import ERC20Token
from reward_escrow.core.constants import UINT256_MAX, ZERO_ADDRESS
from reward_escrow.core.exceptions import CustodyTransferError, TokenError
from reward_escrow.core.protocols import ICustodyLedger
from reward_escrow.escrow.custody import TokenCustody

OWNER = "0x" + "aa" * 20
HOLDER = "0x" + "01" * 20
SPENDER = "0x" + "02" * 20
ESCROW = "0x" + "e5" * 20


@pytest.fixture
def token():
    token = ERC20Token(name="Reward Token", symbol="RWD", owner=OWNER)
    token.mint(OWNER, HOLDER, 1000)
    return token


class TestERC20Token:
    def test_deterministic_address(self):
        first = ERC20Token(name="Reward Token", symbol="RWD")
        second = ERC20Token(name="Reward Token", symbol="RWD")
        assert first.address == second.address
        assert first.address.startswith("0x") and len(first.address) == 42

    def test_mint_and_transfer(self, token):
        assert token.total_supply == 1000
        token.transfer(HOLDER, SPENDER, 300)

        assert token.balance_of(HOLDER) == 700
        assert token.balance_of(SPENDER.upper().replace("0X", "0x")) == 300
        assert [event.event_type for event in token.events] == ["Transfer", "Transfer"]

    def test_transfer_exceeding_balance(self, token):
        with pytest.raises(TokenError):
            token.transfer(HOLDER, SPENDER, 1001)
        assert token.balance_of(HOLDER) == 1000

    def test_transfer_to_zero_address(self, token):
        with pytest.raises(TokenError, match="zero address"):
            token.transfer(HOLDER, ZERO_ADDRESS, 1)

    def test_allowance_flow(self, token):
        token.approve(HOLDER, SPENDER, 500)
        token.transfer_from(SPENDER, HOLDER, SPENDER, 200)

        assert token.allowance(HOLDER, SPENDER) == 300
        with pytest.raises(TokenError, match="insufficient allowance"):
            token.transfer_from(SPENDER, HOLDER, SPENDER, 301)

    def test_unlimited_allowance_not_decremented(self, token):
        token.approve(HOLDER, SPENDER, UINT256_MAX)
        token.transfer_from(SPENDER, HOLDER, SPENDER, 200)
        assert token.allowance(HOLDER, SPENDER) == UINT256_MAX

    def test_only_owner_mints(self, token):
        with pytest.raises(TokenError, match="not owner"):
            token.mint(HOLDER, HOLDER, 1)

    def test_mint_cannot_overflow_uint256(self, token):
        with pytest.raises(TokenError, match="uint256"):
            token.mint(OWNER, HOLDER, UINT256_MAX)
        assert token.total_supply == 1000

    def test_failed_transfer_from_keeps_allowance(self, token):
        token.approve(HOLDER, SPENDER, 5000)

        with pytest.raises(TokenError, match="exceeds balance"):
            token.transfer_from(SPENDER, HOLDER, SPENDER, 2000)

        assert token.allowance(HOLDER, SPENDER) == 5000
        assert token.balance_of(HOLDER) == 1000

    def test_rejects_non_integer_amounts(self, token):
        with pytest.raises(TokenError):
            token.transfer(HOLDER, SPENDER, 1.5)
        with pytest.raises(TokenError):
            token.transfer(HOLDER, SPENDER, True)

    def test_serialization(self, token):
        token.approve(HOLDER, SPENDER, 5)
        restored = ERC20Token.from_dict(token.to_dict())
        assert restored.to_dict() == token.to_dict()


class TestTokenCustody:
    def test_implements_custody_protocol(self, token):
        assert isinstance(TokenCustody(token, ESCROW), ICustodyLedger)

    def test_balance_and_transfer(self, token):
        token.mint(OWNER, ESCROW, 100)
        custody = TokenCustody(token, ESCROW.upper().replace("0X", "0x"))

        assert custody.balance() == 100
        assert custody.transfer(HOLDER, 40)
        assert custody.balance() == 60
        assert token.balance_of(HOLDER) == 1040

    def test_transfer_from_pulls_approved_tokens(self, token):
        custody = TokenCustody(token, ESCROW)
        token.approve(HOLDER, ESCROW, 50)

        assert custody.transfer_from(HOLDER, 50)
        assert custody.balance() == 50

    def test_token_errors_become_custody_errors(self, token):
        custody = TokenCustody(token, ESCROW)

        with pytest.raises(CustodyTransferError, match="token transfer failed"):
            custody.transfer(HOLDER, 1)
        with pytest.raises(CustodyTransferError):
            custody.transfer_from(HOLDER, 1)
