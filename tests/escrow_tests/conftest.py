"""
Shared fixtures for reward escrow tests.

The escrow is deployed at ``START`` against a reference token whose
custody address is pre-funded, with one owner, one issuer and one bridge.
Time only moves when a test advances the manual clock.
"""

import pytest

from reward_escrow.contracts.erc20 import ERC20Token
from reward_escrow.core.constants import UNIT
from reward_escrow.escrow.access_control import Role, RoleBasedAccessControl
from reward_escrow.escrow.custody import TokenCustody
from reward_escrow.escrow.debt_oracle import StaticDebtOracle
from reward_escrow.escrow.reward_escrow import RewardEscrow

START = 1_600_000_000

OWNER = "0x" + "aa" * 20
ISSUER = "0x" + "1b" * 20
BRIDGE = "0x" + "b7" * 20
ESCROW = "0x" + "e5" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20

CUSTODY_FUNDING = 100_000_000 * UNIT


class ManualClock:
    """Deterministic clock advanced explicitly by tests."""

    def __init__(self, now: int = START):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> int:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def token():
    """Reward token with the escrow's custody address pre-funded."""
    token = ERC20Token(name="Reward Token", symbol="RWD", owner=OWNER)
    token.mint(OWNER, ESCROW, CUSTODY_FUNDING)
    return token


@pytest.fixture
def custody(token):
    return TokenCustody(token, ESCROW)


@pytest.fixture
def access_control():
    rbac = RoleBasedAccessControl(owner_address=OWNER)
    owner = rbac.caller(OWNER)
    rbac.grant_role(owner, Role.ISSUER, ISSUER)
    rbac.grant_role(owner, Role.BRIDGE, BRIDGE)
    return rbac


@pytest.fixture
def debt_oracle():
    return StaticDebtOracle()


@pytest.fixture
def escrow(custody, access_control, debt_oracle, clock):
    return RewardEscrow(custody, access_control, debt_oracle, time_provider=clock)


@pytest.fixture
def owner(access_control):
    return access_control.caller(OWNER)


@pytest.fixture
def issuer(access_control):
    return access_control.caller(ISSUER)


@pytest.fixture
def bridge(access_control):
    return access_control.caller(BRIDGE)


@pytest.fixture
def alice(access_control):
    return access_control.caller(ALICE)


@pytest.fixture
def bob(access_control):
    return access_control.caller(BOB)
