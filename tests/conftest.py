import pytest
from eth_account import Account
from web3 import Web3

from round_lottery.blockchain.chain import LocalChain
from round_lottery.blockchain.funds import FundsLedger
from round_lottery.lottery.engine import LotteryEngine
from round_lottery.lottery.models import LotteryConfig
from round_lottery.lottery.selector import SequenceDraw

ADMIN_KEY = "0x" + "ad" * 32
ADMIN = Account.from_key(ADMIN_KEY).address
CONTRACT = Web3.to_checksum_address("0x" + "cc" * 20)
ALICE = Web3.to_checksum_address("0x" + "a1" * 20)
BOB = Web3.to_checksum_address("0x" + "b0" * 20)
CAROL = Web3.to_checksum_address("0x" + "c0" * 20)
DAVE = Web3.to_checksum_address("0x" + "d0" * 20)

PRICE = 10**16
DURATION = 300
START = 1_700_000_000
INITIAL_BALANCE = 10**18


def buy(engine, who, quantity):
    return engine.buy_tickets(who, quantity, quantity * PRICE)


@pytest.fixture
def chain():
    return LocalChain(start_time=START)


@pytest.fixture
def funds():
    return FundsLedger({who: INITIAL_BALANCE for who in (ALICE, BOB, CAROL, DAVE)})


@pytest.fixture
def config():
    return LotteryConfig(
        admin=ADMIN,
        contract_address=CONTRACT,
        ticket_price=PRICE,
        round_duration=DURATION,
        fee_bps=500,
        per_address_cap=10,
    )


@pytest.fixture
def draw():
    return SequenceDraw(list(range(64)))


@pytest.fixture
def engine(config, chain, funds, draw):
    return LotteryEngine(config, chain, funds, draw=draw)


@pytest.fixture
def started(engine):
    engine.start_round(ADMIN)
    return engine


@pytest.fixture
def recorded_events(engine):
    received = []
    engine.events.add_listener("*", received.append)
    return received
