from types import SimpleNamespace
from unittest.mock import DEFAULT, patch

import fakeredis
import pytest

from ensflow.gateways.bridge_api import BridgeQuote, DepositStatus
from ensflow.gateways.registry import Availability, Ownership, RegistrationCost, RenewalQuote, TxCall
from ensflow.settings import settings
from ensflow.store.models import ConversationRef

ETH = 10**18
MAINNET = settings.PRIMARY_CHAIN_ID
BASE = settings.BRIDGE_SOURCE_CHAIN_ID

USER = "0x" + "11" * 20
THREAD = "thread1"
CHANNEL = "chan1"

W1 = "0x" + "a1" * 20
W2 = "0x" + "b2" * 20
RECIPIENT = "0x" + "c3" * 20

BRIDGE_FEE_WEI = 5 * 10**14  # 0.0005 ETH


class Outbox:
    """Records everything sent to the messaging transport."""

    def __init__(self):
        self.messages = []
        self.forms = []
        self.txs = []

    def send_message(self, channel_id, thread_id, text):
        self.messages.append(text)

    def send_form(self, channel_id, thread_id, user_id, request_id, title, components, subtitle=None):
        self.forms.append(
            {
                "requestId": request_id,
                "kind": request_id.split(":")[0],
                "title": title,
                "subtitle": subtitle,
                "components": components,
            }
        )

    def send_transaction(self, channel_id, thread_id, user_id, request_id, title, chain_id, to, data, value_wei, signer):
        self.txs.append(
            {
                "requestId": request_id,
                "kind": request_id.split(":")[0],
                "title": title,
                "chainId": chain_id,
                "to": to,
                "data": data,
                "valueWei": value_wei,
                "signer": signer,
            }
        )

    def last_form(self, kind=None):
        forms = [f for f in self.forms if kind is None or f["kind"] == kind]
        return forms[-1]

    def last_tx(self, kind=None):
        txs = [t for t in self.txs if kind is None or t["kind"] == kind]
        return txs[-1]


def _quote(amount, depositor, recipient, origin, dest):
    amount = int(amount)
    return BridgeQuote(
        inputWei=amount,
        outputWei=max(0, amount - BRIDGE_FEE_WEI),
        feeWei=BRIDGE_FEE_WEI,
        fillTimeSec=30,
        isAmountTooLow=amount < settings.BRIDGE_MIN_AMOUNT_WEI,
        minDepositWei=settings.BRIDGE_MIN_AMOUNT_WEI,
        txTo=settings.BRIDGE_SPOKE_POOL,
        txData="0xdeposit",
        txValueWei=amount,
    )


@pytest.fixture
def ref():
    return ConversationRef(userId=USER, channelId=CHANNEL, threadId=THREAD)


@pytest.fixture
def fake_redis():
    r = fakeredis.FakeRedis(decode_responses=True)
    with patch("ensflow.store.flow_repo.get_redis", return_value=r), \
         patch("ensflow.store.interaction_repo.get_redis", return_value=r), \
         patch("ensflow.observability.metrics.get_redis", return_value=r):
        yield r


@pytest.fixture
def outbox():
    box = Outbox()
    with patch("ensflow.gateways.transport.send_message", side_effect=box.send_message), \
         patch("ensflow.gateways.transport.send_form", side_effect=box.send_form), \
         patch("ensflow.gateways.transport.send_transaction", side_effect=box.send_transaction):
        yield box


@pytest.fixture
def scheduled():
    jobs = []

    def _schedule(delay_sec, job, *args):
        jobs.append((delay_sec, job.rsplit(".", 1)[-1], args))
        return f"job-{len(jobs)}"

    with patch("ensflow.queue.scheduler.schedule", side_effect=_schedule):
        yield jobs


@pytest.fixture
def balances():
    """(address lower, chain id) -> wei. Unknown wallets hold nothing."""
    state = {}

    def _get_balance(address, chain_id):
        return state.get((address.lower(), int(chain_id)), 0)

    with patch("ensflow.gateways.chain.get_balance", side_effect=_get_balance), \
         patch("ensflow.gateways.chain.is_contract", return_value=False), \
         patch("ensflow.gateways.chain.get_transaction_receipt", return_value={"status": "0x1", "logs": []}):
        yield state


@pytest.fixture
def registry_mock():
    with patch.multiple(
        "ensflow.gateways.registry",
        check_availability=DEFAULT,
        estimate_registration_cost=DEFAULT,
        make_commitment=DEFAULT,
        encode_commit=DEFAULT,
        encode_register=DEFAULT,
        verify_ownership=DEFAULT,
        subname_exists=DEFAULT,
        quote_renewal=DEFAULT,
        encode_renew=DEFAULT,
        encode_transfer=DEFAULT,
        encode_subdomain_step=DEFAULT,
    ) as m:
        m["check_availability"].side_effect = lambda name: Availability(name=name, available=True)
        m["estimate_registration_cost"].return_value = RegistrationCost(
            domainPriceWei=8 * 10**15,
            commitGasWei=10**15,
            registerGasWei=10**15,
            grandTotalWei=10**16,
        )
        m["make_commitment"].side_effect = lambda name, owner, duration_sec, secret: f"0xcommit-{owner.lower()}"
        m["encode_commit"].side_effect = lambda commitment: TxCall(to="0xcontroller", data="0xcommitcall")
        m["encode_register"].side_effect = lambda name, owner, duration_sec, secret, value_wei: TxCall(
            to="0xcontroller", data="0xregistercall", valueWei=value_wei
        )
        m["verify_ownership"].side_effect = lambda name, wallets: Ownership(owned=True, ownerWallet=wallets[0])
        m["subname_exists"].return_value = False
        m["quote_renewal"].side_effect = lambda name, years, wallets: RenewalQuote(
            ownerWallet=wallets[0],
            isWrapped=False,
            durationSec=years * 31_536_000,
            totalCostWei=5 * 10**15,
            recommendedValueWei=55 * 10**14,
            currentExpiry=1_800_000_000,
            newExpiry=1_831_536_000,
        )
        m["encode_renew"].side_effect = lambda name, duration_sec, value_wei, is_wrapped: TxCall(
            to="0xcontroller", data="0xrenewcall", valueWei=value_wei
        )
        m["encode_transfer"].side_effect = lambda name, owner, recipient, contract: TxCall(
            to=f"0x{contract}", data="0xtransfercall"
        )
        m["encode_subdomain_step"].side_effect = lambda step, *args: TxCall(to="0xregistry", data=f"0xstep{step}")
        yield m


@pytest.fixture
def bridge_mock():
    with patch.multiple(
        "ensflow.gateways.bridge_api",
        get_quote=DEFAULT,
        get_deposit_status=DEFAULT,
        extract_deposit_id=DEFAULT,
    ) as m:
        m["get_quote"].side_effect = _quote
        m["get_deposit_status"].return_value = DepositStatus(status="pending")
        m["extract_deposit_id"].return_value = "4242"
        yield m


@pytest.fixture
def env(fake_redis, outbox, scheduled, balances, registry_mock, bridge_mock):
    return SimpleNamespace(
        redis=fake_redis,
        outbox=outbox,
        jobs=scheduled,
        balances=balances,
        registry=registry_mock,
        bridge=bridge_mock,
    )
