from unittest.mock import patch

from conftest import BASE, ETH, MAINNET, W1, W2

from ensflow.core import funding

REQUIRED = 10**16


def test_bridge_threshold_rounds_down():
    assert funding.bridge_threshold(REQUIRED, 5) == 105 * 10**14
    assert funding.bridge_threshold(999, 5) == 1048


def test_single_direct_wallet_proceeds(balances):
    balances[(W1.lower(), MAINNET)] = ETH
    decision = funding.plan_funding(REQUIRED, [W1])
    assert decision.action == funding.PROCEED
    assert decision.selected.address == W1
    assert decision.selected.funding == funding.DIRECT


def test_exact_primary_balance_is_direct(balances):
    balances[(W1.lower(), MAINNET)] = REQUIRED
    assert funding.plan_funding(REQUIRED, [W1]).action == funding.PROCEED


def test_single_wallet_bridges_at_threshold(balances):
    balances[(W1.lower(), BASE)] = funding.bridge_threshold(REQUIRED, 5)
    decision = funding.plan_funding(REQUIRED, [W1], buffer_pct=5)
    assert decision.action == funding.BRIDGE
    assert decision.selected.shortfallWei == REQUIRED


def test_single_wallet_below_threshold_is_not_funded(balances):
    balances[(W1.lower(), MAINNET)] = REQUIRED - 1
    balances[(W1.lower(), BASE)] = funding.bridge_threshold(REQUIRED, 5) - 1
    decision = funding.plan_funding(REQUIRED, [W1], buffer_pct=5)
    assert decision.action == funding.NOT_FUNDED
    assert decision.wallets[0].shortfallWei == 1


def test_several_wallets_are_ranked_direct_first(balances):
    balances[(W1.lower(), BASE)] = ETH
    balances[(W2.lower(), MAINNET)] = ETH
    decision = funding.plan_funding(REQUIRED, [W1, W2])
    assert decision.action == funding.SELECT_WALLET
    assert [w.address for w in decision.options] == [W2, W1]
    assert [w.funding for w in decision.options] == [funding.DIRECT, funding.BRIDGEABLE]


def test_several_wallets_none_usable(balances):
    decision = funding.plan_funding(REQUIRED, [W1, W2])
    assert decision.action == funding.NOT_FUNDED
    assert decision.options == []
    assert len(decision.wallets) == 2


def test_no_wallets():
    assert funding.plan_funding(REQUIRED, []).action == funding.NO_WALLETS


def test_filter_eoas_drops_contracts_and_duplicates():
    with patch("ensflow.gateways.chain.is_contract", side_effect=lambda a, c: a == W2):
        assert funding.filter_eoas([W1, W1.upper().replace("0X", "0x"), W2, ""]) == [W1]
