"""Tests for matching external accounts to local cards and bank accounts."""

from decimal import Decimal

from schemas.reconciliation import AccountKind, BankAccount, Card, Connection, ExternalAccount
from services.account_matcher import (
    apply_connection_links,
    auto_match_accounts,
    fabricated_record_id,
)
from tests.fixtures import make_connection
from tests.fixtures.mocks import sample_balance


def credit(account_id, name=None, official=None, mask=None, balance=None, **kwargs):
    return ExternalAccount(
        external_account_id=account_id,
        display_name=name,
        official_name=official,
        kind=AccountKind.credit,
        masked_number=mask,
        balance=balance,
        **kwargs,
    )


def depository(account_id, name=None, official=None, sub_kind="checking", **kwargs):
    return ExternalAccount(
        external_account_id=account_id,
        display_name=name,
        official_name=official,
        kind=AccountKind.depository,
        sub_kind=sub_kind,
        **kwargs,
    )


def amex(*accounts) -> Connection:
    return make_connection(accounts=list(accounts))


def no_catalog(issuer):
    return []


class TestCreditMatching:
    def test_new_account_fabricates_card(self):
        conn = amex(credit("acct_123", name="Delta Gold Business Card", mask="4242"))

        outcome = auto_match_accounts(conn, [], [])

        assert len(outcome.new_cards) == 1
        card = outcome.new_cards[0]
        assert card.id == "plaid_acct_123"
        assert card.last4 == "4242"
        assert card.institution == "Amex"
        assert card.name == "Delta SkyMiles Gold Business American Express Card"
        assert card.notes == "Auto-imported from Plaid (···4242)"
        assert card.external_account_id == "acct_123"
        assert card.external_connection_id == conn.id
        assert outcome.connection.accounts[0].linked_card_id == "plaid_acct_123"
        assert len(outcome.matched) == 1
        assert outcome.unmatched == []

    def test_mask_and_institution_match(self):
        existing = Card(id="card_existing", institution="Amex", name="Gold", notes="Dining (···9999)")
        conn = amex(credit("acct_1", name="Card", mask="9999"))

        outcome = auto_match_accounts(conn, [existing], [])

        assert outcome.new_cards == []
        assert outcome.matched[0].linked_id == "card_existing"
        assert outcome.matched[0].linked_type == "card"

    def test_identity_wins_over_mask(self):
        by_mask = Card(id="card_mask", institution="Amex", last4="1111")
        by_id = Card(id="card_id", institution="Chase", external_account_id="acct_1")
        conn = amex(credit("acct_1", mask="1111"))

        outcome = auto_match_accounts(conn, [by_mask, by_id], [])

        assert outcome.matched[0].linked_id == "card_id"

    def test_mask_requires_same_institution(self):
        other_bank = Card(id="card_chase", institution="Chase", last4="1111")
        conn = amex(credit("acct_1", mask="1111"))

        outcome = auto_match_accounts(conn, [other_bank], [], no_catalog)

        assert outcome.matched[0].linked_id == "plaid_acct_1"

    def test_name_substring_match(self):
        card = Card(id="card_plat", institution="Amex", nickname="Platinum")
        conn = amex(credit("acct_1", name="Platinum Card®"))

        outcome = auto_match_accounts(conn, [card], [])

        assert outcome.matched[0].linked_id == "card_plat"

    def test_short_names_do_not_match(self):
        card = Card(id="card_blue", institution="Amex", name="Blu")
        conn = amex(credit("acct_1", name="Blu"))

        outcome = auto_match_accounts(conn, [card], [], no_catalog)

        assert outcome.matched[0].linked_id == "plaid_acct_1"

    def test_fabricated_limit_from_balance(self):
        conn = amex(credit("acct_1", name="X", balance=sample_balance("10", limit="2500")))

        card = auto_match_accounts(conn, [], [], no_catalog).new_cards[0]

        assert card.limit == Decimal("2500")

    def test_unknown_institution_falls_back_to_other(self):
        conn = make_connection(institution_name=None, accounts=[credit("acct_1", name="Card")])

        card = auto_match_accounts(conn, [], []).new_cards[0]

        assert card.institution == "Other"
        assert card.notes == "Auto-imported from Plaid (···?)"

    def test_missing_signals_never_raise(self):
        conn = amex(credit("acct_1"))

        outcome = auto_match_accounts(conn, [Card(id="c")], [], no_catalog)

        assert outcome.new_cards[0].name is None


class TestDepositoryMatching:
    def test_name_containment(self):
        bank = BankAccount(id="bank_1", bank="Amex", account_type="savings", name="Amex High Yield Savings")
        conn = amex(depository("acct_1", name="High Yield Savings", sub_kind="savings"))

        outcome = auto_match_accounts(conn, [], [bank])

        assert outcome.matched[0].linked_id == "bank_1"
        assert outcome.matched[0].linked_type == "bank"
        assert outcome.connection.accounts[0].linked_bank_account_id == "bank_1"

    def test_official_name_containment(self):
        bank = BankAccount(id="bank_1", bank="Amex", account_type="other", name="Rewards Checking")
        conn = amex(depository("acct_1", name="CHK", official="Amex Rewards Checking", sub_kind="cd"))

        assert auto_match_accounts(conn, [], [bank]).matched[0].linked_id == "bank_1"

    def test_subtype_equality(self):
        bank = BankAccount(id="bank_1", bank="Amex", account_type="checking", name="Bills")
        conn = amex(depository("acct_1", name="Everyday", sub_kind="checking"))

        assert auto_match_accounts(conn, [], [bank]).matched[0].linked_id == "bank_1"

    def test_institution_filter_is_hard(self):
        bank = BankAccount(id="bank_1", bank="Chase", account_type="checking", name="Checking")
        conn = amex(depository("acct_1", name="Checking"))

        outcome = auto_match_accounts(conn, [], [bank])

        assert outcome.matched[0].linked_id == "plaid_acct_1"

    def test_fabricated_account_type(self):
        conn = amex(
            depository("acct_s", official="Savings Plus", sub_kind="savings"),
            depository("acct_m", name="Money Market", sub_kind="money market"),
        )

        new = auto_match_accounts(conn, [], []).new_bank_accounts

        assert [(b.id, b.account_type, b.name) for b in new] == [
            ("plaid_acct_s", "savings", "Savings Plus"),
            ("plaid_acct_m", "checking", "Money Market"),
        ]
        assert all(b.bank == "Amex" for b in new)


class TestOutcome:
    def test_other_kinds_unmatched(self):
        loan = ExternalAccount(external_account_id="acct_loan", kind="loan")
        conn = amex(loan)

        outcome = auto_match_accounts(conn, [], [])

        assert outcome.matched == []
        assert [a.external_account_id for a in outcome.unmatched] == ["acct_loan"]
        assert outcome.connection.accounts[0].linked_card_id is None

    def test_empty_connection(self):
        outcome = auto_match_accounts(amex(), [], [])
        assert outcome.matched == outcome.unmatched == outcome.new_cards == outcome.new_bank_accounts == []

    def test_inputs_not_mutated(self, amex_card):
        conn = amex(credit("acct_1", mask="1001"), credit("acct_2", name="Fresh"))
        cards = [amex_card]

        auto_match_accounts(conn, cards, [])

        assert conn.accounts[0].linked_card_id is None
        assert cards == [amex_card]
        assert amex_card.external_account_id is None


class TestProperties:
    def test_idempotent_after_persisting(self, connection, amex_card, checking_account):
        first = auto_match_accounts(connection, [amex_card], [checking_account])
        cards = [amex_card] + first.new_cards
        banks = [checking_account] + first.new_bank_accounts

        second = auto_match_accounts(first.connection, cards, banks)

        assert second.new_cards == []
        assert second.new_bank_accounts == []
        assert [m.linked_id for m in second.matched] == [m.linked_id for m in first.matched]

    def test_idempotent_when_link_lost(self):
        conn = amex(credit("acct_1", name="Card"))
        first = auto_match_accounts(conn, [], [], no_catalog)

        # Same stale connection again, but the fabricated card now exists
        second = auto_match_accounts(conn, first.new_cards, [], no_catalog)

        assert second.new_cards == []
        assert second.matched[0].linked_id == fabricated_record_id("acct_1")

    def test_injective_for_lookalike_accounts(self):
        card = Card(id="card_1", institution="Amex", last4="5555")
        bank = BankAccount(id="bank_1", bank="Amex", account_type="checking", name="Checking")
        conn = amex(
            credit("acct_a", mask="5555"),
            credit("acct_b", mask="5555"),
            depository("acct_c", name="Checking"),
            depository("acct_d", name="Checking"),
        )

        outcome = auto_match_accounts(conn, [card], [bank], no_catalog)

        card_ids = [a.linked_card_id for a in outcome.connection.accounts if a.linked_card_id]
        bank_ids = [a.linked_bank_account_id for a in outcome.connection.accounts if a.linked_bank_account_id]
        assert card_ids == ["card_1", "plaid_acct_b"]
        assert bank_ids == ["bank_1", "plaid_acct_d"]
        assert len(set(card_ids)) == len(card_ids)
        assert len(set(bank_ids)) == len(bank_ids)

    def test_identity_link_not_taken_by_earlier_mask_match(self):
        card = Card(id="card_x", institution="Amex", last4="1111", _externalAccountId="acct_b")
        conn = amex(credit("acct_a", mask="1111"), credit("acct_b", mask="2222"))

        outcome = auto_match_accounts(conn, [card], [], no_catalog)

        ids = [m.linked_id for m in outcome.matched]
        assert ids == ["plaid_acct_a", "card_x"]
        assert len(set(ids)) == len(ids)

    def test_identity_link_not_taken_by_earlier_bank_heuristic(self):
        bank = BankAccount(
            id="bank_x", bank="Amex", account_type="checking", name="Checking",
            _externalAccountId="acct_d",
        )
        conn = amex(depository("acct_c", name="Checking"), depository("acct_d", name="Main"))

        outcome = auto_match_accounts(conn, [], [bank], no_catalog)

        assert [m.linked_id for m in outcome.matched] == ["plaid_acct_c", "bank_x"]

    def test_catalog_lookup_receives_normalized_issuer(self):
        seen = []

        def lookup(issuer):
            seen.append(issuer)
            return ["The Plum Card"]

        conn = amex(credit("acct_1", name="Plum Card"))
        card = auto_match_accounts(conn, [], [], lookup).new_cards[0]

        assert seen == ["Amex"]
        assert card.name == "The Plum Card"


class TestApplyConnectionLinks:
    def test_patches_links_by_account_id(self):
        stored = amex(credit("acct_1"), depository("acct_2"))
        matched = amex(
            credit("acct_1", linked_card_id="card_1"),
            depository("acct_2", linked_bank_account_id="bank_2"),
        )

        result = apply_connection_links(stored, matched)

        assert result.accounts[0].linked_card_id == "card_1"
        assert result.accounts[1].linked_bank_account_id == "bank_2"
        assert stored.accounts[0].linked_card_id is None

    def test_none_never_clears_existing_link(self):
        stored = amex(credit("acct_1", linked_card_id="card_1"))
        matched = amex(credit("acct_1"))

        result = apply_connection_links(stored, matched)

        assert result.accounts[0].linked_card_id == "card_1"

    def test_unknown_accounts_ignored(self):
        stored = amex(credit("acct_1"))
        matched = amex(credit("acct_9", linked_card_id="card_9"))

        result = apply_connection_links(stored, matched)

        assert [a.external_account_id for a in result.accounts] == ["acct_1"]
        assert result.accounts[0].linked_card_id is None
