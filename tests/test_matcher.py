from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
from django.utils import timezone

from core import matcher, observer
from core.adapters.chain_adapter import ObservedTransfer
from core.constants import to_units
from core.models import Direction, Intent, IntentStatus, UsedTransactionHash
from tests.conftest import ALICE, BOB, TREASURY, USDC, PKRSC

pytestmark = pytest.mark.django_db


def _observe_and_match(direction, chain, config):
	transfers = observer.observe(direction, chain, config)
	return matcher.match(direction, transfers, chain, config)


def test_deposit_within_tolerance_is_claimed(chain, config, make_intent):
	intent = make_intent(amount="100")
	tx = chain.transfer(USDC, ALICE, TREASURY, to_units("99.95"))

	result = _observe_and_match(Direction.DEPOSIT, chain, config)

	intent.refresh_from_db()
	assert result.claimed == [intent.id]
	assert intent.status == IntentStatus.CONFIRMING
	assert intent.transaction_hash == tx.hash
	assert intent.transfer_block == tx.block_number
	assert UsedTransactionHash.objects.get(hash=tx.hash).intent_id == intent.id


def test_amount_outside_tolerance_is_not_claimed(chain, config, make_intent):
	intent = make_intent(amount="100")
	chain.transfer(USDC, ALICE, TREASURY, to_units("99.8"))

	result = _observe_and_match(Direction.DEPOSIT, chain, config)

	intent.refresh_from_db()
	assert result.claimed == []
	assert result.unmatched == 1
	assert intent.status == IntentStatus.PENDING
	assert intent.transaction_hash is None


def test_wrong_sender_is_not_claimed(chain, config, make_intent):
	make_intent(amount="100", wallet=ALICE)
	chain.transfer(USDC, BOB, TREASURY, to_units("100"))

	assert _observe_and_match(Direction.DEPOSIT, chain, config).claimed == []


def test_transfer_before_intent_creation_is_outside_window(chain, config, make_intent):
	now = timezone.now()
	make_intent(amount="100", created_at=now)
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"), timestamp=now - timedelta(minutes=5))

	assert _observe_and_match(Direction.DEPOSIT, chain, config).claimed == []


def test_transfer_after_window_is_not_claimed(chain, config, make_intent):
	created = timezone.now() - timedelta(hours=30)
	make_intent(amount="100", created_at=created)
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"), timestamp=created + timedelta(hours=25))

	assert _observe_and_match(Direction.DEPOSIT, chain, config).claimed == []


def test_one_transfer_two_candidates_binds_earliest(chain, config, make_intent):
	t0 = timezone.now() - timedelta(hours=1)
	first = make_intent(amount="100", created_at=t0)
	second = make_intent(amount="100", created_at=t0 + timedelta(minutes=1))
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"))

	result = _observe_and_match(Direction.DEPOSIT, chain, config)

	first.refresh_from_db()
	second.refresh_from_db()
	assert result.claimed == [first.id]
	assert first.status == IntentStatus.CONFIRMING
	assert second.status == IntentStatus.PENDING
	assert second.transaction_hash is None


def test_two_transfers_two_candidates_bind_in_order(chain, config, make_intent):
	t0 = timezone.now() - timedelta(hours=1)
	first = make_intent(amount="100", created_at=t0)
	second = make_intent(amount="100", created_at=t0 + timedelta(minutes=1))
	tx1 = chain.transfer(USDC, ALICE, TREASURY, to_units("100"))
	tx2 = chain.transfer(USDC, ALICE, TREASURY, to_units("100"))

	_observe_and_match(Direction.DEPOSIT, chain, config)

	assert Intent.objects.get(pk=first.pk).transaction_hash == tx1.hash
	assert Intent.objects.get(pk=second.pk).transaction_hash == tx2.hash


def test_rerun_skips_used_hashes(chain, config, make_intent):
	make_intent(amount="100")
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"))
	_observe_and_match(Direction.DEPOSIT, chain, config)
	late = make_intent(amount="100")

	result = _observe_and_match(Direction.DEPOSIT, chain, config)

	assert result.claimed == []
	assert result.skipped_used == 1
	assert Intent.objects.get(pk=late.pk).transaction_hash is None


def test_unverified_intent_is_not_matched(chain, config, make_intent):
	intent = make_intent(amount="100", status=IntentStatus.PENDING_VERIFICATION)
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"))

	assert _observe_and_match(Direction.DEPOSIT, chain, config).claimed == []
	intent.refresh_from_db()
	assert intent.status == IntentStatus.PENDING_VERIFICATION


def test_deposit_address_rule_uses_recipient(chain, config, make_intent):
	deposit_address = "0x4444444444444444444444444444444444444444"
	intent = make_intent(amount="50", deposit_address=deposit_address)
	# sender is irrelevant when the intent has its own deposit address
	tx = chain.transfer(USDC, BOB, deposit_address, to_units("50"))

	_observe_and_match(Direction.DEPOSIT, chain, config)

	assert Intent.objects.get(pk=intent.pk).transaction_hash == tx.hash


def test_redemption_matches_sender_to_treasury(chain, config, make_intent, fund):
	intent = make_intent(direction=Direction.REDEMPTION, amount="40")
	fund(PKRSC, ALICE, "40")
	tx = chain.transfer(PKRSC, ALICE, TREASURY, to_units("40"))

	result = _observe_and_match(Direction.REDEMPTION, chain, config)

	assert result.claimed == [intent.id]
	assert Intent.objects.get(pk=intent.pk).transaction_hash == tx.hash


def test_directions_do_not_cross(chain, config, make_intent):
	make_intent(direction=Direction.REDEMPTION, amount="100")
	chain.transfer(USDC, ALICE, TREASURY, to_units("100"))

	assert _observe_and_match(Direction.REDEMPTION, chain, config).claimed == []


def test_lost_claim_keeps_intent_eligible(chain, config, make_intent):
	first = make_intent(amount="100")
	second = make_intent(amount="100")
	tx = chain.transfer(USDC, ALICE, TREASURY, to_units("100"))
	other_tx = chain.transfer(USDC, ALICE, TREASURY, to_units("100"))
	# a concurrent matcher took `tx` for another intent between our read and our claim
	UsedTransactionHash.objects.create(hash=tx.hash, intent=second, direction=Direction.DEPOSIT, block_number=tx.block_number)
	transfers = [tx, other_tx]

	with patch("core.dedup.used_hashes_among", return_value=set()):
		result = matcher.match(Direction.DEPOSIT, transfers, chain, config)

	first.refresh_from_db()
	assert result.conflicts == 1
	assert first.transaction_hash == other_tx.hash


def test_amount_predicate_is_relative_and_strict():
	assert matcher.amount_matches(Decimal("100"), Decimal("99.95"), Decimal("0.001"))
	assert not matcher.amount_matches(Decimal("100"), Decimal("99.9"), Decimal("0.001"))
	assert not matcher.amount_matches(Decimal("0"), Decimal("0"), Decimal("0.001"))


def test_find_candidate_is_first_fit(config, make_intent):
	now = timezone.now()
	a = make_intent(amount="10", created_at=now - timedelta(minutes=2))
	b = make_intent(amount="10", created_at=now - timedelta(minutes=1))
	transfer = ObservedTransfer(
		hash="0x" + "ab" * 32, token=USDC, from_address=ALICE, to_address=TREASURY,
		value=to_units("10"), block_number=1, block_timestamp=now,
	)
	assert matcher.find_candidate(transfer, Decimal("10"), [a, b], config) == a
	assert matcher.find_candidate(transfer, Decimal("10"), [b, a], config) == b
