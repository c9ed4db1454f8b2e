from unittest.mock import patch

import pytest
from django.core.exceptions import PermissionDenied

from core import confirmations, dedup
from core.constants import to_units
from core.exceptions import ChainUnavailable, ManualAttachError
from core.models import AuditLogEntry, Direction, IntentStatus
from core.permissions import AdminIdentity
from tests.conftest import ALICE, BOB, PKRSC, TREASURY, USDC

pytestmark = pytest.mark.django_db


def _claimed(make_intent, chain, direction=Direction.DEPOSIT, amount="100"):
	intent = make_intent(direction=direction, amount=amount)
	token = USDC if direction == Direction.DEPOSIT else PKRSC
	tx = chain.transfer(token, ALICE, TREASURY, to_units(amount))
	assert dedup.claim(intent, tx.hash, tx.block_number)
	return intent, tx


def test_below_threshold_stays_confirming(chain, config, make_intent):
	intent, _ = _claimed(make_intent, chain)
	chain.mine(2)

	assert confirmations.run_gate(chain, config) == 0
	intent.refresh_from_db()
	assert intent.status == IntentStatus.CONFIRMING
	assert intent.confirmations == 2


def test_deposit_at_threshold_becomes_confirmed(chain, config, make_intent):
	intent, _ = _claimed(make_intent, chain)
	chain.mine(3)

	assert confirmations.run_gate(chain, config) == 1
	intent.refresh_from_db()
	assert intent.status == IntentStatus.CONFIRMED
	assert intent.confirmations == 3


def test_redemption_at_threshold_becomes_pending_burn(chain, config, make_intent, fund):
	fund(PKRSC, ALICE, "10")
	intent, _ = _claimed(make_intent, chain, Direction.REDEMPTION, "10")
	chain.mine(5)

	confirmations.run_gate(chain, config)
	intent.refresh_from_db()
	assert intent.status == IntentStatus.PENDING_BURN


def test_confirmations_never_decrease(chain, config, make_intent):
	intent, tx = _claimed(make_intent, chain)
	chain.mine(2)
	confirmations.run_gate(chain, config)

	# a lagging node reports an older head
	confirmations.run_gate(chain, config, head=tx.block_number + 1)
	intent.refresh_from_db()
	assert intent.confirmations == 2


def test_gate_ignores_unclaimed_intents(chain, config, make_intent):
	intent = make_intent()
	chain.mine(10)
	confirmations.run_gate(chain, config)
	intent.refresh_from_db()
	assert intent.status == IntentStatus.PENDING
	assert intent.confirmations == 0


# --- manual attach ---------------------------------------------------------------

def test_manual_attach_claims_and_gates(chain, config, make_intent, admin):
	intent = make_intent(amount="250")
	# sent from an exchange, so the matcher could never bind it
	tx = chain.transfer(USDC, BOB, TREASURY, to_units("250"))
	chain.mine(3)

	attached = confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)

	assert attached.transaction_hash == tx.hash
	assert attached.status == IntentStatus.CONFIRMED
	entry = AuditLogEntry.objects.get(action_type="manual_attach")
	assert entry.success
	assert entry.actor == admin.wallet_address


def test_manual_attach_without_depth_leaves_confirming(chain, config, make_intent, admin):
	intent = make_intent(amount="250")
	tx = chain.transfer(USDC, BOB, TREASURY, to_units("250"))

	attached = confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)
	assert attached.status == IntentStatus.CONFIRMING


def test_manual_attach_rejects_used_hash(chain, config, make_intent, admin):
	_, tx = _claimed(make_intent, chain)
	other = make_intent(amount="100")

	with pytest.raises(ManualAttachError, match="already used"):
		confirmations.manual_attach(other.id, tx.hash, chain, config, admin)

	other.refresh_from_db()
	assert other.transaction_hash is None
	assert AuditLogEntry.objects.filter(action_type="manual_attach", success=False).count() == 1


def test_manual_attach_rejects_amount_mismatch(chain, config, make_intent, admin):
	intent = make_intent(amount="100")
	tx = chain.transfer(USDC, ALICE, TREASURY, to_units("90"))

	with pytest.raises(ManualAttachError, match="amount mismatch"):
		confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)
	assert not dedup.is_used(tx.hash)


def test_manual_attach_rejects_wrong_recipient(chain, config, make_intent, admin):
	intent = make_intent(amount="100")
	tx = chain.transfer(USDC, ALICE, BOB, to_units("100"))

	with pytest.raises(ManualAttachError):
		confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)


def test_manual_attach_rejects_unknown_and_malformed_hashes(chain, config, make_intent, admin):
	intent = make_intent()
	with pytest.raises(ManualAttachError, match="not found"):
		confirmations.manual_attach(intent.id, "0x" + "cd" * 32, chain, config, admin)
	with pytest.raises(ManualAttachError, match="malformed"):
		confirmations.manual_attach(intent.id, "0x1234", chain, config, admin)


def test_manual_attach_requires_permission(chain, config, make_intent):
	intent = make_intent()
	tx = chain.transfer(USDC, ALICE, TREASURY, to_units("100"))
	nobody = AdminIdentity("0x" + "9" * 40, frozenset())

	with pytest.raises(PermissionDenied):
		confirmations.manual_attach(intent.id, tx.hash, chain, config, nobody)
	assert not dedup.is_used(tx.hash)
	assert not AuditLogEntry.objects.exists()


def test_manual_attach_chain_outage_is_audited(chain, config, make_intent, admin):
	intent = make_intent(amount="250")
	tx = chain.transfer(USDC, BOB, TREASURY, to_units("250"))

	with patch.object(chain, "get_receipt", side_effect=ChainUnavailable("node timed out")):
		with pytest.raises(ChainUnavailable):
			confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)

	intent.refresh_from_db()
	assert intent.transaction_hash is None
	entry = AuditLogEntry.objects.get(action_type="manual_attach")
	assert not entry.success
	assert "node timed out" in entry.error_message


def test_manual_attach_outage_after_claim_defers_gate(chain, config, make_intent, admin):
	intent = make_intent(amount="250")
	tx = chain.transfer(USDC, BOB, TREASURY, to_units("250"))
	chain.mine(3)

	with patch.object(chain, "block_number", side_effect=ChainUnavailable("node timed out")):
		attached = confirmations.manual_attach(intent.id, tx.hash, chain, config, admin)

	assert attached.status == IntentStatus.CONFIRMING
	assert AuditLogEntry.objects.get(action_type="manual_attach").success
	assert confirmations.run_gate(chain, config) == 1
