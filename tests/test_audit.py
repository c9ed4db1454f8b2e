from decimal import Decimal

import pytest

from core import audit
from core.models import AuditLogEntry, TransactionFee, Direction

pytestmark = pytest.mark.django_db


def test_record_serializes_details(make_intent):
	intent = make_intent()
	entry = audit.record("mint", actor="0xABCDEF", intent=intent, amount=Decimal("1.5"), tx_hash="0x01", ok=True)

	entry.refresh_from_db()
	assert entry.actor == "0xabcdef"
	assert entry.details == {"amount": "1.5", "tx_hash": "0x01", "ok": True}
	assert entry.intent_id == intent.id


def test_failure_carries_error_message():
	entry = audit.record("burn", success=False, error="ERC20: burn amount exceeds balance")
	assert entry.actor == audit.SYSTEM_ACTOR
	assert not entry.success
	assert "exceeds balance" in entry.error_message


def test_entries_cannot_be_updated():
	entry = audit.record("mint")
	entry.success = False
	with pytest.raises(ValueError):
		entry.save()
	assert AuditLogEntry.objects.get(pk=entry.pk).success


def test_entries_cannot_be_deleted():
	entry = audit.record("mint")
	with pytest.raises(ValueError):
		entry.delete()
	assert AuditLogEntry.objects.filter(pk=entry.pk).exists()


def test_fee_row_must_conserve(make_intent):
	intent = make_intent()
	with pytest.raises(ValueError):
		TransactionFee.objects.create(
			intent=intent, transaction_type=Direction.DEPOSIT,
			original_amount=Decimal("100"), fee_percentage=Decimal("0.25"),
			fee_amount=Decimal("0.25"), net_amount=Decimal("99.76"),
		)
