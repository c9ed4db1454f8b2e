from decimal import Decimal

import pytest
from django.core.exceptions import PermissionDenied

from core import reserves
from core.exceptions import ReserveUnderflow
from core.models import AuditLogEntry, ReserveAccount
from core.permissions import MANAGE_RESERVES, AdminIdentity

pytestmark = pytest.mark.django_db


def test_adjust_applies_deltas():
	assert reserves.adjust(Decimal("100")) == Decimal("100")
	assert reserves.adjust(Decimal("-40.5")) == Decimal("59.5")


def test_adjust_refuses_to_go_negative():
	reserves.adjust(Decimal("10"))
	with pytest.raises(ReserveUnderflow):
		reserves.adjust(Decimal("-10.000001"))
	assert reserves.get_reserve().amount == Decimal("10")


def test_adjust_to_exactly_zero():
	reserves.adjust(Decimal("10"))
	assert reserves.adjust(Decimal("-10")) == Decimal("0")


def test_set_replaces_amount():
	reserves.adjust(Decimal("10"))
	assert reserves.set_amount(Decimal("5000")) == Decimal("5000")
	with pytest.raises(ReserveUnderflow):
		reserves.set_amount(Decimal("-1"))


def test_separate_reserve_types():
	reserves.adjust(Decimal("7"), reserve_type="usdc")
	assert reserves.get_reserve(ReserveAccount.PKR).amount == Decimal("0")
	assert reserves.get_reserve("usdc").amount == Decimal("7")


def test_manual_change_is_audited_with_actor_and_reason(admin):
	reserves.manual_change(admin, mode="set", amount=Decimal("1000"), reason="bank statement 2024-06")
	reserves.manual_change(admin, mode="adjust", amount=Decimal("-50"), reason="bank fee")

	entries = list(AuditLogEntry.objects.order_by("id"))
	assert [e.action_type for e in entries] == ["reserve_set", "reserve_adjust"]
	assert all(e.actor == admin.wallet_address for e in entries)
	assert entries[1].details["reason"] == "bank fee"
	assert Decimal(entries[1].details["after"]) == Decimal("950")
	assert reserves.get_reserve().updated_by == admin.wallet_address


def test_manual_underflow_is_audited_as_failure(admin):
	with pytest.raises(ReserveUnderflow):
		reserves.manual_change(admin, mode="adjust", amount=Decimal("-1"), reason="oops")
	entry = AuditLogEntry.objects.get()
	assert not entry.success
	assert entry.error_message


def test_manual_change_requires_permission():
	reader = AdminIdentity("0x" + "5" * 40, frozenset({"run_reconciliation"}))
	with pytest.raises(PermissionDenied):
		reserves.manual_change(reader, mode="set", amount=Decimal("1"), reason="x")
	assert not AuditLogEntry.objects.exists()

	writer = AdminIdentity("0x" + "6" * 40, frozenset({MANAGE_RESERVES}))
	assert reserves.manual_change(writer, mode="set", amount=Decimal("1"), reason="x") == Decimal("1")
