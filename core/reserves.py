"""Reserve ledger: the fiat balance backing circulating PKRSC.

adjust() is a single conditional UPDATE (amount = amount + delta WHERE
amount >= -delta), so concurrent settlements never lose an update and the
balance can never go negative.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from . import audit
from .constants import quantize_amount
from .exceptions import ReserveUnderflow
from .models import ReserveAccount
from .permissions import MANAGE_RESERVES, AdminIdentity, require_permission

logger = logging.getLogger(__name__)


def get_reserve(reserve_type: str = ReserveAccount.PKR) -> ReserveAccount:
	account, _ = ReserveAccount.objects.get_or_create(reserve_type=reserve_type)
	return account


def adjust(delta: Decimal, *, reserve_type: str = ReserveAccount.PKR, updated_by: str = audit.SYSTEM_ACTOR) -> Decimal:
	"""
	Apply an atomic delta; returns the new amount. Raises ReserveUnderflow instead of going negative.
	"""
	delta = quantize_amount(delta)
	get_reserve(reserve_type)
	updated = ReserveAccount.objects.filter(reserve_type=reserve_type, amount__gte=-delta).update(
		amount=F("amount") + delta,
		last_updated=timezone.now(),
		updated_by=updated_by,
	)
	if not updated:
		raise ReserveUnderflow(f"{reserve_type} reserve cannot absorb {delta}")
	amount = ReserveAccount.objects.values_list("amount", flat=True).get(reserve_type=reserve_type)
	logger.info("reserve %s adjusted by %s -> %s", reserve_type, delta, amount)
	return amount


def set_amount(amount: Decimal, *, reserve_type: str = ReserveAccount.PKR, updated_by: str = audit.SYSTEM_ACTOR) -> Decimal:
	amount = quantize_amount(amount)
	if amount < 0:
		raise ReserveUnderflow("reserve amount cannot be negative")
	get_reserve(reserve_type)
	ReserveAccount.objects.filter(reserve_type=reserve_type).update(amount=amount, last_updated=timezone.now(), updated_by=updated_by)
	logger.info("reserve %s set to %s", reserve_type, amount)
	return amount


def manual_change(identity: AdminIdentity, *, mode: str, amount: Decimal, reason: str, reserve_type: str = ReserveAccount.PKR) -> Decimal:
	"""
	Authorized correction. mode is "set" (absolute) or "adjust" (delta). Always audited.
	"""
	require_permission(identity, MANAGE_RESERVES)
	actor = identity.wallet_address
	before = get_reserve(reserve_type).amount
	try:
		with transaction.atomic():
			if mode == "set":
				after = set_amount(amount, reserve_type=reserve_type, updated_by=actor)
			elif mode == "adjust":
				after = adjust(amount, reserve_type=reserve_type, updated_by=actor)
			else:
				raise ValueError(f"unknown reserve mode {mode!r}")
	except (ReserveUnderflow, ValueError) as e:
		audit.record("reserve_" + str(mode), actor=actor, success=False, error=str(e), reserve_type=reserve_type, amount=amount, reason=reason)
		raise
	audit.record("reserve_" + mode, actor=actor, reserve_type=reserve_type, amount=amount, before=before, after=after, reason=reason)
	return after
