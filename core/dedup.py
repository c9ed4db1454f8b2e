"""Dedup guard: a chain transaction hash is consumed by at most one intent.

The unique index on UsedTransactionHash.hash is the only serialization point.
claim() inserts the hash and binds the intent inside one transaction; losing
the insert race (IntegrityError) or finding the intent already moved
(ClaimConflict) rolls the whole claim back and leaves the intent unmatched.
"""

import logging

from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone

from .exceptions import ClaimConflict
from .models import Intent, IntentStatus, UsedTransactionHash

logger = logging.getLogger(__name__)


def normalize_hash(tx_hash: str) -> str:
	return (tx_hash or "").strip().lower()


def is_used(tx_hash: str) -> bool:
	return UsedTransactionHash.objects.filter(hash=normalize_hash(tx_hash)).exists()


def used_hashes_among(hashes) -> set:
	hashes = [normalize_hash(h) for h in hashes]
	if not hashes:
		return set()
	return set(UsedTransactionHash.objects.filter(hash__in=hashes).values_list("hash", flat=True))


def highest_claimed_block(direction: str) -> int | None:
	return UsedTransactionHash.objects.filter(direction=direction).aggregate(n=Max("block_number"))["n"]


def claim(intent: Intent, tx_hash: str, block_number: int) -> bool:
	"""
	Bind `tx_hash` to `intent` (status pending -> confirming).
	Returns False when another claimant won; the intent is then left untouched.
	"""
	tx_hash = normalize_hash(tx_hash)
	try:
		with transaction.atomic():
			UsedTransactionHash.objects.create(
				hash=tx_hash,
				intent=intent,
				direction=intent.direction,
				block_number=block_number,
			)
			updated = Intent.objects.filter(
				pk=intent.pk,
				status=IntentStatus.PENDING,
				transaction_hash__isnull=True,
			).update(
				transaction_hash=tx_hash,
				transfer_block=block_number,
				status=IntentStatus.CONFIRMING,
				updated_at=timezone.now(),
			)
			if not updated:
				raise ClaimConflict(f"intent {intent.id} is no longer claimable")
	except IntegrityError:
		logger.info("claim of %s for intent %s lost: hash already used", tx_hash, intent.id)
		return False
	except ClaimConflict as e:
		logger.info("claim of %s abandoned: %s", tx_hash, e)
		return False

	intent.transaction_hash = tx_hash
	intent.transfer_block = block_number
	intent.status = IntentStatus.CONFIRMING
	logger.info("intent %s claimed %s at block %s", intent.id, tx_hash, block_number)
	return True


def register_settlement_hash(intent: Intent, tx_hash: str, kind: str, block_number: int | None = None) -> bool:
	"""
	Record a mint/burn hash so one on-chain settlement can never be attributed twice.
	Re-registering the same hash for the same intent is a no-op.
	"""
	tx_hash = normalize_hash(tx_hash)
	try:
		with transaction.atomic():
			UsedTransactionHash.objects.create(hash=tx_hash, intent=intent, direction=kind, block_number=block_number)
	except IntegrityError:
		owner = UsedTransactionHash.objects.filter(hash=tx_hash).values_list("intent_id", flat=True).first()
		if owner != intent.pk:
			logger.error("settlement hash %s already attributed to intent %s", tx_hash, owner)
			return False
	return True
