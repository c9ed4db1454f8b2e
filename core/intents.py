"""Intent store: creation at the submission boundary and the queries the stages share."""

import hashlib
import logging
import secrets
from datetime import datetime
from decimal import Decimal

from django.db.models import QuerySet
from django.utils import timezone

from .config import BridgeConfig
from .constants import quantize_amount, split_fee
from .models import Direction, Intent, IntentStatus

logger = logging.getLogger(__name__)


def hash_code(code: str) -> str:
	return hashlib.sha256(code.encode("utf-8")).hexdigest()


def issue_verification_code(intent: Intent, config: BridgeConfig, *, now: datetime | None = None) -> str:
	"""
	Store a fresh 6-digit code (as its SHA-256 digest) and reset the attempt counter.
	Returns the plaintext for the notifier; it is never persisted or logged.
	"""
	now = now or timezone.now()
	code = f"{secrets.randbelow(900000) + 100000}"
	intent.verification_code = hash_code(code)
	intent.verification_expires_at = now + config.verification_code_ttl
	intent.verification_attempts = 0
	intent.save(update_fields=["verification_code", "verification_expires_at", "verification_attempts", "updated_at"])
	return code


def counter_amount_for(direction: str, declared_amount: Decimal, rate: Decimal, config: BridgeConfig) -> Decimal:
	"""
	Deposit: net PKRSC to mint (gross fiat-equivalent minus mint fee).
	Redemption: net PKR to pay out (declared tokens minus redemption fee).
	"""
	if direction == Direction.DEPOSIT:
		_, net = split_fee(declared_amount * rate, config.mint_fee_percentage)
	else:
		_, net = split_fee(declared_amount, config.redemption_fee_percentage)
	return net


def submit_intent(config: BridgeConfig, *, direction: str, wallet_address: str, declared_amount: Decimal,
		exchange_rate: Decimal = Decimal(1), deposit_address: str = "") -> tuple[Intent, str]:
	"""
	Create an intent in pending_verification with its verification code.
	Returns (intent, plaintext_code).
	"""
	declared_amount = quantize_amount(declared_amount)
	if declared_amount <= 0:
		raise ValueError("declared_amount must be > 0")
	intent = Intent.objects.create(
		direction=direction,
		wallet_address=wallet_address,
		deposit_address=deposit_address,
		declared_amount=declared_amount,
		counter_amount=counter_amount_for(direction, declared_amount, exchange_rate, config),
		exchange_rate_at_creation=exchange_rate,
		status=IntentStatus.PENDING_VERIFICATION,
	)
	code = issue_verification_code(intent, config)
	logger.info("intent %s submitted: %s %s by %s", intent.id, direction, declared_amount, intent.wallet_address)
	return intent, code


def outstanding(direction: str) -> QuerySet:
	"""
	Verified intents still waiting for their chain transfer, oldest first.
	"""
	return Intent.objects.filter(
		direction=direction,
		status=IntentStatus.PENDING,
		email_verified=True,
		transaction_hash__isnull=True,
	).order_by("created_at", "id")


def awaiting_confirmations() -> QuerySet:
	return Intent.objects.filter(
		status=IntentStatus.CONFIRMING,
		transaction_hash__isnull=False,
	).order_by("created_at", "id")


def ready_to_mint(limit: int) -> list:
	return list(Intent.objects.filter(
		direction=Direction.DEPOSIT,
		status=IntentStatus.CONFIRMED,
	).order_by("created_at", "id")[:limit])


def ready_to_burn(limit: int) -> list:
	return list(Intent.objects.filter(
		direction=Direction.REDEMPTION,
		status=IntentStatus.PENDING_BURN,
		email_verified=True,
	).order_by("created_at", "id")[:limit])


def transition(intent: Intent, from_status, to_status, **fields) -> bool:
	"""
	Compare-and-set on status. Returns False if someone else moved the intent first.
	"""
	fields["updated_at"] = timezone.now()
	updated = Intent.objects.filter(pk=intent.pk, status=from_status).update(status=to_status, **fields)
	if updated:
		intent.status = to_status
		for k, v in fields.items():
			setattr(intent, k, v)
	return bool(updated)
