"""Human verification gate in front of reconciliation.

Every check consumes an attempt (even a correct one). Codes issued before
hashing was introduced are stored in plaintext, so both representations are
accepted.
"""

import hmac
import logging
from datetime import datetime

from django.db import transaction
from django.db.models import F
from django.utils import timezone

from .config import BridgeConfig
from .exceptions import AlreadyVerified, AttemptsExhausted, CodeExpired, InvalidCode, NotAwaitingVerification
from .intents import hash_code
from .models import Intent, IntentStatus

logger = logging.getLogger(__name__)


def code_matches(stored: str | None, supplied: str) -> bool:
	if not stored:
		return False
	return hmac.compare_digest(stored, supplied) or hmac.compare_digest(stored, hash_code(supplied))


def verify_code(intent_id, supplied_code: str, config: BridgeConfig, *, now: datetime | None = None) -> Intent:
	now = now or timezone.now()

	# The attempt is counted in its own transaction so a wrong code still burns it.
	with transaction.atomic():
		intent = Intent.objects.select_for_update().get(pk=intent_id)
		if intent.email_verified:
			raise AlreadyVerified("Intent already verified")
		if intent.status != IntentStatus.PENDING_VERIFICATION:
			raise NotAwaitingVerification(f"Intent is {intent.status} and no longer accepts verification.")
		if intent.verification_expires_at is None or intent.verification_expires_at < now:
			raise CodeExpired("Verification code expired. Please request a new one.")
		if intent.verification_attempts >= config.verification_max_attempts:
			raise AttemptsExhausted(f"Maximum verification attempts ({config.verification_max_attempts}) exceeded. Please request a new code.")
		Intent.objects.filter(pk=intent.pk).update(verification_attempts=F("verification_attempts") + 1)
		attempts = intent.verification_attempts + 1

	if not code_matches(intent.verification_code, supplied_code):
		logger.info("intent %s: wrong verification code (attempt %d)", intent.id, attempts)
		raise InvalidCode(max(config.verification_max_attempts - attempts, 0))

	with transaction.atomic():
		updated = Intent.objects.filter(pk=intent.pk, email_verified=False, status=IntentStatus.PENDING_VERIFICATION).update(
			email_verified=True,
			verification_code=None,
			verification_expires_at=None,
			status=IntentStatus.PENDING,
			updated_at=timezone.now(),
		)
	if not updated:
		intent.refresh_from_db()
		if intent.email_verified:
			raise AlreadyVerified("Intent already verified")
		raise NotAwaitingVerification(f"Intent is {intent.status} and no longer accepts verification.")
	intent.refresh_from_db()
	logger.info("intent %s verified; ready for reconciliation", intent.id)
	return intent
