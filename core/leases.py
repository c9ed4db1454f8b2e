"""Per-signer lease around the custodial key.

Overlapping executor runs (cron plus a manual trigger) would otherwise race on
nonce allocation. The lease is a row keyed by signer address: creating it is
the acquisition, an expired row may be taken over, and release deletes it only
if we still hold it.
"""

import logging
import socket
import uuid
from contextlib import contextmanager
from datetime import timedelta

from django.db import IntegrityError, transaction
from django.utils import timezone

from .exceptions import LeaseHeld
from .models import SignerLease

logger = logging.getLogger(__name__)


def new_holder_id() -> str:
	return f"{socket.gethostname()[:40]}:{uuid.uuid4().hex[:12]}"


def acquire(signer_address: str, holder: str, ttl_seconds: int) -> SignerLease:
	now = timezone.now()
	expires = now + timedelta(seconds=ttl_seconds)
	signer_address = signer_address.lower()
	try:
		with transaction.atomic():
			return SignerLease.objects.create(signer_address=signer_address, holder=holder, acquired_at=now, expires_at=expires)
	except IntegrityError:
		pass

	# Take over only if the current lease has lapsed.
	taken = SignerLease.objects.filter(signer_address=signer_address, expires_at__lt=now).update(
		holder=holder, acquired_at=now, expires_at=expires,
	)
	if not taken:
		current = SignerLease.objects.filter(signer_address=signer_address).first()
		raise LeaseHeld(f"signer {signer_address} leased by {current.holder if current else 'unknown'}")
	logger.warning("took over expired signer lease for %s", signer_address)
	return SignerLease.objects.get(signer_address=signer_address)


def release(signer_address: str, holder: str) -> bool:
	deleted, _ = SignerLease.objects.filter(signer_address=signer_address.lower(), holder=holder).delete()
	return bool(deleted)


@contextmanager
def signer_lease(signer_address: str, ttl_seconds: int, holder: str | None = None):
	holder = holder or new_holder_id()
	acquire(signer_address, holder, ttl_seconds)
	logger.debug("signer lease %s acquired by %s", signer_address, holder)
	try:
		yield holder
	finally:
		if not release(signer_address, holder):
			logger.warning("signer lease %s was no longer held by %s at release", signer_address, holder)
