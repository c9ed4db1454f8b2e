"""Admin authorization boundary.

Identity verification (wallet signatures, sessions) happens upstream; the
engine only receives an AdminIdentity and checks it carries the permission
before mutating anything.
"""

from dataclasses import dataclass, field

from django.core.exceptions import PermissionDenied

from .models import AdminWallet

MANUAL_ATTACH = "manual_attach"
TRIGGER_BURN = "trigger_burn"
RUN_RECONCILIATION = "run_reconciliation"
MANAGE_RESERVES = "manage_reserves"
COMPLETE_REDEMPTION = "complete_redemption"
REQUEUE_SETTLEMENT = "requeue_settlement"
CLOSE_INTENT = "close_intent"

ALL_PERMISSIONS = frozenset({
	MANUAL_ATTACH, TRIGGER_BURN, RUN_RECONCILIATION, MANAGE_RESERVES,
	COMPLETE_REDEMPTION, REQUEUE_SETTLEMENT, CLOSE_INTENT,
})


@dataclass(frozen=True)
class AdminIdentity:
	wallet_address: str
	permissions: frozenset = field(default_factory=frozenset)

	def has(self, permission: str) -> bool:
		return permission in self.permissions


# Scheduled runs (cron / management command) act as the platform itself.
SYSTEM_IDENTITY = AdminIdentity("system", ALL_PERMISSIONS)


def require_permission(identity: AdminIdentity | None, permission: str) -> AdminIdentity:
	if identity is None or not identity.has(permission):
		who = identity.wallet_address if identity else "anonymous"
		raise PermissionDenied(f"{who} lacks permission {permission}")
	return identity


def resolve_admin(wallet_address: str) -> AdminIdentity | None:
	"""
	Look up an active admin wallet (case-insensitive). None when unknown or inactive.
	"""
	if not wallet_address:
		return None
	row = AdminWallet.objects.filter(wallet_address=wallet_address.lower(), is_active=True).first()
	if row is None:
		return None
	return AdminIdentity(row.wallet_address, frozenset(row.permissions or []))
