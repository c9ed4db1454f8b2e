"""Append-only audit trail for privileged actions."""

import logging

from .models import AuditLogEntry

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def _jsonable(details: dict) -> dict:
	# Decimals, UUIDs and datetimes are stored as strings
	out = {}
	for k, v in (details or {}).items():
		if v is None or isinstance(v, (bool, int, str, list, dict)):
			out[k] = v
		else:
			out[k] = str(v)
	return out


def record(action_type: str, *, actor: str = SYSTEM_ACTOR, intent=None, success: bool = True, error: str = "", **details) -> AuditLogEntry:
	"""
	Append one audit row. Failures carry the causal error message.
	"""
	entry = AuditLogEntry.objects.create(
		action_type=action_type,
		actor=(actor or SYSTEM_ACTOR).lower(),
		intent=intent,
		success=success,
		error_message=error or "",
		details=_jsonable(details),
	)
	if success:
		logger.info("audit %s actor=%s intent=%s", action_type, entry.actor, getattr(intent, "id", None))
	else:
		logger.warning("audit %s actor=%s intent=%s failed: %s", action_type, entry.actor, getattr(intent, "id", None), error)
	return entry
