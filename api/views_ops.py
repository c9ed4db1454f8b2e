"""Operational endpoints that move the engine forward (reconcile, attach, burn, payout, reserves).

Every admin call carries:
- X-Admin-Wallet: the admin wallet address (resolved against AdminWallet)
- X-Signature: hex HMAC-SHA256 of the raw body with ADMIN_API_SECRET
The engine then checks the specific permission before mutating anything.
"""

import hmac, json, hashlib, logging
from django.core.exceptions import PermissionDenied
from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt

from core import reserves, settlement
from core.adapters.chain_adapter import get_chain_adapter
from core.config import BridgeConfig
from core.confirmations import manual_attach
from core.exceptions import (
	ChainUnavailable, ClaimConflict, InvalidTransition, LeaseHeld, ManualAttachError, ReserveUnderflow, VerificationError,
)
from core.models import Intent
from core.permissions import AdminIdentity, resolve_admin
from core.services import run_reconciliation_cycle
from .forms import CloseIntentForm, CompleteRedemptionForm, ManualAttachForm, ReconcileForm, RequeueForm, ReserveChangeForm

logger = logging.getLogger(__name__)


def health(request):
	return JsonResponse({"ok": True})


# --- Helpers -----------------------------------------------------------------

def _hmac_valid(raw_body: bytes, provided_sig: str, secret: str) -> bool:
	mac = hmac.new(key=secret.encode("utf-8"), msg=raw_body, digestmod=hashlib.sha256)
	expected = mac.hexdigest()
	return hmac.compare_digest(expected, provided_sig or "")


def _json_body(request) -> dict:
	"""Parse the JSON object body; raises ValueError on anything else."""
	payload = json.loads((request.body or b"{}").decode("utf-8"))
	if not isinstance(payload, dict):
		raise ValueError("JSON object expected")
	return payload


def _admin_identity(request, config: BridgeConfig) -> AdminIdentity:
	if not config.admin_api_secret or not _hmac_valid(request.body or b"", request.headers.get("X-Signature", ""), config.admin_api_secret):
		raise PermissionDenied("Bad signature")
	identity = resolve_admin(request.headers.get("X-Admin-Wallet", ""))
	if identity is None:
		raise PermissionDenied("Unknown admin wallet")
	return identity


def _form_errors(form) -> JsonResponse:
	return JsonResponse({"error": "invalid_request", "fields": form.errors.get_json_data()}, status=400)


def error_response(exc: Exception) -> JsonResponse:
	"""Map engine errors to HTTP; unexpected errors never leak internals."""
	if isinstance(exc, PermissionDenied):
		return JsonResponse({"error": "forbidden", "detail": str(exc)}, status=403)
	if isinstance(exc, Intent.DoesNotExist):
		return JsonResponse({"error": "not_found"}, status=404)
	if isinstance(exc, VerificationError):
		return JsonResponse({"error": type(exc).__name__, "detail": str(exc)}, status=exc.status_code)
	if isinstance(exc, (ManualAttachError, InvalidTransition, ClaimConflict, ReserveUnderflow, LeaseHeld)):
		return JsonResponse({"error": type(exc).__name__, "detail": str(exc)}, status=409)
	if isinstance(exc, ChainUnavailable):
		return JsonResponse({"error": "chain_unavailable"}, status=503)
	logger.exception("unhandled error in admin endpoint")
	return JsonResponse({"error": "internal_error"}, status=500)


def _admin_call(request, form_class, action):
	"""
	Shared admin pipeline: method check, signature + identity, JSON parse,
	form validation, then `action(identity, cleaned_data, config)`.
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	config = BridgeConfig.from_settings()
	try:
		identity = _admin_identity(request, config)
		payload = _json_body(request)
	except PermissionDenied as e:
		return error_response(e)
	except ValueError:
		return HttpResponseBadRequest("Invalid JSON")

	form = form_class(payload)
	if not form.is_valid():
		return _form_errors(form)
	try:
		return action(identity, form.cleaned_data, config)
	except Exception as e:
		return error_response(e)


def _intent_json(intent: Intent) -> dict:
	return {
		"id": str(intent.id),
		"direction": intent.direction,
		"status": intent.status,
		"transaction_hash": intent.transaction_hash,
		"confirmations": intent.confirmations,
		"settlement_tx_hash": intent.settlement_tx_hash,
		"status_reason": intent.status_reason,
	}


# --- Admin -------------------------------------------------------------------

@csrf_exempt
def reconcile(request):
	"""
	POST: run one reconciliation cycle now (same as the cron command)
	"""
	def action(identity, data, config):
		settle = data.get("settle")
		report = run_reconciliation_cycle(config, get_chain_adapter(config), identity, settle=settle is not False)
		status = 503 if report.aborted else 200
		return JsonResponse(report.as_dict(), status=status)
	return _admin_call(request, ReconcileForm, action)


@csrf_exempt
def attach_transaction(request, intent_id):
	"""
	POST {"tx_hash": "0x..."}: verify the transaction on chain and bind it to the intent
	"""
	def action(identity, data, config):
		intent = manual_attach(intent_id, data["tx_hash"], get_chain_adapter(config), config, identity)
		return JsonResponse(_intent_json(intent))
	return _admin_call(request, ManualAttachForm, action)


@csrf_exempt
def trigger_burns(request):
	def action(identity, data, config):
		report = settlement.trigger_burns(get_chain_adapter(config), config, identity)
		return JsonResponse(report.as_dict(), status=409 if report.lease_held else 200)
	return _admin_call(request, ReconcileForm, action)


@csrf_exempt
def complete_redemption(request, intent_id):
	"""
	POST {"bank_reference": "..."}: the bank payout went out; close the redemption
	"""
	def action(identity, data, config):
		intent = settlement.complete_redemption(intent_id, identity, bank_reference=data.get("bank_reference", ""))
		return JsonResponse(_intent_json(intent))
	return _admin_call(request, CompleteRedemptionForm, action)


@csrf_exempt
def requeue_intent(request, intent_id):
	def action(identity, data, config):
		intent = settlement.requeue(intent_id, get_chain_adapter(config), identity, reason=data["reason"])
		return JsonResponse(_intent_json(intent))
	return _admin_call(request, RequeueForm, action)


@csrf_exempt
def close_intent(request, intent_id):
	def action(identity, data, config):
		intent = settlement.close_intent(intent_id, identity, outcome=data["outcome"], reason=data.get("reason", ""))
		return JsonResponse(_intent_json(intent))
	return _admin_call(request, CloseIntentForm, action)


@csrf_exempt
def change_reserve(request):
	"""
	POST {"mode": "set"|"adjust", "amount": "...", "reason": "..."}
	"""
	def action(identity, data, config):
		amount = reserves.manual_change(identity, mode=data["mode"], amount=data["amount"], reason=data["reason"])
		return JsonResponse({"reserve_type": "pkr", "amount": str(amount)})
	return _admin_call(request, ReserveChangeForm, action)
