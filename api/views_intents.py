"""User-facing intent endpoints: submission and the verification check."""

from decimal import Decimal
from django.conf import settings
from django.http import JsonResponse, HttpResponseBadRequest
from django.views.decorators.csrf import csrf_exempt

from core.config import BridgeConfig
from core.exceptions import VerificationError
from core.intents import submit_intent
from core.models import Intent
from core.verification import verify_code
from .forms import SubmitIntentForm, VerifyCodeForm
from .views_ops import _form_errors, _json_body, error_response


@csrf_exempt
def create_intent(request):
	"""
	POST {"direction", "wallet_address", "declared_amount", "exchange_rate"?, "deposit_address"?}
	Creates the intent in pending_verification and issues its code.
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		payload = _json_body(request)
	except ValueError:
		return HttpResponseBadRequest("Invalid JSON")
	form = SubmitIntentForm(payload)
	if not form.is_valid():
		return _form_errors(form)

	data = form.cleaned_data
	intent, code = submit_intent(
		BridgeConfig.from_settings(),
		direction=data["direction"],
		wallet_address=data["wallet_address"],
		declared_amount=data["declared_amount"],
		exchange_rate=data.get("exchange_rate") or Decimal(1),
		deposit_address=data.get("deposit_address") or "",
	)
	body = {
		"id": str(intent.id),
		"status": intent.status,
		"declared_amount": str(intent.declared_amount),
		"counter_amount": str(intent.counter_amount),
		"verification_expires_at": intent.verification_expires_at.isoformat(),
	}
	# Code delivery (email) is external; expose it only on dev servers.
	if settings.DEBUG:
		body["verification_code"] = code
	return JsonResponse(body, status=201)


@csrf_exempt
def verify_intent(request, intent_id):
	"""
	POST {"code": "123456"}
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	try:
		payload = _json_body(request)
	except ValueError:
		return HttpResponseBadRequest("Invalid JSON")
	form = VerifyCodeForm(payload)
	if not form.is_valid():
		return _form_errors(form)

	try:
		intent = verify_code(intent_id, form.cleaned_data["code"], BridgeConfig.from_settings())
	except (VerificationError, Intent.DoesNotExist) as e:
		return error_response(e)
	return JsonResponse({"id": str(intent.id), "status": intent.status, "email_verified": intent.email_verified})
