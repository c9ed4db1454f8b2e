"""HTTP endpoints for the chain stub: inspect balances, simulate user transfers, mine blocks"""

from django.http import JsonResponse, HttpResponseBadRequest, Http404
from django.views.decorators.csrf import csrf_exempt

from api.forms import StubMineForm, StubTransferForm
from api.views_ops import _form_errors, _json_body
from core.adapters.chain_adapter import StubChainAdapter
from core.config import BridgeConfig


def _stub() -> StubChainAdapter:
	config = BridgeConfig.from_settings()
	if config.chain_backend != "stub":
		raise Http404("chain stub disabled")
	return StubChainAdapter(config.token_address, config.treasury_address, config.token_decimals)


def get_balance(request, address: str):
	"""
	GET: token units held by an address (?token=0x... defaults to PKRSC)
	"""
	stub = _stub()
	token = request.GET.get("token") or stub.token_address
	return JsonResponse({
		"address": address.lower(),
		"token": token.lower(),
		"balance_units": str(stub.balance_of(token, address)),
		"head": stub.block_number(),
	})


@csrf_exempt
def transfer(request):
	"""
	POST: mine a Transfer(from, to, amount_units) in a new block; token defaults to PKRSC
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	stub = _stub()
	try:
		payload = _json_body(request)
	except ValueError:
		return HttpResponseBadRequest("Invalid JSON")
	form = StubTransferForm(payload)
	if not form.is_valid():
		return _form_errors(form)
	data = form.cleaned_data
	observed = stub.transfer(data.get("token") or stub.token_address, data["from_address"], data["to_address"], data["amount_units"])
	return JsonResponse({"tx_hash": observed.hash, "block_number": observed.block_number, "status": "confirmed"}, status=201)


@csrf_exempt
def mine(request):
	"""
	POST {"count": n}: append empty blocks so pending transfers gain confirmations
	"""
	if request.method != "POST":
		return HttpResponseBadRequest("POST only")
	stub = _stub()
	try:
		payload = _json_body(request)
	except ValueError:
		return HttpResponseBadRequest("Invalid JSON")
	form = StubMineForm(payload)
	if not form.is_valid():
		return _form_errors(form)
	head = stub.mine(form.cleaned_data.get("count") or 1)
	return JsonResponse({"head": head})
