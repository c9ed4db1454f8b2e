"""Request schemas, one form per operation. Views validate JSON bodies with these
before anything reaches the engine."""

import re
from decimal import Decimal

from django import forms

from core.models import Direction, IntentStatus

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class AddressField(forms.CharField):
	def __init__(self, **kwargs):
		kwargs.setdefault("max_length", 42)
		super().__init__(**kwargs)

	def clean(self, value):
		value = super().clean(value)
		if value and not ADDRESS_RE.match(value):
			raise forms.ValidationError("Enter a 0x-prefixed 20-byte hex address.")
		return value.lower() if value else value


class SubmitIntentForm(forms.Form):
	direction = forms.ChoiceField(choices=Direction.choices)
	wallet_address = AddressField()
	declared_amount = forms.DecimalField(max_digits=24, decimal_places=6, min_value=Decimal("0.000001"))
	exchange_rate = forms.DecimalField(max_digits=18, decimal_places=6, min_value=Decimal("0.000001"), required=False)
	deposit_address = AddressField(required=False)

	def clean(self):
		data = super().clean()
		if data.get("deposit_address") and data.get("direction") != Direction.DEPOSIT:
			self.add_error("deposit_address", "Only deposits take a deposit address.")
		return data


class VerifyCodeForm(forms.Form):
	code = forms.CharField(max_length=64)


class ManualAttachForm(forms.Form):
	tx_hash = forms.RegexField(regex=TX_HASH_RE, max_length=66)


class CompleteRedemptionForm(forms.Form):
	bank_reference = forms.CharField(max_length=128, required=False)


class RequeueForm(forms.Form):
	reason = forms.CharField(max_length=500)


class CloseIntentForm(forms.Form):
	outcome = forms.ChoiceField(choices=[
		(IntentStatus.CANCELLED, "Cancelled"),
		(IntentStatus.REJECTED, "Rejected"),
	])
	reason = forms.CharField(max_length=500, required=False)


class ReserveChangeForm(forms.Form):
	mode = forms.ChoiceField(choices=[("set", "Set"), ("adjust", "Adjust")])
	amount = forms.DecimalField(max_digits=24, decimal_places=6)
	reason = forms.CharField(max_length=500)

	def clean(self):
		data = super().clean()
		if data.get("mode") == "set" and data.get("amount") is not None and data["amount"] < 0:
			self.add_error("amount", "Reserve cannot be set below zero.")
		return data


class ReconcileForm(forms.Form):
	settle = forms.NullBooleanField(required=False)


class StubTransferForm(forms.Form):
	token = AddressField(required=False)
	from_address = AddressField()
	to_address = AddressField()
	amount_units = forms.IntegerField(min_value=1)


class StubMineForm(forms.Form):
	count = forms.IntegerField(min_value=1, max_value=1000, required=False)
