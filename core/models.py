"""Database models for the settlement reconciliation engine.


Tables:
- Intent: user-declared deposit / redemption request and its lifecycle
- UsedTransactionHash: dedup guard; a chain tx hash can be consumed exactly once
- MintOperation / BurnOperation: audit row for each mint/burn submitted to chain
- TransactionFee: fee charged per settled intent (net + fee == original)
- ReserveAccount: off-chain fiat backing the circulating supply
- AuditLogEntry: append-only record of every privileged action
- AdminWallet: admin identities and their permission sets
- SignerLease: mutual exclusion around the custodial signing key
- ScanCursor: per-direction observer high-water mark
"""

import uuid
from django.db import models
from django.db.models import Q
from django.utils import timezone


class Direction(models.TextChoices):
	DEPOSIT = "deposit", "Deposit"
	REDEMPTION = "redemption", "Redemption"


class IntentStatus(models.TextChoices):
	PENDING_VERIFICATION = "pending_verification", "Pending verification"
	PENDING = "pending", "Pending"
	CONFIRMING = "confirming", "Confirming"
	CONFIRMED = "confirmed", "Confirmed"
	MINTING = "minting", "Minting"
	PENDING_BURN = "pending_burn", "Pending burn"
	BURNING = "burning", "Burning"
	COMPLETED = "completed", "Completed"
	REJECTED = "rejected", "Rejected"
	CANCELLED = "cancelled", "Cancelled"
	FAILED = "failed", "Failed"
	ERROR = "error", "Error"


TERMINAL_STATUSES = (
	IntentStatus.COMPLETED,
	IntentStatus.REJECTED,
	IntentStatus.CANCELLED,
	IntentStatus.FAILED,
	IntentStatus.ERROR,
)


class Intent(models.Model):
	"""
	The unit of work for a deposit or a redemption.

	declared_amount is what the user says they transfer on chain (deposit asset or PKRSC units);
	counter_amount is what is owed on the other ledger (net tokens to mint / net PKR to pay out).
	transaction_hash is set once, by the Matcher or a manual attach, and never changes.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	direction = models.CharField(max_length=16, choices=Direction.choices)
	wallet_address = models.CharField(max_length=42, db_index=True)
	deposit_address = models.CharField(max_length=42, blank=True, default="")
	declared_amount = models.DecimalField(max_digits=24, decimal_places=6)
	counter_amount = models.DecimalField(max_digits=24, decimal_places=6)
	exchange_rate_at_creation = models.DecimalField(max_digits=18, decimal_places=6, default=1)
	status = models.CharField(max_length=24, choices=IntentStatus.choices, default=IntentStatus.PENDING_VERIFICATION, db_index=True)
	status_reason = models.TextField(blank=True, default="")

	transaction_hash = models.CharField(max_length=66, null=True, blank=True, unique=True)
	transfer_block = models.BigIntegerField(null=True, blank=True)
	confirmations = models.IntegerField(default=0)
	settlement_tx_hash = models.CharField(max_length=66, blank=True, default="")
	bank_reference = models.CharField(max_length=128, blank=True, default="")

	verification_code = models.CharField(max_length=64, null=True, blank=True)
	verification_expires_at = models.DateTimeField(null=True, blank=True)
	verification_attempts = models.IntegerField(default=0)
	email_verified = models.BooleanField(default=False)

	created_at = models.DateTimeField(default=timezone.now, db_index=True)
	updated_at = models.DateTimeField(auto_now=True)
	completed_at = models.DateTimeField(null=True, blank=True)

	class Meta:
		indexes = [
			models.Index(fields=["direction", "status", "created_at"]),
		]

	def save(self, *args, **kwargs):
		self.wallet_address = (self.wallet_address or "").lower()
		self.deposit_address = (self.deposit_address or "").lower()
		if self.transaction_hash:
			self.transaction_hash = self.transaction_hash.lower()
		super().save(*args, **kwargs)

	@property
	def is_terminal(self) -> bool:
		return self.status in TERMINAL_STATUSES


class UsedTransactionHash(models.Model):
	"""
	Dedup guard. The unique constraint on `hash` is the serialization point:
	whoever inserts first owns the transfer.
	"""
	DIRECTIONS = (("deposit", "Deposit"), ("redemption", "Redemption"), ("mint", "Mint"), ("burn", "Burn"))

	id = models.BigAutoField(primary_key=True)
	hash = models.CharField(max_length=66, unique=True)
	intent = models.ForeignKey(Intent, on_delete=models.PROTECT, related_name="claimed_hashes")
	direction = models.CharField(max_length=16, choices=DIRECTIONS)
	block_number = models.BigIntegerField(null=True, blank=True)
	claimed_at = models.DateTimeField(auto_now_add=True)

	class Meta:
		indexes = [
			models.Index(fields=["direction", "block_number"]),
		]


class OperationStatus(models.TextChoices):
	SUBMITTED = "submitted", "Submitted"
	CONFIRMED = "confirmed", "Confirmed"
	FAILED = "failed", "Failed"


class MintOperation(models.Model):
	"""
	Tracks each mint call made for a deposit intent and its receipt.
	A deposit may be retried after an explicit re-queue, so this is one-to-many.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	intent = models.ForeignKey(Intent, on_delete=models.PROTECT, related_name="mint_operations")
	mint_tx_hash = models.CharField(max_length=66, blank=True, default="")
	amount = models.DecimalField(max_digits=24, decimal_places=6)
	status = models.CharField(max_length=16, choices=OperationStatus.choices, default=OperationStatus.SUBMITTED)
	submitted_block = models.BigIntegerField(null=True, blank=True)
	error = models.TextField(blank=True, default="")
	created_at = models.DateTimeField(default=timezone.now)
	confirmed_at = models.DateTimeField(null=True, blank=True)

	class Meta:
		constraints = [
			models.UniqueConstraint(fields=["intent"], condition=Q(status="confirmed"), name="one_confirmed_mint_per_intent"),
		]


class BurnOperation(models.Model):
	"""
	Tracks each burn call made for a redemption intent; history survives retries.
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	intent = models.ForeignKey(Intent, on_delete=models.PROTECT, related_name="burn_operations")
	burn_tx_hash = models.CharField(max_length=66, blank=True, default="")
	amount = models.DecimalField(max_digits=24, decimal_places=6)
	status = models.CharField(max_length=16, choices=OperationStatus.choices, default=OperationStatus.SUBMITTED)
	submitted_block = models.BigIntegerField(null=True, blank=True)
	error = models.TextField(blank=True, default="")
	created_at = models.DateTimeField(default=timezone.now)
	confirmed_at = models.DateTimeField(null=True, blank=True)

	class Meta:
		constraints = [
			models.UniqueConstraint(fields=["intent"], condition=Q(status="confirmed"), name="one_confirmed_burn_per_intent"),
		]


class TransactionFee(models.Model):
	"""
	Fee charged for a settled intent. Always net_amount == original_amount - fee_amount.
	One row per intent: the unique constraint makes a second settlement attempt fail loudly.
	"""
	id = models.BigAutoField(primary_key=True)
	intent = models.OneToOneField(Intent, on_delete=models.PROTECT, related_name="fee")
	transaction_type = models.CharField(max_length=16, choices=Direction.choices)
	original_amount = models.DecimalField(max_digits=24, decimal_places=6)
	fee_percentage = models.DecimalField(max_digits=8, decimal_places=4)
	fee_amount = models.DecimalField(max_digits=24, decimal_places=6)
	net_amount = models.DecimalField(max_digits=24, decimal_places=6)
	created_at = models.DateTimeField(auto_now_add=True)

	def save(self, *args, **kwargs):
		if self.net_amount != self.original_amount - self.fee_amount:
			raise ValueError("net_amount must equal original_amount - fee_amount")
		super().save(*args, **kwargs)


class ReserveAccount(models.Model):
	"""
	Fiat reserve backing circulating tokens. Mutate only through core.reserves.
	"""
	PKR = "pkr"

	id = models.BigAutoField(primary_key=True)
	reserve_type = models.CharField(max_length=16, unique=True)
	amount = models.DecimalField(max_digits=24, decimal_places=6, default=0)
	last_updated = models.DateTimeField(default=timezone.now)
	updated_by = models.CharField(max_length=64, blank=True, default="")

	class Meta:
		constraints = [
			models.CheckConstraint(condition=Q(amount__gte=0), name="reserve_amount_non_negative"),
		]


class AuditLogEntry(models.Model):
	"""
	Append-only log of privileged actions (settlements, attaches, reserve changes).
	Rows are never updated or deleted.
	"""
	id = models.BigAutoField(primary_key=True)
	action_type = models.CharField(max_length=64, db_index=True)
	actor = models.CharField(max_length=64)
	intent = models.ForeignKey(Intent, null=True, blank=True, on_delete=models.PROTECT, related_name="audit_entries")
	success = models.BooleanField(default=True)
	error_message = models.TextField(blank=True, default="")
	details = models.JSONField(default=dict, blank=True)
	created_at = models.DateTimeField(auto_now_add=True)

	def save(self, *args, **kwargs):
		if not self._state.adding:
			raise ValueError("audit log entries are append-only")
		super().save(*args, **kwargs)

	def delete(self, *args, **kwargs):
		raise ValueError("audit log entries are append-only")


class AdminWallet(models.Model):
	"""
	Admin identity: a wallet address plus the permissions it carries.
	"""
	id = models.BigAutoField(primary_key=True)
	wallet_address = models.CharField(max_length=42, unique=True)
	permissions = models.JSONField(default=list, blank=True)
	is_active = models.BooleanField(default=True)
	created_at = models.DateTimeField(auto_now_add=True)

	def save(self, *args, **kwargs):
		self.wallet_address = self.wallet_address.lower()
		super().save(*args, **kwargs)


class SignerLease(models.Model):
	"""
	At most one holder per custodial signer; expired leases may be taken over.
	"""
	signer_address = models.CharField(max_length=42, primary_key=True)
	holder = models.CharField(max_length=64)
	acquired_at = models.DateTimeField(default=timezone.now)
	expires_at = models.DateTimeField()


class ScanCursor(models.Model):
	"""
	Last block the observer fully scanned and matched, per direction.
	"""
	direction = models.CharField(max_length=16, choices=Direction.choices, primary_key=True)
	last_scanned_block = models.BigIntegerField()
	updated_at = models.DateTimeField(auto_now=True)
