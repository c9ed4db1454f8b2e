"""Confirmation gate and the manual-attach override.

confirmations = head - transfer_block, never lowered. Once it reaches the
required depth a deposit becomes `confirmed` (ready to mint) and a redemption
`pending_burn` (ready to burn).
"""

import logging
import re

from django.utils import timezone

from . import audit, dedup
from .adapters.chain_adapter import ChainAdapter
from .config import BridgeConfig
from .constants import from_units
from .exceptions import ChainUnavailable, ManualAttachError
from .intents import awaiting_confirmations
from .matcher import amount_matches
from .models import Direction, Intent, IntentStatus
from .permissions import MANUAL_ATTACH, AdminIdentity, require_permission

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[0-9a-f]{64}$")


def eligible_status(direction: str) -> str:
	if direction == Direction.DEPOSIT:
		return IntentStatus.CONFIRMED
	return IntentStatus.PENDING_BURN


def evaluate(intent: Intent, head: int, config: BridgeConfig) -> bool:
	"""
	Refresh the confirmation count of one claimed intent. Returns True when it
	crossed the threshold in this call.
	"""
	if intent.transfer_block is None:
		logger.warning("intent %s claimed without transfer block; skipping", intent.id)
		return False
	depth = max(intent.confirmations, head - intent.transfer_block)
	ready = depth >= config.required_confirmations
	fields = {"confirmations": depth, "updated_at": timezone.now()}
	if ready:
		fields["status"] = eligible_status(intent.direction)
	updated = Intent.objects.filter(
		pk=intent.pk,
		status=IntentStatus.CONFIRMING,
		confirmations__lte=depth,
	).update(**fields)
	if not updated:
		return False
	intent.confirmations = depth
	if ready:
		intent.status = fields["status"]
		logger.info("intent %s reached %d confirmations -> %s", intent.id, depth, intent.status)
	return ready


def run_gate(chain: ChainAdapter, config: BridgeConfig, *, head: int | None = None) -> int:
	head = chain.block_number() if head is None else head
	advanced = 0
	for intent in awaiting_confirmations():
		if evaluate(intent, head, config):
			advanced += 1
	return advanced


def _expected_transfer(intent: Intent, receipt, config: BridgeConfig):
	if intent.direction == Direction.DEPOSIT:
		token = config.deposit_token_address
		recipient = intent.deposit_address or config.treasury_address
	else:
		token = config.token_address
		recipient = config.treasury_address
	for transfer in receipt.transfers:
		if transfer.token == token and transfer.to_address == recipient:
			return transfer
	return None


def manual_attach(intent_id, tx_hash: str, chain: ChainAdapter, config: BridgeConfig, identity: AdminIdentity) -> Intent:
	"""
	Verify a user-supplied transaction against the chain and bind it to the intent,
	bypassing the matcher but not the dedup guard. The gate runs immediately.
	"""
	require_permission(identity, MANUAL_ATTACH)
	tx_hash = dedup.normalize_hash(tx_hash)
	intent = Intent.objects.get(pk=intent_id)
	try:
		if not TX_HASH_RE.match(tx_hash):
			raise ManualAttachError("malformed transaction hash")
		if dedup.is_used(tx_hash):
			raise ManualAttachError("transaction hash already used")
		if intent.status != IntentStatus.PENDING or intent.transaction_hash:
			raise ManualAttachError(f"intent is {intent.status}, expected unmatched pending")

		receipt = chain.get_receipt(tx_hash)
		if receipt is None:
			raise ManualAttachError("transaction not found on chain")
		if not receipt.succeeded:
			raise ManualAttachError("transaction reverted")
		transfer = _expected_transfer(intent, receipt, config)
		if transfer is None:
			raise ManualAttachError("no Transfer to the expected address in this transaction")
		observed = from_units(transfer.value, chain.decimals(transfer.token))
		if not amount_matches(intent.declared_amount, observed, config.match_tolerance):
			raise ManualAttachError(f"amount mismatch: observed {observed}, declared {intent.declared_amount}")

		if not dedup.claim(intent, tx_hash, receipt.block_number):
			raise ManualAttachError("claim conflict: hash or intent taken concurrently")
	except (ManualAttachError, ChainUnavailable) as e:
		audit.record("manual_attach", actor=identity.wallet_address, intent=intent, success=False, error=str(e), tx_hash=tx_hash)
		raise

	try:
		evaluate(intent, chain.block_number(), config)
	except ChainUnavailable as e:
		# the claim stands; the next cycle's gate picks it up
		logger.warning("intent %s attached; confirmation check deferred: %s", intent.id, e)
	audit.record(
		"manual_attach", actor=identity.wallet_address, intent=intent,
		tx_hash=tx_hash, block_number=receipt.block_number, amount=observed, confirmations=intent.confirmations,
	)
	return intent
