"""Settlement executor: the irreversible mint / burn step.

Everything here runs under the signer lease (see settle()) and strictly one
intent at a time, so the custodial key never has two transactions in flight
from the same invocation.

Deposit:    confirmed -> minting -> completed | failed
Redemption: pending_burn -> burning -> pending (burn confirmed, payout next) | error

An intent left in minting/burning (crash, receipt timeout, ambiguous broadcast)
is resolved by reconcile_inflight() from chain state before anything new is
signed.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from . import audit, dedup, reserves
from .adapters.chain_adapter import ChainAdapter
from .config import BridgeConfig
from .constants import ZERO_ADDRESS, quantize_amount, split_fee, to_units
from .exceptions import (
	ChainRevert, ChainUnavailable, InvalidTransition, LeaseHeld, ReserveUnderflow, SettlementPending,
)
from .intents import ready_to_burn, ready_to_mint, transition
from .leases import signer_lease
from .models import (
	BurnOperation, Direction, Intent, IntentStatus, MintOperation, OperationStatus, TransactionFee,
)
from .permissions import (
	CLOSE_INTENT, COMPLETE_REDEMPTION, REQUEUE_SETTLEMENT, TRIGGER_BURN, AdminIdentity, require_permission,
)

logger = logging.getLogger(__name__)


class Deadline:
	"""Soft per-cycle time budget, checked between intents."""

	def __init__(self, seconds: float):
		self.expires_at = time.monotonic() + seconds

	@property
	def expired(self) -> bool:
		return time.monotonic() >= self.expires_at


@dataclass
class SettlementReport:
	completed: list = field(default_factory=list)
	failed: list = field(default_factory=list)
	in_flight: list = field(default_factory=list)
	reconciled: list = field(default_factory=list)
	lease_held: bool = False
	timed_out: bool = False

	def as_dict(self) -> dict:
		return {
			"completed": [str(i) for i in self.completed],
			"failed": [str(i) for i in self.failed],
			"in_flight": [str(i) for i in self.in_flight],
			"reconciled": [str(i) for i in self.reconciled],
			"lease_held": self.lease_held,
			"timed_out": self.timed_out,
		}


def deposit_amounts(intent: Intent, config: BridgeConfig) -> tuple[Decimal, Decimal, Decimal]:
	"""(gross, fee, net): gross fiat-equivalent = declared x rate; net is what gets minted."""
	gross = quantize_amount(intent.declared_amount * intent.exchange_rate_at_creation)
	fee, net = split_fee(gross, config.mint_fee_percentage)
	return gross, fee, net


def _fail(intent: Intent, from_status, to_status, reason: str, action: str, op=None) -> bool:
	with transaction.atomic():
		if not transition(intent, from_status, to_status, status_reason=reason[:500]):
			return False
		if op is not None:
			op.status = OperationStatus.FAILED
			op.error = reason
			op.save(update_fields=["status", "error"])
		audit.record(action, intent=intent, success=False, error=reason, amount=intent.declared_amount)
	logger.warning("intent %s -> %s: %s", intent.id, to_status, reason)
	return True


# --- deposits ------------------------------------------------------------------

def _finalize_mint(intent: Intent, op: MintOperation, tx_hash: str, block_number: int | None, config: BridgeConfig) -> bool:
	gross, fee, net = deposit_amounts(intent, config)
	now = timezone.now()
	with transaction.atomic():
		if not transition(intent, IntentStatus.MINTING, IntentStatus.COMPLETED, completed_at=now, settlement_tx_hash=tx_hash, status_reason=""):
			return False
		if not dedup.register_settlement_hash(intent, tx_hash, "mint", block_number):
			transaction.set_rollback(True)
			return False
		op.mint_tx_hash = tx_hash
		op.status = OperationStatus.CONFIRMED
		op.confirmed_at = now
		op.save(update_fields=["mint_tx_hash", "status", "confirmed_at"])
		TransactionFee.objects.create(
			intent=intent,
			transaction_type=Direction.DEPOSIT,
			original_amount=gross,
			fee_percentage=config.mint_fee_percentage,
			fee_amount=fee,
			net_amount=net,
		)
		reserves.adjust(gross)
		audit.record("mint", intent=intent, tx_hash=tx_hash, gross=gross, fee=fee, net=net, to=intent.wallet_address)
	logger.info("intent %s completed: minted %s to %s in %s", intent.id, net, intent.wallet_address, tx_hash)
	return True


def mint_one(intent: Intent, chain: ChainAdapter, config: BridgeConfig, report: SettlementReport):
	if not transition(intent, IntentStatus.CONFIRMED, IntentStatus.MINTING):
		return
	_, _, net = deposit_amounts(intent, config)
	op = MintOperation.objects.create(intent=intent, amount=net)
	try:
		op.submitted_block = chain.block_number()
		op.save(update_fields=["submitted_block"])
		tx_hash = chain.mint(intent.wallet_address, to_units(net, chain.decimals(config.token_address)))
	except SettlementPending as e:
		_record_broadcast(intent, op, e.tx_hash, "mint_tx_hash")
		report.in_flight.append(intent.id)
		return
	except (ChainRevert, ChainUnavailable) as e:
		_fail(intent, IntentStatus.MINTING, IntentStatus.FAILED, f"mint failed: {e}", "mint", op)
		report.failed.append(intent.id)
		return

	_record_broadcast(intent, op, tx_hash, "mint_tx_hash")
	try:
		receipt = chain.wait_for_receipt(tx_hash, config.receipt_timeout_seconds)
	except SettlementPending:
		logger.warning("intent %s: mint %s not mined yet; left for reconciliation", intent.id, tx_hash)
		report.in_flight.append(intent.id)
		return
	if not receipt.succeeded:
		_fail(intent, IntentStatus.MINTING, IntentStatus.FAILED, f"mint {tx_hash} reverted", "mint", op)
		report.failed.append(intent.id)
		return
	if _finalize_mint(intent, op, tx_hash, receipt.block_number, config):
		report.completed.append(intent.id)


def _record_broadcast(intent: Intent, op, tx_hash: str, hash_field: str):
	if not tx_hash:
		return
	setattr(op, hash_field, tx_hash)
	op.save(update_fields=[hash_field])
	Intent.objects.filter(pk=intent.pk).update(settlement_tx_hash=tx_hash, updated_at=timezone.now())
	intent.settlement_tx_hash = tx_hash


def process_confirmed_deposits(chain: ChainAdapter, config: BridgeConfig, report: SettlementReport, deadline: Deadline | None = None):
	for intent in ready_to_mint(config.settlement_batch_size):
		if deadline and deadline.expired:
			report.timed_out = True
			break
		mint_one(intent, chain, config, report)


# --- redemptions ---------------------------------------------------------------

def burned_since(start: datetime) -> Decimal:
	total = BurnOperation.objects.filter(
		created_at__gte=start,
		status__in=[OperationStatus.SUBMITTED, OperationStatus.CONFIRMED],
	).aggregate(total=Sum("amount"))["total"]
	return total or Decimal(0)


def _start_of_day(now: datetime) -> datetime:
	return timezone.localtime(now).replace(hour=0, minute=0, second=0, microsecond=0)


def _finalize_burn(intent: Intent, op: BurnOperation, tx_hash: str, block_number: int | None) -> bool:
	now = timezone.now()
	with transaction.atomic():
		if not transition(intent, IntentStatus.BURNING, IntentStatus.PENDING, settlement_tx_hash=tx_hash, status_reason="awaiting bank payout"):
			return False
		if not dedup.register_settlement_hash(intent, tx_hash, "burn", block_number):
			transaction.set_rollback(True)
			return False
		op.burn_tx_hash = tx_hash
		op.status = OperationStatus.CONFIRMED
		op.confirmed_at = now
		op.save(update_fields=["burn_tx_hash", "status", "confirmed_at"])
		audit.record("burn", intent=intent, tx_hash=tx_hash, amount=intent.declared_amount)
	logger.info("intent %s: burned %s in %s; awaiting payout", intent.id, intent.declared_amount, tx_hash)
	return True


def burn_one(intent: Intent, chain: ChainAdapter, config: BridgeConfig, report: SettlementReport):
	amount = intent.declared_amount
	if config.daily_burn_limit is not None:
		today = burned_since(_start_of_day(timezone.now()))
		if today + amount > config.daily_burn_limit:
			if _fail(intent, IntentStatus.PENDING_BURN, IntentStatus.ERROR,
					f"daily burn limit {config.daily_burn_limit} exceeded ({today} already burned)", "burn"):
				report.failed.append(intent.id)
			return

	units = to_units(amount, chain.decimals(config.token_address))
	balance = chain.balance_of(config.token_address, chain.signer_address)
	if balance < units:
		if _fail(intent, IntentStatus.PENDING_BURN, IntentStatus.ERROR,
				f"insufficient treasury balance: have {balance} units, need {units}", "burn"):
			report.failed.append(intent.id)
		return

	if not transition(intent, IntentStatus.PENDING_BURN, IntentStatus.BURNING):
		return
	op = BurnOperation.objects.create(intent=intent, amount=amount, submitted_block=chain.block_number())
	try:
		tx_hash = chain.burn(units)
	except SettlementPending as e:
		_record_broadcast(intent, op, e.tx_hash, "burn_tx_hash")
		report.in_flight.append(intent.id)
		return
	except (ChainRevert, ChainUnavailable) as e:
		_fail(intent, IntentStatus.BURNING, IntentStatus.ERROR, f"burn failed: {e}", "burn", op)
		report.failed.append(intent.id)
		return

	_record_broadcast(intent, op, tx_hash, "burn_tx_hash")
	try:
		receipt = chain.wait_for_receipt(tx_hash, config.receipt_timeout_seconds)
	except SettlementPending:
		logger.warning("intent %s: burn %s not mined yet; left for reconciliation", intent.id, tx_hash)
		report.in_flight.append(intent.id)
		return
	if not receipt.succeeded:
		_fail(intent, IntentStatus.BURNING, IntentStatus.ERROR, f"burn {tx_hash} reverted", "burn", op)
		report.failed.append(intent.id)
		return
	if _finalize_burn(intent, op, tx_hash, receipt.block_number):
		report.completed.append(intent.id)


def process_redemption_burns(chain: ChainAdapter, config: BridgeConfig, report: SettlementReport, deadline: Deadline | None = None):
	# one signer, one nonce sequence: never more than one burn in flight
	for intent in ready_to_burn(config.settlement_batch_size):
		if deadline and deadline.expired:
			report.timed_out = True
			break
		burn_one(intent, chain, config, report)


# --- post-broadcast reconciliation -------------------------------------------

def _search_settlement_log(intent: Intent, op, chain: ChainAdapter, config: BridgeConfig, head: int):
	"""
	Look for the expected mint/burn Transfer when no hash was recorded (crash
	between broadcast and bookkeeping). Returns the ObservedTransfer or None.
	"""
	units = to_units(op.amount, chain.decimals(config.token_address))
	start = op.submitted_block or max(head - config.cold_start_lookback_blocks, 0)
	end = min(head, start + config.max_scan_blocks - 1)
	if intent.direction == Direction.DEPOSIT:
		logs = chain.get_transfer_logs(config.token_address, start, end, from_addresses=[ZERO_ADDRESS], to_addresses=[intent.wallet_address])
	else:
		logs = chain.get_transfer_logs(config.token_address, start, end, from_addresses=[chain.signer_address], to_addresses=[ZERO_ADDRESS])
	for transfer in logs:
		if transfer.value == units and not dedup.is_used(transfer.hash):
			return transfer
	return None


def _resolve_inflight(intent: Intent, chain: ChainAdapter, config: BridgeConfig, head: int, report: SettlementReport):
	if intent.direction == Direction.DEPOSIT:
		op = intent.mint_operations.filter(status=OperationStatus.SUBMITTED).order_by("-created_at").first()
		tx_hash = op.mint_tx_hash if op else ""
		busy, failed_status = IntentStatus.MINTING, IntentStatus.FAILED
		action = "mint"
	else:
		op = intent.burn_operations.filter(status=OperationStatus.SUBMITTED).order_by("-created_at").first()
		tx_hash = op.burn_tx_hash if op else ""
		busy, failed_status = IntentStatus.BURNING, IntentStatus.ERROR
		action = "burn"

	if op is None:
		# Nothing was ever handed to the chain.
		if _fail(intent, busy, failed_status, "no settlement operation recorded", action):
			report.failed.append(intent.id)
		return

	block_number = None
	if tx_hash:
		receipt = chain.get_receipt(tx_hash)
		if receipt is not None and not receipt.succeeded:
			if _fail(intent, busy, failed_status, f"{action} {tx_hash} reverted", action, op):
				report.failed.append(intent.id)
			return
		found = receipt is not None
		block_number = receipt.block_number if receipt else None
	else:
		transfer = _search_settlement_log(intent, op, chain, config, head)
		found = transfer is not None
		if found:
			tx_hash, block_number = transfer.hash, transfer.block_number

	if found:
		if intent.direction == Direction.DEPOSIT:
			done = _finalize_mint(intent, op, tx_hash, block_number, config)
		else:
			done = _finalize_burn(intent, op, tx_hash, block_number)
		if done:
			logger.info("intent %s: in-flight %s %s resolved from chain", intent.id, action, tx_hash)
			report.reconciled.append(intent.id)
		return

	if op.created_at < timezone.now() - config.inflight_timeout:
		if _fail(intent, busy, failed_status, f"{action} outcome unknown after {config.inflight_timeout}", action, op):
			report.failed.append(intent.id)
	else:
		report.in_flight.append(intent.id)


def reconcile_inflight(chain: ChainAdapter, config: BridgeConfig, report: SettlementReport):
	stuck = list(Intent.objects.filter(status__in=[IntentStatus.MINTING, IntentStatus.BURNING]).order_by("updated_at"))
	if not stuck:
		return
	head = chain.block_number()
	for intent in stuck:
		_resolve_inflight(intent, chain, config, head, report)


# --- entry points ----------------------------------------------------------------

def settle(chain: ChainAdapter, config: BridgeConfig, *, deposits: bool = True, burns: bool = True, deadline: Deadline | None = None) -> SettlementReport:
	"""
	One executor pass under the signer lease: sweep in-flight work, then mint, then burn.
	Returns an empty report flagged lease_held if another run owns the signer.
	"""
	report = SettlementReport()
	try:
		with signer_lease(chain.signer_address or config.treasury_address, config.signer_lease_seconds):
			reconcile_inflight(chain, config, report)
			if deposits:
				process_confirmed_deposits(chain, config, report, deadline)
			if burns:
				process_redemption_burns(chain, config, report, deadline)
	except LeaseHeld as e:
		logger.info("settlement skipped: %s", e)
		report.lease_held = True
	return report


def trigger_burns(chain: ChainAdapter, config: BridgeConfig, identity: AdminIdentity) -> SettlementReport:
	require_permission(identity, TRIGGER_BURN)
	report = settle(chain, config, deposits=False, deadline=Deadline(config.cycle_timeout_seconds))
	audit.record("trigger_burns", actor=identity.wallet_address, **report.as_dict())
	return report


# --- admin transitions ------------------------------------------------------------

def complete_redemption(intent_id, identity: AdminIdentity, *, bank_reference: str = "") -> Intent:
	"""
	Close a burned redemption once the bank payout is done: fee row, reserve debit, completed.
	Completing an already-completed intent is a no-op.
	"""
	require_permission(identity, COMPLETE_REDEMPTION)
	actor = identity.wallet_address
	intent = Intent.objects.get(pk=intent_id)
	if intent.status == IntentStatus.COMPLETED:
		return intent
	try:
		with transaction.atomic():
			intent = Intent.objects.select_for_update().get(pk=intent_id)
			if intent.status == IntentStatus.COMPLETED:
				return intent
			if intent.direction != Direction.REDEMPTION or intent.status != IntentStatus.PENDING:
				raise InvalidTransition(f"cannot complete a {intent.direction} intent in {intent.status}")
			if not intent.burn_operations.filter(status=OperationStatus.CONFIRMED).exists():
				raise InvalidTransition("no confirmed burn for this redemption")
			payout = intent.counter_amount
			fee = intent.declared_amount - payout
			TransactionFee.objects.create(
				intent=intent,
				transaction_type=Direction.REDEMPTION,
				original_amount=intent.declared_amount,
				fee_percentage=_effective_percentage(fee, intent.declared_amount),
				fee_amount=fee,
				net_amount=payout,
			)
			reserves.adjust(-payout, updated_by=actor)
			transition(intent, IntentStatus.PENDING, IntentStatus.COMPLETED,
				completed_at=timezone.now(), bank_reference=bank_reference, status_reason="")
			audit.record("redemption_complete", actor=actor, intent=intent, payout=payout, fee=fee, bank_reference=bank_reference)
	except (InvalidTransition, ReserveUnderflow) as e:
		audit.record("redemption_complete", actor=actor, intent=intent, success=False, error=str(e))
		raise
	return intent


def _effective_percentage(fee: Decimal, original: Decimal) -> Decimal:
	if not original:
		return Decimal(0)
	return (fee * 100 / original).quantize(Decimal("0.0001"))


REQUEUE_TARGETS = {
	(Direction.DEPOSIT, IntentStatus.FAILED): IntentStatus.CONFIRMED,
	(Direction.REDEMPTION, IntentStatus.ERROR): IntentStatus.PENDING_BURN,
}


def requeue(intent_id, chain: ChainAdapter, identity: AdminIdentity, *, reason: str = "") -> Intent:
	"""
	Explicitly send a failed settlement back for another attempt. Refused when any
	earlier attempt is confirmed, either in our records or on chain.
	"""
	require_permission(identity, REQUEUE_SETTLEMENT)
	intent = Intent.objects.get(pk=intent_id)
	target = REQUEUE_TARGETS.get((intent.direction, intent.status))
	try:
		if target is None:
			raise InvalidTransition(f"cannot re-queue a {intent.direction} intent in {intent.status}")
		if intent.direction == Direction.DEPOSIT:
			ops = list(intent.mint_operations.all())
			hashes = [op.mint_tx_hash for op in ops if op.mint_tx_hash]
		else:
			ops = list(intent.burn_operations.all())
			hashes = [op.burn_tx_hash for op in ops if op.burn_tx_hash]
		if any(op.status == OperationStatus.CONFIRMED for op in ops):
			raise InvalidTransition("a previous settlement is already confirmed")
		for tx_hash in hashes:
			receipt = chain.get_receipt(tx_hash)
			if receipt is not None and receipt.succeeded:
				raise InvalidTransition(f"previous settlement {tx_hash} succeeded on chain")
		if not transition(intent, intent.status, target, status_reason=f"re-queued: {reason}"[:500]):
			raise InvalidTransition("intent changed concurrently")
	except (InvalidTransition, ChainUnavailable) as e:
		audit.record("requeue", actor=identity.wallet_address, intent=intent, success=False, error=str(e), reason=reason)
		raise
	audit.record("requeue", actor=identity.wallet_address, intent=intent, to_status=target, reason=reason)
	return intent


CLOSABLE = (IntentStatus.PENDING_VERIFICATION, IntentStatus.PENDING)


def close_intent(intent_id, identity: AdminIdentity, *, outcome: str = IntentStatus.CANCELLED, reason: str = "") -> Intent:
	"""Cancel or reject an intent that has not claimed a transfer yet."""
	require_permission(identity, CLOSE_INTENT)
	if outcome not in (IntentStatus.CANCELLED, IntentStatus.REJECTED):
		raise InvalidTransition(f"unsupported outcome {outcome}")
	intent = Intent.objects.get(pk=intent_id)
	updated = Intent.objects.filter(pk=intent.pk, status__in=CLOSABLE, transaction_hash__isnull=True).update(
		status=outcome, status_reason=reason[:500], updated_at=timezone.now(),
	)
	if not updated:
		err = f"cannot close intent in {intent.status}"
		audit.record("close_intent", actor=identity.wallet_address, intent=intent, success=False, error=err, outcome=outcome)
		raise InvalidTransition(err)
	intent.refresh_from_db()
	audit.record("close_intent", actor=identity.wallet_address, intent=intent, outcome=outcome, reason=reason)
	return intent
