"""Matcher: bind observed transfers to outstanding intents.

For each transfer, in chain order, intents of the same direction are scanned
oldest-created first and the first one passing all three predicates claims it:

1. address: redemption sender == wallet; deposit recipient == the intent's
   deposit address, or sender == wallet and recipient == treasury
2. amount: |observed - declared| / declared < tolerance
3. window: created_at <= transfer timestamp <= created_at + window

Ambiguous requests (same wallet, same amount, overlapping window) resolve
first-fit to the earliest intent.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal

from . import dedup
from .adapters.chain_adapter import ChainAdapter, ObservedTransfer
from .config import BridgeConfig
from .constants import from_units
from .intents import outstanding
from .models import Direction, Intent, IntentStatus

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
	direction: str
	observed: int = 0
	claimed: list = field(default_factory=list)
	skipped_used: int = 0
	unmatched: int = 0
	conflicts: int = 0


def address_matches(intent: Intent, transfer: ObservedTransfer, config: BridgeConfig) -> bool:
	if intent.direction == Direction.REDEMPTION:
		return transfer.from_address == intent.wallet_address and transfer.to_address == config.treasury_address
	if intent.deposit_address:
		return transfer.to_address == intent.deposit_address
	return transfer.from_address == intent.wallet_address and transfer.to_address == config.treasury_address


def amount_matches(declared: Decimal, observed: Decimal, tolerance: Decimal) -> bool:
	if declared <= 0:
		return False
	return abs(observed - declared) / declared < tolerance


def within_window(intent: Intent, transfer: ObservedTransfer, config: BridgeConfig) -> bool:
	return intent.created_at <= transfer.block_timestamp <= intent.created_at + config.match_window


def find_candidate(transfer: ObservedTransfer, observed_amount: Decimal, intents, config: BridgeConfig) -> Intent | None:
	"""
	First intent (in the given order) satisfying address, amount and window.
	"""
	for intent in intents:
		if not address_matches(intent, transfer, config):
			continue
		if not amount_matches(intent.declared_amount, observed_amount, config.match_tolerance):
			logger.debug("transfer %s: address matches intent %s but amount %s != %s", transfer.hash, intent.id, observed_amount, intent.declared_amount)
			continue
		if not within_window(intent, transfer, config):
			logger.debug("transfer %s: intent %s outside time window", transfer.hash, intent.id)
			continue
		return intent
	return None


def match(direction: str, transfers, chain: ChainAdapter, config: BridgeConfig) -> MatchResult:
	result = MatchResult(direction=direction, observed=len(transfers))
	if not transfers:
		return result

	earliest = min(t.block_timestamp for t in transfers)
	candidates = list(outstanding(direction).filter(created_at__gte=earliest - config.match_window))
	if not candidates:
		result.unmatched = len(transfers)
		return result

	already = dedup.used_hashes_among(t.hash for t in transfers)
	for transfer in transfers:
		if transfer.hash in already:
			result.skipped_used += 1
			continue
		observed_amount = from_units(transfer.value, chain.decimals(transfer.token))
		intent = find_candidate(transfer, observed_amount, candidates, config)
		if intent is None:
			result.unmatched += 1
			continue
		if dedup.claim(intent, transfer.hash, transfer.block_number):
			result.claimed.append(intent.id)
			candidates.remove(intent)
			already.add(transfer.hash)
		else:
			# Lost a race: the intent stays eligible for a later transfer unless it moved on.
			result.conflicts += 1
			already.add(transfer.hash)
			intent.refresh_from_db(fields=["status", "transaction_hash"])
			if intent.status != IntentStatus.PENDING or intent.transaction_hash:
				candidates.remove(intent)

	logger.info(
		"%s matching: %d observed, %d claimed, %d already used, %d unmatched, %d conflicts",
		direction, result.observed, len(result.claimed), result.skipped_used, result.unmatched, result.conflicts,
	)
	return result
