"""Chain observer: bounded Transfer log polling per direction.

Each direction keeps a ScanCursor: the last block that was observed and
matched. A poll starts right after it and covers at most `max_scan_blocks`,
so a node that fell behind catches up window by window. Before the first
cursor exists, the scan starts at the highest block already claimed for that
direction (inclusive; the dedup guard skips hashes seen before), or looks back
a fixed number of blocks from the head.
"""

import logging
from dataclasses import dataclass

from django.utils import timezone

from . import dedup
from .adapters.chain_adapter import ChainAdapter
from .config import BridgeConfig
from .models import Direction, Intent, IntentStatus, ScanCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScanWindow:
	from_block: int
	to_block: int

	@property
	def empty(self) -> bool:
		return self.from_block > self.to_block


def scan_window(direction: str, head: int, config: BridgeConfig) -> ScanWindow:
	cursor = ScanCursor.objects.filter(direction=direction).values_list("last_scanned_block", flat=True).first()
	if cursor is not None:
		start = cursor + 1
	else:
		last = dedup.highest_claimed_block(direction)
		start = head - config.cold_start_lookback_blocks if last is None else last
	start = max(start, 0)
	end = min(head, start + config.max_scan_blocks - 1)
	return ScanWindow(start, end)


def advance_cursor(direction: str, window: ScanWindow) -> None:
	"""Record `window` as scanned. The cursor only moves forward."""
	if window.empty:
		return
	moved = ScanCursor.objects.filter(direction=direction, last_scanned_block__lt=window.to_block).update(
		last_scanned_block=window.to_block, updated_at=timezone.now(),
	)
	if not moved:
		ScanCursor.objects.get_or_create(direction=direction, defaults={"last_scanned_block": window.to_block})


def _deposit_recipients(config: BridgeConfig) -> list:
	addresses = {config.treasury_address}
	addresses.update(
		a for a in Intent.objects.filter(
			direction=Direction.DEPOSIT,
			status=IntentStatus.PENDING,
			transaction_hash__isnull=True,
		).exclude(deposit_address="").values_list("deposit_address", flat=True)
	)
	return sorted(addresses)


def observe_window(direction: str, chain: ChainAdapter, config: BridgeConfig, *, head: int | None = None) -> tuple[ScanWindow, list]:
	"""
	Return this cycle's window for `direction` and every transfer in it, in chain order.

	The list is fully materialized before anything is claimed: an RPC failure
	midway raises ChainUnavailable and nothing from this poll is applied.
	"""
	head = chain.block_number() if head is None else head
	window = scan_window(direction, head, config)
	if window.empty:
		return window, []

	if direction == Direction.DEPOSIT:
		token = config.deposit_token_address
		recipients = _deposit_recipients(config)
	else:
		token = config.token_address
		recipients = [config.treasury_address]

	transfers = list(chain.get_transfer_logs(token, window.from_block, window.to_block, to_addresses=recipients))
	transfers.sort(key=lambda t: (t.block_number, t.log_index))
	logger.info("observed %d %s transfer(s) in blocks %d-%d", len(transfers), direction, window.from_block, window.to_block)
	return window, transfers


def observe(direction: str, chain: ChainAdapter, config: BridgeConfig, *, head: int | None = None) -> list:
	return observe_window(direction, chain, config, head=head)[1]
