"""Reconciliation cycle orchestration.

One cycle: observe -> match -> confirmation gate -> settle (under the signer
lease). Every stage is idempotent, so a cycle can be re-run at any time; a
transient chain failure aborts the cycle without partial writes and the next
scheduled run picks up where this one left off.
"""

import logging
from dataclasses import dataclass, field

from . import confirmations, matcher, observer, settlement
from .adapters.chain_adapter import ChainAdapter, get_chain_adapter
from .config import BridgeConfig
from .exceptions import ChainUnavailable
from .models import Direction
from .permissions import RUN_RECONCILIATION, SYSTEM_IDENTITY, AdminIdentity, require_permission
from .settlement import SettlementReport

logger = logging.getLogger(__name__)


@dataclass
class CycleReport:
	head: int | None = None
	claimed: dict = field(default_factory=dict)
	advanced: int = 0
	settlement: SettlementReport | None = None
	aborted: str = ""

	def as_dict(self) -> dict:
		return {
			"head": self.head,
			"claimed": {d: [str(i) for i in ids] for d, ids in self.claimed.items()},
			"advanced": self.advanced,
			"settlement": self.settlement.as_dict() if self.settlement else None,
			"aborted": self.aborted,
		}


def run_reconciliation_cycle(config: BridgeConfig, chain: ChainAdapter | None = None, identity: AdminIdentity = SYSTEM_IDENTITY, *, settle: bool = True) -> CycleReport:
	"""
	Run one full pass for both directions. Returns a CycleReport; never raises for
	transient chain errors (the report carries `aborted` instead).
	"""
	require_permission(identity, RUN_RECONCILIATION)
	chain = chain or get_chain_adapter(config)
	deadline = settlement.Deadline(config.cycle_timeout_seconds)
	report = CycleReport()
	logger.info("reconciliation cycle started by %s", identity.wallet_address)

	try:
		report.head = chain.block_number()
		for direction in (Direction.DEPOSIT, Direction.REDEMPTION):
			window, transfers = observer.observe_window(direction, chain, config, head=report.head)
			report.claimed[direction] = matcher.match(direction, transfers, chain, config).claimed
			observer.advance_cursor(direction, window)
		report.advanced = confirmations.run_gate(chain, config, head=report.head)
		if settle and not deadline.expired:
			report.settlement = settlement.settle(chain, config, deadline=deadline)
	except ChainUnavailable as e:
		logger.warning("reconciliation cycle aborted: %s", e)
		report.aborted = str(e)
		return report

	logger.info(
		"reconciliation cycle done at head %s: claimed %d, advanced %d, settled %d",
		report.head,
		sum(len(ids) for ids in report.claimed.values()),
		report.advanced,
		len(report.settlement.completed) if report.settlement else 0,
	)
	return report
