"""Chain access for the engine.

ChainAdapter is the surface the engine depends on: block height, Transfer log
queries over a bounded block range, receipts, balances, and the two
custodial-key operations (mint, burn). StubChainAdapter implements it over the
chain_stub tables so the whole flow runs deterministically in-process;
Web3ChainAdapter (web3_adapter.py) talks to a real node.
"""

from dataclasses import dataclass, field
from datetime import datetime

from django.db import transaction
from django.db.models import F, Max
from django.utils import timezone

from chain_stub.models import ChainStubBalance, ChainStubBlock, ChainStubTransfer
from core.constants import ZERO_ADDRESS
from core.exceptions import ChainRevert, SettlementPending


@dataclass(frozen=True)
class ObservedTransfer:
	"""
	A normalized ERC-20 Transfer event. Addresses and hashes are lower-cased; value is in token units.
	"""
	hash: str
	token: str
	from_address: str
	to_address: str
	value: int
	block_number: int
	block_timestamp: datetime
	log_index: int = 0


@dataclass(frozen=True)
class TransactionReceipt:
	tx_hash: str
	block_number: int
	status: int
	transfers: list = field(default_factory=list)

	@property
	def succeeded(self) -> bool:
		return self.status == 1


class ChainAdapter:
	"""
	Interface. Transient failures raise ChainUnavailable; rejected transactions raise ChainRevert.
	"""
	signer_address: str = ""

	def block_number(self) -> int:
		raise NotImplementedError

	def get_transfer_logs(self, token: str, from_block: int, to_block: int, *, from_addresses=None, to_addresses=None):
		"""
		Yield ObservedTransfer for Transfer events of `token` in [from_block, to_block],
		optionally filtered by sender / recipient address lists.
		"""
		raise NotImplementedError

	def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
		raise NotImplementedError

	def balance_of(self, token: str, address: str) -> int:
		raise NotImplementedError

	def decimals(self, token: str) -> int:
		raise NotImplementedError

	def mint(self, to_address: str, amount_units: int) -> str:
		"""Broadcast mint(to, amount) signed by the custodial key; returns the tx hash."""
		raise NotImplementedError

	def burn(self, amount_units: int) -> str:
		"""Broadcast burn(amount) from the custodial wallet; returns the tx hash."""
		raise NotImplementedError

	def wait_for_receipt(self, tx_hash: str, timeout: int) -> TransactionReceipt:
		"""Block until mined; raise SettlementPending when the outcome is still unknown at timeout."""
		raise NotImplementedError


class StubChainAdapter(ChainAdapter):
	"""
	Deterministic chain backed by the chain_stub tables.
	mint/burn are mined immediately in a fresh block and return confirmed receipts.
	"""

	def __init__(self, token_address: str, signer_address: str, decimals: int = 6):
		self.token_address = token_address.lower()
		self.signer_address = signer_address.lower()
		self._decimals = decimals

	# --- block production (stub only) ----------------------------------------

	def block_number(self) -> int:
		return ChainStubBlock.objects.aggregate(n=Max("number"))["n"] or 0

	def mine(self, count: int = 1, timestamp: datetime | None = None) -> int:
		"""
		Append `count` empty blocks; returns the new head.
		"""
		head = self.block_number()
		for i in range(count):
			ChainStubBlock.objects.create(number=head + i + 1, timestamp=timestamp or timezone.now())
		return head + count

	@transaction.atomic
	def transfer(self, token: str, from_address: str, to_address: str, amount_units: int, *, timestamp: datetime | None = None, status: int = 1) -> ObservedTransfer:
		"""
		Simulate a Transfer mined in a new block (user → treasury, mint, burn...).
		"""
		block = ChainStubBlock.objects.create(number=self.block_number() + 1, timestamp=timestamp or timezone.now())
		tx = ChainStubTransfer.objects.create(
			token=token.lower(),
			from_address=from_address.lower(),
			to_address=to_address.lower(),
			value_units=int(amount_units),
			block=block,
			status=status,
		)
		if status == 1:
			if tx.from_address != ZERO_ADDRESS:
				self._move(tx.token, tx.from_address, -tx.value_units)
			if tx.to_address != ZERO_ADDRESS:
				self._move(tx.token, tx.to_address, tx.value_units)
		return self._observed(tx)

	def _move(self, token: str, address: str, delta: int):
		ChainStubBalance.objects.get_or_create(token=token, address=address, defaults={"balance_units": 0})
		ChainStubBalance.objects.filter(token=token, address=address).update(balance_units=F("balance_units") + delta)

	@staticmethod
	def _observed(tx: ChainStubTransfer) -> ObservedTransfer:
		return ObservedTransfer(
			hash=tx.tx_hash,
			token=tx.token,
			from_address=tx.from_address,
			to_address=tx.to_address,
			value=tx.value_units,
			block_number=tx.block_id,
			block_timestamp=tx.block.timestamp,
			log_index=tx.log_index,
		)

	# --- ChainAdapter ----------------------------------------------------------

	def get_transfer_logs(self, token: str, from_block: int, to_block: int, *, from_addresses=None, to_addresses=None):
		qs = ChainStubTransfer.objects.select_related("block").filter(
			token=token.lower(), status=1, block__number__gte=from_block, block__number__lte=to_block,
		)
		if from_addresses:
			qs = qs.filter(from_address__in=[a.lower() for a in from_addresses])
		if to_addresses:
			qs = qs.filter(to_address__in=[a.lower() for a in to_addresses])
		for tx in qs.order_by("block__number", "log_index", "id"):
			yield self._observed(tx)

	def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
		tx = ChainStubTransfer.objects.select_related("block").filter(tx_hash=tx_hash.lower()).first()
		if tx is None:
			return None
		return TransactionReceipt(
			tx_hash=tx.tx_hash,
			block_number=tx.block_id,
			status=tx.status,
			transfers=[self._observed(tx)] if tx.status == 1 else [],
		)

	def balance_of(self, token: str, address: str) -> int:
		bal = ChainStubBalance.objects.filter(token=token.lower(), address=address.lower()).first()
		return int(bal.balance_units) if bal else 0

	def decimals(self, token: str) -> int:
		return self._decimals

	def mint(self, to_address: str, amount_units: int) -> str:
		if amount_units <= 0:
			raise ChainRevert("mint amount must be > 0")
		return self.transfer(self.token_address, ZERO_ADDRESS, to_address, amount_units).hash

	def burn(self, amount_units: int) -> str:
		if self.balance_of(self.token_address, self.signer_address) < amount_units:
			raise ChainRevert("ERC20: burn amount exceeds balance")
		return self.transfer(self.token_address, self.signer_address, ZERO_ADDRESS, amount_units).hash

	def wait_for_receipt(self, tx_hash: str, timeout: int) -> TransactionReceipt:
		receipt = self.get_receipt(tx_hash)
		if receipt is None:
			raise SettlementPending(tx_hash)
		return receipt


def get_chain_adapter(config) -> ChainAdapter:
	"""
	Build the adapter selected by config.chain_backend ("stub" | "web3").
	"""
	if config.chain_backend == "web3":
		from .web3_adapter import Web3ChainAdapter
		return Web3ChainAdapter.from_config(config)
	return StubChainAdapter(config.token_address, config.treasury_address, config.token_decimals)
