"""Adapter over an EVM JSON-RPC node (web3.py).

Reads: eth_blockNumber, eth_getLogs for Transfer(address,address,uint256),
eth_getTransactionReceipt, balanceOf / decimals.
Writes: mint(address,uint256) and burn(uint256), signed locally with the
custodial key and broadcast as raw transactions.
"""

import logging
from datetime import datetime, timezone

from eth_account import Account
from requests.exceptions import RequestException
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from core.exceptions import ChainRevert, ChainUnavailable, SettlementPending
from .chain_adapter import ChainAdapter, ObservedTransfer, TransactionReceipt

logger = logging.getLogger(__name__)

TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

ERC20_ABI = [
	{
		"anonymous": False,
		"inputs": [
			{"indexed": True, "name": "from", "type": "address"},
			{"indexed": True, "name": "to", "type": "address"},
			{"indexed": False, "name": "value", "type": "uint256"},
		],
		"name": "Transfer",
		"type": "event",
	},
	{"constant": True, "inputs": [{"name": "account", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
	{"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
	{"inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}], "name": "mint", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable", "type": "function"},
	{"inputs": [{"name": "amount", "type": "uint256"}], "name": "burn", "outputs": [], "stateMutability": "nonpayable", "type": "function"},
]

# Errors that mean "node unreachable / misbehaving", as opposed to a contract revert
TRANSIENT_ERRORS = (RequestException, TimeoutError, ConnectionError, Web3Exception)


def address_topic(address: str) -> str:
	"""Left-pad a 20-byte address into a 32-byte indexed topic."""
	return "0x" + "0" * 24 + address.lower().removeprefix("0x")


def address_topics(addresses) -> list | None:
	if not addresses:
		return None
	return [address_topic(a) for a in addresses]


class Web3ChainAdapter(ChainAdapter):

	def __init__(self, w3: Web3, token_address: str, private_key: str = ""):
		self.w3 = w3
		self.token_address = token_address.lower()
		self.account = Account.from_key(private_key) if private_key else None
		self.signer_address = self.account.address.lower() if self.account else ""
		self._block_ts = {}
		self._decimals = {}

	@classmethod
	def from_config(cls, config) -> "Web3ChainAdapter":
		w3 = Web3(Web3.HTTPProvider(config.rpc_url, request_kwargs={"timeout": config.rpc_timeout_seconds}))
		return cls(w3, config.token_address, config.treasury_private_key)

	def _contract(self, token: str):
		return self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=ERC20_ABI)

	# --- reads -------------------------------------------------------------

	def block_number(self) -> int:
		try:
			return int(self.w3.eth.block_number)
		except TRANSIENT_ERRORS as e:
			raise ChainUnavailable(f"eth_blockNumber failed: {e}") from e

	def _block_timestamp(self, number: int) -> datetime:
		if number not in self._block_ts:
			try:
				block = self.w3.eth.get_block(number)
			except TRANSIENT_ERRORS as e:
				raise ChainUnavailable(f"eth_getBlockByNumber {number} failed: {e}") from e
			self._block_ts[number] = datetime.fromtimestamp(int(block["timestamp"]), tz=timezone.utc)
		return self._block_ts[number]

	def _normalize(self, log) -> ObservedTransfer:
		event = self._contract(log["address"]).events.Transfer().process_log(log)
		return ObservedTransfer(
			hash=Web3.to_hex(log["transactionHash"]).lower(),
			token=str(log["address"]).lower(),
			from_address=str(event["args"]["from"]).lower(),
			to_address=str(event["args"]["to"]).lower(),
			value=int(event["args"]["value"]),
			block_number=int(log["blockNumber"]),
			block_timestamp=self._block_timestamp(int(log["blockNumber"])),
			log_index=int(log["logIndex"]),
		)

	def get_transfer_logs(self, token: str, from_block: int, to_block: int, *, from_addresses=None, to_addresses=None):
		params = {
			"address": Web3.to_checksum_address(token),
			"fromBlock": int(from_block),
			"toBlock": int(to_block),
			"topics": [TRANSFER_TOPIC, address_topics(from_addresses), address_topics(to_addresses)],
		}
		try:
			logs = self.w3.eth.get_logs(params)
		except TRANSIENT_ERRORS as e:
			raise ChainUnavailable(f"eth_getLogs {from_block}-{to_block} failed: {e}") from e
		logger.debug("eth_getLogs %s %s-%s returned %d logs", token, from_block, to_block, len(logs))
		for log in logs:
			yield self._normalize(log)

	def get_receipt(self, tx_hash: str) -> TransactionReceipt | None:
		try:
			raw = self.w3.eth.get_transaction_receipt(tx_hash)
		except TransactionNotFound:
			return None
		except TRANSIENT_ERRORS as e:
			raise ChainUnavailable(f"eth_getTransactionReceipt failed: {e}") from e
		return self._receipt(raw)

	def _receipt(self, raw) -> TransactionReceipt:
		transfers = []
		for log in raw["logs"]:
			if log["topics"] and Web3.to_hex(log["topics"][0]).lower() == TRANSFER_TOPIC and len(log["topics"]) == 3:
				transfers.append(self._normalize(log))
		return TransactionReceipt(
			tx_hash=Web3.to_hex(raw["transactionHash"]).lower(),
			block_number=int(raw["blockNumber"]),
			status=int(raw["status"]),
			transfers=transfers,
		)

	def balance_of(self, token: str, address: str) -> int:
		try:
			return int(self._contract(token).functions.balanceOf(Web3.to_checksum_address(address)).call())
		except TRANSIENT_ERRORS as e:
			raise ChainUnavailable(f"balanceOf failed: {e}") from e

	def decimals(self, token: str) -> int:
		token = token.lower()
		if token not in self._decimals:
			try:
				self._decimals[token] = int(self._contract(token).functions.decimals().call())
			except TRANSIENT_ERRORS as e:
				raise ChainUnavailable(f"decimals failed: {e}") from e
		return self._decimals[token]

	# --- custodial writes ---------------------------------------------------

	def _send(self, fn) -> str:
		if self.account is None:
			raise ChainRevert("custodial private key not configured")
		try:
			tx = fn.build_transaction({
				"from": self.account.address,
				"nonce": self.w3.eth.get_transaction_count(self.account.address, "pending"),
				"chainId": self.w3.eth.chain_id,
			})
		except ContractLogicError as e:
			# gas estimation hit a revert; nothing was broadcast
			raise ChainRevert(str(e)) from e
		except TRANSIENT_ERRORS as e:
			raise ChainUnavailable(f"building transaction failed: {e}") from e
		signed = self.account.sign_transaction(tx)
		tx_hash = Web3.to_hex(signed.hash).lower()
		try:
			self.w3.eth.send_raw_transaction(signed.raw_transaction)
		except ContractLogicError as e:
			raise ChainRevert(str(e)) from e
		except TRANSIENT_ERRORS as e:
			# the node may or may not have accepted it; the hash is known either way
			raise SettlementPending(tx_hash, f"broadcast of {tx_hash} unconfirmed: {e}") from e
		logger.info("broadcast %s", tx_hash)
		return tx_hash

	def mint(self, to_address: str, amount_units: int) -> str:
		return self._send(self._contract(self.token_address).functions.mint(Web3.to_checksum_address(to_address), int(amount_units)))

	def burn(self, amount_units: int) -> str:
		return self._send(self._contract(self.token_address).functions.burn(int(amount_units)))

	def wait_for_receipt(self, tx_hash: str, timeout: int) -> TransactionReceipt:
		try:
			raw = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout)
		except TimeExhausted as e:
			raise SettlementPending(tx_hash, f"no receipt for {tx_hash} after {timeout}s") from e
		except TRANSIENT_ERRORS as e:
			raise SettlementPending(tx_hash, f"receipt lookup for {tx_hash} failed: {e}") from e
		try:
			return self._receipt(raw)
		except ChainUnavailable as e:
			raise SettlementPending(tx_hash, f"receipt for {tx_hash} incomplete: {e}") from e
