"""In-process chain tables to simulate blocks, ERC-20 transfers and balances"""

import uuid
from django.db import models
from django.utils.timezone import now


class ChainStubBlock(models.Model):
	"""
	One row per mined block; the highest number is the chain head
	"""
	number = models.BigIntegerField(primary_key=True)
	timestamp = models.DateTimeField(default=now)


def gen_tx_hash():
	# Named function = migration-friendly
	return "0x" + uuid.uuid4().hex + uuid.uuid4().hex


class ChainStubTransfer(models.Model):
	"""
	A Transfer(from, to, value) event emitted by `token`; mints come from the zero address,
	burns go to it. status mirrors receipt.status (1 success, 0 reverted).
	"""
	id = models.BigAutoField(primary_key=True)
	tx_hash = models.CharField(max_length=66, unique=True, default=gen_tx_hash)
	token = models.CharField(max_length=42, db_index=True)
	from_address = models.CharField(max_length=42)
	to_address = models.CharField(max_length=42)
	value_units = models.BigIntegerField()
	block = models.ForeignKey(ChainStubBlock, on_delete=models.CASCADE, related_name="transfers")
	log_index = models.IntegerField(default=0)
	status = models.IntegerField(default=1)


class ChainStubBalance(models.Model):
	"""
	Per (token, address) balance as if confirmed on-chain
	"""
	id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
	token = models.CharField(max_length=42)
	address = models.CharField(max_length=42)
	balance_units = models.BigIntegerField(default=0)

	class Meta:
		unique_together = (("token", "address"),)
