"""Shared fixtures: a deterministic stub chain, a config pointing at it, intent and admin factories."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone

from core.adapters.chain_adapter import StubChainAdapter
from core.config import BridgeConfig
from core.constants import ZERO_ADDRESS, to_units
from core.models import AdminWallet, Direction, Intent, IntentStatus
from core.permissions import ALL_PERMISSIONS, AdminIdentity

PKRSC = "0x1111111111111111111111111111111111111111"
USDC = "0x2222222222222222222222222222222222222222"
TREASURY = "0x3333333333333333333333333333333333333333"
ALICE = "0xabc0000000000000000000000000000000000abc"
BOB = "0xb0b000000000000000000000000000000000b0b0"
ADMIN_WALLET = "0xad00000000000000000000000000000000000001"


@pytest.fixture
def config():
	return BridgeConfig.from_settings().with_overrides(
		chain_backend="stub",
		token_address=PKRSC,
		deposit_token_address=USDC,
		treasury_address=TREASURY,
		treasury_private_key="",
		required_confirmations=3,
		match_tolerance=Decimal("0.001"),
		mint_fee_percentage=Decimal("0.25"),
		redemption_fee_percentage=Decimal("0.5"),
		daily_burn_limit=None,
		receipt_timeout_seconds=1,
		admin_api_secret="test-secret",
	)


@pytest.fixture
def chain(db, config):
	stub = StubChainAdapter(config.token_address, config.treasury_address, config.token_decimals)
	stub.mine(5)
	return stub


@pytest.fixture
def admin():
	return AdminIdentity(ADMIN_WALLET, ALL_PERMISSIONS)


@pytest.fixture
def admin_wallet(db):
	return AdminWallet.objects.create(wallet_address=ADMIN_WALLET, permissions=sorted(ALL_PERMISSIONS))


@pytest.fixture
def make_intent(db, config):
	"""
	Build an intent directly in the given state. Defaults to a verified,
	unmatched deposit created an hour ago.
	"""
	def _make(direction=Direction.DEPOSIT, wallet=ALICE, amount="100", status=IntentStatus.PENDING, created_at=None, **extra):
		declared = Decimal(amount)
		fields = dict(
			direction=direction,
			wallet_address=wallet,
			declared_amount=declared,
			counter_amount=declared,
			status=status,
			email_verified=status != IntentStatus.PENDING_VERIFICATION,
			created_at=created_at or timezone.now() - timedelta(hours=1),
		)
		fields.update(extra)
		return Intent.objects.create(**fields)
	return _make


@pytest.fixture
def fund(chain):
	"""Mint `amount` of `token` straight to `address` on the stub chain."""
	def _fund(token, address, amount):
		return chain.transfer(token, ZERO_ADDRESS, address, to_units(amount))
	return _fund
