"""Explicit configuration object for the reconciliation engine.

Built once (BridgeConfig.from_settings()) at process start, then handed to every
component. Nothing downstream reads settings or the environment on its own.
"""

from dataclasses import dataclass, replace
from datetime import timedelta
from decimal import Decimal

from django.conf import settings


@dataclass(frozen=True)
class BridgeConfig:
	chain_backend: str
	rpc_url: str
	rpc_timeout_seconds: int
	token_address: str
	deposit_token_address: str
	treasury_address: str
	treasury_private_key: str
	token_decimals: int = 6
	required_confirmations: int = 3
	match_tolerance: Decimal = Decimal("0.001")
	match_window: timedelta = timedelta(hours=24)
	cold_start_lookback_blocks: int = 2000
	max_scan_blocks: int = 10000
	mint_fee_percentage: Decimal = Decimal("0.25")
	redemption_fee_percentage: Decimal = Decimal("0.5")
	settlement_batch_size: int = 10
	receipt_timeout_seconds: int = 120
	cycle_timeout_seconds: int = 240
	signer_lease_seconds: int = 600
	inflight_timeout: timedelta = timedelta(minutes=30)
	daily_burn_limit: Decimal | None = None
	verification_max_attempts: int = 5
	verification_code_ttl: timedelta = timedelta(minutes=15)
	admin_api_secret: str = ""

	def __post_init__(self):
		# Addresses are compared case-insensitively everywhere; store them lower-cased.
		for name in ("token_address", "deposit_token_address", "treasury_address"):
			object.__setattr__(self, name, getattr(self, name).lower())

	@classmethod
	def from_settings(cls, source=None) -> "BridgeConfig":
		s = source or settings
		return cls(
			chain_backend=s.CHAIN_BACKEND,
			rpc_url=s.CHAIN_RPC_URL,
			rpc_timeout_seconds=s.CHAIN_RPC_TIMEOUT_SECONDS,
			token_address=s.PKRSC_TOKEN_ADDRESS,
			deposit_token_address=s.DEPOSIT_TOKEN_ADDRESS,
			treasury_address=s.TREASURY_ADDRESS,
			treasury_private_key=s.TREASURY_PRIVATE_KEY,
			token_decimals=s.TOKEN_DECIMALS,
			required_confirmations=s.REQUIRED_CONFIRMATIONS,
			match_tolerance=Decimal(s.MATCH_AMOUNT_TOLERANCE),
			match_window=timedelta(hours=s.MATCH_WINDOW_HOURS),
			cold_start_lookback_blocks=s.COLD_START_LOOKBACK_BLOCKS,
			max_scan_blocks=s.MAX_SCAN_BLOCKS,
			mint_fee_percentage=Decimal(s.MINT_FEE_PERCENTAGE),
			redemption_fee_percentage=Decimal(s.REDEMPTION_FEE_PERCENTAGE),
			settlement_batch_size=s.SETTLEMENT_BATCH_SIZE,
			receipt_timeout_seconds=s.RECEIPT_TIMEOUT_SECONDS,
			cycle_timeout_seconds=s.CYCLE_TIMEOUT_SECONDS,
			signer_lease_seconds=s.SIGNER_LEASE_SECONDS,
			inflight_timeout=timedelta(minutes=s.INFLIGHT_TIMEOUT_MINUTES),
			daily_burn_limit=s.DAILY_BURN_LIMIT,
			verification_max_attempts=s.VERIFICATION_MAX_ATTEMPTS,
			verification_code_ttl=timedelta(minutes=s.VERIFICATION_CODE_TTL_MINUTES),
			admin_api_secret=s.ADMIN_API_SECRET,
		)

	def with_overrides(self, **changes) -> "BridgeConfig":
		return replace(self, **changes)
