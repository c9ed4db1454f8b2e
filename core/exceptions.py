"""Error taxonomy for the reconciliation engine.

Transient chain errors abort a cycle without mutating state; terminal errors
move an intent into an explicit failure status. Authorization failures use
django.core.exceptions.PermissionDenied.
"""


class BridgeError(Exception):
	"""Base class for engine errors."""


class ChainUnavailable(BridgeError):
	"""RPC timeout / node unreachable. The cycle is abandoned and retried later."""


class ChainRevert(BridgeError):
	"""The chain rejected or reverted a transaction."""


class SettlementPending(BridgeError):
	"""A mint/burn was broadcast but its outcome is not known yet."""

	def __init__(self, tx_hash, message=""):
		super().__init__(message or f"outcome of {tx_hash} unknown")
		self.tx_hash = tx_hash


class ClaimConflict(BridgeError):
	"""The transfer hash was claimed by another intent first."""


class InsufficientTreasuryBalance(BridgeError):
	pass


class DailyBurnLimitExceeded(BridgeError):
	pass


class ReserveUnderflow(BridgeError):
	"""Applying the delta would take the reserve below zero."""


class LeaseHeld(BridgeError):
	"""Another invocation holds the custodial signer lease."""


class ManualAttachError(BridgeError):
	pass


class InvalidTransition(BridgeError):
	pass


class VerificationError(BridgeError):
	status_code = 400


class AlreadyVerified(VerificationError):
	pass


class CodeExpired(VerificationError):
	status_code = 410


class AttemptsExhausted(VerificationError):
	status_code = 429


class InvalidCode(VerificationError):
	def __init__(self, attempts_left):
		super().__init__(f"Invalid verification code. {attempts_left} attempt(s) remaining.")
		self.attempts_left = attempts_left


class NotAwaitingVerification(VerificationError):
	status_code = 409
