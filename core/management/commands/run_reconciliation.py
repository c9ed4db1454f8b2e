"""Cron entry point: run one reconciliation cycle and print its report as JSON."""

import json

from django.core.management.base import BaseCommand

from core.config import BridgeConfig
from core.services import run_reconciliation_cycle


class Command(BaseCommand):
	help = "Observe transfers, match intents, gate confirmations and settle (one idempotent cycle)."

	def add_arguments(self, parser):
		parser.add_argument("--no-settle", action="store_true", help="Stop after the confirmation gate; no mint/burn.")

	def handle(self, *args, **options):
		config = BridgeConfig.from_settings()
		report = run_reconciliation_cycle(config, settle=not options["no_settle"])
		self.stdout.write(json.dumps(report.as_dict(), indent=2))
		if report.aborted:
			self.stderr.write(self.style.WARNING(f"cycle aborted: {report.aborted}"))
