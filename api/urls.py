"""Public API surface for the bridge.

- /intents, /intents/<id>/verify: submission boundary and verification gate
- /admin/*: signed, permission-checked engine operations
"""

from django.urls import path
from .views_intents import create_intent, verify_intent
from .views_ops import (
	health, reconcile, attach_transaction, trigger_burns, complete_redemption, requeue_intent, close_intent, change_reserve,
)


urlpatterns = [
	path("health", health),
	path("intents", create_intent, name="create_intent"),
	path("intents/<uuid:intent_id>/verify", verify_intent, name="verify_intent"),
	path("admin/reconcile", reconcile, name="admin_reconcile"),
	path("admin/intents/<uuid:intent_id>/attach", attach_transaction, name="admin_attach"),
	path("admin/burns/trigger", trigger_burns, name="admin_trigger_burns"),
	path("admin/intents/<uuid:intent_id>/complete", complete_redemption, name="admin_complete"),
	path("admin/intents/<uuid:intent_id>/requeue", requeue_intent, name="admin_requeue"),
	path("admin/intents/<uuid:intent_id>/close", close_intent, name="admin_close"),
	path("admin/reserves", change_reserve, name="admin_reserves"),
]
