"""URL routing for the bridge API + the local chain stub.


The /api/ namespace exposes intent submission and the admin/cron operations;
/stub/chain/ exposes the deterministic chain used when CHAIN_BACKEND=stub.
"""

from django.contrib import admin
from django.urls import path, include


urlpatterns = [
	path("admin/", admin.site.urls),
	path("api/", include("api.urls")),
	path("stub/chain/", include("chain_stub.urls")),
]
