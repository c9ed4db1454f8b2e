from django.urls import path
from .views import get_balance, transfer, mine


urlpatterns = [
	path("balance/<str:address>", get_balance),
	path("transfer", transfer),
	path("mine", mine),
]
