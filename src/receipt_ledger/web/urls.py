"""
URL configuration for the receipt ledger endpoints.
"""

from django.urls import path

from . import views

urlpatterns = [
    # Scheduled trigger (bearer CRON_SECRET)
    path("api/cron/process-receipts", views.process_receipts, name="process_receipts"),
    # Receipt intake into the unprocessed zone
    path("api/upload", views.upload_receipts, name="upload"),
    path("api/health", views.health, name="health"),
]
