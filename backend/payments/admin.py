from django.contrib import admin
from .models import PaymentTransaction


@admin.register(PaymentTransaction)
class PaymentTransactionAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "order_ref", "amount", "currency", "outcome", "created_at")
    list_filter = ("outcome", "currency")
    search_fields = ("order_ref", "payment_ref", "booking__id")
    # Outcomes are reconciled from the gateway only
    readonly_fields = ("outcome", "order_ref", "payment_ref", "amount", "created_at", "updated_at")
