from rest_framework import serializers

from .models import PaymentTransaction


class PaymentTransactionSerializer(serializers.ModelSerializer):

    class Meta:
        model = PaymentTransaction
        fields = ['id', 'booking', 'order_ref', 'payment_ref', 'amount', 'currency',
                  'outcome', 'failure_reason', 'created_at', 'updated_at']
        read_only_fields = fields


class OrderCreateSerializer(serializers.Serializer):
    """Amount defaults to the booking's estimated cost"""
    amount = serializers.IntegerField(min_value=1, required=False, help_text="Minor units (paise)")
    currency = serializers.CharField(max_length=3, required=False)


class CheckoutVerifySerializer(serializers.Serializer):
    """Fields posted back by the Razorpay checkout widget"""
    razorpay_order_id = serializers.CharField()
    razorpay_payment_id = serializers.CharField()
    razorpay_signature = serializers.CharField()
