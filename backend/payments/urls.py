from django.urls import path
from . import views

app_name = 'payments'

urlpatterns = [
    path('webhook/', views.razorpay_webhook, name='razorpay-webhook'),
    path('<int:booking_id>/order/', views.create_payment_order, name='create-order'),
    path('<int:booking_id>/verify/', views.verify_payment, name='verify-payment'),
    path('<int:booking_id>/cancel/', views.cancel_payment, name='cancel-payment'),
]
