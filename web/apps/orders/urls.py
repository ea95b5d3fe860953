from django.urls import path
from .views import CartItemView, CartView, CartDetailsView
from .views import OrdersCollectionView, RetrieveOrderView, ReceiptDocumentView
from .views import PaymentMethodsView, OpenOrderPaymentView, TerminalPaymentView, CardPaymentView

app_name = "orders"

urlpatterns = [
    path("cart/", CartView.as_view(), name="cart"),
    path("cart/items/<slug:alias>/", CartItemView.as_view(), name="cart-item"),  # POST add / DELETE remove
    path("cart/<uuid:order_id>/", CartDetailsView.as_view(), name="cart-details"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),
    path("orders/payment/", OpenOrderPaymentView.as_view(), name="orders-payment"),
    path("orders/payment-methods/", PaymentMethodsView.as_view(), name="payment-methods"),
    path("orders/pay/terminal/", TerminalPaymentView.as_view(), name="pay-terminal"),
    path("orders/pay/card/", CardPaymentView.as_view(), name="pay-card"),
    path("orders/<uuid:order_id>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("orders/<uuid:order_id>/receipt/", ReceiptDocumentView.as_view(), name="orders-receipt"),
]
