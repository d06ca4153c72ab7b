"""
Configuration spécifique au module Orders.
"""
from marketplace.orders.models import OrderStatus

# Statut initial d'une commande issue de l'acceptation d'un devis
INITIAL_ORDER_STATUS: OrderStatus = OrderStatus.PENDING_PAYMENT
