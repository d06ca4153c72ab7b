"""
MWRD Marketplace - moteur de workflow RFQ -> Devis -> Commande.
"""

__version__ = "1.0.0"
