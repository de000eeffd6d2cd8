"""
Domain constants used across services/routers.
"""

# Error codes that mean the shopper walked away rather than being declined
ABANDONMENT_ERROR_CODES = frozenset({"unknown", "return_to_site"})

# Literal text some gateways put in query strings instead of omitting the key
NULL_LITERALS = frozenset({"", "null", "undefined", "none"})

# Condition names reported to callers (see domain/errors.py for HTTP mapping)
ORDER_NOT_FOUND = "order_not_found"
CLASSIFICATION_AMBIGUOUS = "classification_ambiguous"
NOTIFICATION_DISPATCH_FAILED = "notification_dispatch_failed"
MALFORMED_INPUT = "malformed_input"

# Order numbers: ORD-<epoch millis>-<suffix>
ORDER_NUMBER_PREFIX = "ORD-"
ORDER_NUMBER_SUFFIX_LENGTH = 9

# Estimated delivery by shipping zone
DELIVERY_ESTIMATES = {
    "bogota": "1-2 días",
    "medellin": "2-3 días",
    "cali": "2-3 días",
    "barranquilla": "3-4 días",
    "cartagena": "3-4 días",
    "other": "5-7 días",
}
DEFAULT_DELIVERY_ESTIMATE = "5-7 días"

# User-facing payment status messages
PAYMENT_STATUS_MESSAGES = {
    "approved": "Pago aprobado exitosamente",
    "pending": "Pago pendiente de procesamiento",
    "in_process": "Pago en proceso de revisión",
    "rejected": "Pago rechazado",
    "cancelled": "Pago cancelado",
    "refunded": "Pago reembolsado",
    "charged_back": "Pago revertido",
}
