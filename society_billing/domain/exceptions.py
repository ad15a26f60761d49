"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ConfigurationError(DomainException):
    """Billing configuration is missing or incomplete for the requested operation"""

    pass


class DuplicateInvoiceError(DomainException):
    """A live invoice already exists for the unit and billing period"""

    pass


class OverpaymentError(DomainException):
    """Payment exceeds the remaining balance of the invoice"""

    pass


class ValidationError(DomainException):
    """Rule, charge, config or operation input is malformed"""

    pass


class NotFoundError(DomainException):
    """Referenced unit, invoice, rule or charge does not exist"""

    pass


class InvoiceStateError(DomainException):
    """Operation is not allowed for the invoice's current status"""

    pass


class DuplicateReminderError(DomainException):
    """A reminder was already sent to the unit on the same day"""

    pass


class SetupAlreadyFinalizedError(DomainException):
    """Billing bootstrap was already run for the society"""

    pass


class TransientStoreError(DomainException):
    """Persistence failure that may succeed on retry"""

    pass
