"""Custom exceptions for the field sales order composer."""

class FieldSalesError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv

class BusinessLogicError(FieldSalesError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)

class NotFoundError(FieldSalesError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


# Local validation: no network call is issued and staged state is unchanged.

class ValidationError(BusinessLogicError):
    """A draft line or selection failed local validation."""
    def __init__(self, message, payload=None):
        super().__init__(message, 422, payload)

class MissingFieldError(ValidationError):
    """Raised when required fields are still unselected."""
    def __init__(self, fields):
        self.fields = list(fields)
        message = ('Please fill all the fields. Missing: ' + ', '.join(self.fields))
        super().__init__(message, payload={'fields': self.fields})

class ReadOnlyFieldError(ValidationError):
    """Raised when user input targets a server-derived field."""
    def __init__(self, field):
        self.field = field
        super().__init__(f'Field "{field}" is set by the server and cannot be edited', payload={'field': field})

class UnknownOptionError(ValidationError):
    """Raised when a selection is not among the currently resolved options."""
    def __init__(self, field, value):
        self.field = field
        self.value = value
        super().__init__(f'"{value}" is not an available option for {field}', payload={'field': field})

class EmptyOrderError(ValidationError):
    """Raised when a commit is attempted with no valid lines."""
    def __init__(self):
        super().__init__('The order has no lines to submit')

class InsufficientBalanceError(ValidationError):
    """Raised when a line would exceed the remaining balance of its policy."""
    def __init__(self, policy_key, requested, headroom, remaining):
        from fieldsales.utils.formatters import money
        self.policy_key = policy_key
        self.requested = requested
        self.headroom = headroom
        self.remaining = remaining
        message = (
            f"Sorry, you can't add this product. The total amount exceeds the "
            f"remaining amount of the policy {money(remaining)} "
            f"(available {money(headroom)}, requested {money(requested)})."
        )
        super().__init__(message, payload={
            'policy_key': policy_key,
            'headroom': str(headroom),
            'remaining_amount': str(remaining),
        })


# Resolution failures: the downstream chain stays empty.

class PolicyExhaustedError(BusinessLogicError):
    """No policy of the selected type has a positive remaining balance."""
    def __init__(self, message='Balance exhausted for all policies.'):
        super().__init__(message, status_code=409)

class NoReferencePolicyError(BusinessLogicError):
    """The selected policy has no allowed reference policy."""
    def __init__(self, policy_id):
        self.policy_id = policy_id
        super().__init__('No reference policies found', status_code=409, payload={'policy_id': policy_id})

class InvalidStateError(BusinessLogicError):
    """Raised on an operation not permitted in the current order state."""
    def __init__(self, message):
        super().__init__(message, status_code=409)

class CommitInProgressError(InvalidStateError):
    """Raised when a second commit starts while one is outstanding."""
    def __init__(self):
        super().__init__('A commit is already in progress for this order')


# Remote failures.

class NetworkError(FieldSalesError):
    """A remote call failed or could not be reached."""
    def __init__(self, message, endpoint=None, status_code=502, payload=None):
        self.endpoint = endpoint
        super().__init__(message, status_code, payload)

class MalformedResponseError(NetworkError):
    """A remote response did not match the expected envelope."""
    def __init__(self, message, endpoint=None):
        super().__init__(message, endpoint=endpoint)

class SessionExpiredError(NetworkError):
    """The internal API rejected the bearer token."""
    def __init__(self, endpoint=None):
        super().__init__('Invalid token', endpoint=endpoint, status_code=401)


class CommitError(FieldSalesError):
    """Base class for two-phase commit failures."""
    def __init__(self, message, payload=None):
        super().__init__(message, 502, payload)

class OrderRejectedError(CommitError):
    """Phase 1 answered without an order id or sequence; phase 2 was not attempted."""
    def __init__(self, order_id=None, order_sequence=None):
        self.order_id = order_id
        self.order_sequence = order_sequence
        super().__init__('Error adding order', payload={'code': 'order_rejected'})

class PartialCommitError(CommitError):
    """
    Phase 1 succeeded but phase 2 failed.

    The external order service holds the order while the local store has no
    record of it. Carries the external identity for manual reconciliation.
    """
    def __init__(self, order_id, order_sequence, cause=None):
        self.order_id = order_id
        self.order_sequence = order_sequence
        self.cause = cause
        super().__init__(
            f'Order {order_sequence} (#{order_id}) was created in the ERP but could not be '
            f'recorded locally',
            payload={'code': 'partial_commit', 'order_id': order_id, 'order_sequence': order_sequence}
        )
