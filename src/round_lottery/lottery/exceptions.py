"""
Lottery exceptions

Every rejected call raises one of these; the web layer maps the three
families onto HTTP status codes.
"""


class LotteryError(Exception):
    """Base class for all engine errors"""
    pass


# ============ Authorization / precondition ============

class PreconditionError(LotteryError):
    """Caller-correctable state or permission problem"""
    pass


class Unauthorized(PreconditionError):
    """Caller is not the administrator"""
    def __init__(self, caller):
        self.caller = caller
        super().__init__(f"{caller} is not authorized for this operation")


class RoundAlreadyActive(PreconditionError):
    """A round is still accepting entries"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} is still active")


class RoundInactive(PreconditionError):
    """No round is accepting entries"""
    pass


class NotEnded(PreconditionError):
    """Round is still running, was never started, or is already settled"""
    pass


# ============ Validation ============

class ValidationError(LotteryError):
    """Malformed request"""
    pass


class InvalidQuantity(ValidationError):
    def __init__(self, quantity):
        self.quantity = quantity
        super().__init__(f"Ticket quantity must be at least 1, got {quantity}")


class InvalidIdentity(ValidationError):
    def __init__(self, identity):
        self.identity = identity
        super().__init__(f"Invalid participant address: {identity!r}")


class PaymentMismatch(ValidationError):
    """Paid amount differs from quantity x ticket price"""
    def __init__(self, expected, paid):
        self.expected = expected
        self.paid = paid
        super().__init__(f"Payment mismatch: expected {expected} wei, got {paid} wei")


class CapExceeded(ValidationError):
    """Purchase would push the buyer over the per-address cap"""
    def __init__(self, identity, held, requested, cap):
        self.identity = identity
        self.held = held
        self.requested = requested
        self.cap = cap
        super().__init__(
            f"{identity} holds {held} tickets; buying {requested} more exceeds the cap of {cap}"
        )


class NoEntries(ValidationError):
    """Pool is empty"""
    pass


class DirectDepositRejected(LotteryError):
    """Value sent outside of a ticket purchase"""
    pass


class ArchiveConflict(LotteryError):
    """An outcome is already archived for this round id"""
    def __init__(self, round_id):
        self.round_id = round_id
        super().__init__(f"Round {round_id} is already archived")


# ============ Transfer ============

class TransferError(LotteryError):
    """Fatal to the enclosing call; every effect of the call is rolled back"""
    pass


class TransferFailed(TransferError):
    def __init__(self, recipient, amount, purpose):
        self.recipient = recipient
        self.amount = amount
        self.purpose = purpose
        super().__init__(f"Transfer of {amount} wei to {recipient} failed ({purpose})")


class ReentrancyRejected(TransferError):
    """Nested settlement attempt"""
    pass
