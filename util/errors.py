# util/errors.py
class CasinoError(Exception):
    """Base class for every error the session layer raises on purpose."""


class ValidationError(CasinoError):
    """Malformed bet or outcome, insufficient bankroll, wrong phase."""


class NotFoundError(CasinoError):
    """A record that was never written."""


class StoreUnavailable(CasinoError):
    """Transient failure talking to the shared store."""


class Unauthorized(CasinoError):
    """Dealer-only action attempted without the dealer secret."""


class OwnershipViolation(CasinoError):
    """A client tried to write a path it does not own."""
