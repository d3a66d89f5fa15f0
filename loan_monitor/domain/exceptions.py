"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class ExchangeAPIError(DomainException):
    """Exchange API returned an error or is unavailable"""

    pass


class ObligationConfigError(DomainException):
    """Obligation document is missing fields or holds invalid values"""

    pass


class RepaymentActionError(DomainException):
    """A single repayment action could not be completed"""

    pass


class CycleInProgressError(DomainException):
    """A repayment cycle is already running"""

    pass
