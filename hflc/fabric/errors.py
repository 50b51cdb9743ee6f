# SPDX-License-Identifier: Apache-2.0


class LedgerError(Exception):
    """Base class of every error raised by the lifecycle client."""


class TransientError(LedgerError):
    """A remote call failed in a way that may succeed when retried,
    e.g. an unreachable peer or a channel still propagating."""


class ConfigurationError(LedgerError):
    pass


class ChannelNotFoundError(ConfigurationError):
    pass


class AuthorizationError(LedgerError):
    pass


class AlreadyExistsError(LedgerError):
    pass


class JoinError(LedgerError):
    pass


class PackageError(LedgerError):
    pass


class AlreadyInstantiatedError(LedgerError):
    pass


class PolicyError(LedgerError):
    pass


class NotInstalledError(LedgerError):
    pass


class EndorsementError(LedgerError):
    pass


class OrderingError(LedgerError):
    pass


class ChaincodeError(LedgerError):
    """The chaincode answered a proposal with an error status."""

    def __init__(self, message, status=None, peer=None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.peer = peer


class IdentityError(LedgerError):
    pass


class TimedOutError(LedgerError, TimeoutError):
    """Confirmation of a transaction was not observed in time.

    The transaction may still commit later, it is unconfirmed, not failed.
    """


class TransactionRejectedError(LedgerError):
    """The transaction committed with a non VALID validation code."""

    def __init__(self, message, tx_id=None, tx_status=None):
        super().__init__(message)
        self.tx_id = tx_id
        self.tx_status = tx_status


class EventStreamClosedError(LedgerError):
    pass


class VerificationError(LedgerError):
    pass


class OperationCancelledError(LedgerError):
    pass


class RunAbortedError(LedgerError):
    """A lifecycle run stopped at `phase` because of `cause`."""

    def __init__(self, phase, cause):
        super().__init__(f'{phase} failed: {cause}')
        self.phase = phase
        self.cause = cause
