# SPDX-License-Identifier: Apache-2.0

from hflc.fabric.errors import IdentityError


def create_serialized_identity(user):
    """Serialize the identity of a user: msp id and PEM certificate.

    :param user: The user object
    :return: identity bytes
    """
    return user.msp_id.encode() + b'\n' + user.enrollment.cert


class TXContext(object):
    """ A class represent Transaction context."""

    def __init__(self, user, crypto):
        """ Construct transaction context

        Args:
            user: user signing the transaction
            crypto: crypto
        """
        self._user = user
        self._crypto = crypto
        self._identity = create_serialized_identity(user)
        self._nonce = crypto.generate_nonce(24)
        hash_func = crypto.hash
        self._tx_id = hash_func(self._nonce + self._identity).hexdigest()

    @property
    def tx_id(self):
        """ Get transaction id."""
        return self._tx_id

    @property
    def nonce(self):
        """ Get nonce"""
        return self._nonce

    @property
    def identity(self):
        """Get identity"""
        return self._identity

    def sign(self, plain_text):
        """Sign the text"""
        return self._crypto.sign(self._user.enrollment.private_key,
                                 plain_text)

    @property
    def user(self):
        """Get request user"""
        return self._user

    @property
    def crypto(self):
        return self._crypto


def validate(tx_context):
    """Validate transaction context

    Args:
        tx_context: transaction context

    Returns: transaction context if no error

    Raises:
            IdentityError: Invalid transaction context

    """
    if not tx_context:
        raise IdentityError("Missing transaction context object")

    if not tx_context.crypto:
        raise IdentityError("Missing 'crypto' parameter "
                            "in the transaction context object")

    if not tx_context.user:
        raise IdentityError("Missing 'user' parameter "
                            "in the transaction context object")
    return tx_context


def create_tx_context(user, crypto=None):
    """Create transaction context

    Args:
        user: user
        crypto: crypto, defaults to the crypto suite of the user

    Returns: a transaction context instance

    """
    if not user or not user.is_enrolled():
        raise IdentityError("Cannot create a transaction context without"
                            " an enrolled user")
    tx_context = TXContext(user, crypto or user.cryptoSuite)
    return validate(tx_context)
