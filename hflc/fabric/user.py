# SPDX-License-Identifier: Apache-2.0

import logging

from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.serialization import load_pem_private_key

from hflc.fabric.errors import IdentityError
from hflc.util.consts import ROLE_ADMIN, ROLE_MEMBER
from hflc.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__ + ".user")


class Enrollment(object):
    """ Signing credential of a user: private key and PEM certificate. """

    def __init__(self, private_key, cert):
        self._private_key = private_key
        self._cert = cert

    @property
    def private_key(self):
        """Get the private key"""
        return self._private_key

    @property
    def cert(self):
        """Get the PEM encoded certificate"""
        return self._cert


class User(object):
    """A signing identity of an organization member."""

    def __init__(self, name, org, msp_id=None, enrollment=None,
                 roles=None, crypto_suite=None):
        """Constructor for a user.

        :param name: name
        :param org: org
        :param msp_id: msp id of the org the user belongs to
        :param enrollment: Enrollment holding key and certificate
        :param roles: list of roles, e.g. ['admin']
        :param crypto_suite: the crypto used to sign with the enrollment key
        :return: An instance of user object
        """
        self._name = name
        self._org = org
        self._msp_id = msp_id
        self._enrollment = enrollment
        self._roles = list(roles or [])
        self._cryptoSuite = crypto_suite

    @property
    def name(self):
        """Get the user name
        :return: The user name
        """
        return self._name

    @property
    def org(self):
        """Get the org
        :return: The org
        """
        return self._org

    @property
    def roles(self):
        """Get the roles
        :return: The roles
        """
        return self._roles

    @property
    def enrollment(self):
        """Get the enrollment"""
        return self._enrollment

    @property
    def msp_id(self):
        """Get the msp_id"""
        return self._msp_id

    @property
    def cryptoSuite(self):
        """Get the cryptoSuite"""
        return self._cryptoSuite

    @property
    def role(self):
        """Highest role of the user inside its msp"""
        return ROLE_ADMIN if self.is_admin() else ROLE_MEMBER

    def is_admin(self):
        return ROLE_ADMIN in self._roles

    def is_enrolled(self):
        """Check if user enrolled

        :return: boolean
        """
        return self._enrollment is not None

    def sign(self, message):
        """Sign bytes with the enrollment private key.

        :param message: bytes to sign
        :return: signature bytes
        """
        if not self.is_enrolled():
            raise IdentityError(f'User {self._name} has no enrollment')
        return self._cryptoSuite.sign(self._enrollment.private_key, message)


def validate(user):
    """Check the user.

    :param user: A user object
    :return: A validated user object
    :raises IdentityError: When user property is invalid
    """
    if not user:
        raise IdentityError("User cannot be empty.")

    if not user.name:
        raise IdentityError("Missing user name.")

    enrollment = user.enrollment
    if not enrollment:
        raise IdentityError("Missing user enrollment.")

    if not enrollment.cert:
        raise IdentityError("Missing user enrollment cert.")

    if not enrollment.private_key:
        raise IdentityError("Missing user enrollment key.")

    if not user.msp_id:
        raise IdentityError("Missing msp id.")

    if not user.cryptoSuite:
        raise IdentityError("Missing crypto suite.")

    return user


def create_user(name, org, msp_id, key_pem, cert_pem, roles=None,
                crypto_suite=None):
    """Create user

    :param name: user's name
    :param org: org name
    :param msp_id: msp id for the user
    :param key_pem: identity private key pem encoded
    :param cert_pem: identity public cert pem encoded
    :param roles: roles of the user inside its org
    :param crypto_suite: the cryptoSuite used to sign
         (Default value = ecies())
    :return: a user instance
    """

    _logger.debug("Create user with {}:{}:{}".format(name, org, msp_id))

    try:
        private_key = load_pem_private_key(key_pem, None, default_backend())
    except (TypeError, ValueError) as e:
        raise IdentityError(f'Cannot load private key of user {name}:'
                            f' {e}') from e
    enrollment = Enrollment(private_key, cert_pem)

    user = User(name, org, msp_id, enrollment, roles,
                crypto_suite or ecies())

    return validate(user)
