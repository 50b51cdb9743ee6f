# SPDX-License-Identifier: Apache-2.0

import base64
import logging

from hflc.fabric.errors import ConfigurationError, IdentityError
from hflc.fabric.user import create_user

_logger = logging.getLogger(__name__ + ".organization")


def _handle_key_type(key):
    """Utility method to return the key based on key type."""

    key_pem = None
    if isinstance(key, str):
        with open(key, 'rb') as f:
            key_pem = f.read()

    elif isinstance(key, dict):
        if 'pem' in key:
            key_b64 = key.get('pem')
            key_pem = base64.standard_b64decode(key_b64)

        elif 'path' in key:
            with open(key.get('path'), 'rb') as f:
                key_pem = f.read()
    else:
        raise ValueError("was not able to determine key type/configuration"
                         " used in connection profile: {}".format(key))

    return key_pem


class Organization(object):
    """ An organization in the network.

    It contains several members and owns a set of peers.
    """

    def __init__(self, name='org'):
        """
        :param name: Name of the organization
        """
        self._name = name
        self._mspid = None
        self._peers = []
        self._orderers = []
        self._users = dict()

    @property
    def name(self):
        return self._name

    @property
    def mspid(self):
        return self._mspid

    @property
    def peers(self):
        """Names of the peers of the organization"""
        return list(self._peers)

    @property
    def orderers(self):
        return list(self._orderers)

    @property
    def users(self):
        return dict(self._users)

    def init_with_bundle(self, info):
        """
        Init the organization with given info dict
        :param info: Dict including all info, e.g., mspid, peers, users
        :return: True or False
        """
        if 'mspid' in info:
            self._mspid = info['mspid']
        if 'peers' in info:
            self._peers = info['peers']
        if 'orderers' in info:
            self._orderers = info['orderers']
        if 'users' in info:
            users = info['users']
            for name in users:
                try:
                    key_pem = _handle_key_type(users[name].get('private_key'))
                    cert_pem = _handle_key_type(users[name].get('cert'))
                    user = create_user(name, self._name, self._mspid,
                                       key_pem, cert_pem,
                                       users[name].get('roles'))
                except (AttributeError, TypeError, ValueError, OSError,
                        IdentityError) as e:
                    _logger.error("error happened initializing user via"
                                  " bundle: {}".format(e))
                    return False

                self._users[name] = user
        return True

    def get_user(self, name):
        """
        Return user instance with the name.
        :param name: Name of the user
        :return: User instance or None
        """
        if name in self._users:
            return self._users[name]
        return None


def create_org(name, info):
    """ Factory method to construct an organization instance
    :param name: Name of the organization
    :param info: Info dict for initialization
    :return: an organization instance
    :raises ConfigurationError: when the info cannot be loaded
    """
    org = Organization(name=name)
    if not org.init_with_bundle(info):
        raise ConfigurationError(f'Cannot load organization {name}'
                                 f' from the network profile')
    return org
