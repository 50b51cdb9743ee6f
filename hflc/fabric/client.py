# SPDX-License-Identifier: Apache-2.0

import json
import logging

from hflc.fabric.channel.channel_eventhub import ChaincodeEventHub
from hflc.fabric.context import NetworkContext
from hflc.fabric.errors import ConfigurationError, IdentityError
from hflc.fabric.orderer import Orderer
from hflc.fabric.organization import Organization, create_org
from hflc.fabric.peer import Peer
from hflc.fabric.user import User

_logger = logging.getLogger(__name__)


class Client(object):
    """Main interaction handler with end user.

    The client holds the network profile (organizations, their users and
    peers, orderers) and the backend the requests are sent through.

    :param net_profile: path of a JSON network profile, or its dict
    :param backend: LedgerBackend used for the remote calls
    """

    def __init__(self, net_profile=None, backend=None):
        """ Construct client"""
        self.network_info = dict()
        self._backend = backend

        self._organizations = dict()
        self._peers = dict()
        self._orderers = dict()
        self._event_hubs = dict()

        if net_profile:
            _logger.debug("Init client with profile={}".format(net_profile))
            self.init_with_net_profile(net_profile)

    def init_with_net_profile(self, profile_path='network.json'):
        """
        Load the connection profile from external file to network_info.

        Init the handlers for orgs, peers, orderers

        :param profile_path: The connection profile file path, or the
         profile dict
        :return:
        """
        if isinstance(profile_path, dict):
            self.network_info = profile_path
        else:
            try:
                with open(profile_path, 'r') as profile:
                    self.network_info = json.load(profile)
            except (OSError, ValueError) as e:
                raise ConfigurationError(f'Cannot load network profile'
                                         f' {profile_path}: {e}') from e

        # Init orderer nodes
        orderers = self.get_net_info('orderers') or {}
        _logger.debug("Import orderers = {}".format(orderers.keys()))
        for name in orderers:
            orderer = Orderer(name=name)
            if not orderer.init_with_bundle(orderers[name]):
                raise ConfigurationError(f'Invalid orderer {name} in'
                                         f' network profile')
            self._orderers[name] = orderer

        # Init peer nodes
        peers = self.get_net_info('peers') or {}
        _logger.debug("Import peers = {}".format(peers.keys()))
        for name in peers:
            peer = Peer(name=name)
            if not peer.init_with_bundle(peers[name]):
                raise ConfigurationError(f'Invalid peer {name} in'
                                         f' network profile')
            self._peers[name] = peer

        # Init organizations
        orgs = self.get_net_info('organizations') or {}
        for name in orgs:
            _logger.debug("create org with name={}".format(name))
            org = create_org(name, orgs[name])
            for peer_name in org.peers:
                if peer_name not in self._peers:
                    raise ConfigurationError(f'Peer {peer_name} of org'
                                             f' {name} is not defined')
                self._peers[peer_name].msp_id = org.mspid
            self._organizations[name] = org

    def get_net_info(self, *key_path):
        """
        Get the info from self.network_info
        :param key_path: path of the key, e.g., a.b.c means info['a']['b']['c']
        :return: The value, or None
        """
        result = self.network_info
        if result:
            for k in key_path:
                try:
                    result = result[k]
                except KeyError:
                    _logger.warning(f'No key path {key_path} exists'
                                    f' in net info')
                    return None

        return result

    @property
    def backend(self):
        """The LedgerBackend requests are sent through"""
        if self._backend is None:
            raise ConfigurationError('No ledger backend configured')
        return self._backend

    @backend.setter
    def backend(self, backend):
        self._backend = backend
        self._event_hubs = dict()

    @property
    def organizations(self):
        """
        Get the organizations in the network.

        :return: organizations as dict
        """
        return self._organizations

    @property
    def orderers(self):
        """
        Get the orderers in the network.

        :return: orderers as dict
        """
        return self._orderers

    @property
    def peers(self):
        """
        Get the peers instance in the network.

        :return: peers as dict
        """
        return self._peers

    def get_organization(self, name):
        """
        Get an organization instance with the name.

        :param name: Name of the organization
        :return: The organization instance
        :raises ConfigurationError: when unknown
        """
        if isinstance(name, Organization):
            return name
        if name not in self._organizations:
            raise ConfigurationError(f'Unknown organization {name}')
        return self._organizations[name]

    def msp_ids(self):
        """Set of the msp ids of the organizations in the profile"""
        return {org.mspid for org in self._organizations.values()}

    def get_user(self, org_name, name):
        """
        Get a user instance.
        :param org_name: Name of org belongs to
        :param name: Name of the user
        :return: user instance or None
        """
        if org_name in self.organizations:
            org = self.organizations[org_name]
            return org.get_user(name)

        return None

    def resolve_signing_identity(self, organization, user_label):
        """Get the signing identity of a user of an organization.

        :param organization: name of the organization
        :param user_label: name of the user, e.g. 'Admin'
        :return: User
        :raises IdentityError: when the organization or user is unknown
        """
        org_name = organization.name \
            if isinstance(organization, Organization) else organization
        user = self.get_user(org_name, user_label)
        if user is None:
            _logger.error(f'Unknown identity {user_label} of {org_name}')
            raise IdentityError(f'No identity {user_label} in organization'
                                f' {org_name}')
        return user

    def get_orderer(self, name):
        """
        Get an orderer instance with the name.
        :param name:  Name of the orderer node.
        :return: The orderer instance or None.
        """
        if name in self.orderers:
            return self.orderers[name]
        else:
            _logger.warning(f"Cannot find orderer with name {name}")
            return None

    def get_peer(self, name):
        """
        Get a peer instance with the name.
        :param name:  Name of the peer node.
        :return: The peer instance or None.
        """
        if name in self._peers:
            return self._peers[name]
        else:
            _logger.warning(f"Cannot find peer with name {name}")
            return None

    def resolve_orderer(self, orderer=None):
        """Get an orderer by instance, name or endpoint, or the first
        orderer of the profile when none is given.

        :raises ConfigurationError: when no orderer matches
        """
        if isinstance(orderer, Orderer):
            return orderer
        if orderer is None:
            if not self._orderers:
                raise ConfigurationError('No orderer in network profile')
            return next(iter(self._orderers.values()))
        if orderer in self._orderers:
            return self._orderers[orderer]
        for o in self._orderers.values():
            if o.endpoint == orderer:
                return o
        raise ConfigurationError(f'Cannot find orderer {orderer}')

    def get_target_peers(self, peers):
        target_peers = []
        for _peer in peers:
            if isinstance(_peer, Peer):
                target_peers.append(_peer)
            elif isinstance(_peer, str):
                peer = self.get_peer(_peer)
                if peer is not None:
                    target_peers.append(peer)
                else:
                    err_msg = f'Cannot find peer with name {_peer}'
                    _logger.error(err_msg)
                    raise ConfigurationError(err_msg)
            else:
                err_msg = f'{_peer} should be a peer name or a Peer instance'
                _logger.error(err_msg)
                raise ConfigurationError(err_msg)

        return target_peers

    def new_context(self, identity, organization, channel_id=None,
                    targets=None):
        """Build the context of an operation.

        :param identity: User, or the name of a user of the organization
        :param organization: Organization or its name
        :param channel_id: channel targeted, may be None
        :param targets: peers or peer names, defaults to the peers of the
         organization
        :return: NetworkContext
        """
        org = self.get_organization(organization)
        if not isinstance(identity, User):
            identity = self.resolve_signing_identity(org.name, identity)
        if targets is None:
            targets = org.peers
        return NetworkContext(identity, org, channel_id,
                              self.get_target_peers(targets))

    def get_event_hub(self, peer, channel_id):
        """Get the chaincode event hub of a peer on a channel.

        One hub is kept per (peer, channel).
        """
        key = (peer.name, channel_id)
        if key not in self._event_hubs:
            self._event_hubs[key] = ChaincodeEventHub(self.backend, peer,
                                                      channel_id)
        return self._event_hubs[key]
