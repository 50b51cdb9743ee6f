# SPDX-License-Identifier: Apache-2.0

import logging
from collections import namedtuple

from hflc.fabric.errors import ConfigurationError, JoinError, LedgerError
from hflc.fabric.transaction.tx_context import create_tx_context, \
    create_serialized_identity
from hflc.fabric.transaction.tx_request import build_proposal, \
    sign_proposal
from hflc.util.retry import RetryPolicy, DEFAULT_RESMGMT_OPTS

_logger = logging.getLogger(__name__)

CSCC = 'cscc'
JOIN_CHAIN = 'JoinChain'


class ChannelDefinition(namedtuple('ChannelDefinition',
                                   ['channel_id', 'config_tx',
                                    'signing_identities'])):
    """Configuration of a channel to create.

    :param channel_id: name of the channel
    :param config_tx: channel configuration transaction, opaque bytes
     produced by an external tool
    :param signing_identities: Users signing the configuration
    """
    __slots__ = ()

    def __new__(cls, channel_id, config_tx, signing_identities):
        return super().__new__(cls, channel_id, config_tx,
                               tuple(signing_identities or ()))


def load_channel_definition(channel_id, config_tx_path, signing_identities):
    """Read a channel configuration transaction file.

    :param channel_id: name of the channel
    :param config_tx_path: path of the channel artifact
    :param signing_identities: Users signing the configuration
    :return: ChannelDefinition
    :raises ConfigurationError: when the file cannot be read
    """
    try:
        with open(config_tx_path, 'rb') as f:
            config_tx = f.read()
    except OSError as e:
        raise ConfigurationError(f'Cannot read channel configuration'
                                 f' {config_tx_path}: {e}') from e
    return ChannelDefinition(channel_id, config_tx, signing_identities)


class ChannelProvisioner(object):
    """Create channels and make organization peers join them.

    :param client: Client holding the network profile and backend
    :param retry_policy: RetryPolicy of the remote calls, defaults to
     DEFAULT_RESMGMT_OPTS
    """

    def __init__(self, client, retry_policy=None):
        self._client = client
        self._retry = retry_policy or RetryPolicy(DEFAULT_RESMGMT_OPTS)

    @staticmethod
    def _validate_definition(definition):
        if not definition.channel_id:
            raise ConfigurationError('Missing channel id')
        if not isinstance(definition.config_tx, bytes) \
                or not definition.config_tx:
            raise ConfigurationError(f'Empty or invalid configuration for'
                                     f' channel {definition.channel_id}')
        if not definition.signing_identities:
            raise ConfigurationError(f'No signing identity for channel'
                                     f' {definition.channel_id}')

    async def create_channel(self, admin_context, definition, orderer=None,
                             cancel_token=None):
        """Submit a channel configuration to the ordering service.

        The channel is never re-created: an existing channel id fails
        with AlreadyExistsError.

        :param admin_context: NetworkContext of an identity allowed to
         create channels
        :param definition: ChannelDefinition
        :param orderer: orderer name or endpoint, defaults to the first
         orderer of the profile
        :param cancel_token: optional CancelToken of the retries
        :return: transaction id
        """
        self._validate_definition(definition)
        orderer = self._client.resolve_orderer(orderer)

        tx_context = create_tx_context(admin_context.identity)
        config_tx = definition.config_tx
        signatures = [{'creator': create_serialized_identity(signer),
                       'signature': signer.sign(config_tx)}
                      for signer in definition.signing_identities]
        envelope = {
            'channel_id': definition.channel_id,
            'tx_id': tx_context.tx_id,
            'config_tx': config_tx,
            'signatures': signatures,
            'creator': tx_context.identity,
            'signature': tx_context.sign(config_tx),
        }

        _logger.debug(f'Create channel {definition.channel_id} on'
                      f' {orderer.name} signed by'
                      f' {[s.name for s in definition.signing_identities]}')
        try:
            await self._retry.invoke(self._client.backend.save_channel,
                                     orderer, envelope,
                                     cancel_token=cancel_token)
        except LedgerError as e:
            _logger.error(f'Failed to create channel'
                          f' {definition.channel_id}: {e}')
            raise

        _logger.info(f'Channel {definition.channel_id} created,'
                     f' transaction ID: {tx_context.tx_id}')
        return tx_context.tx_id

    async def join_channel(self, org_context, channel_id, orderer_endpoint,
                           cancel_token=None):
        """Make every target peer of the context join a channel.

        Transient failures are retried, while the channel propagates for
        instance.

        :param org_context: NetworkContext of an admin of the organization
        :param channel_id: channel to join
        :param orderer_endpoint: orderer name or endpoint the peers fetch
         the channel from
        :param cancel_token: optional CancelToken of the retries
        :raises JoinError: when a peer cannot join, chained to the cause
        """
        if not org_context.targets:
            raise JoinError(f'No peer of {org_context.organization.name}'
                            f' to join channel {channel_id}')
        orderer = self._client.resolve_orderer(orderer_endpoint)

        for peer in org_context.targets:
            tx_context = create_tx_context(org_context.identity)
            proposal = build_proposal(tx_context, None, CSCC, JOIN_CHAIN,
                                      [channel_id.encode(),
                                       orderer.endpoint.encode()])
            signed_proposal = sign_proposal(tx_context, proposal)
            try:
                await self._retry.invoke(self._client.backend.join_channel,
                                         peer, signed_proposal,
                                         cancel_token=cancel_token)
            except LedgerError as e:
                _logger.error(f'Peer {peer.name} failed to join channel'
                              f' {channel_id}: {e}')
                raise JoinError(f'Peer {peer.name} failed to join channel'
                                f' {channel_id}: {e}') from e
            _logger.info(f'Peer {peer.name} joined channel {channel_id}')
