# SPDX-License-Identifier: Apache-2.0

import asyncio
import copy
import hashlib
import logging

from hflc.fabric.backend import LedgerBackend
from hflc.fabric.errors import AlreadyExistsError, \
    AlreadyInstantiatedError, AuthorizationError, ChaincodeError, \
    ChannelNotFoundError, ConfigurationError, NotInstalledError, \
    PackageError, PolicyError
from hflc.fabric.transaction.tx_context import create_serialized_identity
from hflc.fabric.transaction.tx_request import ProposalResponse, b64, \
    creator_parts, decode_envelope, decode_proposal, unb64
from hflc.util import policies
from hflc.util.consts import CC_INIT, CC_INVOKE, CC_QUERY, ERROR_STATUS, \
    ROLE_ADMIN, ROLE_PEER, SUCCESS_STATUS, TX_STATUS_VALID, \
    TX_STATUS_ENDORSEMENT_POLICY_FAILURE
from hflc.util.crypto.crypto import ecies

_logger = logging.getLogger(__name__)

TX_STATUS_DUPLICATE_TXID = 'DUPLICATE_TXID'
TX_STATUS_EXPIRED_CHAINCODE = 'EXPIRED_CHAINCODE'

EXAMPLE_EVENT_NAME = 'mashMove'

_CLOSE = object()


class ExampleChaincode(object):
    """Key/value chaincode holding integer balances.

    Every invocation uses the function 'invoke'; its first argument selects
    the operation: query <key>, move <from> <to> <amount>, delete <key>.
    """

    def __init__(self, state, event_name=EXAMPLE_EVENT_NAME):
        self._state = state
        self._event_name = event_name
        self.writes = {}
        self.event = None

    @staticmethod
    def _error(message):
        return ERROR_STATUS, message, b''

    def _get(self, key):
        if key in self.writes:
            return self.writes[key]
        return self._state.get(key)

    def init(self, args):
        args = [a.decode() for a in args]
        if args and args[0] == CC_INIT:
            args = args[1:]
        if len(args) != 4:
            return self._error('Incorrect number of arguments. Expecting 4')
        for value in (args[1], args[3]):
            if not value.lstrip('-').isdigit():
                return self._error('Expecting integer value for asset'
                                   ' holding')
        self.writes = {args[0]: args[1], args[2]: args[3]}
        return SUCCESS_STATUS, '', b''

    def invoke(self, fcn, args):
        if fcn != CC_INVOKE:
            return self._error(f'Unknown function call {fcn}')
        if not args:
            return self._error('Incorrect number of arguments. Expecting'
                               ' at least 1')
        args = [a.decode() for a in args]
        operation, params = args[0], args[1:]
        if operation == CC_QUERY:
            return self._query(params)
        if operation == 'move':
            return self._move(params)
        if operation == 'delete':
            return self._delete(params)
        return self._error(f'Unknown action, check the first argument,'
                           f' must be one of "delete", "query", or "move".'
                           f' But got: {operation}')

    def _query(self, params):
        if len(params) != 1:
            return self._error('Incorrect number of arguments. Expecting'
                               ' name of the person to query')
        value = self._get(params[0])
        if value is None:
            return self._error(f'Nil amount for {params[0]}')
        return SUCCESS_STATUS, '', value.encode()

    def _move(self, params):
        if len(params) != 3:
            return self._error('Incorrect number of arguments. Expecting 3')
        a, b, x = params
        a_val, b_val = self._get(a), self._get(b)
        if a_val is None or b_val is None:
            return self._error('Failed to get state')
        if not x.lstrip('-').isdigit():
            return self._error('Invalid transaction amount, expecting a'
                               ' integer value')
        x = int(x)
        self.writes[a] = str(int(a_val) - x)
        self.writes[b] = str(int(b_val) + x)
        self.event = (self._event_name, f'{a}->{b}:{x}'.encode())
        return SUCCESS_STATUS, '', b''

    def _delete(self, params):
        if len(params) != 1:
            return self._error('Incorrect number of arguments. Expecting 1')
        self.writes[params[0]] = None
        return SUCCESS_STATUS, '', b''


class InMemoryNetwork(LedgerBackend):
    """A ledger network living in the current process.

    Channels, installed packages, chaincode instances and world state are
    kept in dicts. Every chaincode runs the ExampleChaincode logic.
    Requests must be signed by an identity registered with
    `register_identity`; the identities and peers of `client` are
    registered at construction.

    Behaviour switches used by tests:

    * `fail_next(operation, error, times)` raises error on the next calls
      of a backend method,
    * `emit_events` turns chaincode events off when False,
    * `commit_delay` delays the commit of broadcast transactions,
    * `reject_next_commit(code)` commits the next transaction with an
      invalid validation code.
    """

    def __init__(self, client=None):
        self._identities = {}
        self._peers = {}
        self._channels = {}
        self._installed = {}
        self._failures = {}
        self._subscribers = {}
        self._pending = set()
        self._reject_code = None
        self._crypto = ecies()

        self.emit_events = True
        self.commit_delay = 0.0

        if client is not None:
            for peer in client.peers.values():
                self.register_peer(peer)
            for org in client.organizations.values():
                for user in org.users.values():
                    self.register_identity(user)

    def register_identity(self, user):
        """Allow a user to sign requests with its roles."""
        self._identities[create_serialized_identity(user)] = \
            (user.msp_id, tuple(user.roles))

    def register_peer(self, peer):
        self._peers[peer.name] = peer.msp_id
        self._installed.setdefault(peer.name, {})

    def fail_next(self, operation, error, times=1):
        """Raise error on the next `times` calls of a backend method.

        :param operation: backend method name, e.g. 'join_channel'
        :param error: exception instance to raise
        """
        self._failures.setdefault(operation, []).extend([error] * times)

    def reject_next_commit(self, code=TX_STATUS_ENDORSEMENT_POLICY_FAILURE):
        self._reject_code = code

    def _check_failure(self, operation):
        errors = self._failures.get(operation)
        if errors:
            error = errors.pop(0)
            _logger.debug(f'{operation}: injected failure {error!r}')
            raise error

    def msp_ids(self):
        return {msp_id for msp_id, _ in self._identities.values()} \
            | {msp_id for msp_id in self._peers.values() if msp_id}

    def _verify(self, creator, message, signature):
        if creator not in self._identities:
            raise AuthorizationError('Unknown creator identity')
        _, cert = creator_parts(creator)
        if not self._crypto.verify_with_cert(cert, message, signature):
            raise AuthorizationError('Invalid creator signature')
        return self._identities[creator]

    def _authenticate(self, signed_proposal):
        proposal = decode_proposal(signed_proposal)
        msp_id, roles = self._verify(proposal['creator'],
                                     signed_proposal['proposal_bytes'],
                                     signed_proposal['signature'])
        return proposal, msp_id, roles

    def _peer_msp(self, peer):
        if peer.name not in self._peers:
            raise ConfigurationError(f'Unknown peer {peer.name}')
        return self._peers[peer.name]

    def _require_admin_of(self, peer, msp_id, roles, action):
        if ROLE_ADMIN not in roles or msp_id != self._peer_msp(peer):
            raise AuthorizationError(f'{msp_id} identity may not {action}'
                                     f' on {peer.name}')

    def _channel(self, channel_id, peer=None):
        channel = self._channels.get(channel_id)
        if channel is None:
            raise ChannelNotFoundError(f'Channel {channel_id} not found')
        if peer is not None and peer.name not in channel['peers']:
            raise ChannelNotFoundError(f'Peer {peer.name} has not joined'
                                       f' channel {channel_id}')
        return channel

    def _append_block(self, channel_id, transactions):
        channel = self._channels[channel_id]
        block = {'number': len(channel['blocks']),
                 'filtered_transactions': transactions}
        channel['blocks'].append(block)
        for peer_name, queue in list(self._subscribers.get(channel_id, [])):
            if peer_name in channel['peers']:
                queue.put_nowait(copy.deepcopy(block))
        return block

    async def save_channel(self, orderer, envelope):
        self._check_failure('save_channel')
        channel_id = envelope.get('channel_id')
        config_tx = envelope.get('config_tx')
        if not channel_id or not config_tx:
            raise ConfigurationError('Malformed channel configuration')

        _, roles = self._verify(envelope['creator'], config_tx,
                                envelope['signature'])
        if ROLE_ADMIN not in roles:
            raise AuthorizationError('Channel creator is not an admin')
        if not envelope.get('signatures'):
            raise ConfigurationError('Channel configuration is not signed')
        for s in envelope['signatures']:
            msp_id, roles = self._verify(s['creator'], config_tx,
                                         s['signature'])
            if ROLE_ADMIN not in roles:
                raise AuthorizationError(f'Signer of {msp_id} may not'
                                         f' create channels')

        if channel_id in self._channels:
            raise AlreadyExistsError(f'Channel {channel_id} already exists')

        self._channels[channel_id] = {
            'peers': set(),
            'blocks': [],
            'instances': {},
            'states': {},
            'tx_ids': set(),
        }
        self._append_block(channel_id, [{
            'txid': envelope['tx_id'],
            'tx_validation_code': TX_STATUS_VALID,
        }])
        _logger.debug(f'Channel {channel_id} created by {orderer.name}')

    async def join_channel(self, peer, signed_proposal):
        self._check_failure('join_channel')
        proposal, msp_id, roles = self._authenticate(signed_proposal)
        self._require_admin_of(peer, msp_id, roles, 'join channels')
        channel_id = proposal['args'][0].decode()
        channel = self._channel(channel_id)
        if peer.name in channel['peers']:
            raise AlreadyExistsError(f'Peer {peer.name} already joined'
                                     f' {channel_id}')
        channel['peers'].add(peer.name)

    async def query_installed_chaincodes(self, peer, signed_proposal):
        self._check_failure('query_installed_chaincodes')
        _, msp_id, _ = self._authenticate(signed_proposal)
        if msp_id != self._peer_msp(peer):
            raise AuthorizationError(f'{msp_id} identity may not query'
                                     f' {peer.name}')
        return [dict(cc) for cc in self._installed[peer.name].values()]

    async def install_chaincode(self, peer, signed_proposal, code):
        self._check_failure('install_chaincode')
        proposal, msp_id, roles = self._authenticate(signed_proposal)
        self._require_admin_of(peer, msp_id, roles, 'install chaincode')
        deployment = proposal['deployment']
        if hashlib.sha256(code).hexdigest() != deployment['code_hash']:
            raise PackageError('Chaincode package does not match its hash')
        key = (deployment['name'], deployment['version'])
        if key in self._installed[peer.name]:
            raise AlreadyExistsError(f'{key[0]}:{key[1]} already installed'
                                     f' on {peer.name}')
        self._installed[peer.name][key] = {
            'name': deployment['name'],
            'version': deployment['version'],
            'path': deployment['path'],
            'code_hash': deployment['code_hash'],
        }

    def _installed_on(self, peer_name, name, version):
        return (name, version) in self._installed.get(peer_name, {})

    def _check_deployment(self, peers, signed_proposal):
        proposal, msp_id, roles = self._authenticate(signed_proposal)
        if ROLE_ADMIN not in roles:
            raise AuthorizationError(f'{msp_id} identity may not deploy'
                                     f' chaincode')
        channel_id = proposal['channel_id']
        channel = self._channel(channel_id)
        joined = [p for p in peers if p.name in channel['peers']]
        if not joined:
            raise ChannelNotFoundError(f'No target peer joined channel'
                                       f' {channel_id}')

        deployment = proposal['deployment']
        name, version = deployment['name'], deployment['version']
        policy = deployment['policy']
        policies.check_policy(policy)
        unknown = policies.policy_msp_ids(policy) - self.msp_ids()
        if unknown:
            raise PolicyError(f'Unknown organizations in policy:'
                              f' {sorted(unknown)}')
        for peer in joined:
            if not self._installed_on(peer.name, name, version):
                raise NotInstalledError(f'{name}:{version} is not installed'
                                        f' on {peer.name}')
        return proposal, channel

    def _run_init(self, channel, proposal):
        deployment = proposal['deployment']
        chaincode = ExampleChaincode({})
        status, message, _ = chaincode.init(proposal['args'])
        if status != SUCCESS_STATUS:
            raise ChaincodeError(message, status)
        channel["states"].setdefault(deployment["name"], {}).update(
            chaincode.writes)
        channel['instances'][deployment['name']] = {
            'name': deployment['name'],
            'version': deployment['version'],
            'policy': copy.deepcopy(deployment['policy']),
        }
        channel['tx_ids'].add(proposal['tx_id'])
        self._append_block(proposal['channel_id'], [{
            'txid': proposal['tx_id'],
            'tx_validation_code': TX_STATUS_VALID,
        }])

    async def instantiate_chaincode(self, peers, orderer, signed_proposal):
        self._check_failure('instantiate_chaincode')
        proposal, channel = self._check_deployment(peers, signed_proposal)
        name = proposal['deployment']['name']
        if name in channel['instances']:
            raise AlreadyInstantiatedError(
                f'Chaincode {name} already instantiated on'
                f' {proposal["channel_id"]}')
        self._run_init(channel, proposal)

    async def upgrade_chaincode(self, peers, orderer, signed_proposal):
        self._check_failure('upgrade_chaincode')
        proposal, channel = self._check_deployment(peers, signed_proposal)
        deployment = proposal['deployment']
        name, version = deployment['name'], deployment['version']
        instance = channel['instances'].get(name)
        if instance is None:
            raise ChaincodeError(f'Chaincode {name} is not instantiated on'
                                 f' {proposal["channel_id"]}', ERROR_STATUS)
        if instance['version'] == version:
            raise AlreadyInstantiatedError(f'Version {version} of {name} is'
                                           f' already running')

        for msp_id in policies.policy_msp_ids(deployment['policy']):
            if not any(self._peers.get(p) == msp_id
                       and self._installed_on(p, name, version)
                       for p in channel['peers']):
                raise NotInstalledError(f'{name}:{version} is not installed'
                                        f' on any peer of {msp_id}')
        self._run_init(channel, proposal)

    async def query_chaincode_definition(self, peer, signed_proposal):
        self._check_failure('query_chaincode_definition')
        proposal, _, _ = self._authenticate(signed_proposal)
        channel_id, name = [a.decode() for a in proposal['args']]
        channel = self._channel(channel_id, peer)
        instance = channel['instances'].get(name)
        return copy.deepcopy(instance)

    async def send_proposal(self, peer, signed_proposal):
        self._check_failure('send_proposal')
        proposal, _, _ = self._authenticate(signed_proposal)
        channel = self._channel(proposal['channel_id'], peer)
        msp_id = self._peer_msp(peer)
        name = proposal['chaincode_id']

        instance = channel['instances'].get(name)
        if instance is None:
            return ProposalResponse(peer.name, msp_id, ERROR_STATUS,
                                    f'chaincode {name} not found')
        if not self._installed_on(peer.name, name, instance['version']):
            return ProposalResponse(peer.name, msp_id, ERROR_STATUS,
                                    f'chaincode {name}:{instance["version"]}'
                                    f' not installed on {peer.name}')

        chaincode = ExampleChaincode(channel['states'].get(name, {}))
        status, message, payload = chaincode.invoke(proposal['fcn'],
                                                    proposal['args'])
        if status != SUCCESS_STATUS:
            return ProposalResponse(peer.name, msp_id, status, message)

        results = {'chaincode_id': name, 'version': instance['version'],
                   'writes': chaincode.writes}
        events = None
        if chaincode.event is not None and self.emit_events:
            event_name, event_payload = chaincode.event
            events = {'chaincode_id': name, 'tx_id': proposal['tx_id'],
                      'event_name': event_name,
                      'payload': b64(event_payload)}
        return ProposalResponse(peer.name, msp_id, status, message, payload,
                                results, events)

    async def broadcast(self, orderer, envelope):
        self._check_failure('broadcast')
        tx = decode_envelope(envelope)
        proposal = tx['proposal']
        self._verify(unb64(proposal['creator']), envelope['payload'],
                     envelope['signature'])
        self._channel(proposal['channel_id'])

        task = asyncio.ensure_future(self._commit_later(tx))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _commit_later(self, tx):
        if self.commit_delay:
            await asyncio.sleep(self.commit_delay)
        self._commit(tx)

    def _validate(self, channel, tx):
        proposal = tx['proposal']
        if proposal['tx_id'] in channel['tx_ids']:
            return TX_STATUS_DUPLICATE_TXID
        instance = channel['instances'].get(proposal['chaincode_id'])
        results = tx['results'] or {}
        if instance is None or results.get('version') != instance['version']:
            return TX_STATUS_EXPIRED_CHAINCODE
        signers = [(e['msp_id'], ROLE_PEER) for e in tx['endorsements']]
        if not policies.evaluate(instance['policy'], signers):
            return TX_STATUS_ENDORSEMENT_POLICY_FAILURE
        if self._reject_code is not None:
            code, self._reject_code = self._reject_code, None
            return code
        return TX_STATUS_VALID

    def _commit(self, tx):
        proposal = tx['proposal']
        channel_id = proposal['channel_id']
        channel = self._channels[channel_id]
        code = self._validate(channel, tx)

        if code == TX_STATUS_VALID:
            state = channel['states'].setdefault(proposal['chaincode_id'], {})
            for key, value in tx['results']['writes'].items():
                if value is None:
                    state.pop(key, None)
                else:
                    state[key] = value
        channel['tx_ids'].add(proposal['tx_id'])

        filtered_tx = {'txid': proposal['tx_id'], 'tx_validation_code': code}
        if tx['events']:
            event = dict(tx['events'])
            event['payload'] = unb64(event['payload'])
            filtered_tx['transaction_actions'] = {
                'chaincode_actions': [{'chaincode_event': event}]
            }
        block = self._append_block(channel_id, [filtered_tx])
        _logger.debug(f'Committed {proposal["tx_id"]} in block'
                      f' {block["number"]} of {channel_id}: {code}')

    async def deliver(self, peer, channel_id, start=None):
        channel = self._channel(channel_id, peer)
        queue = asyncio.Queue()
        if start is not None:
            for block in channel['blocks'][start:]:
                queue.put_nowait(copy.deepcopy(block))
        subscriber = (peer.name, queue)
        self._subscribers.setdefault(channel_id, []).append(subscriber)
        return self._stream(channel_id, subscriber)

    async def _stream(self, channel_id, subscriber):
        try:
            while True:
                block = await subscriber[1].get()
                if block is _CLOSE:
                    return
                yield block
        finally:
            subscribers = self._subscribers.get(channel_id, [])
            if subscriber in subscribers:
                subscribers.remove(subscriber)

    def close_streams(self, channel_id):
        """End every block stream opened on a channel."""
        for _, queue in self._subscribers.get(channel_id, []):
            queue.put_nowait(_CLOSE)

    def get_state(self, channel_id, name):
        """Committed world state of a chaincode, as a dict copy."""
        return dict(self._channel(channel_id)['states'].get(name, {}))

    def get_instance(self, channel_id, name):
        return copy.deepcopy(self._channel(channel_id)['instances'].get(name))

    def joined_peers(self, channel_id):
        return set(self._channel(channel_id)['peers'])

    def installed(self, peer_name):
        return [dict(cc) for cc in self._installed.get(peer_name, {}).values()]
