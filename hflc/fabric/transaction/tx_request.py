# SPDX-License-Identifier: Apache-2.0

import base64
import json
import logging

from hflc.fabric.errors import ConfigurationError
from hflc.util.consts import CC_INVOKE, CC_QUERY, SUCCESS_STATUS, \
    TX_STATUS_VALID

_logger = logging.getLogger(__name__ + ".tx_request")


def to_bytes(arg):
    if isinstance(arg, bytes):
        return arg
    if isinstance(arg, str):
        return arg.encode('utf-8')
    raise ConfigurationError(f'Chaincode argument must be str or bytes,'
                             f' got {type(arg).__name__}')


class TransactionRequest(object):
    """Class represents a chaincode invocation request."""

    def __init__(self, chaincode_id, fcn=CC_INVOKE, args=None,
                 prop_type=CC_INVOKE, transient_map=None):
        """ Construct a transaction request

        :param chaincode_id: chaincode name
        :param fcn: function name
        :param args: function arguments, str arguments are UTF-8 encoded
        :param prop_type: CC_INVOKE for an execution, CC_QUERY for a query
        :param transient_map: private data sent to the endorsing peers only,
         values are str or bytes
        :return: An instance of TransactionRequest
        """
        self._chaincode_id = chaincode_id
        self._fcn = fcn
        self._args = [to_bytes(a) for a in (args or [])]
        self._prop_type = prop_type
        self._transient_map = {k: to_bytes(v)
                               for k, v in (transient_map or {}).items()}

    @property
    def chaincode_id(self):
        """Get chaincode name

        :return: return chaincode name
        """
        return self._chaincode_id

    @property
    def fcn(self):
        """Get function name

        :return: return function name
        """
        return self._fcn

    @property
    def args(self):
        """Get function arguments as bytes

        :return: return function arguments
        """
        return list(self._args)

    @property
    def prop_type(self):
        return self._prop_type

    @property
    def transient_map(self):
        return dict(self._transient_map)

    def is_query(self):
        return self._prop_type == CC_QUERY

    def __repr__(self):
        return (f'TransactionRequest({self._chaincode_id!r}, {self._fcn!r},'
                f' {self._args!r})')


def validate(tx_request):
    """Check a transaction request.

    :param tx_request: see TransactionRequest
    :return: transaction request if no error
    :raises ConfigurationError: Invalid transaction request
    """
    if not tx_request:
        raise ConfigurationError("Missing transaction request object")

    if not tx_request.chaincode_id:
        raise ConfigurationError("Missing 'chaincode_id' parameter"
                                 " in the transaction request")

    if not tx_request.fcn:
        raise ConfigurationError("Missing 'fcn' parameter"
                                 " in the transaction request")

    if tx_request.prop_type not in (CC_INVOKE, CC_QUERY):
        raise ConfigurationError(f"Invalid request type"
                                 f" {tx_request.prop_type}")
    return tx_request


def create_tx_request(chaincode_id, fcn=CC_INVOKE, args=None,
                      prop_type=CC_INVOKE, transient_map=None):
    """Create a transaction request

    :param chaincode_id: chaincode name
    :param fcn: function name (Default value = 'invoke')
    :param args: function arguments (Default value = None)
    :param prop_type: request type (Default value = CC_INVOKE)
    :param transient_map: transient data map (Default value = None)
    :return: a validated transaction request
    """
    tx_request = TransactionRequest(chaincode_id, fcn, args, prop_type,
                                    transient_map)
    return validate(tx_request)


class ProposalResponse(object):
    """Answer of one peer to a proposal.

    `results` and `events` are produced by the backend and forwarded
    unchanged in the transaction envelope.
    """

    def __init__(self, peer, msp_id, status=SUCCESS_STATUS, message='',
                 payload=b'', results=None, events=None):
        self.peer = peer
        self.msp_id = msp_id
        self.status = status
        self.message = message
        self.payload = payload
        self.results = results
        self.events = events

    @property
    def ok(self):
        return self.status == SUCCESS_STATUS

    def __repr__(self):
        return (f'ProposalResponse(peer={self.peer!r}, msp_id={self.msp_id!r},'
                f' status={self.status!r}, message={self.message!r})')


class ChaincodeEvent(object):
    """An event emitted by a chaincode in a committed transaction."""

    def __init__(self, chaincode_id, event_name, payload=b'', tx_id=None,
                 block_number=None, tx_status=TX_STATUS_VALID):
        self.chaincode_id = chaincode_id
        self.event_name = event_name
        self.payload = payload
        self.tx_id = tx_id
        self.block_number = block_number
        self.tx_status = tx_status

    @property
    def valid(self):
        return self.tx_status == TX_STATUS_VALID

    def __eq__(self, other):
        if not isinstance(other, ChaincodeEvent):
            return NotImplemented
        return self.__dict__ == other.__dict__

    def __repr__(self):
        return (f'ChaincodeEvent({self.chaincode_id!r}, {self.event_name!r},'
                f' tx_id={self.tx_id!r}, block_number={self.block_number!r},'
                f' tx_status={self.tx_status!r})')


def b64(data):
    return base64.b64encode(data).decode()


def unb64(data):
    return base64.b64decode(data)


def build_proposal(tx_context, channel_id, chaincode_id, fcn, args=None,
                   deployment=None, transient_map=None):
    """Build the proposal sent to peers.

    :param tx_context: transaction context
    :param channel_id: target channel, may be None for peer level requests
    :param chaincode_id: name of the chaincode, or of a system chaincode
    :param fcn: function name
    :param args: list of bytes arguments
    :param deployment: optional dict of JSON values, e.g. version and
     endorsement policy of a chaincode to instantiate
    :param transient_map: optional dict of bytes values, seen by the
     endorsing peers and left out of the transaction
    :return: proposal dict
    """
    return {
        'channel_id': channel_id,
        'tx_id': tx_context.tx_id,
        'nonce': b64(tx_context.nonce),
        'creator': b64(tx_context.identity),
        'chaincode_id': chaincode_id,
        'fcn': fcn,
        'args': [b64(a) for a in (args or [])],
        'deployment': deployment,
        'transient_map': {k: b64(v)
                          for k, v in (transient_map or {}).items()},
    }


def sign_proposal(tx_context, proposal):
    """Sign a proposal

    :param tx_context: transaction context
    :param proposal: proposal dict
    :return: signed proposal {'proposal_bytes', 'signature'}
    """
    proposal_bytes = json.dumps(proposal, sort_keys=True).encode()
    signature = tx_context.sign(proposal_bytes)
    return {'proposal_bytes': proposal_bytes, 'signature': signature}


def decode_proposal(signed_proposal):
    """Decode the proposal of a signed proposal.

    :return: proposal dict with `args`, `nonce`, `creator` and the
     `transient_map` values as bytes
    """
    proposal = json.loads(signed_proposal['proposal_bytes'])
    proposal['args'] = [unb64(a) for a in proposal['args']]
    proposal['transient_map'] = {k: unb64(v) for k, v in
                                 proposal.get('transient_map', {}).items()}
    proposal['nonce'] = unb64(proposal['nonce'])
    proposal['creator'] = unb64(proposal['creator'])
    return proposal


def build_envelope(tx_context, proposal, responses):
    """Build the signed transaction broadcast to the orderer.

    :param tx_context: transaction context of the proposal
    :param proposal: proposal dict
    :param responses: endorsing ProposalResponse list
    :return: envelope {'payload', 'signature'}
    """
    endorsed = responses[0]
    # transient data never reaches the orderer
    proposal = {k: v for k, v in proposal.items() if k != 'transient_map'}
    payload = {
        'proposal': proposal,
        'endorsements': [{'peer': r.peer, 'msp_id': r.msp_id}
                         for r in responses],
        'results': endorsed.results,
        'events': endorsed.events,
    }
    payload_bytes = json.dumps(payload, sort_keys=True).encode()
    _logger.debug(f'Envelope of tx {proposal["tx_id"]} endorsed by'
                  f' {[r.peer for r in responses]}')
    return {'payload': payload_bytes,
            'signature': tx_context.sign(payload_bytes)}


def decode_envelope(envelope):
    return json.loads(envelope['payload'])


def creator_parts(creator):
    """Split a serialized identity into its msp id and PEM certificate."""
    msp_id, _, cert = creator.partition(b'\n')
    return msp_id.decode(), cert
