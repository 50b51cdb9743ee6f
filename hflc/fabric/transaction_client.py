# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging

from hflc.fabric.channel.channel_eventhub import Registration
from hflc.fabric.errors import ChaincodeError, ConfigurationError, \
    EndorsementError, EventStreamClosedError, LedgerError, \
    OperationCancelledError, OrderingError, TimedOutError, \
    TransactionRejectedError
from hflc.fabric.transaction.tx_context import create_tx_context
from hflc.fabric.transaction.tx_request import build_envelope, \
    build_proposal, sign_proposal, validate
from hflc.util import policies
from hflc.util.consts import DEFAULT_WAIT_FOR_EVENT_TIMEOUT, ROLE_PEER
from hflc.util.retry import RetryPolicy, DEFAULT_CHANNEL_OPTS

_logger = logging.getLogger(__name__)

LSCC = 'lscc'
GET_CHAINCODE_DATA = 'getccdata'

IDLE = 'IDLE'
SUBMITTED = 'SUBMITTED'
CONFIRMED = 'CONFIRMED'
TIMED_OUT = 'TIMED_OUT'
REJECTED = 'REJECTED'


class ExecutionTracker(object):
    """State of one execute then confirm cycle.

    IDLE -> SUBMITTED -> CONFIRMED | TIMED_OUT | REJECTED
    """

    def __init__(self, request):
        self.request = request
        self.state = IDLE
        self.tx_id = None
        self.event = None
        self.error = None

    def _move(self, expected, state):
        if self.state != expected:
            raise RuntimeError(f'Cannot move from {self.state} to {state}')
        self.state = state

    def submitted(self, tx_id):
        self._move(IDLE, SUBMITTED)
        self.tx_id = tx_id

    def confirmed(self, event):
        self._move(SUBMITTED, CONFIRMED)
        self.event = event

    def timed_out(self, error):
        self._move(SUBMITTED, TIMED_OUT)
        self.error = error

    def rejected(self, error):
        self._move(SUBMITTED, REJECTED)
        self.error = error

    @property
    def done(self):
        return self.state in (CONFIRMED, TIMED_OUT, REJECTED)

    def result(self):
        """The confirming event, or the error of a failed cycle."""
        if self.error is not None:
            raise self.error
        if self.state != CONFIRMED:
            raise RuntimeError(f'Execution is {self.state}')
        return self.event


class TransactionClient(object):
    """Query and execute a deployed chaincode on a channel.

    :param client: Client holding the network profile and backend
    :param context: NetworkContext with the channel and endorsing peers
    :param retry_policy: RetryPolicy of the remote calls, defaults to
     DEFAULT_CHANNEL_OPTS
    """

    def __init__(self, client, context, retry_policy=None):
        if not context.channel_id:
            raise ConfigurationError('Transaction context has no channel')
        self._client = client
        self._context = context
        self._retry = retry_policy or RetryPolicy(DEFAULT_CHANNEL_OPTS)

    @property
    def context(self):
        return self._context

    @property
    def channel_id(self):
        return self._context.channel_id

    def _targets(self):
        if not self._context.targets:
            raise ConfigurationError(f'No target peer on channel'
                                     f' {self.channel_id}')
        return self._context.targets

    def _signed_proposal(self, chaincode_id, fcn, args, transient_map=None):
        tx_context = create_tx_context(self._context.identity)
        proposal = build_proposal(tx_context, self.channel_id, chaincode_id,
                                  fcn, args, transient_map=transient_map)
        return tx_context, proposal, sign_proposal(tx_context, proposal)

    async def query(self, request, cancel_token=None):
        """Evaluate a read only request on the first responsive peer.

        :param request: TransactionRequest
        :param cancel_token: optional CancelToken of the retries
        :return: payload bytes
        :raises ConfigurationError: the request is not a query
        :raises ChaincodeError: the chaincode answered with an error
        :raises EndorsementError: no peer responded
        """
        validate(request)
        if not request.is_query():
            raise ConfigurationError(f'Cannot query with {request.prop_type}'
                                     f' request {request}')
        _, _, signed_proposal = self._signed_proposal(
            request.chaincode_id, request.fcn, request.args,
            request.transient_map)

        last_error = None
        for peer in self._targets():
            _logger.debug(f'Query {request} on {peer.name}')
            try:
                response = await self._retry.invoke(
                    self._client.backend.send_proposal, peer,
                    signed_proposal, cancel_token=cancel_token)
            except (ChaincodeError, OperationCancelledError):
                raise
            except LedgerError as e:
                _logger.warning(f'Peer {peer.name} did not answer query: {e}')
                last_error = e
                continue

            if not response.ok:
                _logger.error(f'Query failed on {peer.name}:'
                              f' {response.status} {response.message}')
                raise ChaincodeError(response.message, response.status,
                                     peer.name)
            return response.payload

        raise EndorsementError(f'No peer responded to query of'
                               f' {request.chaincode_id}') from last_error

    async def _endorsement_policy(self, chaincode_id, cancel_token=None):
        _, _, signed_proposal = self._signed_proposal(
            LSCC, GET_CHAINCODE_DATA,
            [self.channel_id.encode(), chaincode_id.encode()])

        last_error = None
        for peer in self._targets():
            try:
                definition = await self._retry.invoke(
                    self._client.backend.query_chaincode_definition, peer,
                    signed_proposal, cancel_token=cancel_token)
            except OperationCancelledError:
                raise
            except LedgerError as e:
                last_error = e
                continue
            if definition is None:
                raise ChaincodeError(f'Chaincode {chaincode_id} is not'
                                     f' instantiated on {self.channel_id}',
                                     peer=peer.name)
            return definition['policy']

        raise EndorsementError(f'Cannot get the endorsement policy of'
                               f' {chaincode_id}') from last_error

    async def execute(self, request, cancel_token=None):
        """Endorse a request on every target peer and submit it for
        ordering.

        Returns once the orderer accepted the transaction; commit and
        events come later.

        :param request: TransactionRequest
        :param cancel_token: optional CancelToken of the retries
        :return: transaction id
        :raises ConfigurationError: the request is a query
        :raises ChaincodeError: a peer answered with an error status
        :raises EndorsementError: the endorsements do not satisfy the
         endorsement policy of the chaincode
        :raises OrderingError: the orderer refused the transaction
        """
        validate(request)
        if request.is_query():
            raise ConfigurationError(f'Cannot execute query request'
                                     f' {request}')
        tx_context, proposal, signed_proposal = self._signed_proposal(
            request.chaincode_id, request.fcn, request.args,
            request.transient_map)
        targets = self._targets()

        _logger.debug(f'Execute {request} on {[p.name for p in targets]}')
        res = await asyncio.gather(
            *[self._retry.invoke(self._client.backend.send_proposal, peer,
                                 signed_proposal, cancel_token=cancel_token)
              for peer in targets],
            return_exceptions=True)

        responses = []
        errors = []
        for peer, r in zip(targets, res):
            if isinstance(r, (ChaincodeError, OperationCancelledError)):
                raise r
            if isinstance(r, LedgerError):
                _logger.warning(f'Peer {peer.name} did not endorse: {r}')
                errors.append(r)
            elif isinstance(r, BaseException):
                raise r
            elif not r.ok:
                _logger.error(f'Proposal failed on {peer.name}:'
                              f' {r.status} {r.message}')
                raise ChaincodeError(r.message, r.status, peer.name)
            else:
                responses.append(r)

        if not responses:
            raise EndorsementError(f'No endorsement for {request}') \
                from (errors[0] if errors else None)

        if any(r.results != responses[0].results for r in responses):
            raise EndorsementError(f'Peers returned different results for'
                                   f' {request}')

        policy = await self._endorsement_policy(request.chaincode_id,
                                                cancel_token)
        signers = [(r.msp_id, ROLE_PEER) for r in responses]
        if not policies.evaluate(policy, signers):
            _logger.error(f'Endorsements of {[r.peer for r in responses]} do'
                          f' not satisfy {policies.d2s.parse(policy)}')
            raise EndorsementError(f'Endorsements of {request} do not'
                                   f' satisfy the endorsement policy')

        envelope = build_envelope(tx_context, proposal, responses)
        orderer = self._client.resolve_orderer()
        try:
            await self._retry.invoke(self._client.backend.broadcast, orderer,
                                     envelope, cancel_token=cancel_token)
        except OperationCancelledError:
            raise
        except LedgerError as e:
            _logger.error(f'Orderer {orderer.name} refused transaction'
                          f' {tx_context.tx_id}: {e}')
            raise OrderingError(f'Failed to order transaction'
                                f' {tx_context.tx_id}: {e}') from e

        _logger.info(f'Transaction {tx_context.tx_id} accepted for ordering')
        return tx_context.tx_id

    async def register_event(self, chaincode_id, pattern):
        """Listen to the events of a chaincode whose name matches pattern.

        :param chaincode_id: chaincode name
        :param pattern: regular expression matched against the start of
         the event name, e.g. 'mash([a-zA-Z]+)'
        :return: (Registration, EventStream)
        """
        hub = self._client.get_event_hub(self._targets()[0],
                                         self.channel_id)
        registration = Registration(hub, chaincode_id, pattern)
        try:
            await hub.connect()
        except BaseException:
            registration.release()
            raise
        _logger.debug(f'Registered chaincode event {chaincode_id}/{pattern}')
        return registration, registration.stream

    def unregister(self, registration):
        """Release a registration; releasing twice does nothing."""
        if registration is not None:
            registration.release()

    async def wait_for_event(self, stream,
                             timeout=DEFAULT_WAIT_FOR_EVENT_TIMEOUT,
                             tx_id=None):
        """Wait for the next event of a stream, or for the timeout.

        :param stream: EventStream of a registration
        :param timeout: seconds to wait
        :param tx_id: only accept the event of this transaction
        :return: ChaincodeEvent
        :raises TimedOutError: no event in time, the transaction may
         still commit later
        :raises TransactionRejectedError: the transaction committed as
         invalid
        :raises EventStreamClosedError: the stream ended first
        """

        async def next_event():
            async for event in stream:
                if tx_id is None or event.tx_id == tx_id:
                    return event
            raise EventStreamClosedError('Event stream closed before an'
                                         ' event arrived') from stream.error

        try:
            event = await asyncio.wait_for(next_event(), timeout)
        except asyncio.TimeoutError as e:
            _logger.error(f'Did NOT receive chaincode event within'
                          f' {timeout}s')
            raise TimedOutError(f'No chaincode event within {timeout}s'
                                + (f' for transaction {tx_id}'
                                   if tx_id else '')) from e

        if not event.valid:
            _logger.error(f'Transaction {event.tx_id} rejected:'
                          f' {event.tx_status}')
            raise TransactionRejectedError(
                f'Transaction {event.tx_id} rejected: {event.tx_status}',
                event.tx_id, event.tx_status)

        _logger.info(f'Received CC event: {event}')
        return event

    async def execute_and_wait(self, request, pattern,
                               timeout=DEFAULT_WAIT_FOR_EVENT_TIMEOUT,
                               cancel_token=None):
        """Execute a request and wait for the event of its transaction.

        The registration is released on every path.

        :return: ExecutionTracker in a final state
        """
        tracker = ExecutionTracker(request)
        registration, stream = await self.register_event(
            request.chaincode_id, pattern)
        try:
            tracker.submitted(await self.execute(request, cancel_token))
            try:
                event = await self.wait_for_event(stream, timeout,
                                                  tracker.tx_id)
            except TimedOutError as e:
                tracker.timed_out(e)
            except TransactionRejectedError as e:
                tracker.rejected(e)
            else:
                tracker.confirmed(event)
        finally:
            self.unregister(registration)
        return tracker
