# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging
import re
import uuid
from copy import copy

from hflc.fabric.errors import LedgerError
from hflc.fabric.transaction.tx_request import ChaincodeEvent
from hflc.util.retry import RetryPolicy, DEFAULT_CHANNEL_OPTS

_logger = logging.getLogger(__name__ + ".channel_eventhub")

_CLOSED = object()


class ChaincodeRegistration(object):
    """A class represents chaincode registration."""

    def __init__(self, ccid, pattern, onEvent=None, onClose=None):
        self.uuid = uuid.uuid4().hex
        self.ccid = ccid
        self.pattern = pattern
        self.matcher = re.compile(pattern)
        self.onEvent = onEvent
        self.onClose = onClose


class ChaincodeEventHub(object):
    """Dispatch the chaincode events of a channel to registered listeners.

    The hub reads the filtered block stream of one peer. It connects on
    the first registration and disconnects when the last one is removed.
    """

    def __init__(self, backend, peer, channel_id, retry_policy=None):
        self._backend = backend
        self._peer = peer
        self._channel_id = channel_id
        self._retry = retry_policy or RetryPolicy(DEFAULT_CHANNEL_OPTS)

        self._reg_ids = {}
        self._task = None
        self._connecting = None
        self._connected = False
        self._last_seen = None

    @property
    def connected(self):
        """Get the connected
        :return: The connected
        """
        return self._connected

    @property
    def last_seen(self):
        """Number of the last block received"""
        return self._last_seen

    @property
    def channel_id(self):
        return self._channel_id

    async def connect(self, start=None):
        """Open the block stream of the peer, if not open yet.

        The stream is subscribed when this coroutine returns, so no block
        committed afterwards is missed. Concurrent calls share one stream.
        """
        if self._connected:
            return
        if self._connecting is None or self._connecting.done():
            self._connecting = asyncio.ensure_future(self._open(start))
        await asyncio.shield(self._connecting)

    async def _open(self, start):
        _logger.info(f"create peer delivery stream on {self._peer.name}"
                     f" for channel {self._channel_id}")
        stream = await self._retry.invoke(self._backend.deliver, self._peer,
                                          self._channel_id, start)
        self._connected = True
        self._task = asyncio.ensure_future(self.handle_stream(stream))

    def disconnect(self):
        if self._connecting is not None and not self._connecting.done():
            self._connecting.cancel()
        self._connecting = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        self._connected = False

    async def handle_stream(self, stream):
        error = None
        try:
            async for block in stream:
                self._last_seen = block['number']
                self._processChaincodeEvents(block)
        except LedgerError as e:
            _logger.error(f'Event stream of {self._peer.name} failed: {e}')
            error = e
        self._connected = False
        self._close_registrations(error)

    def _close_registrations(self, error):
        for regs in copy(self._reg_ids).values():
            for cr in list(regs):
                if cr.onClose is not None:
                    cr.onClose(error)
        self._reg_ids = {}

    def _queue_chaincode_event(self, chaincode_event, block_number,
                               tx_id, tx_status, all_events):

        for cr in self._reg_ids.get(chaincode_event['chaincode_id'], []):
            if cr.matcher.match(chaincode_event['event_name']):
                evt = ChaincodeEvent(chaincode_event['chaincode_id'],
                                     chaincode_event['event_name'],
                                     chaincode_event.get('payload', b''),
                                     tx_id, block_number, tx_status)
                all_events.setdefault(cr.uuid, (cr, []))[1].append(evt)

    def handle_filtered_chaincode(self, block, all_events):
        for ft in block['filtered_transactions']:
            if 'transaction_actions' in ft:
                tx_actions = ft['transaction_actions']
                for chaincode_action in tx_actions['chaincode_actions']:
                    chaincode_event = chaincode_action['chaincode_event']
                    self._queue_chaincode_event(chaincode_event,
                                                block['number'],
                                                ft['txid'],
                                                ft['tx_validation_code'],
                                                all_events)

    def _processChaincodeEvents(self, block):
        if len(self._reg_ids.keys()):
            all_events = {}
            self.handle_filtered_chaincode(block, all_events)

            for cr, evts in all_events.values():
                for e in evts:
                    _logger.debug(f'Chaincode event {e.event_name} of tx'
                                  f' {e.tx_id} in block {e.block_number}')
                    if cr.onEvent is not None:
                        cr.onEvent(e)

    def registerChaincodeEvent(self, ccid, pattern, onEvent=None,
                               onClose=None):
        """Register a listener of the events of a chaincode.

        :param ccid: chaincode name
        :param pattern: regular expression matched against the start of
         the event name
        :param onEvent: called with each matching ChaincodeEvent
        :param onClose: called with the stream error, or None, when the
         stream ends while registered
        :return: the ChaincodeRegistration
        """
        cr = ChaincodeRegistration(ccid, pattern, onEvent, onClose)

        if ccid in self._reg_ids:
            self._reg_ids[ccid].append(cr)
        else:
            self._reg_ids[ccid] = [cr]
        return cr

    def unregisterChaincodeEvent(self, cr):
        """Remove a registration, unknown registrations are ignored."""
        regs = self._reg_ids.get(cr.ccid)
        if not regs or cr not in regs:
            return
        regs.remove(cr)

        if not regs:
            del self._reg_ids[cr.ccid]

        if not self.have_registrations():
            self.disconnect()

    def have_registrations(self):
        return self._reg_ids != {}


class EventStream(object):
    """Asynchronous iterator over the events delivered to a registration.

    Iteration ends once the registration is released or the underlying
    block stream closes. A stream cannot be restarted.
    """

    def __init__(self):
        self._queue = asyncio.Queue()
        self._closed = False
        self._error = None

    @property
    def closed(self):
        return self._closed

    @property
    def error(self):
        """Error that closed the block stream, if any"""
        return self._error

    def push(self, event):
        if not self._closed:
            self._queue.put_nowait(event)

    def close(self, error=None):
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if item is _CLOSED:
            # keep the end visible to later readers
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


class Registration(object):
    """Handle of a chaincode event listener.

    Releasing is idempotent and ends the associated EventStream. Can be
    used as a context manager.
    """

    def __init__(self, hub, chaincode_id, pattern):
        self._hub = hub
        self._stream = EventStream()
        self._cr = hub.registerChaincodeEvent(chaincode_id, pattern,
                                              onEvent=self._stream.push,
                                              onClose=self._on_close)
        self._released = False

    @property
    def chaincode_id(self):
        return self._cr.ccid

    @property
    def pattern(self):
        return self._cr.pattern

    @property
    def stream(self):
        return self._stream

    @property
    def released(self):
        return self._released

    def _on_close(self, error):
        self._released = True
        self._stream.close(error)

    def release(self):
        if self._released:
            return
        self._released = True
        self._hub.unregisterChaincodeEvent(self._cr)
        self._stream.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.release()
