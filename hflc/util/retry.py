# SPDX-License-Identifier: Apache-2.0

import asyncio
import logging

from hflc.fabric.errors import OperationCancelledError, TransientError
from hflc.util.consts import DEFAULT_RETRY_ATTEMPTS, \
    DEFAULT_INITIAL_BACKOFF, DEFAULT_MAX_BACKOFF, DEFAULT_BACKOFF_FACTOR

_logger = logging.getLogger(__name__)


class RetryOpts(object):
    """Retry options.

    :param attempts: number of retries after the first call
    :param initial_backoff: delay before the first retry, in seconds
    :param max_backoff: upper bound of a single delay, in seconds
    :param backoff_factor: multiplier applied to the delay after each retry
    :param retryable: tuple of exception classes, or a predicate taking
     the raised exception
    """

    def __init__(self, attempts=DEFAULT_RETRY_ATTEMPTS,
                 initial_backoff=DEFAULT_INITIAL_BACKOFF,
                 max_backoff=DEFAULT_MAX_BACKOFF,
                 backoff_factor=DEFAULT_BACKOFF_FACTOR,
                 retryable=(TransientError,)):
        if attempts < 0:
            raise ValueError('attempts must not be negative')
        self.attempts = attempts
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.backoff_factor = backoff_factor
        self.retryable = retryable

    def backoff(self, retry):
        """Delay before the given retry (1-based)."""
        delay = self.initial_backoff * self.backoff_factor ** (retry - 1)
        return min(delay, self.max_backoff)

    def is_retryable(self, error):
        if callable(self.retryable) and not isinstance(self.retryable, type):
            return bool(self.retryable(error))
        return isinstance(error, self.retryable)


DEFAULT_RESMGMT_OPTS = RetryOpts()
DEFAULT_CHANNEL_OPTS = RetryOpts()
NO_RETRY = RetryOpts(attempts=0)


class CancelToken(object):
    """Lets an outer deadline abort an in-flight retry loop.

    The token is not bound to an event loop: each `wait` creates its
    waiter in the running loop.
    """

    def __init__(self):
        self._cancelled = False
        self._waiters = set()

    def cancel(self):
        self._cancelled = True
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_result(None)

    @property
    def cancelled(self):
        return self._cancelled

    async def wait(self):
        if self._cancelled:
            return
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)


class RetryPolicy(object):

    def __init__(self, opts=None):
        self._opts = opts or DEFAULT_RESMGMT_OPTS

    @property
    def opts(self):
        return self._opts

    async def invoke(self, op, *args, cancel_token=None, timeout=None,
                     **kwargs):
        """Await `op(*args, **kwargs)` until it succeeds or the policy
        is exhausted.

        :param op: coroutine function performing the remote call
        :param cancel_token: optional CancelToken checked before each
         attempt and during backoff
        :param timeout: optional bound in seconds on the whole loop
        :return: the result of op
        :raises: the last error of op when exhausted or not retryable,
         OperationCancelledError when cancelled or out of time
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        name = getattr(op, '__name__', repr(op))

        retry = 0
        while True:
            self._check_cancelled(name, cancel_token, deadline, loop)
            try:
                if deadline is None:
                    return await op(*args, **kwargs)
                return await self._attempt_until(name, op, args, kwargs,
                                                 deadline, loop)
            except OperationCancelledError:
                raise
            except Exception as e:
                if not self._opts.is_retryable(e):
                    raise
                if retry >= self._opts.attempts:
                    _logger.warning(f'{name}: giving up after {retry + 1}'
                                    f' attempts: {e}')
                    raise
                retry += 1
                delay = self._opts.backoff(retry)
                _logger.debug(f'{name}: retry {retry}/{self._opts.attempts}'
                              f' in {delay}s after: {e}')
                await self._sleep(name, delay, cancel_token, deadline,
                                  loop, e)

    @staticmethod
    async def _attempt_until(name, op, args, kwargs, deadline, loop):
        try:
            return await asyncio.wait_for(op(*args, **kwargs),
                                          deadline - loop.time())
        except asyncio.TimeoutError as e:
            # a timeout raised by op itself is an ordinary failure
            if loop.time() < deadline:
                raise
            raise OperationCancelledError(
                f'{name}: deadline exceeded') from e

    @staticmethod
    def _check_cancelled(name, cancel_token, deadline, loop):
        if cancel_token is not None and cancel_token.cancelled:
            raise OperationCancelledError(f'{name}: cancelled')
        if deadline is not None and loop.time() >= deadline:
            raise OperationCancelledError(f'{name}: deadline exceeded')

    async def _sleep(self, name, delay, cancel_token, deadline, loop,
                     last_error):
        if deadline is not None and loop.time() + delay >= deadline:
            raise OperationCancelledError(
                f'{name}: deadline exceeded before next retry') \
                from last_error
        if cancel_token is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(cancel_token.wait(), delay)
        except asyncio.TimeoutError:
            return
        raise OperationCancelledError(f'{name}: cancelled') from last_error
