# SPDX-License-Identifier: Apache-2.0

import argparse
import asyncio
import json
import logging
import os
import sys

from hflc.fabric.chaincode_deployer import ChaincodeDeployer
from hflc.fabric.channel_provisioner import ChannelProvisioner, \
    load_channel_definition
from hflc.fabric.client import Client
from hflc.fabric.config.default import DEFAULT
from hflc.fabric.errors import ConfigurationError, LedgerError, \
    RunAbortedError, VerificationError
from hflc.fabric.transaction.tx_request import create_tx_request
from hflc.fabric.transaction_client import TransactionClient
from hflc.fabric_network.inmemorynetwork import InMemoryNetwork
from hflc.util.consts import CC_INVOKE, CC_QUERY
from hflc.util.policies import signed_by_any_member
from hflc.util.retry import CancelToken

_logger = logging.getLogger(__name__)


class ScenarioConfig(object):
    """Values of a lifecycle scenario.

    Every key of hflc.fabric.config.default.DEFAULT is an attribute;
    relative paths are resolved against `base_dir`.
    """

    def __init__(self, base_dir='', **values):
        unknown = set(values) - set(DEFAULT)
        if unknown:
            raise ConfigurationError(f'Unknown scenario keys:'
                                     f' {sorted(unknown)}')
        self.base_dir = base_dir
        for key, default in DEFAULT.items():
            value = values.get(key, default)
            setattr(self, key, list(value) if isinstance(value, list)
                    else value)

    @classmethod
    def from_dict(cls, d, base_dir=''):
        return cls(base_dir=base_dir, **d)

    @classmethod
    def from_file(cls, path):
        """Load a scenario from a JSON file, paths being relative to the
        directory of the file."""
        try:
            with open(path, 'r') as f:
                d = json.load(f)
        except (OSError, ValueError) as e:
            raise ConfigurationError(f'Cannot load scenario {path}:'
                                     f' {e}') from e
        return cls.from_dict(d, base_dir=os.path.dirname(path))

    def path(self, value):
        return os.path.join(self.base_dir, value)

    @property
    def channel_config_file(self):
        return self.path(self.channel_config_path)

    @property
    def cc_source_dir(self):
        return os.path.join(self.path(self.cc_source_root), 'src',
                            self.cc_path)

    def to_dict(self):
        return {key: getattr(self, key) for key in DEFAULT}


class RunReport(object):
    """Outcome of a successful run."""

    def __init__(self, tx_id, value_before, value_after, event,
                 provisioned=False):
        self.tx_id = tx_id
        self.value_before = value_before
        self.value_after = value_after
        self.event = event
        self.provisioned = provisioned

    def __repr__(self):
        return (f'RunReport(tx_id={self.tx_id!r},'
                f' value_before={self.value_before!r},'
                f' value_after={self.value_after!r})')


class LifecycleOrchestrator(object):
    """Drive provisioning, deployment and an execute then verify cycle.

    :param client: Client holding the network profile and backend
    :param config: ScenarioConfig, defaults to the reference scenario
    :param retry_policy: optional RetryPolicy for every component
    """

    def __init__(self, client, config=None, retry_policy=None):
        self._client = client
        self._config = config or ScenarioConfig()
        self._retry = retry_policy
        self._cancel_token = CancelToken()
        self._provisioner = ChannelProvisioner(client, retry_policy)
        self._deployer = ChaincodeDeployer(client, retry_policy=retry_policy)

    @property
    def config(self):
        return self._config

    def cancel(self):
        """Abort the pending retries of the current call of `provision`,
        `run` or `upgrade`, or of the next one when none is running."""
        self._cancel_token.cancel()

    async def _cancellable(self, coro):
        try:
            return await coro
        finally:
            if self._cancel_token.cancelled:
                self._cancel_token = CancelToken()

    async def _phase(self, phase, coro):
        try:
            return await coro
        except LedgerError as e:
            _logger.error(f'{phase} failed: {e}')
            raise RunAbortedError(phase, e) from e

    def _context(self, phase, user, org, channel_id=None):
        try:
            return self._client.new_context(user, org, channel_id)
        except LedgerError as e:
            _logger.error(f'{phase} failed: {e}')
            raise RunAbortedError(phase, e) from e

    def _request(self, args, prop_type=CC_INVOKE):
        return create_tx_request(self._config.cc_id, self._config.cc_fcn,
                                 args, prop_type)

    async def provision(self):
        """Create the channel, join the org peers, install and instantiate
        the chaincode."""
        return await self._cancellable(self._provision())

    async def _provision(self):
        cfg = self._config
        orderer_admin = self._context('create channel', cfg.org_admin,
                                      cfg.orderer_org_name)
        org_admin = self._context('join channel', cfg.org_admin,
                                  cfg.org_name, cfg.channel_id)

        async def create_channel():
            signer = self._client.resolve_signing_identity(cfg.org_name,
                                                           cfg.org_admin)
            definition = load_channel_definition(cfg.channel_id,
                                                 cfg.channel_config_file,
                                                 [signer])
            return await self._provisioner.create_channel(
                orderer_admin, definition, cfg.orderer_endpoint,
                cancel_token=self._cancel_token)

        await self._phase('create channel', create_channel())
        await self._phase('join channel', self._provisioner.join_channel(
            org_admin, cfg.channel_id, cfg.orderer_endpoint,
            cancel_token=self._cancel_token))

        async def install():
            package = self._deployer.build_package(cfg.cc_id,
                                                   cfg.cc_source_dir,
                                                   cfg.cc_version,
                                                   cfg.cc_path)
            await self._deployer.install(org_admin, package,
                                         cancel_token=self._cancel_token)

        await self._phase('install chaincode', install())

        async def instantiate():
            policy = signed_by_any_member(cfg.cc_policy_msps)
            return await self._deployer.instantiate(
                cfg.channel_id, cfg.cc_id, cfg.cc_version, cfg.cc_init_args,
                policy, org_admin, cancel_token=self._cancel_token)

        return await self._phase('instantiate chaincode', instantiate())

    def verify(self, before, after):
        """Check the executed move shows in the queried values.

        :param before: queried value before the execution, bytes or str
        :param after: queried value after the commit, bytes or str
        :raises VerificationError: when after != before + expected_delta
        """
        try:
            value = int(before)
            new_value = int(after)
        except ValueError as e:
            raise VerificationError(f'Non integer values. Before: {before!r},'
                                    f' after: {after!r}') from e
        if value + self._config.expected_delta != new_value:
            raise VerificationError(f'Execute failed. Before: {before},'
                                    f' after: {after}')

    async def run(self, perform_provisioning=False):
        """Query, execute, wait for the chaincode event, query again and
        verify the change.

        :param perform_provisioning: create the channel and deploy the
         chaincode first
        :return: RunReport
        :raises RunAbortedError: on the first failing phase
        """
        return await self._cancellable(self._run(perform_provisioning))

    async def _run(self, perform_provisioning):
        cfg = self._config
        if perform_provisioning:
            await self._provision()

        user = self._context('connect', cfg.org_user, cfg.org_name,
                             cfg.channel_id)
        tx_client = TransactionClient(self._client, user, self._retry)
        query = self._request(cfg.cc_query_args, CC_QUERY)

        before = await self._phase('query', tx_client.query(
            query, cancel_token=self._cancel_token))
        _logger.info(f'Value before execute: {before!r}')

        registration, stream = await self._phase(
            'register event',
            tx_client.register_event(cfg.cc_id, cfg.event_pattern))
        try:
            tx_id = await self._phase('execute', tx_client.execute(
                self._request(cfg.cc_tx_args),
                cancel_token=self._cancel_token))
            event = await self._phase('await event', tx_client.wait_for_event(
                stream, cfg.event_timeout, tx_id))
        finally:
            tx_client.unregister(registration)

        after = await self._phase('verify query', tx_client.query(
            query, cancel_token=self._cancel_token))

        try:
            self.verify(before, after)
        except VerificationError as e:
            _logger.error(f'verify failed: {e}')
            raise RunAbortedError('verify', e) from e

        _logger.info(f'Value moved from {before!r} to {after!r} by'
                     f' transaction {tx_id}')
        return RunReport(tx_id, before, after, event, perform_provisioning)

    async def upgrade(self, new_version, policy, org_names, args=None):
        """Install a new version on the peers of each org and upgrade the
        chaincode to it.

        :param new_version: version to deploy
        :param policy: new endorsement policy, expression or dict
        :param org_names: organizations to install the version on
        :param args: init arguments, defaults to cc_upgrade_args
        :return: transaction id
        """
        return await self._cancellable(self._upgrade(new_version, policy,
                                                     org_names, args))

    async def _upgrade(self, new_version, policy, org_names, args):
        cfg = self._config
        package = await self._phase('package chaincode', self._build(
            new_version))

        for org_name in org_names:
            org_admin = self._context(f'install chaincode on {org_name}',
                                      cfg.org_admin, org_name,
                                      cfg.channel_id)
            await self._phase(f'install chaincode on {org_name}',
                              self._deployer.install(
                                  org_admin, package,
                                  cancel_token=self._cancel_token))

        org_admin = self._context('upgrade chaincode', cfg.org_admin,
                                  cfg.org_name, cfg.channel_id)
        return await self._phase('upgrade chaincode', self._deployer.upgrade(
            cfg.channel_id, cfg.cc_id, new_version,
            cfg.cc_upgrade_args if args is None else args, policy,
            org_admin, cancel_token=self._cancel_token))

    async def _build(self, version):
        cfg = self._config
        return self._deployer.build_package(cfg.cc_id, cfg.cc_source_dir,
                                            version, cfg.cc_path)


def run(client, perform_provisioning=False, config=None):
    """Run the scenario in a new event loop.

    :return: RunReport
    :raises RunAbortedError: on failure
    """
    orchestrator = LifecycleOrchestrator(client, config)
    return asyncio.run(orchestrator.run(perform_provisioning))


def _parse_args(argv):
    parser = argparse.ArgumentParser(
        prog='hflc',
        description='Provision a channel, deploy the example chaincode and'
                    ' check a transfer is committed.')
    parser.add_argument('--profile', required=True,
                        help='JSON network profile')
    parser.add_argument('--scenario',
                        help='JSON scenario overriding the default values')
    parser.add_argument('--setup', action='store_true',
                        help='create the channel and deploy the chaincode'
                             ' first')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='log debug messages')
    return parser.parse_args(argv)


def main(argv=None, backend=None):
    """Entry point. Without a backend the scenario runs against an
    InMemoryNetwork built from the profile.

    :return: process exit status, 0 on success and 1 on failure
    """
    args = _parse_args(argv)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s %(name)s: %(message)s'))
    package_logger = logging.getLogger('hflc')
    package_logger.addHandler(console_handler)
    package_logger.setLevel(logging.DEBUG if args.verbose else logging.INFO)

    try:
        try:
            client = Client(net_profile=args.profile)
            config = ScenarioConfig.from_file(args.scenario) \
                if args.scenario else ScenarioConfig()
        except LedgerError as e:
            _logger.error(f'configuration failed: {e}')
            return 1

        if backend is None:
            _logger.info('No ledger backend given, simulating the network'
                         ' in process')
            backend = InMemoryNetwork(client)
        client.backend = backend

        try:
            report = run(client, args.setup, config)
        except RunAbortedError as e:
            _logger.error(f'Run aborted at {e.phase}: {e.cause}')
            return 1

        _logger.info(f'Run succeeded: {report}')
        return 0
    finally:
        package_logger.removeHandler(console_handler)


if __name__ == '__main__':
    sys.exit(main())
