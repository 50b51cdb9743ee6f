# SPDX-License-Identifier: Apache-2.0

import hashlib
import logging
import os
from collections import namedtuple

from hflc.fabric.errors import ConfigurationError, LedgerError, \
    PackageError, PolicyError
from hflc.fabric.transaction.tx_context import create_tx_context
from hflc.fabric.transaction.tx_request import build_proposal, \
    sign_proposal, to_bytes
from hflc.util import policies
from hflc.util.archive import package_chaincode
from hflc.util.consts import CC_INSTALL, CC_INSTANTIATE, CC_UPGRADE, \
    CC_TYPE_GOLANG
from hflc.util.retry import RetryPolicy, DEFAULT_RESMGMT_OPTS

_logger = logging.getLogger(__name__)

LSCC = 'lscc'
GET_INSTALLED_CHAINCODES = 'getinstalledchaincodes'


class ChaincodePackage(namedtuple('ChaincodePackage',
                                  ['name', 'path', 'version', 'code',
                                   'code_hash', 'cc_type'])):
    """A chaincode source tree packaged for installation.

    :param name: chaincode name
    :param path: chaincode path inside the package
    :param version: version label
    :param code: tar.gz bytes
    :param code_hash: sha256 hex digest of code
    """
    __slots__ = ()

    def with_version(self, version):
        """Same code under another version label."""
        return self._replace(version=str(version))


class ChaincodeDeployer(object):
    """Package, install, instantiate and upgrade chaincodes.

    :param client: Client holding the network profile and backend
    :param context: default NetworkContext of instantiate and upgrade
    :param retry_policy: RetryPolicy of the remote calls, defaults to
     DEFAULT_RESMGMT_OPTS
    """

    def __init__(self, client, context=None, retry_policy=None):
        self._client = client
        self._context = context
        self._retry = retry_policy or RetryPolicy(DEFAULT_RESMGMT_OPTS)

    def build_package(self, name, source_path, version='0', cc_path=None,
                      cc_type=CC_TYPE_GOLANG):
        """Build a chaincode package from a source directory.

        The same tree always gives the same bytes.

        :param name: chaincode name
        :param source_path: directory holding the chaincode sources
        :param version: version label
        :param cc_path: chaincode path, defaults to the directory name
        :return: ChaincodePackage
        :raises PackageError: on missing or empty source directory
        """
        if not name:
            raise PackageError('Missing chaincode name')
        code = package_chaincode(source_path, cc_path)
        code_hash = hashlib.sha256(code).hexdigest()
        if cc_path is None:
            cc_path = os.path.basename(os.path.normpath(source_path))
        _logger.debug(f'Built package {name}:{version} from {source_path},'
                      f' hash={code_hash}')
        return ChaincodePackage(name, cc_path, str(version), code,
                                code_hash, cc_type)

    async def installed_chaincodes(self, org_context, peer,
                                   cancel_token=None):
        """List the chaincodes installed on a peer.

        :return: list of dict with `name`, `version`, `path`, `code_hash`
        """
        tx_context = create_tx_context(org_context.identity)
        proposal = build_proposal(tx_context, None, LSCC,
                                  GET_INSTALLED_CHAINCODES)
        signed_proposal = sign_proposal(tx_context, proposal)
        return await self._retry.invoke(
            self._client.backend.query_installed_chaincodes,
            peer, signed_proposal, cancel_token=cancel_token)

    async def install(self, org_context, package, cancel_token=None):
        """Install a package on every target peer of the context.

        Peers already holding (name, version) are skipped.

        :param org_context: NetworkContext of an admin of the organization
        :param package: ChaincodePackage
        :param cancel_token: optional CancelToken of the retries
        """
        if not org_context.targets:
            raise ConfigurationError(f'No peer of'
                                     f' {org_context.organization.name}'
                                     f' to install {package.name} on')

        for peer in org_context.targets:
            installed = await self.installed_chaincodes(org_context, peer,
                                                        cancel_token)
            found = [cc for cc in installed
                     if cc['name'] == package.name
                     and cc['version'] == package.version]
            if found:
                if found[0].get('code_hash') != package.code_hash:
                    _logger.warning(f'{package.name}:{package.version} on'
                                    f' {peer.name} differs from the'
                                    f' package, keeping installed code')
                _logger.info(f'{package.name}:{package.version} already'
                             f' installed on {peer.name}')
                continue

            tx_context = create_tx_context(org_context.identity)
            proposal = build_proposal(tx_context, None, LSCC, CC_INSTALL,
                                      deployment={
                                          'name': package.name,
                                          'version': package.version,
                                          'path': package.path,
                                          'type': package.cc_type,
                                          'code_hash': package.code_hash,
                                      })
            signed_proposal = sign_proposal(tx_context, proposal)
            try:
                await self._retry.invoke(
                    self._client.backend.install_chaincode,
                    peer, signed_proposal, package.code,
                    cancel_token=cancel_token)
            except LedgerError as e:
                _logger.error(f'Failed to install {package.name}:'
                              f'{package.version} on {peer.name}: {e}')
                raise
            _logger.info(f'Installed {package.name}:{package.version} on'
                         f' {peer.name}')

    def _check_policy(self, policy):
        policy = policies.to_policy(policy)
        unknown = policies.policy_msp_ids(policy) - self._client.msp_ids()
        if unknown:
            raise PolicyError(f'Policy names unknown organizations:'
                              f' {sorted(unknown)}')
        return policy

    def _resolve_context(self, channel_id, context):
        context = context or self._context
        if context is None:
            raise ConfigurationError('No context to deploy chaincode with')
        if context.channel_id != channel_id:
            context = context.derive(channel_id=channel_id)
        return context

    async def _deploy(self, operation, channel_id, name, version, args,
                      policy, context, cancel_token):
        policy = self._check_policy(policy)
        context = self._resolve_context(channel_id, context)
        orderer = self._client.resolve_orderer()

        tx_context = create_tx_context(context.identity)
        proposal = build_proposal(tx_context, channel_id, LSCC, operation,
                                  [to_bytes(a) for a in (args or [])],
                                  deployment={
                                      'name': name,
                                      'version': str(version),
                                      'policy': policy,
                                  })
        signed_proposal = sign_proposal(tx_context, proposal)

        if operation == CC_UPGRADE:
            backend_op = self._client.backend.upgrade_chaincode
        else:
            backend_op = self._client.backend.instantiate_chaincode
        _logger.debug(f'{operation} {name}:{version} on {channel_id} with'
                      f' policy {policies.d2s.parse(policy)}')
        try:
            await self._retry.invoke(backend_op, list(context.targets),
                                     orderer, signed_proposal,
                                     cancel_token=cancel_token)
        except LedgerError as e:
            _logger.error(f'Failed to {operation} {name}:{version} on'
                          f' {channel_id}: {e}')
            raise

        _logger.info(f'Transaction ID: {tx_context.tx_id}')
        return tx_context.tx_id

    async def instantiate(self, channel_id, name, version, init_args, policy,
                          context=None, cancel_token=None):
        """Start the first instance of a chaincode on a channel.

        :param channel_id: channel name
        :param name: chaincode name
        :param version: installed version to run
        :param init_args: arguments of the chaincode init
        :param policy: endorsement policy, expression or dict
        :param context: NetworkContext of an admin, defaults to the one of
         the deployer
        :return: transaction id
        :raises PolicyError: invalid policy or unknown organization
        :raises AlreadyInstantiatedError: an instance already exists
        """
        return await self._deploy(CC_INSTANTIATE, channel_id, name, version,
                                  init_args, policy, context, cancel_token)

    async def upgrade(self, channel_id, name, new_version, args, new_policy,
                      context=None, cancel_token=None):
        """Replace the active instance of a chaincode with a new version.

        :raises NotInstalledError: when new_version is not installed on a
         peer of every organization of new_policy
        """
        return await self._deploy(CC_UPGRADE, channel_id, name, new_version,
                                  args, new_policy, context, cancel_token)
