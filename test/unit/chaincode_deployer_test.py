# SPDX-License-Identifier: Apache-2.0

import unittest

from hflc.fabric.chaincode_deployer import ChaincodeDeployer
from hflc.fabric.errors import AlreadyInstantiatedError, \
    AuthorizationError, ChannelNotFoundError, ConfigurationError, \
    NotInstalledError, PolicyError, TransientError
from hflc.fabric.transaction.tx_request import create_tx_request
from hflc.fabric.transaction_client import TransactionClient
from hflc.util.consts import CC_QUERY
from hflc.util.policies import signed_by_any_member
from test.unit.util import CC_ID, CC_PATH, CHANNEL_ID, FAST_RETRY, \
    INIT_ARGS, NetworkTestCase, QUERY_ARGS

ORG1_POLICY = signed_by_any_member(['Org1MSP'])
TWO_ORGS_POLICY = "AND('Org1MSP.member', 'Org2MSP.member')"
UPGRADE_ARGS = ['init', 'a', '100', 'b', '400']


class ChaincodeDeployerTest(NetworkTestCase):

    def setUp(self):
        super().setUp()
        self.deployer = ChaincodeDeployer(self.client,
                                          retry_policy=FAST_RETRY)
        self.package = self.deployer.build_package(CC_ID, self.cc_dir, '0',
                                                   CC_PATH)

    def install(self, org, package=None):
        self.run_async(self.deployer.install(self.context('Admin', org),
                                             package or self.package))

    def installed(self, peer_name):
        return sorted((cc['name'], cc['version'])
                      for cc in self.network.installed(peer_name))

    def instantiate(self, policy=ORG1_POLICY, context=None):
        return self.run_async(self.deployer.instantiate(
            CHANNEL_ID, CC_ID, '0', INIT_ARGS, policy,
            context or self.context()))

    def upgrade(self, version, policy, args=UPGRADE_ARGS):
        return self.run_async(self.deployer.upgrade(
            CHANNEL_ID, CC_ID, version, args, policy, self.context()))

    def query_b(self):
        tx_client = TransactionClient(self.client, self.context('User1'),
                                      FAST_RETRY)
        return self.run_async(tx_client.query(create_tx_request(
            CC_ID, args=QUERY_ARGS, prop_type=CC_QUERY)))

    def test_install(self):
        self.install('org1')
        for peer_name in ('peer0.org1.example.com', 'peer1.org1.example.com'):
            self.assertEqual([(CC_ID, '0')], self.installed(peer_name))
        self.assertEqual([], self.installed('peer0.org2.example.com'))

    def test_install_idempotent(self):
        self.install('org1')
        self.install('org1')
        self.assertEqual([(CC_ID, '0')],
                         self.installed('peer0.org1.example.com'))

    def test_install_missing_peers_only(self):
        context = self.client.new_context(
            'Admin', 'org1', targets=['peer0.org1.example.com'])
        self.run_async(self.deployer.install(context, self.package))
        self.install('org1')
        self.assertEqual([(CC_ID, '0')],
                         self.installed('peer1.org1.example.com'))

    def test_installed_chaincodes(self):
        self.install('org1')
        peer = self.client.get_peer('peer0.org1.example.com')
        installed = self.run_async(self.deployer.installed_chaincodes(
            self.context(), peer))
        self.assertEqual(1, len(installed))
        self.assertEqual(self.package.code_hash, installed[0]['code_hash'])
        self.assertEqual(CC_PATH, installed[0]['path'])

    def test_install_retried(self):
        self.network.fail_next('install_chaincode', TransientError('busy'),
                               2)
        self.install('org1')
        self.assertEqual([(CC_ID, '0')],
                         self.installed('peer0.org1.example.com'))

    def test_install_not_admin(self):
        with self.assertRaises(AuthorizationError):
            self.run_async(self.deployer.install(self.context('User1'),
                                                 self.package))

    def test_install_without_peer(self):
        with self.assertRaises(ConfigurationError):
            self.run_async(self.deployer.install(
                self.context('Admin', 'ordererorg'), self.package))

    def test_instantiate(self):
        self.run_async(self.create_channel())
        self.run_async(self.join('org1'))
        self.install('org1')
        tx_id = self.instantiate()
        self.assertEqual(64, len(tx_id))

        instance = self.network.get_instance(CHANNEL_ID, CC_ID)
        self.assertEqual('0', instance['version'])
        self.assertEqual(ORG1_POLICY, instance['policy'])
        self.assertEqual({'a': '100', 'b': '200'},
                         self.network.get_state(CHANNEL_ID, CC_ID))
        self.assertEqual(b'200', self.query_b())

    def test_instantiate_default_context(self):
        self.run_async(self.create_channel())
        self.run_async(self.join('org1'))
        self.install('org1')
        deployer = ChaincodeDeployer(self.client,
                                     self.context(channel_id=None),
                                     FAST_RETRY)
        self.run_async(deployer.instantiate(CHANNEL_ID, CC_ID, '0',
                                            INIT_ARGS, ORG1_POLICY))
        self.assertIsNotNone(self.network.get_instance(CHANNEL_ID, CC_ID))

    def test_instantiate_twice(self):
        self.run_async(self.provision())
        with self.assertRaises(AlreadyInstantiatedError):
            self.instantiate()

    def test_instantiate_unknown_msp(self):
        self.run_async(self.create_channel())
        self.run_async(self.join('org1'))
        self.install('org1')
        with self.assertRaises(PolicyError):
            self.instantiate(signed_by_any_member(['Org9MSP']))
        with self.assertRaises(PolicyError):
            self.instantiate("OR('Org1MSP.client')")
        self.assertIsNone(self.network.get_instance(CHANNEL_ID, CC_ID))

    def test_instantiate_not_installed(self):
        self.run_async(self.create_channel())
        self.run_async(self.join('org1'))
        with self.assertRaises(NotInstalledError):
            self.instantiate()

    def test_instantiate_not_joined(self):
        self.run_async(self.create_channel())
        self.install('org1')
        with self.assertRaises(ChannelNotFoundError):
            self.instantiate()

    def test_instantiate_without_context(self):
        deployer = ChaincodeDeployer(self.client, retry_policy=FAST_RETRY)
        with self.assertRaises(ConfigurationError):
            self.run_async(deployer.instantiate(CHANNEL_ID, CC_ID, '0',
                                                INIT_ARGS, ORG1_POLICY))

    def test_upgrade_not_installed_on_every_org(self):
        self.run_async(self.provision())
        self.run_async(self.join('org2'))
        self.install('org1', self.package.with_version('1'))
        with self.assertRaises(NotInstalledError):
            self.upgrade('1', TWO_ORGS_POLICY)
        self.assertEqual('0',
                         self.network.get_instance(CHANNEL_ID,
                                                   CC_ID)['version'])

    def test_upgrade(self):
        self.run_async(self.provision())
        self.run_async(self.join('org2'))
        package = self.package.with_version('1')
        self.install('org1', package)
        self.install('org2', package)

        self.upgrade('1', TWO_ORGS_POLICY)
        instance = self.network.get_instance(CHANNEL_ID, CC_ID)
        self.assertEqual('1', instance['version'])
        self.assertEqual({'Org1MSP', 'Org2MSP'},
                         {i['role']['mspId']
                          for i in instance['policy']['identities']})
        self.assertEqual(b'400', self.query_b())

    def test_upgrade_same_version(self):
        self.run_async(self.provision())
        with self.assertRaises(AlreadyInstantiatedError):
            self.upgrade('0', ORG1_POLICY)


if __name__ == '__main__':
    unittest.main()
