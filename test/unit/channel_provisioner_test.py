# SPDX-License-Identifier: Apache-2.0

import os
import unittest

from hflc.fabric.channel_provisioner import ChannelDefinition, \
    ChannelProvisioner, load_channel_definition
from hflc.fabric.errors import AlreadyExistsError, AuthorizationError, \
    ChannelNotFoundError, ConfigurationError, JoinError, TransientError
from test.unit.util import CHANNEL_ID, CONFIG_TX, FAST_RETRY, ORDERER, \
    NetworkTestCase


class ChannelProvisionerTest(NetworkTestCase):

    def setUp(self):
        super().setUp()
        self.provisioner = ChannelProvisioner(self.client, FAST_RETRY)
        self.org1_admin = self.client.resolve_signing_identity('org1',
                                                               'Admin')

    def create(self, definition, user='Admin', org='ordererorg'):
        return self.run_async(self.provisioner.create_channel(
            self.context(user, org, None), definition, ORDERER))

    def test_load_channel_definition(self):
        definition = load_channel_definition(
            CHANNEL_ID, os.path.join(self.base_dir, 'channel',
                                     'orgchannel.tx'), [self.org1_admin])
        self.assertEqual(CONFIG_TX, definition.config_tx)
        self.assertEqual((self.org1_admin,), definition.signing_identities)

    def test_load_missing_definition(self):
        with self.assertRaises(ConfigurationError):
            load_channel_definition(CHANNEL_ID,
                                    os.path.join(self.base_dir, 'none.tx'),
                                    [self.org1_admin])

    def test_create_channel(self):
        tx_id = self.create(ChannelDefinition(CHANNEL_ID, CONFIG_TX,
                                              [self.org1_admin]))
        self.assertEqual(64, len(tx_id))
        self.assertEqual(set(), self.network.joined_peers(CHANNEL_ID))

    def test_create_channel_twice(self):
        definition = ChannelDefinition(CHANNEL_ID, CONFIG_TX,
                                       [self.org1_admin])
        self.create(definition)
        with self.assertRaises(AlreadyExistsError):
            self.create(definition)

    def test_invalid_definition(self):
        for definition in (ChannelDefinition(CHANNEL_ID, b'',
                                             [self.org1_admin]),
                           ChannelDefinition(CHANNEL_ID, CONFIG_TX, []),
                           ChannelDefinition('', CONFIG_TX,
                                             [self.org1_admin])):
            with self.assertRaises(ConfigurationError):
                self.create(definition)

    def test_signer_not_admin(self):
        user = self.client.resolve_signing_identity('org1', 'User1')
        with self.assertRaises(AuthorizationError):
            self.create(ChannelDefinition(CHANNEL_ID, CONFIG_TX, [user]))

    def test_creator_not_admin(self):
        with self.assertRaises(AuthorizationError):
            self.create(ChannelDefinition(CHANNEL_ID, CONFIG_TX,
                                          [self.org1_admin]),
                        user='User1', org='org1')

    def test_create_channel_retried(self):
        self.network.fail_next('save_channel', TransientError('no leader'),
                               2)
        self.create(ChannelDefinition(CHANNEL_ID, CONFIG_TX,
                                      [self.org1_admin]))
        self.assertEqual(set(), self.network.joined_peers(CHANNEL_ID))

    def test_join_channel(self):
        self.run_async(self.create_channel())
        self.run_async(self.provisioner.join_channel(
            self.context(), CHANNEL_ID, ORDERER))
        self.assertEqual({'peer0.org1.example.com', 'peer1.org1.example.com'},
                         self.network.joined_peers(CHANNEL_ID))

    def test_join_propagating_channel(self):
        self.run_async(self.create_channel())
        self.network.fail_next('join_channel',
                               TransientError('channel not propagated'), 2)
        self.run_async(self.provisioner.join_channel(
            self.context(), CHANNEL_ID, 'localhost:7050'))
        self.assertEqual(2, len(self.network.joined_peers(CHANNEL_ID)))

    def test_join_retries_exhausted(self):
        self.run_async(self.create_channel())
        self.network.fail_next('join_channel',
                               TransientError('channel not propagated'), 10)
        with self.assertRaises(JoinError) as cm:
            self.run_async(self.provisioner.join_channel(
                self.context(), CHANNEL_ID, ORDERER))
        self.assertIsInstance(cm.exception.__cause__, TransientError)
        self.assertEqual(set(), self.network.joined_peers(CHANNEL_ID))

    def test_join_unknown_channel(self):
        with self.assertRaises(JoinError) as cm:
            self.run_async(self.provisioner.join_channel(
                self.context(), CHANNEL_ID, ORDERER))
        self.assertIsInstance(cm.exception.__cause__, ChannelNotFoundError)

    def test_join_twice(self):
        self.run_async(self.create_channel())
        self.run_async(self.join('org1'))
        with self.assertRaises(JoinError) as cm:
            self.run_async(self.join('org1'))
        self.assertIsInstance(cm.exception.__cause__, AlreadyExistsError)

    def test_join_not_admin(self):
        self.run_async(self.create_channel())
        with self.assertRaises(JoinError) as cm:
            self.run_async(self.provisioner.join_channel(
                self.context('User1'), CHANNEL_ID, ORDERER))
        self.assertIsInstance(cm.exception.__cause__, AuthorizationError)

    def test_join_without_peer(self):
        self.run_async(self.create_channel())
        with self.assertRaises(JoinError):
            self.run_async(self.provisioner.join_channel(
                self.context('Admin', 'ordererorg'), CHANNEL_ID, ORDERER))


if __name__ == '__main__':
    unittest.main()
