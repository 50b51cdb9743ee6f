# SPDX-License-Identifier: Apache-2.0

import asyncio
import datetime
import json
import os
import shutil
import tempfile
import unittest

from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import Encoding, \
    NoEncryption, PrivateFormat
from cryptography.x509 import NameOID

from hflc.fabric.chaincode_deployer import ChaincodeDeployer
from hflc.fabric.channel_provisioner import ChannelDefinition, \
    ChannelProvisioner
from hflc.fabric.client import Client
from hflc.fabric_network.inmemorynetwork import InMemoryNetwork
from hflc.util.policies import signed_by_any_member
from hflc.util.retry import RetryOpts, RetryPolicy

CHANNEL_ID = 'orgchannel'
CC_ID = 'exampleCC'
CC_PATH = 'example_cc'
ORDERER = 'orderer.example.com'
CONFIG_TX = b'\n\x0aorgchannel\x12\x06config'
INIT_ARGS = ['init', 'a', '100', 'b', '200']
QUERY_ARGS = ['query', 'b']
TX_ARGS = ['move', 'a', 'b', '1']
EVENT_PATTERN = 'mash([a-zA-Z]+)'

FAST_RETRY = RetryPolicy(RetryOpts(attempts=3, initial_backoff=0.001,
                                   max_backoff=0.01))

ORGS = {
    'org1': {
        'mspid': 'Org1MSP',
        'peers': ['peer0.org1.example.com', 'peer1.org1.example.com'],
        'users': {'Admin': ['admin'], 'User1': []},
    },
    'org2': {
        'mspid': 'Org2MSP',
        'peers': ['peer0.org2.example.com'],
        'users': {'Admin': ['admin'], 'User1': []},
    },
    'ordererorg': {
        'mspid': 'OrdererMSP',
        'orderers': [ORDERER],
        'users': {'Admin': ['admin']},
    },
}


def generate_identity(common_name):
    """Generate an EC key and a self signed certificate.

    :return: (key_pem, cert_pem)
    """
    key = ec.generate_private_key(ec.SECP256R1(), default_backend())
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = x509.CertificateBuilder() \
        .subject_name(name) \
        .issuer_name(name) \
        .public_key(key.public_key()) \
        .serial_number(x509.random_serial_number()) \
        .not_valid_before(now - datetime.timedelta(days=1)) \
        .not_valid_after(now + datetime.timedelta(days=30)) \
        .sign(key, hashes.SHA256(), default_backend())
    key_pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8,
                                NoEncryption())
    return key_pem, cert.public_bytes(Encoding.PEM)


def write_profile(base_dir):
    """Write the crypto material and network profile of a two org network.

    :return: path of the JSON profile
    """
    orgs = {}
    peers = {}
    for org_name, org in ORGS.items():
        users = {}
        for user_name, roles in org['users'].items():
            key_pem, cert_pem = generate_identity(f'{user_name}@{org_name}')
            user_dir = os.path.join(base_dir, 'crypto', org_name, user_name)
            os.makedirs(user_dir)
            key_path = os.path.join(user_dir, 'key.pem')
            cert_path = os.path.join(user_dir, 'cert.pem')
            with open(key_path, 'wb') as f:
                f.write(key_pem)
            with open(cert_path, 'wb') as f:
                f.write(cert_pem)
            users[user_name] = {'private_key': {'path': key_path},
                                'cert': {'path': cert_path},
                                'roles': roles}
        orgs[org_name] = {'mspid': org['mspid'], 'users': users}
        if 'peers' in org:
            orgs[org_name]['peers'] = org['peers']
            for i, peer_name in enumerate(org['peers']):
                peers[peer_name] = {'url': f'localhost:{7051 + 1000 * i}'}
        if 'orderers' in org:
            orgs[org_name]['orderers'] = org['orderers']

    profile = {
        'name': 'test-network',
        'client': {'organization': 'org1'},
        'organizations': orgs,
        'orderers': {ORDERER: {'url': 'localhost:7050'}},
        'peers': peers,
    }
    path = os.path.join(base_dir, 'network.json')
    with open(path, 'w') as f:
        json.dump(profile, f, indent=4)
    return path


def write_artifacts(base_dir):
    """Write the channel artifact and the example chaincode sources."""
    channel_dir = os.path.join(base_dir, 'channel')
    os.makedirs(channel_dir)
    with open(os.path.join(channel_dir, 'orgchannel.tx'), 'wb') as f:
        f.write(CONFIG_TX)

    cc_dir = os.path.join(base_dir, 'chaincode', 'src', CC_PATH)
    os.makedirs(os.path.join(cc_dir, 'lib'))
    with open(os.path.join(cc_dir, 'example_cc.go'), 'w') as f:
        f.write('package main\n\nfunc main() {}\n')
    with open(os.path.join(cc_dir, 'lib', 'util.go'), 'w') as f:
        f.write('package lib\n')
    return cc_dir


class NetworkTestCase(unittest.TestCase):
    """Client and in memory network on a fresh event loop."""

    def setUp(self):
        self.loop = asyncio.new_event_loop()
        self.base_dir = tempfile.mkdtemp()
        self.profile_path = write_profile(self.base_dir)
        self.cc_dir = write_artifacts(self.base_dir)
        self.client = Client(net_profile=self.profile_path)
        self.network = InMemoryNetwork(self.client)
        self.client.backend = self.network

    def tearDown(self):
        self.loop.close()
        shutil.rmtree(self.base_dir)

    def run_async(self, coro):
        return self.loop.run_until_complete(coro)

    def context(self, user='Admin', org='org1', channel_id=CHANNEL_ID):
        return self.client.new_context(user, org, channel_id)

    async def create_channel(self):
        provisioner = ChannelProvisioner(self.client, FAST_RETRY)
        signer = self.client.resolve_signing_identity('org1', 'Admin')
        definition = ChannelDefinition(CHANNEL_ID, CONFIG_TX, [signer])
        return await provisioner.create_channel(
            self.context('Admin', 'ordererorg', None), definition, ORDERER)

    async def join(self, org):
        provisioner = ChannelProvisioner(self.client, FAST_RETRY)
        await provisioner.join_channel(self.context('Admin', org),
                                       CHANNEL_ID, ORDERER)

    async def provision(self, policy=None, orgs=('org1',)):
        """Create the channel, join and install on orgs, instantiate
        version 0 from org1."""
        await self.create_channel()
        deployer = ChaincodeDeployer(self.client, retry_policy=FAST_RETRY)
        package = deployer.build_package(CC_ID, self.cc_dir, '0', CC_PATH)
        for org in orgs:
            await self.join(org)
            await deployer.install(self.context('Admin', org), package)
        if policy is None:
            policy = signed_by_any_member(['Org1MSP'])
        return await deployer.instantiate(CHANNEL_ID, CC_ID, '0', INIT_ARGS,
                                          policy, self.context())
