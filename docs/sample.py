# SPDX-License-Identifier: Apache-2.0
#
# Walk through the chaincode lifecycle against the in process network.
# Run from a directory holding network.json, channel/orgchannel.tx and the
# chaincode sources under chaincode/src/example_cc.

import asyncio

from hflc.fabric.chaincode_deployer import ChaincodeDeployer
from hflc.fabric.channel_provisioner import ChannelProvisioner, \
    load_channel_definition
from hflc.fabric.client import Client
from hflc.fabric.transaction.tx_request import create_tx_request
from hflc.fabric.transaction_client import TransactionClient
from hflc.fabric_network.inmemorynetwork import InMemoryNetwork
from hflc.util.consts import CC_QUERY

CONNECTION_PROFILE_PATH = 'network.json'
CHANNEL_TX_PATH = 'channel/orgchannel.tx'
CHAINCODE_PATH = 'chaincode/src/example_cc'
CHANNEL_NAME = 'orgchannel'
CC_NAME = 'exampleCC'
CC_VERSION = '0'

if __name__ == "__main__":
    cli = Client(net_profile=CONNECTION_PROFILE_PATH)
    cli.backend = InMemoryNetwork(cli)
    loop = asyncio.new_event_loop()

    print(cli.organizations)  # orgs in the network
    print(cli.peers)  # peers in the network
    print(cli.orderers)  # orderers in the network

    # the org1 admin signs the channel configuration
    org1_admin = cli.resolve_signing_identity('org1', 'Admin')

    # Create a New Channel, submitted by the orderer org admin
    provisioner = ChannelProvisioner(cli)
    definition = load_channel_definition(CHANNEL_NAME, CHANNEL_TX_PATH,
                                         [org1_admin])
    tx_id = loop.run_until_complete(provisioner.create_channel(
        cli.new_context('Admin', 'ordererorg'), definition))
    print(f"Create channel successful, transaction {tx_id}")

    # Join the org1 peers into the channel
    org1 = cli.new_context(org1_admin, 'org1', CHANNEL_NAME)
    loop.run_until_complete(provisioner.join_channel(
        org1, CHANNEL_NAME, 'orderer.example.com'))
    print("Join channel successful")

    # Install and instantiate the chaincode
    deployer = ChaincodeDeployer(cli, org1)
    package = deployer.build_package(CC_NAME, CHAINCODE_PATH, CC_VERSION)
    loop.run_until_complete(deployer.install(org1, package))
    tx_id = loop.run_until_complete(deployer.instantiate(
        CHANNEL_NAME, CC_NAME, CC_VERSION, ['init', 'a', '100', 'b', '200'],
        "OR('Org1MSP.member')"))
    print(f"Instantiate chaincode successful, transaction {tx_id}")

    # Query, move one unit from a to b and query again
    tx_client = TransactionClient(cli, cli.new_context('User1', 'org1',
                                                       CHANNEL_NAME))
    query = create_tx_request(CC_NAME, args=['query', 'b'],
                              prop_type=CC_QUERY)
    print(loop.run_until_complete(tx_client.query(query)))  # b'200'

    tracker = loop.run_until_complete(tx_client.execute_and_wait(
        create_tx_request(CC_NAME, args=['move', 'a', 'b', '1']),
        'mash([a-zA-Z]+)'))
    print(tracker.state, tracker.tx_id)  # CONFIRMED <tx id>

    print(loop.run_until_complete(tx_client.query(query)))  # b'201'
    loop.close()
