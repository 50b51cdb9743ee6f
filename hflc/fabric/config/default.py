# SPDX-License-Identifier: Apache-2.0
#
# Reference scenario: one application org joined to a fresh channel, the
# example key/value chaincode seeded with a=100 and b=200.

DEFAULT = {
    'channel_id': 'orgchannel',
    'org_name': 'org1',
    'org_admin': 'Admin',
    'org_user': 'User1',
    'orderer_org_name': 'ordererorg',
    'orderer_endpoint': 'orderer.example.com',
    'channel_config_path': 'channel/orgchannel.tx',
    'cc_id': 'exampleCC',
    'cc_path': 'example_cc',
    'cc_source_root': 'chaincode',
    'cc_version': '0',
    'cc_policy_msps': ['Org1MSP'],
    'cc_fcn': 'invoke',
    'cc_init_args': ['init', 'a', '100', 'b', '200'],
    'cc_upgrade_args': ['init', 'a', '100', 'b', '400'],
    'cc_query_args': ['query', 'b'],
    'cc_tx_args': ['move', 'a', 'b', '1'],
    'event_pattern': 'mash([a-zA-Z]+)',
    'event_timeout': 20,  # s
    'expected_delta': 1,
}
