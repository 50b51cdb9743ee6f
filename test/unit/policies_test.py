# SPDX-License-Identifier: Apache-2.0

import unittest

from hflc.fabric.errors import PolicyError
from hflc.util.policies import s2d, d2s, check_policy, evaluate, \
    from_string, policy_msp_ids, signed_by_all_members, \
    signed_by_any_member, to_policy


class PoliciesTest(unittest.TestCase):

    def setUp(self):
        self.outof_or = "OutOf(1, 'Org1.member', 'Org2.member')"
        # is equivalent to
        self.or_ = "OR('Org1.member', 'Org2.member')"
        self.or_d = {'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}}
        ],
            'policy': {'1-of': [{'signed-by': 0}, {'signed-by': 1}]}}

        self.outof_and = "OutOf(2, 'Org1.member', 'Org2.member')"
        # is equivalent to
        self.and_ = "AND('Org1.member', 'Org2.member')"
        self.and_d = {'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}}
        ],
            'policy': {'2-of': [{'signed-by': 0}, {'signed-by': 1}]}}

        self.outof_complex = \
            "OutOf(2, 'Org1.member', 'Org2.member', 'Org3.member')"
        self.outof_complex_d = {'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}},
            {'role': {'mspId': 'Org3', 'name': 'member'}}
        ],
            'policy': {'2-of': [
                {'signed-by': 0}, {'signed-by': 1}, {'signed-by': 2}
            ]}}
        # is equivalent to
        self.complex = "OR(AND('Org1.member', 'Org2.member')," \
                       " AND('Org1.member', 'Org3.member')," \
                       " AND('Org2.member', 'Org3.member'))"
        self.complex_d = {'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}},
            {'role': {'mspId': 'Org3', 'name': 'member'}}
        ],
            'policy': {'1-of': [
                {'2-of': [{'signed-by': 0}, {'signed-by': 1}]},
                {'2-of': [{'signed-by': 0}, {'signed-by': 2}]},
                {'2-of': [{'signed-by': 1}, {'signed-by': 2}]}
            ]}}

        self._1ofAny = "OR('Org1.member', 'Org2.member'," \
                       " 'Org1.admin', 'Org2.admin')"
        self._1AdminOr2Other = "OR(AND('Org1.member', 'Org2.member')," \
                               " 'Org1.admin', 'Org2.admin')"
        self._2ofAny = "OutOf(2, 'Org1.member', 'Org2.member'," \
                       " 'Org1.admin', 'Org2.admin')"

        self.dumb_policy = {'identities': [
            {'role': {'name': 'member', 'mspId': 'chu-nantesMSP'}}
        ],
            'policy': {'signed-by': 0}}

    def test_s2d_outof_or(self):
        self.assertEqual(self.or_d, s2d().parse(self.outof_or))

    def test_s2d_or(self):
        self.assertEqual(self.or_d, s2d().parse(self.or_))

    def test_s2d_outof_and(self):
        self.assertEqual(self.and_d, s2d().parse(self.outof_and))

    def test_s2d_and_(self):
        self.assertEqual(self.and_d, s2d().parse(self.and_))

    def test_s2d_outof_complex(self):
        self.assertEqual(self.outof_complex_d, s2d().parse(
            self.outof_complex))

    def test_s2d_complex(self):
        self.assertEqual(self.complex_d, s2d().parse(self.complex))

    def test_s2d_1ofAny(self):
        self.assertEqual({'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}},
            {'role': {'mspId': 'Org1', 'name': 'admin'}},
            {'role': {'mspId': 'Org2', 'name': 'admin'}}
        ],
            'policy': {'1-of': [
                {'signed-by': 0},
                {'signed-by': 1},
                {'signed-by': 2},
                {'signed-by': 3}
            ]}},
            s2d().parse(self._1ofAny))

    def test_s2d_1AdminOr2Other(self):
        self.assertEqual({'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}},
            {'role': {'mspId': 'Org1', 'name': 'admin'}},
            {'role': {'mspId': 'Org2', 'name': 'admin'}}
        ],
            'policy': {
                '1-of': [
                    {'2-of': [{'signed-by': 0}, {'signed-by': 1}]},
                    {'signed-by': 2},
                    {'signed-by': 3}
                ]}},
            s2d().parse(self._1AdminOr2Other))

    def test_s2d_2ofAny(self):
        self.assertEqual({'identities': [
            {'role': {'mspId': 'Org1', 'name': 'member'}},
            {'role': {'mspId': 'Org2', 'name': 'member'}},
            {'role': {'mspId': 'Org1', 'name': 'admin'}},
            {'role': {'mspId': 'Org2', 'name': 'admin'}}
        ],
            'policy': {'2-of': [{'signed-by': 0},
                                {'signed-by': 1},
                                {'signed-by': 2},
                                {'signed-by': 3}]}},
            s2d().parse(self._2ofAny))

    def test_d2s_dumb_policy(self):
        self.assertEqual("OutOf(1, 'chu-nantesMSP.member')",
                         d2s.parse(self.dumb_policy))

    def test_d2s_outof_or(self):
        self.assertEqual(self.outof_or, d2s.parse(self.or_d))

    def test_d2s_outof_and(self):
        self.assertEqual(self.outof_and, d2s.parse(self.and_d))

    def test_d2s_s2d_outof_or(self):
        self.assertEqual(self.outof_or, d2s.parse(
            s2d().parse(self.outof_or)))

    def test_d2s_s2d_or(self):
        self.assertEqual(self.outof_or, d2s.parse(
            s2d().parse(self.or_)))

    def test_d2s_s2d_outof_complex(self):
        self.assertEqual(self.outof_complex, d2s.parse(
            s2d().parse(self.outof_complex)))


class PolicyHelpersTest(unittest.TestCase):

    def test_from_string(self):
        policy = from_string("AND('Org1MSP.member', 'Org2MSP.member')")
        self.assertEqual({'Org1MSP', 'Org2MSP'}, policy_msp_ids(policy))
        self.assertEqual("OutOf(2, 'Org1MSP.member', 'Org2MSP.member')",
                         d2s.parse(policy))

    def test_from_string_single_role(self):
        policy = from_string("'Org1MSP.peer'")
        self.assertEqual({'identities': [
            {'role': {'name': 'peer', 'mspId': 'Org1MSP'}}],
            'policy': {'signed-by': 0}}, policy)

    def test_from_string_errors(self):
        for expression in ("AND('Org1MSP.member'", "XOR('Org1MSP.member')",
                           "AND()", '', None,
                           "OutOf(3, 'Org1MSP.member', 'Org2MSP.member')",
                           "OR('Org1MSP.client')"):
            with self.assertRaises(PolicyError, msg=expression):
                from_string(expression)

    def test_signed_by_any_member(self):
        policy = signed_by_any_member(['Org1MSP', 'Org2MSP'])
        self.assertEqual("OutOf(1, 'Org1MSP.member', 'Org2MSP.member')",
                         d2s.parse(policy))
        check_policy(policy)

    def test_signed_by_all_members(self):
        policy = signed_by_all_members(['Org1MSP', 'Org2MSP'])
        self.assertEqual("OutOf(2, 'Org1MSP.member', 'Org2MSP.member')",
                         d2s.parse(policy))

    def test_signed_by_nobody(self):
        with self.assertRaises(PolicyError):
            signed_by_any_member([])
        with self.assertRaises(PolicyError):
            signed_by_all_members([])

    def test_check_policy_errors(self):
        for policy in (None, {}, 'policy', {'identities': []},
                       {'identities': [{'role': {'name': 'member',
                                                 'mspId': 'Org1MSP'}}]},
                       {'identities': [{'role': {'name': 'member',
                                                 'mspId': 'Org1MSP'}}],
                        'policy': {'signed-by': 1}},
                       {'identities': [{'role': {'name': 'member',
                                                 'mspId': ''}}],
                        'policy': {'signed-by': 0}},
                       {'identities': [{'role': {'name': 'member',
                                                 'mspId': 'Org1MSP'}}],
                        'policy': {'1-of': []}}):
            with self.assertRaises(PolicyError, msg=repr(policy)):
                check_policy(policy)

    def test_to_policy_copies(self):
        policy = signed_by_any_member(['Org1MSP'])
        copied = to_policy(policy)
        self.assertEqual(policy, copied)
        copied['identities'].append('x')
        self.assertEqual(1, len(policy['identities']))


class EvaluateTest(unittest.TestCase):

    def test_or(self):
        policy = from_string("OR('Org1MSP.member', 'Org2MSP.member')")
        self.assertTrue(evaluate(policy, [('Org2MSP', 'peer')]))
        self.assertFalse(evaluate(policy, [('Org3MSP', 'peer')]))
        self.assertFalse(evaluate(policy, []))

    def test_and(self):
        policy = from_string("AND('Org1MSP.member', 'Org2MSP.member')")
        self.assertTrue(evaluate(policy, [('Org1MSP', 'peer'),
                                          ('Org2MSP', 'peer')]))
        self.assertFalse(evaluate(policy, [('Org1MSP', 'peer'),
                                           ('Org1MSP', 'peer')]))

    def test_role(self):
        policy = from_string("OR('Org1MSP.admin')")
        self.assertFalse(evaluate(policy, [('Org1MSP', 'peer')]))
        self.assertTrue(evaluate(policy, [('Org1MSP', 'admin')]))

    def test_signer_counted_once(self):
        policy = from_string("AND('Org1MSP.member', 'Org1MSP.member')")
        self.assertFalse(evaluate(policy, [('Org1MSP', 'peer')]))
        self.assertTrue(evaluate(policy, [('Org1MSP', 'peer'),
                                          ('Org1MSP', 'peer')]))

    def test_nested(self):
        policy = from_string("OR(AND('Org1MSP.member', 'Org2MSP.member'),"
                             " 'Org3MSP.admin')")
        self.assertTrue(evaluate(policy, [('Org3MSP', 'admin')]))
        self.assertTrue(evaluate(policy, [('Org2MSP', 'peer'),
                                          ('Org1MSP', 'peer')]))
        self.assertFalse(evaluate(policy, [('Org2MSP', 'peer'),
                                           ('Org3MSP', 'peer')]))


if __name__ == '__main__':
    unittest.main()
