# SPDX-License-Identifier: Apache-2.0

import copy

from lark import Lark
from lark import Transformer
from lark.exceptions import LarkError

from hflc.fabric.errors import PolicyError
from hflc.util.consts import ROLE_MEMBER, ROLE_ADMIN, ROLE_PEER

s2d_grammar = r"""
    ?value: e
          | role
          | DIGIT -> number

    dot: "."
    dash: "-"
    name: /[\w\d\-\$\&\+\,\:\;\=\?\@\#\|\<\>\^\*\(\)\%\!]+/
    mspid: WORD
    role: "'" name dot mspid "'"
    or: "OR"
    and: "AND"
    outof: "OutOf"
    logic: or | and | outof
    e : logic "(" [value ("," value)*] ")"

    %import common.WORD
    %import common.LETTER
    %import common.DIGIT
    %import common.WS
    %ignore WS

    """

VALID_ROLES = (ROLE_MEMBER, ROLE_ADMIN, ROLE_PEER)


class String2Dict(Transformer):

    def __init__(self):
        super().__init__()
        self.id = 0
        self.roles = []

    def unique_list_of_dict(self, list_of_dict):
        unique_l = []

        for item in list_of_dict:
            if item not in unique_l:
                unique_l.append(item)

        return unique_l

    def get_logic(self, args, n):

        identities = []
        policies = []

        for v in args:
            if v is None:
                continue
            if 'policy' in v:
                identities += v['identities']
                policies.append(v['policy'])
            else:
                identities.append({"role": {
                    'name': v['name'],
                    'mspId': v['mspId']
                }})
                policies.append({"signed-by": v['id']})

        return {
            "identities": self.unique_list_of_dict(identities),
            "policy": {
                f"{n}-of": policies
            }
        }

    def get_outof(self, items):
        digit, *args = items
        return self.get_logic(args, digit)

    def name(self, items):
        return ''.join(items)

    def role(self, items):
        # the leading token is the msp id, the trailing WORD the role name
        mspId, dot, name = items

        for role in self.roles:
            if role['name'] == name \
                    and role['mspId'] == mspId:
                break
        else:
            role = {"name": name,
                    "mspId": mspId,
                    "id": self.id}
            self.id += 1
            self.roles.append(role)

        return role

    def logic(self, items):
        logic, = items
        return logic.data

    def dot(self, *args):
        return '.'

    def dash(self, *args):
        return '-'

    def mspid(self, items):
        return str(items[0])

    def number(self, items):
        return int(items[0])

    def e(self, items):
        logic, *args = items

        if logic == 'or':
            return self.get_logic(args, 1)
        elif logic == 'and':
            return self.get_logic([a for a in args if a is not None],
                                  len([a for a in args if a is not None]))
        elif logic == 'outof':
            return self.get_outof(args)

        return items


class Dict2String(object):
    roles = []

    def get_policy(self, policy):
        policy_key = list(policy.keys())[0]
        n = policy_key.split('-of')[0]

        roles = []
        subpolicies = []

        if isinstance(policy[policy_key], list):
            for p in policy[policy_key]:
                key = list(p.keys())[0]
                if key == 'signed-by':
                    r = self.roles[p[key]]
                    roles.append(r)
                else:
                    p = self.get_policy(p)
                    subpolicies.append(p)
        else:
            n = 1
            subpolicies = [self.roles[policy[policy_key]]]

        return f"OutOf({n}, {', '.join(roles + subpolicies)})"

    def parse(self, policy):
        p = copy.deepcopy(policy)

        self.roles = [f"'{x['role']['mspId']}.{x['role']['name']}'"
                      for x in p['identities']]

        return self.get_policy(p['policy'])


def s2d():
    # new instance for resetting local variables on each call
    transformer = String2Dict()
    return Lark(s2d_grammar, start='value', parser='lalr',
                transformer=transformer)


d2s = Dict2String()


def from_string(expression):
    """Parse a policy expression such as
    "AND('Org1MSP.member', 'Org2MSP.member')" into the dict form.

    :param expression: policy expression
    :return: validated policy dict
    :raises PolicyError: when the expression cannot be parsed or
     names no identity
    """
    if not expression or not isinstance(expression, str):
        raise PolicyError(f'Invalid policy expression: {expression!r}')
    try:
        policy = s2d().parse(expression)
    except LarkError as e:
        raise PolicyError(f'Cannot parse policy "{expression}": {e}') from e

    # a bare role like "'Org1MSP.member'" parses to a role entry
    if 'policy' not in policy:
        policy = {
            'identities': [{'role': {'name': policy['name'],
                                     'mspId': policy['mspId']}}],
            'policy': {'signed-by': 0}
        }

    check_policy(policy)
    return policy


def signed_by_any_member(msp_ids):
    """Policy requiring a signature from a member of any of the msp ids."""
    msp_ids = list(msp_ids)
    if not msp_ids:
        raise PolicyError('No msp id given for signed by any member policy')
    return {
        'identities': [{'role': {'name': ROLE_MEMBER, 'mspId': m}}
                       for m in msp_ids],
        'policy': {'1-of': [{'signed-by': i} for i in range(len(msp_ids))]}
    }


def signed_by_all_members(msp_ids):
    """Policy requiring a signature from a member of each of the msp ids."""
    msp_ids = list(msp_ids)
    if not msp_ids:
        raise PolicyError('No msp id given for signed by all members policy')
    return {
        'identities': [{'role': {'name': ROLE_MEMBER, 'mspId': m}}
                       for m in msp_ids],
        'policy': {f'{len(msp_ids)}-of': [{'signed-by': i}
                                          for i in range(len(msp_ids))]}
    }


def _check_rule(rule, nb_identities):
    if not isinstance(rule, dict) or len(rule) != 1:
        raise PolicyError(f'Invalid policy rule: {rule!r}')

    key, value = next(iter(rule.items()))
    if key == 'signed-by':
        if not isinstance(value, int) or not 0 <= value < nb_identities:
            raise PolicyError(f'Invalid signed-by index: {value!r}')
        return

    if not key.endswith('-of'):
        raise PolicyError(f'Invalid policy rule type: {key}')
    try:
        n = int(key.split('-of')[0])
    except ValueError:
        raise PolicyError(f'Invalid policy rule type: {key}')
    if not isinstance(value, list) or not value:
        raise PolicyError(f'Rule "{key}" has no sub rules')
    if n < 1 or n > len(value):
        raise PolicyError(f'Rule "{key}" can never be satisfied by'
                          f' {len(value)} sub rules')
    for sub in value:
        _check_rule(sub, nb_identities)


def check_policy(policy):
    """Check a policy dict is well formed and satisfiable.

    :raises PolicyError: when it is not
    """
    if not policy:
        raise PolicyError('Missing Required Param "policy"')

    if not isinstance(policy, dict):
        raise PolicyError('Invalid policy, must be a dict')

    if 'identities' not in policy \
            or policy['identities'] == '' \
            or not len(policy['identities']):
        raise PolicyError('Invalid policy, missing'
                          ' the "identities" property')
    elif not isinstance(policy['identities'], list):
        raise PolicyError('Invalid policy, the "identities"'
                          ' property must be an array')

    for identity in policy['identities']:
        if 'role' not in identity:
            raise PolicyError('NOT IMPLEMENTED: only role identities'
                              ' are supported')
        role = identity['role']
        if role.get('name') not in VALID_ROLES:
            raise PolicyError(f'Invalid role name found: must'
                              f' be one of "peer", "member" or'
                              f' "admin", but found "{role.get("name")}"')
        mspid = role.get('mspId')
        if not mspid or not isinstance(mspid, str):
            raise PolicyError(f'Invalid mspid found: "{mspid}"')

    if 'policy' not in policy \
            or policy['policy'] == '' \
            or not len(policy['policy']):
        raise PolicyError('Invalid policy, missing the'
                          ' "policy" property')

    _check_rule(policy['policy'], len(policy['identities']))


def policy_msp_ids(policy):
    """Set of msp ids named by the policy identities."""
    return {x['role']['mspId'] for x in policy['identities']}


def _principal_matches(principal, signer):
    msp_id, role = signer
    if principal['mspId'] != msp_id:
        return False
    # every identity of an msp is a member of it
    return principal['name'] == ROLE_MEMBER or principal['name'] == role


def _evaluate(rule, identities, signers, used):
    key, value = next(iter(rule.items()))
    if key == 'signed-by':
        principal = identities[value]['role']
        for i, signer in enumerate(signers):
            if not used[i] and _principal_matches(principal, signer):
                used[i] = True
                return True
        return False

    n = int(key.split('-of')[0])
    verified = 0
    _used = list(used)
    for sub in value:
        trial = list(_used)
        if _evaluate(sub, identities, signers, trial):
            verified += 1
            _used = trial
    if verified >= n:
        used[:] = _used
        return True
    return False


def evaluate(policy, signers):
    """Evaluate a policy against a list of signers.

    Each signature satisfies at most one principal.

    :param policy: policy dict
    :param signers: list of (msp_id, role) tuples
    :return: True when the signers satisfy the policy
    """
    signers = list(signers)
    used = [False] * len(signers)
    return _evaluate(policy['policy'], policy['identities'], signers, used)


def to_policy(policy):
    """Accept a policy expression or a policy dict, return a checked dict."""
    if isinstance(policy, str):
        return from_string(policy)
    check_policy(policy)
    return copy.deepcopy(policy)
