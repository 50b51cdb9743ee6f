# SPDX-License-Identifier: Apache-2.0


class NetworkContext(object):
    """Identity, organization, channel and target peers of an operation.

    A context is never modified; `derive` builds a new one.

    :param identity: signing User
    :param organization: Organization the identity acts for
    :param channel_id: channel the operation targets, may be None
    :param targets: Peer instances the requests are sent to
    """

    __slots__ = ('_identity', '_organization', '_channel_id', '_targets')

    def __init__(self, identity, organization, channel_id=None,
                 targets=None):
        object.__setattr__(self, '_identity', identity)
        object.__setattr__(self, '_organization', organization)
        object.__setattr__(self, '_channel_id', channel_id)
        object.__setattr__(self, '_targets', tuple(targets or ()))

    def __setattr__(self, key, value):
        raise AttributeError(f'{self.__class__.__name__} is immutable')

    @property
    def identity(self):
        return self._identity

    @property
    def organization(self):
        return self._organization

    @property
    def channel_id(self):
        return self._channel_id

    @property
    def targets(self):
        return self._targets

    @property
    def msp_id(self):
        return self._identity.msp_id

    def derive(self, **changes):
        """Return a copy of the context with some fields replaced.

        :param changes: any of identity, organization, channel_id, targets
        :return: a new NetworkContext
        """
        fields = {
            'identity': self._identity,
            'organization': self._organization,
            'channel_id': self._channel_id,
            'targets': self._targets,
        }
        unknown = set(changes) - set(fields)
        if unknown:
            raise TypeError(f'Unknown context fields: {sorted(unknown)}')
        fields.update(changes)
        return NetworkContext(**fields)

    def __repr__(self):
        return (f'NetworkContext(identity={self._identity.name},'
                f' organization={self._organization.name},'
                f' channel_id={self._channel_id},'
                f' targets={[p.name for p in self._targets]})')
