# SPDX-License-Identifier: Apache-2.0

import logging

DEFAULT_PEER_ENDPOINT = 'localhost:7051'

_logger = logging.getLogger(__name__ + ".peer")


class Peer(object):
    """ A peer node in the network.

    The peer only describes the node; requests reach it through the
    ledger backend.
    """

    def __init__(self, name='peer', endpoint=DEFAULT_PEER_ENDPOINT,
                 msp_id=None, tls_ca_cert_file=None):
        """

        :param endpoint: Endpoint of the peer's service
        :param msp_id: msp id of the organization owning the peer
        :param tls_ca_cert_file: file path of tls root ca's certificate
        """
        self._name = name
        self._endpoint = endpoint
        self._msp_id = msp_id
        self._tls_ca_certs_path = tls_ca_cert_file
        self._ssl_target_name = None

    @property
    def name(self):
        return self._name

    @property
    def endpoint(self):
        return self._endpoint

    @property
    def msp_id(self):
        return self._msp_id

    @msp_id.setter
    def msp_id(self, msp_id):
        self._msp_id = msp_id

    def init_with_bundle(self, info):
        """
        Init the peer with given info dict
        :param info: Dict including all info, e.g., endpoint, tls ca
        :return: True or False
        """
        try:
            self._endpoint = info['url']
            if 'tlsCACerts' in info:
                self._tls_ca_certs_path = info['tlsCACerts']['path']
            grpc_options = info.get('grpcOptions', {})
            self._ssl_target_name = grpc_options.get(
                'grpc.ssl_target_name_override')
        except KeyError as e:
            _logger.error(e)
            return False
        return True

    def __str__(self):
        return "[{}:{}]".format(self.__class__.__name__, self._name)
