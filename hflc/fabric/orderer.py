# SPDX-License-Identifier: Apache-2.0

import logging

DEFAULT_ORDERER_ENDPOINT = 'localhost:7050'

_logger = logging.getLogger(__name__ + ".orderer")


class Orderer(object):
    """A orderer node in the network.

    :param name: defaults to 'orderer'
    :param endpoint: The endpoint of the orderer,
     defaults to DEFAULT_ORDERER_ENDPOINT
    """

    def __init__(self, name='orderer', endpoint=DEFAULT_ORDERER_ENDPOINT,
                 tls_ca_cert_file=None):
        self._name = name
        self._endpoint = endpoint
        self._tls_ca_certs_path = tls_ca_cert_file
        self._ssl_target_name = None

    @property
    def name(self):
        return self._name

    @property
    def endpoint(self):
        """Return the endpoint of the orderer.

        :return: endpoint
        """
        return self._endpoint

    def init_with_bundle(self, info):
        """Init the orderer with given info dict

        :param info: Dict including all info, e.g., endpoint, tls ca
        :return: True/False
        :rtype: Boolean
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
