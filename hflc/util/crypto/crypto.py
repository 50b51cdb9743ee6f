# SPDX-License-Identifier: Apache-2.0

import hashlib
from abc import ABCMeta, abstractmethod

from Cryptodome import Random
from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils \
    import decode_dss_signature, encode_dss_signature

DEFAULT_NONCE_SIZE = 24

CURVE_P_256_Size = 256
CURVE_P_384_Size = 384


class Crypto(object, metaclass=ABCMeta):
    """ An abstract base class for the signing capabilities used by a
    signing identity. """

    @abstractmethod
    def generate_private_key(self):
        """ Generate asymmetric key pair.

        :Returns: An private key object which include public key object.
        """

    @abstractmethod
    def sign(self, private_key, message):
        """ Sign the origin message by signing private key.

        :param private_key: Signing private key
        :param message: Origin message
        :Returns: signature bytes
        """

    @abstractmethod
    def verify(self, public_key, message, signature):
        """ Verify the signature by signing public key.

        :param public_key: Signing public key
        :param message: Origin message
        :param signature: Signature of message
        :Returns: A boolean True as valid
        """

    @staticmethod
    def generate_nonce(size=DEFAULT_NONCE_SIZE):
        """ Generate a secure random for cryptographic use.

        :param size: Number of bytes for the nonce
        :Returns: Generated random bytes
        """
        return Random.get_random_bytes(size)


class Ecies(Crypto):
    """ A crypto implementation based on ECDSA and SHA2. """

    def __init__(self, security_level=CURVE_P_256_Size):
        if security_level == CURVE_P_256_Size:
            self.order = int("115792089210356248762697446949407573529"
                             "996955224135760342422259061068512044369")
            self.curve = ec.SECP256R1
            self.sign_hash_algorithm = hashes.SHA256()
            self._hash = hashlib.sha256
        else:
            self.order = int("39402006196394479212279040100"
                             "14361380507973927046544666794"
                             "69052796276593991132635693989"
                             "56308152294913554433653942643")
            self.curve = ec.SECP384R1
            self.sign_hash_algorithm = hashes.SHA384()
            self._hash = hashlib.sha384
        self.half_order = self.order >> 1

    @property
    def hash(self):
        """Get hash function"""
        return self._hash

    def sign(self, private_key, message):
        """ECDSA sign message, the signature is normalised to low-S.

        :param private_key: private key
        :param message: message to sign
        :Returns: signature
        """
        signature = private_key.sign(message,
                                     ec.ECDSA(self.sign_hash_algorithm))
        return self._prevent_malleability(signature)

    def verify(self, public_key, message, signature):
        """ECDSA verify signature.

        :param public_key: Signing public key
        :param message: Origin message
        :param signature: Signature of message
        :Returns: verify result boolean, True means valid
        """
        if not self._check_malleability(signature):
            return False
        try:
            public_key.verify(signature, message,
                              ec.ECDSA(self.sign_hash_algorithm))
        except InvalidSignature:
            return False
        return True

    def verify_with_cert(self, cert_pem, message, signature):
        """Verify a signature against the public key of a PEM certificate.

        :Returns: False when the certificate cannot be loaded or the
         signature does not match
        """
        try:
            cert = x509.load_pem_x509_certificate(cert_pem, default_backend())
        except ValueError:
            return False
        return self.verify(cert.public_key(), message, signature)

    def _prevent_malleability(self, sig):
        r, s = decode_dss_signature(sig)
        if s > self.half_order:
            s = self.order - s
        return encode_dss_signature(r, s)

    def _check_malleability(self, sig):
        try:
            _, s = decode_dss_signature(sig)
        except ValueError:
            return False
        return s <= self.half_order

    def generate_private_key(self):
        """ECDSA key pair generation by current curve.

        :Returns: A private key object which include public key object.
        """
        return ec.generate_private_key(self.curve(), default_backend())


def ecies(security_level=CURVE_P_256_Size):
    """Factory method for creating a Ecies instance.

    :param security_level: Security level
    :Returns: A Ecies instance
    """
    return Ecies(security_level)
