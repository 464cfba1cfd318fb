# This software is provided 'as-is', without any express or implied
# warranty.  In no event will the author be held liable for any damages
# arising from the use of this software.
#
# Permission is granted to anyone to use this software for any purpose,
# including commercial applications, and to alter it and redistribute it
# freely, subject to the following restrictions:
#
# 1. The origin of this software must not be misrepresented; you must not
#    claim that you wrote the original software. If you use this software
#    in a product, an acknowledgment in the product documentation would be
#    appreciated but is not required.
# 2. Altered source versions must be plainly marked as such, and must not be
#    misrepresented as being the original software.
# 3. This notice may not be removed or altered from any source distribution.
#
# Copyright (c) 2008 Greg Hewgill http://hewgill.com
#
# This has been modified from the original software.
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

__all__ = [
    'DigestTooLargeError',
    'HASH_ALGORITHMS',
    'parse_pem_private_key',
    'parse_private_key',
    'RSASSA_PKCS1_v1_5_sign',
    'UnparsableKeyError',
    ]

import hashlib

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa


# Only rsa-sha256 is signed.  The value is the hashlib constructor used for
# the body hash; the header hash is computed by the key itself.
HASH_ALGORITHMS = {
    b'rsa-sha256': hashlib.sha256,
    }

# Digests handed to the private key, by hashlib name.
_KEY_HASHES = {
    'sha256': hashes.SHA256,
    }


class DigestTooLargeError(Exception):
    """The digest is too large to fit within the requested length."""
    pass


class UnparsableKeyError(Exception):
    """The data could not be parsed as a key."""
    pass


def _check_rsa(pk):
    if not isinstance(pk, rsa.RSAPrivateKey):
        raise UnparsableKeyError(
            "Not an RSA private key: %s" % type(pk).__name__)
    return pk


def parse_private_key(data):
    """Parse an RSA private key.

    @param data: DER-encoded RFC3447 RSAPrivateKey or PKCS#8
        PrivateKeyInfo.
    @return: RSA private key
    """
    try:
        pk = serialization.load_der_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise UnparsableKeyError(str(e))
    return _check_rsa(pk)


def parse_pem_private_key(data):
    """Parse a PEM RSA private key.

    DER input is accepted as well, so callers can pass the contents of
    either kind of key file.

    @param data: RFC3447 RSAPrivateKey in PEM format.
    @return: RSA private key
    """
    if isinstance(data, str):
        try:
            data = data.encode('ascii')
        except UnicodeEncodeError as e:
            raise UnparsableKeyError("Key text is not ASCII: %s" % e)
    if not isinstance(data, (bytes, bytearray)):
        raise UnparsableKeyError(
            "Key must be bytes or str, not %s" % type(data).__name__)
    data = bytes(data)
    if b'-----BEGIN' not in data:
        return parse_private_key(data)
    try:
        pk = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise UnparsableKeyError(str(e))
    return _check_rsa(pk)


def RSASSA_PKCS1_v1_5_sign(hash_name, message, private_key):
    """Sign a message with RFC3447 RSASSA-PKCS1-v1_5.

    @param hash_name: hashlib name of the digest, e.g. 'sha256'
    @param message: byte string to hash and sign
    @param private_key: RSA private key from L{parse_pem_private_key}
    @return: signed digest byte string
    """
    try:
        algorithm = _KEY_HASHES[hash_name]()
    except KeyError:
        raise ValueError("unsupported digest: %s" % hash_name)
    try:
        return private_key.sign(message, padding.PKCS1v15(), algorithm)
    except ValueError as e:
        raise DigestTooLargeError(str(e))
