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

import base64
import collections
import collections.abc
import re
import time

from dkimsigner.canonicalization import (
    CanonicalizationPolicy,
    InvalidCanonicalizationPolicyError,
    )
from dkimsigner.crypto import (
    DigestTooLargeError,
    HASH_ALGORITHMS,
    parse_pem_private_key,
    RSASSA_PKCS1_v1_5_sign,
    UnparsableKeyError,
    )
from dkimsigner.util import (
    format_tag_value,
    get_default_logger,
    )

__all__ = [
    "DKIMException",
    "InternalError",
    "KeyFormatError",
    "MessageFormatError",
    "ParameterError",
    "Relaxed",
    "Simple",
    "SigningConfig",
    "DKIM",
    "sign",
    "sign_message",
]

__version__ = "0.6"

Relaxed = b'relaxed'    # for clients passing dkimsigner.Relaxed
Simple = b'simple'      # for clients passing dkimsigner.Simple


class DKIMException(Exception):
    """Base class for DKIM errors."""
    pass

class InternalError(DKIMException):
    """Internal error in dkimsigner module. Should never happen."""
    pass

class KeyFormatError(DKIMException):
    """Key format error while parsing or using an RSA private key."""
    pass

class MessageFormatError(DKIMException):
    """RFC822 message format error."""
    pass

class ParameterError(DKIMException):
    """Input parameter error."""
    pass


#: The rfc4871 recommended header fields to sign.
SHOULD = (
    b'sender', b'reply-to', b'subject', b'date', b'message-id', b'to', b'cc',
    b'mime-version', b'content-type', b'content-transfer-encoding',
    b'content-id', b'content-description', b'resent-date', b'resent-from',
    b'resent-sender', b'resent-to', b'resent-cc', b'resent-message-id',
    b'in-reply-to', b'references', b'list-id', b'list-help',
    b'list-unsubscribe', b'list-subscribe', b'list-post', b'list-owner',
    b'list-archive'
)

#: Header fields signed when the configuration does not name any.
DEFAULT_SIGN_HEADERS = (b'from',) + SHOULD

# Printable ASCII other than ";" and "=", which would break the tag list.
TAG_SAFE = re.compile(br"[\x21-\x3a\x3c\x3e-\x7e]+\Z")


def _to_bytes(what, value):
    if isinstance(value, str):
        try:
            return value.encode('ascii')
        except UnicodeEncodeError:
            raise ParameterError("%s is not ASCII: %r" % (what, value))
    return value


_SigningConfig = collections.namedtuple('_SigningConfig', [
    'domain', 'selector', 'canonicalization', 'timestamp',
    'include_headers'])


class SigningConfig(_SigningConfig):
    """Validated, immutable signing parameters.

    Every value is checked on construction and a L{ParameterError} is
    raised for anything a signature could not be built from.  Text values
    are stored as ASCII bytes.

    @param domain: the d= value
    @param selector: the s= value
    @param canonicalization: a c= value such as b'relaxed/simple', a
        (header, body) pair, or a L{CanonicalizationPolicy}
    @param timestamp: the t= value as an int or decimal string; None takes
        the clock at each signing
    @param include_headers: header field names to sign, in h= order
        (default L{DEFAULT_SIGN_HEADERS})

    >>> c = SigningConfig('example.com', 'sel', 'relaxed/relaxed', '42')
    >>> c.domain, c.canonicalization.to_c_value(), c.timestamp
    (b'example.com', b'relaxed/relaxed', 42)
    """

    __slots__ = ()

    #: The only signing algorithm offered.
    algorithm = b'rsa-sha256'
    #: The only key query method.
    query_method = b'dns/txt'

    #: Keys recognized by L{from_dict}.
    KEYS = ('domain', 'selector', 'canonicalization', 'timestamp', 'headers')

    def __new__(cls, domain, selector, canonicalization=b'simple/simple',
                timestamp=None, include_headers=None):
        domain = _to_bytes('domain', domain)
        selector = _to_bytes('selector', selector)
        for what, value in (('domain', domain), ('selector', selector)):
            if not value:
                raise ParameterError("%s is required" % what)
            if not isinstance(value, bytes) or TAG_SAFE.match(value) is None:
                raise ParameterError("invalid %s: %r" % (what, value))
        return super(SigningConfig, cls).__new__(
            cls, domain, selector,
            cls._policy(canonicalization),
            cls._timestamp(timestamp),
            cls._include_headers(include_headers))

    @staticmethod
    def _policy(canonicalization):
        if isinstance(canonicalization, CanonicalizationPolicy):
            return canonicalization
        if isinstance(canonicalization, (tuple, list)):
            canonicalization = b'/'.join(
                _to_bytes('canonicalization', x) for x in canonicalization)
        canonicalization = _to_bytes('canonicalization', canonicalization)
        try:
            return CanonicalizationPolicy.from_c_value(canonicalization)
        except (InvalidCanonicalizationPolicyError, AttributeError,
                TypeError) as e:
            raise ParameterError(
                "invalid canonicalization: %r" % (canonicalization,)) from e

    @staticmethod
    def _timestamp(timestamp):
        if timestamp is None:
            return None
        if isinstance(timestamp, bool):
            raise ParameterError("invalid timestamp: %r" % timestamp)
        if isinstance(timestamp, (str, bytes)):
            text = _to_bytes('timestamp', timestamp)
            if re.match(br"\d+\Z", text) is None:
                raise ParameterError("timestamp is not a decimal integer: %r"
                                     % (timestamp,))
            timestamp = int(text)
        if not isinstance(timestamp, int) or timestamp < 0:
            raise ParameterError("invalid timestamp: %r" % (timestamp,))
        return timestamp

    @staticmethod
    def _include_headers(include_headers):
        if include_headers is None:
            return DEFAULT_SIGN_HEADERS
        if isinstance(include_headers, (str, bytes)):
            raise ParameterError("include_headers must be a list of names")
        names = tuple(_to_bytes('header name', x) for x in include_headers)
        for x in names:
            if not isinstance(x, bytes) or re.match(
                    br"[\x21-\x39\x3b-\x7e]+\Z", x) is None:
                raise ParameterError("invalid header name: %r" % (x,))
        return names

    @classmethod
    def from_dict(cls, conf):
        """Build a config from a key-value mapping.

        Recognized keys are listed in L{KEYS}; domain and selector are
        required.  headers may be a list or a colon separated string.

        >>> SigningConfig.from_dict({'domain': 'example.com',
        ...     'selector': 'sel', 'headers': 'From:To'}).include_headers
        (b'From', b'To')
        """
        unknown = sorted(set(conf) - set(cls.KEYS))
        if unknown:
            raise ParameterError(
                "unrecognized configuration keys: %s" % ", ".join(unknown))
        for key in ('domain', 'selector'):
            if key not in conf:
                raise ParameterError("%s is required" % key)
        kw = {}
        if 'canonicalization' in conf:
            kw['canonicalization'] = conf['canonicalization']
        if 'timestamp' in conf:
            kw['timestamp'] = conf['timestamp']
        headers = conf.get('headers')
        if headers is not None:
            if isinstance(headers, (str, bytes)):
                headers = _to_bytes('headers', headers)
                headers = [x.strip() for x in headers.split(b':')]
            kw['include_headers'] = headers
        return cls(conf['domain'], conf['selector'], **kw)

    def replace(self, **kw):
        """Return a new validated config with some fields replaced."""
        fields = self._asdict()
        fields.update(kw)
        return SigningConfig(**fields)


def select_headers(headers, include_headers):
    """Select message header fields to be signed.

    Names are matched case insensitively.  A name listed more than once
    selects the field instances from the bottom of the header up, as a
    verifier will.  Names with no remaining instance are skipped.

    @return: list of (include_name, header) pairs in signing order.

    >>> h = [(b'from',b'biz'),(b'foo',b'bar'),(b'from',b'baz'),(b'subject',b'boring')]
    >>> i = [b'from',b'subject',b'to',b'from']
    >>> [y for x, y in select_headers(h,i)]
    [(b'from', b'baz'), (b'subject', b'boring'), (b'from', b'biz')]
    >>> h = [(b'From',b'biz'),(b'Foo',b'bar'),(b'Subject',b'Boring')]
    >>> [x for x, y in select_headers(h,i)]
    [b'from', b'subject']
    """
    sign_headers = []
    lastindex = {}
    for name in include_headers:
        h = name.lower()
        i = lastindex.get(h, len(headers))
        while i > 0:
            i -= 1
            if h == headers[i][0].rstrip(b" \t").lower():
                sign_headers.append((name, headers[i]))
                break
        lastindex[h] = i
    return sign_headers


def rfc822_parse(message):
    """Parse a message in RFC822 format.

    @param message: The message in RFC822 format. Either CRLF or LF is an
        accepted line separator.
    @return: Returns a tuple of (headers, body) where headers is a list of
        (name, value) pairs.  The body is a CRLF-separated string.
    @raise MessageFormatError: when the header section is malformed.
    """
    headers = []
    lines = re.split(b"\r?\n", message)
    i = 0
    while i < len(lines):
        if len(lines[i]) == 0:
            # End of headers, return what we have plus the body, excluding the blank line.
            i += 1
            break
        if lines[i][:1] in (b"\x09", b"\x20"):
            if not headers:
                raise MessageFormatError(
                    "Continuation line before first header field: %r"
                    % lines[i])
            headers[-1][1] += lines[i] + b"\r\n"
        else:
            m = re.match(br"([\x21-\x39\x3b-\x7e]+[\x09\x20]*):", lines[i])
            if m is not None:
                headers.append([m.group(1), lines[i][m.end(0):] + b"\r\n"])
            elif i == 0 and lines[i].startswith(b"From "):
                pass
            else:
                raise MessageFormatError(
                    "Unexpected characters in RFC822 header: %r" % lines[i])
        i += 1
    return [tuple(x) for x in headers], b"\r\n".join(lines[i:])


def body_hash(body, canon_policy, hasher=HASH_ALGORITHMS[b'rsa-sha256']):
    """Hash the canonical form of a message body.

    @param body: CRLF-separated body as returned by L{rfc822_parse}
    @param canon_policy: the L{CanonicalizationPolicy} in force
    @param hasher: hashlib constructor for the digest
    @return: raw digest bytes (base64 encode for the bh= tag)
    """
    h = hasher()
    h.update(canon_policy.canonicalize_body(body))
    return h.digest()


def signature_fields(config, timestamp, bodyhash, signed_names, b=b''):
    """Return the DKIM-Signature tags in emission order.

    >>> c = SigningConfig(b'example.com', b'sel', timestamp=1)
    >>> format_tag_value(signature_fields(c, 1, b'BH', [b'From']))
    b'v=1; a=rsa-sha256; c=simple/simple; d=example.com; q=dns/txt; s=sel; t=1; bh=BH; h=From; b='
    """
    return [
        (b'v', b"1"),
        (b'a', config.algorithm),
        (b'c', config.canonicalization.to_c_value()),
        (b'd', config.domain),
        (b'q', config.query_method),
        (b's', config.selector),
        (b't', str(timestamp).encode('ascii')),
        (b'bh', bodyhash),
        (b'h', b":".join(signed_names)),
        (b'b', b),
    ]


def signable_header_block(canon_policy, sign_headers, sig_value):
    """Build the exact byte string covered by the signature.

    @param canon_policy: the L{CanonicalizationPolicy} in force
    @param sign_headers: the selected header fields as (name, value) pairs,
        in h= order
    @param sig_value: the DKIM-Signature value with an empty b= tag
    @return: the canonical header fields followed by the canonical
        DKIM-Signature field, which has no trailing CRLF
    """
    cheaders = canon_policy.canonicalize_headers(sign_headers)
    csig = canon_policy.canonicalize_headers(
        [(b'DKIM-Signature', b' ' + sig_value)])
    # the dkim sig is hashed with no trailing crlf, even if the
    # canonicalization algorithm would add one.
    block = [x + b":" + y for x, y in cheaders]
    block += [x + b":" + y.rstrip() for x, y in csig]
    return b"".join(block)


#: Sign rfc5322 messages with one key and one set of signing parameters.
class DKIM(object):

    #: Header fields which should be signed.  Default from RFC4871
    SHOULD = SHOULD

    #: Create a signer.
    #:
    #: The key is loaded once; the instance holds no per-message state
    #: and may be shared between threads.
    #:
    #: @param config: a L{SigningConfig}, or a mapping accepted by
    #: L{SigningConfig.from_dict}
    #: @param privkey: a PKCS#1 or PKCS#8 RSA private key, PEM or DER
    #: @param logger: a logger to which debug info will be written
    #: (default L{get_default_logger})
    #: @raise ParameterError: when the configuration is invalid
    #: @raise KeyFormatError: when the key cannot be loaded
    def __init__(self, config, privkey, logger=None):
        if isinstance(config, collections.abc.Mapping):
            config = SigningConfig.from_dict(config)
        if not isinstance(config, SigningConfig):
            raise ParameterError("config must be a SigningConfig")
        if not privkey:
            raise KeyFormatError("missing private key")
        try:
            self._key = parse_pem_private_key(privkey)
        except UnparsableKeyError as e:
            raise KeyFormatError(str(e)) from e
        if logger is None:
            logger = get_default_logger()
        self.logger = logger
        self.config = config
        self.hasher = HASH_ALGORITHMS[config.algorithm]

    @property
    def keysize(self):
        """Size of the signing key modulus in bits."""
        return self._key.key_size

    def parse(self, message):
        """Split a raw message into (headers, body).

        @raise MessageFormatError: when the message cannot be parsed
        """
        if isinstance(message, str):
            try:
                message = message.encode('ascii')
            except UnicodeEncodeError as e:
                raise MessageFormatError(
                    "message text is not ASCII, pass bytes instead") from e
        if not isinstance(message, (bytes, bytearray)):
            raise MessageFormatError(
                "message must be bytes, not %s" % type(message).__name__)
        return rfc822_parse(bytes(message))

    def body_hash(self, body):
        """Return the raw digest of the canonical body."""
        return body_hash(body, self.config.canonicalization, self.hasher)

    def signable_header_block(self, headers, body, timestamp=None):
        """Build the signed bytes for a parsed message.

        @param timestamp: t= value; defaults to the configured timestamp,
            or the current time when the configuration has none
        @return: (block, sig_fields) where sig_fields carries an empty b=
        """
        if timestamp is None:
            timestamp = self.config.timestamp
        if timestamp is None:
            timestamp = int(time.time())
        bodyhash = base64.b64encode(self.body_hash(body))
        self.logger.debug("bh: %s" % bodyhash.decode('ascii'))

        # h= lists only the fields present, so select before building tags.
        include_headers = self.config.include_headers
        signed = select_headers(headers, include_headers)
        signed_names = [x for x, y in signed]
        omitted = list((collections.Counter(include_headers) -
                        collections.Counter(signed_names)).elements())
        if omitted:
            self.logger.debug("not signing absent headers: %r" % omitted)
        # rfc4871 says FROM is required
        if b'from' not in (x.lower() for x in signed_names):
            self.logger.warning("From header field is not signed")

        sig_fields = signature_fields(
            self.config, timestamp, bodyhash, signed_names)
        block = signable_header_block(
            self.config.canonicalization, [y for x, y in signed],
            format_tag_value(sig_fields))
        self.logger.debug("sign headers: %r" % [y for x, y in signed])
        self.logger.debug("hashed: %r" % block)
        return block, sig_fields

    def _sign(self, headers, body):
        block, sig_fields = self.signable_header_block(headers, body)
        try:
            sig = RSASSA_PKCS1_v1_5_sign(
                self.hasher().name, block, self._key)
        except DigestTooLargeError as e:
            raise KeyFormatError("digest too large for modulus: %s" % e) from e
        except ValueError as e:
            raise InternalError(str(e)) from e
        sig_fields[-1] = (b'b', base64.b64encode(sig))
        return sig_fields

    #: Compute the b= value for a message.
    #: @param message: an RFC822 formatted message
    #: @return: the base64 encoded signature as str
    def signature(self, message):
        headers, body = self.parse(message)
        return self._sign(headers, body)[-1][1].decode('ascii')

    #: Sign an RFC822 message and return the DKIM-Signature header line.
    #:
    #: Header fields named in the configuration but missing from the
    #: message are left out of h=.  Repeated fields are signed from
    #: bottom to top.
    #:
    #: @param message: an RFC822 formatted message (with either \\n or
    #: \\r\\n line endings)
    #: @return: DKIM-Signature header field terminated by '\r\n'
    #: @raise DKIMException: when the message or key are badly formed.
    def sign_header(self, message):
        headers, body = self.parse(message)
        sig_value = format_tag_value(self._sign(headers, body))
        return b'DKIM-Signature: ' + sig_value + b"\r\n"

    #: Sign an RFC822 message and return it with the DKIM-Signature header
    #: line prepended.  The original bytes are otherwise unchanged.
    def sign(self, message):
        header = self.sign_header(message)
        if isinstance(message, str):
            message = message.encode('ascii')
        return header + bytes(message)


def sign(message, selector, domain, privkey,
         canonicalize=(b'relaxed', b'simple'),
         include_headers=None, timestamp=None, logger=None):
    """Sign an RFC822 message and return the DKIM-Signature header line.
    @param message: an RFC822 formatted message (with either \\n or \\r\\n line endings)
    @param selector: the DKIM selector value for the signature
    @param domain: the DKIM domain value for the signature
    @param privkey: a PKCS#1 private key in PEM or DER form
    @param canonicalize: the canonicalization algorithms to use (default (Relaxed, Simple))
    @param include_headers: a list of strings indicating which headers are to be signed (default rfc4871 recommended headers)
    @param timestamp: the t= value (default current time)
    @param logger: a logger to which debug info will be written (default None)
    @return: DKIM-Signature header field terminated by \\r\\n
    @raise DKIMException: when the message, include_headers, or key are badly formed.
    """
    config = SigningConfig(domain, selector, canonicalization=canonicalize,
                           timestamp=timestamp, include_headers=include_headers)
    return DKIM(config, privkey, logger=logger).sign_header(message)


def sign_message(message, selector, domain, privkey,
                 canonicalize=(b'relaxed', b'simple'),
                 include_headers=None, timestamp=None, logger=None):
    """Sign an RFC822 message and return it with the DKIM-Signature prepended.

    Takes the same arguments as L{sign}.
    """
    config = SigningConfig(domain, selector, canonicalization=canonicalize,
                           timestamp=timestamp, include_headers=include_headers)
    return DKIM(config, privkey, logger=logger).sign(message)
