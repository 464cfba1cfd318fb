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

import re

__all__ = [
    'CanonicalizationPolicy',
    'InvalidCanonicalizationPolicyError',
    'Relaxed',
    'Simple',
    ]


class InvalidCanonicalizationPolicyError(Exception):
    """The c= value could not be parsed."""
    pass


def strip_trailing_lines(body):
    """Replace all empty lines at the end of the body with a single CRLF.

    A body that does not end in CRLF has one added.

    >>> strip_trailing_lines(b'Foo\\r\\n\\r\\n\\r\\n')
    b'Foo\\r\\n'
    >>> strip_trailing_lines(b'Foo')
    b'Foo\\r\\n'
    >>> strip_trailing_lines(b'')
    b'\\r\\n'
    """
    # Trim whole CRLF pairs from the end, then put back exactly one.
    end = len(body)
    while body.endswith(b"\r\n", 0, end):
        end -= 2
    return body[:end] + b"\r\n"


class Simple:
    """Class that represents the "simple" canonicalization algorithm."""

    name = b"simple"

    @staticmethod
    def canonicalize_headers(headers):
        # No changes to headers.
        return headers

    @staticmethod
    def canonicalize_body(body):
        # Ignore all empty lines at the end of the message body.  An empty
        # body becomes a single CRLF.
        return strip_trailing_lines(body)


class Relaxed:
    """Class that represents the "relaxed" canonicalization algorithm."""

    name = b"relaxed"

    @staticmethod
    def canonicalize_headers(headers):
        # Convert all header field names to lowercase.
        # Drop WSP between the field name and the colon.
        # Unfold all header lines.
        # Compress WSP to single space.
        # Remove all WSP at the start or end of the field value (strip).
        return [
            (x[0].rstrip(b" \t").lower(),
             re.sub(br"\s+", b" ", re.sub(b"\r\n", b"", x[1])).strip()
             + b"\r\n")
            for x in headers]

    @staticmethod
    def canonicalize_body(body):
        # Compress WSP to single space and remove it at the end of lines,
        # one line at a time.
        lines = [re.sub(br"[\x09\x20]+", b" ", line).rstrip(b" \t")
                 for line in body.split(b"\r\n")]
        # Ignore all empty lines at the end of the message body.
        removed_trailing_lines = strip_trailing_lines(b"\r\n".join(lines))
        # Unlike simple, an empty body stays empty.
        if removed_trailing_lines == b"\r\n":
            return b""
        return removed_trailing_lines


ALGORITHMS = dict((c.name, c) for c in (Simple, Relaxed))


class CanonicalizationPolicy:
    """The pair of algorithms named by a c= value."""

    def __init__(self, header_algorithm, body_algorithm):
        self.header_algorithm = header_algorithm
        self.body_algorithm = body_algorithm

    @classmethod
    def from_c_value(cls, c):
        """Construct the canonicalization policy described by a c= value.

        May raise an C{InvalidCanonicalizationPolicyError} if the given
        value is invalid.

        @param c: c= value from a DKIM-Signature header field, or None for
            the RFC default of simple/simple.
        @return: a C{CanonicalizationPolicy}.

        >>> CanonicalizationPolicy.from_c_value(b'relaxed').to_c_value()
        b'relaxed/simple'
        """
        if c is None:
            c = b'simple/simple'
        m = c.split(b'/')
        if len(m) not in (1, 2):
            raise InvalidCanonicalizationPolicyError(c)
        if len(m) == 1:
            m.append(b'simple')
        can_headers, can_body = m
        try:
            header_algorithm = ALGORITHMS[can_headers]
            body_algorithm = ALGORITHMS[can_body]
        except KeyError as e:
            raise InvalidCanonicalizationPolicyError(e.args[0])
        return cls(header_algorithm, body_algorithm)

    def to_c_value(self):
        return b'/'.join(
            (self.header_algorithm.name, self.body_algorithm.name))

    def canonicalize_headers(self, headers):
        return self.header_algorithm.canonicalize_headers(headers)

    def canonicalize_body(self, body):
        return self.body_algorithm.canonicalize_body(body)

    def __eq__(self, other):
        if not isinstance(other, CanonicalizationPolicy):
            return NotImplemented
        return self.to_c_value() == other.to_c_value()

    def __hash__(self):
        return hash(self.to_c_value())

    def __repr__(self):
        return 'CanonicalizationPolicy(%r)' % self.to_c_value()
