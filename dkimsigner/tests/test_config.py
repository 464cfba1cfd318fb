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
# Copyright (c) 2011 William Grant <me@williamgrant.id.au>

import unittest

import dkimsigner
from dkimsigner import ParameterError, SigningConfig
from dkimsigner.canonicalization import CanonicalizationPolicy


class TestSigningConfig(unittest.TestCase):

    def test_defaults(self):
        conf = SigningConfig('domain', 'selector')
        self.assertEqual(b'domain', conf.domain)
        self.assertEqual(b'selector', conf.selector)
        self.assertEqual(b'simple/simple', conf.canonicalization.to_c_value())
        self.assertIsNone(conf.timestamp)
        self.assertEqual(dkimsigner.DEFAULT_SIGN_HEADERS, conf.include_headers)
        self.assertEqual(b'rsa-sha256', conf.algorithm)
        self.assertEqual(b'dns/txt', conf.query_method)

    def test_missing_domain_or_selector(self):
        self.assertRaises(ParameterError, SigningConfig, '', 'selector')
        self.assertRaises(ParameterError, SigningConfig, 'domain', b'')
        self.assertRaises(ParameterError, SigningConfig, None, 'selector')

    def test_tag_breaking_values_rejected(self):
        for bad in ('exa mple.com', 'example.com;', 'a=b', 'example.com\xe9'):
            self.assertRaises(ParameterError, SigningConfig, bad, 'selector')

    def test_canonicalization_forms(self):
        for c in ('relaxed/relaxed', b'relaxed/relaxed',
                  (b'relaxed', b'relaxed'), ['relaxed', 'relaxed'],
                  CanonicalizationPolicy.from_c_value(b'relaxed/relaxed')):
            conf = SigningConfig('domain', 'selector', canonicalization=c)
            self.assertEqual(
                b'relaxed/relaxed', conf.canonicalization.to_c_value())

    def test_invalid_canonicalization(self):
        for c in ('strict/simple', 'simple/simple/simple', 42, ''):
            self.assertRaises(
                ParameterError, SigningConfig, 'domain', 'selector',
                canonicalization=c)

    def test_timestamp(self):
        self.assertEqual(
            1299753716,
            SigningConfig('d', 's', timestamp='1299753716').timestamp)
        self.assertEqual(
            1299753716,
            SigningConfig('d', 's', timestamp=1299753716).timestamp)
        for bad in ('soon', '-1', -1, '12.5', True, 1.5):
            self.assertRaises(
                ParameterError, SigningConfig, 'd', 's', timestamp=bad)

    def test_include_headers(self):
        conf = SigningConfig(
            'd', 's', include_headers=['Content-Type', 'From', b'To'])
        self.assertEqual((b'Content-Type', b'From', b'To'),
                         conf.include_headers)

    def test_any_header_names_accepted(self):
        conf = SigningConfig('d', 's', include_headers=['To', 'Subject'])
        self.assertEqual((b'To', b'Subject'), conf.include_headers)
        conf = SigningConfig(
            'd', 's', include_headers=['From', 'Return-Path', 'Received'])
        self.assertEqual((b'From', b'Return-Path', b'Received'),
                         conf.include_headers)

    def test_bad_header_names(self):
        for bad in (['From', 'Sub ject'], ['From', ''], ['From', 'X:Y'],
                    'From:To'):
            self.assertRaises(
                ParameterError, SigningConfig, 'd', 's', include_headers=bad)

    def test_immutable(self):
        conf = SigningConfig('domain', 'selector')
        self.assertRaises(AttributeError, setattr, conf, 'domain', b'other')

    def test_replace_validates(self):
        conf = SigningConfig('domain', 'selector', timestamp=1)
        other = conf.replace(canonicalization='relaxed/relaxed')
        self.assertEqual(b'relaxed/relaxed',
                         other.canonicalization.to_c_value())
        self.assertEqual(1, other.timestamp)
        self.assertEqual(b'simple/simple', conf.canonicalization.to_c_value())
        self.assertRaises(ParameterError, conf.replace, domain='')


class TestFromDict(unittest.TestCase):

    def test_minimal(self):
        conf = SigningConfig.from_dict({'domain': 'domain',
                                        'selector': 'selector'})
        self.assertEqual(SigningConfig('domain', 'selector'), conf)

    def test_all_keys(self):
        conf = SigningConfig.from_dict({
            'domain': 's3ig.com',
            'selector': 'dkim',
            'canonicalization': 'relaxed/relaxed',
            'timestamp': '1299753716',
            'headers': 'Content-Type : From:Subject:To',
        })
        self.assertEqual(b's3ig.com', conf.domain)
        self.assertEqual(b'dkim', conf.selector)
        self.assertEqual(1299753716, conf.timestamp)
        self.assertEqual((b'Content-Type', b'From', b'Subject', b'To'),
                         conf.include_headers)

    def test_headers_list(self):
        conf = SigningConfig.from_dict({'domain': 'd', 'selector': 's',
                                        'headers': ['From', 'To']})
        self.assertEqual((b'From', b'To'), conf.include_headers)

    def test_required_keys(self):
        self.assertRaises(ParameterError, SigningConfig.from_dict, {})
        self.assertRaises(ParameterError, SigningConfig.from_dict,
                          {'domain': 'domain'})
        self.assertRaises(ParameterError, SigningConfig.from_dict,
                          {'selector': 'selector'})

    def test_unknown_key(self):
        self.assertRaisesRegex(
            ParameterError, 'identity',
            SigningConfig.from_dict,
            {'domain': 'd', 'selector': 's', 'identity': '@d'})
