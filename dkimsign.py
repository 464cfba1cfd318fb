#!/usr/bin/env python3

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

import argparse
import logging
import sys

import dkimsigner


def main(argv=None, stdin=None, stdout=None, stderr=None):
    stdin = stdin or sys.stdin.buffer
    stdout = stdout or sys.stdout.buffer
    stderr = stderr or sys.stderr

    parser = argparse.ArgumentParser(
        description='Produce DKIM signature for email messages.')
    parser.add_argument('selector', action="store")
    parser.add_argument('domain', action="store")
    parser.add_argument('privatekeyfile', action="store")
    parser.add_argument('--hcanon', choices=['simple', 'relaxed'],
        default='relaxed',
        help='Header canonicalization algorithm: default=relaxed')
    parser.add_argument('--bcanon', choices=['simple', 'relaxed'],
        default='simple',
        help='Body canonicalization algorithm: default=simple')
    parser.add_argument('--timestamp',
        help='Value for the t= tag: default=current time')
    parser.add_argument('--headers',
        help='Colon separated header fields to sign: default=rfc4871 list')
    parser.add_argument('-v', '--verbose', action='store_true',
        help='Log signing details to stderr')
    args = parser.parse_args(argv)

    logger = handler = None
    if args.verbose:
        logger = logging.getLogger('dkimsign')
        logger.setLevel(logging.DEBUG)
        handler = logging.StreamHandler(stderr)
        handler.setFormatter(logging.Formatter('%(name)s: %(message)s'))
        logger.addHandler(handler)

    conf = {
        'domain': args.domain,
        'selector': args.selector,
        'canonicalization': '%s/%s' % (args.hcanon, args.bcanon),
    }
    if args.timestamp is not None:
        conf['timestamp'] = args.timestamp
    if args.headers is not None:
        conf['headers'] = args.headers

    message = stdin.read()
    try:
        with open(args.privatekeyfile, "rb") as f:
            privkey = f.read()
        signed = dkimsigner.DKIM(conf, privkey, logger=logger).sign(message)
    except (OSError, dkimsigner.DKIMException) as e:
        print(e, file=stderr)
        return 1
    finally:
        if handler is not None:
            logger.removeHandler(handler)
    stdout.write(signed)
    return 0


if __name__ == '__main__':
    sys.exit(main())
