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
# Copyright (c) 2011 Scott Kitterman <scott@kitterman.com>

from setuptools import setup

version = "0.6"

setup(
    name = "dkimsigner",
    version = version,
    description = "DKIM (DomainKeys Identified Mail) message signing",
    long_description =
    """dkimsigner is a Python library that produces RFC 6376 DKIM-Signature
header fields for email messages using rsa-sha256.""",
    author = "Greg Hewgill",
    author_email = "greg@hewgill.com",
    license = "BSD-like",
    packages = ["dkimsigner", "dkimsigner.tests"],
    package_data = {"dkimsigner.tests": ["data/*"]},
    py_modules = ["dkimsign"],
    scripts = ["dkimsign.py"],
    install_requires = ["cryptography"],
    extras_require = {"testing": ["pytest"]},
    python_requires = ">=3.6",
)
