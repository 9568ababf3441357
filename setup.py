#!/usr/bin/env python

# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
<Program Name>
  setup.py

<Purpose>
  BUILD SOURCE DISTRIBUTION

  The following shell command generates a regtuf source archive that can be
  distributed to other users.  The packaged source is saved to the 'dist'
  folder in the current directory.

  $ python setup.py sdist


  INSTALLATION OPTIONS

  # From the root directory of the source tree.
  $ pip install .

  # With the test requirements.
  $ pip install .[test]

  ECDSA key generation and signing use pyca/cryptography, which is pulled in
  by the 'crypto' extra of securesystemslib.
"""

from setuptools import setup
from setuptools import find_packages


with open('README.md') as file_object:
  long_description = file_object.read()


setup(
  name = 'regtuf',
  version = '0.1.0', # If updating version, also update it in regtuf/__init__.py
  description = 'Signed trust metadata for a private container registry',
  long_description = long_description,
  long_description_content_type='text/markdown',
  keywords = 'registry container trust metadata signing key rotation',
  classifiers = [
    'Development Status :: 3 - Alpha',
    'Intended Audience :: Developers',
    'Intended Audience :: System Administrators',
    'License :: OSI Approved :: MIT License',
    'License :: OSI Approved :: Apache Software License',
    'Natural Language :: English',
    'Operating System :: POSIX',
    'Operating System :: POSIX :: Linux',
    'Programming Language :: Python',
    'Programming Language :: Python :: 3',
    'Programming Language :: Python :: 3 :: Only',
    'Programming Language :: Python :: Implementation :: CPython',
    'Topic :: Security',
    'Topic :: Software Development'
  ],
  python_requires='>=3.8, <4',
  install_requires = [
    'colorama>=0.4',
    'cryptography>=40.0',
    'fasteners>=0.16',
    'iso8601>=0.1.12',
    'securesystemslib[crypto]>=0.26.0, <1.0'
  ],
  extras_require = {
    'test': ['pytest']
  },
  packages = find_packages(exclude=['tests', 'tests.*']),
  scripts = [
    'regtuf/scripts/repo.py'
  ]
)
