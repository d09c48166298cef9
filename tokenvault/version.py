"""Tokenvault Meta information.
   Tokenvault keeps personal access tokens encrypted under a master key.
"""
__title__ = 'tokenvault'
__description__ = (
   'Tokenvault keeps personal access tokens encrypted under a master '
   'passphrase and exposes them to the shell on demand.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 Tokenvault Developers'
__author__ = 'Tokenvault Developers'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/tokenvault/tokenvault'
