"""Envelope Vault Meta information.
   Envelope Vault encrypts files and secrets client-side and shares them
   through folder-scoped keys.
"""
__title__ = 'envelope_vault'
__description__ = (
   'Envelope Vault encrypts files and secrets client-side and shares '
   'them through folder-scoped keys.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
