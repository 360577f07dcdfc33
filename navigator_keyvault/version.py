"""Navigator KeyVault Meta information.
   Navigator KeyVault stores third-party API credentials encrypted at rest
   and expires them when their rotation interval lapses.
"""
__title__ = 'navigator_keyvault'
__description__ = (
   'Navigator KeyVault stores third-party API credentials encrypted '
   'at rest and expires them when their rotation interval lapses.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-keyvault'
