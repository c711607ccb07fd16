"""Navigator PII Meta information.
   Navigator PII keeps personally-identifying fields encrypted at rest
   through a transit encryption engine.
"""
__title__ = 'navigator_pii'
__description__ = (
   'Navigator PII encrypts personally-identifying record fields '
   'through a Vault transit engine.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2023 Jesus Lara'
__author__ = 'Jesus Lara'
__author_email__ = 'jesuslarag@gmail.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/phenobarbital/navigator-pii'
