"""Nexus Enigma Meta information.
   Nexus Enigma encrypts ingestion payloads end to end with daily derived keys.
"""
__title__ = 'nexus_enigma'
__description__ = (
   'Nexus Enigma encrypts ingestion payloads end to end '
   'with daily derived keys.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 Nexus Gateway'
__author__ = 'Nexus Gateway'
__author_email__ = 'dev@nexus-gateway.io'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/nexus-gateway/nexus-enigma'
