"""Shipstra Vault Meta information.
   Shipstra Vault protects deployment credentials at rest and carries
   the GitHub App glue that consumes them.
"""
__title__ = 'shipstra_vault'
__description__ = (
   'Authenticated encryption of stored credentials and GitHub App '
   'integration for the Shipstra deployment dashboard.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 Shipstra'
__author__ = 'Shipstra Team'
__author_email__ = 'dev@shipstra.io'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/shipstra/shipstra-vault'
