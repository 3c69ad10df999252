"""Claudia Vault Meta information.
   Claudia Vault encrypts notes, tasks and passwords of a workspace
   under a single master password.
"""
__title__ = 'claudia_vault'
__description__ = (
   'Claudia Vault encrypts notes, tasks and passwords of a workspace '
   'under a single master password.'
)
__version__ = '0.1.0'
__copyright__ = 'Copyright (c) 2026 Claudia contributors'
__author__ = 'Claudia contributors'
__author_email__ = 'dev@claudia.app'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/claudia-app/claudia-vault'
