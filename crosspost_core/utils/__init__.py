"""Utility modules for the crosspost core."""

# Credential encryption
from .encryption_utils import CredentialCipher, credential_aad, derive_key, generate_master_key

# JSON helpers
from .json_utils import dumps
from .keyed_lock import KeyedLock

# Logging
from .logger import AzureQueueHandler, ContextAwareLogger, configure_logging, get_logger

__all__ = [
    "AzureQueueHandler",
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    "CredentialCipher",
    "credential_aad",
    "derive_key",
    "generate_master_key",
    "dumps",
    "KeyedLock",
]
