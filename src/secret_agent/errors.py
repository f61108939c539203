"""Exception hierarchy for secret-agent.

Messages carry secret *names* only. A value never appears in an error.
"""


class SecretAgentError(Exception):
    """Base exception for secret-agent errors."""
    pass


class SecretNotFoundError(SecretAgentError):
    """Secret is not in the vault."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"secret '{name}' not found")


class SecretExistsError(SecretAgentError):
    """Secret already exists and overwrite was not requested."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"secret '{name}' already exists")


class InvalidNameError(SecretAgentError):
    """Name does not match the identifier grammar."""

    def __init__(self, name: str, reason: str):
        self.name = name
        self.reason = reason
        super().__init__(f"invalid secret name '{name}': {reason}")


class EncryptionError(SecretAgentError):
    """Encrypting a value failed."""
    pass


class DecryptionError(SecretAgentError):
    """Wrong passphrase, or the ciphertext is corrupt or tampered with."""
    pass


class KeySourceError(SecretAgentError):
    """No usable master key could be obtained."""
    pass


class StorageError(SecretAgentError):
    """The vault database could not be opened, read or written."""
    pass


class SecretAgentIOError(SecretAgentError):
    """File or process I/O failed."""
    pass


class ConfigError(SecretAgentError):
    """The config file is unreadable or malformed."""
    pass
