"""
Vault Configuration — Validated settings for the vault engine.

Reads optional overrides from environment variables:
    CLAUDIA_VAULT_IDLE_TIMEOUT = <seconds>
    CLAUDIA_VAULT_PASSWORDS_TIMEOUT = <seconds>
    CLAUDIA_VAULT_KDF_MEMORY = <KiB>
    CLAUDIA_VAULT_KDF_TIME = <iterations>
    CLAUDIA_VAULT_KDF_PARALLELISM = <lanes>
    CLAUDIA_VAULT_MAX_WORKERS = <threads>

Security Note:
    The KDF parameters are not stored inside a CipherBlob. Records written
    with one set of parameters can only be read back with the same set, so
    changing them for an existing workspace requires a rotation.
"""
import os
import logging

from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger("claudia.vault")

# Argon2id defaults used for record encryption keys
# (m=19 MiB, t=2, p=1; the reference Argon2 parameters for interactive use).
DEFAULT_KDF_MEMORY_COST = 19456
DEFAULT_KDF_TIME_COST = 2
DEFAULT_KDF_PARALLELISM = 1

# Argon2id defaults for the master credential hash (argon2-cffi defaults).
DEFAULT_HASH_MEMORY_COST = 65536
DEFAULT_HASH_TIME_COST = 3
DEFAULT_HASH_PARALLELISM = 4

DEFAULT_IDLE_TIMEOUT = 15 * 60
DEFAULT_PASSWORDS_TIMEOUT = 10 * 60


class KdfParams(BaseModel):
    """Argon2id cost parameters."""

    time_cost: int = Field(default=DEFAULT_KDF_TIME_COST, ge=1)
    memory_cost: int = Field(default=DEFAULT_KDF_MEMORY_COST, ge=8)
    parallelism: int = Field(default=DEFAULT_KDF_PARALLELISM, ge=1, le=64)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_memory_per_lane(self) -> "KdfParams":
        """Argon2 needs at least 8 KiB of memory per lane."""
        if self.memory_cost < 8 * self.parallelism:
            raise ValueError(
                f"memory_cost must be at least 8 * parallelism "
                f"({8 * self.parallelism} KiB), got {self.memory_cost}"
            )
        return self


def default_hash_params() -> KdfParams:
    return KdfParams(
        time_cost=DEFAULT_HASH_TIME_COST,
        memory_cost=DEFAULT_HASH_MEMORY_COST,
        parallelism=DEFAULT_HASH_PARALLELISM,
    )


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to ``default``.

    Raises:
        ValueError: If the variable is set but is not a valid integer.
    """
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    idle_timeout: float = Field(default=DEFAULT_IDLE_TIMEOUT, gt=0)
    passwords_timeout: float = Field(default=DEFAULT_PASSWORDS_TIMEOUT, gt=0)
    kdf: KdfParams = Field(default_factory=KdfParams)
    hash_params: KdfParams = Field(default_factory=default_hash_params)
    max_workers: int = Field(default=2, ge=1, le=32)

    @model_validator(mode="after")
    def validate_passwords_window(self) -> "VaultConfig":
        """The passwords sub-session must expire before the main session."""
        if self.passwords_timeout >= self.idle_timeout:
            raise ValueError(
                f"passwords_timeout ({self.passwords_timeout}s) must be "
                f"shorter than idle_timeout ({self.idle_timeout}s)"
            )
        return self

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Returns:
            Populated VaultConfig instance.
        """
        kdf = KdfParams(
            time_cost=_env_int("CLAUDIA_VAULT_KDF_TIME", DEFAULT_KDF_TIME_COST),
            memory_cost=_env_int("CLAUDIA_VAULT_KDF_MEMORY", DEFAULT_KDF_MEMORY_COST),
            parallelism=_env_int(
                "CLAUDIA_VAULT_KDF_PARALLELISM", DEFAULT_KDF_PARALLELISM,
            ),
        )
        config = cls(
            idle_timeout=_env_int("CLAUDIA_VAULT_IDLE_TIMEOUT", DEFAULT_IDLE_TIMEOUT),
            passwords_timeout=_env_int(
                "CLAUDIA_VAULT_PASSWORDS_TIMEOUT", DEFAULT_PASSWORDS_TIMEOUT,
            ),
            kdf=kdf,
            max_workers=_env_int("CLAUDIA_VAULT_MAX_WORKERS", 2),
        )
        logger.debug(
            "Vault config: idle_timeout=%ss passwords_timeout=%ss kdf=%s",
            config.idle_timeout, config.passwords_timeout, kdf.model_dump(),
        )
        return config
