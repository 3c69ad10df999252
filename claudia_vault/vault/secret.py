"""
Secret containers — Key material and passwords with explicit zeroization.

Security Note:
    Python strings are immutable and may be copied by the interpreter, so a
    password handed to us as ``str`` cannot be scrubbed. What we *can* control
    is our own copy: it lives in a ``bytearray`` that is overwritten with
    zeros when the container is cleared, closed as a context manager, or
    garbage collected.
"""
import ctypes


def _wipe(buffer: bytearray) -> None:
    """Overwrite a bytearray in place with zeros."""
    if not buffer:
        return
    for i in range(len(buffer)):
        buffer[i] = 0
    ctypes.memset(
        ctypes.addressof(ctypes.c_char.from_buffer(buffer)), 0, len(buffer),
    )


class SecretBytes:
    """Mutable byte buffer that is zeroed when no longer needed.

    Use as a context manager around the code that needs the raw bytes::

        with derive_key(password, salt) as key:
            AESGCM(key.expose()).encrypt(...)
    """

    __slots__ = ("_data", "_cleared")

    def __init__(self, data: bytes | bytearray):
        self._data = bytearray(data)
        self._cleared = False
        if isinstance(data, bytearray):
            _wipe(data)

    def expose(self) -> bytes:
        """Return the raw bytes. Raises if the buffer has been cleared."""
        if self._cleared:
            raise RuntimeError("SecretBytes already cleared")
        return bytes(self._data)

    def clear(self) -> None:
        """Zero the buffer. Safe to call more than once."""
        if getattr(self, "_cleared", True):
            return
        _wipe(self._data)
        self._cleared = True

    @property
    def cleared(self) -> bool:
        return self._cleared

    def __enter__(self) -> "SecretBytes":
        return self

    def __exit__(self, *exc) -> None:
        self.clear()

    def __del__(self):
        self.clear()

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"<SecretBytes len={len(self._data)} cleared={self._cleared}>"


class SecretStr(SecretBytes):
    """UTF-8 text secret (the resident master password)."""

    __slots__ = ()

    def __init__(self, value: str):
        super().__init__(value.encode("utf-8"))

    def reveal(self) -> str:
        """Return the secret as text for a single call site."""
        return self.expose().decode("utf-8")

    def copy(self) -> "SecretStr":
        """Independent copy, so a caller can work outside a lock."""
        return SecretStr(self.reveal())

    def __repr__(self) -> str:
        return f"<SecretStr cleared={self._cleared}>"
