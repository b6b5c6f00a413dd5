"""Short code generation.

Random codes come from ``nanoid``, which draws from ``os.urandom`` and uses
mask-and-reject sampling, so every character of the charset is equally likely.
Hash-derived codes are reproducible for a given URL and are never used for
collision avoidance.
"""

import hashlib

from nanoid import generate

from shortener.config import Settings

__all__ = ["CodeGenerator"]


class CodeGenerator:
    """Produces and validates short codes for a configured length, charset and prefix."""

    def __init__(
        self,
        length: int,
        charset: str,
        prefix: str = "",
        custom_min_length: int = 3,
        custom_max_length: int = 20,
    ) -> None:
        if length < 1:
            raise ValueError(f"length must be a positive integer, got {length!r}")
        if len(charset) < 2:
            raise ValueError("charset must contain at least two characters")
        self.length = length
        self.charset = charset
        self.prefix = prefix
        self.custom_min_length = custom_min_length
        self.custom_max_length = custom_max_length
        self._charset_set = frozenset(charset)

    @classmethod
    def from_settings(cls, settings: Settings) -> "CodeGenerator":
        return cls(
            length=settings.SHORT_CODE_LENGTH,
            charset=settings.SHORT_CODE_CHARSET,
            prefix=settings.SHORT_CODE_PREFIX,
            custom_min_length=settings.CUSTOM_CODE_MIN_LENGTH,
            custom_max_length=settings.CUSTOM_CODE_MAX_LENGTH,
        )

    def generate(self) -> str:
        return self.prefix + generate(self.charset, self.length)

    def generate_from_url(self, url: str) -> str:
        """Derive a code from the SHA-256 digest of ``url``.

        Each digest byte picks one charset character; longer codes chain
        further digests with a counter suffix.
        """
        digest = b""
        counter = 0
        while len(digest) < self.length:
            digest += hashlib.sha256(f"{url}#{counter}".encode("utf-8") if counter else url.encode("utf-8")).digest()
            counter += 1
        size = len(self.charset)
        return self.prefix + "".join(self.charset[byte % size] for byte in digest[: self.length])

    def is_valid_format(self, code: str) -> bool:
        if not isinstance(code, str) or not code.startswith(self.prefix):
            return False
        body = code[len(self.prefix) :]
        return len(body) == self.length and all(ch in self._charset_set for ch in body)

    def is_valid_custom_code(self, code: str) -> bool:
        if not isinstance(code, str):
            return False
        if not self.custom_min_length <= len(code) <= self.custom_max_length:
            return False
        return code.isascii() and code.isalnum()
