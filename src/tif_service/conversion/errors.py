"""Exceptions raised below the HTTP layer.

The web API translates these into responses; nothing here knows about HTTP.
"""


class ParamsInvalid(Exception):
    """One or more path parameters failed validation (maps to HTTP 422)."""

    def __init__(self, messages: list[str]) -> None:
        super().__init__("; ".join(messages))
        self.messages = messages


class StoreError(Exception):
    """The document store could not be reached or queried."""


class ConversionError(Exception):
    """A source image could not be converted into the cache."""
