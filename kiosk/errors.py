"""
Exceptions raised by the kiosk.
"""


class KioskError(Exception):
    """Configuration or environment problem (e.g. a missing player executable)."""


class HlsFatalError(Exception):
    """Unrecoverable failure reported by the HLS client."""

    def __init__(self, category: str, detail: str) -> None:
        super().__init__(f"{category}/{detail}")
        self.category = category
        self.detail = detail
