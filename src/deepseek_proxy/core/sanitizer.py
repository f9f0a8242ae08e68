"""Request sanitizer - strips tool-calling fields the upstream rejects."""

from typing import Any

from deepseek_proxy.utils import get_logger

logger = get_logger(__name__)


class PayloadSanitizer:
    """Removes empty or null tool-calling fields from a chat payload.

    The upstream answers 400 when ``tools`` is an empty list or any of the
    tool fields is an explicit ``null``. Responsible for:
    - Dropping ``tools``, ``tool_choice``, ``functions`` and
      ``function_call`` when they are ``[]`` or ``None``
    - Dropping ``tool_choice`` once ``tools`` is gone
    """

    TOOL_FIELDS = ("tools", "tool_choice", "functions", "function_call")

    def sanitize(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return a cleaned copy of ``payload``.
        
        Args:
            payload: Decoded request body; never mutated
            
        Returns:
            New payload safe to forward upstream
        """
        cleaned = dict(payload)

        for field in self.TOOL_FIELDS:
            if field in cleaned and self._is_empty(cleaned[field]):
                logger.debug("sanitizer.removed_field", field=field, reason="empty_or_null")
                del cleaned[field]

        if "tools" not in cleaned and "tool_choice" in cleaned:
            logger.debug("sanitizer.removed_field", field="tool_choice", reason="no_tools")
            del cleaned["tool_choice"]

        return cleaned

    @staticmethod
    def _is_empty(value: Any) -> bool:
        return value is None or (isinstance(value, list) and not value)


def sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Module-level shortcut for :meth:`PayloadSanitizer.sanitize`."""
    return PayloadSanitizer().sanitize(payload)


def create_sanitizer() -> PayloadSanitizer:
    """Factory function for sanitizer.
    
    Returns:
        Configured sanitizer instance
    """
    return PayloadSanitizer()
