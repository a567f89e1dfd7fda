"""Registry resolving provider codes to adapter instances."""

import logging
from typing import Iterable, Optional

from staywatch.adapters.awayresorts import AwayResortsAdapter
from staywatch.adapters.base import ProviderAdapter
from staywatch.adapters.butlins import ButlinsAdapter
from staywatch.adapters.centerparcs import CenterParcsAdapter
from staywatch.adapters.haven import HavenAdapter
from staywatch.adapters.hoseasons import HoseasonsAdapter
from staywatch.adapters.parkdean import ParkdeanAdapter
from staywatch.errors import ProviderNotFoundError

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """
    The set of providers the system knows about.

    Built once at process start and passed to the scheduler, workers and
    preview. Codes are case-insensitive.
    """

    def __init__(self, adapters: Optional[Iterable[ProviderAdapter]] = None):
        self._adapters: dict[str, ProviderAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: ProviderAdapter) -> None:
        code = adapter.code.lower()
        if code in self._adapters:
            logger.warning(f"Replacing adapter for provider {code}")
        self._adapters[code] = adapter

    def get_adapter(self, code: str) -> ProviderAdapter:
        """
        Get the adapter for a provider code.

        Raises:
            ProviderNotFoundError: If no adapter is registered for the code
        """
        adapter = self._adapters.get((code or "").strip().lower())
        if adapter is None:
            raise ProviderNotFoundError(code)
        return adapter

    def has(self, code: str) -> bool:
        return (code or "").strip().lower() in self._adapters

    def codes(self) -> list[str]:
        return sorted(self._adapters)

    def enabled_adapters(self) -> list[ProviderAdapter]:
        return [self._adapters[code] for code in self.codes() if self._adapters[code].is_enabled()]

    async def cleanup(self) -> None:
        """Release every adapter's HTTP client and browser."""
        for code, adapter in self._adapters.items():
            try:
                await adapter.cleanup()
            except Exception as e:
                logger.error(f"Error cleaning up adapter {code}: {e}")


def build_registry() -> AdapterRegistry:
    """Registry of all supported providers."""
    return AdapterRegistry([
        HoseasonsAdapter(),
        HavenAdapter(),
        CenterParcsAdapter(),
        ButlinsAdapter(),
        ParkdeanAdapter(),
        AwayResortsAdapter(),
    ])
