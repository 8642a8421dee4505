"""Secret provider interface and the name -> provider registry."""
import logging
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Mapping

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider could not return a value for a reference."""
    pass


class ProviderUnavailable(ProviderError):
    """The provider could not be reached or failed to initialise."""
    pass


class SecretNotFound(ProviderError):
    """The reference does not point to an existing secret."""
    pass


class ProviderAuthError(ProviderError):
    """The provider rejected our credentials."""
    pass


class UnsupportedProvider(Exception):
    """No provider is registered under the requested name."""

    def __init__(self, name: str):
        super().__init__(f"Unsupported secret provider: {name}")
        self.name = name


class SecretProvider(ABC):
    """
    Abstract base class for secret providers.

    Implementations are constructed once with their credentials and then
    shared. ``resolve`` is called live for every sync and never retries.
    """

    @abstractmethod
    def resolve(self, reference: str) -> str:
        """
        Resolve a provider specific reference to its current value.

        Args:
            reference: Opaque reference string (format defined by the provider)

        Returns:
            The secret value

        Raises:
            ProviderUnavailable: If the provider cannot be reached
            SecretNotFound: If the reference does not exist
            ProviderAuthError: If credentials are rejected
        """
        pass

    def close(self) -> None:
        """Release connections held by the provider."""
        pass


ProviderFactory = Callable[[], SecretProvider]


class ProviderRegistry:
    """
    Maps provider names to lazily constructed providers.

    A provider is built the first time its name is requested and reused
    afterwards. Failed constructions are not cached.
    """

    def __init__(self, factories: Mapping[str, ProviderFactory]):
        self._factories: Dict[str, ProviderFactory] = dict(factories)
        self._providers: Dict[str, SecretProvider] = {}

    def names(self) -> List[str]:
        return sorted(self._factories)

    def get(self, name: str) -> SecretProvider:
        """
        Get or create the provider registered under ``name``.

        Raises:
            UnsupportedProvider: If ``name`` is not registered
            ProviderUnavailable: If the provider fails to initialise
        """
        if name in self._providers:
            return self._providers[name]

        factory = self._factories.get(name)
        if factory is None:
            raise UnsupportedProvider(name)

        logger.info(f"Initialising secret provider '{name}'")
        try:
            provider = factory()
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderUnavailable(f"Failed to initialise provider '{name}': {e}") from e

        self._providers[name] = provider
        return provider

    def close(self) -> None:
        """Close every provider built so far."""
        for name, provider in self._providers.items():
            try:
                provider.close()
            except Exception as e:
                logger.warning(f"Failed to close secret provider '{name}': {e}")
        self._providers.clear()
