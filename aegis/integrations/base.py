from abc import ABC, abstractmethod

from aegis.common.logging import get_logger

MOCK_PREFIX = "mock_"


class BaseIntegration(ABC):
    """Common base for clients of external services.

    A client whose configured endpoint starts with ``mock_`` runs in mock
    mode and answers with synthetic data instead of calling out.
    """

    def __init__(self, name: str, endpoint: str):
        self.name = name
        self.endpoint = endpoint.rstrip("/")
        self.logger = get_logger(f"integrations.{name}")

    @property
    def is_mock(self) -> bool:
        return self.endpoint.startswith(MOCK_PREFIX)

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True when the service is reachable."""
        ...
