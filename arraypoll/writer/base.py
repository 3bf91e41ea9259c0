"""
Base writer interface for ArrayPoll results.
"""

import logging
from abc import ABC, abstractmethod

from arraypoll.models.result import CanonicalResult

# Initialize logger
LOG = logging.getLogger(__name__)


class Writer(ABC):
    """
    Base class for all result writers.
    """

    @abstractmethod
    def write(self, result: CanonicalResult) -> bool:
        """
        Write one collection result to the destination.

        Args:
            result: Populated result of one backend run

        Returns:
            True if write was successful, False otherwise
        """
        pass

    def close(self) -> None:
        """
        Optional method to close the writer and clean up resources.
        Default implementation does nothing - override in subclasses that need cleanup.
        """
        pass
