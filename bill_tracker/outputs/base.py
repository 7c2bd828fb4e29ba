# bill_tracker/outputs/base.py
from abc import ABC, abstractmethod

class BaseOutput(ABC):
    @abstractmethod
    def append(self, instances):
        """Append transaction instances to the chosen sink."""
        pass
