"""resolvelab package"""

from .orchestrator import ResolutionOrchestrator, resolve
from .settings import CustomResolver, ResolutionSettings

__all__ = ["CustomResolver", "ResolutionOrchestrator", "ResolutionSettings", "resolve"]
