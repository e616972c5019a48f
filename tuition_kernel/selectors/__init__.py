"""Read-only selectors for the tuition kernel."""

from tuition_kernel.selectors.base import BaseSelector
from tuition_kernel.selectors.discrepancy_selector import DiscrepancySelector

__all__ = ["BaseSelector", "DiscrepancySelector"]
