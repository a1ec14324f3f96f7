"""BizFlow workflow orchestrator service"""

__version__ = "0.1.0"
