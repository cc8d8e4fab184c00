# Time Blocker - Core Library
"""
Scheduling core: interval math, allocation, persistence and calendar sync.
"""

__version__ = "0.1.0"
