"""
taskforge - autonomous ReAct task-execution agent core.
"""

__version__ = "0.3.0"
