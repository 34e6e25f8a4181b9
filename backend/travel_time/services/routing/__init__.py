"""
Routing orchestration and bulk matrix execution.
"""
