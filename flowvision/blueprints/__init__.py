"""
FlowVision
Blueprint registry.
"""
