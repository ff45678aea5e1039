"""
FlowVision
AI module.

Submodules:
    - gateway: LLM Gateway (provider routing, retry, cost tracking)
    - operation_queue: prioritised, cancellable async operation queue
    - operations: per-type prompt handlers and the queue executor
    - audit: mirrors queue transitions into the ai_operations table
"""
