"""
Workflow engine: definitions, expressions, executors and the execution engine
"""
