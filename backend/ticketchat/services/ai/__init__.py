"""
LLM layer: provider adapter, conversation types, tools, the dispatch loop,
the hallucination guard and chat orchestration.
"""
