"""
Memory pipeline: session queue, extraction cascade, store and consolidation.
"""
