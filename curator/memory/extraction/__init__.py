"""
Extraction Tiers

Decision log reader, structural miner, triage scorer and inference gateway,
plus transcript normalization and the inference usage counter.
"""
