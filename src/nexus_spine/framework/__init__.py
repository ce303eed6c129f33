"""
Adapter framework: the enrichment adapter interface and its registry.
"""
