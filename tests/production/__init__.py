"""
Live cluster benchmarks

These run the full benchmark against a real cluster and are skipped when
no nodes are configured.
"""
