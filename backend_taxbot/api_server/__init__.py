"""
API server package: HTTP interface over the wallet tax pipeline.
"""
