"""
ipranker: ranks candidate endpoints by measured download throughput,
partitioned by the client's network origin.
"""

__version__ = "1.0.0"
