"""
Geometry ingestion: classification, centroid extraction and WKB encoding.
"""
