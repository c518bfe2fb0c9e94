"""Document Intelligence Pipeline.

Fans a document out to several OCR engines, fuses their text, arbitrates
between rule-based and model-based classification, extracts entities and
multi-locale dates, and derives filing metadata, degrading to local
heuristics whenever an external service is unavailable.
"""
