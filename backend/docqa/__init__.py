"""
docqa — PDF knowledge base with retrieval-augmented chat.

  PDF → extraction (text layer / vision OCR) → chunking → embedding → store
  question → intent → similarity search → grounded answer
  page images → batched vision analysis → synthesized answer
"""

__version__ = "1.0.0"
