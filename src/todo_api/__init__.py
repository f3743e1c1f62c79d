"""
FastAPI Todo Backend package.

Relevance-ranked personal todo service. The ranking engine lives in
`todo_api.ranking` and has no web dependencies; the FastAPI app is
`todo_api.main:app`.
"""

__version__ = "0.2.0"
