"""
Profile Matching - Similarity & Experimentation Engine

This package matches an elicited preference vector against a population of
recorded preference vectors and manages competing versions of the algorithms
that drive the match.

Key Design Decisions:
- Feature vectors are strict: fixed dimensions, missing values default to 0
- Similarity is a pure function over two vectors under a named metric
- Neighbour search relaxes its threshold progressively instead of failing
- Algorithm versions and A/B tests live behind an injected store
- Storage trouble degrades to default configuration, never to a failed request
"""

__version__ = "1.0.0"
