"""
Praxis: a bounded, cancellable agent loop for JSON-speaking language models.

The package is split into the data contract (:mod:`praxis.core`), the run machinery
(:mod:`praxis.agent`) and the outer surfaces (:mod:`praxis.api`, :mod:`praxis.main`).
"""

__version__ = "0.1.0"
