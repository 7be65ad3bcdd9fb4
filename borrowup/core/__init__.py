"""
borrowup.core: shared diagnostics/error primitives used across the analyzer.

Modules:
  - diagnostics: Diagnostic record emitted by the analysis passes
  - span: best-effort source location
  - errors: AnalysisFault for malformed analyzer input
"""

__all__ = [
    "diagnostics",
    "span",
    "errors",
]
